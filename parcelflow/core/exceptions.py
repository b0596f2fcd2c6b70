"""Domain errors raised by the ingestion, lifecycle and settlement services.

Each error carries a stable ``code`` and the HTTP status the API layer
should answer with, so routes never have to translate them by hand.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional


class ParcelFlowError(Exception):
    code = "PARCELFLOW_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(ParcelFlowError):
    """Normalized order fails the required-field checks (nothing is persisted)."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str,
        missing_fields: Iterable[str] = (),
        invalid_fields: Iterable[str] = (),
    ) -> None:
        super().__init__(message)
        self.missing_fields = list(missing_fields)
        self.invalid_fields = list(invalid_fields)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.missing_fields:
            data["missing_fields"] = self.missing_fields
        if self.invalid_fields:
            data["invalid_fields"] = self.invalid_fields
        return data


class UnknownSourceError(ValidationError):
    """No adapter for the given tag, or auto-detection found no match."""

    code = "UNKNOWN_SOURCE"


class NotFoundError(ParcelFlowError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, identifier: Any) -> None:
        super().__init__(f"{entity} not found: {identifier}")
        self.entity = entity
        self.identifier = identifier


class InvalidTransitionError(ParcelFlowError):
    """A state machine precondition was violated."""

    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(
        self,
        message: str,
        current: Optional[str] = None,
        expected: Iterable[str] = (),
    ) -> None:
        super().__init__(message)
        self.current = current
        self.expected = list(expected)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.current is not None:
            data["current"] = self.current
        if self.expected:
            data["expected"] = self.expected
        return data


class OtpMismatchError(ParcelFlowError):
    code = "OTP_MISMATCH"
    status_code = 400


class StorageUnavailableError(ParcelFlowError):
    code = "STORAGE_UNAVAILABLE"
    status_code = 503
