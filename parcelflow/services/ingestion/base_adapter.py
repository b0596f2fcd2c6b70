"""Abstract base class for all source adapters."""

from abc import ABC, abstractmethod
from typing import Any

from parcelflow.models.enums import OrderSource
from parcelflow.schemas.order import OrderCreate
from parcelflow.services.ingestion.normalizer import mapping


class SourceAdapter(ABC):
    """Base interface that every platform-specific adapter must implement.

    Each adapter is responsible for:
    1. Reading a raw webhook payload in the platform's shape
    2. Mapping its field names onto our canonical OrderCreate schema
    3. Tolerating missing or malformed fields (defaults, never exceptions)

    Adapters are pure: no I/O, no clock, no id generation.
    """

    source: OrderSource

    def normalize(self, payload: Any) -> OrderCreate:
        """Map a raw payload (of any shape) to canonical order fields."""
        return self._extract(mapping(payload), payload)

    @abstractmethod
    def _extract(self, data: dict, raw: Any) -> OrderCreate:
        """Build the OrderCreate from a payload known to be a dict.

        Args:
            data: The payload, or ``{}`` when it was not a JSON object.
            raw: The payload exactly as received, kept for auditing.
        """
        pass
