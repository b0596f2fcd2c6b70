"""Normalizer utility functions shared by the source adapters.

These functions provide a single place to handle the messy reality of
webhook payloads: phone numbers in local or international form, address
lines split across several keys, amounts sent as strings or numbers,
and nested objects that may be missing or of the wrong type.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from parcelflow.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_COUNTRY = "RO"
DEFAULT_CURRENCY = "RON"
PHONE_COUNTRY_CODE = "40"

ADDRESS_SEPARATOR = ", "

_PHONE_STRIP = re.compile(r"[^\d+]")


def clean_phone_number(phone: Any) -> Optional[str]:
    """Normalize a phone number to the +40 international form.

    ``0712345678`` -> ``+40712345678``; ``40712345678`` -> ``+40712345678``;
    anything else (already prefixed, foreign, too short) passes through
    with punctuation removed.
    """
    if phone is None or isinstance(phone, (dict, list, bool)):
        return None
    cleaned = _PHONE_STRIP.sub("", str(phone))
    if not cleaned:
        return None

    if cleaned.startswith("0") and len(cleaned) == 10:
        return f"+{PHONE_COUNTRY_CODE}{cleaned[1:]}"
    if cleaned.startswith(PHONE_COUNTRY_CODE) and len(cleaned) == 11:
        return f"+{cleaned}"
    return cleaned


def build_address(*parts: Any) -> Optional[str]:
    """Join the non-empty address fragments; None when nothing is left."""
    fragments = [text(part) for part in parts]
    fragments = [f for f in fragments if f]
    return ADDRESS_SEPARATOR.join(fragments) if fragments else None


def text(value: Any) -> Optional[str]:
    """Coerce a scalar to a stripped string, mapping blanks to None."""
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return None
    stripped = str(value).strip()
    return stripped or None


def to_decimal(value: Any, field_name: str = "value") -> Optional[Decimal]:
    """Safely convert a payload value to Decimal, returning None on failure."""
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    if isinstance(value, str) and value.strip() == "":
        return None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        logger.warning("Non-numeric %s=%r", field_name, value)
        return None
    if not result.is_finite():
        logger.warning("Non-finite %s=%r", field_name, value)
        return None
    return result


def to_amount(value: Any, field_name: str = "amount") -> Decimal:
    """Money amount >= 0; unparseable or negative input becomes 0."""
    amount = to_decimal(value, field_name)
    if amount is None:
        return Decimal("0")
    if amount < 0:
        logger.warning("Negative %s=%s clamped to 0", field_name, amount)
        return Decimal("0")
    return amount


def to_int(value: Any) -> int:
    """Quantities default to 1 when absent or malformed."""
    number = to_decimal(value, "quantity")
    if number is None or number <= 0:
        return 1
    return int(number)


def currency(value: Any) -> str:
    code = text(value)
    return code.upper() if code else DEFAULT_CURRENCY


def country(value: Any) -> str:
    code = text(value)
    return code.upper() if code else DEFAULT_COUNTRY


def mapping(value: Any) -> dict:
    """Return ``value`` if it is a dict, else an empty dict."""
    return value if isinstance(value, dict) else {}


def first_mapping(value: Any) -> dict:
    """First element of a list when it is a dict (Innoship wraps objects in lists)."""
    if isinstance(value, list) and value:
        return mapping(value[0])
    return mapping(value)


def items(value: Any) -> list[dict]:
    """Dict elements of a list, ignoring anything else."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def full_name(first: Any, last: Any) -> Optional[str]:
    return build_name(text(first), text(last))


def build_name(*parts: Optional[str]) -> Optional[str]:
    joined = " ".join(p for p in parts if p).strip()
    return joined or None
