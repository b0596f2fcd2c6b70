"""Best-effort source detection for webhooks that arrive without a tag.

Header markers are checked first (they are set by the platforms
themselves), then payload shape.  Each rule is a predicate; the first
one that matches wins, and no match means "unknown", never a guess.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from parcelflow.core.logging import get_logger
from parcelflow.models.enums import OrderSource
from parcelflow.services.ingestion.normalizer import mapping

logger = get_logger(__name__)

Rule = tuple[Callable[[dict], bool], OrderSource]

HEADER_MARKERS: list[tuple[str, OrderSource]] = [
    ("x-shopify-topic", OrderSource.SHOPIFY),
    ("x-wc-webhook-topic", OrderSource.WOOCOMMERCE),
    ("x-gomag-webhook", OrderSource.GOMAG),
    ("x-innoship-signature", OrderSource.INNOSHIP),
]


def _has(payload: dict, *keys: str) -> bool:
    return all(payload.get(key) for key in keys)


PAYLOAD_RULES: list[Rule] = [
    (
        lambda p: _has(p, "line_items")
        and bool(mapping(p.get("shipping_address")).get("province_code")),
        OrderSource.SHOPIFY,
    ),
    (lambda p: _has(p, "billing", "shipping", "line_items"), OrderSource.WOOCOMMERCE),
    (lambda p: _has(p, "AddressTo", "AddressFrom", "Content"), OrderSource.INNOSHIP),
    (
        lambda p: _has(p, "customer", "shipping_address") and not p.get("billing"),
        OrderSource.GOMAG,
    ),
    (lambda p: _has(p, "awb_number", "carrier_id"), OrderSource.OVERFLOW_IN),
]


def detect_source(
    payload: Any,
    headers: Optional[Mapping[str, str]] = None,
) -> Optional[OrderSource]:
    """Guess the platform a payload came from.

    Args:
        payload: Decoded webhook body.
        headers: Request headers; names are compared case-insensitively.

    Returns:
        The detected source, or None when no rule matches.
    """
    lowered = {str(k).lower() for k in (headers or {}).keys()}
    for header, source in HEADER_MARKERS:
        if header in lowered:
            logger.debug("Source %s detected from header %s", source.value, header)
            return source

    data = mapping(payload)
    for predicate, source in PAYLOAD_RULES:
        if predicate(data):
            logger.debug("Source %s detected from payload shape", source.value)
            return source

    return None
