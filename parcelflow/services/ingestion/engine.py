"""Normalization engine - raw webhook payload in, canonical Order out.

Resolves which adapter applies (explicit tag or detection), runs it,
validates the minimum field set and stamps the internal identifier.
Persisting the result is the caller's job.
"""

from __future__ import annotations

import secrets
import string
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from parcelflow.core.database import utcnow
from parcelflow.core.exceptions import UnknownSourceError, ValidationError
from parcelflow.core.logging import get_logger
from parcelflow.models.enums import CodStatus, OrderSource, OrderStatus
from parcelflow.schemas.order import Order, OrderCreate
from parcelflow.services.ingestion.base_adapter import SourceAdapter
from parcelflow.services.ingestion.detection import detect_source
from parcelflow.services.ingestion.gomag_adapter import GomagAdapter
from parcelflow.services.ingestion.innoship_adapter import InnoshipAdapter
from parcelflow.services.ingestion.overflow_adapter import OverflowAdapter
from parcelflow.services.ingestion.shopify_adapter import ShopifyAdapter
from parcelflow.services.ingestion.woocommerce_adapter import WooCommerceAdapter

logger = get_logger(__name__)

REQUIRED_FIELDS = ("external_order_id", "recipient_name", "delivery_address")
# Column widths of the orders table.
MAX_FIELD_LENGTHS = {
    "external_order_id": 255,
    "recipient_name": 200,
    "delivery_address": 500,
}

ORDER_ID_ALPHABET = string.ascii_lowercase + string.digits
ORDER_ID_RANDOM_LENGTH = 8


def default_adapters() -> dict[OrderSource, SourceAdapter]:
    """One adapter per supported source."""
    return {
        OrderSource.GOMAG: GomagAdapter(),
        OrderSource.SHOPIFY: ShopifyAdapter(),
        OrderSource.WOOCOMMERCE: WooCommerceAdapter(),
        OrderSource.INNOSHIP: InnoshipAdapter(),
        OrderSource.OVERFLOW_IN: OverflowAdapter(),
    }


def generate_internal_order_id(prefix: str, now: datetime) -> str:
    """``<prefix>-<YYYYMMDD>-<8 random chars>``, e.g. ``PF-20260205-k3v9x0qa``."""
    suffix = "".join(
        secrets.choice(ORDER_ID_ALPHABET) for _ in range(ORDER_ID_RANDOM_LENGTH)
    )
    return f"{prefix}-{now:%Y%m%d}-{suffix}"


class NormalizationEngine:
    """Turns any supported payload into a validated, pending Order."""

    def __init__(
        self,
        order_id_prefix: str = "PF",
        adapters: Optional[Mapping[OrderSource, SourceAdapter]] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.order_id_prefix = order_id_prefix
        self.adapters = dict(adapters) if adapters is not None else default_adapters()
        self.clock = clock

    # ── Public API ───────────────────────────────────────────────────

    def resolve_source(
        self,
        source_tag: Optional[str],
        payload: Any,
        headers: Optional[Mapping[str, str]] = None,
    ) -> OrderSource:
        """Explicit tag first, detection second; unknown is an error."""
        if source_tag:
            try:
                source = OrderSource(source_tag.strip().lower())
            except ValueError:
                raise UnknownSourceError(
                    f"Unsupported source platform: {source_tag!r}. "
                    f"Supported: {', '.join(s.value for s in self.adapters)}"
                ) from None
        else:
            source = detect_source(payload, headers)
            if source is None:
                raise UnknownSourceError(
                    "Unable to detect source platform; pass ?source="
                    + "|".join(s.value for s in self.adapters)
                )

        if source not in self.adapters:
            raise UnknownSourceError(f"No adapter registered for {source.value!r}")
        return source

    def normalize_order(
        self,
        source_tag: Optional[str],
        payload: Any,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Order:
        """Normalize a payload into a new pending Order.

        Raises:
            UnknownSourceError: If the source cannot be resolved.
            ValidationError: If external id, recipient name or delivery
                address is missing or longer than its column allows.
        """
        source = self.resolve_source(source_tag, payload, headers)
        fields = self.adapters[source].normalize(payload)
        self.validate(fields)

        now = self.clock()
        order = Order(
            **fields.model_dump(),
            internal_order_id=generate_internal_order_id(self.order_id_prefix, now),
            status=OrderStatus.PENDING,
            cod_status=CodStatus.PENDING if fields.cod_amount > 0 else CodStatus.NONE,
            created_at=now,
            updated_at=now,
        )
        logger.info(
            "Normalized %s order external=%s -> %s (cod=%s %s)",
            source.value,
            order.external_order_id,
            order.internal_order_id,
            order.cod_amount,
            order.cod_currency,
        )
        return order

    @staticmethod
    def validate(fields: OrderCreate) -> None:
        missing = [name for name in REQUIRED_FIELDS if not getattr(fields, name)]
        if missing:
            logger.warning(
                "Rejected %s payload, missing: %s",
                fields.aggregator_source,
                ", ".join(missing),
            )
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                missing_fields=missing,
            )

        too_long = [
            name
            for name, limit in MAX_FIELD_LENGTHS.items()
            if len(getattr(fields, name)) > limit
        ]
        if too_long:
            logger.warning(
                "Rejected %s payload, oversized: %s",
                fields.aggregator_source,
                ", ".join(too_long),
            )
            raise ValidationError(
                "Fields exceed maximum length: "
                + ", ".join(f"{name} ({MAX_FIELD_LENGTHS[name]})" for name in too_long),
                invalid_fields=too_long,
            )
