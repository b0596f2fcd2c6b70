"""Adapter for overflow shipments forwarded by partner carriers."""

from __future__ import annotations

from typing import Any

from parcelflow.models.enums import OrderSource
from parcelflow.schemas.order import OrderCreate
from parcelflow.services.ingestion.base_adapter import SourceAdapter
from parcelflow.services.ingestion.normalizer import (
    DEFAULT_COUNTRY,
    clean_phone_number,
    currency,
    text,
    to_amount,
    to_decimal,
)


class OverflowAdapter(SourceAdapter):
    """Adapter for partner-carrier overflow (Fan Courier, Sameday, ...).

    The payload is already flat; the AWB is the external id and the
    forwarding carrier is kept on ``parent_carrier_id``.
    """

    source = OrderSource.OVERFLOW_IN

    def _extract(self, data: dict, raw: Any) -> OrderCreate:
        carrier_id = text(data.get("carrier_id"))
        awb_number = text(data.get("awb_number"))

        return OrderCreate(
            external_order_id=awb_number or text(data.get("shipment_id")),
            aggregator_source=self.source.value,
            is_overflow=True,
            parent_carrier_id=carrier_id,
            recipient_name=text(data.get("recipient_name")),
            recipient_phone=clean_phone_number(data.get("recipient_phone")),
            delivery_address=text(data.get("delivery_address")),
            delivery_city=text(data.get("delivery_city")),
            delivery_county=text(data.get("delivery_county")),
            delivery_postal_code=text(data.get("delivery_postal_code")),
            delivery_country=DEFAULT_COUNTRY,
            cod_amount=to_amount(data.get("cod_amount"), "cod_amount"),
            cod_currency=currency(data.get("cod_currency")),
            total_weight=to_decimal(data.get("weight"), "weight"),
            notes=f"Overflow from carrier {carrier_id or 'unknown'}, "
            f"AWB {awb_number or 'n/a'}",
            raw_payload=raw,
        )
