"""WooCommerce order webhook adapter."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from parcelflow.models.enums import OrderSource
from parcelflow.schemas.order import OrderCreate
from parcelflow.services.ingestion.base_adapter import SourceAdapter
from parcelflow.services.ingestion.normalizer import (
    build_address,
    build_name,
    clean_phone_number,
    country,
    currency,
    items,
    mapping,
    text,
    to_amount,
    to_decimal,
    to_int,
)


class WooCommerceAdapter(SourceAdapter):
    """Adapter for WooCommerce ``order.created`` webhooks.

    Shipping takes priority for the name, billing is the fallback; phone
    and email only exist on billing.  Line item weights are already kg.
    """

    source = OrderSource.WOOCOMMERCE

    def _extract(self, data: dict, raw: Any) -> OrderCreate:
        shipping = mapping(data.get("shipping"))
        billing = mapping(data.get("billing"))

        first_name = text(shipping.get("first_name")) or text(billing.get("first_name"))
        last_name = text(shipping.get("last_name")) or text(billing.get("last_name"))

        cod_amount = Decimal("0")
        cod_currency = currency(None)
        if (text(data.get("payment_method")) or "").lower() == "cod":
            cod_amount = to_amount(data.get("total"), "total")
            cod_currency = currency(data.get("currency"))

        return OrderCreate(
            external_order_id=text(data.get("id")),
            aggregator_source=self.source.value,
            recipient_name=build_name(first_name, last_name),
            recipient_phone=clean_phone_number(billing.get("phone")),
            recipient_email=text(billing.get("email")),
            delivery_address=build_address(
                shipping.get("address_1"), shipping.get("address_2")
            ),
            delivery_city=text(shipping.get("city")),
            delivery_county=text(shipping.get("state")),
            delivery_postal_code=text(shipping.get("postcode")),
            delivery_country=country(shipping.get("country")),
            cod_amount=cod_amount,
            cod_currency=cod_currency,
            total_weight=self._total_weight(data.get("line_items")),
            notes=text(data.get("customer_note")),
            raw_payload=raw,
        )

    @staticmethod
    def _total_weight(line_items: Any) -> Optional[Decimal]:
        if not isinstance(line_items, list):
            return None
        total = Decimal("0")
        for item in items(line_items):
            weight = to_decimal(item.get("weight"), "weight") or Decimal("0")
            total += weight * to_int(item.get("quantity"))
        return total
