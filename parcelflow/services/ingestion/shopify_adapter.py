"""Shopify order webhook adapter."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from parcelflow.models.enums import OrderSource
from parcelflow.schemas.order import OrderCreate
from parcelflow.services.ingestion.base_adapter import SourceAdapter
from parcelflow.services.ingestion.normalizer import (
    build_address,
    clean_phone_number,
    country,
    currency,
    full_name,
    items,
    mapping,
    text,
    to_amount,
    to_decimal,
    to_int,
)

COD_GATEWAY = "Cash on Delivery (COD)"
GRAMS_PER_KG = Decimal("1000")


class ShopifyAdapter(SourceAdapter):
    """Adapter for Shopify ``orders/create`` webhooks.

    The recipient phone lives on the shipping address, the name and
    email on the customer.  COD is signalled either by ``gateway`` or by
    ``"cod"`` in ``payment_gateway_names``.  Line item weights are grams.
    """

    source = OrderSource.SHOPIFY

    def _extract(self, data: dict, raw: Any) -> OrderCreate:
        customer = mapping(data.get("customer"))
        shipping = mapping(data.get("shipping_address"))

        cod_amount = Decimal("0")
        cod_currency = currency(None)
        if self._is_cod(data):
            cod_amount = to_amount(data.get("total_price"), "total_price")
            cod_currency = currency(data.get("currency"))

        return OrderCreate(
            external_order_id=text(data.get("id")),
            aggregator_source=self.source.value,
            recipient_name=full_name(
                customer.get("first_name"), customer.get("last_name")
            ),
            recipient_email=text(customer.get("email")),
            recipient_phone=clean_phone_number(shipping.get("phone")),
            delivery_address=build_address(
                shipping.get("address1"), shipping.get("address2")
            ),
            delivery_city=text(shipping.get("city")),
            delivery_county=text(shipping.get("province")),
            delivery_postal_code=text(shipping.get("zip")),
            delivery_country=country(shipping.get("country_code")),
            cod_amount=cod_amount,
            cod_currency=cod_currency,
            total_weight=self._total_weight(data.get("line_items")),
            notes=text(data.get("note")),
            raw_payload=raw,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _is_cod(data: dict) -> bool:
        if text(data.get("gateway")) == COD_GATEWAY:
            return True
        gateways = data.get("payment_gateway_names")
        if isinstance(gateways, list):
            return any(text(g) and text(g).lower() == "cod" for g in gateways)
        return False

    @staticmethod
    def _total_weight(line_items: Any) -> Optional[Decimal]:
        """Sum of grams/1000 x quantity; None when the order has no line items."""
        if not isinstance(line_items, list):
            return None
        total = Decimal("0")
        for item in items(line_items):
            grams = to_decimal(item.get("grams"), "grams") or Decimal("0")
            total += grams / GRAMS_PER_KG * to_int(item.get("quantity"))
        return total
