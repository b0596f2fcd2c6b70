"""Gomag webhook adapter."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from parcelflow.models.enums import OrderSource
from parcelflow.schemas.order import OrderCreate
from parcelflow.services.ingestion.base_adapter import SourceAdapter
from parcelflow.services.ingestion.normalizer import (
    DEFAULT_COUNTRY,
    build_address,
    clean_phone_number,
    currency,
    mapping,
    text,
    to_amount,
)

# Gomag stores send the Romanian "ramburs" as well as "cod"
COD_PAYMENT_METHODS = frozenset({"cod", "ramburs"})


class GomagAdapter(SourceAdapter):
    """Adapter for Gomag order webhooks.

    Expected payload::

        {
            "order_id": 98231,
            "customer": {"name": "Ion Popescu", "phone": "0712345678", "email": "..."},
            "shipping_address": {"address1": "Str. Lunga 4", "address2": "Ap. 2",
                                 "city": "Brasov", "zip": "500035"},
            "payment_method": "ramburs",
            "total": "150.00",
            "currency": "RON",
            "customer_note": "Sunati inainte"
        }
    """

    source = OrderSource.GOMAG

    def _extract(self, data: dict, raw: Any) -> OrderCreate:
        customer = mapping(data.get("customer"))
        address = mapping(data.get("shipping_address"))

        # --- COD ------------------------------------------------------------
        cod_amount = Decimal("0")
        cod_currency = currency(None)
        payment_method = (text(data.get("payment_method")) or "").lower()
        if payment_method in COD_PAYMENT_METHODS:
            cod_amount = to_amount(data.get("total"), "total")
            cod_currency = currency(data.get("currency"))

        return OrderCreate(
            external_order_id=text(data.get("order_id")),
            aggregator_source=self.source.value,
            recipient_name=text(customer.get("name")),
            recipient_phone=clean_phone_number(customer.get("phone")),
            recipient_email=text(customer.get("email")),
            delivery_address=build_address(
                address.get("address1"), address.get("address2")
            ),
            delivery_city=text(address.get("city")),
            delivery_postal_code=text(address.get("zip")),
            delivery_country=DEFAULT_COUNTRY,
            cod_amount=cod_amount,
            cod_currency=cod_currency,
            notes=text(data.get("customer_note")) or text(data.get("notes")),
            raw_payload=raw,
        )
