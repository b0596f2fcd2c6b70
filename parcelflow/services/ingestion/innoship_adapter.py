"""Innoship aggregator adapter."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from parcelflow.models.enums import OrderSource
from parcelflow.schemas.order import OrderCreate
from parcelflow.services.ingestion.base_adapter import SourceAdapter
from parcelflow.services.ingestion.normalizer import (
    clean_phone_number,
    country,
    currency,
    first_mapping,
    mapping,
    text,
    to_amount,
    to_decimal,
)


class InnoshipAdapter(SourceAdapter):
    """Adapter for Innoship shipment requests.

    Expected payload (PascalCase, objects wrapped in one-element lists)::

        {
            "ClientOrderId": "INN-5521",
            "AddressFrom": [{"AddressText": "Depozit Militari, Bucuresti"}],
            "AddressTo": [{"Name": "Ana Ionescu", "Phone": "0722000111",
                           "AddressText": "Bd. Unirii 10", "LocalityName": "Bucuresti",
                           "CountyName": "Bucuresti", "PostalCode": "030823",
                           "Country": "RO"}],
            "Content": [{"TotalWeight": 2.5}],
            "Extra": {"CashOnDeliveryAmount": 89.9,
                      "cashOnDeliveryAmountCurrency": "RON"},
            "Observation": "Fragil"
        }

    COD comes either as cash on delivery or as bank repayment.
    """

    source = OrderSource.INNOSHIP

    def _extract(self, data: dict, raw: Any) -> OrderCreate:
        address_to = first_mapping(data.get("AddressTo"))
        address_from = first_mapping(data.get("AddressFrom"))
        content = first_mapping(data.get("Content"))
        extra = mapping(data.get("Extra"))

        # --- COD ------------------------------------------------------------
        cod_amount = Decimal("0")
        cod_currency = currency(None)
        cash = to_amount(extra.get("CashOnDeliveryAmount"), "CashOnDeliveryAmount")
        repayment = to_amount(extra.get("BankRepaymentAmount"), "BankRepaymentAmount")
        if cash > 0:
            cod_amount = cash
            cod_currency = currency(extra.get("cashOnDeliveryAmountCurrency"))
        elif repayment > 0:
            cod_amount = repayment
            cod_currency = currency(extra.get("BankRepaymentCurrency"))

        return OrderCreate(
            external_order_id=(
                text(data.get("ClientOrderId")) or text(data.get("ExternalOrderId"))
            ),
            aggregator_source=self.source.value,
            recipient_name=text(address_to.get("Name"))
            or text(address_to.get("ContactPerson")),
            recipient_phone=clean_phone_number(address_to.get("Phone")),
            recipient_email=text(address_to.get("Email")),
            pickup_address=text(address_from.get("AddressText")),
            delivery_address=text(address_to.get("AddressText")),
            delivery_city=text(address_to.get("LocalityName")),
            delivery_county=text(address_to.get("CountyName")),
            delivery_postal_code=text(address_to.get("PostalCode")),
            delivery_country=country(address_to.get("Country")),
            cod_amount=cod_amount,
            cod_currency=cod_currency,
            total_weight=to_decimal(content.get("TotalWeight"), "TotalWeight"),
            notes=text(data.get("Observation")),
            raw_payload=raw,
        )
