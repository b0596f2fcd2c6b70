"""Pydantic schemas for canonical orders, filters and lifecycle requests."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from parcelflow.models.enums import CodStatus, OrderStatus, ServiceLevel


class OrderBase(BaseModel):
    """Fields every source adapter can fill in."""

    external_order_id: Optional[str] = None
    merchant_id: Optional[int] = None
    service_level: ServiceLevel = ServiceLevel.LITE
    pickup_address: Optional[str] = None
    delivery_address: Optional[str] = None
    delivery_city: Optional[str] = None
    delivery_county: Optional[str] = None
    delivery_postal_code: Optional[str] = None
    delivery_country: Optional[str] = "RO"
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    recipient_email: Optional[str] = None
    is_overflow: bool = False
    parent_carrier_id: Optional[str] = None
    aggregator_source: str
    cod_amount: Decimal = Field(Decimal("0"), ge=0)
    cod_currency: str = "RON"
    total_weight: Optional[Decimal] = None
    notes: Optional[str] = None
    raw_payload: Optional[Any] = None


class OrderCreate(OrderBase):
    """Output of a source adapter, before validation and id assignment."""

    pass


class Order(OrderBase):
    """The canonical order as stored and returned by every repository."""

    model_config = ConfigDict(from_attributes=True)

    internal_order_id: str
    external_order_id: str
    recipient_name: str
    delivery_address: str
    status: OrderStatus = OrderStatus.PENDING
    cod_status: CodStatus = CodStatus.NONE
    otp_code: Optional[str] = None
    driver_id: Optional[int] = None
    settlement_id: Optional[str] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class OrderFilters(BaseModel):
    """Optional filters accepted by ``find_all``."""

    status: Optional[OrderStatus] = None
    source: Optional[str] = None
    is_overflow: Optional[bool] = None
    merchant_id: Optional[int] = None
    driver_id: Optional[int] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    def matches(self, order: Order) -> bool:
        """In-memory equivalent of the SQL WHERE clause."""
        if self.status is not None and order.status != self.status:
            return False
        if self.source and order.aggregator_source != self.source.lower():
            return False
        if self.is_overflow is not None and order.is_overflow != self.is_overflow:
            return False
        if self.merchant_id is not None and order.merchant_id != self.merchant_id:
            return False
        if self.driver_id is not None and order.driver_id != self.driver_id:
            return False
        if self.date_from is not None and order.created_at < self.date_from:
            return False
        if self.date_to is not None and order.created_at > self.date_to:
            return False
        return True


class StatusChange(BaseModel):
    """One entry of an order's status history."""

    model_config = ConfigDict(from_attributes=True)

    order_id: str
    status: OrderStatus
    notes: Optional[str] = None
    created_at: datetime


class OrderStats(BaseModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_source: dict[str, int] = Field(default_factory=dict)
    overflow_orders: int = 0


class IngestResponse(BaseModel):
    """Webhook answer after an order was normalized and stored."""

    internal_order_id: str
    external_order_id: str
    status: OrderStatus
    source: str
    duplicate: bool = False
    is_overflow: bool = False
    parent_carrier_id: Optional[str] = None
    notification: str = Field(..., description="queued | disabled | skipped")


# -- Lifecycle request bodies -------------------------------------------------


class AssignDriverRequest(BaseModel):
    driver_id: int
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None


class StartTransitRequest(BaseModel):
    eta_minutes: Optional[int] = Field(None, ge=0)


class ConfirmDeliveryRequest(BaseModel):
    otp_code: str = Field(..., min_length=1)
    proof_of_delivery: Optional[str] = None


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


class UpdateStatusRequest(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None


class CorrectCodAmountRequest(BaseModel):
    cod_amount: Decimal = Field(..., ge=0)
