"""Pydantic schemas for COD settlements and reconciliation reports."""

from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from parcelflow.models.enums import COD_BUCKETS, CodStatus, SettlementStatus
from parcelflow.schemas.order import Order

CENT = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    """Round to cents; only used where amounts are presented."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class Settlement(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    settlement_id: str
    driver_id: int
    settlement_date: date
    total_orders: int
    total_cod_amount: Decimal
    status: SettlementStatus = SettlementStatus.SUBMITTED
    submitted_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    transferred_at: Optional[datetime] = None
    transfer_reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    @field_serializer("total_cod_amount")
    def _serialize_total(self, value: Decimal) -> Decimal:
        return to_money(value)


class SettlementResult(BaseModel):
    """Outcome of creating a settlement.

    ``skipped_order_ids`` lists requested orders that were not claimed
    (not delivered, no COD, another driver, or already submitted).
    """

    settlement: Settlement
    claimed_order_ids: list[str] = Field(default_factory=list)
    skipped_order_ids: list[str] = Field(default_factory=list)

    @property
    def affected_count(self) -> int:
        return len(self.claimed_order_ids)


class SettlementFilters(BaseModel):
    driver_id: Optional[int] = None
    status: Optional[SettlementStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def matches(self, settlement: Settlement) -> bool:
        if self.driver_id is not None and settlement.driver_id != self.driver_id:
            return False
        if self.status is not None and settlement.status != self.status:
            return False
        if self.date_from is not None and settlement.settlement_date < self.date_from:
            return False
        if self.date_to is not None and settlement.settlement_date > self.date_to:
            return False
        return True


# -- Reports -----------------------------------------------------------------


class CodBucket(BaseModel):
    count: int = 0
    amount: Decimal = Decimal("0")

    @field_serializer("amount")
    def _serialize_amount(self, value: Decimal) -> Decimal:
        return to_money(value)


def empty_buckets() -> dict[CodStatus, CodBucket]:
    return {status: CodBucket() for status in COD_BUCKETS}


class CodBreakdown(BaseModel):
    """Delivered orders split by where their cash currently is."""

    total_deliveries: int = 0
    cod_deliveries: int = 0
    total_cod_amount: Decimal = Decimal("0")
    buckets: dict[CodStatus, CodBucket] = Field(default_factory=empty_buckets)

    @field_serializer("total_cod_amount")
    def _serialize_total(self, value: Decimal) -> Decimal:
        return to_money(value)


class DriverReconciliation(CodBreakdown):
    driver_id: Optional[int] = None


class DailyReconciliationReport(BaseModel):
    date: dt.date
    by_driver: list[DriverReconciliation] = Field(default_factory=list)
    totals: CodBreakdown = Field(default_factory=CodBreakdown)


class CodStats(CodBreakdown):
    """Global COD totals over every delivered COD order."""

    pass


class DriverUnsettledOrders(BaseModel):
    driver_id: int
    date: Optional[dt.date] = None
    total_orders: int = 0
    total_cod_amount: Decimal = Decimal("0")
    orders: list[Order] = Field(default_factory=list)

    @field_serializer("total_cod_amount")
    def _serialize_total(self, value: Decimal) -> Decimal:
        return to_money(value)


# -- Request bodies -----------------------------------------------------------


class SubmitSettlementRequest(BaseModel):
    driver_id: int
    date: Optional[dt.date] = None
    order_ids: list[str] = Field(..., min_length=1)


class MarkCollectedRequest(BaseModel):
    order_ids: list[str] = Field(..., min_length=1)
    driver_id: Optional[int] = None


class VerifySettlementRequest(BaseModel):
    verified_by: str = Field(..., min_length=1)
    notes: Optional[str] = None


class TransferSettlementRequest(BaseModel):
    transfer_reference: str = Field(..., min_length=1)
