"""COD settlement model - one driver's cash hand-over for one date."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from parcelflow.core.database import Base


class SettlementRecord(Base):
    """A batch of delivered COD orders whose cash a driver handed over.

    ``total_orders`` and ``total_cod_amount`` are written once, at
    submission, and are the audit record of what was declared then.
    """

    __tablename__ = "cod_settlements"

    settlement_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    driver_id: Mapped[int] = mapped_column(Integer, nullable=False)
    settlement_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_cod_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=0,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="submitted",
        comment="submitted | verified | transferred",
    )
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    verified_by: Mapped[Optional[str]] = mapped_column(String(100))
    transferred_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    transfer_reference: Mapped[Optional[str]] = mapped_column(String(100))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_settlement_driver_date", "driver_id", "settlement_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<SettlementRecord(settlement_id={self.settlement_id!r}, "
            f"total_cod_amount={self.total_cod_amount}, status={self.status!r})>"
        )
