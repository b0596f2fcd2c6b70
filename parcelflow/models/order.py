"""Order model - the canonical delivery record produced by normalization."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from parcelflow.core.database import Base


class OrderRecord(Base):
    """One delivery order, whatever platform it came from.

    ``(external_order_id, aggregator_source)`` is the natural key used to
    drop re-delivered webhooks; ``internal_order_id`` is ours.
    """

    __tablename__ = "orders"

    internal_order_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    external_order_id: Mapped[str] = mapped_column(String(255), nullable=False)
    aggregator_source: Mapped[str] = mapped_column(String(50), nullable=False)
    merchant_id: Mapped[Optional[int]] = mapped_column(Integer)
    service_level: Mapped[str] = mapped_column(
        String(10),
        default="lite",
        comment="lite | heavy | cargo",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="pending | assigned | in_transit | delivered | cancelled",
    )
    cod_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="none",
        comment="none | pending | collected | submitted | settled",
    )

    # -- Pickup / delivery --
    pickup_address: Mapped[Optional[str]] = mapped_column(String(500))
    delivery_address: Mapped[str] = mapped_column(String(500), nullable=False)
    delivery_city: Mapped[Optional[str]] = mapped_column(String(100))
    delivery_county: Mapped[Optional[str]] = mapped_column(String(100))
    delivery_postal_code: Mapped[Optional[str]] = mapped_column(String(20))
    delivery_country: Mapped[Optional[str]] = mapped_column(String(2), default="RO")

    # -- Recipient --
    recipient_name: Mapped[str] = mapped_column(String(200), nullable=False)
    recipient_phone: Mapped[Optional[str]] = mapped_column(String(50))
    recipient_email: Mapped[Optional[str]] = mapped_column(String(200))

    # -- Overflow --
    is_overflow: Mapped[bool] = mapped_column(Boolean, default=False)
    parent_carrier_id: Mapped[Optional[str]] = mapped_column(String(50))

    # -- Money / package --
    cod_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    cod_currency: Mapped[str] = mapped_column(String(3), default="RON")
    total_weight: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 3))

    notes: Mapped[Optional[str]] = mapped_column(Text)
    raw_payload: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    # -- Lifecycle --
    otp_code: Mapped[Optional[str]] = mapped_column(String(6))
    driver_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    settlement_id: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "external_order_id",
            "aggregator_source",
            name="uq_orders_external_source",
        ),
        Index("ix_orders_status", "status"),
        Index("ix_orders_delivered", "status", "delivered_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrderRecord(internal_order_id={self.internal_order_id!r}, "
            f"status={self.status!r}, cod_status={self.cod_status!r})>"
        )


class StatusChangeRecord(Base):
    """Audit trail row written alongside every status transition."""

    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<StatusChangeRecord(order_id={self.order_id!r}, status={self.status!r})>"
