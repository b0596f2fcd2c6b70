"""Storage contract shared by the SQL, in-memory and fallback repositories.

The lifecycle and settlement engines only ever talk to this interface,
so they behave identically whatever backs it.  Every multi-row method
is all-or-nothing: a failure leaves no partially-updated order or
settlement visible to the next read.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Collection, Iterable, Optional

from parcelflow.models.enums import (
    ACTIVE_STATUSES,
    CodStatus,
    OrderSource,
    OrderStatus,
)
from parcelflow.schemas.order import Order, OrderFilters, OrderStats, StatusChange
from parcelflow.schemas.settlement import Settlement, SettlementFilters

# cod_status values a settlement may still claim
CLAIMABLE_COD_STATUSES = frozenset({CodStatus.PENDING, CodStatus.COLLECTED})


def is_claimable(order: Order, driver_id: int) -> bool:
    """Whether ``order`` can be pulled into a settlement of ``driver_id``."""
    return (
        order.status == OrderStatus.DELIVERED
        and order.cod_amount > 0
        and order.driver_id == driver_id
        and order.cod_status in CLAIMABLE_COD_STATUSES
    )


def is_collectable(order: Order, driver_id: Optional[int] = None) -> bool:
    """Delivered, unpaid COD; when ``driver_id`` is given, only that driver's."""
    return (
        order.status == OrderStatus.DELIVERED
        and order.cod_amount > 0
        and order.cod_status == CodStatus.PENDING
        and (driver_id is None or order.driver_id == driver_id)
    )


def cod_status_for_amount(current: CodStatus, amount: Decimal) -> CodStatus:
    """Keep ``none``/``pending`` consistent with a corrected COD amount."""
    if amount > 0 and current == CodStatus.NONE:
        return CodStatus.PENDING
    if amount == 0 and current == CodStatus.PENDING:
        return CodStatus.NONE
    return current


class OrderRepository(ABC):
    """Persistence port for orders and COD settlements."""

    # ── Orders ───────────────────────────────────────────────────────

    @abstractmethod
    def create(self, order: Order) -> Order:
        """Insert ``order`` unless its (external id, source) already exists.

        Returns the stored record; on a duplicate that is the existing
        order, unchanged.
        """

    @abstractmethod
    def get(self, order_id: str) -> Optional[Order]:
        """Find an order by internal id."""

    @abstractmethod
    def find_by_external_id(
        self, external_order_id: str, source: str
    ) -> Optional[Order]:
        """Find an order by its natural key."""

    @abstractmethod
    def find_all(
        self,
        filters: Optional[OrderFilters] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> list[Order]:
        """Filtered orders, newest first.  ``limit=None`` means no limit."""

    @abstractmethod
    def transition(
        self,
        order_id: str,
        expected: Collection[OrderStatus],
        changes: dict[str, Any],
        note: Optional[str] = None,
    ) -> Optional[Order]:
        """Apply ``changes`` only if the order's status is in ``expected``.

        Writes a status-history entry in the same unit of work when
        ``changes`` contains ``status``.  Returns None if the order does
        not exist or its status no longer matches.
        """

    @abstractmethod
    def update_cod_amount(self, order_id: str, amount: Decimal) -> Optional[Order]:
        """Correct an order's COD amount; settlements are left untouched."""

    @abstractmethod
    def list_history(self, order_id: str) -> list[StatusChange]:
        """Status changes of one order, oldest first."""

    def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        notes: Optional[str] = None,
        expected: Collection[OrderStatus] = tuple(OrderStatus),
    ) -> Optional[Order]:
        changes: dict[str, Any] = {"status": status}
        if notes is not None:
            changes["notes"] = notes
        return self.transition(order_id, expected, changes, note=notes)

    def assign_driver(
        self,
        order_id: str,
        driver_id: int,
        otp_code: str,
        expected: Collection[OrderStatus] = ACTIVE_STATUSES,
    ) -> Optional[Order]:
        return self.transition(
            order_id,
            expected,
            {"status": OrderStatus.ASSIGNED, "driver_id": driver_id, "otp_code": otp_code},
            note=f"Driver {driver_id} assigned",
        )

    def cancel(
        self,
        order_id: str,
        notes: Optional[str],
        expected: Collection[OrderStatus] = ACTIVE_STATUSES,
    ) -> Optional[Order]:
        return self.transition(
            order_id,
            expected,
            {"status": OrderStatus.CANCELLED, "notes": notes},
            note="Cancelled",
        )

    def order_stats(self) -> OrderStats:
        orders = self.find_all(None, limit=None)
        stats = OrderStats(
            total=len(orders),
            by_status={status.value: 0 for status in OrderStatus},
            by_source={source.value: 0 for source in OrderSource},
        )
        for order in orders:
            stats.by_status[order.status.value] = (
                stats.by_status.get(order.status.value, 0) + 1
            )
            stats.by_source[order.aggregator_source] = (
                stats.by_source.get(order.aggregator_source, 0) + 1
            )
            if order.is_overflow:
                stats.overflow_orders += 1
        return stats

    # ── COD / settlements ────────────────────────────────────────────

    @abstractmethod
    def mark_orders_collected(
        self, order_ids: Iterable[str], driver_id: Optional[int] = None
    ) -> int:
        """pending -> collected for delivered COD orders; returns rows affected.

        With ``driver_id`` set, orders delivered by anyone else are left alone.
        """

    @abstractmethod
    def create_settlement(
        self,
        settlement_id: str,
        driver_id: int,
        settlement_date: date,
        order_ids: Iterable[str],
        submitted_at: datetime,
    ) -> Optional[tuple[Settlement, list[str]]]:
        """Snapshot the claimable orders and submit them in one unit of work.

        Returns the new settlement and the claimed order ids, or None
        when none of ``order_ids`` is claimable.
        """

    @abstractmethod
    def get_settlement(self, settlement_id: str) -> Optional[Settlement]:
        """Find a settlement by id."""

    @abstractmethod
    def find_settlements(
        self,
        filters: Optional[SettlementFilters] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> list[Settlement]:
        """Filtered settlements, newest first."""

    @abstractmethod
    def verify_settlement(
        self,
        settlement_id: str,
        verified_by: str,
        notes: Optional[str],
        verified_at: datetime,
    ) -> Optional[Settlement]:
        """submitted -> verified, member orders -> settled; None if not submitted."""

    @abstractmethod
    def mark_settlement_transferred(
        self,
        settlement_id: str,
        transfer_reference: str,
        transferred_at: datetime,
    ) -> Optional[Settlement]:
        """verified -> transferred; None if not verified."""

    @abstractmethod
    def find_delivered_orders(
        self,
        on: Optional[date] = None,
        driver_id: Optional[int] = None,
    ) -> list[Order]:
        """Delivered orders, optionally only those delivered on ``on``."""

    def find_unsettled_orders(
        self, driver_id: int, on: Optional[date] = None
    ) -> list[Order]:
        """Delivered COD orders of a driver whose cash is not yet submitted."""
        return [
            order
            for order in self.find_delivered_orders(on=on, driver_id=driver_id)
            if order.cod_amount > 0 and order.cod_status in CLAIMABLE_COD_STATUSES
        ]
