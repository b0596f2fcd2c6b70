"""Process-local repository used when no durable store is configured or reachable."""

from __future__ import annotations

import threading
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Collection, Iterable, Optional

from parcelflow.core.database import utcnow
from parcelflow.core.exceptions import StorageUnavailableError
from parcelflow.core.logging import get_logger
from parcelflow.models.enums import CodStatus, OrderStatus, SettlementStatus
from parcelflow.schemas.order import Order, OrderFilters, StatusChange
from parcelflow.schemas.settlement import Settlement, SettlementFilters
from parcelflow.services.orders.repository import (
    OrderRepository,
    cod_status_for_amount,
    is_claimable,
    is_collectable,
)

logger = get_logger(__name__)


class InMemoryOrderRepository(OrderRepository):
    """Dict-backed repository with the same contract as the SQL one.

    A single re-entrant lock guards all state, which makes every method,
    including the multi-row settlement ones, atomic.  Records are copied
    on the way in and out so callers can never mutate stored state.
    The store is bounded by ``capacity`` orders.
    """

    def __init__(self, capacity: int = 100_000) -> None:
        self.capacity = capacity
        self._lock = threading.RLock()
        self._orders: dict[str, Order] = {}
        self._natural_keys: dict[tuple[str, str], str] = {}
        self._history: dict[str, list[StatusChange]] = {}
        self._settlements: dict[str, Settlement] = {}

    # ── Orders ───────────────────────────────────────────────────────

    def create(self, order: Order) -> Order:
        key = (order.external_order_id, order.aggregator_source)
        with self._lock:
            existing_id = self._natural_keys.get(key)
            if existing_id is not None:
                logger.info(
                    "Duplicate order %s from %s, returning %s",
                    order.external_order_id,
                    order.aggregator_source,
                    existing_id,
                )
                return self._orders[existing_id].model_copy(deep=True)

            if len(self._orders) >= self.capacity:
                raise StorageUnavailableError(
                    f"In-memory order store is full ({self.capacity} orders)"
                )

            stored = order.model_copy(deep=True)
            self._orders[stored.internal_order_id] = stored
            self._natural_keys[key] = stored.internal_order_id
            self._history[stored.internal_order_id] = [
                StatusChange(
                    order_id=stored.internal_order_id,
                    status=stored.status,
                    notes="Order received",
                    created_at=stored.created_at,
                )
            ]
            logger.debug("Stored order %s in memory", stored.internal_order_id)
            return stored.model_copy(deep=True)

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return order.model_copy(deep=True) if order else None

    def find_by_external_id(
        self, external_order_id: str, source: str
    ) -> Optional[Order]:
        with self._lock:
            order_id = self._natural_keys.get((external_order_id, source.lower()))
            return self.get(order_id) if order_id else None

    def find_all(
        self,
        filters: Optional[OrderFilters] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> list[Order]:
        filters = filters or OrderFilters()
        with self._lock:
            matched = [o for o in self._orders.values() if filters.matches(o)]
            matched.sort(key=lambda o: o.created_at, reverse=True)
            end = None if limit is None else offset + limit
            return [o.model_copy(deep=True) for o in matched[offset:end]]

    def transition(
        self,
        order_id: str,
        expected: Collection[OrderStatus],
        changes: dict[str, Any],
        note: Optional[str] = None,
    ) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.status not in expected:
                return None
            now = utcnow()
            updated = order.model_copy(update={**changes, "updated_at": now})
            self._orders[order_id] = updated
            if "status" in changes:
                self._history.setdefault(order_id, []).append(
                    StatusChange(
                        order_id=order_id,
                        status=changes["status"],
                        notes=note,
                        created_at=now,
                    )
                )
            return updated.model_copy(deep=True)

    def update_cod_amount(self, order_id: str, amount: Decimal) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                return None
            updated = order.model_copy(
                update={
                    "cod_amount": amount,
                    "cod_status": cod_status_for_amount(order.cod_status, amount),
                    "updated_at": utcnow(),
                }
            )
            self._orders[order_id] = updated
            return updated.model_copy(deep=True)

    def list_history(self, order_id: str) -> list[StatusChange]:
        with self._lock:
            return [h.model_copy() for h in self._history.get(order_id, [])]

    # ── COD / settlements ────────────────────────────────────────────

    def mark_orders_collected(
        self, order_ids: Iterable[str], driver_id: Optional[int] = None
    ) -> int:
        affected = 0
        with self._lock:
            now = utcnow()
            for order_id in set(order_ids):
                order = self._orders.get(order_id)
                if order is not None and is_collectable(order, driver_id):
                    self._orders[order_id] = order.model_copy(
                        update={"cod_status": CodStatus.COLLECTED, "updated_at": now}
                    )
                    affected += 1
        return affected

    def create_settlement(
        self,
        settlement_id: str,
        driver_id: int,
        settlement_date: date,
        order_ids: Iterable[str],
        submitted_at: datetime,
    ) -> Optional[tuple[Settlement, list[str]]]:
        with self._lock:
            claimed = [
                self._orders[order_id]
                for order_id in dict.fromkeys(order_ids)
                if order_id in self._orders
                and is_claimable(self._orders[order_id], driver_id)
            ]
            if not claimed:
                return None

            settlement = Settlement(
                settlement_id=settlement_id,
                driver_id=driver_id,
                settlement_date=settlement_date,
                total_orders=len(claimed),
                total_cod_amount=sum((o.cod_amount for o in claimed), Decimal("0")),
                status=SettlementStatus.SUBMITTED,
                submitted_at=submitted_at,
                created_at=submitted_at,
            )
            self._settlements[settlement_id] = settlement
            for order in claimed:
                self._orders[order.internal_order_id] = order.model_copy(
                    update={
                        "cod_status": CodStatus.SUBMITTED,
                        "settlement_id": settlement_id,
                        "updated_at": submitted_at,
                    }
                )
            return settlement.model_copy(), [o.internal_order_id for o in claimed]

    def get_settlement(self, settlement_id: str) -> Optional[Settlement]:
        with self._lock:
            settlement = self._settlements.get(settlement_id)
            return settlement.model_copy() if settlement else None

    def find_settlements(
        self,
        filters: Optional[SettlementFilters] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> list[Settlement]:
        filters = filters or SettlementFilters()
        with self._lock:
            matched = [s for s in self._settlements.values() if filters.matches(s)]
            matched.sort(key=lambda s: s.created_at, reverse=True)
            end = None if limit is None else offset + limit
            return [s.model_copy() for s in matched[offset:end]]

    def verify_settlement(
        self,
        settlement_id: str,
        verified_by: str,
        notes: Optional[str],
        verified_at: datetime,
    ) -> Optional[Settlement]:
        with self._lock:
            settlement = self._settlements.get(settlement_id)
            if settlement is None or settlement.status != SettlementStatus.SUBMITTED:
                return None
            updated = settlement.model_copy(
                update={
                    "status": SettlementStatus.VERIFIED,
                    "verified_by": verified_by,
                    "verified_at": verified_at,
                    "notes": notes if notes is not None else settlement.notes,
                }
            )
            self._settlements[settlement_id] = updated
            for order_id, order in list(self._orders.items()):
                if order.settlement_id == settlement_id:
                    self._orders[order_id] = order.model_copy(
                        update={"cod_status": CodStatus.SETTLED, "updated_at": verified_at}
                    )
            return updated.model_copy()

    def mark_settlement_transferred(
        self,
        settlement_id: str,
        transfer_reference: str,
        transferred_at: datetime,
    ) -> Optional[Settlement]:
        with self._lock:
            settlement = self._settlements.get(settlement_id)
            if settlement is None or settlement.status != SettlementStatus.VERIFIED:
                return None
            updated = settlement.model_copy(
                update={
                    "status": SettlementStatus.TRANSFERRED,
                    "transfer_reference": transfer_reference,
                    "transferred_at": transferred_at,
                }
            )
            self._settlements[settlement_id] = updated
            return updated.model_copy()

    def find_delivered_orders(
        self,
        on: Optional[date] = None,
        driver_id: Optional[int] = None,
    ) -> list[Order]:
        with self._lock:
            result = []
            for order in self._orders.values():
                if order.status != OrderStatus.DELIVERED:
                    continue
                if driver_id is not None and order.driver_id != driver_id:
                    continue
                if on is not None and (
                    order.delivered_at is None or order.delivered_at.date() != on
                ):
                    continue
                result.append(order.model_copy(deep=True))
            result.sort(key=lambda o: o.delivered_at or o.updated_at, reverse=True)
            return result
