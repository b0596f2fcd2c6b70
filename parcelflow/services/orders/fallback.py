"""Repository wrapper that degrades to process memory when the database is gone."""

from __future__ import annotations

import threading
from typing import Optional

from sqlalchemy.exc import InterfaceError, OperationalError

from parcelflow.core.config import Settings
from parcelflow.core.database import Base, make_engine, make_session_factory
from parcelflow.core.logging import get_logger
from parcelflow.services.orders.memory_repository import InMemoryOrderRepository
from parcelflow.services.orders.repository import OrderRepository
from parcelflow.services.orders.sql_repository import SqlOrderRepository

logger = get_logger(__name__)

# Errors meaning "the store is unreachable", as opposed to a bad query
UNAVAILABLE_ERRORS = (OperationalError, InterfaceError)


class FallbackOrderRepository(OrderRepository):
    """Delegates to ``primary`` until it fails once, then to ``fallback`` for good.

    The switch is logged as a warning and never reversed within the
    process: going back would hide orders that were only written to
    memory in the meantime.
    """

    def __init__(
        self,
        primary: OrderRepository,
        fallback: Optional[OrderRepository] = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback or InMemoryOrderRepository()
        self._degraded = False
        self._lock = threading.Lock()

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def active(self) -> OrderRepository:
        return self.fallback if self._degraded else self.primary

    def _degrade(self, exc: Exception) -> None:
        with self._lock:
            if not self._degraded:
                logger.warning(
                    "Order store unavailable (%s); continuing with in-memory storage",
                    exc.__class__.__name__,
                )
                self._degraded = True

    def _call(self, method: str, *args, **kwargs):
        if not self._degraded:
            try:
                return getattr(self.primary, method)(*args, **kwargs)
            except UNAVAILABLE_ERRORS as exc:
                self._degrade(exc)
        return getattr(self.fallback, method)(*args, **kwargs)

    # ── Delegation ───────────────────────────────────────────────────

    def create(self, order):
        return self._call("create", order)

    def get(self, order_id):
        return self._call("get", order_id)

    def find_by_external_id(self, external_order_id, source):
        return self._call("find_by_external_id", external_order_id, source)

    def find_all(self, filters=None, limit=50, offset=0):
        return self._call("find_all", filters, limit, offset)

    def transition(self, order_id, expected, changes, note=None):
        return self._call("transition", order_id, expected, changes, note)

    def update_cod_amount(self, order_id, amount):
        return self._call("update_cod_amount", order_id, amount)

    def list_history(self, order_id):
        return self._call("list_history", order_id)

    def mark_orders_collected(self, order_ids, driver_id=None):
        return self._call("mark_orders_collected", list(order_ids), driver_id)

    def create_settlement(
        self, settlement_id, driver_id, settlement_date, order_ids, submitted_at
    ):
        return self._call(
            "create_settlement",
            settlement_id,
            driver_id,
            settlement_date,
            list(order_ids),
            submitted_at,
        )

    def get_settlement(self, settlement_id):
        return self._call("get_settlement", settlement_id)

    def find_settlements(self, filters=None, limit=50, offset=0):
        return self._call("find_settlements", filters, limit, offset)

    def verify_settlement(self, settlement_id, verified_by, notes, verified_at):
        return self._call(
            "verify_settlement", settlement_id, verified_by, notes, verified_at
        )

    def mark_settlement_transferred(
        self, settlement_id, transfer_reference, transferred_at
    ):
        return self._call(
            "mark_settlement_transferred",
            settlement_id,
            transfer_reference,
            transferred_at,
        )

    def find_delivered_orders(self, on=None, driver_id=None):
        return self._call("find_delivered_orders", on, driver_id)


def build_repository(config: Settings) -> OrderRepository:
    """Pick the repository for this process from configuration.

    ``use_in_memory_db`` skips the database entirely.  Otherwise the SQL
    repository is used behind the fallback wrapper; if the schema cannot
    even be created the process starts degraded.
    """
    memory = InMemoryOrderRepository(capacity=config.memory_store_capacity)
    if config.use_in_memory_db:
        logger.info("Using in-memory order store (use_in_memory_db=true)")
        return memory

    engine = make_engine(config.database_url)
    repository = FallbackOrderRepository(
        SqlOrderRepository(make_session_factory(engine)),
        memory,
    )
    try:
        Base.metadata.create_all(bind=engine)
    except UNAVAILABLE_ERRORS as exc:
        repository._degrade(exc)
    return repository
