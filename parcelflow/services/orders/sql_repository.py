"""SQLAlchemy-backed repository.

Status changes are conditional UPDATEs (``WHERE status IN (...)``) so two
writers racing on the same order cannot both win, whatever the number of
API processes.  Duplicate webhooks are stopped by the
``uq_orders_external_source`` unique constraint.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Collection, Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from parcelflow.core.database import utcnow
from parcelflow.core.logging import get_logger
from parcelflow.models.enums import CodStatus, OrderStatus, SettlementStatus
from parcelflow.models.order import OrderRecord, StatusChangeRecord
from parcelflow.models.settlement import SettlementRecord
from parcelflow.schemas.order import Order, OrderFilters, StatusChange
from parcelflow.schemas.settlement import Settlement, SettlementFilters
from parcelflow.services.orders.repository import (
    CLAIMABLE_COD_STATUSES,
    OrderRepository,
    cod_status_for_amount,
)

logger = get_logger(__name__)

# Attempts at claiming orders before giving up to a concurrent settlement
CLAIM_ATTEMPTS = 3

_CLAIMABLE = [status.value for status in CLAIMABLE_COD_STATUSES]


def _column_values(values: dict[str, Any]) -> dict[str, Any]:
    """Enum members are stored as their plain string values."""
    return {k: v.value if isinstance(v, Enum) else v for k, v in values.items()}


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


class _ClaimConflict(Exception):
    """Another writer claimed one of our orders between SELECT and UPDATE."""


class SqlOrderRepository(OrderRepository):
    """Repository over any SQLAlchemy-supported database."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    # ── Orders ───────────────────────────────────────────────────────

    def create(self, order: Order) -> Order:
        existing = self.find_by_external_id(
            order.external_order_id, order.aggregator_source
        )
        if existing is not None:
            logger.info(
                "Duplicate order %s from %s, returning %s",
                order.external_order_id,
                order.aggregator_source,
                existing.internal_order_id,
            )
            return existing

        try:
            with self.session_factory() as session, session.begin():
                session.add(OrderRecord(**_column_values(order.model_dump())))
                session.add(
                    StatusChangeRecord(
                        order_id=order.internal_order_id,
                        status=order.status.value,
                        notes="Order received",
                        created_at=order.created_at,
                    )
                )
        except IntegrityError:
            # Lost the race against a concurrent delivery of the same webhook
            existing = self.find_by_external_id(
                order.external_order_id, order.aggregator_source
            )
            if existing is None:
                raise
            logger.info(
                "Concurrent duplicate %s from %s resolved to %s",
                order.external_order_id,
                order.aggregator_source,
                existing.internal_order_id,
            )
            return existing

        logger.debug("Stored order %s", order.internal_order_id)
        return order.model_copy(deep=True)

    def get(self, order_id: str) -> Optional[Order]:
        with self.session_factory() as session:
            record = session.get(OrderRecord, order_id)
            return Order.model_validate(record) if record else None

    def find_by_external_id(
        self, external_order_id: str, source: str
    ) -> Optional[Order]:
        with self.session_factory() as session:
            record = (
                session.query(OrderRecord)
                .filter(
                    OrderRecord.external_order_id == external_order_id,
                    OrderRecord.aggregator_source == source.lower(),
                )
                .first()
            )
            return Order.model_validate(record) if record else None

    def find_all(
        self,
        filters: Optional[OrderFilters] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> list[Order]:
        filters = filters or OrderFilters()
        with self.session_factory() as session:
            query = session.query(OrderRecord)
            if filters.status is not None:
                query = query.filter(OrderRecord.status == filters.status.value)
            if filters.source:
                query = query.filter(
                    OrderRecord.aggregator_source == filters.source.lower()
                )
            if filters.is_overflow is not None:
                query = query.filter(OrderRecord.is_overflow == filters.is_overflow)
            if filters.merchant_id is not None:
                query = query.filter(OrderRecord.merchant_id == filters.merchant_id)
            if filters.driver_id is not None:
                query = query.filter(OrderRecord.driver_id == filters.driver_id)
            if filters.date_from is not None:
                query = query.filter(OrderRecord.created_at >= filters.date_from)
            if filters.date_to is not None:
                query = query.filter(OrderRecord.created_at <= filters.date_to)

            query = query.order_by(OrderRecord.created_at.desc()).offset(offset)
            if limit is not None:
                query = query.limit(limit)
            return [Order.model_validate(r) for r in query.all()]

    def transition(
        self,
        order_id: str,
        expected: Collection[OrderStatus],
        changes: dict[str, Any],
        note: Optional[str] = None,
    ) -> Optional[Order]:
        now = utcnow()
        with self.session_factory() as session, session.begin():
            affected = (
                session.query(OrderRecord)
                .filter(
                    OrderRecord.internal_order_id == order_id,
                    OrderRecord.status.in_([s.value for s in expected]),
                )
                .update(
                    _column_values({**changes, "updated_at": now}),
                    synchronize_session=False,
                )
            )
            if affected == 0:
                return None
            if "status" in changes:
                session.add(
                    StatusChangeRecord(
                        order_id=order_id,
                        status=OrderStatus(changes["status"]).value,
                        notes=note,
                        created_at=now,
                    )
                )
        return self.get(order_id)

    def update_cod_amount(self, order_id: str, amount: Decimal) -> Optional[Order]:
        with self.session_factory() as session, session.begin():
            record = session.get(OrderRecord, order_id)
            if record is None:
                return None
            record.cod_amount = amount
            record.cod_status = cod_status_for_amount(
                CodStatus(record.cod_status), amount
            ).value
            record.updated_at = utcnow()
        return self.get(order_id)

    def list_history(self, order_id: str) -> list[StatusChange]:
        with self.session_factory() as session:
            records = (
                session.query(StatusChangeRecord)
                .filter(StatusChangeRecord.order_id == order_id)
                .order_by(StatusChangeRecord.created_at, StatusChangeRecord.id)
                .all()
            )
            return [StatusChange.model_validate(r) for r in records]

    # ── COD / settlements ────────────────────────────────────────────

    def mark_orders_collected(
        self, order_ids: Iterable[str], driver_id: Optional[int] = None
    ) -> int:
        ids = list(set(order_ids))
        if not ids:
            return 0
        with self.session_factory() as session, session.begin():
            query = session.query(OrderRecord).filter(
                OrderRecord.internal_order_id.in_(ids),
                OrderRecord.status == OrderStatus.DELIVERED.value,
                OrderRecord.cod_amount > 0,
                OrderRecord.cod_status == CodStatus.PENDING.value,
            )
            if driver_id is not None:
                query = query.filter(OrderRecord.driver_id == driver_id)
            return query.update(
                {
                    "cod_status": CodStatus.COLLECTED.value,
                    "updated_at": utcnow(),
                },
                synchronize_session=False,
            )

    def create_settlement(
        self,
        settlement_id: str,
        driver_id: int,
        settlement_date: date,
        order_ids: Iterable[str],
        submitted_at: datetime,
    ) -> Optional[tuple[Settlement, list[str]]]:
        ids = list(dict.fromkeys(order_ids))
        for attempt in range(1, CLAIM_ATTEMPTS + 1):
            try:
                return self._claim_and_submit(
                    settlement_id, driver_id, settlement_date, ids, submitted_at
                )
            except _ClaimConflict:
                logger.warning(
                    "Settlement %s lost a claim race (attempt %d/%d)",
                    settlement_id,
                    attempt,
                    CLAIM_ATTEMPTS,
                )
        return None

    def _claim_and_submit(
        self,
        settlement_id: str,
        driver_id: int,
        settlement_date: date,
        ids: list[str],
        submitted_at: datetime,
    ) -> Optional[tuple[Settlement, list[str]]]:
        with self.session_factory() as session, session.begin():
            candidates = (
                self._claimable_query(session, driver_id)
                .filter(OrderRecord.internal_order_id.in_(ids))
                .with_for_update()
                .all()
            )
            if not candidates:
                return None

            claimed = [r.internal_order_id for r in candidates]
            total = sum((Decimal(r.cod_amount) for r in candidates), Decimal("0"))

            affected = (
                self._claimable_query(session, driver_id)
                .filter(OrderRecord.internal_order_id.in_(claimed))
                .update(
                    {
                        "cod_status": CodStatus.SUBMITTED.value,
                        "settlement_id": settlement_id,
                        "updated_at": submitted_at,
                    },
                    synchronize_session=False,
                )
            )
            if affected != len(claimed):
                raise _ClaimConflict()

            record = SettlementRecord(
                settlement_id=settlement_id,
                driver_id=driver_id,
                settlement_date=settlement_date,
                total_orders=len(claimed),
                total_cod_amount=total,
                status=SettlementStatus.SUBMITTED.value,
                submitted_at=submitted_at,
                created_at=submitted_at,
            )
            session.add(record)
            session.flush()
            settlement = Settlement.model_validate(record)

        # keep the caller's order, not the database's
        order_index = {order_id: i for i, order_id in enumerate(ids)}
        claimed.sort(key=order_index.__getitem__)
        return settlement, claimed

    @staticmethod
    def _claimable_query(session: Session, driver_id: int):
        return session.query(OrderRecord).filter(
            OrderRecord.status == OrderStatus.DELIVERED.value,
            OrderRecord.cod_amount > 0,
            OrderRecord.driver_id == driver_id,
            OrderRecord.cod_status.in_(_CLAIMABLE),
        )

    def get_settlement(self, settlement_id: str) -> Optional[Settlement]:
        with self.session_factory() as session:
            record = session.get(SettlementRecord, settlement_id)
            return Settlement.model_validate(record) if record else None

    def find_settlements(
        self,
        filters: Optional[SettlementFilters] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> list[Settlement]:
        filters = filters or SettlementFilters()
        with self.session_factory() as session:
            query = session.query(SettlementRecord)
            if filters.driver_id is not None:
                query = query.filter(SettlementRecord.driver_id == filters.driver_id)
            if filters.status is not None:
                query = query.filter(SettlementRecord.status == filters.status.value)
            if filters.date_from is not None:
                query = query.filter(
                    SettlementRecord.settlement_date >= filters.date_from
                )
            if filters.date_to is not None:
                query = query.filter(SettlementRecord.settlement_date <= filters.date_to)

            query = query.order_by(SettlementRecord.created_at.desc()).offset(offset)
            if limit is not None:
                query = query.limit(limit)
            return [Settlement.model_validate(r) for r in query.all()]

    def verify_settlement(
        self,
        settlement_id: str,
        verified_by: str,
        notes: Optional[str],
        verified_at: datetime,
    ) -> Optional[Settlement]:
        values: dict[str, Any] = {
            "status": SettlementStatus.VERIFIED.value,
            "verified_by": verified_by,
            "verified_at": verified_at,
        }
        if notes is not None:
            values["notes"] = notes

        with self.session_factory() as session, session.begin():
            affected = (
                session.query(SettlementRecord)
                .filter(
                    SettlementRecord.settlement_id == settlement_id,
                    SettlementRecord.status == SettlementStatus.SUBMITTED.value,
                )
                .update(values, synchronize_session=False)
            )
            if affected == 0:
                return None
            session.query(OrderRecord).filter(
                OrderRecord.settlement_id == settlement_id
            ).update(
                {"cod_status": CodStatus.SETTLED.value, "updated_at": verified_at},
                synchronize_session=False,
            )
        return self.get_settlement(settlement_id)

    def mark_settlement_transferred(
        self,
        settlement_id: str,
        transfer_reference: str,
        transferred_at: datetime,
    ) -> Optional[Settlement]:
        with self.session_factory() as session, session.begin():
            affected = (
                session.query(SettlementRecord)
                .filter(
                    SettlementRecord.settlement_id == settlement_id,
                    SettlementRecord.status == SettlementStatus.VERIFIED.value,
                )
                .update(
                    {
                        "status": SettlementStatus.TRANSFERRED.value,
                        "transfer_reference": transfer_reference,
                        "transferred_at": transferred_at,
                    },
                    synchronize_session=False,
                )
            )
            if affected == 0:
                return None
        return self.get_settlement(settlement_id)

    def find_delivered_orders(
        self,
        on: Optional[date] = None,
        driver_id: Optional[int] = None,
    ) -> list[Order]:
        with self.session_factory() as session:
            query = session.query(OrderRecord).filter(
                OrderRecord.status == OrderStatus.DELIVERED.value
            )
            if driver_id is not None:
                query = query.filter(OrderRecord.driver_id == driver_id)
            if on is not None:
                start, end = _day_bounds(on)
                query = query.filter(
                    OrderRecord.delivered_at >= start,
                    OrderRecord.delivered_at < end,
                )
            records = query.order_by(OrderRecord.delivered_at.desc()).all()
            return [Order.model_validate(r) for r in records]
