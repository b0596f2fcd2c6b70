"""Settlement reconciliation engine.

Follows the cash a driver collects on delivery until it reaches the
merchant:

    order.cod_status:   pending --collect--> collected --submit--> submitted --verify--> settled
    settlement.status:  submitted --verify--> verified --transfer--> transferred

A settlement snapshots the count and sum of the orders it claims at
submission.  Later corrections to an order's COD amount never change a
settlement's totals; the settlement is the audit record of what the
driver declared.
"""

from __future__ import annotations

import secrets
from datetime import date, datetime
from typing import Callable, Iterable, Optional

from parcelflow.core.database import utcnow
from parcelflow.core.exceptions import InvalidTransitionError, NotFoundError
from parcelflow.core.logging import get_logger
from parcelflow.models.enums import SettlementStatus
from parcelflow.schemas.settlement import (
    CodStats,
    DailyReconciliationReport,
    DriverUnsettledOrders,
    Settlement,
    SettlementFilters,
    SettlementResult,
)
from parcelflow.services.orders.repository import OrderRepository
from parcelflow.services.settlement.reporter import CodReporter

logger = get_logger(__name__)

SETTLEMENT_SUFFIX_BYTES = 2


def generate_settlement_id(driver_id: int, settlement_date: date) -> str:
    """``SET-<YYYYMMDD>-D<driver>-<4 hex>``, e.g. ``SET-20260205-D3-9F2A``."""
    suffix = secrets.token_hex(SETTLEMENT_SUFFIX_BYTES).upper()
    return f"SET-{settlement_date:%Y%m%d}-D{driver_id}-{suffix}"


class SettlementEngine:
    """COD collection, settlement workflow and reconciliation reports."""

    def __init__(
        self,
        repository: OrderRepository,
        reporter: Optional[CodReporter] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.reporter = reporter or CodReporter()
        self.clock = clock

    # ── Collection & submission ──────────────────────────────────────

    def mark_orders_collected(
        self, order_ids: Iterable[str], driver_id: Optional[int] = None
    ) -> int:
        """pending -> collected; orders not eligible are silently skipped.

        ``driver_id`` limits collection to orders that driver delivered.
        """
        ids = list(order_ids)
        affected = self.repository.mark_orders_collected(ids, driver_id)
        logger.info("Marked %d of %d orders as COD collected", affected, len(ids))
        return affected

    def create_settlement(
        self,
        driver_id: int,
        settlement_date: Optional[date],
        order_ids: Iterable[str],
    ) -> SettlementResult:
        """Submit a driver's cash hand-over for the named orders.

        Only delivered COD orders of ``driver_id`` still pending or
        collected are claimed; the rest are reported back as skipped.

        Raises:
            InvalidTransitionError: None of ``order_ids`` could be claimed.
        """
        ids = list(dict.fromkeys(order_ids))
        now = self.clock()
        settlement_date = settlement_date or now.date()
        settlement_id = generate_settlement_id(driver_id, settlement_date)

        outcome = self.repository.create_settlement(
            settlement_id, driver_id, settlement_date, ids, now
        )
        if outcome is None:
            raise InvalidTransitionError(
                f"No eligible COD orders for driver {driver_id} among {len(ids)} "
                "requested (must be delivered, carry COD, belong to the driver "
                "and not be submitted yet)"
            )

        settlement, claimed = outcome
        claimed_set = set(claimed)
        skipped = [order_id for order_id in ids if order_id not in claimed_set]
        if skipped:
            logger.warning(
                "Settlement %s skipped %d of %d orders: %s",
                settlement_id,
                len(skipped),
                len(ids),
                ", ".join(skipped),
            )
        logger.info(
            "Settlement %s submitted: driver=%s orders=%d total=%s",
            settlement.settlement_id,
            driver_id,
            settlement.total_orders,
            settlement.total_cod_amount,
        )
        return SettlementResult(
            settlement=settlement,
            claimed_order_ids=claimed,
            skipped_order_ids=skipped,
        )

    def submit_settlement(
        self,
        driver_id: int,
        settlement_date: Optional[date],
        order_ids: Iterable[str],
    ) -> SettlementResult:
        """Driver hand-over in one call: collect this driver's cash, then settle it."""
        ids = list(order_ids)
        self.mark_orders_collected(ids, driver_id)
        return self.create_settlement(driver_id, settlement_date, ids)

    # ── Verification & transfer ──────────────────────────────────────

    def verify_settlement(
        self,
        settlement_id: str,
        verified_by: str,
        notes: Optional[str] = None,
    ) -> Settlement:
        """submitted -> verified; member orders become ``settled``."""
        self._require_status(settlement_id, SettlementStatus.SUBMITTED, "verify")
        verified = self.repository.verify_settlement(
            settlement_id, verified_by, notes, self.clock()
        )
        verified = self._check_applied(
            verified, settlement_id, SettlementStatus.SUBMITTED
        )
        logger.info("Settlement %s verified by %s", settlement_id, verified_by)
        return verified

    def mark_settlement_transferred(
        self, settlement_id: str, transfer_reference: str
    ) -> Settlement:
        """verified -> transferred, stamping the bank reference."""
        self._require_status(settlement_id, SettlementStatus.VERIFIED, "transfer")
        transferred = self.repository.mark_settlement_transferred(
            settlement_id, transfer_reference, self.clock()
        )
        transferred = self._check_applied(
            transferred, settlement_id, SettlementStatus.VERIFIED
        )
        logger.info(
            "Settlement %s transferred (ref %s)", settlement_id, transfer_reference
        )
        return transferred

    # ── Queries ──────────────────────────────────────────────────────

    def get_settlement(self, settlement_id: str) -> Settlement:
        settlement = self.repository.get_settlement(settlement_id)
        if settlement is None:
            raise NotFoundError("Settlement", settlement_id)
        return settlement

    def list_settlements(
        self,
        filters: Optional[SettlementFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Settlement]:
        return self.repository.find_settlements(filters, limit=limit, offset=offset)

    def get_unsettled_orders(
        self, driver_id: int, on: Optional[date] = None
    ) -> DriverUnsettledOrders:
        """Delivered COD orders whose cash the driver has not handed over."""
        orders = self.repository.find_unsettled_orders(driver_id, on)
        return DriverUnsettledOrders(
            driver_id=driver_id,
            date=on,
            total_orders=len(orders),
            total_cod_amount=self.reporter.total(orders),
            orders=orders,
        )

    def get_daily_reconciliation_report(
        self, on: Optional[date] = None
    ) -> DailyReconciliationReport:
        on = on or self.clock().date()
        return self.reporter.daily_report(on, self.repository.find_delivered_orders(on))

    def get_cod_stats(self) -> CodStats:
        return self.reporter.cod_stats(self.repository.find_delivered_orders())

    # ── Internals ────────────────────────────────────────────────────

    def _require_status(
        self, settlement_id: str, expected: SettlementStatus, action: str
    ) -> Settlement:
        settlement = self.get_settlement(settlement_id)
        if settlement.status != expected:
            raise InvalidTransitionError(
                f"Cannot {action} settlement {settlement_id} "
                f"in status {settlement.status.value}",
                current=settlement.status.value,
                expected=[expected.value],
            )
        return settlement

    def _check_applied(
        self,
        updated: Optional[Settlement],
        settlement_id: str,
        expected: SettlementStatus,
    ) -> Settlement:
        if updated is not None:
            return updated
        current = self.get_settlement(settlement_id)
        raise InvalidTransitionError(
            f"Settlement {settlement_id} changed to {current.status.value} concurrently",
            current=current.status.value,
            expected=[expected.value],
        )
