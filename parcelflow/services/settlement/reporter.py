"""COD custody reporting.

Splits delivered orders into the four cod_status buckets so finance can
see, per driver and in total, how much cash is still with drivers, how
much was handed over and how much has been verified.  Amounts stay
exact ``Decimal`` sums; rounding happens when a report is serialized.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from parcelflow.core.logging import get_logger
from parcelflow.schemas.order import Order
from parcelflow.schemas.settlement import (
    CodBreakdown,
    CodStats,
    DailyReconciliationReport,
    DriverReconciliation,
)

logger = get_logger(__name__)


def add_delivery(breakdown: CodBreakdown, order: Order) -> None:
    """Count one delivered order into ``breakdown``."""
    breakdown.total_deliveries += 1
    if order.cod_amount <= 0:
        return
    breakdown.cod_deliveries += 1
    breakdown.total_cod_amount += order.cod_amount

    bucket = breakdown.buckets.get(order.cod_status)
    if bucket is None:
        # cod_status "none" with a positive amount: corrected after delivery
        logger.warning(
            "Order %s has COD %s but cod_status %s",
            order.internal_order_id,
            order.cod_amount,
            order.cod_status.value,
        )
        return
    bucket.count += 1
    bucket.amount += order.cod_amount


class CodReporter:
    """Builds reconciliation views from delivered orders."""

    def daily_report(
        self, on: date, delivered: Iterable[Order]
    ) -> DailyReconciliationReport:
        """Per-driver and total breakdown of the orders delivered on ``on``.

        Drivers are listed by id; orders without a driver are grouped
        under ``driver_id=None`` at the end.
        """
        by_driver: dict[Optional[int], DriverReconciliation] = {}
        totals = CodBreakdown()

        for order in delivered:
            row = by_driver.get(order.driver_id)
            if row is None:
                row = by_driver[order.driver_id] = DriverReconciliation(
                    driver_id=order.driver_id
                )
            add_delivery(row, order)
            add_delivery(totals, order)

        rows = sorted(
            by_driver.values(),
            key=lambda r: (r.driver_id is None, r.driver_id or 0),
        )
        logger.info(
            "Daily reconciliation %s: %d drivers, %d deliveries, COD %s",
            on,
            len(rows),
            totals.total_deliveries,
            totals.total_cod_amount,
        )
        return DailyReconciliationReport(date=on, by_driver=rows, totals=totals)

    def cod_stats(self, delivered: Iterable[Order]) -> CodStats:
        """Global buckets over every delivered COD order."""
        stats = CodStats()
        for order in delivered:
            if order.cod_amount > 0:
                add_delivery(stats, order)
        return stats

    @staticmethod
    def total(orders: Iterable[Order]) -> Decimal:
        return sum((o.cod_amount for o in orders), Decimal("0"))
