"""COD finance endpoints: collection, settlements and reconciliation views."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from parcelflow.api.deps import Services, get_services
from parcelflow.core.logging import get_logger
from parcelflow.models.enums import SettlementStatus
from parcelflow.schemas.settlement import (
    CodStats,
    DailyReconciliationReport,
    DriverUnsettledOrders,
    MarkCollectedRequest,
    Settlement,
    SettlementFilters,
    SettlementResult,
    SubmitSettlementRequest,
    TransferSettlementRequest,
    VerifySettlementRequest,
)

logger = get_logger(__name__)

router = APIRouter()


@router.get("/reconciliation", response_model=DailyReconciliationReport)
def daily_reconciliation(
    date: Optional[date] = Query(None, description="Delivery date, defaults to today"),
    services: Services = Depends(get_services),
) -> DailyReconciliationReport:
    """Per-driver COD breakdown of the orders delivered on ``date``."""
    return services.settlement.get_daily_reconciliation_report(date)


@router.get("/stats", response_model=CodStats)
def cod_stats(services: Services = Depends(get_services)) -> CodStats:
    return services.settlement.get_cod_stats()


@router.get("/drivers/{driver_id}/unsettled", response_model=DriverUnsettledOrders)
def driver_unsettled_orders(
    driver_id: int,
    date: Optional[date] = Query(None, description="Only orders delivered that day"),
    services: Services = Depends(get_services),
) -> DriverUnsettledOrders:
    return services.settlement.get_unsettled_orders(driver_id, date)


@router.post("/collections")
def mark_collected(
    body: MarkCollectedRequest,
    services: Services = Depends(get_services),
) -> dict:
    affected = services.settlement.mark_orders_collected(
        body.order_ids, body.driver_id
    )
    return {"requested": len(body.order_ids), "collected": affected}


@router.get("/settlements", response_model=list[Settlement])
def list_settlements(
    driver_id: Optional[int] = Query(None),
    status: Optional[SettlementStatus] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
) -> list[Settlement]:
    filters = SettlementFilters(
        driver_id=driver_id, status=status, date_from=date_from, date_to=date_to
    )
    return services.settlement.list_settlements(filters, limit=limit, offset=offset)


@router.get("/settlements/{settlement_id}", response_model=Settlement)
def get_settlement(
    settlement_id: str, services: Services = Depends(get_services)
) -> Settlement:
    return services.settlement.get_settlement(settlement_id)


@router.post(
    "/settlements",
    response_model=SettlementResult,
    status_code=201,
)
def submit_settlement(
    body: SubmitSettlementRequest,
    services: Services = Depends(get_services),
) -> SettlementResult:
    """Driver hands over the cash for the listed orders."""
    return services.settlement.submit_settlement(
        body.driver_id, body.date, body.order_ids
    )


@router.post("/settlements/{settlement_id}/verify", response_model=Settlement)
def verify_settlement(
    settlement_id: str,
    body: VerifySettlementRequest,
    services: Services = Depends(get_services),
) -> Settlement:
    return services.settlement.verify_settlement(
        settlement_id, body.verified_by, body.notes
    )


@router.post("/settlements/{settlement_id}/transfer", response_model=Settlement)
def transfer_settlement(
    settlement_id: str,
    body: TransferSettlementRequest,
    services: Services = Depends(get_services),
) -> Settlement:
    return services.settlement.mark_settlement_transferred(
        settlement_id, body.transfer_reference
    )
