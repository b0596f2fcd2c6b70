"""Order query and lifecycle endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from parcelflow.api.deps import Services, get_services
from parcelflow.core.logging import get_logger
from parcelflow.models.enums import OrderStatus
from parcelflow.schemas.order import (
    AssignDriverRequest,
    CancelOrderRequest,
    ConfirmDeliveryRequest,
    CorrectCodAmountRequest,
    Order,
    OrderFilters,
    OrderStats,
    StartTransitRequest,
    StatusChange,
    UpdateStatusRequest,
)

logger = get_logger(__name__)

router = APIRouter()


@router.get("", response_model=list[Order])
def list_orders(
    status: Optional[OrderStatus] = Query(None, description="Filter by status"),
    source: Optional[str] = Query(None, description="Filter by aggregator source"),
    is_overflow: Optional[bool] = Query(None),
    merchant_id: Optional[int] = Query(None),
    driver_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None, description="created_at >= (ISO 8601)"),
    date_to: Optional[datetime] = Query(None, description="created_at <= (ISO 8601)"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
) -> list[Order]:
    """List orders, newest first."""
    filters = OrderFilters(
        status=status,
        source=source,
        is_overflow=is_overflow,
        merchant_id=merchant_id,
        driver_id=driver_id,
        date_from=date_from,
        date_to=date_to,
    )
    orders = services.lifecycle.list_orders(filters, limit=limit, offset=offset)
    logger.info("Orders query: returned=%d limit=%d offset=%d", len(orders), limit, offset)
    return orders


@router.get("/stats", response_model=OrderStats)
def order_stats(services: Services = Depends(get_services)) -> OrderStats:
    return services.lifecycle.stats()


@router.get("/{order_id}", response_model=Order)
def get_order(order_id: str, services: Services = Depends(get_services)) -> Order:
    return services.lifecycle.get_order(order_id)


@router.get("/{order_id}/history", response_model=list[StatusChange])
def order_history(
    order_id: str, services: Services = Depends(get_services)
) -> list[StatusChange]:
    return services.lifecycle.history(order_id)


@router.post("/{order_id}/assign", response_model=Order)
def assign_driver(
    order_id: str,
    body: AssignDriverRequest,
    services: Services = Depends(get_services),
) -> Order:
    """Assign a driver; issues the OTP the recipient will read back."""
    return services.lifecycle.assign(
        order_id, body.driver_id, body.driver_name, body.driver_phone
    )


@router.post("/{order_id}/out-for-delivery", response_model=Order)
def start_transit(
    order_id: str,
    body: Optional[StartTransitRequest] = None,
    services: Services = Depends(get_services),
) -> Order:
    eta = body.eta_minutes if body else None
    return services.lifecycle.start_transit(order_id, eta)


@router.post("/{order_id}/delivered", response_model=Order)
def confirm_delivery(
    order_id: str,
    body: ConfirmDeliveryRequest,
    services: Services = Depends(get_services),
) -> Order:
    """Close the delivery; requires the recipient's OTP."""
    return services.lifecycle.confirm_delivery(
        order_id, body.otp_code, body.proof_of_delivery
    )


@router.post("/{order_id}/cancel", response_model=Order)
def cancel_order(
    order_id: str,
    body: Optional[CancelOrderRequest] = None,
    services: Services = Depends(get_services),
) -> Order:
    return services.lifecycle.cancel(order_id, body.reason if body else None)


@router.patch("/{order_id}/status", response_model=Order)
def update_status(
    order_id: str,
    body: UpdateStatusRequest,
    services: Services = Depends(get_services),
) -> Order:
    """Administrative status correction; cannot mark an order delivered."""
    return services.lifecycle.update_status(order_id, body.status, body.notes)


@router.patch("/{order_id}/cod-amount", response_model=Order)
def correct_cod_amount(
    order_id: str,
    body: CorrectCodAmountRequest,
    services: Services = Depends(get_services),
) -> Order:
    return services.lifecycle.correct_cod_amount(order_id, body.cod_amount)
