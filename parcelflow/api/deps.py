"""Service wiring shared by the API routes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from parcelflow.core.config import Settings
from parcelflow.core.locks import KeyedLock
from parcelflow.core.logging import get_logger
from parcelflow.services.ingestion.engine import NormalizationEngine
from parcelflow.services.ingestion.service import OrderIngestionService
from parcelflow.services.notifications.port import (
    BackgroundNotifier,
    NotificationPort,
    NullNotifier,
)
from parcelflow.services.notifications.whatsapp import WhatsAppSender
from parcelflow.services.orders.fallback import (
    FallbackOrderRepository,
    build_repository,
)
from parcelflow.services.orders.lifecycle import OrderLifecycleManager
from parcelflow.services.orders.memory_repository import InMemoryOrderRepository
from parcelflow.services.orders.repository import OrderRepository
from parcelflow.services.settlement.engine import SettlementEngine

logger = get_logger(__name__)


@dataclass
class Services:
    """Everything a request handler may need, built once per process."""

    repository: OrderRepository
    notifier: NotificationPort
    ingestion: OrderIngestionService
    lifecycle: OrderLifecycleManager
    settlement: SettlementEngine

    def notification_status(self) -> str:
        return "queued" if self.notifier.enabled else "disabled"

    def storage_status(self) -> str:
        """``database``, ``memory`` or ``degraded`` (database lost, now memory)."""
        if isinstance(self.repository, FallbackOrderRepository):
            return "degraded" if self.repository.degraded else "database"
        if isinstance(self.repository, InMemoryOrderRepository):
            return "memory"
        return "database"


def build_notifier(config: Settings) -> NotificationPort:
    if not config.notifications_enabled:
        logger.info("Customer notifications disabled")
        return NullNotifier()
    logger.info(
        "Customer notifications enabled (WhatsApp, dry_run=%s, workers=%d)",
        config.whatsapp_dry_run,
        config.notification_workers,
    )
    return BackgroundNotifier(
        WhatsAppSender(config),
        workers=config.notification_workers,
    )


def build_services(
    config: Settings,
    repository: Optional[OrderRepository] = None,
    notifier: Optional[NotificationPort] = None,
) -> Services:
    repository = repository or build_repository(config)
    notifier = notifier or build_notifier(config)
    return Services(
        repository=repository,
        notifier=notifier,
        ingestion=OrderIngestionService(
            NormalizationEngine(order_id_prefix=config.order_id_prefix),
            repository,
            notifier,
        ),
        lifecycle=OrderLifecycleManager(
            repository,
            notifier,
            locks=KeyedLock(),
            reject_repeat_confirmation=config.reject_repeat_delivery_confirmation,
            default_eta_minutes=config.default_eta_minutes,
        ),
        settlement=SettlementEngine(repository),
    )


def get_services(request: Request) -> Services:
    """Dependency returning the process-wide ``Services``."""
    return request.app.state.services
