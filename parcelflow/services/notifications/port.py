"""One-way notification port and its background dispatcher.

Services hand a ``NotificationMessage`` to ``publish`` and move on; they
never learn whether the customer was reached.  Delivery happens on a
small thread pool so a slow messaging API cannot hold up a webhook or a
driver action.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

from parcelflow.core.logging import get_logger
from parcelflow.models.enums import OrderStatus
from parcelflow.schemas.order import Order

logger = get_logger(__name__)


class NotificationTemplate(str, Enum):
    ORDER_CONFIRMATION = "ORDER_CONFIRMATION"
    DRIVER_ASSIGNED = "DRIVER_ASSIGNED"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERY_COMPLETED = "DELIVERY_COMPLETED"
    DELIVERY_FAILED = "DELIVERY_FAILED"


# Template sent when an order enters each status
STATUS_TEMPLATES = {
    OrderStatus.ASSIGNED: NotificationTemplate.DRIVER_ASSIGNED,
    OrderStatus.IN_TRANSIT: NotificationTemplate.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED: NotificationTemplate.DELIVERY_COMPLETED,
    OrderStatus.CANCELLED: NotificationTemplate.DELIVERY_FAILED,
}


@dataclass
class NotificationMessage:
    """What to tell the recipient of ``order``.

    Attributes:
        order: Snapshot of the order at the time of the event.
        template: Which customer message to send.
        params: Event details the order itself does not carry
            (driver name and phone, ETA, cancellation reason).
    """

    order: Order
    template: NotificationTemplate
    params: dict[str, Any] = field(default_factory=dict)


class NotificationPort(ABC):
    """Fire-and-forget sink for customer notifications."""

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    def publish(self, message: NotificationMessage) -> bool:
        """Hand off ``message``; returns True if it was queued for delivery."""


class MessageSender(Protocol):
    def deliver(self, message: NotificationMessage) -> bool: ...


class NullNotifier(NotificationPort):
    """Drops every message; used when notifications are switched off."""

    @property
    def enabled(self) -> bool:
        return False

    def publish(self, message: NotificationMessage) -> bool:
        logger.debug(
            "Notifications disabled, dropping %s for %s",
            message.template.value,
            message.order.internal_order_id,
        )
        return False


class BackgroundNotifier(NotificationPort):
    """Delivers messages through ``sender`` on a thread pool.

    Failures of the sender are logged and never reach the publisher.
    """

    def __init__(self, sender: MessageSender, workers: int = 4) -> None:
        self.sender = sender
        self._executor = ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix="parcelflow-notify",
        )

    def publish(self, message: NotificationMessage) -> bool:
        future = self._executor.submit(self._deliver, message)
        future.add_done_callback(self._log_crash)
        return True

    def _deliver(self, message: NotificationMessage) -> bool:
        order_id = message.order.internal_order_id
        try:
            sent = self.sender.deliver(message)
        except Exception:
            logger.exception(
                "Failed to deliver %s for order %s", message.template.value, order_id
            )
            return False
        if not sent:
            logger.warning(
                "Notification %s for order %s was not sent",
                message.template.value,
                order_id,
            )
        return sent

    @staticmethod
    def _log_crash(future: Future) -> None:
        exc: Optional[BaseException] = future.exception()
        if exc is not None:
            logger.error("Notification worker crashed: %r", exc)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the workers, then release whatever the sender holds open."""
        self._executor.shutdown(wait=wait)
        close = getattr(self.sender, "close", None)
        if callable(close):
            close()
