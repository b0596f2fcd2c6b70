"""Webhook ingestion: normalize, store once, confirm to the customer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from parcelflow.core.logging import get_logger
from parcelflow.schemas.order import IngestResponse, Order
from parcelflow.services.ingestion.engine import NormalizationEngine
from parcelflow.services.notifications.port import (
    NotificationMessage,
    NotificationPort,
    NotificationTemplate,
)
from parcelflow.services.orders.repository import OrderRepository

logger = get_logger(__name__)


@dataclass
class IngestResult:
    """Outcome of one webhook delivery.

    Attributes:
        order: The stored order; on a duplicate, the one stored first.
        created: False when the webhook repeated an order we already had.
        notification: ``queued``, ``disabled`` or ``skipped`` (duplicates).
    """

    order: Order
    created: bool
    notification: str

    def to_response(self) -> IngestResponse:
        return IngestResponse(
            internal_order_id=self.order.internal_order_id,
            external_order_id=self.order.external_order_id,
            status=self.order.status,
            source=self.order.aggregator_source,
            duplicate=not self.created,
            is_overflow=self.order.is_overflow,
            parent_carrier_id=self.order.parent_carrier_id,
            notification=self.notification,
        )


class OrderIngestionService:
    """Ties the normalization engine to storage and the notification port."""

    def __init__(
        self,
        engine: NormalizationEngine,
        repository: OrderRepository,
        notifier: NotificationPort,
    ) -> None:
        self.engine = engine
        self.repository = repository
        self.notifier = notifier

    def ingest(
        self,
        source_tag: Optional[str],
        payload: Any,
        headers: Optional[Mapping[str, str]] = None,
    ) -> IngestResult:
        """Normalize ``payload`` and store it unless it is a re-delivery.

        A duplicate ``(external_order_id, source)`` is not an error: the
        existing order comes back with ``created=False`` and no second
        confirmation is sent.
        """
        candidate = self.engine.normalize_order(source_tag, payload, headers)
        stored = self.repository.create(candidate)
        created = stored.internal_order_id == candidate.internal_order_id

        if not created:
            logger.info(
                "Webhook for %s/%s already ingested as %s",
                stored.aggregator_source,
                stored.external_order_id,
                stored.internal_order_id,
            )
            return IngestResult(stored, created=False, notification="skipped")

        logger.info(
            "Ingested %s order %s as %s%s",
            stored.aggregator_source,
            stored.external_order_id,
            stored.internal_order_id,
            " (overflow)" if stored.is_overflow else "",
        )
        return IngestResult(stored, created=True, notification=self._confirm(stored))

    def _confirm(self, order: Order) -> str:
        try:
            queued = self.notifier.publish(
                NotificationMessage(order, NotificationTemplate.ORDER_CONFIRMATION)
            )
        except Exception:
            logger.exception(
                "Could not publish confirmation for %s", order.internal_order_id
            )
            return "skipped"
        return "queued" if queued else "disabled"
