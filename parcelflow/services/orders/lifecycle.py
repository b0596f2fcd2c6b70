"""Order lifecycle state machine.

    pending --assign--> assigned --start_transit--> in_transit --confirm(otp)--> delivered
    pending | assigned | in_transit --cancel--> cancelled

The OTP issued at assignment is the only way into ``delivered``: the
administrative ``update_status`` path refuses that status outright.
Every read-check-write runs under a per-order lock and ends in a
conditional repository update, so a cancel racing a delivery
confirmation cannot both succeed.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

from parcelflow.core.database import utcnow
from parcelflow.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    OtpMismatchError,
    ValidationError,
)
from parcelflow.core.locks import KeyedLock
from parcelflow.core.logging import get_logger
from parcelflow.models.enums import ACTIVE_STATUSES, OrderStatus
from parcelflow.schemas.order import Order, OrderFilters, OrderStats, StatusChange
from parcelflow.services.notifications.port import (
    STATUS_TEMPLATES,
    NotificationMessage,
    NotificationPort,
    NotificationTemplate,
)
from parcelflow.services.orders.otp import generate_otp, otp_matches
from parcelflow.services.orders.repository import OrderRepository

logger = get_logger(__name__)

NOTE_SEPARATOR = " | "


def append_note(existing: Optional[str], addition: str) -> str:
    return f"{existing}{NOTE_SEPARATOR}{addition}" if existing else addition


def _values(statuses) -> list[str]:
    return sorted(s.value for s in statuses)


class OrderLifecycleManager:
    """Applies driver and admin actions to orders."""

    def __init__(
        self,
        repository: OrderRepository,
        notifier: NotificationPort,
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow,
        otp_generator: Callable[[], str] = generate_otp,
        reject_repeat_confirmation: bool = False,
        default_eta_minutes: int = 30,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.locks = locks or KeyedLock()
        self.clock = clock
        self.otp_generator = otp_generator
        self.reject_repeat_confirmation = reject_repeat_confirmation
        self.default_eta_minutes = default_eta_minutes

    # ── Transitions ──────────────────────────────────────────────────

    def assign(
        self,
        order_id: str,
        driver_id: int,
        driver_name: Optional[str] = None,
        driver_phone: Optional[str] = None,
    ) -> Order:
        """Give the order to a driver and issue a fresh delivery OTP.

        Re-assigning an assigned or in-transit order replaces the driver
        and the OTP and puts the order back to ``assigned``.
        """
        with self.locks.hold(order_id):
            order = self._require(order_id)
            self._require_status(order, ACTIVE_STATUSES, "assign a driver to")

            otp = self.otp_generator()
            updated = self.repository.assign_driver(
                order_id, driver_id, otp, expected=ACTIVE_STATUSES
            )
            updated = self._check_applied(updated, order_id, ACTIVE_STATUSES)

        logger.info(
            "Order %s assigned to driver %s (was %s)",
            order_id,
            driver_id,
            order.status.value,
        )
        self._notify(
            updated,
            NotificationTemplate.DRIVER_ASSIGNED,
            driver_name=driver_name,
            driver_phone=driver_phone,
            eta_minutes=self.default_eta_minutes,
        )
        return updated

    def start_transit(self, order_id: str, eta_minutes: Optional[int] = None) -> Order:
        """assigned -> in_transit."""
        eta = eta_minutes if eta_minutes is not None else self.default_eta_minutes
        expected = {OrderStatus.ASSIGNED}
        with self.locks.hold(order_id):
            order = self._require(order_id)
            self._require_status(order, expected, "start transit for")
            updated = self.repository.transition(
                order_id,
                expected,
                {"status": OrderStatus.IN_TRANSIT},
                note=f"Out for delivery, ETA {eta} min",
            )
            updated = self._check_applied(updated, order_id, expected)

        logger.info("Order %s out for delivery (ETA %s min)", order_id, eta)
        self._notify(updated, NotificationTemplate.OUT_FOR_DELIVERY, eta_minutes=eta)
        return updated

    def confirm_delivery(
        self,
        order_id: str,
        otp_code: Optional[str],
        proof_of_delivery: Optional[str] = None,
    ) -> Order:
        """Close the delivery with the code the recipient holds.

        Raises:
            NotFoundError: No such order.
            InvalidTransitionError: The order was cancelled, or it is
                already delivered and repeat confirmations are rejected.
            OtpMismatchError: No OTP was ever issued or the code differs.
        """
        with self.locks.hold(order_id):
            order = self._require(order_id)

            if order.status == OrderStatus.CANCELLED:
                raise InvalidTransitionError(
                    f"Cannot confirm delivery of cancelled order {order_id}",
                    current=order.status.value,
                    expected=_values(ACTIVE_STATUSES),
                )
            if not order.otp_code:
                raise OtpMismatchError(
                    f"No OTP has been issued for order {order_id}; assign a driver first"
                )
            if not otp_matches(order.otp_code, otp_code):
                logger.warning("OTP mismatch for order %s", order_id)
                raise OtpMismatchError(f"Invalid OTP code for order {order_id}")

            if order.status == OrderStatus.DELIVERED:
                if self.reject_repeat_confirmation:
                    raise InvalidTransitionError(
                        f"Order {order_id} is already delivered",
                        current=order.status.value,
                        expected=_values(ACTIVE_STATUSES),
                    )
                logger.info("Repeat delivery confirmation for %s ignored", order_id)
                return order

            now = self.clock()
            annotation = f"Delivered {now:%Y-%m-%d %H:%M} (OTP verified)"
            if proof_of_delivery:
                annotation = f"{annotation}; POD: {proof_of_delivery}"
            updated = self.repository.transition(
                order_id,
                ACTIVE_STATUSES,
                {
                    "status": OrderStatus.DELIVERED,
                    "delivered_at": now,
                    "notes": append_note(order.notes, annotation),
                },
                note="Delivered, OTP verified",
            )
            updated = self._check_applied(updated, order_id, ACTIVE_STATUSES)

        logger.info("Order %s delivered by driver %s", order_id, updated.driver_id)
        self._notify(updated, NotificationTemplate.DELIVERY_COMPLETED)
        return updated

    def cancel(self, order_id: str, reason: Optional[str] = None) -> Order:
        """Cancel a not-yet-delivered order; repeating it is a no-op."""
        with self.locks.hold(order_id):
            order = self._require(order_id)
            if order.status == OrderStatus.CANCELLED:
                return order
            self._require_status(order, ACTIVE_STATUSES, "cancel")

            updated = self.repository.cancel(
                order_id,
                append_note(order.notes, f"Cancelled: {reason or 'No reason provided'}"),
                expected=ACTIVE_STATUSES,
            )
            updated = self._check_applied(updated, order_id, ACTIVE_STATUSES)

        logger.info("Order %s cancelled: %s", order_id, reason or "-")
        self._notify(updated, NotificationTemplate.DELIVERY_FAILED, reason=reason)
        return updated

    def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        notes: Optional[str] = None,
    ) -> Order:
        """Administrative status correction.

        Never produces ``delivered`` (that needs the OTP) and never moves
        an order out of ``delivered``; ``assigned`` needs an issued OTP.
        """
        status = OrderStatus(status)
        if status == OrderStatus.DELIVERED:
            raise InvalidTransitionError(
                "Orders can only be marked delivered through confirm_delivery",
                expected=_values(set(OrderStatus) - {OrderStatus.DELIVERED}),
            )

        with self.locks.hold(order_id):
            order = self._require(order_id)
            if order.status == OrderStatus.DELIVERED:
                raise InvalidTransitionError(
                    f"Order {order_id} is delivered and can no longer change status",
                    current=order.status.value,
                )
            if status == OrderStatus.ASSIGNED and not order.otp_code:
                raise InvalidTransitionError(
                    f"Order {order_id} has no OTP; use assign to give it a driver",
                    current=order.status.value,
                )

            expected = {order.status}
            updated = self.repository.update_status(
                order_id, status, notes, expected=expected
            )
            updated = self._check_applied(updated, order_id, expected)

        logger.info(
            "Order %s status %s -> %s (admin)",
            order_id,
            order.status.value,
            status.value,
        )
        template = STATUS_TEMPLATES.get(status)
        if template is not None and status != order.status:
            self._notify(updated, template, reason=notes)
        return updated

    def correct_cod_amount(self, order_id: str, amount: Decimal) -> Order:
        """Fix an order's COD amount; existing settlements keep their totals."""
        amount = Decimal(amount)
        if amount < 0:
            raise ValidationError("COD amount cannot be negative")
        with self.locks.hold(order_id):
            updated = self.repository.update_cod_amount(order_id, amount)
        if updated is None:
            raise NotFoundError("Order", order_id)
        logger.info("Order %s COD amount corrected to %s", order_id, amount)
        return updated

    # ── Queries ──────────────────────────────────────────────────────

    def get_order(self, order_id: str) -> Order:
        return self._require(order_id)

    def list_orders(
        self,
        filters: Optional[OrderFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        return self.repository.find_all(filters, limit=limit, offset=offset)

    def history(self, order_id: str) -> list[StatusChange]:
        self._require(order_id)
        return self.repository.list_history(order_id)

    def stats(self) -> OrderStats:
        return self.repository.order_stats()

    # ── Internals ────────────────────────────────────────────────────

    def _require(self, order_id: str) -> Order:
        order = self.repository.get(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    @staticmethod
    def _require_status(order: Order, allowed, action: str) -> None:
        if order.status not in allowed:
            raise InvalidTransitionError(
                f"Cannot {action} order {order.internal_order_id} "
                f"in status {order.status.value}",
                current=order.status.value,
                expected=_values(allowed),
            )

    def _check_applied(self, updated: Optional[Order], order_id: str, allowed) -> Order:
        """Turn a lost conditional update into the matching error."""
        if updated is not None:
            return updated
        current = self._require(order_id)
        raise InvalidTransitionError(
            f"Order {order_id} changed to {current.status.value} concurrently",
            current=current.status.value,
            expected=_values(allowed),
        )

    def _notify(
        self, order: Order, template: NotificationTemplate, **params: Any
    ) -> None:
        try:
            self.notifier.publish(NotificationMessage(order, template, params))
        except Exception:
            logger.exception(
                "Could not publish %s for order %s",
                template.value,
                order.internal_order_id,
            )
