"""WhatsApp Business API sender.

Each ``NotificationTemplate`` maps to a pre-approved WhatsApp template
whose body takes positional text parameters.  In dry-run mode the
request body is logged instead of sent, which is how every non-production
environment runs.
"""

from __future__ import annotations

import re
from typing import Any, Optional

import httpx

from parcelflow.core.config import Settings
from parcelflow.core.logging import get_logger
from parcelflow.services.ingestion.normalizer import clean_phone_number
from parcelflow.services.notifications.port import (
    NotificationMessage,
    NotificationTemplate,
)

logger = get_logger(__name__)

DEFAULT_RECIPIENT_NAME = "Client"
DEFAULT_DRIVER_NAME = "Curierul"
DEFAULT_FAILURE_REASON = "Destinatar absent"

# WhatsApp template name and the order of its body parameters
TEMPLATES: dict[NotificationTemplate, tuple[str, tuple[str, ...]]] = {
    NotificationTemplate.ORDER_CONFIRMATION: (
        "order_confirmation",
        ("recipient_name", "order_id", "delivery_address"),
    ),
    NotificationTemplate.DRIVER_ASSIGNED: (
        "driver_assigned",
        ("recipient_name", "driver_name", "driver_phone", "eta"),
    ),
    NotificationTemplate.OUT_FOR_DELIVERY: (
        "out_for_delivery",
        ("recipient_name", "eta_minutes", "tracking_link"),
    ),
    NotificationTemplate.DELIVERY_COMPLETED: (
        "delivery_completed",
        ("recipient_name", "order_id", "feedback_link"),
    ),
    NotificationTemplate.DELIVERY_FAILED: (
        "delivery_failed",
        ("recipient_name", "reason", "reschedule_link"),
    ),
}

_NON_DIGITS = re.compile(r"\D")


def whatsapp_number(phone: Optional[str]) -> Optional[str]:
    """International digits without the plus sign, as the API expects."""
    cleaned = clean_phone_number(phone)
    if not cleaned:
        return None
    return _NON_DIGITS.sub("", cleaned) or None


class WhatsAppSender:
    """Sends order notifications through the WhatsApp Business API."""

    def __init__(
        self,
        config: Settings,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.config = config
        self.client = client or httpx.Client(timeout=config.whatsapp_timeout_seconds)

    @property
    def messages_url(self) -> str:
        base = self.config.whatsapp_api_url.rstrip("/")
        return f"{base}/{self.config.whatsapp_phone_number_id}/messages"

    # ── Public API ───────────────────────────────────────────────────

    def deliver(self, message: NotificationMessage) -> bool:
        """Render ``message`` for its order and send it."""
        order = message.order
        if not order.recipient_phone:
            logger.warning(
                "Cannot send %s, no phone number for order %s",
                message.template.value,
                order.internal_order_id,
            )
            return False
        return self.send(
            order.recipient_phone,
            message.template,
            self.template_params(message),
        )

    def send(
        self,
        phone: str,
        template: NotificationTemplate,
        params: dict[str, Any],
    ) -> bool:
        """POST one template message; returns False on any API or network error."""
        to = whatsapp_number(phone)
        if not to:
            logger.warning("Cannot send %s, invalid phone %r", template.value, phone)
            return False

        payload = self.build_payload(to, template, params)
        if self.config.whatsapp_dry_run:
            logger.info("[dry run] WhatsApp %s to %s: %s", template.value, to, payload)
            return True

        try:
            response = self.client.post(
                self.messages_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.config.whatsapp_access_token}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "WhatsApp API rejected %s to %s: %s %s",
                template.value,
                to,
                exc.response.status_code,
                exc.response.text,
            )
            return False
        except httpx.HTTPError as exc:
            logger.error("WhatsApp API unreachable for %s: %s", template.value, exc)
            return False

        message_id = (response.json().get("messages") or [{}])[0].get("id")
        logger.info("WhatsApp %s sent to %s (id=%s)", template.value, to, message_id)
        return True

    # ── Rendering ────────────────────────────────────────────────────

    def build_payload(
        self,
        to: str,
        template: NotificationTemplate,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        name, keys = TEMPLATES[template]
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "template",
            "template": {
                "name": name,
                "language": {"code": self.config.whatsapp_language},
                "components": [
                    {
                        "type": "body",
                        "parameters": [
                            {"type": "text", "text": str(params.get(key) or "")}
                            for key in keys
                        ],
                    }
                ],
            },
        }

    def template_params(self, message: NotificationMessage) -> dict[str, Any]:
        order = message.order
        order_id = order.internal_order_id
        params: dict[str, Any] = {
            "recipient_name": order.recipient_name or DEFAULT_RECIPIENT_NAME,
            "order_id": order_id,
            "delivery_address": order.delivery_address,
            "tracking_link": f"{self.config.tracking_base_url}/{order_id}",
            "feedback_link": f"{self.config.feedback_base_url}/{order_id}",
            "reschedule_link": f"{self.config.reschedule_base_url}/{order_id}",
            "driver_name": DEFAULT_DRIVER_NAME,
            "eta_minutes": self.config.default_eta_minutes,
            "reason": DEFAULT_FAILURE_REASON,
        }
        params.update({k: v for k, v in message.params.items() if v is not None})
        params.setdefault("eta", f"{params['eta_minutes']} min")
        return params

    def close(self) -> None:
        self.client.close()
