"""Tests for the WhatsApp Business API sender, against a mocked transport."""

import json

import httpx
import pytest

from parcelflow.services.notifications.port import (
    NotificationMessage,
    NotificationTemplate,
)
from parcelflow.services.notifications.whatsapp import (
    WhatsAppSender,
    whatsapp_number,
)

from conftest import build_order, make_settings


class RecordingTransport:
    """httpx transport stand-in answering every request with ``status``."""

    def __init__(self, status=200, body=None, error=None):
        self.status = status
        self.body = body if body is not None else {"messages": [{"id": "wamid.1"}]}
        self.error = error
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status, json=self.body)


def _sender(transport, **overrides):
    config = make_settings(
        whatsapp_dry_run=False,
        whatsapp_phone_number_id="1055",
        whatsapp_access_token="secret-token",
        **overrides,
    )
    client = httpx.Client(transport=httpx.MockTransport(transport))
    return WhatsAppSender(config, client=client)


def _body_texts(payload):
    return [p["text"] for p in payload["template"]["components"][0]["parameters"]]


class TestWhatsAppNumber:
    @pytest.mark.parametrize(
        "phone, expected",
        [
            ("0712345678", "40712345678"),
            ("+40 712 345 678", "40712345678"),
            ("+44 20 7946 0958", "442079460958"),
            ("", None),
            (None, None),
        ],
    )
    def test_numbers(self, phone, expected):
        assert whatsapp_number(phone) == expected


class TestSend:
    def test_posts_template_message(self):
        transport = RecordingTransport()
        sender = _sender(transport)

        sent = sender.send(
            "0712345678",
            NotificationTemplate.ORDER_CONFIRMATION,
            {"recipient_name": "Ion", "order_id": "PF-1", "delivery_address": "Str. 1"},
        )

        assert sent is True
        request = transport.requests[0]
        assert str(request.url) == "https://graph.facebook.com/v18.0/1055/messages"
        assert request.headers["Authorization"] == "Bearer secret-token"
        payload = json.loads(request.content)
        assert payload["to"] == "40712345678"
        assert payload["template"]["name"] == "order_confirmation"
        assert payload["template"]["language"] == {"code": "ro"}
        assert _body_texts(payload) == ["Ion", "PF-1", "Str. 1"]

    def test_dry_run_sends_nothing(self):
        transport = RecordingTransport()
        config = make_settings(whatsapp_dry_run=True)
        sender = WhatsAppSender(
            config, client=httpx.Client(transport=httpx.MockTransport(transport))
        )

        assert sender.send("0712345678", NotificationTemplate.DELIVERY_FAILED, {})
        assert transport.requests == []

    def test_api_error_returns_false(self):
        transport = RecordingTransport(status=400, body={"error": {"message": "bad"}})
        assert _sender(transport).send(
            "0712345678", NotificationTemplate.DELIVERY_FAILED, {}
        ) is False

    def test_network_error_returns_false(self):
        transport = RecordingTransport(error=httpx.ConnectError("refused"))
        assert _sender(transport).send(
            "0712345678", NotificationTemplate.DELIVERY_FAILED, {}
        ) is False

    def test_invalid_phone(self):
        transport = RecordingTransport()
        assert _sender(transport).send(
            "--", NotificationTemplate.DELIVERY_FAILED, {}
        ) is False
        assert transport.requests == []


class TestDeliver:
    def test_driver_assigned_params(self):
        transport = RecordingTransport()
        sender = _sender(transport)
        order = build_order(recipient_phone="+40712345678")

        sender.deliver(
            NotificationMessage(
                order,
                NotificationTemplate.DRIVER_ASSIGNED,
                {"driver_name": "Vasile", "driver_phone": "0744000111", "eta_minutes": 20},
            )
        )

        payload = json.loads(transport.requests[0].content)
        assert _body_texts(payload) == ["Ion Popescu", "Vasile", "0744000111", "20 min"]

    def test_defaults_fill_missing_params(self):
        transport = RecordingTransport()
        sender = _sender(transport)
        order = build_order()

        sender.deliver(
            NotificationMessage(
                order, NotificationTemplate.DELIVERY_FAILED, {"reason": None}
            )
        )

        payload = json.loads(transport.requests[0].content)
        assert _body_texts(payload) == [
            "Ion Popescu",
            "Destinatar absent",
            f"https://parcelflow.example/reschedule/{order.internal_order_id}",
        ]

    def test_order_without_phone(self):
        transport = RecordingTransport()
        order = build_order(recipient_phone=None)

        sent = _sender(transport).deliver(
            NotificationMessage(order, NotificationTemplate.ORDER_CONFIRMATION)
        )

        assert sent is False
        assert transport.requests == []
