"""Shared test fixtures for the ParcelFlow order engine tests.

Repository-backed tests run twice, against the in-memory store and a
SQLite database, since both must honour the same contract.
"""

from __future__ import annotations

import os

# Set before importing anything from parcelflow: the Settings object is
# read at import time and ``parcelflow.main`` builds its services eagerly.
os.environ["USE_IN_MEMORY_DB"] = "true"
os.environ["NOTIFICATIONS_ENABLED"] = "false"

from datetime import date, datetime, time
from decimal import Decimal
from typing import Callable, Optional

import pytest
from fastapi.testclient import TestClient

from parcelflow.api.deps import build_services
from parcelflow.core.config import Settings
from parcelflow.core.database import Base, make_engine, make_session_factory
from parcelflow.main import create_app
from parcelflow.models.enums import ACTIVE_STATUSES, OrderStatus
from parcelflow.schemas.order import Order
from parcelflow.services.ingestion.engine import NormalizationEngine
from parcelflow.services.ingestion.service import OrderIngestionService
from parcelflow.services.notifications.port import (
    NotificationMessage,
    NotificationPort,
)
from parcelflow.services.orders.lifecycle import OrderLifecycleManager
from parcelflow.services.orders.memory_repository import InMemoryOrderRepository
from parcelflow.services.orders.repository import OrderRepository
from parcelflow.services.orders.sql_repository import SqlOrderRepository
from parcelflow.services.settlement.engine import SettlementEngine


# ── Fakes ────────────────────────────────────────────────────────────


class RecordingNotifier(NotificationPort):
    """Keeps every published message instead of sending it."""

    def __init__(self) -> None:
        self.messages: list[NotificationMessage] = []

    def publish(self, message: NotificationMessage) -> bool:
        self.messages.append(message)
        return True

    @property
    def templates(self) -> list[str]:
        return [m.template.value for m in self.messages]


class ExplodingNotifier(NotificationPort):
    """A notification port whose every publish fails."""

    def publish(self, message: NotificationMessage) -> bool:
        raise RuntimeError("message broker down")


# ── Settings ─────────────────────────────────────────────────────────


def make_settings(**overrides) -> Settings:
    defaults = {
        "database_url": "sqlite://",
        "use_in_memory_db": True,
        "notifications_enabled": False,
        "whatsapp_dry_run": True,
    }
    defaults.update(overrides)
    return Settings(**defaults)


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


# ── Repositories ─────────────────────────────────────────────────────


@pytest.fixture
def memory_repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository(capacity=1_000)


@pytest.fixture
def sql_repository(tmp_path) -> SqlOrderRepository:
    """SQLite file database, fresh for each test."""
    engine = make_engine(f"sqlite:///{tmp_path / 'parcelflow_test.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield SqlOrderRepository(make_session_factory(engine))
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def repository(request) -> OrderRepository:
    """Runs the test once per repository implementation."""
    return request.getfixturevalue(f"{request.param}_repository")


# ── Services ─────────────────────────────────────────────────────────


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def exploding_notifier() -> ExplodingNotifier:
    return ExplodingNotifier()


@pytest.fixture
def ingestion(repository, notifier) -> OrderIngestionService:
    return OrderIngestionService(NormalizationEngine(), repository, notifier)


@pytest.fixture
def lifecycle(repository, notifier) -> OrderLifecycleManager:
    return OrderLifecycleManager(repository, notifier)


@pytest.fixture
def settlement_engine(repository) -> SettlementEngine:
    return SettlementEngine(repository)


@pytest.fixture
def client(test_settings, memory_repository, notifier):
    """FastAPI test client over a fresh in-memory store."""
    services = build_services(
        test_settings, repository=memory_repository, notifier=notifier
    )
    app = create_app(test_settings, services)
    with TestClient(app) as c:
        yield c


# ── Orders ───────────────────────────────────────────────────────────

_counter = {"n": 0}


def build_order(**overrides) -> Order:
    """A valid pending order with a unique id and external id."""
    _counter["n"] += 1
    n = _counter["n"]
    now = overrides.pop("created_at", None) or datetime(2026, 2, 5, 8, 0, n % 60)
    cod_amount = Decimal(str(overrides.pop("cod_amount", "0")))
    defaults = {
        "internal_order_id": f"PF-20260205-t{n:07d}",
        "external_order_id": f"EXT-{n}",
        "aggregator_source": "gomag",
        "recipient_name": "Ion Popescu",
        "recipient_phone": "+40712345678",
        "delivery_address": "Str. Lunga 4",
        "delivery_city": "Brasov",
        "cod_amount": cod_amount,
        "cod_status": "pending" if cod_amount > 0 else "none",
        "status": OrderStatus.PENDING,
        "created_at": now,
        "updated_at": now,
    }
    defaults.update(overrides)
    return Order(**defaults)


@pytest.fixture
def make_order(repository) -> Callable[..., Order]:
    """Store a new pending order built from ``build_order`` overrides."""

    def _make(**overrides) -> Order:
        return repository.create(build_order(**overrides))

    return _make


@pytest.fixture
def make_delivered_order(repository, make_order) -> Callable[..., Order]:
    """Store an order already delivered by ``driver_id`` on ``on``.

    Goes through the repository directly; the OTP gate has its own tests.
    """

    def _make(
        driver_id: int,
        cod_amount: str = "0",
        on: date = date(2026, 2, 5),
        at: Optional[time] = None,
        **overrides,
    ) -> Order:
        order = make_order(cod_amount=cod_amount, **overrides)
        repository.assign_driver(order.internal_order_id, driver_id, "A2B3C4")
        delivered = repository.transition(
            order.internal_order_id,
            ACTIVE_STATUSES,
            {
                "status": OrderStatus.DELIVERED,
                "delivered_at": datetime.combine(on, at or time(14, 30)),
            },
            note="Delivered",
        )
        assert delivered is not None
        return delivered

    return _make


# ── Webhook payloads ─────────────────────────────────────────────────


@pytest.fixture
def gomag_payload() -> dict:
    return {
        "order_id": 98231,
        "customer": {
            "name": "Ion Popescu",
            "phone": "0712345678",
            "email": "ion@example.ro",
        },
        "shipping_address": {
            "address1": "Str. Lunga 4",
            "address2": "Ap. 2",
            "city": "Brasov",
            "zip": "500035",
        },
        "payment_method": "cod",
        "total": 150.00,
        "currency": "RON",
        "customer_note": "Sunati inainte",
    }


@pytest.fixture
def shopify_payload() -> dict:
    return {
        "id": 5567001,
        "gateway": "Cash on Delivery (COD)",
        "total_price": "249.90",
        "currency": "RON",
        "customer": {
            "first_name": "Maria",
            "last_name": "Ionescu",
            "email": "maria@example.ro",
        },
        "shipping_address": {
            "address1": "Calea Victoriei 12",
            "address2": "Et. 3",
            "city": "Bucuresti",
            "province": "Bucuresti",
            "province_code": "B",
            "zip": "010063",
            "country_code": "RO",
            "phone": "0722111222",
        },
        "line_items": [
            {"title": "Lampa", "grams": 1500, "quantity": 2},
            {"title": "Bec", "grams": 250, "quantity": 1},
        ],
        "note": "Lasati la receptie",
    }


@pytest.fixture
def woocommerce_payload() -> dict:
    return {
        "id": 7781,
        "payment_method": "cod",
        "total": "89.50",
        "currency": "RON",
        "billing": {
            "first_name": "Andrei",
            "last_name": "Pop",
            "phone": "0733444555",
            "email": "andrei@example.ro",
        },
        "shipping": {
            "first_name": "Elena",
            "last_name": "Pop",
            "address_1": "Str. Florilor 7",
            "address_2": "",
            "city": "Cluj-Napoca",
            "state": "CJ",
            "postcode": "400001",
            "country": "RO",
        },
        "line_items": [{"name": "Carte", "weight": "0.4", "quantity": 3}],
        "customer_note": "",
    }


@pytest.fixture
def innoship_payload() -> dict:
    return {
        "ClientOrderId": "INN-5521",
        "AddressFrom": [{"AddressText": "Depozit Militari, Bucuresti"}],
        "AddressTo": [
            {
                "Name": "Ana Ionescu",
                "Phone": "0722000111",
                "AddressText": "Bd. Unirii 10",
                "LocalityName": "Bucuresti",
                "CountyName": "Bucuresti",
                "PostalCode": "030823",
                "Country": "RO",
            }
        ],
        "Content": [{"TotalWeight": 2.5}],
        "Extra": {
            "CashOnDeliveryAmount": 89.9,
            "cashOnDeliveryAmountCurrency": "RON",
        },
        "Observation": "Fragil",
    }


@pytest.fixture
def overflow_payload() -> dict:
    return {
        "awb_number": "FAN123456789",
        "carrier_id": "fan_courier",
        "recipient_name": "George Enescu",
        "recipient_phone": "40744555666",
        "delivery_address": "Str. Muzicii 1",
        "delivery_city": "Iasi",
        "cod_amount": "60",
        "cod_currency": "RON",
        "weight": "1.2",
    }
