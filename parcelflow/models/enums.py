"""String enums shared by the ORM models, schemas and services."""

from __future__ import annotations

from enum import Enum


class OrderSource(str, Enum):
    GOMAG = "gomag"
    SHOPIFY = "shopify"
    WOOCOMMERCE = "woocommerce"
    INNOSHIP = "innoship"
    OVERFLOW_IN = "overflow_in"


class OrderStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class CodStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    COLLECTED = "collected"
    SUBMITTED = "submitted"
    SETTLED = "settled"


class SettlementStatus(str, Enum):
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    TRANSFERRED = "transferred"


class ServiceLevel(str, Enum):
    LITE = "lite"
    HEAVY = "heavy"
    CARGO = "cargo"


# Statuses an order can still move out of
ACTIVE_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.ASSIGNED, OrderStatus.IN_TRANSIT}
)

# COD buckets reported by the reconciliation views, in custody order
COD_BUCKETS = (
    CodStatus.PENDING,
    CodStatus.COLLECTED,
    CodStatus.SUBMITTED,
    CodStatus.SETTLED,
)
