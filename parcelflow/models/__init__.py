"""SQLAlchemy models for the ParcelFlow order and settlement store."""

from parcelflow.models.order import OrderRecord, StatusChangeRecord
from parcelflow.models.settlement import SettlementRecord

__all__ = [
    "OrderRecord",
    "StatusChangeRecord",
    "SettlementRecord",
]
