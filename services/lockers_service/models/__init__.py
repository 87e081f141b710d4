"""Lockers service models package."""

from services.lockers_service.models.core import (
    LockerEvent,
    LockerOrder,
    LockerPreference,
    Store,
)
from services.lockers_service.models.enums import (
    STATUS_RANK,
    TERMINAL_STATUSES,
    EventOutcome,
    EventSource,
    EventType,
    NotificationKind,
    OrderStatus,
    SizeClass,
    enum_values,
)

__all__ = [
    "Store",
    "LockerPreference",
    "LockerOrder",
    "LockerEvent",
    "OrderStatus",
    "TERMINAL_STATUSES",
    "STATUS_RANK",
    "EventType",
    "EventSource",
    "EventOutcome",
    "SizeClass",
    "NotificationKind",
    "enum_values",
]
