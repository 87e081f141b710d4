"""Enum definitions for lockers service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class OrderStatus(str, enum.Enum):
    PENDING_DROPOFF = "pending_dropoff"
    DROPPED_OFF = "dropped_off"
    READY_FOR_PICKUP = "ready_for_pickup"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.EXPIRED}
)

# Position on the linear pickup path. Side branches have no rank.
STATUS_RANK = {
    OrderStatus.PENDING_DROPOFF: 0,
    OrderStatus.DROPPED_OFF: 1,
    OrderStatus.READY_FOR_PICKUP: 2,
    OrderStatus.COMPLETED: 3,
}


class EventType(str, enum.Enum):
    DROPOFF_COMPLETED = "dropoff_completed"
    PICKUP_READY = "pickup_ready"
    PICKUP_COMPLETED = "pickup_completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


class EventSource(str, enum.Enum):
    PROVIDER = "provider"
    MERCHANT = "merchant"
    SYSTEM = "system"


class EventOutcome(str, enum.Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    TERMINAL = "terminal"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNMATCHED = "unmatched"


class SizeClass(str, enum.Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    X_LARGE = "x_large"

    @property
    def rank(self) -> int:
        return _SIZE_ORDER.index(self)


_SIZE_ORDER = [SizeClass.SMALL, SizeClass.MEDIUM, SizeClass.LARGE, SizeClass.X_LARGE]


class NotificationKind(str, enum.Enum):
    PICKUP_READY = "pickup_ready"
    PICKED_UP = "picked_up"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
