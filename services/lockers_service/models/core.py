"""Lockers service models: stores, locker preferences, orders, locker events."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.lockers_service.models.enums import (
    EventOutcome,
    EventSource,
    EventType,
    OrderStatus,
    SizeClass,
    enum_values,
)
from sqlalchemy import Boolean, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# MERCHANT MODELS
# ============================================================================


class Store(Base):
    """One row per merchant install."""

    __tablename__ = "lockerdrop_stores"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    # Commerce platform access token for this shop
    access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )

    installed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    uninstalled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<Store {self.shop} active={self.is_active}>"


class LockerPreference(Base):
    """Merchant-approved provider locations."""

    __tablename__ = "lockerdrop_locker_preferences"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    location_id: Mapped[str] = mapped_column(String(64), nullable=False)
    location_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("shop", "location_id", name="uq_locker_pref_shop_location"),
    )

    def __repr__(self):
        return f"<LockerPreference {self.shop}:{self.location_id} enabled={self.is_enabled}>"


# ============================================================================
# FULFILLMENT MODELS
# ============================================================================


class LockerOrder(Base):
    """Pickup fulfillment for one commerce order."""

    __tablename__ = "lockerdrop_orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    external_order_id: Mapped[str] = mapped_column(String(255), nullable=False)
    order_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Customer
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Checkout choice, kept so allocation can be retried later
    requested_location_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    required_size: Mapped[SizeClass] = mapped_column(
        SAEnum(
            SizeClass,
            values_callable=enum_values,
            name="lockerdrop_size_class_enum",
        ),
        default=SizeClass.SMALL,
        server_default="small",
    )

    # Allocation
    location_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    location_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    locker_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tower_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    dropoff_request_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
    dropoff_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pickup_request_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
    pickup_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    allocation_attempts: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    allocation_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    next_allocation_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Status
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="lockerdrop_order_status_enum",
        ),
        default=OrderStatus.PENDING_DROPOFF,
        server_default="pending_dropoff",
        nullable=False,
    )

    # Lifecycle timestamps
    ready_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expired_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("ix_lockerdrop_orders_shop_status", "shop", "status"),
        Index("ix_lockerdrop_orders_locker_tower", "locker_id", "tower_id"),
        # At most one live order per commerce order
        Index(
            "uq_lockerdrop_orders_live_external_id",
            "external_order_id",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
    )

    events = relationship(
        "LockerEvent",
        back_populates="order",
        order_by="LockerEvent.received_at",
        viewonly=True,
    )

    @property
    def has_allocation(self) -> bool:
        return self.dropoff_request_id is not None

    def __repr__(self):
        return f"<LockerOrder {self.external_order_id} status={self.status}>"


class LockerEvent(Base):
    """Append-only audit of every inbound lifecycle event."""

    __tablename__ = "lockerdrop_locker_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("lockerdrop_orders.id"), nullable=True
    )

    event_type: Mapped[EventType] = mapped_column(
        SAEnum(
            EventType,
            values_callable=enum_values,
            name="lockerdrop_event_type_enum",
        ),
        nullable=False,
    )
    raw_event_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    source: Mapped[EventSource] = mapped_column(
        SAEnum(
            EventSource,
            values_callable=enum_values,
            name="lockerdrop_event_source_enum",
        ),
        default=EventSource.PROVIDER,
        server_default="provider",
    )
    locker_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tower_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    provider_timestamp: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    outcome: Mapped[EventOutcome] = mapped_column(
        SAEnum(
            EventOutcome,
            values_callable=enum_values,
            name="lockerdrop_event_outcome_enum",
        ),
        nullable=False,
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    to_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        Index(
            "ix_lockerdrop_events_dedup",
            "order_id",
            "event_type",
            "provider_timestamp",
        ),
    )

    order = relationship("LockerOrder", back_populates="events")

    def __repr__(self):
        return f"<LockerEvent {self.event_type} outcome={self.outcome}>"
