"""Pydantic schemas for the lockers service API."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.lockers_service.models import (
    EventOutcome,
    EventSource,
    EventType,
    OrderStatus,
    SizeClass,
)

# ============================================================================
# STORE SCHEMAS
# ============================================================================


class StoreInstall(BaseModel):
    shop: str = Field(..., max_length=255)
    access_token: Optional[str] = None


class StoreResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    shop: str
    is_active: bool
    installed_at: datetime
    uninstalled_at: Optional[datetime] = None


# ============================================================================
# LOCKER PREFERENCE SCHEMAS
# ============================================================================


class PreferenceUpdate(BaseModel):
    location_id: str = Field(..., max_length=64)
    location_name: Optional[str] = Field(None, max_length=255)
    is_enabled: bool = True


class PreferencesUpdate(BaseModel):
    preferences: list[PreferenceUpdate]


class LockerPreferenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    location_id: str
    location_name: Optional[str] = None
    is_enabled: bool
    updated_at: datetime


class ProviderLocationResponse(BaseModel):
    location_id: str
    name: str
    address: str = ""
    distance_km: Optional[float] = None
    is_enabled: bool = False


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderItem(BaseModel):
    grams: Optional[float] = Field(None, ge=0)
    size_class: Optional[SizeClass] = None


class OrderCreate(BaseModel):
    external_order_id: str = Field(..., max_length=255)
    order_number: Optional[str] = Field(None, max_length=64)
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    location_id: Optional[str] = Field(None, description="Location chosen at checkout")
    items: list[OrderItem] = []
    allocate: bool = True


class LockerOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    shop: str
    external_order_id: str
    order_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    requested_location_id: Optional[str] = None
    required_size: SizeClass
    location_id: Optional[str] = None
    location_name: Optional[str] = None
    locker_id: Optional[str] = None
    tower_id: Optional[str] = None
    dropoff_request_id: Optional[str] = None
    dropoff_link: Optional[str] = None
    pickup_request_id: Optional[str] = None
    pickup_link: Optional[str] = None
    status: OrderStatus
    allocation_attempts: int = 0
    allocation_error: Optional[str] = None
    next_allocation_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class LockerEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    event_type: EventType
    raw_event_type: Optional[str] = None
    source: EventSource
    outcome: EventOutcome
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    locker_id: Optional[str] = None
    tower_id: Optional[str] = None
    provider_timestamp: Optional[datetime] = None
    received_at: datetime


class LockerOrderDetail(LockerOrderResponse):
    events: list[LockerEventResponse] = []


class OrderCreateResponse(BaseModel):
    order: LockerOrderResponse
    created: bool
    # allocated | pending_retry | not_requested | failed
    allocation_status: str
    allocation_error: Optional[str] = None


class AllocateRequest(BaseModel):
    location_id: Optional[str] = Field(
        None, description="Defaults to the location chosen at checkout"
    )


class ReservationResponse(BaseModel):
    order_id: uuid.UUID
    location_id: Optional[str] = None
    location_name: Optional[str] = None
    locker_id: Optional[str] = None
    tower_id: Optional[str] = None
    dropoff_request_id: str
    dropoff_link: Optional[str] = None
    created: bool


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


# ============================================================================
# CHECKOUT / CUSTOMER SCHEMAS
# ============================================================================


class CandidateResponse(BaseModel):
    location_id: str
    name: str
    address: str = ""
    distance_km: Optional[float] = None
    available_count: int


class CheckoutLockersResponse(BaseModel):
    lockers: list[CandidateResponse] = []
    required_size: SizeClass
    # Set when no locker can be offered: no_locations_nearby | no_capacity | unavailable
    reason: Optional[str] = None


class CustomerOrderStatus(BaseModel):
    external_order_id: str
    order_number: Optional[str] = None
    status: OrderStatus
    locker_name: Optional[str] = None
    pickup_link: Optional[str] = None
    ready_at: Optional[datetime] = None
    pickup_deadline: Optional[datetime] = None


class MerchantOrderBlock(BaseModel):
    shop: str
    external_order_id: str
    order_number: Optional[str] = None
    status: OrderStatus
    location_name: Optional[str] = None
    locker_id: Optional[str] = None
    dropoff_link: Optional[str] = None
    pickup_link: Optional[str] = None
    allocation_error: Optional[str] = None
    created_at: datetime


# ============================================================================
# DASHBOARD / WEBHOOK SCHEMAS
# ============================================================================


class DashboardStats(BaseModel):
    pending_dropoffs: int
    ready_for_pickup: int
    completed_this_week: int
    active_lockers: int
    pending_allocation: int


class IngestResponse(BaseModel):
    received: bool = True
    outcome: EventOutcome
