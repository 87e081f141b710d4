"""Pydantic schemas for the lockers service."""

from services.lockers_service.schemas.main import (
    CancelRequest,
    CandidateResponse,
    CheckoutLockersResponse,
    CustomerOrderStatus,
    DashboardStats,
    IngestResponse,
    LockerEventResponse,
    LockerOrderDetail,
    LockerOrderResponse,
    LockerPreferenceResponse,
    MerchantOrderBlock,
    OrderCreate,
    OrderCreateResponse,
    OrderItem,
    PreferenceUpdate,
    PreferencesUpdate,
    ProviderLocationResponse,
    ReservationResponse,
    AllocateRequest,
    StoreInstall,
    StoreResponse,
)

__all__ = [
    "AllocateRequest",
    "CancelRequest",
    "CandidateResponse",
    "CheckoutLockersResponse",
    "CustomerOrderStatus",
    "DashboardStats",
    "IngestResponse",
    "LockerEventResponse",
    "LockerOrderDetail",
    "LockerOrderResponse",
    "LockerPreferenceResponse",
    "MerchantOrderBlock",
    "OrderCreate",
    "OrderCreateResponse",
    "OrderItem",
    "PreferenceUpdate",
    "PreferencesUpdate",
    "ProviderLocationResponse",
    "ReservationResponse",
    "StoreInstall",
    "StoreResponse",
]
