"""Lockers service routers package."""

from services.lockers_service.routers.admin import router as admin_router
from services.lockers_service.routers.carrier import router as carrier_router
from services.lockers_service.routers.checkout import router as checkout_router
from services.lockers_service.routers.internal import router as internal_router
from services.lockers_service.routers.webhooks import router as webhooks_router

__all__ = [
    "admin_router",
    "carrier_router",
    "checkout_router",
    "internal_router",
    "webhooks_router",
]
