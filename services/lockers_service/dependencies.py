"""FastAPI dependencies for the lockers service."""

from fastapi import Depends, HTTPException, status
from libs.db.session import get_async_db
from services.lockers_service.errors import (
    AllocationError,
    CredentialError,
    ProviderError,
    ProviderUnavailable,
)
from services.lockers_service.harbor_client import HarborClient
from services.lockers_service.models import Store
from services.lockers_service.services.notifications import NotificationDispatcher
from services.lockers_service.services.rate_quote import (
    ShopEligibilityCache,
    eligibility_cache,
)
from services.lockers_service.token_cache import TokenProvider, get_token_cache
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


def get_token_provider() -> TokenProvider:
    return get_token_cache()


def get_harbor_client(
    token_provider: TokenProvider = Depends(get_token_provider),
) -> HarborClient:
    return HarborClient(token_provider=token_provider)


def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()


def get_eligibility_cache() -> ShopEligibilityCache:
    return eligibility_cache


async def require_active_store(
    shop: str, db: AsyncSession = Depends(get_async_db)
) -> Store:
    """Resolve the `shop` path parameter to an active install."""
    store = (
        await db.execute(select(Store).where(Store.shop == shop))
    ).scalar_one_or_none()
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Store not found"
        )
    if not store.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Store is not active"
        )
    return store


def http_error_for(exc: Exception) -> HTTPException:
    """Translate a provider or allocation error into an HTTP error."""
    if isinstance(exc, CredentialError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Locker provider authentication failed",
        )
    if isinstance(exc, ProviderUnavailable):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Locker provider unavailable; allocation will be retried",
        )
    if isinstance(exc, ProviderError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Locker provider error: {exc.message}",
        )
    if isinstance(exc, AllocationError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
    )
