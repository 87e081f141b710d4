"""FastAPI application for the Lockers Service."""

from fastapi import FastAPI
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from services.lockers_service.routers import (
    admin_router,
    carrier_router,
    checkout_router,
    internal_router,
    webhooks_router,
)
from slowapi.errors import RateLimitExceeded


def create_app() -> FastAPI:
    """Create and configure the Lockers Service FastAPI app."""
    app = FastAPI(
        title="LockerDrop Lockers Service",
        version="0.1.0",
        description="Locker pickup fulfillment: rate quotes, allocation, lifecycle, notifications.",
    )

    # Add rate limiter state to app
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # Add observability (structured logging + request tracing)
    add_observability_middleware(app)

    # Add global exception handlers for consistent error responses
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "lockers"}

    # Checkout platform callbacks and provider webhooks
    app.include_router(carrier_router)
    app.include_router(webhooks_router)

    # Storefront extensions and order intake
    app.include_router(checkout_router)

    # Merchant dashboard
    app.include_router(admin_router)

    # Install handshake
    app.include_router(internal_router)

    return app


app = create_app()
