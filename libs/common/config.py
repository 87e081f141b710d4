from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    LOG_LEVEL: str = "INFO"
    APP_NAME: str = "LockerDrop"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./lockerdrop.db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Redis (ARQ worker + rate limiting)
    REDIS_URL: str = "redis://localhost:6379/0"
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    WORKER_QUEUE_NAME: str = "lockerdrop:queue"
    WORKER_JOB_TIMEOUT_SECONDS: int = 300
    WORKER_MAX_JOBS: int = 4

    # Harbor Lockers (locker-network provider)
    HARBOR_API_URL: str = "https://api.sandbox.harborlockers.com"
    HARBOR_TOKEN_URL: str = (
        "https://accounts.harborlockers.com/realms/harbor/protocol/openid-connect/token"
    )
    HARBOR_CLIENT_ID: str = ""
    HARBOR_CLIENT_SECRET: str = ""
    HARBOR_SCOPE: str = "service_provider"
    # Tokens live 300s; refresh a minute early to absorb clock skew.
    HARBOR_TOKEN_SAFETY_MARGIN_SECONDS: int = 60
    HARBOR_TIMEOUT_SECONDS: float = 10.0
    HARBOR_SEARCH_RADIUS_METERS: int = 5000
    HARBOR_SEARCH_PAGE_LIMIT: int = 50
    HARBOR_WEBHOOK_SECRET: Optional[str] = None

    # Allocation retries
    ALLOCATION_MAX_ATTEMPTS: int = 3
    ALLOCATION_BACKOFF_SECONDS: float = 0.5
    ALLOCATION_RETRY_BASE_MINUTES: int = 5

    # Lifecycle
    PICKUP_HOLD_DAYS: int = 5
    NOTIFY_ON_PICKUP_COMPLETED: bool = True

    # Carrier-service rate quote
    RATE_QUOTE_TIMEOUT_SECONDS: float = 1.5
    SERVICE_COUNTRIES: list[str] = ["US"]
    LOCKER_SERVICE_NAME: str = "LockerDrop Pickup"
    LOCKER_SERVICE_CODE: str = "lockerdrop_pickup"
    LOCKER_RATE_PRICE_CENTS: int = 0
    LOCKER_RATE_CURRENCY: str = "USD"
    LOCKER_RATE_DESCRIPTION: str = (
        "Pick up your order from a nearby locker at your convenience"
    )
    SHOP_ELIGIBILITY_TTL_SECONDS: int = 60

    # Shopify
    SHOPIFY_API_VERSION: str = "2024-10"
    SHOPIFY_API_SECRET: Optional[str] = None

    # SMS (Twilio)
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_FROM_NUMBER: str = ""

    # Email (SMTP)
    SMTP_HOST: str = "smtp-relay.brevo.com"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    DEFAULT_FROM_EMAIL: str = "no-reply@lockerdrop.it"
    DEFAULT_FROM_NAME: str = "LockerDrop"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v

    @field_validator("SERVICE_COUNTRIES")
    @classmethod
    def normalize_countries(cls, v: list[str]) -> list[str]:
        return [code.strip().upper() for code in v if code.strip()]


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
