from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings.

    Built once at startup by ``get_settings()`` and handed to the engine
    constructors; nothing below reads the environment on its own.
    """

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    SERVICE_NAME: str = "storefront"
    LOG_LEVEL: str = "INFO"
    ADMIN_EMAIL: str = "admin@admin.com"
    TIMEZONE: str = "Africa/Lagos"
    FRONTEND_URL: str = "http://localhost:3000"
    CURRENCY: str = "NGN"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./storefront.db"
    DB_POOL_SIZE: int = 40
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Auth (service surface)
    JWT_SECRET: str = "test-jwt-secret"

    # Paystack (hosted checkout, pay-with-transfer, verification)
    PAYSTACK_SECRET_KEY: Optional[str] = None
    PAYSTACK_API_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_CALLBACK_URL: Optional[str] = None
    PAYSTACK_TIMEOUT_SECONDS: float = 15.0
    VIRTUAL_ACCOUNT_TTL_MINUTES: int = 30

    # Sendbox (shipping quotes)
    SENDBOX_API_URL: str = "https://live.sendbox.co"
    SENDBOX_ACCESS_TOKEN: Optional[str] = None
    SENDBOX_TIMEOUT_SECONDS: float = 15.0
    DEFAULT_SHIPPING_METHOD: str = "standard"

    # Notifications
    COMMUNICATIONS_SERVICE_URL: str = "http://communications-service:8004"
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    # Background jobs
    REDIS_URL: str = "redis://localhost:6379/0"
    ARQ_QUEUE_NAME: str = "storefront:jobs"
    PENDING_RECONCILE_AFTER_MINUTES: int = 2

    # Billing
    SUBSCRIPTION_FEE: Decimal = Decimal("600")
    SUBSCRIPTION_PERIOD_DAYS: int = 30
    AI_ADDON_FEE: Decimal = Decimal("2000")
    AI_ADDON_DAYS: int = 30

    # Withdrawals
    OTP_TTL_MINUTES: int = 10
    OTP_LENGTH: int = 6

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

    @property
    def paystack_enabled(self) -> bool:
        return bool(self.PAYSTACK_SECRET_KEY)


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
