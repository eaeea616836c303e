# backend/inkflow/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import BRAND_NAME


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    """Runtime configuration for the reservation engine."""

    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database
    database_url: str = Field(default="sqlite:///./inkflow.db", alias="DATABASE_URL")
    db_pool_size: int = Field(default=10, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=5, alias="DB_MAX_OVERFLOW")
    db_pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT")

    # Studio
    studio_timezone: str = Field(default="Europe/Paris", alias="STUDIO_TIMEZONE")
    frontend_url: str = Field(default="https://inkflow.app", alias="FRONTEND_URL")

    # Slot computation
    slot_interval_minutes: int = Field(default=30, alias="SLOT_INTERVAL_MINUTES", ge=5)
    slot_max_candidates: int = Field(default=200, alias="SLOT_MAX_CANDIDATES", ge=1)
    slot_max_range_days: int = Field(default=31, alias="SLOT_MAX_RANGE_DAYS", ge=1)

    # Stripe Configuration
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        alias="STRIPE_SECRET_KEY",
        description="Stripe secret key for backend API calls",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        alias="STRIPE_WEBHOOK_SECRET",
        description="Platform events webhook secret",
    )
    stripe_webhook_secret_connect: SecretStr = Field(
        default=SecretStr(""),
        alias="STRIPE_WEBHOOK_SECRET_CONNECT",
        description="Connect events webhook secret",
    )
    stripe_platform_fee_percentage: float = Field(
        default=5,
        alias="STRIPE_PLATFORM_FEE_PERCENTAGE",
        description="Platform fee percentage (5 = 5%)",
    )
    stripe_currency: str = Field(default="eur", alias="STRIPE_CURRENCY")
    stripe_price_id_starter: str = Field(default="", alias="STRIPE_PRICE_ID_STARTER")
    stripe_price_id_pro: str = Field(default="", alias="STRIPE_PRICE_ID_PRO")
    stripe_price_id_studio: str = Field(default="", alias="STRIPE_PRICE_ID_STUDIO")

    # Email settings
    email_provider: Literal["console", "resend"] = Field(
        default="console",
        alias="EMAIL_PROVIDER",
        description="Email provider name",
    )
    resend_api_key: Optional[str] = Field(default=None, alias="RESEND_API_KEY")
    from_email: str = Field(
        default=f"{BRAND_NAME} <onboarding@resend.dev>",
        validation_alias=AliasChoices("RESEND_FROM_EMAIL", "FROM_EMAIL"),
    )
    email_reply_to: Optional[str] = Field(default=None, alias="EMAIL_REPLY_TO")

    # Notifications
    notification_retry_delay_seconds: int = Field(
        default=30, alias="NOTIFICATION_RETRY_DELAY_SECONDS", ge=0
    )
    notification_max_retries: int = Field(default=1, alias="NOTIFICATION_MAX_RETRIES", ge=0)

    # Payments
    deposit_reminder_after_hours: int = Field(
        default=24, alias="DEPOSIT_REMINDER_AFTER_HOURS", ge=1
    )

    # Rate limiting (process-local fixed window)
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_booking_submit_max_requests: int = Field(
        default=3, alias="RATE_LIMIT_BOOKING_SUBMIT_MAX_REQUESTS", ge=1
    )
    rate_limit_booking_submit_window_seconds: int = Field(
        default=3600, alias="RATE_LIMIT_BOOKING_SUBMIT_WINDOW_SECONDS", ge=1
    )
    rate_limit_public_max_requests: int = Field(
        default=10, alias="RATE_LIMIT_PUBLIC_MAX_REQUESTS", ge=1
    )
    rate_limit_public_window_seconds: int = Field(
        default=60, alias="RATE_LIMIT_PUBLIC_WINDOW_SECONDS", ge=1
    )

    # Internal endpoints (scheduler hooks, manual payments)
    cron_secret: SecretStr = Field(default=SecretStr(""), alias="CRON_SECRET")

    # Celery
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("CELERY_BROKER_URL", "REDIS_URL"),
    )
    celery_task_always_eager: bool = Field(default=False, alias="CELERY_TASK_ALWAYS_EAGER")

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("frontend_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key.get_secret_value())

    @property
    def webhook_secrets(self) -> list[str]:
        """Build list of webhook secrets to try in order."""
        secrets = []
        for secret in (self.stripe_webhook_secret, self.stripe_webhook_secret_connect):
            value = secret.get_secret_value() if secret else ""
            if value:
                secrets.append(value)
        return secrets

    @property
    def price_id_plans(self) -> dict[str, str]:
        """Map configured Stripe price ids to subscription plan names."""
        mapping = {
            self.stripe_price_id_starter: "STARTER",
            self.stripe_price_id_pro: "PRO",
            self.stripe_price_id_studio: "STUDIO",
        }
        return {price_id: plan for price_id, plan in mapping.items() if price_id}

    @property
    def rate_limit_buckets(self) -> dict[str, tuple[int, int]]:
        """Bucket name -> (max requests, window seconds)."""
        return {
            "booking_submit": (
                self.rate_limit_booking_submit_max_requests,
                self.rate_limit_booking_submit_window_seconds,
            ),
            "public": (
                self.rate_limit_public_max_requests,
                self.rate_limit_public_window_seconds,
            ),
        }


settings = Settings()
