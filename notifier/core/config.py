from __future__ import annotations

import os
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseAppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "reminder-engine"
    ENV: str = "dev"
    DATABASE_URL: str | None = None

    # Reminder batch (hourly)
    REMINDER_BATCH_SIZE: int = 100
    REMINDER_PROCESSING_DELAY_MS: int = 500  # Backpressure between sends
    REMINDER_MAX_RETRIES: int = 3
    REMINDER_RETRY_DELAY_HOURS: int = 4
    CLAIM_LEASE_MINUTES: int = 15  # A crashed worker's claim becomes reclaimable after this

    # Generic notification retries (exponential)
    GENERIC_RETRY_BASE_SECONDS: int = 60
    GENERIC_RETRY_BATCH_SIZE: int = 100

    # Payment reminders (daily)
    PAYMENT_REMINDER_DEDUP_DAYS: int = 3
    PAYMENT_REMINDER_HOUR_UTC: int = 7  # 10:00 Africa/Nairobi
    CURRENCY: str = "KES"

    # Notification log retention
    LOG_RETENTION_DAYS: int = 30

    # Channels
    CHANNEL_TIMEOUT_SECONDS: float = 10.0  # Budget for one send, retries included
    CHANNEL_MAX_ATTEMPTS: int = 3
    CHANNEL_RETRY_BASE_SECONDS: float = 0.5  # Doubles after each transient failure

    # WhatsApp templated messaging (Wati)
    WATI_API_URL: str = "https://live-server.wati.io"
    WATI_API_KEY: str | None = None
    WATI_BROADCAST_NAME: str = "Order Notifications"
    WATI_TEMPLATE_PAYMENT_REMINDER: str = "payment_reminder"
    PHONE_COUNTRY_CODE: str = "254"
    PHONE_NATIONAL_PATTERN: str = r"[17]\d{8}"  # Kenyan mobile numbers after the country code

    # SMTP email
    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USER: str | None = None
    SMTP_PASSWORD: str | None = None
    FROM_EMAIL: str | None = None
    BUSINESS_NAME: str = "Lorenzo Dry Cleaners"
    PORTAL_URL: str = "http://localhost:3000"

    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SSL_CERT_REQS: str | None = "required"
    REDIS_SSL_CA_CERTS: str | None = None
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "plain"
    SENTRY_DSN: str | None = None

    @field_validator("PHONE_COUNTRY_CODE", mode="before")
    @classmethod
    def strip_plus_from_country_code(cls, v):
        """Accept "+254" as well as "254"."""
        if v is None:
            return v
        return str(v).lstrip("+")

    @model_validator(mode="after")
    def _validate_required_fields(self) -> BaseAppSettings:
        # Convert Heroku's postgres:// URL to postgresql://
        if self.DATABASE_URL and self.DATABASE_URL.startswith("postgres://"):
            self.DATABASE_URL = self.DATABASE_URL.replace("postgres://", "postgresql://", 1)

        required_in_prod = (
            "DATABASE_URL",
            "WATI_API_KEY",
            "SMTP_HOST",
            "SMTP_USER",
            "SMTP_PASSWORD",
        )
        if self.ENV.lower() == "prod":
            missing = [name for name in required_in_prod if not getattr(self, name)]
            if missing:
                raise ValueError(f"Missing required production settings: {', '.join(missing)}")
        if self.REMINDER_MAX_RETRIES < 0:
            raise ValueError("REMINDER_MAX_RETRIES must not be negative")
        return self


class DevSettings(BaseAppSettings):
    ENV: str = "dev"
    DATABASE_URL: str = "sqlite:///./storage/dev.db"


class TestSettings(BaseAppSettings):
    ENV: str = "test"
    DATABASE_URL: str = "sqlite:///:memory:"
    REMINDER_PROCESSING_DELAY_MS: int = 0
    WATI_API_KEY: str = "test-wati-key"
    CHANNEL_RETRY_BASE_SECONDS: float = 0.0


class ProdSettings(BaseAppSettings):
    ENV: str = "prod"
    LOG_FORMAT: str = "json"


_ENV_TO_SETTINGS: dict[str, type[BaseAppSettings]] = {
    "dev": DevSettings,
    "development": DevSettings,
    "test": TestSettings,
    "testing": TestSettings,
    "prod": ProdSettings,
    "production": ProdSettings,
}


@lru_cache
def get_settings() -> BaseAppSettings:
    env_name = os.getenv("APP_ENV") or os.getenv("ENV") or "dev"
    env = env_name.lower()
    settings_cls = _ENV_TO_SETTINGS.get(env, DevSettings)
    return settings_cls()


settings = get_settings()
