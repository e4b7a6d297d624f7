"""Application configuration via pydantic settings."""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from typing import Any

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed application configuration."""

    app_env: str = Field("local", alias="APP_ENV")
    app_name: str = Field("Stays Booking API", alias="APP_NAME")
    api_v1_prefix: str = "/api/v1"
    app_base_url: str = Field("http://localhost:3000", alias="APP_BASE_URL")

    database_url: str = Field(..., alias="DATABASE_URL")
    sync_database_url: str | None = Field(default=None, alias="SYNC_DATABASE_URL")

    secret_key: str = Field("change-me", alias="SECRET_KEY")
    jwt_secret_key: str = Field(default="", alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int | None = Field(default=None, alias="SMTP_PORT")
    smtp_username: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_from: str | None = Field(default=None, alias="SMTP_FROM")
    support_email: str = Field("support@stays.local", alias="SUPPORT_EMAIL")

    stripe_secret_key: str | None = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str | None = Field(
        default=None, alias="STRIPE_WEBHOOK_SECRET"
    )
    payments_webhook_verify: bool = Field(default=True, alias="PAYMENTS_WEBHOOK_VERIFY")
    default_currency: str = Field("cad", alias="DEFAULT_CURRENCY")
    payment_verify_max_attempts: int = Field(5, alias="PAYMENT_VERIFY_MAX_ATTEMPTS")
    payment_verify_backoff_seconds: float = Field(
        2.0, alias="PAYMENT_VERIFY_BACKOFF_SECONDS"
    )

    booking_max_nights: int = Field(30, alias="BOOKING_MAX_NIGHTS")
    booking_max_guests: int = Field(16, alias="BOOKING_MAX_GUESTS")
    cancellation_full_refund_days: int = Field(7, alias="CANCELLATION_FULL_REFUND_DAYS")
    cancellation_partial_refund_days: int = Field(
        3, alias="CANCELLATION_PARTIAL_REFUND_DAYS"
    )
    cancellation_partial_refund_ratio: Decimal = Field(
        Decimal("0.5"), alias="CANCELLATION_PARTIAL_REFUND_RATIO"
    )
    cancellation_cutoff_hours: int = Field(24, alias="CANCELLATION_CUTOFF_HOURS")

    bank_transfer_account_name: str = Field(
        "Stays Payments", alias="BANK_TRANSFER_ACCOUNT_NAME"
    )
    bank_transfer_bank_name: str = Field(
        "Your Preferred Bank", alias="BANK_TRANSFER_BANK_NAME"
    )
    bank_transfer_account_number: str = Field(
        "1234567890", alias="BANK_TRANSFER_ACCOUNT_NUMBER"
    )
    bank_transfer_routing_number: str = Field(
        "000111222", alias="BANK_TRANSFER_ROUTING_NUMBER"
    )
    bank_transfer_swift_code: str | None = Field(
        default=None, alias="BANK_TRANSFER_SWIFT_CODE"
    )
    bank_transfer_iban: str | None = Field(default=None, alias="BANK_TRANSFER_IBAN")
    bank_transfer_notes: str = Field(
        "Include your booking ID as the transfer reference so we can match your payment quickly.",
        alias="BANK_TRANSFER_NOTES",
    )

    bootstrap_admin_email: str | None = Field(
        default=None, alias="BOOTSTRAP_ADMIN_EMAIL"
    )
    bootstrap_admin_password: str | None = Field(
        default=None, alias="BOOTSTRAP_ADMIN_PASSWORD"
    )

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        alias="CORS_ALLOW_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=False, alias="CORS_ALLOW_CREDENTIALS")

    rate_limit_default: str = Field("100/minute", alias="RATE_LIMIT_DEFAULT")
    rate_limit_login: str = Field("10/minute", alias="RATE_LIMIT_LOGIN")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[3] / ".env",
        case_sensitive=False,
        extra="ignore",
    )

    def model_post_init(self, __context: Any) -> None:
        """Populate JWT secret from the generic secret when not provided."""

        if not self.jwt_secret_key:
            object.__setattr__(self, "jwt_secret_key", self.secret_key)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()  # type: ignore[call-arg]
