"""Specialized settings adapters for integrations."""

from __future__ import annotations

from pydantic import BaseModel

from app.core.config import get_settings


class PaymentSettings(BaseModel):
    """Slim view of payment-related configuration."""

    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    payments_webhook_verify: bool = True
    default_currency: str = "cad"
    verify_max_attempts: int = 5
    verify_backoff_seconds: float = 2.0


def get_payment_settings() -> PaymentSettings:
    """Return payment-specific configuration."""

    settings = get_settings()
    return PaymentSettings(
        stripe_secret_key=settings.stripe_secret_key or None,
        stripe_webhook_secret=settings.stripe_webhook_secret or None,
        payments_webhook_verify=settings.payments_webhook_verify,
        default_currency=settings.default_currency,
        verify_max_attempts=settings.payment_verify_max_attempts,
        verify_backoff_seconds=settings.payment_verify_backoff_seconds,
    )
