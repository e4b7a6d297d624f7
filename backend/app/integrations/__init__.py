"""Integration shortcuts."""

from .stripe_client import (
    ChargeDetails,
    CheckoutSession,
    PaymentGatewayError,
    PaymentGatewayNotFound,
    PaymentIntent,
    Refund,
    StripeClient,
    from_minor_units,
    parse_checkout_session,
    parse_payment_intent,
    to_minor_units,
)

__all__ = [
    "ChargeDetails",
    "CheckoutSession",
    "PaymentGatewayError",
    "PaymentGatewayNotFound",
    "PaymentIntent",
    "Refund",
    "StripeClient",
    "from_minor_units",
    "parse_checkout_session",
    "parse_payment_intent",
    "to_minor_units",
]
