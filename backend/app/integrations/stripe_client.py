"""Stripe SDK wrapper exposing the narrow surface the booking flows need."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe


@dataclass(slots=True)
class ChargeDetails:
    """Card details lifted from a payment intent's latest charge."""

    id: str | None
    status: str | None
    receipt_url: str | None = None
    payment_method_type: str | None = None
    card_brand: str | None = None
    card_last4: str | None = None


@dataclass(slots=True)
class PaymentIntent:
    """Simplified payment intent payload."""

    id: str
    status: str
    amount: int | None = None
    currency: str | None = None
    latest_charge: ChargeDetails | None = None
    failure_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CheckoutSession:
    """Simplified checkout session payload."""

    id: str
    status: str | None
    payment_status: str | None
    url: str | None = None
    payment_intent_id: str | None = None
    payment_intent: PaymentIntent | None = None
    amount_total: int | None = None
    currency: str | None = None
    payment_method_types: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    client_reference_id: str | None = None

    @property
    def booking_id(self) -> str | None:
        return (
            self.metadata.get("booking_id")
            or self.metadata.get("bookingId")
            or self.client_reference_id
        )


@dataclass(slots=True)
class Refund:
    id: str
    status: str
    amount: int | None


class PaymentGatewayError(RuntimeError):
    """Raised when Stripe interaction fails."""


class PaymentGatewayNotFound(PaymentGatewayError):
    """Raised when Stripe does not know the requested object."""


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal currency amount to integer cents."""

    quantized = Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return int((quantized * 100).to_integral_value())


def from_minor_units(value: int | None) -> Decimal | None:
    if value is None:
        return None
    return (Decimal(value) / Decimal("100")).quantize(Decimal("0.01"))


def _as_dict(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "to_dict_recursive"):
        return obj.to_dict_recursive()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def _parse_charge(raw: Any) -> ChargeDetails | None:
    if raw is None:
        return None
    if isinstance(raw, str):
        return ChargeDetails(id=raw, status=None)
    data = _as_dict(raw)
    method_details = data.get("payment_method_details") or {}
    card = method_details.get("card") or {}
    return ChargeDetails(
        id=data.get("id"),
        status=data.get("status"),
        receipt_url=data.get("receipt_url"),
        payment_method_type=method_details.get("type"),
        card_brand=card.get("brand"),
        card_last4=card.get("last4"),
    )


def parse_payment_intent(raw: Any) -> PaymentIntent:
    data = _as_dict(raw)
    last_error = data.get("last_payment_error") or {}
    return PaymentIntent(
        id=str(data.get("id")),
        status=str(data.get("status", "unknown")),
        amount=data.get("amount"),
        currency=data.get("currency"),
        latest_charge=_parse_charge(data.get("latest_charge")),
        failure_message=last_error.get("message"),
        metadata=dict(data.get("metadata") or {}),
    )


def parse_checkout_session(raw: Any) -> CheckoutSession:
    """Build a :class:`CheckoutSession` from an SDK object or webhook payload."""

    data = _as_dict(raw)
    raw_intent = data.get("payment_intent")
    intent: PaymentIntent | None = None
    intent_id: str | None = None
    if isinstance(raw_intent, str):
        intent_id = raw_intent
    elif raw_intent:
        intent = parse_payment_intent(raw_intent)
        intent_id = intent.id
    return CheckoutSession(
        id=str(data.get("id")),
        status=data.get("status"),
        payment_status=data.get("payment_status"),
        url=data.get("url"),
        payment_intent_id=intent_id,
        payment_intent=intent,
        amount_total=data.get("amount_total"),
        currency=data.get("currency"),
        payment_method_types=list(data.get("payment_method_types") or []),
        metadata=dict(data.get("metadata") or {}),
        client_reference_id=data.get("client_reference_id"),
    )


class StripeClient:
    """Wrapper around the Stripe SDK.

    Every call is synchronous, mirroring the SDK; callers run it from async
    handlers the same way the rest of the API does.
    """

    def __init__(
        self,
        secret_key: str,
        *,
        webhook_secret: str | None = None,
        idempotency_prefix: str = "stays",
        max_network_retries: int = 2,
    ) -> None:
        self._webhook_secret = webhook_secret
        self._idempotency_prefix = idempotency_prefix
        self._client = stripe.StripeClient(
            secret_key, max_network_retries=max_network_retries
        )

    @property
    def webhook_secret(self) -> str | None:
        return self._webhook_secret

    def _idempotency_key(self, seed: str | uuid.UUID | None) -> str | None:
        if seed is None:
            return None
        return f"{self._idempotency_prefix}_{seed}"

    def create_checkout_session(
        self,
        *,
        booking_id: uuid.UUID,
        amount: Decimal,
        currency: str,
        success_url: str,
        cancel_url: str,
        product_name: str,
        customer_email: str | None = None,
    ) -> CheckoutSession:
        params: dict[str, Any] = {
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": str(booking_id),
            "metadata": {"booking_id": str(booking_id)},
            "payment_intent_data": {"metadata": {"booking_id": str(booking_id)}},
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": currency,
                        "unit_amount": to_minor_units(amount),
                        "product_data": {"name": product_name},
                    },
                }
            ],
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = self._client.checkout.sessions.create(
                params=params,
                options={"idempotency_key": self._idempotency_key(f"checkout-{booking_id}")},
            )
        except stripe.StripeError as exc:
            raise PaymentGatewayError("Failed to create checkout session") from exc
        return parse_checkout_session(session)

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        try:
            session = self._client.checkout.sessions.retrieve(
                session_id,
                params={"expand": ["payment_intent.latest_charge"]},
            )
        except stripe.InvalidRequestError as exc:
            raise PaymentGatewayNotFound("Checkout session not found") from exc
        except stripe.StripeError as exc:
            raise PaymentGatewayError("Failed to retrieve payment session") from exc
        return parse_checkout_session(session)

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        try:
            intent = self._client.payment_intents.retrieve(
                payment_intent_id, params={"expand": ["latest_charge"]}
            )
        except stripe.InvalidRequestError as exc:
            raise PaymentGatewayNotFound("Payment intent not found") from exc
        except stripe.StripeError as exc:
            raise PaymentGatewayError("Failed to retrieve payment intent") from exc
        return parse_payment_intent(intent)

    def create_refund(
        self,
        payment_intent_id: str,
        *,
        amount_minor_units: int,
        reason: str = "requested_by_customer",
        metadata: dict[str, Any] | None = None,
        idempotency_seed: str | None = None,
    ) -> Refund:
        if amount_minor_units <= 0:
            raise PaymentGatewayError("Invalid refund amount")
        try:
            refund = self._client.refunds.create(
                params={
                    "payment_intent": payment_intent_id,
                    "amount": amount_minor_units,
                    "reason": reason,
                    "metadata": dict(metadata or {}),
                },
                options={"idempotency_key": self._idempotency_key(idempotency_seed)},
            )
        except stripe.StripeError as exc:
            message = getattr(exc, "user_message", None) or str(exc)
            raise PaymentGatewayError(f"Failed to process refund: {message}") from exc
        data = _as_dict(refund)
        return Refund(
            id=str(data.get("id")),
            status=str(data.get("status", "unknown")),
            amount=data.get("amount"),
        )

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        if not self._webhook_secret:
            raise PaymentGatewayError("Webhook secret is not configured")
        try:
            event = stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=self._webhook_secret,
            )
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise PaymentGatewayError("Invalid webhook signature") from exc
        return _as_dict(event)
