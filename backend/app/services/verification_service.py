"""Post-checkout verification: poll the gateway, then reconcile."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.settings import get_payment_settings
from app.integrations.stripe_client import (
    CheckoutSession,
    PaymentGatewayError,
    PaymentIntent,
    StripeClient,
)
from app.models import REFUNDED_PAYMENT_STATUSES, Booking, BookingPaymentStatus, BookingStatus
from app.services import booking_service, reconciliation_service
from app.services.exceptions import InvalidCheckoutSessionError
from app.services.notification_service import BookingNotifier
from app.services.reconciliation_service import EvidenceSource, ProviderStatus

logger = logging.getLogger(__name__)

# Intent states that can still settle without further customer input.
_INTENT_IN_FLIGHT = frozenset({"processing", "requires_capture"})


@dataclass(slots=True)
class VerificationResult:
    success: bool
    booking_id: uuid.UUID
    payment_status: str | None
    booking: Booking | None = None
    processing: bool = False
    message: str | None = None
    warnings: list[str] = field(default_factory=list)


def _booking_id_from(checkout: CheckoutSession) -> uuid.UUID:
    raw = checkout.booking_id
    if not raw:
        raise InvalidCheckoutSessionError("Invalid session: missing booking ID")
    try:
        return uuid.UUID(str(raw))
    except ValueError as exc:
        raise InvalidCheckoutSessionError("Invalid session: malformed booking ID") from exc


def _still_pending(
    checkout: CheckoutSession, intent: PaymentIntent | None, status: ProviderStatus
) -> bool:
    if status is ProviderStatus.SUCCEEDED:
        return False
    if status is ProviderStatus.PROCESSING:
        return True
    # An open session can still be completed, even after a declined card.
    return checkout.status == "open" or (
        intent is not None and intent.status in _INTENT_IN_FLIGHT
    )


def _resolve_intent(gateway: StripeClient, checkout: CheckoutSession) -> PaymentIntent | None:
    if checkout.payment_intent is not None or not checkout.payment_intent_id:
        return checkout.payment_intent
    try:
        return gateway.retrieve_payment_intent(checkout.payment_intent_id)
    except PaymentGatewayError:
        # The session fields alone may still prove settlement.
        logger.warning(
            "Payment intent lookup failed for session %s", checkout.id, exc_info=True
        )
        return None


async def verify_checkout_session(
    session: AsyncSession,
    session_id: str,
    *,
    gateway: StripeClient,
    notifier: BookingNotifier | None = None,
    max_attempts: int | None = None,
    backoff_seconds: float | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> VerificationResult:
    """Poll ``session_id`` until it settles or attempts run out, then reconcile.

    Gateway lookups that cannot find the session raise
    :class:`PaymentGatewayNotFound`; a session without a booking reference
    raises :class:`InvalidCheckoutSessionError`.
    """

    settings = get_payment_settings()
    attempts = max(1, max_attempts or settings.verify_max_attempts)
    backoff = settings.verify_backoff_seconds if backoff_seconds is None else backoff_seconds

    checkout: CheckoutSession | None = None
    intent: PaymentIntent | None = None
    status = ProviderStatus.PROCESSING
    booking_id: uuid.UUID | None = None
    pending = True

    for attempt in range(1, attempts + 1):
        checkout = gateway.retrieve_checkout_session(session_id)
        booking_id = _booking_id_from(checkout)
        intent = _resolve_intent(gateway, checkout)
        status = reconciliation_service.derive_provider_status(checkout, intent)
        logger.debug(
            "Verify attempt %s/%s for session %s: %s", attempt, attempts, session_id, status.value
        )
        pending = _still_pending(checkout, intent, status)
        if not pending:
            break

        # A webhook may already have settled the booking.
        stored = await booking_service.get_booking(session, booking_id, refresh=True)
        if stored.payment_status is BookingPaymentStatus.PAID:
            status = ProviderStatus.SUCCEEDED
            break
        if attempt < attempts:
            await sleep(backoff)

    if pending and status is not ProviderStatus.SUCCEEDED:
        # Out of attempts while the customer can still pay; never record a failure yet.
        status = ProviderStatus.PROCESSING

    evidence = reconciliation_service.evidence_from_checkout(
        checkout,
        source=EvidenceSource.VERIFY_POLL,
        intent=intent,
        provider_status=status,
    )
    outcome = await reconciliation_service.apply_evidence(
        session, booking_id, evidence, notifier=notifier
    )
    payment_status = outcome.payment_status.value if outcome.payment_status else None

    if status is ProviderStatus.SUCCEEDED and outcome.status is BookingStatus.CANCELLED:
        # The charge landed after the booking was cancelled; nothing to confirm.
        refunded = outcome.payment_status in REFUNDED_PAYMENT_STATUSES
        return VerificationResult(
            success=False,
            booking_id=booking_id,
            payment_status=payment_status,
            booking=outcome.booking,
            message="Payment received for a cancelled booking; it has been refunded"
            if refunded
            else "Payment received for a cancelled booking; a refund is pending",
            warnings=outcome.warnings,
        )
    if status is ProviderStatus.SUCCEEDED:
        return VerificationResult(
            success=True,
            booking_id=booking_id,
            payment_status=payment_status or BookingPaymentStatus.PAID.value,
            booking=outcome.booking,
            message="Payment verified and booking confirmed"
            if outcome.transitioned
            else "Payment already verified",
            warnings=outcome.warnings,
        )
    if status in (ProviderStatus.PROCESSING, ProviderStatus.REQUIRES_ACTION):
        return VerificationResult(
            success=False,
            booking_id=booking_id,
            payment_status=payment_status,
            booking=outcome.booking,
            processing=True,
            message="Payment is still processing. Please check again shortly.",
            warnings=outcome.warnings,
        )
    return VerificationResult(
        success=False,
        booking_id=booking_id,
        payment_status=payment_status,
        booking=outcome.booking,
        message="Payment was canceled"
        if status is ProviderStatus.CANCELED
        else "Payment failed",
        warnings=outcome.warnings,
    )


__all__ = ["VerificationResult", "verify_checkout_session"]
