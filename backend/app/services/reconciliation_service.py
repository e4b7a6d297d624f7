"""Converge a booking's persisted payment state with gateway evidence.

Evidence arrives from the post-checkout verify poll and from webhooks, in any
order and possibly more than once. Every write here is a conditional
``UPDATE ... WHERE`` whose legality check lives in the ``WHERE`` clause, and
the affected row count decides whether this caller performed the transition.
Only that caller appends the ledger line and emits notifications.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.integrations.stripe_client import CheckoutSession, PaymentIntent, from_minor_units
from app.models import (
    REFUNDED_PAYMENT_STATUSES,
    SETTLEABLE_PAYMENT_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    PaymentTransaction,
    PaymentTransactionStatus,
    PaymentTransactionType,
)
from app.services import booking_service
from app.services.notification_service import (
    BookingNotifier,
    SideEffects,
    announce_payment_confirmed,
)

logger = logging.getLogger(__name__)


class EvidenceSource(str, enum.Enum):
    WEBHOOK = "webhook"
    VERIFY_POLL = "verify_poll"


class ProviderStatus(str, enum.Enum):
    """Gateway status normalised to what the booking state machine understands."""

    SUCCEEDED = "succeeded"
    PROCESSING = "processing"
    REQUIRES_ACTION = "requires_action"
    FAILED = "failed"
    CANCELED = "canceled"


_INTENT_STATUS_MAP: Mapping[str, ProviderStatus] = {
    "succeeded": ProviderStatus.SUCCEEDED,
    "processing": ProviderStatus.PROCESSING,
    "requires_capture": ProviderStatus.PROCESSING,
    "requires_action": ProviderStatus.REQUIRES_ACTION,
    "requires_confirmation": ProviderStatus.REQUIRES_ACTION,
    "requires_payment_method": ProviderStatus.FAILED,
    "canceled": ProviderStatus.CANCELED,
}


@dataclass(slots=True)
class PaymentEvidence:
    """Snapshot of what the gateway says about one booking's payment."""

    source: EvidenceSource
    provider_status: ProviderStatus
    session_id: str | None = None
    payment_intent_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    payment_method: str | None = None
    failure_message: str | None = None


@dataclass(slots=True)
class ReconciliationResult:
    booking_id: uuid.UUID
    transitioned: bool
    payment_status: BookingPaymentStatus | None
    status: BookingStatus | None
    booking: Booking | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        # The write already landed (or had already landed) when a result exists.
        return True


def derive_provider_status(
    checkout: CheckoutSession | None, intent: PaymentIntent | None
) -> ProviderStatus:
    """Fold independently observed signals into one status.

    Any single signal reporting settlement is sufficient proof of payment.
    """

    if checkout is not None and (
        checkout.payment_status == "paid" or checkout.status == "complete"
    ):
        return ProviderStatus.SUCCEEDED
    if intent is not None:
        if intent.status == "succeeded":
            return ProviderStatus.SUCCEEDED
        return _INTENT_STATUS_MAP.get(intent.status, ProviderStatus.PROCESSING)
    if checkout is not None and checkout.status == "expired":
        return ProviderStatus.CANCELED
    return ProviderStatus.PROCESSING


def evidence_from_checkout(
    checkout: CheckoutSession,
    *,
    source: EvidenceSource,
    intent: PaymentIntent | None = None,
    provider_status: ProviderStatus | None = None,
) -> PaymentEvidence:
    intent = intent or checkout.payment_intent
    charge = intent.latest_charge if intent is not None else None
    payment_method = None
    if charge is not None and charge.payment_method_type:
        payment_method = charge.payment_method_type
    elif checkout.payment_method_types:
        payment_method = checkout.payment_method_types[0]
    amount_minor = checkout.amount_total
    if amount_minor is None and intent is not None:
        amount_minor = intent.amount
    return PaymentEvidence(
        source=source,
        provider_status=provider_status or derive_provider_status(checkout, intent),
        session_id=checkout.id,
        payment_intent_id=intent.id if intent is not None else checkout.payment_intent_id,
        amount=from_minor_units(amount_minor),
        currency=checkout.currency or (intent.currency if intent else None),
        payment_method=payment_method,
        failure_message=intent.failure_message if intent is not None else None,
    )


async def _conditional_update(
    session: AsyncSession, booking_id: uuid.UUID, *criteria: Any, **values: Any
) -> bool:
    stmt = (
        update(Booking)
        .where(Booking.id == booking_id, *criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def _fill_correlation_ids(
    session: AsyncSession, booking_id: uuid.UUID, evidence: PaymentEvidence
) -> None:
    """Fill gateway ids that are still null; existing values are never replaced."""

    values: dict[str, Any] = {}
    criteria = []
    if evidence.payment_intent_id:
        values["payment_intent_id"] = func.coalesce(
            Booking.payment_intent_id, evidence.payment_intent_id
        )
        criteria.append(Booking.payment_intent_id.is_(None))
    if evidence.session_id:
        values["external_session_id"] = func.coalesce(
            Booking.external_session_id, evidence.session_id
        )
        criteria.append(Booking.external_session_id.is_(None))
    if values:
        await _conditional_update(session, booking_id, or_(*criteria), **values)


async def _settle(
    session: AsyncSession, booking_id: uuid.UUID, evidence: PaymentEvidence
) -> bool:
    values = {
        "payment_status": BookingPaymentStatus.PAID,
        "payment_method": evidence.payment_method or "card",
    }
    flipped = await _conditional_update(
        session,
        booking_id,
        Booking.payment_status.in_(list(SETTLEABLE_PAYMENT_STATUSES)),
        Booking.status.not_in(list(TERMINAL_BOOKING_STATUSES)),
        status=BookingStatus.CONFIRMED,
        **values,
    )
    if flipped:
        return True
    # A completed stay keeps its status; only the payment dimension moves.
    return await _conditional_update(
        session,
        booking_id,
        Booking.payment_status.in_(list(SETTLEABLE_PAYMENT_STATUSES)),
        Booking.status == BookingStatus.COMPLETED,
        **values,
    )


async def _mark_failed(session: AsyncSession, booking_id: uuid.UUID) -> bool:
    return await _conditional_update(
        session,
        booking_id,
        Booking.payment_status.in_(
            [BookingPaymentStatus.PENDING, BookingPaymentStatus.PROCESSING]
        ),
        Booking.status.not_in(list(TERMINAL_BOOKING_STATUSES)),
        payment_status=BookingPaymentStatus.FAILED,
    )


async def _mark_processing(session: AsyncSession, booking_id: uuid.UUID) -> bool:
    return await _conditional_update(
        session,
        booking_id,
        Booking.payment_status == BookingPaymentStatus.PENDING,
        Booking.status.not_in(list(TERMINAL_BOOKING_STATUSES)),
        payment_status=BookingPaymentStatus.PROCESSING,
    )


def _ledger_line(
    booking: Booking,
    evidence: PaymentEvidence,
    status: PaymentTransactionStatus,
) -> PaymentTransaction:
    metadata: dict[str, Any] = {
        "source": evidence.source.value,
        "provider_status": evidence.provider_status.value,
    }
    if evidence.session_id:
        metadata["session_id"] = evidence.session_id
    if evidence.failure_message:
        metadata["failure_message"] = evidence.failure_message
    return PaymentTransaction(
        booking_id=booking.id,
        transaction_type=PaymentTransactionType.CARD,
        amount=evidence.amount if evidence.amount is not None else booking.total_amount,
        currency=(evidence.currency or booking.currency).lower(),
        status=status,
        payment_method_type=evidence.payment_method or "card",
        provider_reference=evidence.payment_intent_id,
        completed_at=datetime.now(UTC) if status is PaymentTransactionStatus.SUCCEEDED else None,
        metadata_=metadata,
    )


async def apply_evidence(
    session: AsyncSession,
    booking_id: uuid.UUID,
    evidence: PaymentEvidence,
    *,
    notifier: BookingNotifier | None = None,
) -> ReconciliationResult:
    """Apply ``evidence`` to a booking exactly once.

    Raises :class:`BookingNotFoundError` for unknown ids. Zero affected rows
    means another writer already made the transition and is not an error.
    """

    booking = await booking_service.get_booking(session, booking_id)
    effects = SideEffects()
    status = evidence.provider_status

    if status is ProviderStatus.SUCCEEDED:
        transitioned = await _settle(session, booking_id, evidence)
        ledger_status = PaymentTransactionStatus.SUCCEEDED
    elif status in (ProviderStatus.FAILED, ProviderStatus.CANCELED):
        transitioned = await _mark_failed(session, booking_id)
        ledger_status = PaymentTransactionStatus.FAILED
    else:
        transitioned = await _mark_processing(session, booking_id)
        ledger_status = None

    await _fill_correlation_ids(session, booking_id, evidence)
    if transitioned and ledger_status is not None:
        session.add(_ledger_line(booking, evidence, ledger_status))
    await session.commit()

    if transitioned:
        logger.info(
            "Booking %s moved by %s evidence (%s)",
            booking_id,
            evidence.source.value,
            status.value,
        )
    else:
        logger.debug(
            "Booking %s unchanged by %s evidence (%s)",
            booking_id,
            evidence.source.value,
            status.value,
        )

    detailed: Booking | None = None
    try:
        detailed = await booking_service.get_booking(session, booking_id, with_details=True)
    except Exception:
        logger.exception("Failed to reload booking %s after reconciliation", booking_id)
        effects.warnings.append("booking details unavailable")

    if detailed is not None and status is ProviderStatus.SUCCEEDED and not transitioned:
        if detailed.status is BookingStatus.CANCELLED and (
            detailed.payment_status not in REFUNDED_PAYMENT_STATUSES
        ):
            effects.warn(
                f"Payment succeeded for cancelled booking {booking_id}; manual refund required"
            )

    if transitioned and status is ProviderStatus.SUCCEEDED:
        # Only this caller flipped the row, so it must notify even without details.
        await announce_payment_confirmed(
            session, detailed or booking, notifier or BookingNotifier(), effects
        )

    return ReconciliationResult(
        booking_id=booking_id,
        transitioned=transitioned,
        payment_status=detailed.payment_status if detailed else None,
        status=detailed.status if detailed else None,
        booking=detailed,
        warnings=effects.warnings,
    )


__all__ = [
    "EvidenceSource",
    "PaymentEvidence",
    "ProviderStatus",
    "ReconciliationResult",
    "apply_evidence",
    "derive_provider_status",
    "evidence_from_checkout",
]
