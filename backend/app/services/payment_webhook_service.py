"""Gateway webhook processing with an event ledger for idempotency."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.integrations.stripe_client import (
    from_minor_units,
    parse_checkout_session,
    parse_payment_intent,
)
from app.models import (
    Booking,
    BookingPaymentStatus,
    PaymentEvent,
    PaymentTransaction,
    PaymentTransactionStatus,
    PaymentTransactionType,
)
from app.services import reconciliation_service
from app.services.exceptions import BookingNotFoundError
from app.services.notification_service import BookingNotifier
from app.services.reconciliation_service import (
    EvidenceSource,
    PaymentEvidence,
    ProviderStatus,
)

logger = logging.getLogger(__name__)

_CHECKOUT_STATUS_OVERRIDES: dict[str, ProviderStatus | None] = {
    "checkout.session.completed": None,
    "checkout.session.async_payment_succeeded": ProviderStatus.SUCCEEDED,
    "checkout.session.async_payment_failed": ProviderStatus.FAILED,
    "checkout.session.expired": ProviderStatus.CANCELED,
}
_INTENT_EVENTS: dict[str, ProviderStatus] = {
    "payment_intent.succeeded": ProviderStatus.SUCCEEDED,
    "payment_intent.payment_failed": ProviderStatus.FAILED,
}
_SETTLED_PAYMENT_STATUSES = [
    BookingPaymentStatus.PAID,
    BookingPaymentStatus.PARTIALLY_REFUNDED,
]


def _parse_uuid(value: Any) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


async def _booking_id_for(
    session: AsyncSession,
    *,
    metadata_booking_id: Any = None,
    payment_intent_id: str | None = None,
    session_id: str | None = None,
) -> uuid.UUID | None:
    booking_id = _parse_uuid(metadata_booking_id)
    if booking_id is not None:
        return booking_id
    criteria = []
    if payment_intent_id:
        criteria.append(Booking.payment_intent_id == payment_intent_id)
    if session_id:
        criteria.append(Booking.external_session_id == session_id)
    if not criteria:
        return None
    result = await session.execute(select(Booking.id).where(or_(*criteria)).limit(1))
    return result.scalar_one_or_none()


async def _claim_event(
    session: AsyncSession,
    *,
    event_id: str,
    event_type: str,
    payload: dict[str, Any],
) -> PaymentEvent | None:
    """Insert the event row first; ``None`` means it was already processed."""

    stmt = select(PaymentEvent).where(PaymentEvent.provider_event_id == event_id)
    event = (await session.execute(stmt)).scalar_one_or_none()
    if event is None:
        event = PaymentEvent(provider_event_id=event_id, event_type=event_type, raw=payload)
        session.add(event)
        try:
            await session.commit()
            return event
        except IntegrityError:
            # A concurrent delivery inserted it first.
            await session.rollback()
            event = (await session.execute(stmt)).scalar_one()
    if event.processed_at is not None:
        return None
    event.processing_attempts += 1
    await session.commit()
    return event


async def _apply_refund_markers(
    session: AsyncSession, booking_id: uuid.UUID, charge: dict[str, Any]
) -> str:
    amount_minor = int(charge.get("amount") or 0)
    refunded_minor = int(charge.get("amount_refunded") or 0)
    if refunded_minor <= 0:
        return "ignored"
    next_status = (
        BookingPaymentStatus.REFUNDED
        if amount_minor and refunded_minor >= amount_minor
        else BookingPaymentStatus.PARTIALLY_REFUNDED
    )
    refunded = from_minor_units(refunded_minor)
    now = datetime.now(UTC)
    result = await session.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.payment_status.in_(_SETTLED_PAYMENT_STATUSES),
            or_(Booking.refund_amount.is_(None), Booking.refund_amount < refunded),
        )
        .values(payment_status=next_status, refund_amount=refunded, refund_date=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return "unchanged"
    booking = await session.get(Booking, booking_id)
    session.add(
        PaymentTransaction(
            booking_id=booking_id,
            transaction_type=PaymentTransactionType.REFUND,
            amount=refunded,
            currency=(charge.get("currency") or (booking.currency if booking else "cad")).lower(),
            status=PaymentTransactionStatus.SUCCEEDED,
            payment_method_type=booking.payment_method if booking else None,
            provider_reference=charge.get("id"),
            completed_at=now,
            metadata_={"source": "webhook", "payment_status": next_status.value},
        )
    )
    return "processed"


async def _apply_dispute(session: AsyncSession, booking_id: uuid.UUID) -> str:
    result = await session.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.payment_status.in_(_SETTLED_PAYMENT_STATUSES),
        )
        .values(payment_status=BookingPaymentStatus.DISPUTED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        logger.warning("Booking %s payment disputed", booking_id)
        return "processed"
    return "unchanged"


async def _dispatch(
    session: AsyncSession,
    event: PaymentEvent,
    event_type: str,
    obj: dict[str, Any],
    notifier: BookingNotifier | None,
) -> dict[str, Any]:
    metadata = obj.get("metadata") or {}

    if event_type in _CHECKOUT_STATUS_OVERRIDES:
        checkout = parse_checkout_session(obj)
        booking_id = await _booking_id_for(
            session,
            metadata_booking_id=checkout.booking_id,
            payment_intent_id=checkout.payment_intent_id,
            session_id=checkout.id,
        )
        event.booking_id = booking_id
        event.payment_intent_id = checkout.payment_intent_id
        if booking_id is None:
            return {"status": "ignored", "reason": "booking not found"}
        evidence = reconciliation_service.evidence_from_checkout(
            checkout,
            source=EvidenceSource.WEBHOOK,
            provider_status=_CHECKOUT_STATUS_OVERRIDES[event_type],
        )
        outcome = await reconciliation_service.apply_evidence(
            session, booking_id, evidence, notifier=notifier
        )
        return {"status": "processed", "transitioned": outcome.transitioned}

    if event_type in _INTENT_EVENTS:
        intent = parse_payment_intent(obj)
        booking_id = await _booking_id_for(
            session,
            metadata_booking_id=metadata.get("booking_id") or metadata.get("bookingId"),
            payment_intent_id=intent.id,
        )
        event.booking_id = booking_id
        event.payment_intent_id = intent.id
        if booking_id is None:
            return {"status": "ignored", "reason": "booking not found"}
        charge = intent.latest_charge
        evidence = PaymentEvidence(
            source=EvidenceSource.WEBHOOK,
            provider_status=_INTENT_EVENTS[event_type],
            payment_intent_id=intent.id,
            amount=from_minor_units(obj.get("amount_received") or intent.amount),
            currency=intent.currency,
            payment_method=charge.payment_method_type if charge else None,
            failure_message=intent.failure_message,
        )
        outcome = await reconciliation_service.apply_evidence(
            session, booking_id, evidence, notifier=notifier
        )
        return {"status": "processed", "transitioned": outcome.transitioned}

    if event_type in ("charge.refunded", "charge.dispute.created"):
        payment_intent_id = obj.get("payment_intent")
        booking_id = await _booking_id_for(
            session,
            metadata_booking_id=metadata.get("booking_id"),
            payment_intent_id=payment_intent_id,
        )
        event.booking_id = booking_id
        event.payment_intent_id = payment_intent_id
        if booking_id is None:
            return {"status": "ignored", "reason": "booking not found"}
        if event_type == "charge.refunded":
            outcome_status = await _apply_refund_markers(session, booking_id, obj)
        else:
            outcome_status = await _apply_dispute(session, booking_id)
        await session.commit()
        return {"status": outcome_status}

    return {"status": "ignored"}


async def process_event(
    session: AsyncSession,
    payload: dict[str, Any],
    *,
    notifier: BookingNotifier | None = None,
) -> dict[str, Any]:
    """Process one verified gateway event at most once.

    Handler failures are recorded on the event row and re-raised so the
    receiving route answers 500 and the gateway redelivers.
    """

    event_id = str(payload.get("id") or f"evt_local_{uuid.uuid4().hex}")
    event_type = str(payload.get("type") or "")
    obj = (payload.get("data") or {}).get("object") or {}

    event = await _claim_event(
        session, event_id=event_id, event_type=event_type, payload=payload
    )
    if event is None:
        logger.info("Webhook event %s already processed", event_id)
        return {"status": "already_processed", "event_id": event_id}

    try:
        outcome = await _dispatch(session, event, event_type, obj, notifier)
    except BookingNotFoundError:
        await session.rollback()
        outcome = {"status": "ignored", "reason": "booking not found"}
    except Exception as exc:
        await session.rollback()
        event.last_error = str(exc)[:2000]
        await session.commit()
        logger.exception("Webhook event %s (%s) failed", event_id, event_type)
        raise

    event.processed_at = datetime.now(UTC)
    event.last_error = None
    await session.commit()
    logger.info("Webhook event %s (%s): %s", event_id, event_type, outcome["status"])
    return {**outcome, "event_id": event_id}


__all__ = ["process_event"]
