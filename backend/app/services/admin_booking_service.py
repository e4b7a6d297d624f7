"""Privileged manual transitions: mark paid, cancel and refund.

Each action validates against the row it read, then performs a conditional
update whose ``WHERE`` clause repeats the legality check so a concurrent
writer cannot be clobbered. Ledger lines are appended in the same transaction
as the status write; notifications and emails follow as best-effort steps.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.exc import OperationalError, ProgrammingError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.integrations.stripe_client import (
    PaymentGatewayError,
    StripeClient,
    from_minor_units,
    to_minor_units,
)
from app.models import (
    REFUNDED_PAYMENT_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    PaymentTransaction,
    PaymentTransactionStatus,
    PaymentTransactionType,
    User,
)
from app.services import booking_service
from app.services.exceptions import (
    AdminRequiredError,
    BookingActionError,
    RefundBookkeepingError,
)
from app.services.notification_service import (
    BookingNotifier,
    SideEffects,
    announce_cancellation,
    announce_payment_confirmed,
)

logger = logging.getLogger(__name__)

_SCHEMA_SHAPE_MARKERS = (
    "no such column",
    "has no column",
    "unknown column",
    "does not exist",
    "undefined column",
)
_UNDEFINED_COLUMN = "42703"


class AdminAction(str, enum.Enum):
    MARK_PAID = "mark_paid"
    CANCEL = "cancel"
    REFUND = "refund"


@dataclass(slots=True)
class AdminActionResult:
    success: bool
    message: str
    booking_id: uuid.UUID
    status: BookingStatus | None = None
    payment_status: BookingPaymentStatus | None = None
    refund_id: str | None = None
    refund_amount: Decimal | None = None
    degraded_write: bool = False
    warnings: list[str] = field(default_factory=list)


def _require_admin(actor: User | None) -> User:
    if actor is None or not actor.is_admin:
        raise AdminRequiredError("Admin access required")
    return actor


def is_schema_shape_error(exc: SQLAlchemyError) -> bool:
    """True when the store rejected a write because a column is missing."""

    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == _UNDEFINED_COLUMN:
        return True
    text = str(orig if orig is not None else exc).lower()
    return "column" in text and any(marker in text for marker in _SCHEMA_SHAPE_MARKERS)


async def _update_booking_fields(
    session: AsyncSession,
    booking_id: uuid.UUID,
    values: dict[str, Any],
    *criteria: Any,
) -> bool:
    stmt = (
        update(Booking)
        .where(Booking.id == booking_id, *criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def _write_with_fallback(
    session: AsyncSession,
    booking_id: uuid.UUID,
    full: dict[str, Any],
    reduced: dict[str, Any],
    *criteria: Any,
) -> tuple[bool, bool]:
    """Attempt ``full``; on a schema-shape rejection retry with ``reduced``.

    Returns ``(changed, degraded)``. Any other database error propagates.
    """

    try:
        return await _update_booking_fields(session, booking_id, full, *criteria), False
    except (ProgrammingError, OperationalError) as exc:
        if not is_schema_shape_error(exc):
            raise
        await session.rollback()
        logger.warning(
            "Booking %s rejected full update (%s); retrying with reduced fields",
            booking_id,
            exc.orig if exc.orig is not None else exc,
        )
    return await _update_booking_fields(session, booking_id, reduced, *criteria), True


def _result_from(
    booking: Booking, message: str, effects: SideEffects | None = None, **extra: Any
) -> AdminActionResult:
    return AdminActionResult(
        success=True,
        message=message,
        booking_id=booking.id,
        status=booking.status,
        payment_status=booking.payment_status,
        warnings=effects.warnings if effects else [],
        **extra,
    )


async def _reload(session: AsyncSession, booking_id: uuid.UUID, effects: SideEffects) -> Booking | None:
    try:
        return await booking_service.get_booking(session, booking_id, with_details=True)
    except Exception:
        logger.exception("Failed to reload booking %s after admin action", booking_id)
        effects.warnings.append("booking details unavailable")
        return None


def _announcement_subject(
    booking: Booking, detailed: Booking | None, degraded: bool, effects: SideEffects
) -> Booking | None:
    """Pick the row to announce from when the post-commit reload failed."""
    if detailed is not None:
        return detailed
    if degraded:
        # The schema fallback rolled back and expired the pre-read row.
        effects.warn("cancellation notifications skipped")
        return None
    return booking


async def mark_paid(
    session: AsyncSession,
    *,
    actor: User | None,
    booking_id: uuid.UUID,
    reason: str | None = None,
    notifier: BookingNotifier | None = None,
) -> AdminActionResult:
    admin = _require_admin(actor)
    booking = await booking_service.get_booking(session, booking_id)
    if booking.status is BookingStatus.CANCELLED:
        raise BookingActionError("Cancelled bookings cannot be marked as paid")
    if booking.payment_status is BookingPaymentStatus.PAID:
        return _result_from(booking, "Booking already marked as paid")

    now = datetime.now(UTC)
    values = {
        "payment_status": BookingPaymentStatus.PAID,
        "payment_method": func.coalesce(Booking.payment_method, "bank_transfer"),
    }
    guard = (
        Booking.payment_status != BookingPaymentStatus.PAID,
        Booking.status != BookingStatus.CANCELLED,
    )
    changed = await _update_booking_fields(
        session,
        booking_id,
        {**values, "status": BookingStatus.CONFIRMED},
        *guard,
        Booking.status.not_in(list(TERMINAL_BOOKING_STATUSES)),
    )
    if not changed:
        changed = await _update_booking_fields(
            session, booking_id, values, *guard, Booking.status == BookingStatus.COMPLETED
        )
    if not changed:
        await session.rollback()
        current = await booking_service.get_booking(session, booking_id, refresh=True)
        if current.payment_status is BookingPaymentStatus.PAID:
            return _result_from(current, "Booking already marked as paid")
        raise BookingActionError("Cancelled bookings cannot be marked as paid")

    session.add(
        PaymentTransaction(
            booking_id=booking.id,
            transaction_type=PaymentTransactionType.BANK_TRANSFER,
            amount=booking.total_amount,
            currency=booking.currency.lower(),
            status=PaymentTransactionStatus.SUCCEEDED,
            payment_method_type="bank_transfer",
            completed_at=now,
            metadata_={
                "approved_by": str(admin.id),
                "approved_by_email": admin.email,
                "reason": reason or "Bank transfer approved by admin",
                "source": "admin_mark_paid",
            },
        )
    )
    await session.commit()
    logger.info("Booking %s marked paid by admin %s", booking_id, admin.id)

    effects = SideEffects()
    detailed = await _reload(session, booking_id, effects)
    await announce_payment_confirmed(
        session, detailed or booking, notifier or BookingNotifier(), effects
    )
    if detailed is None:
        return AdminActionResult(
            success=True,
            message="Payment marked as paid and booking confirmed",
            booking_id=booking_id,
            status=BookingStatus.CONFIRMED,
            payment_status=BookingPaymentStatus.PAID,
            warnings=effects.warnings,
        )
    return _result_from(detailed, "Payment marked as paid and booking confirmed", effects)


async def cancel(
    session: AsyncSession,
    *,
    actor: User | None,
    booking_id: uuid.UUID,
    reason: str | None = None,
    notifier: BookingNotifier | None = None,
) -> AdminActionResult:
    admin_id = _require_admin(actor).id
    booking = await booking_service.get_booking(session, booking_id)
    _ensure_cancellable(booking)
    previous_payment_status = booking.payment_status

    now = datetime.now(UTC)
    changed, degraded = await _write_with_fallback(
        session,
        booking_id,
        {
            "status": BookingStatus.CANCELLED,
            "cancellation_reason": reason or "Cancelled by admin",
            "cancelled_at": now,
            "updated_at": now,
        },
        {"status": BookingStatus.CANCELLED, "updated_at": now},
        Booking.status.not_in(list(TERMINAL_BOOKING_STATUSES)),
        Booking.payment_status != BookingPaymentStatus.PAID,
    )
    if not changed:
        await session.rollback()
        _ensure_cancellable(await booking_service.get_booking(session, booking_id, refresh=True))
        raise BookingActionError("Booking changed concurrently; please retry")
    await session.commit()
    logger.info("Booking %s cancelled by admin %s", booking_id, admin_id)

    effects = SideEffects()
    detailed = await _reload(session, booking_id, effects)
    subject = _announcement_subject(booking, detailed, degraded, effects)
    if subject is not None:
        await announce_cancellation(session, subject, notifier or BookingNotifier(), effects)
    return AdminActionResult(
        success=True,
        message="Booking cancelled successfully",
        booking_id=booking_id,
        status=BookingStatus.CANCELLED,
        payment_status=detailed.payment_status if detailed else previous_payment_status,
        degraded_write=degraded,
        warnings=effects.warnings,
    )


def _ensure_cancellable(booking: Booking) -> None:
    if booking.status is BookingStatus.CANCELLED:
        raise BookingActionError("Booking is already cancelled")
    if booking.status is BookingStatus.COMPLETED:
        raise BookingActionError("Completed bookings cannot be cancelled")
    if booking.payment_status is BookingPaymentStatus.PAID:
        raise BookingActionError("Paid bookings must be refunded instead of cancelled")


async def refund(
    session: AsyncSession,
    *,
    actor: User | None,
    booking_id: uuid.UUID,
    refund_amount: Decimal | None,
    reason: str | None = None,
    gateway: StripeClient | None,
    notifier: BookingNotifier | None = None,
) -> AdminActionResult:
    """Refund through the gateway first, then record it on the booking.

    A gateway failure leaves the booking untouched. A gateway success followed
    by a failed booking write raises :class:`RefundBookkeepingError`.
    """

    admin_id = _require_admin(actor).id
    booking = await booking_service.get_booking(session, booking_id)
    if booking.payment_status in REFUNDED_PAYMENT_STATUSES:
        return _result_from(booking, "Booking already refunded")
    if refund_amount is None or refund_amount <= 0:
        raise BookingActionError("refund_amount must be a positive number")
    if not booking.payment_intent_id:
        raise BookingActionError("No payment intent found for this booking")
    if gateway is None:
        raise PaymentGatewayError("Payment gateway is not configured")

    amount_minor = to_minor_units(refund_amount)
    total_minor = to_minor_units(booking.total_amount)
    # A schema fallback rolls the session back and expires the loaded row.
    currency = booking.currency.lower()
    method = booking.payment_method or "card"
    refund_reason = reason or "Refund processed by admin"
    gateway_refund = gateway.create_refund(
        booking.payment_intent_id,
        amount_minor_units=amount_minor,
        reason="requested_by_customer",
        metadata={
            "booking_id": str(booking.id),
            "refund_reason": refund_reason,
            "approved_by": str(admin_id),
        },
        idempotency_seed=f"booking-{booking.id}-refund-{amount_minor}",
    )
    logger.info(
        "Gateway refund %s created for booking %s (%s minor units)",
        gateway_refund.id,
        booking_id,
        amount_minor,
    )

    next_status = (
        BookingPaymentStatus.REFUNDED
        if amount_minor >= total_minor
        else BookingPaymentStatus.PARTIALLY_REFUNDED
    )
    refunded = from_minor_units(amount_minor)
    now = datetime.now(UTC)
    try:
        changed, degraded = await _write_with_fallback(
            session,
            booking_id,
            {
                "status": BookingStatus.CANCELLED,
                "cancellation_reason": reason or "Cancelled and refunded by admin",
                "cancelled_at": now,
                "payment_status": next_status,
                "refund_amount": refunded,
                "refund_date": now,
                "refund_reason": refund_reason,
                "updated_at": now,
            },
            {
                "status": BookingStatus.CANCELLED,
                "payment_status": next_status,
                "refund_amount": refunded,
                "updated_at": now,
            },
            Booking.payment_status.not_in(list(REFUNDED_PAYMENT_STATUSES)),
        )
        if changed:
            session.add(
                PaymentTransaction(
                    booking_id=booking_id,
                    transaction_type=PaymentTransactionType.REFUND,
                    amount=refunded,
                    currency=currency,
                    status=PaymentTransactionStatus.SUCCEEDED,
                    payment_method_type=method,
                    provider_reference=gateway_refund.id,
                    completed_at=now,
                    metadata_={
                        "approved_by": str(admin_id),
                        "reason": refund_reason,
                        "gateway_status": gateway_refund.status,
                        "payment_status": next_status.value,
                    },
                )
            )
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(
            "Refund %s processed but booking %s update failed: %s",
            gateway_refund.id,
            booking_id,
            exc,
        )
        raise RefundBookkeepingError(gateway_refund.id, str(exc)) from exc

    if not changed:
        current = await booking_service.get_booking(session, booking_id, refresh=True)
        if current.payment_status in REFUNDED_PAYMENT_STATUSES:
            # A duplicate submission; the idempotency key returned the same refund.
            return _result_from(current, "Booking already refunded", refund_id=gateway_refund.id)
        raise RefundBookkeepingError(gateway_refund.id, "booking row was not updated")

    effects = SideEffects()
    detailed = await _reload(session, booking_id, effects)
    subject = _announcement_subject(booking, detailed, degraded, effects)
    if subject is not None:
        await announce_cancellation(
            session,
            subject,
            notifier or BookingNotifier(),
            effects,
            refund_amount=refunded,
        )
    return AdminActionResult(
        success=True,
        message="Refund processed and booking cancelled successfully",
        booking_id=booking_id,
        status=BookingStatus.CANCELLED,
        payment_status=next_status,
        refund_id=gateway_refund.id,
        refund_amount=refunded,
        degraded_write=degraded,
        warnings=effects.warnings,
    )


async def process_action(
    session: AsyncSession,
    *,
    actor: User | None,
    booking_id: uuid.UUID,
    action: AdminAction,
    reason: str | None = None,
    refund_amount: Decimal | None = None,
    gateway: StripeClient | None = None,
    notifier: BookingNotifier | None = None,
) -> AdminActionResult:
    if action is AdminAction.MARK_PAID:
        return await mark_paid(
            session, actor=actor, booking_id=booking_id, reason=reason, notifier=notifier
        )
    if action is AdminAction.CANCEL:
        return await cancel(
            session, actor=actor, booking_id=booking_id, reason=reason, notifier=notifier
        )
    if action is AdminAction.REFUND:
        return await refund(
            session,
            actor=actor,
            booking_id=booking_id,
            refund_amount=refund_amount,
            reason=reason,
            gateway=gateway,
            notifier=notifier,
        )
    raise BookingActionError("Unsupported action")


__all__ = [
    "AdminAction",
    "AdminActionResult",
    "cancel",
    "is_schema_shape_error",
    "mark_paid",
    "process_action",
    "refund",
]
