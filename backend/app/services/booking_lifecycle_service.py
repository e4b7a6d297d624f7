"""Guest cancellation and host acceptance of a booking.

Both actions follow the admin console's rules: legality is checked against
the row that was read and repeated in the ``WHERE`` clause of a conditional
update, refunds go to the gateway before the booking row changes, and the
notices that follow are best effort.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import inspect, update
from sqlalchemy.exc import SQLAlchemyError
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
from app.services import availability_service, booking_service
from app.services.availability_service import DateRange
from app.services.exceptions import (
    BookingAccessError,
    BookingActionError,
    BookingConflictError,
    RefundBookkeepingError,
)
from app.services.notification_service import (
    BookingNotifier,
    SideEffects,
    announce_cancellation,
    announce_host_acceptance,
)

logger = logging.getLogger(__name__)

_CANCELLABLE_UNPAID = frozenset({BookingPaymentStatus.PENDING, BookingPaymentStatus.FAILED})


@dataclass(slots=True)
class GuestCancellationResult:
    booking_id: uuid.UUID
    status: BookingStatus
    payment_status: BookingPaymentStatus
    refund_eligible: bool
    refund_percentage: int
    refund_amount: Decimal
    refund_id: str | None = None
    message: str = "Booking cancelled successfully"
    warnings: list[str] = field(default_factory=list)

    @property
    def refund_processed(self) -> bool:
        return self.refund_id is not None


@dataclass(slots=True)
class AcceptanceResult:
    booking_id: uuid.UUID
    status: BookingStatus
    payment_status: BookingPaymentStatus
    property_title: str | None = None
    warnings: list[str] = field(default_factory=list)


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


async def _reload(session: AsyncSession, booking: Booking, effects: SideEffects) -> Booking:
    booking_id = booking.id
    try:
        return await booking_service.get_booking(session, booking_id, with_details=True)
    except Exception:
        logger.exception("Failed to reload booking %s after lifecycle change", booking_id)
        effects.warnings.append("booking details unavailable")
        return booking


def _ensure_guest_access(booking: Booking, actor: User | None, guest_email: str | None) -> None:
    if actor is not None and (actor.is_admin or actor.id == booking.guest_id):
        return
    # Bookings made without an account are matched on the email they were made with.
    if booking.guest_id is None and guest_email and booking.guest_email:
        if guest_email.strip().lower() == booking.guest_email.lower():
            return
    raise BookingAccessError("Not allowed to cancel this booking")


async def cancel_by_guest(
    session: AsyncSession,
    *,
    booking_id: uuid.UUID,
    actor: User | None,
    guest_email: str | None = None,
    reason: str | None = None,
    refund: bool = True,
    gateway: StripeClient | None = None,
    notifier: BookingNotifier | None = None,
    now: datetime | None = None,
) -> GuestCancellationResult:
    """Cancel a booking on the guest's behalf under the cancellation policy.

    Paid bookings are refunded through the gateway first, at the policy's
    percentage; a gateway failure leaves the booking untouched and a failed
    booking write after a successful refund raises
    :class:`RefundBookkeepingError`.
    """

    booking = await booking_service.get_booking(session, booking_id)
    _ensure_guest_access(booking, actor, guest_email)
    policy = booking_service.cancellation_policy(booking, now=now)
    if not policy.can_cancel:
        raise BookingActionError(policy.reason or "Booking cannot be cancelled")
    previous_payment_status = booking.payment_status
    if previous_payment_status is BookingPaymentStatus.PROCESSING:
        raise BookingActionError("Payment is still processing; please try again shortly")
    if previous_payment_status in REFUNDED_PAYMENT_STATUSES:
        raise BookingActionError("Booking has already been refunded")
    wants_refund = previous_payment_status is BookingPaymentStatus.PAID
    if wants_refund and not (refund and policy.refund_amount > 0):
        # A cancelled booking may never be left holding a paid status.
        raise BookingActionError(
            "Paid bookings can only be cancelled with a refund; please contact support"
        )
    if not wants_refund and previous_payment_status not in _CANCELLABLE_UNPAID:
        raise BookingActionError(
            f"Bookings with payment status {previous_payment_status.value} cannot be cancelled"
        )

    cancellation_reason = reason or "Cancelled by guest"
    if wants_refund and not booking.payment_intent_id:
        raise BookingActionError("No payment intent found for this booking")
    if wants_refund and gateway is None:
        raise PaymentGatewayError("Payment gateway is not configured")

    now = now or datetime.now(UTC)
    values: dict[str, Any] = {
        "status": BookingStatus.CANCELLED,
        "cancellation_reason": cancellation_reason,
        "cancelled_at": now,
        "updated_at": now,
    }
    guard = (
        Booking.status.not_in(list(TERMINAL_BOOKING_STATUSES)),
        Booking.payment_status == previous_payment_status,
    )

    if not wants_refund:
        changed = await _conditional_update(session, booking_id, *guard, **values)
        if not changed:
            await session.rollback()
            raise BookingActionError("Booking changed concurrently; please retry")
        await session.commit()
        logger.info("Booking %s cancelled by guest without refund", booking_id)
        effects = SideEffects()
        detailed = await _reload(session, booking, effects)
        await announce_cancellation(
            session, detailed, notifier or BookingNotifier(), effects, cancelled_by="guest"
        )
        return GuestCancellationResult(
            booking_id=booking_id,
            status=BookingStatus.CANCELLED,
            payment_status=previous_payment_status,
            refund_eligible=False,
            refund_percentage=0,
            refund_amount=Decimal("0.00"),
            warnings=effects.warnings,
        )

    amount_minor = to_minor_units(policy.refund_amount)
    total_minor = to_minor_units(booking.total_amount)
    currency = booking.currency.lower()
    method = booking.payment_method or "card"
    gateway_refund = gateway.create_refund(
        booking.payment_intent_id,
        amount_minor_units=amount_minor,
        reason="requested_by_customer",
        metadata={
            "booking_id": str(booking_id),
            "cancellation_reason": cancellation_reason,
            "cancelled_by": "guest",
        },
        idempotency_seed=f"booking-{booking_id}-guest-cancel-{amount_minor}",
    )
    logger.info(
        "Gateway refund %s created for guest cancellation of booking %s (%s minor units)",
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
    try:
        changed = await _conditional_update(
            session,
            booking_id,
            *guard,
            **values,
            payment_status=next_status,
            refund_amount=refunded,
            refund_date=now,
            refund_reason=cancellation_reason,
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
                        "cancelled_by": "guest",
                        "reason": cancellation_reason,
                        "refund_percentage": policy.refund_percentage,
                        "gateway_status": gateway_refund.status,
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
        raise RefundBookkeepingError(gateway_refund.id, "booking row was not updated")

    effects = SideEffects()
    detailed = await _reload(session, booking, effects)
    await announce_cancellation(
        session,
        detailed,
        notifier or BookingNotifier(),
        effects,
        refund_amount=refunded,
        cancelled_by="guest",
    )
    return GuestCancellationResult(
        booking_id=booking_id,
        status=BookingStatus.CANCELLED,
        payment_status=next_status,
        refund_eligible=True,
        refund_percentage=policy.refund_percentage,
        refund_amount=refunded,
        refund_id=gateway_refund.id,
        message="Booking cancelled and refund issued",
        warnings=effects.warnings,
    )


async def accept_by_host(
    session: AsyncSession,
    *,
    booking_id: uuid.UUID,
    actor: User,
    notifier: BookingNotifier | None = None,
) -> AcceptanceResult:
    """Move a pending booking to confirmed once its nights are re-checked."""

    booking = await booking_service.get_booking(session, booking_id)
    if not (actor.is_admin or actor.id == booking.host_id):
        raise BookingAccessError("Only the property host can accept bookings")
    if booking.status is not BookingStatus.PENDING:
        raise BookingActionError(
            f"Cannot accept booking with status: {booking.status.value}. "
            "Only pending bookings can be accepted."
        )

    await availability_service.get_property(session, booking.property_id, lock=True)
    blocked = await availability_service.find_blocked_ranges(
        session, booking.property_id, booking.check_in_date, booking.check_out_date
    )
    others = [
        other
        for other in await availability_service.find_conflicting_bookings(
            session, booking.property_id, booking.check_in_date, booking.check_out_date
        )
        if other.id != booking_id
    ]
    if blocked or others:
        ranges = [DateRange(b.start_date, b.end_date).as_dict() for b in blocked]
        ranges += [DateRange(b.check_in_date, b.check_out_date).as_dict() for b in others]
        await session.rollback()
        raise BookingConflictError("Property is no longer available for these dates", ranges)

    changed = await _conditional_update(
        session,
        booking_id,
        Booking.status == BookingStatus.PENDING,
        status=BookingStatus.CONFIRMED,
        updated_at=datetime.now(UTC),
    )
    if not changed:
        await session.rollback()
        raise BookingActionError("Booking changed concurrently; please retry")
    await session.commit()
    logger.info("Booking %s accepted by %s", booking_id, actor.id)

    effects = SideEffects()
    detailed = await _reload(session, booking, effects)
    await announce_host_acceptance(session, detailed, notifier or BookingNotifier(), effects)
    listing = None if "listing" in inspect(detailed).unloaded else detailed.listing
    return AcceptanceResult(
        booking_id=booking_id,
        status=BookingStatus.CONFIRMED,
        payment_status=detailed.payment_status,
        property_title=listing.title if listing else None,
        warnings=effects.warnings,
    )


__all__ = [
    "AcceptanceResult",
    "GuestCancellationResult",
    "accept_by_host",
    "cancel_by_guest",
]
