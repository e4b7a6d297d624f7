"""Booking lookup, creation and the guest-facing cancellation policy."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import get_settings
from app.models import (
    TERMINAL_BOOKING_STATUSES,
    Booking,
    BookingPaymentStatus,
    BookingStatus,
)
from app.services import availability_service
from app.services.exceptions import (
    BookingActionError,
    BookingNotFoundError,
)
from app.services.notification_service import (
    BookingNotifier,
    SideEffects,
    announce_new_booking,
)

logger = logging.getLogger(__name__)

_DETAIL_OPTIONS = (
    selectinload(Booking.listing),
    selectinload(Booking.host),
    selectinload(Booking.guest),
)


async def get_booking(
    session: AsyncSession,
    booking_id: uuid.UUID,
    *,
    with_details: bool = False,
    refresh: bool = False,
) -> Booking:
    """Return a booking or raise :class:`BookingNotFoundError`."""

    booking = await session.get(
        Booking,
        booking_id,
        options=list(_DETAIL_OPTIONS) if with_details else None,
        populate_existing=refresh or with_details,
    )
    if booking is None:
        raise BookingNotFoundError(booking_id)
    return booking


async def list_bookings(
    session: AsyncSession,
    *,
    status: BookingStatus | None = None,
    property_id: uuid.UUID | None = None,
    guest_id: uuid.UUID | None = None,
    host_id: uuid.UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[Sequence[Booking], int]:
    filters = []
    if status is not None:
        filters.append(Booking.status == status)
    if property_id is not None:
        filters.append(Booking.property_id == property_id)
    if guest_id is not None:
        filters.append(Booking.guest_id == guest_id)
    if host_id is not None:
        filters.append(Booking.host_id == host_id)

    total = await session.scalar(select(func.count(Booking.id)).where(*filters))
    stmt = (
        select(Booking)
        .options(*_DETAIL_OPTIONS)
        .where(*filters)
        .order_by(Booking.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(stmt)
    return result.scalars().unique().all(), int(total or 0)


def _validate_stay(check_in: date, check_out: date, guests: int, *, today: date) -> None:
    settings = get_settings()
    if check_in < today:
        raise BookingActionError("Check-in date cannot be in the past")
    if check_out <= check_in:
        raise BookingActionError("Check-out date must be after check-in date")
    if (check_out - check_in).days > settings.booking_max_nights:
        raise BookingActionError(
            f"Maximum stay is {settings.booking_max_nights} nights"
        )
    if guests < 1:
        raise BookingActionError("At least 1 guest is required")
    if guests > settings.booking_max_guests:
        raise BookingActionError(
            f"Maximum {settings.booking_max_guests} guests allowed"
        )


async def create_booking(
    session: AsyncSession,
    *,
    property_id: uuid.UUID,
    check_in: date,
    check_out: date,
    guests: int,
    total_amount: Decimal,
    guest_name: str,
    guest_email: str,
    guest_phone: str | None = None,
    special_requests: str | None = None,
    guest_id: uuid.UUID | None = None,
    notifier: BookingNotifier | None = None,
    today: date | None = None,
) -> tuple[Booking, list[str]]:
    """Validate and reserve a new ``pending/pending`` booking.

    Returns the stored booking plus any warnings from the host notification
    and guest request email.
    """

    _validate_stay(check_in, check_out, guests, today=today or datetime.now(UTC).date())
    if total_amount <= 0:
        raise BookingActionError("Total amount must be greater than 0")
    if len(guest_name.strip()) < 2:
        raise BookingActionError("Guest name must be at least 2 characters")

    listing = await availability_service.get_property(session, property_id)
    if not listing.is_active:
        raise BookingActionError("This property is currently not available for booking")
    if guests > listing.max_guests:
        raise BookingActionError(
            f"This property can only accommodate up to {listing.max_guests} guests"
        )

    booking = Booking(
        property_id=listing.id,
        host_id=listing.host_id,
        guest_id=guest_id,
        check_in_date=check_in,
        check_out_date=check_out,
        guests_count=guests,
        total_amount=total_amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        currency=get_settings().default_currency,
        guest_name=guest_name.strip(),
        guest_email=guest_email,
        guest_phone=guest_phone,
        special_requests=special_requests or None,
        status=BookingStatus.PENDING,
        payment_status=BookingPaymentStatus.PENDING,
    )
    booking = await availability_service.reserve(session, booking)
    logger.info("Booking %s created for property %s", booking.id, property_id)

    effects = SideEffects()
    detailed: Booking | None = None
    try:
        detailed = await get_booking(session, booking.id, with_details=True)
    except Exception:
        logger.exception("Failed to load booking %s for notifications", booking.id)
        effects.warn("booking details unavailable")
    await announce_new_booking(
        session, detailed or booking, notifier or BookingNotifier(), effects
    )
    return detailed or booking, effects.warnings


@dataclass(slots=True)
class CancellationPolicy:
    booking_id: uuid.UUID
    can_cancel: bool
    refund_percentage: int
    refund_amount: Decimal
    hours_until_check_in: float
    reason: str | None = None


def cancellation_policy(booking: Booking, *, now: datetime | None = None) -> CancellationPolicy:
    """Refund terms a guest would get if they cancelled ``booking`` right now."""

    settings = get_settings()
    now = now or datetime.now(UTC)
    check_in_at = datetime.combine(booking.check_in_date, time.min, tzinfo=UTC)
    remaining = check_in_at - now
    hours = round(remaining.total_seconds() / 3600, 2)

    def _denied(reason: str) -> CancellationPolicy:
        return CancellationPolicy(
            booking_id=booking.id,
            can_cancel=False,
            refund_percentage=0,
            refund_amount=Decimal("0.00"),
            hours_until_check_in=hours,
            reason=reason,
        )

    if booking.status in TERMINAL_BOOKING_STATUSES:
        return _denied(f"Booking is already {booking.status.value}")
    if remaining < timedelta(hours=settings.cancellation_cutoff_hours):
        return _denied(
            f"Bookings cannot be cancelled within {settings.cancellation_cutoff_hours} hours of check-in"
        )

    if remaining > timedelta(days=settings.cancellation_full_refund_days):
        ratio = Decimal("1")
    elif remaining >= timedelta(days=settings.cancellation_partial_refund_days):
        ratio = settings.cancellation_partial_refund_ratio
    else:
        ratio = Decimal("0")

    # Nothing to refund until money has actually settled.
    if booking.payment_status is not BookingPaymentStatus.PAID:
        refund = Decimal("0.00")
    else:
        refund = (booking.total_amount * ratio).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
    return CancellationPolicy(
        booking_id=booking.id,
        can_cancel=True,
        refund_percentage=int(ratio * 100),
        refund_amount=refund,
        hours_until_check_in=hours,
    )


__all__ = [
    "CancellationPolicy",
    "cancellation_policy",
    "create_booking",
    "get_booking",
    "list_bookings",
]
