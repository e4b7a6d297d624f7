"""Availability checks and race-safe reservation of property nights."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import OCCUPYING_BOOKING_STATUSES, BlockedDate, Booking, Property
from app.services.exceptions import BookingConflictError, PropertyNotFoundError

logger = logging.getLogger(__name__)

_EXCLUSION_VIOLATION = "23P01"
_OVERLAP_CONSTRAINT = "bookings_no_overlap"


@dataclass(slots=True)
class DateRange:
    start: date
    end: date

    def as_dict(self) -> dict[str, str]:
        return {"check_in": self.start.isoformat(), "check_out": self.end.isoformat()}


@dataclass(slots=True)
class Availability:
    """Outcome of an availability query; a conflict is a normal result."""

    available: bool
    conflicts: list[DateRange] = field(default_factory=list)
    blocked: list[DateRange] = field(default_factory=list)


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Half-open overlap: checking out on day N leaves day N free to check in."""

    return a_start < b_end and b_start < a_end


async def get_property(
    session: AsyncSession, property_id: uuid.UUID, *, lock: bool = False
) -> Property:
    stmt = select(Property).where(Property.id == property_id)
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    listing = result.scalar_one_or_none()
    if listing is None:
        raise PropertyNotFoundError("Property not found")
    return listing


async def find_conflicting_bookings(
    session: AsyncSession,
    property_id: uuid.UUID,
    check_in: date,
    check_out: date,
) -> list[Booking]:
    stmt = (
        select(Booking)
        .where(
            Booking.property_id == property_id,
            Booking.status.in_(list(OCCUPYING_BOOKING_STATUSES)),
            Booking.check_in_date < check_out,
            Booking.check_out_date > check_in,
        )
        .order_by(Booking.check_in_date)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_blocked_ranges(
    session: AsyncSession,
    property_id: uuid.UUID,
    check_in: date,
    check_out: date,
) -> list[BlockedDate]:
    # Blocked ranges are inclusive of their end date.
    stmt = (
        select(BlockedDate)
        .where(
            BlockedDate.property_id == property_id,
            BlockedDate.start_date < check_out,
            BlockedDate.end_date >= check_in,
        )
        .order_by(BlockedDate.start_date)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def check_availability(
    session: AsyncSession,
    *,
    property_id: uuid.UUID,
    check_in: date,
    check_out: date,
) -> Availability:
    if check_out <= check_in:
        raise ValueError("Check-out date must be after check-in date")
    await get_property(session, property_id)
    bookings = await find_conflicting_bookings(session, property_id, check_in, check_out)
    blocked = await find_blocked_ranges(session, property_id, check_in, check_out)
    return Availability(
        available=not bookings and not blocked,
        conflicts=[DateRange(b.check_in_date, b.check_out_date) for b in bookings],
        blocked=[DateRange(b.start_date, b.end_date) for b in blocked],
    )


def _is_overlap_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == _EXCLUSION_VIOLATION or _OVERLAP_CONSTRAINT in str(orig)


async def reserve(session: AsyncSession, booking: Booking) -> Booking:
    """Insert ``booking`` only if its nights are still free.

    The property row is locked before re-validating so concurrent reservations
    for the same listing serialize; on Postgres the ``bookings_no_overlap``
    exclusion constraint settles anything that slips past the lock.
    """

    await get_property(session, booking.property_id, lock=True)

    blocked = await find_blocked_ranges(
        session, booking.property_id, booking.check_in_date, booking.check_out_date
    )
    if blocked:
        # Rolling back expires the rows, so collect the ranges first.
        ranges = [DateRange(b.start_date, b.end_date).as_dict() for b in blocked]
        await session.rollback()
        raise BookingConflictError("Property is blocked for the selected dates", ranges)

    conflicts = await find_conflicting_bookings(
        session, booking.property_id, booking.check_in_date, booking.check_out_date
    )
    if conflicts:
        ranges = [DateRange(b.check_in_date, b.check_out_date).as_dict() for b in conflicts]
        await session.rollback()
        raise BookingConflictError("Property is not available for the selected dates", ranges)

    session.add(booking)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if _is_overlap_violation(exc):
            logger.info(
                "Overlap constraint rejected booking for property %s", booking.property_id
            )
            raise BookingConflictError(
                "Property is not available for the selected dates"
            ) from exc
        raise
    await session.refresh(booking)
    return booking


__all__ = [
    "Availability",
    "DateRange",
    "check_availability",
    "find_blocked_ranges",
    "get_property",
    "find_conflicting_bookings",
    "ranges_overlap",
    "reserve",
]
