"""Night-range availability and reservation."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy.exc import IntegrityError

from app.models import BlockedDate, Booking, BookingStatus
from app.services import availability_service
from app.services.exceptions import BookingConflictError, PropertyNotFoundError

pytestmark = pytest.mark.asyncio

D = date(2031, 7, 1)


@pytest.mark.parametrize(
    ("a", "b", "expected"),
    [
        ((0, 3), (3, 5), False),
        ((3, 5), (0, 3), False),
        ((0, 3), (2, 4), True),
        ((1, 2), (0, 5), True),
        ((0, 5), (1, 2), True),
    ],
)
async def test_ranges_overlap_is_half_open(a, b, expected) -> None:
    a_start, a_end, b_start, b_end = (D + timedelta(days=n) for n in (*a, *b))
    assert availability_service.ranges_overlap(a_start, a_end, b_start, b_end) is expected


def _new_booking(seeded: dict[str, Any], check_in: date, nights: int) -> Booking:
    listing = seeded["listing"]
    return Booking(
        property_id=listing.id,
        host_id=listing.host_id,
        check_in_date=check_in,
        check_out_date=check_in + timedelta(days=nights),
        guests_count=1,
        total_amount=Decimal("120.00"),
        currency="cad",
        guest_name="Walk In",
        guest_email="walkin@example.com",
    )


async def test_check_availability_reports_bookings_and_blocks(seeded, make_booking) -> None:
    listing = seeded["listing"]
    await make_booking(check_in=D, nights=2)
    async with seeded["sessionmaker"]() as session:
        session.add(
            BlockedDate(
                property_id=listing.id,
                start_date=D + timedelta(days=4),
                end_date=D + timedelta(days=4),
            )
        )
        await session.commit()

        result = await availability_service.check_availability(
            session, property_id=listing.id, check_in=D, check_out=D + timedelta(days=5)
        )
        free = await availability_service.check_availability(
            session,
            property_id=listing.id,
            check_in=D + timedelta(days=2),
            check_out=D + timedelta(days=4),
        )

    assert result.available is False
    assert [c.as_dict() for c in result.conflicts] == [
        {"check_in": D.isoformat(), "check_out": (D + timedelta(days=2)).isoformat()}
    ]
    assert len(result.blocked) == 1
    assert free.available is True


async def test_check_availability_rejects_empty_range_and_unknown_property(seeded) -> None:
    async with seeded["sessionmaker"]() as session:
        with pytest.raises(ValueError):
            await availability_service.check_availability(
                session, property_id=seeded["listing"].id, check_in=D, check_out=D
            )
        with pytest.raises(PropertyNotFoundError):
            await availability_service.check_availability(
                session,
                property_id=seeded["host"].id,
                check_in=D,
                check_out=D + timedelta(days=1),
            )


async def test_reserve_inserts_free_nights_and_rejects_overlaps(seeded, make_booking) -> None:
    await make_booking(check_in=D, nights=3, status=BookingStatus.CONFIRMED)

    async with seeded["sessionmaker"]() as session:
        adjacent = await availability_service.reserve(
            session, _new_booking(seeded, D + timedelta(days=3), 2)
        )
        assert adjacent.id is not None

        with pytest.raises(BookingConflictError) as excinfo:
            await availability_service.reserve(
                session, _new_booking(seeded, D + timedelta(days=1), 1)
            )

    assert excinfo.value.conflicts == [
        {"check_in": D.isoformat(), "check_out": (D + timedelta(days=3)).isoformat()}
    ]


class _PgError(Exception):
    sqlstate = "23P01"


async def test_overlap_violation_detection() -> None:
    exclusion = IntegrityError("INSERT", {}, _PgError("conflicting key value"))
    named = IntegrityError("INSERT", {}, Exception('violates "bookings_no_overlap"'))
    unique = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    assert availability_service._is_overlap_violation(exclusion)
    assert availability_service._is_overlap_violation(named)
    assert not availability_service._is_overlap_violation(unique)
