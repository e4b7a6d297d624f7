"""Booking creation, availability and cancellation policy endpoints."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

import pytest
from sqlalchemy import func, select

from app.models import (
    BlockedDate,
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    Notification,
    NotificationType,
    Property,
)

pytestmark = pytest.mark.asyncio


def _payload(listing_id, *, start_in_days: int = 20, nights: int = 3, **overrides: Any) -> dict[str, Any]:
    check_in = date.today() + timedelta(days=start_in_days)
    payload: dict[str, Any] = {
        "property_id": str(listing_id),
        "check_in": check_in.isoformat(),
        "check_out": (check_in + timedelta(days=nights)).isoformat(),
        "guests": 2,
        "total_amount": "450.00",
        "guest_info": {
            "name": "Gail Guest",
            "email": "gail@example.com",
            "phone": "+1 555 0100",
            "special_requests": "Late arrival",
        },
    }
    payload.update(overrides)
    return payload


async def test_create_booking_returns_pending_booking(app_context) -> None:
    client = app_context["client"]
    listing = app_context["listing"]

    response = await client.post("/api/v1/bookings", json=_payload(listing.id))

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    booking = body["booking"]
    assert booking["status"] == BookingStatus.PENDING.value
    assert booking["payment_status"] == BookingPaymentStatus.PENDING.value
    assert booking["guest_id"] is None
    assert booking["host_id"] == str(listing.host_id)
    assert booking["property_title"] == "Lakeside Cabin"
    assert booking["property_location"] == "Kelowna, BC"

    async with app_context["sessionmaker"]() as session:
        notifications = (
            await session.execute(select(Notification).where(Notification.user_id == listing.host_id))
        ).scalars().all()
    assert [n.type for n in notifications] == [NotificationType.BOOKING_NEW]
    assert [kind for kind, _ in app_context["notifier"].emails] == ["booking_request"]


async def test_create_booking_accepts_camel_case_and_links_signed_in_guest(
    app_context, login
) -> None:
    client = app_context["client"]
    listing = app_context["listing"]
    check_in = date.today() + timedelta(days=40)
    headers = await login("guest")

    response = await client.post(
        "/api/v1/bookings",
        json={
            "propertyId": str(listing.id),
            "checkIn": check_in.isoformat(),
            "checkOut": (check_in + timedelta(days=2)).isoformat(),
            "guests": 1,
            "totalAmount": 300,
            "guestInfo": {"name": "Gail Guest", "email": "guest@example.com"},
        },
        headers=headers,
    )

    assert response.status_code == 201
    assert response.json()["booking"]["guest_id"] == str(app_context["guest"].id)


async def test_overlapping_booking_is_rejected_with_conflicts(app_context, make_booking) -> None:
    client = app_context["client"]
    listing = app_context["listing"]
    existing = await make_booking(check_in=date.today() + timedelta(days=20), nights=3)

    response = await client.post(
        "/api/v1/bookings", json=_payload(listing.id, start_in_days=21, nights=3)
    )

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["conflicts"] == [
        {
            "check_in": existing.check_in_date.isoformat(),
            "check_out": existing.check_out_date.isoformat(),
        }
    ]


async def test_back_to_back_stays_do_not_conflict(app_context, make_booking) -> None:
    client = app_context["client"]
    listing = app_context["listing"]
    await make_booking(check_in=date.today() + timedelta(days=20), nights=3)

    response = await client.post(
        "/api/v1/bookings", json=_payload(listing.id, start_in_days=23, nights=2)
    )

    assert response.status_code == 201


async def test_cancelled_booking_does_not_block(app_context, make_booking) -> None:
    client = app_context["client"]
    listing = app_context["listing"]
    await make_booking(
        check_in=date.today() + timedelta(days=20), nights=3, status=BookingStatus.CANCELLED
    )

    response = await client.post("/api/v1/bookings", json=_payload(listing.id))

    assert response.status_code == 201


async def test_host_blocked_dates_reject_booking(app_context) -> None:
    client = app_context["client"]
    listing = app_context["listing"]
    blocked_day = date.today() + timedelta(days=22)
    async with app_context["sessionmaker"]() as session:
        session.add(
            BlockedDate(property_id=listing.id, start_date=blocked_day, end_date=blocked_day)
        )
        await session.commit()

    response = await client.post("/api/v1/bookings", json=_payload(listing.id))

    assert response.status_code == 409
    assert response.json()["detail"]["message"] == "Property is blocked for the selected dates"


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"start_in_days": -2}, "Check-in date cannot be in the past"),
        ({"nights": 31}, "Maximum stay is 30 nights"),
        ({"guests": 5}, "This property can only accommodate up to 4 guests"),
        ({"guests": 17}, "Maximum 16 guests allowed"),
    ],
)
async def test_invalid_stays_are_rejected(
    app_context, overrides: dict[str, Any], message: str
) -> None:
    client = app_context["client"]
    listing = app_context["listing"]

    response = await client.post("/api/v1/bookings", json=_payload(listing.id, **overrides))

    assert response.status_code == 400
    assert response.json()["detail"] == message


async def test_malformed_payload_is_a_bad_request(app_context) -> None:
    client = app_context["client"]
    listing = app_context["listing"]
    payload = _payload(listing.id, nights=0)

    response = await client.post("/api/v1/bookings", json=payload)

    assert response.status_code == 400
    assert "Check-out date must be after check-in date" in response.json()["detail"]


async def test_unknown_and_inactive_properties(app_context) -> None:
    client = app_context["client"]
    listing = app_context["listing"]
    async with app_context["sessionmaker"]() as session:
        inactive = Property(
            host_id=listing.host_id,
            title="Closed Loft",
            images=[],
            max_guests=2,
            is_active=False,
        )
        session.add(inactive)
        await session.commit()

    missing = await client.post(
        "/api/v1/bookings",
        json=_payload("00000000-0000-0000-0000-000000000000"),
    )
    closed = await client.post("/api/v1/bookings", json=_payload(inactive.id))

    assert missing.status_code == 404
    assert closed.status_code == 400
    assert closed.json()["detail"] == "This property is currently not available for booking"


async def test_check_availability_lists_conflicts(app_context, make_booking) -> None:
    client = app_context["client"]
    listing = app_context["listing"]
    existing = await make_booking(check_in=date.today() + timedelta(days=20), nights=3)
    await make_booking(
        check_in=date.today() + timedelta(days=21), nights=1, status=BookingStatus.CANCELLED
    )
    check_in = date.today() + timedelta(days=19)

    busy = await client.post(
        "/api/v1/bookings/check-availability",
        json={
            "propertyId": str(listing.id),
            "checkIn": check_in.isoformat(),
            "checkOut": (check_in + timedelta(days=3)).isoformat(),
        },
    )
    free = await client.post(
        "/api/v1/bookings/check-availability",
        json={
            "property_id": str(listing.id),
            "check_in": existing.check_out_date.isoformat(),
            "check_out": (existing.check_out_date + timedelta(days=2)).isoformat(),
        },
    )

    assert busy.status_code == 200
    assert busy.json()["available"] is False
    assert busy.json()["conflicts"] == [
        {
            "check_in": existing.check_in_date.isoformat(),
            "check_out": existing.check_out_date.isoformat(),
        }
    ]
    assert free.json()["available"] is True
    assert free.json()["conflicts"] == []


@pytest.mark.parametrize(
    ("days_out", "can_cancel", "percentage", "refund"),
    [
        (30, True, 100, "200.00"),
        (5, True, 50, "100.00"),
        (0, False, 0, "0.00"),
    ],
)
async def test_cancellation_policy(
    app_context, make_booking, days_out: int, can_cancel: bool, percentage: int, refund: str
) -> None:
    client = app_context["client"]
    booking = await make_booking(
        check_in=date.today() + timedelta(days=days_out),
        status=BookingStatus.CONFIRMED,
        payment_status=BookingPaymentStatus.PAID,
    )

    response = await client.get(f"/api/v1/bookings/{booking.id}/cancellation-policy")

    assert response.status_code == 200
    body = response.json()
    assert body["can_cancel"] is can_cancel
    assert body["refund_percentage"] == percentage
    assert body["refund_amount"] == refund


async def test_cancellation_policy_of_registered_guest_requires_party(
    app_context, make_booking, login
) -> None:
    client = app_context["client"]
    booking = await make_booking(guest_id=app_context["guest"].id)

    anonymous = await client.get(f"/api/v1/bookings/{booking.id}/cancellation-policy")
    as_guest = await client.get(
        f"/api/v1/bookings/{booking.id}/cancellation-policy", headers=await login("guest")
    )

    assert anonymous.status_code == 403
    assert as_guest.status_code == 200


async def test_booking_count_is_unchanged_by_rejections(app_context, make_booking) -> None:
    client = app_context["client"]
    listing = app_context["listing"]
    await make_booking(check_in=date.today() + timedelta(days=20), nights=3)
    await client.post("/api/v1/bookings", json=_payload(listing.id, start_in_days=21))

    async with app_context["sessionmaker"]() as session:
        total = await session.scalar(select(func.count(Booking.id)))
    assert total == 1
