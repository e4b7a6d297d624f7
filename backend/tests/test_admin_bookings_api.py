"""Admin booking console: listing and manual mark-paid, cancel and refund."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError, ProgrammingError

from app.models import (
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    Notification,
    PaymentTransaction,
    PaymentTransactionType,
)
from app.services import admin_booking_service, booking_service

pytestmark = pytest.mark.asyncio

ACTIONS = "/api/v1/admin/bookings"


async def _ledger(app_context: dict[str, Any], booking_id) -> list[PaymentTransaction]:
    async with app_context["sessionmaker"]() as session:
        result = await session.execute(
            select(PaymentTransaction).where(PaymentTransaction.booking_id == booking_id)
        )
        return list(result.scalars().all())


async def _stored(app_context: dict[str, Any], booking_id) -> Booking:
    async with app_context["sessionmaker"]() as session:
        return await session.get(Booking, booking_id)


async def _paid_booking(make_booking, **kwargs: Any) -> Booking:
    return await make_booking(
        status=BookingStatus.CONFIRMED,
        payment_status=BookingPaymentStatus.PAID,
        payment_intent_id="pi_admin",
        payment_method="card",
        **kwargs,
    )


async def test_actions_require_an_admin(app_context, make_booking, login) -> None:
    client = app_context["client"]
    booking = await make_booking()
    payload = {"booking_id": str(booking.id), "action": "mark_paid"}

    anonymous = await client.post(ACTIONS, json=payload)
    as_guest = await client.post(ACTIONS, json=payload, headers=await login("guest"))
    listing_as_host = await client.get(ACTIONS, headers=await login("host"))

    assert anonymous.status_code == 401
    assert as_guest.status_code == 403
    assert as_guest.json()["detail"] == "Admin access required"
    assert listing_as_host.status_code == 403
    stored = await _stored(app_context, booking.id)
    assert stored.payment_status is BookingPaymentStatus.PENDING


async def test_mark_paid_confirms_and_records_bank_transfer(
    app_context, make_booking, login
) -> None:
    client = app_context["client"]
    booking = await make_booking(guest_id=app_context["guest"].id)
    headers = await login("admin")

    response = await client.post(
        ACTIONS,
        json={"bookingId": str(booking.id), "action": "mark_paid", "reason": "Wire received"},
        headers=headers,
    )
    again = await client.post(
        ACTIONS, json={"booking_id": str(booking.id), "action": "mark_paid"}, headers=headers
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["status"] == BookingStatus.CONFIRMED.value
    assert body["payment_status"] == BookingPaymentStatus.PAID.value
    assert again.status_code == 200
    assert again.json()["message"] == "Booking already marked as paid"

    ledger = await _ledger(app_context, booking.id)
    assert len(ledger) == 1
    assert ledger[0].transaction_type is PaymentTransactionType.BANK_TRANSFER
    assert ledger[0].metadata_["reason"] == "Wire received"
    assert ledger[0].metadata_["approved_by_email"] == "admin@example.com"

    stored = await _stored(app_context, booking.id)
    assert stored.payment_method == "bank_transfer"
    assert sorted(kind for kind, _ in app_context["notifier"].emails) == [
        "booking_confirmation",
        "host_notification",
    ]


async def test_mark_paid_keeps_completed_status(app_context, make_booking, login) -> None:
    booking = await make_booking(status=BookingStatus.COMPLETED, payment_method="card")

    response = await app_context["client"].post(
        ACTIONS,
        json={"booking_id": str(booking.id), "action": "mark_paid"},
        headers=await login("admin"),
    )

    assert response.status_code == 200
    assert response.json()["status"] == BookingStatus.COMPLETED.value
    stored = await _stored(app_context, booking.id)
    assert stored.payment_method == "card"


async def test_mark_paid_refuses_cancelled_booking(app_context, make_booking, login) -> None:
    booking = await make_booking(status=BookingStatus.CANCELLED)

    response = await app_context["client"].post(
        ACTIONS,
        json={"booking_id": str(booking.id), "action": "mark_paid"},
        headers=await login("admin"),
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Cancelled bookings cannot be marked as paid"
    assert await _ledger(app_context, booking.id) == []


async def test_cancel_records_reason_and_notifies(app_context, make_booking, login) -> None:
    booking = await make_booking(guest_id=app_context["guest"].id)

    response = await app_context["client"].post(
        ACTIONS,
        json={"booking_id": str(booking.id), "action": "cancel", "reason": "Host unavailable"},
        headers=await login("admin"),
    )

    assert response.status_code == 200
    assert response.json()["status"] == BookingStatus.CANCELLED.value
    assert response.json()["degraded_write"] is False
    stored = await _stored(app_context, booking.id)
    assert stored.status is BookingStatus.CANCELLED
    assert stored.cancellation_reason == "Host unavailable"
    assert stored.cancelled_at is not None

    async with app_context["sessionmaker"]() as session:
        notifications = (await session.execute(select(Notification))).scalars().all()
    assert {n.user_id for n in notifications} == {booking.guest_id, booking.host_id}
    assert [kind for kind, _ in app_context["notifier"].emails] == ["cancellation"]


async def test_cancel_refuses_paid_and_cancelled_bookings(
    app_context, make_booking, login
) -> None:
    client = app_context["client"]
    headers = await login("admin")
    paid = await _paid_booking(make_booking)
    cancelled = await make_booking(status=BookingStatus.CANCELLED, nights=1)

    paid_response = await client.post(
        ACTIONS, json={"booking_id": str(paid.id), "action": "cancel"}, headers=headers
    )
    cancelled_response = await client.post(
        ACTIONS, json={"booking_id": str(cancelled.id), "action": "cancel"}, headers=headers
    )

    assert paid_response.status_code == 400
    assert paid_response.json()["detail"] == "Paid bookings must be refunded instead of cancelled"
    assert cancelled_response.status_code == 400
    assert (await _stored(app_context, paid.id)).status is BookingStatus.CONFIRMED


async def test_partial_refund(app_context, make_booking, login) -> None:
    gateway = app_context["gateway"]
    booking = await _paid_booking(make_booking, guest_id=app_context["guest"].id)

    response = await app_context["client"].post(
        ACTIONS,
        json={
            "booking_id": str(booking.id),
            "action": "refund",
            "refundAmount": 50,
            "reason": "Early checkout",
        },
        headers=await login("admin"),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["payment_status"] == BookingPaymentStatus.PARTIALLY_REFUNDED.value
    assert body["status"] == BookingStatus.CANCELLED.value
    assert body["refund_id"] == "re_test_1"
    assert Decimal(body["refund_amount"]) == Decimal("50.00")

    assert gateway.refunds == [
        {
            "payment_intent": "pi_admin",
            "amount": 5000,
            "reason": "requested_by_customer",
            "metadata": {
                "booking_id": str(booking.id),
                "refund_reason": "Early checkout",
                "approved_by": str(app_context["admin"].id),
            },
            "idempotency_seed": f"booking-{booking.id}-refund-5000",
        }
    ]

    stored = await _stored(app_context, booking.id)
    assert stored.refund_amount == Decimal("50.00")
    assert stored.refund_reason == "Early checkout"
    assert stored.refund_date is not None
    ledger = await _ledger(app_context, booking.id)
    assert [line.transaction_type for line in ledger] == [PaymentTransactionType.REFUND]
    assert ledger[0].provider_reference == "re_test_1"

    kind, ctx = app_context["notifier"].emails[0]
    assert kind == "cancellation"
    assert ctx.refund_amount == Decimal("50.00")


async def test_full_refund_and_repeat_is_a_no_op(app_context, make_booking, login) -> None:
    client = app_context["client"]
    headers = await login("admin")
    booking = await _paid_booking(make_booking)
    payload = {"booking_id": str(booking.id), "action": "refund", "refund_amount": "200.00"}

    first = await client.post(ACTIONS, json=payload, headers=headers)
    second = await client.post(ACTIONS, json=payload, headers=headers)

    assert first.status_code == 200
    assert first.json()["payment_status"] == BookingPaymentStatus.REFUNDED.value
    assert second.status_code == 200
    assert second.json()["message"] == "Booking already refunded"
    assert len(app_context["gateway"].refunds) == 1
    assert len(await _ledger(app_context, booking.id)) == 1


@pytest.mark.parametrize("amount", [0, -10, None])
async def test_refund_requires_a_positive_amount(
    app_context, make_booking, login, amount: Any
) -> None:
    booking = await _paid_booking(make_booking)
    payload: dict[str, Any] = {"booking_id": str(booking.id), "action": "refund"}
    if amount is not None:
        payload["refund_amount"] = amount

    response = await app_context["client"].post(ACTIONS, json=payload, headers=await login("admin"))

    assert response.status_code == 400
    assert response.json()["detail"] == "refund_amount must be a positive number"
    assert app_context["gateway"].refunds == []


async def test_refund_without_payment_intent(app_context, make_booking, login) -> None:
    booking = await make_booking(
        status=BookingStatus.CONFIRMED,
        payment_status=BookingPaymentStatus.PAID,
        payment_method="bank_transfer",
    )

    response = await app_context["client"].post(
        ACTIONS,
        json={"booking_id": str(booking.id), "action": "refund", "refund_amount": 20},
        headers=await login("admin"),
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "No payment intent found for this booking"


async def test_gateway_failure_leaves_booking_untouched(app_context, make_booking, login) -> None:
    app_context["gateway"].refund_error = "charge already refunded"
    booking = await _paid_booking(make_booking)

    response = await app_context["client"].post(
        ACTIONS,
        json={"booking_id": str(booking.id), "action": "refund", "refund_amount": 20},
        headers=await login("admin"),
    )

    assert response.status_code == 500
    assert response.json()["detail"] == "Refund failed: charge already refunded"
    stored = await _stored(app_context, booking.id)
    assert stored.payment_status is BookingPaymentStatus.PAID
    assert stored.status is BookingStatus.CONFIRMED
    assert await _ledger(app_context, booking.id) == []


async def test_refund_falls_back_when_refund_columns_are_missing(
    app_context, make_booking, login, monkeypatch
) -> None:
    booking = await _paid_booking(make_booking)
    original = admin_booking_service._update_booking_fields
    calls = {"count": 0}

    async def _first_call_rejected(*args: Any, **kwargs: Any) -> bool:
        calls["count"] += 1
        if calls["count"] == 1:
            raise ProgrammingError(
                "UPDATE bookings",
                {},
                Exception('column "refund_reason" of relation "bookings" does not exist'),
            )
        return await original(*args, **kwargs)

    monkeypatch.setattr(admin_booking_service, "_update_booking_fields", _first_call_rejected)

    response = await app_context["client"].post(
        ACTIONS,
        json={"booking_id": str(booking.id), "action": "refund", "refund_amount": 200},
        headers=await login("admin"),
    )

    assert response.status_code == 200
    assert response.json()["degraded_write"] is True
    stored = await _stored(app_context, booking.id)
    assert stored.payment_status is BookingPaymentStatus.REFUNDED
    assert stored.status is BookingStatus.CANCELLED
    assert stored.refund_amount == Decimal("200.00")
    assert stored.refund_reason is None
    assert len(await _ledger(app_context, booking.id)) == 1


async def test_refund_bookkeeping_failure_reports_refund_id(
    app_context, make_booking, login, monkeypatch
) -> None:
    booking = await _paid_booking(make_booking)

    async def _locked(*args: Any, **kwargs: Any) -> bool:
        raise OperationalError("UPDATE bookings", {}, Exception("database is locked"))

    monkeypatch.setattr(admin_booking_service, "_update_booking_fields", _locked)

    response = await app_context["client"].post(
        ACTIONS,
        json={"booking_id": str(booking.id), "action": "refund", "refund_amount": 200},
        headers=await login("admin"),
    )

    assert response.status_code == 500
    assert response.json()["detail"] == {
        "message": "Refund processed but booking update failed",
        "refund_id": "re_test_1",
    }
    stored = await _stored(app_context, booking.id)
    assert stored.payment_status is BookingPaymentStatus.PAID


async def test_schema_shape_detection() -> None:
    missing = ProgrammingError("UPDATE", {}, Exception('column "refund_date" does not exist'))
    sqlite_missing = OperationalError("UPDATE", {}, Exception("no such column: refund_reason"))
    locked = OperationalError("UPDATE", {}, Exception("database is locked"))

    assert admin_booking_service.is_schema_shape_error(missing)
    assert admin_booking_service.is_schema_shape_error(sqlite_missing)
    assert not admin_booking_service.is_schema_shape_error(locked)


async def test_unknown_booking_is_404(app_context, login) -> None:
    response = await app_context["client"].post(
        ACTIONS,
        json={"booking_id": "5f0c8f5e-8f7d-4d8e-9a55-2b9d6c1f0a11", "action": "cancel"},
        headers=await login("admin"),
    )

    assert response.status_code == 404


async def test_list_bookings_filters_and_pages(app_context, make_booking, login) -> None:
    client = app_context["client"]
    headers = await login("admin")
    start = date.today() + timedelta(days=10)
    await make_booking(check_in=start, nights=2)
    await make_booking(check_in=start + timedelta(days=5), nights=2, status=BookingStatus.CONFIRMED)
    await make_booking(
        check_in=start + timedelta(days=10),
        nights=2,
        status=BookingStatus.CONFIRMED,
        guest_id=app_context["guest"].id,
    )

    confirmed = await client.get(ACTIONS, params={"status": "confirmed", "limit": 1}, headers=headers)
    for_guest = await client.get(
        ACTIONS, params={"guest_id": str(app_context["guest"].id)}, headers=headers
    )

    assert confirmed.status_code == 200
    body = confirmed.json()
    assert body["total"] == 2
    assert len(body["bookings"]) == 1
    assert body["has_more"] is True
    assert body["bookings"][0]["property_title"] == "Lakeside Cabin"
    assert for_guest.json()["total"] == 1
    assert for_guest.json()["has_more"] is False


async def test_cancel_notifies_even_when_the_reload_fails(
    app_context, make_booking, login, monkeypatch
) -> None:
    client = app_context["client"]
    booking = await make_booking(guest_id=app_context["guest"].id)
    headers = await login("admin")
    original = booking_service.get_booking

    async def _get_booking(session, booking_id, *, with_details=False, refresh=False):
        if with_details:
            raise RuntimeError("replica unavailable")
        return await original(session, booking_id, refresh=refresh)

    monkeypatch.setattr(booking_service, "get_booking", _get_booking)

    response = await client.post(
        ACTIONS,
        json={"booking_id": str(booking.id), "action": "cancel", "reason": "Host request"},
        headers=headers,
    )

    assert response.status_code == 200
    assert "booking details unavailable" in response.json()["warnings"]
    async with app_context["sessionmaker"]() as session:
        notifications = (await session.execute(select(Notification))).scalars().all()
    assert len(notifications) == 2
    assert {n.data["cancelled_by"] for n in notifications} == {"admin"}
    stored = await _stored(app_context, booking.id)
    assert stored.status is BookingStatus.CANCELLED
