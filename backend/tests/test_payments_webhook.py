"""Webhook receiver: event ledger idempotency and event-to-booking mapping."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import select

from app.core.config import get_settings
from app.models import (
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    Notification,
    PaymentEvent,
)
from app.services import reconciliation_service

pytestmark = pytest.mark.asyncio


def _event(event_id: str, event_type: str, obj: dict[str, Any]) -> dict[str, Any]:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def _checkout_completed(booking_id, event_id: str = "evt_checkout_1") -> dict[str, Any]:
    return _event(
        event_id,
        "checkout.session.completed",
        {
            "id": "cs_test_hook",
            "object": "checkout.session",
            "status": "complete",
            "payment_status": "paid",
            "payment_intent": "pi_test_hook",
            "amount_total": 20000,
            "currency": "cad",
            "payment_method_types": ["card"],
            "metadata": {"booking_id": str(booking_id)},
        },
    )


async def _stored(app_context: dict[str, Any], model, key):
    async with app_context["sessionmaker"]() as session:
        return await session.get(model, key)


async def _event_row(app_context: dict[str, Any], event_id: str) -> PaymentEvent:
    async with app_context["sessionmaker"]() as session:
        result = await session.execute(
            select(PaymentEvent).where(PaymentEvent.provider_event_id == event_id)
        )
        return result.scalar_one()


async def test_checkout_completed_confirms_and_duplicates_are_skipped(
    app_context, make_booking
) -> None:
    client = app_context["client"]
    booking = await make_booking(guest_id=app_context["guest"].id)
    payload = _checkout_completed(booking.id)

    first = await client.post("/api/v1/payments/webhook", json=payload)
    duplicate = await client.post("/api/v1/payments/webhook", json=payload)

    assert first.status_code == 200
    assert first.json() == {"status": "processed", "transitioned": True, "event_id": "evt_checkout_1"}
    assert duplicate.status_code == 200
    assert duplicate.json()["status"] == "already_processed"

    stored = await _stored(app_context, Booking, booking.id)
    assert stored.status is BookingStatus.CONFIRMED
    assert stored.payment_status is BookingPaymentStatus.PAID
    assert stored.payment_intent_id == "pi_test_hook"

    event = await _event_row(app_context, "evt_checkout_1")
    assert event.processed_at is not None
    assert event.booking_id == booking.id

    async with app_context["sessionmaker"]() as session:
        notifications = (await session.execute(select(Notification))).scalars().all()
    assert len(notifications) == 2
    assert len(app_context["notifier"].emails) == 2


async def test_late_webhook_after_verify_does_not_notify_again(
    app_context, make_booking
) -> None:
    client = app_context["client"]
    booking = await make_booking(
        status=BookingStatus.CONFIRMED,
        payment_status=BookingPaymentStatus.PAID,
        payment_intent_id="pi_test_hook",
    )

    response = await client.post("/api/v1/payments/webhook", json=_checkout_completed(booking.id))

    assert response.status_code == 200
    assert response.json()["transitioned"] is False
    assert app_context["notifier"].emails == []


async def test_payment_failed_event_marks_booking_failed(app_context, make_booking) -> None:
    client = app_context["client"]
    booking = await make_booking(payment_intent_id="pi_test_fail")

    response = await client.post(
        "/api/v1/payments/webhook",
        json=_event(
            "evt_fail_1",
            "payment_intent.payment_failed",
            {
                "id": "pi_test_fail",
                "object": "payment_intent",
                "status": "requires_payment_method",
                "amount": 20000,
                "currency": "cad",
                "last_payment_error": {"message": "Your card was declined."},
            },
        ),
    )

    assert response.status_code == 200
    stored = await _stored(app_context, Booking, booking.id)
    assert stored.payment_status is BookingPaymentStatus.FAILED
    assert stored.status is BookingStatus.PENDING


async def test_charge_refunded_sets_refund_markers(app_context, make_booking) -> None:
    client = app_context["client"]
    booking = await make_booking(
        status=BookingStatus.CONFIRMED,
        payment_status=BookingPaymentStatus.PAID,
        payment_intent_id="pi_test_refund",
    )

    response = await client.post(
        "/api/v1/payments/webhook",
        json=_event(
            "evt_refund_1",
            "charge.refunded",
            {
                "id": "ch_test_refund",
                "object": "charge",
                "payment_intent": "pi_test_refund",
                "amount": 20000,
                "amount_refunded": 5000,
                "currency": "cad",
            },
        ),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "processed"
    stored = await _stored(app_context, Booking, booking.id)
    assert stored.payment_status is BookingPaymentStatus.PARTIALLY_REFUNDED
    assert stored.refund_amount == Decimal("50.00")
    assert stored.status is BookingStatus.CONFIRMED


async def test_dispute_marks_booking_disputed(app_context, make_booking) -> None:
    client = app_context["client"]
    booking = await make_booking(
        status=BookingStatus.CONFIRMED,
        payment_status=BookingPaymentStatus.PAID,
        payment_intent_id="pi_test_dispute",
    )

    response = await client.post(
        "/api/v1/payments/webhook",
        json=_event(
            "evt_dispute_1",
            "charge.dispute.created",
            {"id": "dp_1", "object": "dispute", "payment_intent": "pi_test_dispute"},
        ),
    )

    assert response.status_code == 200
    stored = await _stored(app_context, Booking, booking.id)
    assert stored.payment_status is BookingPaymentStatus.DISPUTED


async def test_events_for_unknown_bookings_are_ignored(app_context) -> None:
    client = app_context["client"]

    unknown_booking = await client.post(
        "/api/v1/payments/webhook",
        json=_checkout_completed("5f0c8f5e-8f7d-4d8e-9a55-2b9d6c1f0a11", event_id="evt_orphan"),
    )
    unhandled_type = await client.post(
        "/api/v1/payments/webhook",
        json=_event("evt_other", "customer.created", {"id": "cus_1"}),
    )

    assert unknown_booking.status_code == 200
    assert unknown_booking.json()["status"] == "ignored"
    assert unhandled_type.status_code == 200
    assert unhandled_type.json()["status"] == "ignored"


async def test_handler_failure_returns_500_and_allows_redelivery(
    app_context, make_booking, monkeypatch
) -> None:
    client = app_context["client"]
    booking = await make_booking()
    payload = _checkout_completed(booking.id, event_id="evt_retry")
    original = reconciliation_service.apply_evidence

    async def _boom(*args: Any, **kwargs: Any):
        raise RuntimeError("database went away")

    monkeypatch.setattr(reconciliation_service, "apply_evidence", _boom)
    failed = await client.post("/api/v1/payments/webhook", json=payload)

    assert failed.status_code == 500
    event = await _event_row(app_context, "evt_retry")
    assert event.processed_at is None
    assert event.last_error == "database went away"

    monkeypatch.setattr(reconciliation_service, "apply_evidence", original)
    retried = await client.post("/api/v1/payments/webhook", json=payload)

    assert retried.status_code == 200
    assert retried.json()["status"] == "processed"
    event = await _event_row(app_context, "evt_retry")
    assert event.processed_at is not None
    assert event.processing_attempts == 2
    assert event.last_error is None


async def test_signature_is_required_when_verification_is_enabled(
    app_context, monkeypatch
) -> None:
    monkeypatch.setattr(get_settings(), "payments_webhook_verify", True)

    response = await app_context["client"].post(
        "/api/v1/payments/webhook", json={"id": "evt_unsigned", "type": "x"}
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing signature header"
    async with app_context["sessionmaker"]() as session:
        events = (await session.execute(select(PaymentEvent))).scalars().all()
    assert events == []
