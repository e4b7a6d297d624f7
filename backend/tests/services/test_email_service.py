"""Booking email rendering and delivery gating."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest

from app.core.config import get_settings
from app.services import email_service
from app.services.email_service import BookingEmailContext


def _ctx(**overrides: Any) -> BookingEmailContext:
    values: dict[str, Any] = {
        "booking_id": "b-1",
        "guest_name": "Gail Guest",
        "guest_email": "gail@example.com",
        "host_name": "Hana Host",
        "host_email": "host@example.com",
        "property_title": "Lakeside Cabin",
        "property_location": "Kelowna, BC",
        "check_in_date": "2031-07-01",
        "check_out_date": "2031-07-04",
        "guests": 2,
        "total_amount": Decimal("450.00"),
        "currency": "CAD",
    }
    values.update(overrides)
    return BookingEmailContext(**values)


def test_cancellation_template_mentions_refund() -> None:
    html = email_service.render_template(
        "email/booking_cancellation.html",
        **{
            "guest_name": "Gail <b>Guest</b>",
            "property_title": "Lakeside Cabin",
            "cancellation_reason": "Host unavailable",
            "refund_amount": Decimal("50.00"),
            "currency": "CAD",
            "check_in_date": "2031-07-01",
            "check_out_date": "2031-07-04",
            "guests": 2,
            "total_amount": Decimal("450.00"),
        },
    )

    assert "Host unavailable" in html
    assert "50.00 CAD" in html
    assert "&lt;b&gt;" in html


def test_emails_are_skipped_without_smtp(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(get_settings(), "smtp_host", None)

    assert email_service.send_booking_request(_ctx()) is False
    assert email_service.deliver_email("gail@example.com", "Hi", "<p>Hi</p>") is False


def test_missing_recipient_skips_rendering(monkeypatch: pytest.MonkeyPatch) -> None:
    sent: list[tuple[str, str]] = []

    def _deliver(to_email: str, subject: str, html_body: str) -> bool:
        sent.append((to_email, subject))
        return True

    monkeypatch.setattr(email_service, "deliver_email", _deliver)

    assert email_service.send_booking_confirmation(_ctx(guest_email=None)) is False
    assert email_service.send_host_notification(_ctx()) is True
    assert sent == [("host@example.com", "New confirmed booking for Lakeside Cabin")]
