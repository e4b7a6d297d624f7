"""Transactional booking emails rendered with Jinja2 and delivered over SMTP."""

from __future__ import annotations

import logging
import smtplib
from dataclasses import asdict, dataclass
from decimal import Decimal
from email.message import EmailMessage
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.core.config import get_settings

logger = logging.getLogger(__name__)

__all__ = [
    "BookingEmailContext",
    "deliver_email",
    "render_template",
    "send_booking_cancellation",
    "send_booking_confirmation",
    "send_booking_request",
    "send_host_notification",
]

_TEMPLATE_DIR = Path(__file__).resolve().parents[1] / "templates"
_ENV = Environment(
    loader=FileSystemLoader(_TEMPLATE_DIR),
    autoescape=select_autoescape(["html", "xml"]),
)


@dataclass(slots=True)
class BookingEmailContext:
    """Everything the booking templates can reference."""

    booking_id: str
    guest_name: str
    guest_email: str | None
    host_name: str
    host_email: str | None
    property_title: str
    property_location: str
    check_in_date: str
    check_out_date: str
    guests: int
    total_amount: Decimal
    currency: str
    special_requests: str | None = None
    cancellation_reason: str | None = None
    refund_amount: Decimal | None = None
    payment_url: str | None = None


def render_template(name: str, **context: Any) -> str:
    settings = get_settings()
    context.setdefault("support_email", settings.support_email)
    return _ENV.get_template(name).render(**context)


def deliver_email(to_email: str, subject: str, html_body: str) -> bool:
    """Attempt to deliver an email immediately.

    Returns True if a send was attempted (and succeeded), False if skipped due to
    missing SMTP configuration. Raises on transport errors.
    """

    settings = get_settings()
    if not settings.smtp_host or not settings.smtp_port:
        logger.info("SMTP configuration missing; skipping email to %s", to_email)
        return False

    message = EmailMessage()
    message["Subject"] = subject
    message["To"] = to_email
    message["From"] = (
        settings.smtp_from or settings.smtp_username or "no-reply@stays.local"
    )
    message.set_content("This message contains HTML content.")
    message.add_alternative(html_body, subtype="html")

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=5) as server:
            if settings.smtp_username and settings.smtp_password:
                try:
                    server.starttls()
                except smtplib.SMTPException:
                    logger.debug("SMTP server does not support STARTTLS")
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(message)
    except Exception as exc:  # pragma: no cover - network dependent
        logger.exception("Failed to send email to %s: %s", to_email, exc)
        raise
    logger.info("Email '%s' sent to %s", subject, to_email)
    return True


def _send(template: str, to_email: str | None, subject: str, ctx: BookingEmailContext) -> bool:
    if not to_email:
        logger.debug("No recipient for %s (booking %s); skipping", template, ctx.booking_id)
        return False
    html = render_template(template, **asdict(ctx))
    return deliver_email(to_email, subject, html)


def send_booking_request(ctx: BookingEmailContext) -> bool:
    return _send(
        "email/booking_request.html",
        ctx.guest_email,
        f"Booking request received for {ctx.property_title}",
        ctx,
    )


def send_booking_confirmation(ctx: BookingEmailContext) -> bool:
    return _send(
        "email/booking_confirmation.html",
        ctx.guest_email,
        f"Booking confirmed: {ctx.property_title}",
        ctx,
    )


def send_host_notification(ctx: BookingEmailContext) -> bool:
    return _send(
        "email/host_notification.html",
        ctx.host_email,
        f"New confirmed booking for {ctx.property_title}",
        ctx,
    )


def send_booking_cancellation(ctx: BookingEmailContext) -> bool:
    return _send(
        "email/booking_cancellation.html",
        ctx.guest_email,
        f"Booking cancelled: {ctx.property_title}",
        ctx,
    )
