"""In-app notifications and booking emails emitted after state transitions.

Everything here is best effort: the booking row has already been committed by
the time these helpers run, so a failure is logged and reported back as a
warning string instead of being raised to the caller.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.models import Booking, Notification, NotificationType
from app.services import email_service
from app.services.email_service import BookingEmailContext

logger = logging.getLogger(__name__)


class SideEffects:
    """Run best-effort steps and collect their failures as warnings."""

    def __init__(self) -> None:
        self.warnings: list[str] = []

    async def run(self, label: str, step: Callable[[], Awaitable[Any]]) -> bool:
        try:
            await step()
        except Exception:
            logger.exception("Side effect '%s' failed", label)
            self.warnings.append(f"{label} failed")
            return False
        return True

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


class BookingNotifier:
    """Notification sink used by the booking and payment services."""

    async def notify(
        self,
        session: AsyncSession,
        *,
        user_id: uuid.UUID,
        type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> Notification:
        """Persist one notification row in its own transaction.

        The caller's session only lends its bind, so a failed insert can
        neither roll back nor expire the booking the caller just committed.
        """
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=data or {},
            is_read=False,
        )
        async with AsyncSession(session.bind, expire_on_commit=False) as own:
            own.add(notification)
            await own.commit()
        return notification

    async def send_booking_request_email(self, ctx: BookingEmailContext) -> bool:
        return await run_in_threadpool(email_service.send_booking_request, ctx)

    async def send_booking_confirmation_email(self, ctx: BookingEmailContext) -> bool:
        return await run_in_threadpool(email_service.send_booking_confirmation, ctx)

    async def send_host_notification_email(self, ctx: BookingEmailContext) -> bool:
        return await run_in_threadpool(email_service.send_host_notification, ctx)

    async def send_cancellation_email(self, ctx: BookingEmailContext) -> bool:
        return await run_in_threadpool(email_service.send_booking_cancellation, ctx)


def build_email_context(
    booking: Booking,
    *,
    refund_amount: Decimal | None = None,
    payment_url: str | None = None,
) -> BookingEmailContext:
    """Flatten a booking with its listing and host loaded into template data."""

    listing = booking.listing
    host = booking.host
    location = ", ".join(
        part for part in (listing.city, listing.state) if part
    ) if listing else ""
    return BookingEmailContext(
        booking_id=str(booking.id),
        guest_name=booking.guest_name,
        guest_email=booking.guest_email,
        host_name=host.full_name if host else "",
        host_email=host.email if host else None,
        property_title=listing.title if listing else "",
        property_location=location,
        check_in_date=booking.check_in_date.isoformat(),
        check_out_date=booking.check_out_date.isoformat(),
        guests=booking.guests_count,
        total_amount=booking.total_amount,
        currency=booking.currency.upper(),
        special_requests=booking.special_requests,
        cancellation_reason=booking.cancellation_reason,
        refund_amount=refund_amount,
        payment_url=payment_url,
    )


def _base_data(booking: Booking, **extra: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "booking_id": str(booking.id),
        "property_id": str(booking.property_id),
    }
    data.update({key: value for key, value in extra.items() if value is not None})
    return data


def _email_context(
    booking: Booking, effects: SideEffects, **kwargs: Any
) -> BookingEmailContext | None:
    # Needs listing and host loaded; a bare booking row cannot be emailed.
    booking_id = booking.id
    try:
        return build_email_context(booking, **kwargs)
    except Exception:
        logger.exception("Could not build email context for booking %s", booking_id)
        effects.warnings.append("email details unavailable; emails skipped")
        return None


async def announce_new_booking(
    session: AsyncSession,
    booking: Booking,
    notifier: BookingNotifier,
    effects: SideEffects,
) -> None:
    """Tell the host about a new request and send the guest a receipt."""

    ctx = _email_context(
        booking,
        effects,
        payment_url=f"{get_settings().app_base_url}/booking/{booking.id}/pay",
    )
    host_id = booking.host_id
    check_in = booking.check_in_date.isoformat()
    check_out = booking.check_out_date.isoformat()
    title = ctx.property_title if ctx else "your property"
    data = _base_data(
        booking,
        guest_name=booking.guest_name,
        check_in_date=check_in,
        check_out_date=check_out,
        guests_count=booking.guests_count,
        total_amount=str(booking.total_amount),
    )
    message = f"{booking.guest_name} requested {title} from {check_in} to {check_out}."
    await effects.run(
        "host notification",
        lambda: notifier.notify(
            session,
            user_id=host_id,
            type=NotificationType.BOOKING_NEW,
            title="New Booking Received",
            message=message,
            data=data,
        ),
    )
    if ctx is not None:
        await effects.run(
            "booking request email",
            lambda: notifier.send_booking_request_email(ctx),
        )


async def announce_payment_confirmed(
    session: AsyncSession,
    booking: Booking,
    notifier: BookingNotifier,
    effects: SideEffects,
) -> None:
    """Guest and host notifications plus both confirmation emails.

    Everything the notifications need is read from ``booking`` up front, so
    a bare row without its listing still produces both notification rows.
    """

    guest_id, host_id = booking.guest_id, booking.host_id
    data = _base_data(booking, payment_method=booking.payment_method)
    ctx = _email_context(booking, effects)
    if guest_id is not None:
        await effects.run(
            "guest notification",
            lambda: notifier.notify(
                session,
                user_id=guest_id,
                type=NotificationType.PAYMENT_CONFIRMED,
                title="Payment Confirmed",
                message="Your payment has been verified and your booking is confirmed.",
                data=data,
            ),
        )
    await effects.run(
        "host notification",
        lambda: notifier.notify(
            session,
            user_id=host_id,
            type=NotificationType.BOOKING_CONFIRMED,
            title="Booking Confirmed",
            message="A booking payment has been verified and the booking is confirmed.",
            data=data,
        ),
    )
    if ctx is None:
        return
    await effects.run(
        "guest confirmation email",
        lambda: notifier.send_booking_confirmation_email(ctx),
    )
    await effects.run(
        "host notification email",
        lambda: notifier.send_host_notification_email(ctx),
    )


async def announce_cancellation(
    session: AsyncSession,
    booking: Booking,
    notifier: BookingNotifier,
    effects: SideEffects,
    *,
    refund_amount: Decimal | None = None,
    cancelled_by: str = "admin",
) -> None:
    """Guest and host cancellation notices; refunds get their own wording."""

    refunded = refund_amount is not None
    title = "Booking Cancelled & Refunded" if refunded else "Booking Cancelled"
    verb = "cancelled and refunded" if refunded else "cancelled"
    actor = "by an admin" if cancelled_by == "admin" else f"by the {cancelled_by}"
    guest_id, host_id = booking.guest_id, booking.host_id
    data = _base_data(
        booking,
        cancellation_reason=booking.cancellation_reason,
        cancelled_by=cancelled_by,
        refund_amount=str(refund_amount) if refunded else None,
        payment_status=booking.payment_status.value if refunded else None,
    )
    ctx = _email_context(booking, effects, refund_amount=refund_amount)
    if guest_id is not None:
        await effects.run(
            "guest notification",
            lambda: notifier.notify(
                session,
                user_id=guest_id,
                type=NotificationType.BOOKING_CANCELLED,
                title=title,
                message=f"Your booking has been {verb} {actor}.",
                data=data,
            ),
        )
    await effects.run(
        "host notification",
        lambda: notifier.notify(
            session,
            user_id=host_id,
            type=NotificationType.BOOKING_CANCELLED,
            title=title,
            message=f"A booking for your property has been {verb} {actor}.",
            data=data,
        ),
    )
    if ctx is not None:
        await effects.run(
            "cancellation email",
            lambda: notifier.send_cancellation_email(ctx),
        )


async def announce_host_acceptance(
    session: AsyncSession,
    booking: Booking,
    notifier: BookingNotifier,
    effects: SideEffects,
) -> None:
    """Let the guest know the host accepted their request."""

    guest_id = booking.guest_id
    if guest_id is None:
        return
    data = _base_data(booking, check_in_date=booking.check_in_date.isoformat())
    await effects.run(
        "guest notification",
        lambda: notifier.notify(
            session,
            user_id=guest_id,
            type=NotificationType.BOOKING_CONFIRMED,
            title="Booking Accepted",
            message="Your booking request has been accepted by the host.",
            data=data,
        ),
    )


__all__ = [
    "BookingNotifier",
    "SideEffects",
    "announce_cancellation",
    "announce_host_acceptance",
    "announce_new_booking",
    "announce_payment_confirmed",
    "build_email_context",
]
