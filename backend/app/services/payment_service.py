"""Guest-initiated payment flows: card checkout and bank transfer requests."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.integrations.stripe_client import StripeClient
from app.models import (
    SETTLEABLE_PAYMENT_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    PaymentTransaction,
    PaymentTransactionStatus,
    PaymentTransactionType,
)
from app.services import booking_service
from app.services.exceptions import BookingActionError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CheckoutLink:
    booking_id: uuid.UUID
    session_id: str
    url: str | None


@dataclass(slots=True)
class BankTransferInstructions:
    account_name: str
    bank_name: str
    account_number: str
    routing_number: str
    reference: str
    notes: str
    swift_code: str | None = None
    iban: str | None = None


def _ensure_payable(booking: Booking) -> None:
    if booking.status is BookingStatus.CANCELLED:
        raise BookingActionError("Cancelled bookings cannot be updated")
    if booking.payment_status is BookingPaymentStatus.PAID:
        raise BookingActionError("This booking has already been paid")
    if booking.status in TERMINAL_BOOKING_STATUSES or (
        booking.payment_status not in SETTLEABLE_PAYMENT_STATUSES
    ):
        raise BookingActionError(
            f"Booking cannot accept payment while {booking.payment_status.value}"
        )


async def create_checkout(
    session: AsyncSession,
    booking_id: uuid.UUID,
    *,
    gateway: StripeClient,
) -> CheckoutLink:
    booking = await booking_service.get_booking(session, booking_id, with_details=True)
    _ensure_payable(booking)

    settings = get_settings()
    base_url = settings.app_base_url.rstrip("/")
    title = booking.listing.title if booking.listing else "your stay"
    checkout = gateway.create_checkout_session(
        booking_id=booking.id,
        amount=booking.total_amount,
        currency=booking.currency.lower(),
        success_url=f"{base_url}/booking/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base_url}/booking/cancel?booking_id={booking.id}",
        product_name=f"Stay at {title} ({booking.nights} nights)",
        customer_email=booking.guest_email,
    )

    # The first session id sticks; later sessions are still matched via metadata.
    await session.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.external_session_id.is_(None))
        .values(external_session_id=checkout.id, payment_method="card")
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    logger.info("Checkout session %s created for booking %s", checkout.id, booking.id)
    return CheckoutLink(booking_id=booking.id, session_id=checkout.id, url=checkout.url)


def bank_instructions(booking_id: uuid.UUID) -> BankTransferInstructions:
    settings = get_settings()
    return BankTransferInstructions(
        account_name=settings.bank_transfer_account_name,
        bank_name=settings.bank_transfer_bank_name,
        account_number=settings.bank_transfer_account_number.replace(" ", ""),
        routing_number=settings.bank_transfer_routing_number.replace(" ", ""),
        swift_code=settings.bank_transfer_swift_code,
        iban=settings.bank_transfer_iban,
        reference=str(booking_id),
        notes=settings.bank_transfer_notes,
    )


async def request_bank_transfer(
    session: AsyncSession, booking_id: uuid.UUID
) -> tuple[Booking, BankTransferInstructions]:
    """Switch a booking to bank transfer and log a pending ledger line.

    The booking is only confirmed later, when an admin marks it paid.
    """

    booking = await booking_service.get_booking(session, booking_id)
    _ensure_payable(booking)
    instructions = bank_instructions(booking.id)

    result = await session.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.status.not_in(list(TERMINAL_BOOKING_STATUSES)),
            Booking.payment_status.in_(list(SETTLEABLE_PAYMENT_STATUSES)),
        )
        .values(payment_method="bank_transfer")
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise BookingActionError("Booking changed concurrently; please retry")

    session.add(
        PaymentTransaction(
            booking_id=booking.id,
            transaction_type=PaymentTransactionType.BANK_TRANSFER,
            amount=booking.total_amount,
            currency=booking.currency.lower(),
            status=PaymentTransactionStatus.PENDING,
            payment_method_type="bank_transfer",
            metadata_={
                "instructions_sent_at": datetime.now(UTC).isoformat(),
                "bank_name": instructions.bank_name,
            },
        )
    )
    await session.commit()
    logger.info("Bank transfer requested for booking %s", booking.id)
    booking = await booking_service.get_booking(session, booking.id, refresh=True)
    return booking, instructions


__all__ = [
    "BankTransferInstructions",
    "CheckoutLink",
    "bank_instructions",
    "create_checkout",
    "request_bank_transfer",
]
