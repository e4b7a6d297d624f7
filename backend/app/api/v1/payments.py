"""Guest payment endpoints: checkout, post-checkout verification and bank transfer."""

from __future__ import annotations

import dataclasses
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.api.rate_limit import DEFAULT_RATE_DEP
from app.integrations import PaymentGatewayError, PaymentGatewayNotFound, StripeClient
from app.schemas.booking import BookingDetail
from app.schemas.payment import (
    BankInstructionsRead,
    BankTransferBooking,
    BankTransferRequest,
    BankTransferResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from app.services import payment_service, verification_service
from app.services.exceptions import (
    BookingActionError,
    BookingNotFoundError,
    InvalidCheckoutSessionError,
)
from app.services.notification_service import BookingNotifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _require_gateway(gateway: StripeClient | None) -> StripeClient:
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment gateway is not configured",
        )
    return gateway


@router.post(
    "/checkout-session",
    response_model=CheckoutSessionResponse,
    summary="Start a card checkout for a booking",
    dependencies=[DEFAULT_RATE_DEP],
)
async def create_checkout_session(
    payload: CheckoutSessionRequest,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    gateway: Annotated[StripeClient | None, Depends(deps.get_payment_gateway)],
) -> CheckoutSessionResponse:
    stripe_client = _require_gateway(gateway)
    try:
        link = await payment_service.create_checkout(
            session, payload.booking_id, gateway=stripe_client
        )
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BookingActionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PaymentGatewayError as exc:
        logger.error("Checkout creation failed for booking %s: %s", payload.booking_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create checkout session",
        ) from exc
    return CheckoutSessionResponse(
        booking_id=link.booking_id, session_id=link.session_id, url=link.url
    )


@router.post(
    "/verify",
    response_model=VerifyPaymentResponse,
    summary="Verify a completed checkout and confirm the booking",
    dependencies=[DEFAULT_RATE_DEP],
)
async def verify_payment(
    payload: VerifyPaymentRequest,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    gateway: Annotated[StripeClient | None, Depends(deps.get_payment_gateway)],
    notifier: Annotated[BookingNotifier, Depends(deps.get_booking_notifier)],
) -> VerifyPaymentResponse:
    stripe_client = _require_gateway(gateway)
    try:
        result = await verification_service.verify_checkout_session(
            session, payload.session_id, gateway=stripe_client, notifier=notifier
        )
    except (PaymentGatewayNotFound, BookingNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidCheckoutSessionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PaymentGatewayError as exc:
        logger.error("Payment verification failed for session %s: %s", payload.session_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to verify payment",
        ) from exc
    return VerifyPaymentResponse(
        success=result.success,
        payment_status=result.payment_status,
        booking=BookingDetail.from_booking(result.booking) if result.booking else None,
        processing=result.processing,
        message=result.message,
        warnings=result.warnings,
    )


@router.post(
    "/request-bank-transfer",
    response_model=BankTransferResponse,
    summary="Pay for a booking by bank transfer",
    dependencies=[DEFAULT_RATE_DEP],
)
async def request_bank_transfer(
    payload: BankTransferRequest,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
) -> BankTransferResponse:
    try:
        booking, instructions = await payment_service.request_bank_transfer(
            session, payload.booking_id
        )
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BookingActionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return BankTransferResponse(
        booking=BankTransferBooking(
            id=booking.id,
            payment_status=booking.payment_status.value,
            payment_method=booking.payment_method,
            total_amount=booking.total_amount,
            currency=booking.currency,
        ),
        instructions=BankInstructionsRead(**dataclasses.asdict(instructions)),
    )
