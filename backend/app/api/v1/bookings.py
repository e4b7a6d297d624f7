"""Guest booking endpoints: availability, creation, cancellation and host acceptance."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.api.rate_limit import DEFAULT_RATE_DEP
from app.integrations import PaymentGatewayError, StripeClient
from app.models import User
from app.schemas.booking import (
    AvailabilityRequest,
    AvailabilityResponse,
    BookingAcceptResponse,
    BookingCreate,
    BookingCreateResponse,
    BookingDetail,
    CancellationPolicyRead,
    DateRangeRead,
    GuestCancelRequest,
    GuestCancelResponse,
    RefundSummary,
)
from app.services import availability_service, booking_lifecycle_service, booking_service
from app.services.exceptions import (
    BookingAccessError,
    BookingActionError,
    BookingConflictError,
    BookingNotFoundError,
    PropertyNotFoundError,
    RefundBookkeepingError,
)
from app.services.notification_service import BookingNotifier

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post(
    "",
    response_model=BookingCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a stay",
    dependencies=[DEFAULT_RATE_DEP],
)
async def create_booking(
    payload: BookingCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User | None, Depends(deps.get_optional_user)],
    notifier: Annotated[BookingNotifier, Depends(deps.get_booking_notifier)],
) -> BookingCreateResponse:
    try:
        booking, warnings = await booking_service.create_booking(
            session,
            property_id=payload.property_id,
            check_in=payload.check_in,
            check_out=payload.check_out,
            guests=payload.guests,
            total_amount=payload.total_amount,
            guest_name=payload.guest_info.name,
            guest_email=payload.guest_info.email,
            guest_phone=payload.guest_info.phone,
            special_requests=payload.guest_info.special_requests,
            guest_id=current_user.id if current_user else None,
            notifier=notifier,
        )
    except PropertyNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BookingActionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except BookingConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "conflicts": exc.conflicts},
        ) from exc
    return BookingCreateResponse(
        booking=BookingDetail.from_booking(booking),
        message="Booking request submitted. Complete payment to confirm your stay.",
        warnings=warnings,
    )


@router.post(
    "/check-availability",
    response_model=AvailabilityResponse,
    summary="Check whether a property is free for a date range",
)
async def check_availability(
    payload: AvailabilityRequest,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
) -> AvailabilityResponse:
    try:
        availability = await availability_service.check_availability(
            session,
            property_id=payload.property_id,
            check_in=payload.check_in,
            check_out=payload.check_out,
        )
    except PropertyNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return AvailabilityResponse(
        available=availability.available,
        property_id=payload.property_id,
        check_in=payload.check_in,
        check_out=payload.check_out,
        conflicts=[DateRangeRead(**item.as_dict()) for item in availability.conflicts],
        blocked_dates=[DateRangeRead(**item.as_dict()) for item in availability.blocked],
    )


@router.get(
    "/{booking_id}/cancellation-policy",
    response_model=CancellationPolicyRead,
    summary="Refund terms if the booking were cancelled now",
)
async def get_cancellation_policy(
    booking_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User | None, Depends(deps.get_optional_user)],
) -> CancellationPolicyRead:
    try:
        booking = await booking_service.get_booking(session, booking_id)
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    # Bookings made while signed in are only visible to their parties.
    if booking.guest_id is not None:
        allowed = current_user is not None and (
            current_user.is_admin or current_user.id in (booking.guest_id, booking.host_id)
        )
        if not allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not allowed to view this booking",
            )
    policy = booking_service.cancellation_policy(booking)
    return CancellationPolicyRead.model_validate(policy)


@router.post(
    "/{booking_id}/cancel",
    response_model=GuestCancelResponse,
    summary="Cancel a booking under the cancellation policy",
    dependencies=[DEFAULT_RATE_DEP],
)
async def cancel_booking(
    booking_id: uuid.UUID,
    payload: GuestCancelRequest,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User | None, Depends(deps.get_optional_user)],
    gateway: Annotated[StripeClient | None, Depends(deps.get_payment_gateway)],
    notifier: Annotated[BookingNotifier, Depends(deps.get_booking_notifier)],
) -> GuestCancelResponse:
    try:
        result = await booking_lifecycle_service.cancel_by_guest(
            session,
            booking_id=booking_id,
            actor=current_user,
            guest_email=payload.guest_email,
            reason=payload.reason,
            refund=payload.refund,
            gateway=gateway,
            notifier=notifier,
        )
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BookingAccessError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except BookingActionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RefundBookkeepingError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": str(exc), "refund_id": exc.refund_id},
        ) from exc
    except PaymentGatewayError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process refund: {exc}",
        ) from exc
    return GuestCancelResponse(
        message=result.message,
        booking_id=result.booking_id,
        status=result.status,
        payment_status=result.payment_status,
        refund=RefundSummary(
            eligible=result.refund_eligible,
            amount=result.refund_amount,
            percentage=result.refund_percentage,
            processed=result.refund_processed,
            refund_id=result.refund_id,
        ),
        warnings=result.warnings,
    )


@router.post(
    "/{booking_id}/accept",
    response_model=BookingAcceptResponse,
    summary="Host accepts a pending booking",
)
async def accept_booking(
    booking_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    notifier: Annotated[BookingNotifier, Depends(deps.get_booking_notifier)],
) -> BookingAcceptResponse:
    try:
        result = await booking_lifecycle_service.accept_by_host(
            session, booking_id=booking_id, actor=current_user, notifier=notifier
        )
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BookingAccessError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except BookingActionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except BookingConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "conflicts": exc.conflicts},
        ) from exc
    return BookingAcceptResponse(
        booking_id=result.booking_id,
        status=result.status,
        payment_status=result.payment_status,
        property_title=result.property_title,
        warnings=result.warnings,
    )
