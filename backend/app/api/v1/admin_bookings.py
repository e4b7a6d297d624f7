"""Admin booking console: list bookings and apply manual actions."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.integrations import PaymentGatewayError, StripeClient
from app.models import BookingStatus, User
from app.schemas.admin import (
    AdminBookingActionRequest,
    AdminBookingActionResponse,
    AdminBookingList,
)
from app.schemas.booking import BookingDetail
from app.services import admin_booking_service, booking_service
from app.services.exceptions import (
    AdminRequiredError,
    BookingActionError,
    BookingNotFoundError,
    RefundBookkeepingError,
)
from app.services.notification_service import BookingNotifier

router = APIRouter(prefix="/admin/bookings", tags=["admin"])


@router.get("", response_model=AdminBookingList, summary="List bookings")
async def list_bookings(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.get_admin_user)],
    status_filter: Annotated[BookingStatus | None, Query(alias="status")] = None,
    property_id: uuid.UUID | None = None,
    guest_id: uuid.UUID | None = None,
    host_id: uuid.UUID | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> AdminBookingList:
    rows, total = await booking_service.list_bookings(
        session,
        status=status_filter,
        property_id=property_id,
        guest_id=guest_id,
        host_id=host_id,
        limit=limit,
        offset=offset,
    )
    return AdminBookingList(
        bookings=[BookingDetail.from_booking(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(rows) < total,
    )


@router.post(
    "",
    response_model=AdminBookingActionResponse,
    summary="Mark paid, cancel or refund a booking",
)
async def apply_booking_action(
    payload: AdminBookingActionRequest,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    gateway: Annotated[StripeClient | None, Depends(deps.get_payment_gateway)],
    notifier: Annotated[BookingNotifier, Depends(deps.get_booking_notifier)],
) -> AdminBookingActionResponse:
    try:
        result = await admin_booking_service.process_action(
            session,
            actor=current_user,
            booking_id=payload.booking_id,
            action=payload.action,
            reason=payload.reason,
            refund_amount=payload.refund_amount,
            gateway=gateway,
            notifier=notifier,
        )
    except AdminRequiredError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
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
            detail=f"Refund failed: {exc}",
        ) from exc
    return AdminBookingActionResponse(
        success=result.success,
        message=result.message,
        booking_id=result.booking_id,
        status=result.status,
        payment_status=result.payment_status,
        refund_id=result.refund_id,
        refund_amount=result.refund_amount,
        degraded_write=result.degraded_write,
        warnings=result.warnings,
    )
