"""Schemas for the admin booking console."""
from __future__ import annotations

import uuid
from decimal import Decimal

from pydantic import BaseModel, Field

from app.models.booking import BookingPaymentStatus, BookingStatus
from app.schemas.booking import BookingDetail, CamelRequest
from app.services.admin_booking_service import AdminAction


class AdminBookingActionRequest(CamelRequest):
    booking_id: uuid.UUID
    action: AdminAction
    reason: str | None = Field(default=None, max_length=1000)
    refund_amount: Decimal | None = None


class AdminBookingActionResponse(BaseModel):
    success: bool
    message: str
    booking_id: uuid.UUID
    status: BookingStatus | None = None
    payment_status: BookingPaymentStatus | None = None
    refund_id: str | None = None
    refund_amount: Decimal | None = None
    degraded_write: bool = False
    warnings: list[str] = Field(default_factory=list)


class AdminBookingList(BaseModel):
    bookings: list[BookingDetail]
    total: int
    limit: int
    offset: int
    has_more: bool
