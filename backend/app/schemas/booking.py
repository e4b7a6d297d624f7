"""Pydantic schemas for bookings and availability."""
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import inspect

from app.models.booking import Booking, BookingPaymentStatus, BookingStatus


class CamelRequest(BaseModel):
    """Request bodies accept both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GuestInfo(CamelRequest):
    name: str = Field(min_length=2, max_length=255)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=32)
    special_requests: str | None = Field(default=None, max_length=2000)


class BookingCreate(CamelRequest):
    """Payload for requesting a stay."""

    property_id: uuid.UUID
    check_in: date
    check_out: date
    guests: int = Field(ge=1)
    total_amount: Decimal = Field(gt=Decimal("0"), max_digits=12, decimal_places=2)
    guest_info: GuestInfo

    @model_validator(mode="after")
    def _check_range(self) -> "BookingCreate":
        if self.check_out <= self.check_in:
            raise ValueError("Check-out date must be after check-in date")
        return self


class BookingRead(BaseModel):
    """Serialized booking representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    property_id: uuid.UUID
    guest_id: uuid.UUID | None
    host_id: uuid.UUID
    check_in_date: date
    check_out_date: date
    guests_count: int
    total_amount: Decimal
    currency: str
    guest_name: str
    guest_email: str | None
    status: BookingStatus
    payment_status: BookingPaymentStatus
    payment_method: str | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    refund_amount: Decimal | None = None
    refund_date: datetime | None = None
    created_at: datetime
    updated_at: datetime


class BookingDetail(BookingRead):
    """Booking with the display fields of its listing and host."""

    property_title: str | None = None
    property_location: str | None = None
    host_name: str | None = None
    host_email: str | None = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingDetail":
        """Build from a booking whose listing and host are already loaded."""
        detail = cls.model_validate(booking)
        state = inspect(booking)
        listing = None if "listing" in state.unloaded else booking.listing
        host = None if "host" in state.unloaded else booking.host
        if listing is not None:
            detail.property_title = listing.title
            detail.property_location = ", ".join(
                part for part in (listing.city, listing.state) if part
            ) or None
        if host is not None:
            detail.host_name = host.full_name or None
            detail.host_email = host.email
        return detail


class BookingCreateResponse(BaseModel):
    success: bool = True
    booking: BookingDetail
    message: str
    warnings: list[str] = Field(default_factory=list)


class AvailabilityRequest(CamelRequest):
    property_id: uuid.UUID
    check_in: date
    check_out: date

    @model_validator(mode="after")
    def _check_range(self) -> "AvailabilityRequest":
        if self.check_out <= self.check_in:
            raise ValueError("Check-out date must be after check-in date")
        return self


class DateRangeRead(BaseModel):
    check_in: date
    check_out: date


class AvailabilityResponse(BaseModel):
    available: bool
    property_id: uuid.UUID
    check_in: date
    check_out: date
    conflicts: list[DateRangeRead] = Field(default_factory=list)
    blocked_dates: list[DateRangeRead] = Field(default_factory=list)


class CancellationPolicyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: uuid.UUID
    can_cancel: bool
    refund_percentage: int
    refund_amount: Decimal
    hours_until_check_in: float
    reason: str | None = None


class GuestCancelRequest(CamelRequest):
    """Guest cancellation; anonymous bookings prove ownership by email."""

    reason: str | None = Field(default=None, max_length=1000)
    refund: bool = True
    guest_email: EmailStr | None = None


class RefundSummary(BaseModel):
    eligible: bool
    amount: Decimal
    percentage: int
    processed: bool
    refund_id: str | None = None


class GuestCancelResponse(BaseModel):
    success: bool = True
    message: str
    booking_id: uuid.UUID
    status: BookingStatus
    payment_status: BookingPaymentStatus
    refund: RefundSummary
    warnings: list[str] = Field(default_factory=list)


class BookingAcceptResponse(BaseModel):
    success: bool = True
    message: str = "Booking accepted successfully"
    booking_id: uuid.UUID
    status: BookingStatus
    payment_status: BookingPaymentStatus
    property_title: str | None = None
    warnings: list[str] = Field(default_factory=list)
