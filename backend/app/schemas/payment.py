"""Schemas for checkout, verification and bank transfer payloads."""
from __future__ import annotations

import uuid
from decimal import Decimal

from pydantic import BaseModel, Field

from app.schemas.booking import BookingDetail, CamelRequest


class VerifyPaymentRequest(CamelRequest):
    session_id: str = Field(min_length=1)


class VerifyPaymentResponse(BaseModel):
    success: bool
    payment_status: str | None = None
    booking: BookingDetail | None = None
    processing: bool = False
    message: str | None = None
    warnings: list[str] = Field(default_factory=list)


class CheckoutSessionRequest(CamelRequest):
    booking_id: uuid.UUID


class CheckoutSessionResponse(BaseModel):
    booking_id: uuid.UUID
    session_id: str
    url: str | None = None


class BankTransferRequest(CamelRequest):
    booking_id: uuid.UUID


class BankInstructionsRead(BaseModel):
    model_config = {"from_attributes": True}

    account_name: str
    bank_name: str
    account_number: str
    routing_number: str
    swift_code: str | None = None
    iban: str | None = None
    reference: str
    notes: str


class BankTransferBooking(BaseModel):
    id: uuid.UUID
    payment_status: str
    payment_method: str | None
    total_amount: Decimal
    currency: str


class BankTransferResponse(BaseModel):
    success: bool = True
    booking: BankTransferBooking
    instructions: BankInstructionsRead
