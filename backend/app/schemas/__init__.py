"""Schema exports."""

from app.schemas.admin import (
    AdminBookingActionRequest,
    AdminBookingActionResponse,
    AdminBookingList,
)
from app.schemas.auth import Token
from app.schemas.booking import (
    AvailabilityRequest,
    AvailabilityResponse,
    BookingAcceptResponse,
    BookingCreate,
    BookingCreateResponse,
    BookingDetail,
    BookingRead,
    CancellationPolicyRead,
    DateRangeRead,
    GuestCancelRequest,
    GuestCancelResponse,
    GuestInfo,
    RefundSummary,
)
from app.schemas.payment import (
    BankInstructionsRead,
    BankTransferRequest,
    BankTransferResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)

__all__ = [
    "AdminBookingActionRequest",
    "AdminBookingActionResponse",
    "AdminBookingList",
    "AvailabilityRequest",
    "AvailabilityResponse",
    "BankInstructionsRead",
    "BankTransferRequest",
    "BankTransferResponse",
    "BookingAcceptResponse",
    "BookingCreate",
    "BookingCreateResponse",
    "BookingDetail",
    "BookingRead",
    "CancellationPolicyRead",
    "CheckoutSessionRequest",
    "CheckoutSessionResponse",
    "DateRangeRead",
    "GuestCancelRequest",
    "GuestCancelResponse",
    "GuestInfo",
    "RefundSummary",
    "Token",
    "VerifyPaymentRequest",
    "VerifyPaymentResponse",
]
