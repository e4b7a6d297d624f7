"""ORM models package export."""

from app.models.booking import (
    OCCUPYING_BOOKING_STATUSES,
    REFUNDED_PAYMENT_STATUSES,
    SETTLEABLE_PAYMENT_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    Booking,
    BookingPaymentStatus,
    BookingStatus,
)
from app.models.notification import Notification, NotificationType
from app.models.payment import (
    PaymentEvent,
    PaymentTransaction,
    PaymentTransactionStatus,
    PaymentTransactionType,
)
from app.models.property import BlockedDate, Property
from app.models.user import ADMIN_ROLES, User, UserRole, UserStatus

__all__ = [
    "ADMIN_ROLES",
    "BlockedDate",
    "Booking",
    "BookingPaymentStatus",
    "BookingStatus",
    "Notification",
    "NotificationType",
    "OCCUPYING_BOOKING_STATUSES",
    "PaymentEvent",
    "PaymentTransaction",
    "PaymentTransactionStatus",
    "PaymentTransactionType",
    "Property",
    "REFUNDED_PAYMENT_STATUSES",
    "SETTLEABLE_PAYMENT_STATUSES",
    "TERMINAL_BOOKING_STATUSES",
    "User",
    "UserRole",
    "UserStatus",
]
