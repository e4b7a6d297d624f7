"""Service layer exports."""
from app.services import (
    email_service,
    notification_service,
    availability_service,
    booking_service,
    reconciliation_service,
    verification_service,
    admin_booking_service,
    booking_lifecycle_service,
    payment_service,
    payment_webhook_service,
    auth_service,
)

__all__ = [
    "admin_booking_service",
    "auth_service",
    "availability_service",
    "booking_lifecycle_service",
    "booking_service",
    "email_service",
    "notification_service",
    "payment_service",
    "payment_webhook_service",
    "reconciliation_service",
    "verification_service",
]
