"""Domain errors raised by the booking and payment services."""

from __future__ import annotations

import uuid
from typing import Any


class BookingNotFoundError(LookupError):
    """No booking exists for the requested id."""

    def __init__(self, booking_id: uuid.UUID | str | None) -> None:
        super().__init__("Booking not found")
        self.booking_id = booking_id


class PropertyNotFoundError(LookupError):
    """No property exists for the requested id."""


class BookingActionError(ValueError):
    """The requested transition or input is not acceptable."""


class AdminRequiredError(PermissionError):
    """Raised when a privileged action runs without an admin identity."""


class BookingAccessError(PermissionError):
    """The caller is not a party allowed to change this booking."""


class InvalidCheckoutSessionError(ValueError):
    """The checkout session does not reference a booking."""


class BookingConflictError(Exception):
    """The requested nights overlap an occupying booking or a blocked range."""

    def __init__(self, message: str, conflicts: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.conflicts = conflicts or []


class RefundBookkeepingError(RuntimeError):
    """The gateway refunded the payment but the booking row was not updated.

    Operators must reconcile these by hand; the refund id is carried along so
    the gateway-side record can be matched.
    """

    def __init__(self, refund_id: str, detail: str) -> None:
        super().__init__("Refund processed but booking update failed")
        self.refund_id = refund_id
        self.detail = detail


__all__ = [
    "AdminRequiredError",
    "BookingAccessError",
    "BookingActionError",
    "BookingConflictError",
    "BookingNotFoundError",
    "InvalidCheckoutSessionError",
    "PropertyNotFoundError",
    "RefundBookkeepingError",
]
