"""Booking model and its two status dimensions."""
from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import TimestampMixin, enum_column

if TYPE_CHECKING:
    from app.models.property import Property
    from app.models.user import User


class BookingStatus(str, enum.Enum):
    """Lifecycle of the stay itself."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class BookingPaymentStatus(str, enum.Enum):
    """Lifecycle of the money attached to a booking."""

    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    DISPUTED = "disputed"


TERMINAL_BOOKING_STATUSES = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.COMPLETED}
)
OCCUPYING_BOOKING_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.COMPLETED}
)
REFUNDED_PAYMENT_STATUSES = frozenset(
    {BookingPaymentStatus.REFUNDED, BookingPaymentStatus.PARTIALLY_REFUNDED}
)
# Payment states from which settlement evidence may still move a booking to paid.
SETTLEABLE_PAYMENT_STATUSES = frozenset(
    {
        BookingPaymentStatus.PENDING,
        BookingPaymentStatus.PROCESSING,
        BookingPaymentStatus.FAILED,
    }
)


class Booking(TimestampMixin, Base):
    """A guest's claim on a property for a half-open range of nights.

    The ``bookings_no_overlap`` exclusion constraint that backs the
    availability guard is created by the Postgres migration; SQLite test
    databases rely on the property row lock taken at reservation time.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("check_out_date > check_in_date", name="stay_range_order"),
        CheckConstraint("guests_count > 0", name="guests_positive"),
        Index("ix_bookings_property_dates", "property_id", "check_in_date", "check_out_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    property_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("properties.id", ondelete="CASCADE"), nullable=False
    )
    guest_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    host_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)
    guests_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(12), nullable=False, default="cad")

    guest_name: Mapped[str] = mapped_column(String(255), nullable=False)
    guest_email: Mapped[str | None] = mapped_column(String(320))
    guest_phone: Mapped[str | None] = mapped_column(String(32))
    special_requests: Mapped[str | None] = mapped_column(Text())

    status: Mapped[BookingStatus] = mapped_column(
        enum_column(BookingStatus, "booking_status"),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    payment_status: Mapped[BookingPaymentStatus] = mapped_column(
        enum_column(BookingPaymentStatus, "booking_payment_status"),
        nullable=False,
        default=BookingPaymentStatus.PENDING,
    )
    payment_method: Mapped[str | None] = mapped_column(String(32))
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), index=True)
    external_session_id: Mapped[str | None] = mapped_column(String(255), index=True)

    cancellation_reason: Mapped[str | None] = mapped_column(Text())
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    refund_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refund_reason: Mapped[str | None] = mapped_column(Text())

    listing: Mapped["Property"] = relationship("Property")
    guest: Mapped["User | None"] = relationship("User", foreign_keys=[guest_id])
    host: Mapped["User"] = relationship("User", foreign_keys=[host_id])

    @property
    def nights(self) -> int:
        return (self.check_out_date - self.check_in_date).days
