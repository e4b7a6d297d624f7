"""Rental property listings and host-blocked date ranges."""
from __future__ import annotations

import uuid
from datetime import date
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from app.db.base import Base
from app.models.mixins import TimestampMixin

if TYPE_CHECKING:
    from app.models.user import User

JSONB_TYPE = JSONB(astext_type=Text()).with_variant(JSON(), "sqlite")


class Property(TimestampMixin, Base):
    """A listing that guests can book by the night."""

    __tablename__ = "properties"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    host_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str | None] = mapped_column(String(512))
    city: Mapped[str | None] = mapped_column(String(120))
    state: Mapped[str | None] = mapped_column(String(120))
    images: Mapped[list[Any]] = mapped_column(JSONB_TYPE, nullable=False, default=list)
    max_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    host: Mapped["User"] = relationship("User")
    blocked_dates: Mapped[list["BlockedDate"]] = relationship(
        "BlockedDate", back_populates="property", cascade="all, delete-orphan"
    )


class BlockedDate(Base):
    """Inclusive date range a host has closed for bookings."""

    __tablename__ = "blocked_dates"
    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="blocked_range_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    property_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255))

    property: Mapped[Property] = relationship("Property", back_populates="blocked_dates")
