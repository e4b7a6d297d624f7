"""Initial booking and payment schema.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = postgresql.JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    user_role_enum = sa.Enum(
        "super_admin", "admin", "host", "guest", name="user_role"
    )
    user_status_enum = sa.Enum("invited", "active", "suspended", name="user_status")

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("phone_number", sa.String(length=32)),
        sa.Column("role", user_role_enum, nullable=False),
        sa.Column("status", user_status_enum, nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "properties",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "host_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=512)),
        sa.Column("city", sa.String(length=120)),
        sa.Column("state", sa.String(length=120)),
        sa.Column("images", JSON_TYPE, nullable=False),
        sa.Column("max_guests", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_properties_host_id", "properties", ["host_id"])

    op.create_table(
        "blocked_dates",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "property_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("properties.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(length=255)),
        sa.CheckConstraint("end_date >= start_date", name="blocked_range_order"),
    )
    op.create_index("ix_blocked_dates_property_id", "blocked_dates", ["property_id"])

    booking_status_enum = sa.Enum(
        "pending", "confirmed", "cancelled", "completed", name="booking_status"
    )
    booking_payment_status_enum = sa.Enum(
        "pending",
        "processing",
        "paid",
        "failed",
        "refunded",
        "partially_refunded",
        "disputed",
        name="booking_payment_status",
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "property_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("properties.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "guest_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "host_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("check_in_date", sa.Date(), nullable=False),
        sa.Column("check_out_date", sa.Date(), nullable=False),
        sa.Column("guests_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=12), nullable=False, server_default="cad"),
        sa.Column("guest_name", sa.String(length=255), nullable=False),
        sa.Column("guest_email", sa.String(length=320)),
        sa.Column("guest_phone", sa.String(length=32)),
        sa.Column("special_requests", sa.Text()),
        sa.Column("status", booking_status_enum, nullable=False),
        sa.Column("payment_status", booking_payment_status_enum, nullable=False),
        sa.Column("payment_method", sa.String(length=32)),
        sa.Column("payment_intent_id", sa.String(length=255)),
        sa.Column("external_session_id", sa.String(length=255)),
        sa.Column("cancellation_reason", sa.Text()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("refund_amount", sa.Numeric(12, 2)),
        sa.Column("refund_date", sa.DateTime(timezone=True)),
        sa.Column("refund_reason", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("check_out_date > check_in_date", name="stay_range_order"),
        sa.CheckConstraint("guests_count > 0", name="guests_positive"),
    )
    op.create_index("ix_bookings_guest_id", "bookings", ["guest_id"])
    op.create_index("ix_bookings_host_id", "bookings", ["host_id"])
    op.create_index("ix_bookings_payment_intent_id", "bookings", ["payment_intent_id"])
    op.create_index("ix_bookings_external_session_id", "bookings", ["external_session_id"])
    op.create_index(
        "ix_bookings_property_dates",
        "bookings",
        ["property_id", "check_in_date", "check_out_date"],
    )

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        # Final arbiter for double bookings; violations surface as SQLSTATE 23P01.
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            """
            ALTER TABLE bookings
            ADD CONSTRAINT bookings_no_overlap
            EXCLUDE USING gist (
                property_id WITH =,
                daterange(check_in_date, check_out_date, '[)') WITH &&
            )
            WHERE (status <> 'cancelled')
            """
        )

    transaction_type_enum = sa.Enum(
        "card", "bank_transfer", "refund", name="payment_transaction_type"
    )
    transaction_status_enum = sa.Enum(
        "pending", "succeeded", "failed", name="payment_transaction_status"
    )
    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "booking_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("bookings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("transaction_type", transaction_type_enum, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=12), nullable=False, server_default="cad"),
        sa.Column("status", transaction_status_enum, nullable=False),
        sa.Column("payment_method_type", sa.String(length=32)),
        sa.Column("provider_reference", sa.String(length=255)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("metadata", JSON_TYPE, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_payment_transactions_booking_id", "payment_transactions", ["booking_id"]
    )

    op.create_table(
        "payment_events",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("provider_event_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("booking_id", sa.Uuid(as_uuid=True)),
        sa.Column("payment_intent_id", sa.String(length=255)),
        sa.Column("processing_attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("last_error", sa.Text()),
        sa.Column(
            "received_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("raw", JSON_TYPE, nullable=False),
    )

    notification_type_enum = sa.Enum(
        "booking_new",
        "booking_confirmed",
        "payment_confirmed",
        "booking_cancelled",
        name="notification_type",
    )
    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", notification_type_enum, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", JSON_TYPE, nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    sa.Enum(name="notification_type").drop(op.get_bind(), checkfirst=False)

    op.drop_table("payment_events")

    op.drop_index("ix_payment_transactions_booking_id", table_name="payment_transactions")
    op.drop_table("payment_transactions")
    sa.Enum(name="payment_transaction_status").drop(op.get_bind(), checkfirst=False)
    sa.Enum(name="payment_transaction_type").drop(op.get_bind(), checkfirst=False)

    op.drop_index("ix_bookings_property_dates", table_name="bookings")
    op.drop_index("ix_bookings_external_session_id", table_name="bookings")
    op.drop_index("ix_bookings_payment_intent_id", table_name="bookings")
    op.drop_index("ix_bookings_host_id", table_name="bookings")
    op.drop_index("ix_bookings_guest_id", table_name="bookings")
    op.drop_table("bookings")
    sa.Enum(name="booking_payment_status").drop(op.get_bind(), checkfirst=False)
    sa.Enum(name="booking_status").drop(op.get_bind(), checkfirst=False)

    op.drop_index("ix_blocked_dates_property_id", table_name="blocked_dates")
    op.drop_table("blocked_dates")

    op.drop_index("ix_properties_host_id", table_name="properties")
    op.drop_table("properties")

    op.drop_table("users")
    sa.Enum(name="user_status").drop(op.get_bind(), checkfirst=False)
    sa.Enum(name="user_role").drop(op.get_bind(), checkfirst=False)
