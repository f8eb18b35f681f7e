"""Initial schema: users, bookings, status history, offers and notifications.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

# Shared by several tables, so created once up front.
ACTOR_ROLE = postgresql.ENUM(
    "PASSENGER", "DRIVER", "DISPATCHER", "SYSTEM", name="actorrole", create_type=False
)


def upgrade() -> None:
    ACTOR_ROLE.create(op.get_bind(), checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("role", ACTOR_ROLE, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("short_code", sa.String(16), unique=True, nullable=True),
        sa.Column(
            "passenger_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column(
            "driver_id", sa.String(36), sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("pickup_location", sa.String(500), nullable=False, server_default=""),
        sa.Column("dropoff_location", sa.String(500), nullable=False, server_default=""),
        sa.Column("pickup_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("vehicle_type", sa.String(40), nullable=True),
        sa.Column("passenger_count", sa.Integer, nullable=False, server_default="1"),
        sa.Column("luggage_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("flight_info", sa.String(120), nullable=True),
        sa.Column("estimated_price", sa.Float, nullable=True),
        sa.Column("final_price", sa.Float, nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("status", sa.String(40), nullable=True),
        sa.Column("ride_status", sa.String(40), nullable=True),
        sa.Column("payment_confirmation_status", sa.String(40), nullable=True),
        sa.Column("ride_stage", sa.String(40), nullable=True),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("offer_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ride_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ride_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_bookings_passenger", "bookings", ["passenger_id"])
    op.create_index("idx_bookings_driver", "bookings", ["driver_id"])
    op.create_index(
        "idx_bookings_pcs_created",
        "bookings",
        ["payment_confirmation_status", "created_at"],
    )

    # ── booking_status_history ────────────────────────────────────────
    op.create_table(
        "booking_status_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "booking_id", sa.String(36), sa.ForeignKey("bookings.id"), nullable=False
        ),
        sa.Column("status", sa.String(40), nullable=False),
        sa.Column("role", ACTOR_ROLE, nullable=False),
        sa.Column("metadata", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_history_booking", "booking_status_history", ["booking_id", "created_at"]
    )

    # ── driver_offers ─────────────────────────────────────────────────
    op.create_table(
        "driver_offers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "booking_id", sa.String(36), sa.ForeignKey("bookings.id"), nullable=False
        ),
        sa.Column(
            "driver_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("offer_price", sa.Float, nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "ACCEPTED", "DECLINED", "WITHDRAWN", name="offerstatus"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_offers_booking", "driver_offers", ["booking_id"])

    # ── notification_preferences ──────────────────────────────────────
    op.create_table(
        "notification_preferences",
        sa.Column("user_id", sa.String(36), primary_key=True),
        sa.Column("role", ACTOR_ROLE, primary_key=True),
        sa.Column("channels", sa.JSON, nullable=False),
        sa.Column("categories", sa.JSON, nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── notifications ─────────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("recipient_id", sa.String(36), nullable=False),
        sa.Column("booking_id", sa.String(36), nullable=True),
        sa.Column("category", sa.String(40), nullable=False),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_notifications_recipient", "notifications", ["recipient_id", "is_read"]
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("notification_preferences")
    op.drop_table("driver_offers")
    op.drop_table("booking_status_history")
    op.drop_table("bookings")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS offerstatus")
    op.execute("DROP TYPE IF EXISTS actorrole")
