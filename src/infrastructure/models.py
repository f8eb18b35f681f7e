"""
SQLAlchemy ORM models.

Tables
------
* ``users``                    -- passengers, drivers and dispatchers
* ``bookings``                 -- booking aggregate with its raw status columns
* ``booking_status_history``   -- append-only audit log of transitions
* ``driver_offers``            -- price offers made by drivers
* ``notification_preferences`` -- per (user, role) channel / category switches
* ``notifications``            -- in-app notification inbox

Indexes
-------
* **B-Tree** on ``payment_confirmation_status`` + ``created_at`` for the
  request-expiry sweep, on party ids for dashboard look-ups and on
  ``booking_id`` for history / offer reads.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)

from .database import Base
from src.domain.enums import ActorRole, OfferStatus


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(32), nullable=True)
    role = Column(Enum(ActorRole), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True)
    short_code = Column(String(16), unique=True, nullable=True)
    passenger_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    driver_id = Column(String(36), ForeignKey("users.id"), nullable=True)

    pickup_location = Column(String(500), nullable=False, default="")
    dropoff_location = Column(String(500), nullable=False, default="")
    pickup_time = Column(DateTime(timezone=True), nullable=True)
    vehicle_type = Column(String(40), nullable=True)
    passenger_count = Column(Integer, default=1, nullable=False)
    luggage_count = Column(Integer, default=0, nullable=False)
    flight_info = Column(String(120), nullable=True)

    estimated_price = Column(Float, nullable=True)
    final_price = Column(Float, nullable=True)
    currency = Column(String(3), default="USD", nullable=False)

    # Legacy / overlapping status columns, reconciled by the normalizer
    status = Column(String(40), nullable=True)
    ride_status = Column(String(40), nullable=True)
    payment_confirmation_status = Column(String(40), nullable=True)
    ride_stage = Column(String(40), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    offer_sent_at = Column(DateTime(timezone=True), nullable=True)
    payment_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    ride_started_at = Column(DateTime(timezone=True), nullable=True)
    ride_completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_bookings_passenger", "passenger_id"),
        Index("idx_bookings_driver", "driver_id"),
        Index("idx_bookings_pcs_created", "payment_confirmation_status", "created_at"),
    )


class StatusHistoryModel(Base):
    __tablename__ = "booking_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False)
    status = Column(String(40), nullable=False)
    role = Column(Enum(ActorRole), nullable=False)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_history_booking", "booking_id", "created_at"),)


class DriverOfferModel(Base):
    __tablename__ = "driver_offers"

    id = Column(String(36), primary_key=True)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False)
    driver_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    offer_price = Column(Float, nullable=False)
    status = Column(Enum(OfferStatus), default=OfferStatus.PENDING, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_offers_booking", "booking_id"),)


class NotificationPreferenceModel(Base):
    __tablename__ = "notification_preferences"

    user_id = Column(String(36), primary_key=True)
    role = Column(Enum(ActorRole), primary_key=True)
    channels = Column(JSON, nullable=False, default=dict)
    categories = Column(JSON, nullable=False, default=dict)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_id = Column(String(36), nullable=False)
    booking_id = Column(String(36), nullable=True)
    category = Column(String(40), nullable=False)
    title = Column(String(120), nullable=False)
    body = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_notifications_recipient", "recipient_id", "is_read"),)
