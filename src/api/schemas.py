"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from src.domain.entities import Booking, NotificationPreference
from src.domain.enums import PHASE_LABELS, STAGE_LABELS, ActorRole, Category, Channel
from src.domain.timeline import TimelineEntry


# ── Requests ──────────────────────────────────────────────────────────


class BookingCreateRequest(BaseModel):
    passenger_id: str = Field(..., min_length=1, max_length=36)
    pickup_location: str = Field(..., min_length=1, max_length=500)
    dropoff_location: str = Field(..., min_length=1, max_length=500)
    pickup_time: datetime
    vehicle_type: Optional[str] = Field(None, max_length=40)
    passenger_count: int = Field(1, ge=1, le=20)
    luggage_count: int = Field(0, ge=0, le=20)
    flight_info: Optional[str] = Field(None, max_length=120)
    estimated_price: Optional[float] = Field(None, ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)

    def to_draft(self) -> Booking:
        return Booking(id="", **self.model_dump())


class TransitionRequest(BaseModel):
    actor: ActorRole = Field(..., description="Role invoking the transition.")
    driver_id: Optional[str] = Field(None, description="Required for offer_sent.")
    price: Optional[float] = Field(None, gt=0, description="Required for offer_sent.")
    stage: Optional[str] = Field(
        None, description="Expected next ride stage for ride_stage_advance."
    )
    reason: Optional[str] = Field(None, max_length=255)

    def extra(self) -> dict[str, Any]:
        return self.model_dump(exclude={"actor"}, exclude_none=True)


class PreferenceUpdateRequest(BaseModel):
    channels: dict[Channel, bool] = {}
    categories: dict[Category, bool] = {}


# ── Responses ─────────────────────────────────────────────────────────


class PartyResponse(BaseModel):
    role: ActorRole
    user_id: str


class BookingResponse(BaseModel):
    id: str
    short_code: Optional[str] = None
    phase: str
    phase_label: str
    stage: Optional[str] = None
    stage_label: Optional[str] = None
    parties: list[PartyResponse]
    counterpart: Optional[PartyResponse] = None
    pickup_location: str
    dropoff_location: str
    pickup_time: Optional[datetime] = None
    vehicle_type: Optional[str] = None
    passenger_count: int
    luggage_count: int
    flight_info: Optional[str] = None
    estimated_price: Optional[float] = None
    final_price: Optional[float] = None
    currency: str
    price_locked: bool
    contact_visible: bool
    is_terminal: bool
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_booking(
        cls, booking: Booking, viewer: Optional[ActorRole] = None
    ) -> "BookingResponse":
        stage = booking.stage
        counterpart = booking.counterpart(viewer) if viewer else None
        return cls(
            id=booking.id,
            short_code=booking.short_code,
            phase=booking.phase.value,
            phase_label=PHASE_LABELS[booking.phase],
            stage=stage.value if stage else None,
            stage_label=STAGE_LABELS[stage] if stage else None,
            parties=[PartyResponse(role=p.role, user_id=p.user_id) for p in booking.parties()],
            counterpart=(
                PartyResponse(role=counterpart.role, user_id=counterpart.user_id)
                if counterpart
                else None
            ),
            pickup_location=booking.pickup_location,
            dropoff_location=booking.dropoff_location,
            pickup_time=booking.pickup_time,
            vehicle_type=booking.vehicle_type,
            passenger_count=booking.passenger_count,
            luggage_count=booking.luggage_count,
            flight_info=booking.flight_info,
            estimated_price=booking.estimated_price,
            final_price=booking.final_price,
            currency=booking.currency,
            price_locked=booking.price_locked,
            contact_visible=booking.contact_visible,
            is_terminal=booking.is_terminal,
            cancellation_reason=booking.cancellation_reason,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


class TransitionResponse(BaseModel):
    booking: BookingResponse
    updated_fields: dict[str, Any]


class TimelineEntryResponse(BaseModel):
    phase: str
    stage: Optional[str] = None
    label: str
    actor_role: ActorRole
    timestamp: datetime
    metadata: dict[str, Any] = {}

    @classmethod
    def from_entry(cls, entry: TimelineEntry) -> "TimelineEntryResponse":
        return cls(
            phase=entry.phase.value,
            stage=entry.stage.value if entry.stage else None,
            label=entry.label,
            actor_role=entry.actor_role,
            timestamp=entry.timestamp,
            metadata=entry.metadata,
        )


class PreferenceResponse(BaseModel):
    user_id: str
    role: ActorRole
    channels: dict[str, bool]
    categories: dict[str, bool]

    @classmethod
    def from_preference(cls, pref: NotificationPreference) -> "PreferenceResponse":
        return cls(
            user_id=pref.user_id,
            role=pref.role,
            channels={c.value: v for c, v in pref.channels.items()},
            categories={c.value: v for c, v in pref.categories.items()},
        )


class SubscriptionResponse(BaseModel):
    booking_id: str
    concern: str


class HealthResponse(BaseModel):
    status: str = "ok"
    cached_bookings: int = 0
    subscriptions: int = 0


class ErrorResponse(BaseModel):
    detail: str
