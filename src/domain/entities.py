"""
Domain entities.

``Booking`` is the aggregate root.  Its raw status columns are kept as
received; the canonical phase is always derived through the normalizer
so no caller computes status on its own.

Parties are exposed as a tagged ``Party(role, user_id)`` resolved once
per booking instead of ad hoc passenger / driver lookups.
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from .enums import (
    PHASE_ORDER,
    ActorRole,
    CanonicalPhase,
    Category,
    Channel,
    OfferStatus,
    RideStage,
)
from .errors import InvalidPickupTime
from .normalizer import normalize, stage_of


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_booking_id() -> str:
    return str(uuid.uuid4())


def short_code_for(booking_id: str) -> str:
    """Human-facing code, e.g. ``VIP-3F9A1C``."""
    return "VIP-" + booking_id.replace("-", "")[:6].upper()


_DATETIME_FIELDS = frozenset(
    {
        "pickup_time",
        "created_at",
        "updated_at",
        "offer_sent_at",
        "payment_confirmed_at",
        "ride_started_at",
        "ride_completed_at",
        "cancelled_at",
        "expires_at",
    }
)


def _as_datetime(value: Any) -> Any:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return None
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def coerce_record(record: dict[str, Any]) -> dict[str, Any]:
    """Parse timestamp fields that arrive as ISO strings off the change feed."""
    return {
        k: _as_datetime(v) if k in _DATETIME_FIELDS else v for k, v in record.items()
    }


def validate_pickup_time(
    pickup_time: datetime,
    now: datetime,
    min_lead_minutes: int,
    max_horizon_days: int = 365,
) -> None:
    """Raise ``InvalidPickupTime`` unless pickup falls inside the booking window."""
    if pickup_time.tzinfo is None:
        pickup_time = pickup_time.replace(tzinfo=timezone.utc)
    if pickup_time < now + timedelta(minutes=min_lead_minutes):
        raise InvalidPickupTime(
            f"Pickup must be at least {min_lead_minutes} minutes from now"
        )
    if pickup_time > now + timedelta(days=max_horizon_days):
        raise InvalidPickupTime(
            f"Pickup cannot be more than {max_horizon_days} days ahead"
        )


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Party:
    role: ActorRole
    user_id: str


# ── Aggregate ─────────────────────────────────────────────────────────


@dataclass
class Booking:
    id: str
    passenger_id: str
    short_code: Optional[str] = None
    driver_id: Optional[str] = None

    pickup_location: str = ""
    dropoff_location: str = ""
    pickup_time: Optional[datetime] = None
    vehicle_type: Optional[str] = None
    passenger_count: int = 1
    luggage_count: int = 0
    flight_info: Optional[str] = None

    estimated_price: Optional[float] = None
    final_price: Optional[float] = None
    currency: str = "USD"

    status: Optional[str] = None
    ride_status: Optional[str] = None
    payment_confirmation_status: Optional[str] = None
    ride_stage: Optional[str] = None
    cancellation_reason: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    offer_sent_at: Optional[datetime] = None
    payment_confirmed_at: Optional[datetime] = None
    ride_started_at: Optional[datetime] = None
    ride_completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def phase(self) -> CanonicalPhase:
        return normalize(self)

    @property
    def stage(self) -> Optional[RideStage]:
        return stage_of(self)

    @property
    def is_terminal(self) -> bool:
        return self.phase in (
            CanonicalPhase.COMPLETED,
            CanonicalPhase.CANCELLED,
            CanonicalPhase.DECLINED,
        )

    @property
    def price_locked(self) -> bool:
        """Offer price is immutable from ``paid_unconfirmed`` onward.

        Ended bookings stay locked: a cancellation after payment must not
        reopen the price to later feed records.
        """
        if self.is_terminal or self.payment_confirmed_at is not None:
            return True
        rank = PHASE_ORDER.get(self.phase)
        return rank is not None and rank >= PHASE_ORDER[CanonicalPhase.PAID_UNCONFIRMED]

    @property
    def contact_visible(self) -> bool:
        """Counterpart contact details unlock once payment is confirmed."""
        return self.phase in (
            CanonicalPhase.ALL_SET,
            CanonicalPhase.IN_PROGRESS,
            CanonicalPhase.COMPLETED,
        )

    def parties(self) -> list[Party]:
        parties = [Party(ActorRole.PASSENGER, self.passenger_id)]
        if self.driver_id:
            parties.append(Party(ActorRole.DRIVER, self.driver_id))
        return parties

    def party(self, role: ActorRole) -> Optional[Party]:
        for p in self.parties():
            if p.role is role:
                return p
        return None

    def counterpart(self, viewer: ActorRole) -> Optional[Party]:
        if viewer is ActorRole.PASSENGER:
            return self.party(ActorRole.DRIVER)
        if viewer is ActorRole.DRIVER:
            return self.party(ActorRole.PASSENGER)
        return None

    def merged(self, record: dict[str, Any]) -> "Booking":
        """Return a copy with known fields from *record* applied."""
        known = {f.name for f in dataclasses.fields(self)}
        changes = {
            k: v for k, v in coerce_record(record).items() if k in known and k != "id"
        }
        return dataclasses.replace(self, **changes)

    def to_record(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Booking":
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in coerce_record(record).items() if k in known})


# ── Audit & preferences ───────────────────────────────────────────────


@dataclass(frozen=True)
class StatusHistoryEntry:
    booking_id: str
    status: str
    actor_role: ActorRole
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None


DEFAULT_CHANNELS: dict[Channel, bool] = {
    Channel.IN_APP: True,
    Channel.EMAIL: True,
    Channel.PUSH: False,
    Channel.SOUND: True,
}

# Used when stored preferences cannot be read.
FALLBACK_CHANNELS: dict[Channel, bool] = {
    Channel.IN_APP: True,
    Channel.EMAIL: True,
    Channel.PUSH: False,
    Channel.SOUND: False,
}

DEFAULT_CATEGORIES: dict[Category, bool] = {
    Category.BOOKING_UPDATES: True,
    Category.COUNTERPART_MESSAGES: True,
    Category.PROMOTIONS: False,
}


@dataclass
class NotificationPreference:
    user_id: str
    role: ActorRole
    channels: dict[Channel, bool] = field(
        default_factory=lambda: dict(DEFAULT_CHANNELS)
    )
    categories: dict[Category, bool] = field(
        default_factory=lambda: dict(DEFAULT_CATEGORIES)
    )

    @classmethod
    def fallback(cls, user_id: str, role: ActorRole) -> "NotificationPreference":
        return cls(user_id=user_id, role=role, channels=dict(FALLBACK_CHANNELS))

    def allows(self, channel: Channel) -> bool:
        return self.channels.get(channel, False)

    def wants(self, category: Category) -> bool:
        return self.categories.get(category, False)


@dataclass
class DriverOffer:
    id: str
    booking_id: str
    driver_id: str
    offer_price: float
    status: OfferStatus = OfferStatus.PENDING
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "DriverOffer":
        record = coerce_record(record)
        return cls(
            id=str(record["id"]),
            booking_id=str(record["booking_id"]),
            driver_id=str(record["driver_id"]),
            offer_price=float(record["offer_price"]),
            status=OfferStatus(record.get("status") or OfferStatus.PENDING.value),
            created_at=record.get("created_at"),
            expires_at=record.get("expires_at"),
        )
