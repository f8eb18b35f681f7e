"""
Transition table.

Every legal move of a booking is a named ``Transition``: the phases it
may start from, the actor roles allowed to invoke it, and a resolver
that produces the raw field values to persist.  The table is the only
place raw status columns are written; the resulting canonical phase
always comes back out of the normalizer.

    requested ──offer_sent──> offer_sent ──offer_accepted──> payment_pending
        │                        │                               │
        │                  offer_declined                   payment_sent
        │                        v                               v
        │                     declined                    paid_unconfirmed
        │                                                        │
        │                                               payment_confirmed
        │                                                        v
        │                                  all_set ──ride_stage_advance──> in_progress ... completed
        │
        └── request_timed_out / cancelled (any non-terminal) ──> cancelled

Concurrent transitions on one booking are resolved last-write-wins by
arrival order; there is no version check.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from .entities import Booking
from .enums import (
    RIDE_STAGE_SEQUENCE,
    TERMINAL_PHASES,
    ActorRole,
    CanonicalPhase,
    PaymentConfirmationStatus as PCS,
    RideStage,
    RideStatus,
)
from .errors import InvalidState, UnknownTransition

REQUEST_SUBMITTED = "request_submitted"
OFFER_SENT = "offer_sent"
OFFER_ACCEPTED = "offer_accepted"
PAYMENT_SENT = "payment_sent"
PAYMENT_CONFIRMED = "payment_confirmed"
RIDE_STAGE_ADVANCE = "ride_stage_advance"
OFFER_DECLINED = "offer_declined"
CANCELLED = "cancelled"
REQUEST_TIMED_OUT = "request_timed_out"

Resolver = Callable[[Booking, Mapping[str, Any], datetime], dict[str, Any]]

_ALL_ROLES = frozenset(ActorRole)
_NON_TERMINAL = frozenset(CanonicalPhase) - TERMINAL_PHASES


@dataclass(frozen=True)
class Transition:
    name: str
    allowed_from: frozenset[CanonicalPhase]
    actors: frozenset[ActorRole]
    resolve: Resolver
    description: str = ""

    def check(self, booking: Booking, actor: ActorRole) -> None:
        """Raise ``InvalidState`` unless *actor* may apply this to *booking* now."""
        phase = booking.phase
        if phase not in self.allowed_from:
            raise InvalidState(self.name, phase.value)
        if actor not in self.actors:
            raise InvalidState(
                self.name, phase.value, f"not permitted for {actor.value}"
            )


# ── Resolvers ─────────────────────────────────────────────────────────


def _request_submitted(booking, extra, now):
    return {
        "status": "pending",
        "ride_status": RideStatus.PENDING_DRIVER.value,
        "payment_confirmation_status": PCS.WAITING_FOR_OFFER.value,
    }


def _offer_sent(booking, extra, now):
    driver_id = extra.get("driver_id") or booking.driver_id
    price = extra.get("price")
    if not driver_id:
        raise InvalidState(OFFER_SENT, booking.phase.value, "driver_id is required")
    try:
        price = round(float(price), 2)
    except (TypeError, ValueError):
        raise InvalidState(OFFER_SENT, booking.phase.value, "price is required")
    if price <= 0:
        raise InvalidState(OFFER_SENT, booking.phase.value, "price must be positive")
    return {
        "driver_id": str(driver_id),
        "final_price": price,
        "status": "offer_sent",
        "ride_status": RideStatus.OFFER_SENT.value,
        "payment_confirmation_status": PCS.OFFER_SENT.value,
        "offer_sent_at": now,
    }


def _offer_accepted(booking, extra, now):
    return {
        "status": "offer_accepted",
        "ride_status": RideStatus.DRIVER_ACCEPTED.value,
        "payment_confirmation_status": PCS.WAITING_FOR_PAYMENT.value,
    }


def _payment_sent(booking, extra, now):
    return {
        "status": "payment_sent",
        "payment_confirmation_status": PCS.PASSENGER_PAID.value,
    }


def _payment_confirmed(booking, extra, now):
    return {
        "status": "all_set",
        "ride_status": RideStatus.ALL_SET.value,
        "payment_confirmation_status": PCS.ALL_SET.value,
        "payment_confirmed_at": now,
    }


def next_stage(current: Optional[RideStage]) -> RideStage:
    if current is None:
        return RIDE_STAGE_SEQUENCE[0]
    return RIDE_STAGE_SEQUENCE[RIDE_STAGE_SEQUENCE.index(current) + 1]


def _ride_stage_advance(booking, extra, now):
    target = next_stage(booking.stage)
    requested = extra.get("stage")
    if requested and requested != target.value:
        raise InvalidState(
            RIDE_STAGE_ADVANCE,
            booking.phase.value,
            f"next stage is {target.value}, not {requested}",
        )
    fields: dict[str, Any] = {"ride_stage": target.value}
    if booking.stage is None:
        fields["ride_started_at"] = now
        fields["status"] = "in_progress"
    if target is RideStage.COMPLETED:
        fields["status"] = "completed"
        fields["ride_status"] = RideStatus.COMPLETED.value
        fields["ride_completed_at"] = now
    return fields


def _offer_declined(booking, extra, now):
    return {
        "status": "declined",
        "ride_status": RideStatus.PASSENGER_REJECTED.value,
        "payment_confirmation_status": PCS.DECLINED.value,
    }


def _cancelled(booking, extra, now):
    return {
        "status": "cancelled",
        "ride_status": RideStatus.CANCELLED.value,
        "payment_confirmation_status": PCS.CANCELLED.value,
        "cancelled_at": now,
        "cancellation_reason": extra.get("reason"),
    }


def _request_timed_out(booking, extra, now):
    return {
        "status": "expired",
        "ride_status": RideStatus.EXPIRED.value,
        "payment_confirmation_status": PCS.CANCELLED.value,
        "cancelled_at": now,
        "cancellation_reason": "no driver response",
    }


# ── Table ─────────────────────────────────────────────────────────────


TRANSITIONS: dict[str, Transition] = {
    t.name: t
    for t in (
        Transition(
            REQUEST_SUBMITTED,
            frozenset({CanonicalPhase.REQUESTED}),
            frozenset({ActorRole.PASSENGER, ActorRole.DISPATCHER, ActorRole.SYSTEM}),
            _request_submitted,
            "Passenger submits a ride request",
        ),
        Transition(
            OFFER_SENT,
            frozenset({CanonicalPhase.REQUESTED}),
            frozenset({ActorRole.DRIVER, ActorRole.DISPATCHER}),
            _offer_sent,
            "Driver quotes a price",
        ),
        Transition(
            OFFER_ACCEPTED,
            frozenset({CanonicalPhase.OFFER_SENT}),
            frozenset({ActorRole.PASSENGER, ActorRole.DISPATCHER}),
            _offer_accepted,
            "Passenger accepts the quoted price",
        ),
        Transition(
            PAYMENT_SENT,
            frozenset({CanonicalPhase.PAYMENT_PENDING}),
            frozenset({ActorRole.PASSENGER, ActorRole.DISPATCHER}),
            _payment_sent,
            "Passenger reports payment",
        ),
        Transition(
            PAYMENT_CONFIRMED,
            frozenset({CanonicalPhase.PAID_UNCONFIRMED}),
            frozenset({ActorRole.DRIVER, ActorRole.DISPATCHER, ActorRole.SYSTEM}),
            _payment_confirmed,
            "Payment verified; ride is all set",
        ),
        Transition(
            RIDE_STAGE_ADVANCE,
            frozenset({CanonicalPhase.ALL_SET, CanonicalPhase.IN_PROGRESS}),
            frozenset({ActorRole.DRIVER}),
            _ride_stage_advance,
            "Driver moves the ride to its next stage",
        ),
        Transition(
            OFFER_DECLINED,
            frozenset({CanonicalPhase.OFFER_SENT}),
            frozenset({ActorRole.PASSENGER, ActorRole.DISPATCHER}),
            _offer_declined,
            "Passenger declines the quoted price",
        ),
        Transition(
            CANCELLED,
            _NON_TERMINAL,
            _ALL_ROLES,
            _cancelled,
            "Booking cancelled",
        ),
        Transition(
            REQUEST_TIMED_OUT,
            frozenset({CanonicalPhase.REQUESTED}),
            frozenset({ActorRole.SYSTEM}),
            _request_timed_out,
            "No driver responded within the request window",
        ),
    )
}


def get_transition(name: str) -> Transition:
    try:
        return TRANSITIONS[name]
    except KeyError:
        raise UnknownTransition(name) from None
