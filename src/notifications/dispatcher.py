"""
Notification Dispatcher
=======================

Listens for ``PhaseChanged`` on the booking store and fans the lifecycle
message for the new phase out to the booking's parties.

Routing
-------
=================  ==========================================
Phase              Recipients
=================  ==========================================
offer_sent         passenger
payment_pending    passenger
all_set            passenger, driver (when attached)
cancelled          passenger, driver (when assigned)
declined           driver (when assigned)
completed          passenger
=================  ==========================================

Every lifecycle message is a ``booking_updates`` message; a recipient
with that category switched off gets nothing.  Otherwise the message goes
out once per enabled channel.  There is no retry: in-app failures are
logged at warning, other channel failures at error, and nothing is
raised back into the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from src.domain.entities import Booking, Party
from src.domain.enums import ActorRole, CanonicalPhase, Channel
from src.sync.events import PhaseChanged
from .preferences import PreferenceService
from .transports import Message, NotificationTransport

logger = logging.getLogger(__name__)

_P = ActorRole.PASSENGER
_D = ActorRole.DRIVER

_ROUTES: dict[CanonicalPhase, tuple[tuple[ActorRole, str, str], ...]] = {
    CanonicalPhase.OFFER_SENT: (
        (_P, "Your ride offer is ready",
         "Booking {code}: a driver offered {price}. Review and accept it to continue."),
    ),
    CanonicalPhase.PAYMENT_PENDING: (
        (_P, "Payment required",
         "Booking {code}: complete payment of {price} to confirm your ride."),
    ),
    CanonicalPhase.ALL_SET: (
        (_P, "Ride confirmed",
         "Booking {code}: your ride is confirmed and a driver is assigned."),
        (_D, "New ride assignment",
         "Booking {code}: pickup at {pickup} on {pickup_time}."),
    ),
    CanonicalPhase.CANCELLED: (
        (_P, "Ride cancelled", "Booking {code} has been cancelled."),
        (_D, "Ride cancelled", "Booking {code} has been cancelled."),
    ),
    CanonicalPhase.DECLINED: (
        (_D, "Offer declined", "The passenger declined your offer for booking {code}."),
    ),
    CanonicalPhase.COMPLETED: (
        (_P, "Ride completed", "Booking {code}: thanks for riding with us."),
    ),
}


@dataclass(frozen=True)
class DeliveryResult:
    recipient: Party
    channel: Channel
    delivered: bool
    error: Optional[str] = None


def _format(template: str, booking: Booking) -> str:
    price = booking.final_price if booking.final_price is not None else booking.estimated_price
    return template.format(
        code=booking.short_code or booking.id,
        price=f"{booking.currency} {price:.2f}" if price is not None else "n/a",
        pickup=booking.pickup_location or "the pickup point",
        pickup_time=(
            booking.pickup_time.strftime("%Y-%m-%d %H:%M UTC")
            if booking.pickup_time
            else "the scheduled time"
        ),
    )


def messages_for(booking: Booking) -> list[tuple[Party, Message]]:
    """Recipients and messages for the booking's current phase."""
    out = []
    for role, title, body in _ROUTES.get(booking.phase, ()):
        party = booking.party(role)
        if party is None:
            continue
        out.append(
            (
                party,
                Message(
                    booking_id=booking.id,
                    phase=booking.phase,
                    title=title,
                    body=_format(body, booking),
                ),
            )
        )
    return out


class NotificationDispatcher:
    def __init__(self, preferences: PreferenceService, transport: NotificationTransport):
        self.preferences = preferences
        self.transport = transport

    async def on_phase_changed(self, event: PhaseChanged) -> list[DeliveryResult]:
        # Skip first sightings and stage-only moves.
        if event.first_sighting or not event.phase_moved:
            return []
        results: list[DeliveryResult] = []
        for party, message in messages_for(event.booking):
            results.extend(await self.deliver(party, message))
        return results

    async def deliver(self, party: Party, message: Message) -> list[DeliveryResult]:
        pref = await self.preferences.get(party.user_id, party.role)
        if not pref.wants(message.category):
            logger.debug(
                "%s/%s muted %s", party.user_id, party.role.value, message.category.value
            )
            return []

        results = []
        for channel in Channel:
            if not pref.allows(channel):
                continue
            try:
                delivered = await self.transport.send(party.user_id, channel, message)
            except Exception as exc:
                log = logger.warning if channel is Channel.IN_APP else logger.error
                log(
                    "%s delivery of %s to %s failed: %s",
                    channel.value,
                    message.phase.value,
                    party.user_id,
                    exc,
                )
                results.append(DeliveryResult(party, channel, False, str(exc)))
                continue
            results.append(DeliveryResult(party, channel, bool(delivered)))
        return results
