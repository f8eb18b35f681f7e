"""
Synchronized Booking Store
==========================

In-memory keyed cache of booking state, fed from two directions:

* **Local transitions** -- ``apply_transition`` validates a named
  transition against the cached phase, persists the resulting fields,
  appends a history entry and merges the stored row back into the cache.
* **Change feed** -- per-booking subscriptions (``booking`` and
  ``offers`` concerns) deliver insert / update records written by other
  actors; ``apply_feed_event`` merges them through ``upsert``.

Every write funnels through ``upsert``, which swaps in a fully merged
``Booking`` in one assignment and emits ``PhaseChanged`` whenever the
normalized (phase, stage) differs from the last cached position.  The
comparison is always "new normalized position vs last cached position",
never "event N vs event N+1", so duplicates are harmless.

Concurrency
-----------
Single writer per process (asyncio, no threads).  Concurrent transitions
on one booking resolve last-write-wins by arrival order.  Feed records
older than the cached ``updated_at`` are dropped as stale replays.  Feed
silence or a lost feed (``TransportError``) leaves the last known state
in place.

Following
---------
With ``follow_feed`` on, the store subscribes to a booking (both
concerns) the first time it is loaded or created, and releases those
subscriptions once the booking reaches a terminal phase, so a cache
shared by several processes keeps up with writes made elsewhere.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from collections import defaultdict
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Union

from src.domain.entities import (
    Booking,
    DriverOffer,
    StatusHistoryEntry,
    coerce_record,
    new_booking_id,
    short_code_for,
    utcnow,
    validate_pickup_time,
)
from src.domain.enums import (
    PHASE_LABELS,
    STAGE_LABELS,
    ActorRole,
    CanonicalPhase,
    Concern,
    OfferStatus,
)
from src.domain.errors import InvalidPickupTime, NotFound, TransportError
from src.domain import transitions as tx
from src.infrastructure.change_feed import (
    ChangeEvent,
    ChangeFeed,
    booking_topic,
    offers_topic,
)
from .events import HistoryAppended, PhaseChanged
from .subscriptions import SubscriptionHandle, SubscriptionRegistry

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Awaitable[None]]


class BookingPersistence(Protocol):
    async def read_booking(self, booking_id: str) -> Optional[Booking]: ...

    async def insert_booking(self, booking: Booking) -> Booking: ...

    async def write_booking_fields(self, booking_id: str, fields: dict[str, Any]) -> Booking: ...

    async def append_history(self, entry: StatusHistoryEntry) -> StatusHistoryEntry: ...

    async def read_history(self, booking_id: str) -> list[StatusHistoryEntry]: ...

    async def record_offer(self, offer: DriverOffer) -> DriverOffer: ...

    async def resolve_offers(self, booking_id: str, status: OfferStatus) -> list[DriverOffer]: ...

    async def read_offers(self, booking_id: str) -> list[DriverOffer]: ...


_OFFER_RESOLUTIONS = {
    tx.OFFER_ACCEPTED: OfferStatus.ACCEPTED,
    tx.OFFER_DECLINED: OfferStatus.DECLINED,
    tx.CANCELLED: OfferStatus.WITHDRAWN,
    tx.REQUEST_TIMED_OUT: OfferStatus.WITHDRAWN,
}


class BookingStore:
    def __init__(
        self,
        persistence: BookingPersistence,
        feed: ChangeFeed,
        *,
        discard_stale_feed_events: bool = True,
        min_pickup_lead_minutes: int = 60,
        max_pickup_horizon_days: int = 365,
        follow_feed: bool = False,
        clock: Callable[[], Any] = utcnow,
    ):
        self.persistence = persistence
        self.feed = feed
        self.registry = SubscriptionRegistry()
        self.discard_stale_feed_events = discard_stale_feed_events
        self.min_pickup_lead_minutes = min_pickup_lead_minutes
        self.max_pickup_horizon_days = max_pickup_horizon_days
        self.follow_feed = follow_feed
        self._clock = clock

        self._bookings: dict[str, Booking] = {}
        self._positions: dict[str, tuple] = {}
        self._offers: dict[str, dict[str, DriverOffer]] = {}
        self._listeners: dict[type, list[Listener]] = defaultdict(list)

    # ── Reads (never suspend) ─────────────────────────────────────

    def get(self, booking_id: str) -> Booking:
        try:
            return self._bookings[booking_id]
        except KeyError:
            raise NotFound(booking_id) from None

    def find(self, booking_id: str) -> Optional[Booking]:
        return self._bookings.get(booking_id)

    def __contains__(self, booking_id: str) -> bool:
        return booking_id in self._bookings

    def __len__(self) -> int:
        return len(self._bookings)

    def offers(self, booking_id: str) -> list[DriverOffer]:
        offers = self._offers.get(booking_id, {}).values()
        return sorted(offers, key=lambda o: (o.created_at is None, o.created_at))

    def latest_offer(self, booking_id: str) -> Optional[DriverOffer]:
        offers = self.offers(booking_id)
        return offers[-1] if offers else None

    def has_active_offer(self, booking_id: str) -> bool:
        return any(o.status is OfferStatus.PENDING for o in self.offers(booking_id))

    async def load(self, booking_id: str) -> Booking:
        """Return the cached booking, reading through to persistence on a miss."""
        booking = self._bookings.get(booking_id)
        if booking is None:
            stored = await self.persistence.read_booking(booking_id)
            if stored is None:
                raise NotFound(booking_id)
            booking = await self.upsert(stored)
        await self._follow(booking)
        return booking

    async def load_offers(self, booking_id: str) -> list[DriverOffer]:
        for offer in await self.persistence.read_offers(booking_id):
            self._store_offer(offer)
        return self.offers(booking_id)

    # ── Listeners ─────────────────────────────────────────────────

    def add_listener(self, event_type: type, callback: Listener) -> None:
        self._listeners[event_type].append(callback)

    async def _emit(self, event: Any) -> None:
        for callback in list(self._listeners[type(event)]):
            try:
                await callback(event)
            except Exception:
                logger.exception(
                    "Listener %r failed on %s", callback, type(event).__name__
                )

    # ── Merge ─────────────────────────────────────────────────────

    async def upsert(
        self, record: Union[Booking, Mapping[str, Any]], *, from_feed: bool = False
    ) -> Optional[Booking]:
        """Merge a full or partial record; emit ``PhaseChanged`` on movement."""
        if isinstance(record, Booking):
            record = record.to_record()
        record = coerce_record(dict(record))
        booking_id = record.get("id")
        if not booking_id:
            logger.warning("Ignoring booking record without an id")
            return None

        cached = self._bookings.get(booking_id)
        if cached is None:
            try:
                booking = Booking.from_record(record)
            except TypeError:
                logger.warning("Ignoring partial record for uncached booking %s", booking_id)
                return None
        else:
            if from_feed and self._is_stale(cached, record):
                logger.debug("Dropping stale feed record for %s", booking_id)
                return cached
            booking = self._guard_invariants(cached, cached.merged(record))

        self._bookings[booking_id] = booking
        position = (booking.phase, booking.stage)
        previous = self._positions.get(booking_id)
        self._positions[booking_id] = position

        if previous != position:
            logger.info(
                "Booking %s phase %s -> %s",
                booking_id,
                previous[0].value if previous else None,
                booking.phase.value,
            )
            await self._emit(
                PhaseChanged(
                    booking=booking,
                    previous_phase=previous[0] if previous else None,
                    previous_stage=previous[1] if previous else None,
                )
            )
        if booking.is_terminal and self.registry.follows(booking_id):
            await self.unsubscribe(booking_id)
        return booking

    def _is_stale(self, cached: Booking, record: Mapping[str, Any]) -> bool:
        if not self.discard_stale_feed_events:
            return False
        incoming = record.get("updated_at")
        return (
            incoming is not None
            and cached.updated_at is not None
            and incoming < cached.updated_at
        )

    def _guard_invariants(self, cached: Booking, merged: Booking) -> Booking:
        if (
            cached.driver_id
            and not merged.driver_id
            and merged.phase is not CanonicalPhase.CANCELLED
        ):
            logger.warning("Refusing to clear driver on booking %s", cached.id)
            merged = dataclasses.replace(merged, driver_id=cached.driver_id)
        if cached.price_locked and merged.final_price != cached.final_price:
            logger.warning(
                "Price on booking %s is locked at %s; ignoring %s",
                cached.id,
                cached.final_price,
                merged.final_price,
            )
            merged = dataclasses.replace(merged, final_price=cached.final_price)
        return merged

    def _store_offer(self, offer: DriverOffer) -> None:
        self._offers.setdefault(offer.booking_id, {})[offer.id] = offer

    # ── Transitions ───────────────────────────────────────────────

    async def create_booking(
        self, draft: Booking, actor: ActorRole = ActorRole.PASSENGER
    ) -> Booking:
        """Persist a new booking and submit it as a ride request."""
        now = self._clock()
        if draft.pickup_time is None:
            raise InvalidPickupTime("pickup_time is required")
        validate_pickup_time(
            draft.pickup_time,
            now,
            self.min_pickup_lead_minutes,
            self.max_pickup_horizon_days,
        )
        booking_id = draft.id or new_booking_id()
        booking = dataclasses.replace(
            draft,
            id=booking_id,
            short_code=draft.short_code or short_code_for(booking_id),
            driver_id=None,
            final_price=None,
            status=None,
            ride_status=None,
            payment_confirmation_status=None,
            ride_stage=None,
            created_at=now,
            updated_at=now,
        )
        stored = await self.persistence.insert_booking(booking)
        await self.upsert(stored)
        await self.apply_transition(stored.id, tx.REQUEST_SUBMITTED, actor=actor)
        booking = self.get(stored.id)
        await self._follow(booking)
        return booking

    async def apply_transition(
        self,
        booking_id: str,
        name: str,
        extra: Optional[Mapping[str, Any]] = None,
        actor: ActorRole = ActorRole.SYSTEM,
    ) -> dict[str, Any]:
        """Validate, persist and cache a named transition; return the written fields."""
        transition = tx.get_transition(name)
        booking = await self.load(booking_id)
        transition.check(booking, actor)

        now = self._clock()
        fields = transition.resolve(booking, extra or {}, now)
        fields["updated_at"] = now
        outcome = booking.merged(fields)

        stored = await self.persistence.write_booking_fields(booking_id, fields)
        entry = await self.persistence.append_history(
            StatusHistoryEntry(
                booking_id=booking_id,
                status=outcome.phase.value,
                actor_role=actor,
                created_at=now,
                metadata=_history_metadata(name, booking, outcome, extra or {}),
            )
        )
        await self._sync_offers(name, outcome, now)

        await self._emit(HistoryAppended(entry))
        await self.upsert(stored)
        logger.info(
            "Applied %s to %s as %s (%s -> %s)",
            name,
            booking_id,
            actor.value,
            booking.phase.value,
            outcome.phase.value,
        )
        return fields

    async def _sync_offers(self, name: str, outcome: Booking, now) -> None:
        if name == tx.OFFER_SENT:
            offer = await self.persistence.record_offer(
                DriverOffer(
                    id=str(uuid.uuid4()),
                    booking_id=outcome.id,
                    driver_id=outcome.driver_id,
                    offer_price=outcome.final_price,
                    created_at=now,
                )
            )
            self._store_offer(offer)
        elif name in _OFFER_RESOLUTIONS:
            for offer in await self.persistence.resolve_offers(
                outcome.id, _OFFER_RESOLUTIONS[name]
            ):
                self._store_offer(offer)

    # ── Subscriptions ─────────────────────────────────────────────

    async def subscribe_to_booking(self, booking_id: str) -> SubscriptionHandle:
        return await self._subscribe(booking_id, Concern.BOOKING, booking_topic(booking_id))

    async def subscribe_to_offers(self, booking_id: str) -> SubscriptionHandle:
        return await self._subscribe(booking_id, Concern.OFFERS, offers_topic(booking_id))

    async def _subscribe(self, booking_id: str, concern: Concern, topic: str) -> SubscriptionHandle:
        subscription = await self.feed.subscribe(topic)
        handle = SubscriptionHandle(booking_id, concern, subscription)
        previous = self.registry.register(handle)
        handle.task = asyncio.create_task(
            self._consume(handle), name=f"feed:{concern.value}:{booking_id}"
        )
        if previous is not None:
            await previous.close()
        logger.info("Subscribed to %s for booking %s", concern.value, booking_id)
        return handle

    async def _follow(self, booking: Booking) -> None:
        if not self.follow_feed or booking.is_terminal or self.registry.follows(booking.id):
            return
        await self.subscribe_to_booking(booking.id)
        await self.subscribe_to_offers(booking.id)

    async def unsubscribe(self, booking_id: str) -> None:
        for handle in self.registry.remove_booking(booking_id):
            await handle.close()
            logger.info("Unsubscribed %s for booking %s", handle.concern.value, booking_id)

    async def teardown_all(self) -> None:
        handles = self.registry.drain()
        for handle in handles:
            await handle.close()
        if handles:
            logger.info("Tore down %d subscriptions", len(handles))

    async def _consume(self, handle: SubscriptionHandle) -> None:
        try:
            async for event in handle.subscription:
                try:
                    await self.apply_feed_event(handle, event)
                except Exception:
                    logger.exception("Failed to apply feed event for %s", handle.booking_id)
        except TransportError:
            logger.warning(
                "Feed %s/%s lost; keeping last known state",
                handle.booking_id,
                handle.concern.value,
                exc_info=True,
            )

    async def apply_feed_event(self, handle: SubscriptionHandle, event: ChangeEvent) -> bool:
        """Apply *event* if *handle* is still the registered channel for its key."""
        if not self.registry.is_current(handle):
            logger.debug("Late event on closed channel %s/%s", *handle.key)
            return False

        if handle.concern is Concern.OFFERS:
            offer = DriverOffer.from_record(event.record)
            if offer.booking_id != handle.booking_id:
                return False
            self._store_offer(offer)
            return True

        if str(event.record.get("id")) != handle.booking_id:
            return False
        await self.upsert(event.record, from_feed=True)
        return True


def _history_metadata(
    name: str, before: Booking, after: Booking, extra: Mapping[str, Any]
) -> dict[str, Any]:
    stage = after.stage
    metadata = {
        "message": STAGE_LABELS[stage] if stage else PHASE_LABELS[after.phase],
        "transition": name,
        "previous_phase": before.phase.value,
        "price": after.final_price,
        "ride_stage": after.ride_stage,
        "ride_status": after.ride_status,
        "payment_confirmation_status": after.payment_confirmation_status,
        "reason": extra.get("reason"),
    }
    return {k: v for k, v in metadata.items() if v is not None}
