"""
Subscription lifecycle tests: one registration per key, replacement on
re-subscribe, late events from torn-down channels, feed loss.
"""

from __future__ import annotations

import asyncio

import pytest

from src.domain.enums import ActorRole, CanonicalPhase, Concern, OfferStatus
from src.domain.errors import InvalidState, TransportError
from src.domain import transitions as tx
from src.infrastructure.change_feed import ChangeEvent, booking_topic, offers_topic
from src.sync.store import BookingStore
from src.sync.subscriptions import SubscriptionHandle, SubscriptionRegistry
from tests.conftest import DRIVER_ID, PASSENGER_ID, make_draft, walk_to


async def _settle():
    for _ in range(10):
        await asyncio.sleep(0)


def _update(booking_id: str, **fields) -> ChangeEvent:
    return ChangeEvent(
        event_type="update",
        topic=booking_topic(booking_id),
        record={"id": booking_id, **fields},
    )


class _NullSubscription:
    def __init__(self):
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        return
        yield

    async def close(self):
        self.closed = True


class TestRegistry:
    def test_register_replaces_and_returns_previous(self):
        registry = SubscriptionRegistry()
        first = SubscriptionHandle("b-1", Concern.BOOKING, _NullSubscription())
        second = SubscriptionHandle("b-1", Concern.BOOKING, _NullSubscription())
        assert registry.register(first) is None
        assert registry.register(second) is first
        assert len(registry) == 1
        assert registry.is_current(second)
        assert not registry.is_current(first)

    def test_remove_booking_drops_every_concern(self):
        registry = SubscriptionRegistry()
        registry.register(SubscriptionHandle("b-1", Concern.BOOKING, _NullSubscription()))
        registry.register(SubscriptionHandle("b-1", Concern.OFFERS, _NullSubscription()))
        registry.register(SubscriptionHandle("b-2", Concern.BOOKING, _NullSubscription()))
        assert len(registry.remove_booking("b-1")) == 2
        assert registry.keys() == [("b-2", Concern.BOOKING)]


class TestStoreSubscriptions:
    @pytest.mark.asyncio
    async def test_subscribe_twice_keeps_one_registration(self, store, feed):
        first = await store.subscribe_to_booking("b-1")
        second = await store.subscribe_to_booking("b-1")
        assert len(store.registry) == 1
        assert store.registry.get("b-1", Concern.BOOKING) is second
        assert first.task.done()
        assert feed.subscriber_count(booking_topic("b-1")) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_releases_everything(self, store, feed):
        await store.subscribe_to_booking("b-1")
        await store.subscribe_to_offers("b-1")
        assert len(store.registry) == 2

        await store.unsubscribe("b-1")
        assert len(store.registry) == 0
        assert feed.subscriber_count(booking_topic("b-1")) == 0
        assert feed.subscriber_count(offers_topic("b-1")) == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_and_teardown_are_noops_when_idle(self, store):
        await store.unsubscribe("b-1")
        await store.teardown_all()
        assert len(store.registry) == 0

    @pytest.mark.asyncio
    async def test_teardown_all(self, store):
        for booking_id in ("b-1", "b-2", "b-3"):
            await store.subscribe_to_booking(booking_id)
        await store.teardown_all()
        assert len(store.registry) == 0

    @pytest.mark.asyncio
    async def test_feed_update_reaches_cache(self, store, feed):
        await store.upsert({"id": "b-1", "passenger_id": PASSENGER_ID})
        await store.subscribe_to_booking("b-1")
        await feed.publish(
            booking_topic("b-1"),
            _update("b-1", payment_confirmation_status="offer_sent", driver_id=DRIVER_ID),
        )
        await _settle()
        assert store.get("b-1").phase is CanonicalPhase.OFFER_SENT

    @pytest.mark.asyncio
    async def test_record_for_another_booking_is_ignored(self, store):
        await store.upsert({"id": "b-1", "passenger_id": PASSENGER_ID})
        handle = await store.subscribe_to_booking("b-1")
        applied = await store.apply_feed_event(
            handle, _update("b-2", passenger_id=PASSENGER_ID, payment_confirmation_status="all_set")
        )
        assert applied is False
        assert store.find("b-2") is None

    @pytest.mark.asyncio
    async def test_late_event_on_replaced_channel_is_dropped(self, store):
        await store.upsert({"id": "b-1", "passenger_id": PASSENGER_ID})
        stale = await store.subscribe_to_booking("b-1")
        await store.subscribe_to_booking("b-1")

        applied = await store.apply_feed_event(
            stale, _update("b-1", payment_confirmation_status="cancelled")
        )
        assert applied is False
        assert store.get("b-1").phase is CanonicalPhase.REQUESTED

    @pytest.mark.asyncio
    async def test_late_event_after_unsubscribe_is_dropped(self, store):
        await store.upsert({"id": "b-1", "passenger_id": PASSENGER_ID})
        handle = await store.subscribe_to_booking("b-1")
        await store.unsubscribe("b-1")

        applied = await store.apply_feed_event(
            handle, _update("b-1", payment_confirmation_status="cancelled")
        )
        assert applied is False
        assert store.get("b-1").phase is CanonicalPhase.REQUESTED

    @pytest.mark.asyncio
    async def test_offer_feed_updates_offer_cache(self, store, feed):
        await store.subscribe_to_offers("b-1")
        await feed.publish(
            offers_topic("b-1"),
            ChangeEvent(
                event_type="insert",
                topic=offers_topic("b-1"),
                record={
                    "id": "o-1",
                    "booking_id": "b-1",
                    "driver_id": DRIVER_ID,
                    "offer_price": 75.0,
                    "status": "pending",
                    "created_at": "2026-03-01T08:00:00+00:00",
                },
            ),
        )
        await _settle()
        assert store.has_active_offer("b-1")
        assert store.latest_offer("b-1").status is OfferStatus.PENDING


class _LostSubscription(_NullSubscription):
    async def _iterate(self):
        raise TransportError("connection reset")
        yield


class _LostFeed:
    async def subscribe(self, topic):
        return _LostSubscription()

    async def publish(self, topic, event):
        raise TransportError("connection reset")


class TestFeedLoss:
    @pytest.mark.asyncio
    async def test_lost_feed_keeps_last_known_state(self, persistence, clock):
        store = BookingStore(persistence, _LostFeed(), clock=clock)
        await store.upsert({"id": "b-1", "passenger_id": PASSENGER_ID, "payment_confirmation_status": "offer_sent"})

        handle = await store.subscribe_to_booking("b-1")
        await _settle()

        assert handle.task.done()
        assert handle.task.exception() is None
        assert store.get("b-1").phase is CanonicalPhase.OFFER_SENT
        await store.teardown_all()


class TestFollowing:
    """A following store keeps up with writes made through another store."""

    @pytest.mark.asyncio
    async def test_second_store_tracks_first_store_writes(self, store, persistence, feed, clock):
        other = BookingStore(persistence, feed, follow_feed=True, clock=clock)
        booking = await store.create_booking(make_draft(clock))

        await other.load(booking.id)
        assert set(other.registry.keys()) == {
            (booking.id, Concern.BOOKING),
            (booking.id, Concern.OFFERS),
        }

        await walk_to(store, booking.id, tx.OFFER_SENT)
        await _settle()
        assert other.get(booking.id).phase is CanonicalPhase.OFFER_SENT
        assert other.has_active_offer(booking.id)

        await walk_to(store, booking.id, tx.CANCELLED)
        await _settle()
        assert other.get(booking.id).phase is CanonicalPhase.CANCELLED
        assert len(other.registry) == 0
        assert feed.subscriber_count(booking_topic(booking.id)) == 0

        with pytest.raises(InvalidState):
            await other.apply_transition(
                booking.id, tx.OFFER_SENT,
                extra={"driver_id": DRIVER_ID, "price": 99.0},
                actor=ActorRole.DRIVER,
            )
        assert (await persistence.read_booking(booking.id)).phase is CanonicalPhase.CANCELLED
        await other.teardown_all()

    @pytest.mark.asyncio
    async def test_created_booking_is_followed_once(self, persistence, feed, clock):
        following = BookingStore(persistence, feed, follow_feed=True, clock=clock)
        booking = await following.create_booking(make_draft(clock))
        await following.load(booking.id)

        assert len(following.registry) == 2
        assert feed.subscriber_count(booking_topic(booking.id)) == 1
        await following.teardown_all()

    @pytest.mark.asyncio
    async def test_terminal_booking_is_not_followed(self, store, persistence, feed, clock):
        booking = await store.create_booking(make_draft(clock))
        await walk_to(store, booking.id, tx.CANCELLED)

        following = BookingStore(persistence, feed, follow_feed=True, clock=clock)
        assert (await following.load(booking.id)).phase is CanonicalPhase.CANCELLED
        assert len(following.registry) == 0

    @pytest.mark.asyncio
    async def test_following_is_off_by_default(self, store, clock):
        booking = await store.create_booking(make_draft(clock))
        await store.load(booking.id)
        assert len(store.registry) == 0
