"""
Notification tests: routing, preference gating, failure handling,
preference service defaults / fallback and the transports.
"""

from __future__ import annotations

import logging

import pytest

from src.domain.entities import Booking, NotificationPreference
from src.domain.enums import ActorRole, CanonicalPhase, Category, Channel
from src.domain.errors import PreferenceLoadFailure, PreferenceSaveFailure, TransportError
from src.infrastructure.repositories import NotificationRepository
from src.notifications.dispatcher import NotificationDispatcher, messages_for
from src.notifications.preferences import PreferenceService
from src.notifications.transports import ChannelRouter, InAppTransport, LoggingTransport, Message
from src.sync.events import PhaseChanged
from tests.conftest import DRIVER_ID, PASSENGER_ID, RecordingTransport

PCS_FOR = {
    CanonicalPhase.REQUESTED: "waiting_for_offer",
    CanonicalPhase.OFFER_SENT: "offer_sent",
    CanonicalPhase.PAYMENT_PENDING: "waiting_for_payment",
    CanonicalPhase.PAID_UNCONFIRMED: "passenger_paid",
    CanonicalPhase.ALL_SET: "all_set",
    CanonicalPhase.CANCELLED: "cancelled",
    CanonicalPhase.DECLINED: "declined",
}


def _booking(phase: CanonicalPhase, driver_id=DRIVER_ID, **fields) -> Booking:
    return Booking(
        id="b-1",
        passenger_id=PASSENGER_ID,
        driver_id=driver_id,
        short_code="VIP-ABC123",
        final_price=80.0,
        payment_confirmation_status=PCS_FOR[phase],
        **fields,
    )


def _moved(to: CanonicalPhase, previous=CanonicalPhase.REQUESTED, **kw) -> PhaseChanged:
    return PhaseChanged(booking=_booking(to, **kw), previous_phase=previous)


class _MemoryPreferences:
    def __init__(self, prefs=(), fail_read=False, fail_write=False):
        self.prefs = {(p.user_id, p.role): p for p in prefs}
        self.fail_read = fail_read
        self.fail_write = fail_write
        self.writes = 0

    async def read_preferences(self, user_id, role):
        if self.fail_read:
            raise PreferenceLoadFailure("db down")
        return self.prefs.get((user_id, role))

    async def write_preferences(self, pref):
        if self.fail_write:
            raise PreferenceSaveFailure("db down")
        self.writes += 1
        self.prefs[(pref.user_id, pref.role)] = pref


def _dispatcher(transport, *prefs, **kw) -> NotificationDispatcher:
    return NotificationDispatcher(PreferenceService(_MemoryPreferences(prefs, **kw)), transport)


def _pref(user_id, role, channels=None, categories=None) -> NotificationPreference:
    pref = NotificationPreference(user_id=user_id, role=role)
    pref.channels.update(channels or {})
    pref.categories.update(categories or {})
    return pref


IN_APP_ONLY = {Channel.IN_APP: True, Channel.EMAIL: False, Channel.PUSH: False, Channel.SOUND: False}


class TestRouting:
    @pytest.mark.parametrize(
        "phase, recipients",
        [
            (CanonicalPhase.OFFER_SENT, [ActorRole.PASSENGER]),
            (CanonicalPhase.PAYMENT_PENDING, [ActorRole.PASSENGER]),
            (CanonicalPhase.PAID_UNCONFIRMED, []),
            (CanonicalPhase.ALL_SET, [ActorRole.PASSENGER, ActorRole.DRIVER]),
            (CanonicalPhase.CANCELLED, [ActorRole.PASSENGER, ActorRole.DRIVER]),
            (CanonicalPhase.DECLINED, [ActorRole.DRIVER]),
        ],
    )
    def test_recipients_per_phase(self, phase, recipients):
        assert [p.role for p, _ in messages_for(_booking(phase))] == recipients

    def test_driver_skipped_when_not_assigned(self):
        routed = messages_for(_booking(CanonicalPhase.CANCELLED, driver_id=None))
        assert [p.role for p, _ in routed] == [ActorRole.PASSENGER]

    def test_message_mentions_code_and_price(self):
        _, message = messages_for(_booking(CanonicalPhase.OFFER_SENT))[0]
        assert "VIP-ABC123" in message.body
        assert "USD 80.00" in message.body
        assert message.category is Category.BOOKING_UPDATES


class TestGating:
    @pytest.mark.asyncio
    async def test_push_off_in_app_on(self):
        transport = RecordingTransport()
        dispatcher = _dispatcher(
            transport, _pref(PASSENGER_ID, ActorRole.PASSENGER, {Channel.PUSH: False, Channel.IN_APP: True, Channel.EMAIL: False, Channel.SOUND: False})
        )
        results = await dispatcher.on_phase_changed(_moved(CanonicalPhase.OFFER_SENT))
        channels = [c for _, c, _ in transport.sent]
        assert channels.count(Channel.IN_APP) == 1
        assert channels.count(Channel.PUSH) == 0
        assert [r.delivered for r in results] == [True]

    @pytest.mark.asyncio
    async def test_muted_category_gets_nothing(self):
        transport = RecordingTransport()
        dispatcher = _dispatcher(
            transport, _pref(PASSENGER_ID, ActorRole.PASSENGER, categories={Category.BOOKING_UPDATES: False})
        )
        assert await dispatcher.on_phase_changed(_moved(CanonicalPhase.OFFER_SENT)) == []
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_defaults_send_in_app_email_and_sound(self):
        transport = RecordingTransport()
        await _dispatcher(transport).on_phase_changed(_moved(CanonicalPhase.PAYMENT_PENDING))
        assert {c for _, c, _ in transport.sent} == {Channel.IN_APP, Channel.EMAIL, Channel.SOUND}

    @pytest.mark.asyncio
    async def test_first_sighting_and_stage_moves_are_silent(self):
        transport = RecordingTransport()
        dispatcher = _dispatcher(transport)
        await dispatcher.on_phase_changed(_moved(CanonicalPhase.ALL_SET, previous=None))
        await dispatcher.on_phase_changed(_moved(CanonicalPhase.ALL_SET, previous=CanonicalPhase.ALL_SET))
        assert transport.sent == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_in_app_failure_is_swallowed_at_warning(self, caplog):
        transport = RecordingTransport(failing={Channel.IN_APP})
        dispatcher = _dispatcher(transport, _pref(PASSENGER_ID, ActorRole.PASSENGER, IN_APP_ONLY))
        with caplog.at_level(logging.WARNING, logger="src.notifications.dispatcher"):
            results = await dispatcher.on_phase_changed(_moved(CanonicalPhase.OFFER_SENT))
        assert [(r.channel, r.delivered) for r in results] == [(Channel.IN_APP, False)]
        assert [r.levelno for r in caplog.records] == [logging.WARNING]

    @pytest.mark.asyncio
    async def test_external_failure_logged_at_error_others_still_sent(self, caplog):
        transport = RecordingTransport(failing={Channel.EMAIL})
        dispatcher = _dispatcher(transport)
        with caplog.at_level(logging.WARNING, logger="src.notifications.dispatcher"):
            results = await dispatcher.on_phase_changed(_moved(CanonicalPhase.OFFER_SENT))
        delivered = {r.channel: r.delivered for r in results}
        assert delivered == {Channel.IN_APP: True, Channel.EMAIL: False, Channel.SOUND: True}
        assert [r.levelno for r in caplog.records] == [logging.ERROR]


class TestPreferenceService:
    @pytest.mark.asyncio
    async def test_defaults_created_lazily(self):
        store = _MemoryPreferences()
        pref = await PreferenceService(store).get("u-1", ActorRole.PASSENGER)
        assert pref.allows(Channel.IN_APP) and pref.allows(Channel.SOUND)
        assert not pref.allows(Channel.PUSH)
        assert not pref.wants(Category.PROMOTIONS)
        assert store.writes == 1

    @pytest.mark.asyncio
    async def test_load_failure_falls_back(self):
        pref = await PreferenceService(_MemoryPreferences(fail_read=True)).get("u-1", ActorRole.DRIVER)
        assert pref.allows(Channel.IN_APP)
        assert pref.allows(Channel.EMAIL)
        assert not pref.allows(Channel.PUSH)
        assert not pref.allows(Channel.SOUND)

    @pytest.mark.asyncio
    async def test_update_raises_save_failure(self):
        service = PreferenceService(_MemoryPreferences(fail_write=True))
        with pytest.raises(PreferenceSaveFailure):
            await service.update("u-1", ActorRole.PASSENGER, channels={Channel.PUSH: True})

    @pytest.mark.asyncio
    async def test_update_round_trips_through_database(self, persistence):
        service = PreferenceService(persistence)
        await service.update(
            "u-1", ActorRole.DRIVER,
            channels={Channel.PUSH: True},
            categories={Category.PROMOTIONS: True},
        )
        stored = await persistence.read_preferences("u-1", ActorRole.DRIVER)
        assert stored.allows(Channel.PUSH)
        assert stored.wants(Category.PROMOTIONS)
        assert await persistence.read_preferences("u-1", ActorRole.PASSENGER) is None


class TestTransports:
    @pytest.mark.asyncio
    async def test_in_app_writes_inbox(self, session_factory):
        message = Message(booking_id="b-1", phase=CanonicalPhase.OFFER_SENT, title="Offer", body="Ready")
        assert await InAppTransport(session_factory).send(PASSENGER_ID, Channel.IN_APP, message)
        async with session_factory() as session:
            unread = await NotificationRepository(session).unread_for(PASSENGER_ID)
        assert [n.title for n in unread] == ["Offer"]

    @pytest.mark.asyncio
    async def test_router_rejects_unbound_channel(self):
        router = ChannelRouter({Channel.EMAIL: LoggingTransport()})
        message = Message(booking_id="b-1", phase=CanonicalPhase.OFFER_SENT, title="t", body="b")
        assert await router.send("u-1", Channel.EMAIL, message)
        with pytest.raises(TransportError):
            await router.send("u-1", Channel.PUSH, message)
