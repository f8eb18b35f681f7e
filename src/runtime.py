"""
Runtime wiring.

Builds the object graph shared by the API process and the expiry worker:

    SqlPersistence ──publishes──> ChangeFeed ──> BookingStore
                                                   │ PhaseChanged
                                                   ├──> TimelineProjector (invalidate)
                                                   └──> NotificationDispatcher
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings, settings as default_settings
from src.domain.entities import utcnow
from src.domain.enums import Channel
from src.domain.timeline import TimelineProjector
from src.infrastructure.change_feed import ChangeFeed, LocalChangeFeed, RedisChangeFeed
from src.infrastructure.database import async_session_factory
from src.infrastructure.redis_client import get_redis
from src.infrastructure.repositories import SqlPersistence
from src.notifications.dispatcher import NotificationDispatcher
from src.notifications.preferences import PreferenceService
from src.notifications.transports import (
    ChannelRouter,
    InAppTransport,
    LoggingTransport,
    NotificationTransport,
)
from src.sync.events import HistoryAppended, PhaseChanged
from src.sync.store import BookingStore

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    persistence: SqlPersistence
    feed: ChangeFeed
    store: BookingStore
    projector: TimelineProjector
    preferences: PreferenceService
    dispatcher: NotificationDispatcher

    async def close(self) -> None:
        await self.store.teardown_all()


async def build_feed(config: Settings) -> ChangeFeed:
    if config.change_feed_backend == "local":
        return LocalChangeFeed()
    if config.change_feed_backend == "redis":
        return RedisChangeFeed(await get_redis(), prefix=config.change_feed_prefix)
    raise ValueError(f"Unknown change feed backend: {config.change_feed_backend}")


def default_transport(session_factory: async_sessionmaker[AsyncSession]) -> ChannelRouter:
    return ChannelRouter(
        {
            Channel.IN_APP: InAppTransport(session_factory),
            Channel.EMAIL: LoggingTransport("email"),
            Channel.PUSH: LoggingTransport("push"),
            Channel.SOUND: LoggingTransport("sound"),
        }
    )


async def build_runtime(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    feed: Optional[ChangeFeed] = None,
    transport: Optional[NotificationTransport] = None,
    config: Settings = default_settings,
    clock: Callable[[], datetime] = utcnow,
) -> Runtime:
    if session_factory is None:
        session_factory = async_session_factory
    if feed is None:
        feed = await build_feed(config)

    persistence = SqlPersistence(session_factory, feed)
    store = BookingStore(
        persistence,
        feed,
        discard_stale_feed_events=config.discard_stale_feed_events,
        min_pickup_lead_minutes=config.min_pickup_lead_minutes,
        max_pickup_horizon_days=config.max_pickup_horizon_days,
        follow_feed=config.follow_change_feed,
        clock=clock,
    )
    projector = TimelineProjector(persistence.read_history)
    preferences = PreferenceService(persistence)
    dispatcher = NotificationDispatcher(
        preferences, transport or default_transport(session_factory)
    )

    store.add_listener(HistoryAppended, projector.on_history_appended)
    store.add_listener(PhaseChanged, projector.on_phase_changed)
    store.add_listener(PhaseChanged, dispatcher.on_phase_changed)

    logger.info(
        "Runtime ready (change feed: %s, following: %s)",
        type(feed).__name__,
        config.follow_change_feed,
    )
    return Runtime(persistence, feed, store, projector, preferences, dispatcher)
