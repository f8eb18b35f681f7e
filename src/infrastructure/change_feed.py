"""
Change feed.

At-least-once stream of insert / update notifications for persisted
records, one topic per booking and concern:

* ``booking:{id}`` -- booking rows
* ``offers:{id}``  -- driver offers for that booking

Two backends share the same shape:

* ``RedisChangeFeed`` -- Redis pub/sub, for multi-process deployments.
* ``LocalChangeFeed`` -- in-process asyncio queues, for a single API
  process and for tests.

Delivery is ordered within one subscription; nothing is guaranteed
across subscriptions.  Retry / reconnect belongs to the transport, the
consumer only sees ``TransportError`` when the connection is lost.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, AsyncIterator, Literal, Protocol

import redis.asyncio as aioredis
from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError

from src.domain.errors import TransportError

logger = logging.getLogger(__name__)


def booking_topic(booking_id: str) -> str:
    return f"booking:{booking_id}"


def offers_topic(booking_id: str) -> str:
    return f"offers:{booking_id}"


class ChangeEvent(BaseModel):
    event_type: Literal["insert", "update"]
    topic: str
    record: dict[str, Any]


class FeedSubscription(Protocol):
    def __aiter__(self) -> AsyncIterator[ChangeEvent]: ...

    async def close(self) -> None: ...


class ChangeFeed(Protocol):
    async def subscribe(self, topic: str) -> FeedSubscription: ...

    async def publish(self, topic: str, event: ChangeEvent) -> None: ...


# ── Redis backend ─────────────────────────────────────────────────────


class RedisFeedSubscription:
    def __init__(self, pubsub, channel: str):
        self._pubsub = pubsub
        self._channel = channel
        self._closed = False

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeEvent]:
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield ChangeEvent.model_validate_json(message["data"])
                except ValidationError:
                    logger.warning("Dropping malformed event on %s", self._channel)
        except RedisError as exc:
            raise TransportError(f"Feed {self._channel} lost: {exc}") from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
        except RedisError:
            logger.warning("Error closing feed %s", self._channel, exc_info=True)


class RedisChangeFeed:
    def __init__(self, client: aioredis.Redis, prefix: str = "ridebooking"):
        self.redis = client
        self.prefix = prefix

    def channel(self, topic: str) -> str:
        return f"{self.prefix}:{topic}"

    async def subscribe(self, topic: str) -> RedisFeedSubscription:
        channel = self.channel(topic)
        pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.subscribe(channel)
        except RedisError as exc:
            raise TransportError(f"Could not subscribe to {channel}: {exc}") from exc
        return RedisFeedSubscription(pubsub, channel)

    async def publish(self, topic: str, event: ChangeEvent) -> None:
        try:
            await self.redis.publish(self.channel(topic), event.model_dump_json())
        except RedisError as exc:
            raise TransportError(f"Could not publish to {topic}: {exc}") from exc


# ── In-process backend ────────────────────────────────────────────────


_CLOSED = object()


class LocalFeedSubscription:
    def __init__(self, feed: "LocalChangeFeed", topic: str):
        self._feed = feed
        self._topic = topic
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def deliver(self, event: ChangeEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._feed._detach(self._topic, self)
        self._queue.put_nowait(_CLOSED)


class LocalChangeFeed:
    def __init__(self) -> None:
        self._subscribers: dict[str, set[LocalFeedSubscription]] = defaultdict(set)

    async def subscribe(self, topic: str) -> LocalFeedSubscription:
        subscription = LocalFeedSubscription(self, topic)
        self._subscribers[topic].add(subscription)
        return subscription

    async def publish(self, topic: str, event: ChangeEvent) -> None:
        for subscription in list(self._subscribers.get(topic, ())):
            subscription.deliver(event)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def _detach(self, topic: str, subscription: LocalFeedSubscription) -> None:
        subscribers = self._subscribers.get(topic)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[topic]
