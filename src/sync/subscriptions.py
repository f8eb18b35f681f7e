"""
Subscription registry.

Keyed resource registry for change-feed subscriptions: one entry per
``(booking_id, concern)``.  Registering a key that is already held
returns the previous handle so the caller can close it; entries are
replaced, never stacked.

A handle stays "current" only while the registry holds that exact
object for its key.  Consumers check :meth:`SubscriptionRegistry.is_current`
before applying an event, which is what keeps late events from a
torn-down channel out of the cache.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from src.domain.enums import Concern
from src.infrastructure.change_feed import FeedSubscription

logger = logging.getLogger(__name__)

SubscriptionKey = tuple[str, Concern]


@dataclass(eq=False)
class SubscriptionHandle:
    booking_id: str
    concern: Concern
    subscription: FeedSubscription
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def key(self) -> SubscriptionKey:
        return (self.booking_id, self.concern)

    async def close(self) -> None:
        task = self.task
        # Closed from inside its own consumer: let the loop run out instead.
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.subscription.close()


class SubscriptionRegistry:
    def __init__(self) -> None:
        self._handles: dict[SubscriptionKey, SubscriptionHandle] = {}

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, key: SubscriptionKey) -> bool:
        return key in self._handles

    def keys(self) -> list[SubscriptionKey]:
        return list(self._handles)

    def get(self, booking_id: str, concern: Concern) -> Optional[SubscriptionHandle]:
        return self._handles.get((booking_id, concern))

    def register(self, handle: SubscriptionHandle) -> Optional[SubscriptionHandle]:
        """Install *handle*; return the handle it replaced, if any."""
        previous = self._handles.get(handle.key)
        self._handles[handle.key] = handle
        if previous is not None:
            logger.debug("Replacing subscription %s/%s", *handle.key)
        return previous

    def remove(self, booking_id: str, concern: Concern) -> Optional[SubscriptionHandle]:
        return self._handles.pop((booking_id, concern), None)

    def remove_booking(self, booking_id: str) -> list[SubscriptionHandle]:
        removed = []
        for concern in Concern:
            handle = self.remove(booking_id, concern)
            if handle is not None:
                removed.append(handle)
        return removed

    def drain(self) -> list[SubscriptionHandle]:
        handles = list(self._handles.values())
        self._handles.clear()
        return handles

    def follows(self, booking_id: str) -> bool:
        return any((booking_id, concern) in self._handles for concern in Concern)

    def is_current(self, handle: SubscriptionHandle) -> bool:
        return self._handles.get(handle.key) is handle
