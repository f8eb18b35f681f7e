"""Per (user, role) notification preferences with lazy defaults."""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Protocol

from src.domain.entities import NotificationPreference
from src.domain.enums import ActorRole, Category, Channel
from src.domain.errors import PreferenceLoadFailure, PreferenceSaveFailure

logger = logging.getLogger(__name__)


class PreferenceStore(Protocol):
    async def read_preferences(
        self, user_id: str, role: ActorRole
    ) -> Optional[NotificationPreference]: ...

    async def write_preferences(self, pref: NotificationPreference) -> None: ...


class PreferenceService:
    def __init__(self, store: PreferenceStore):
        self.store = store

    async def get(self, user_id: str, role: ActorRole) -> NotificationPreference:
        """Stored preferences, creating defaults on first read.

        A read failure yields the conservative fallback set instead of
        raising, so a broken preference table never blocks delivery.
        """
        try:
            pref = await self.store.read_preferences(user_id, role)
        except PreferenceLoadFailure:
            logger.warning(
                "Preferences for %s/%s unavailable; using fallback",
                user_id,
                role.value,
                exc_info=True,
            )
            return NotificationPreference.fallback(user_id, role)

        if pref is None:
            pref = NotificationPreference(user_id=user_id, role=role)
            try:
                await self.store.write_preferences(pref)
            except PreferenceSaveFailure:
                logger.warning(
                    "Could not store default preferences for %s/%s", user_id, role.value
                )
        return pref

    async def update(
        self,
        user_id: str,
        role: ActorRole,
        channels: Optional[Mapping[Channel, bool]] = None,
        categories: Optional[Mapping[Category, bool]] = None,
    ) -> NotificationPreference:
        """Merge the given switches into stored preferences.

        Raises ``PreferenceSaveFailure`` when the write fails; callers may retry.
        """
        pref = await self.get(user_id, role)
        pref.channels.update(channels or {})
        pref.categories.update(categories or {})
        await self.store.write_preferences(pref)
        logger.info("Preferences updated for %s/%s", user_id, role.value)
        return pref
