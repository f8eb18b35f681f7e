"""
Timeline projector.

Turns the raw, append-only status history of a booking into a
display-ready timeline.

Algorithm
---------
1. Map each raw entry's status string onto a canonical phase (absorbing
   legacy synonyms); ``in_progress`` entries are further keyed by ride
   sub-stage.
2. Within each group keep only the entry with the latest timestamp
   (retries and duplicate events collapse).
3. Sort groups by timestamp, ascending for a full audit view or
   descending for "most recent first".

The audit log itself is never modified; deduplication is a read-time
view.  Complexity: O(n log n) in the number of raw entries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional

from .entities import StatusHistoryEntry
from .enums import PHASE_LABELS, STAGE_LABELS, ActorRole, CanonicalPhase, RideStage
from .normalizer import phase_for_status

logger = logging.getLogger(__name__)

ASCENDING = "asc"
DESCENDING = "desc"


@dataclass(frozen=True)
class TimelineEntry:
    phase: CanonicalPhase
    actor_role: ActorRole
    timestamp: datetime
    stage: Optional[RideStage] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        if self.stage is not None:
            return STAGE_LABELS[self.stage]
        return PHASE_LABELS[self.phase]


def _stage_for(entry: StatusHistoryEntry, phase: CanonicalPhase) -> Optional[RideStage]:
    if phase is not CanonicalPhase.IN_PROGRESS:
        return None
    for candidate in (entry.metadata.get("ride_stage"), entry.status):
        try:
            return RideStage(candidate)
        except ValueError:
            continue
    return None


def project_entries(
    entries: Iterable[StatusHistoryEntry], order: str = ASCENDING
) -> list[TimelineEntry]:
    """Deduplicate *entries* by phase (latest timestamp wins) and sort them."""
    if order not in (ASCENDING, DESCENDING):
        raise ValueError(f"order must be '{ASCENDING}' or '{DESCENDING}'")

    latest: dict[tuple[CanonicalPhase, Optional[RideStage]], StatusHistoryEntry] = {}
    for entry in entries:
        phase = phase_for_status(entry.status)
        key = (phase, _stage_for(entry, phase))
        kept = latest.get(key)
        if kept is None or entry.created_at >= kept.created_at:
            latest[key] = entry

    projected = [
        TimelineEntry(
            phase=phase,
            stage=stage,
            actor_role=entry.actor_role,
            timestamp=entry.created_at,
            metadata=dict(entry.metadata),
        )
        for (phase, stage), entry in latest.items()
    ]
    projected.sort(key=lambda e: e.timestamp, reverse=(order == DESCENDING))
    return projected


HistoryReader = Callable[[str], Awaitable[list[StatusHistoryEntry]]]


class TimelineProjector:
    """Caches projected timelines per booking; invalidated on new history."""

    def __init__(self, read_history: HistoryReader):
        self._read_history = read_history
        self._cache: dict[str, list[TimelineEntry]] = {}

    async def project(self, booking_id: str, order: str = ASCENDING) -> list[TimelineEntry]:
        timeline = self._cache.get(booking_id)
        if timeline is None:
            entries = await self._read_history(booking_id)
            timeline = project_entries(entries, ASCENDING)
            self._cache[booking_id] = timeline
        if order == DESCENDING:
            return list(reversed(timeline))
        if order != ASCENDING:
            raise ValueError(f"order must be '{ASCENDING}' or '{DESCENDING}'")
        return list(timeline)

    async def on_phase_changed(self, event) -> None:
        self.invalidate(event.booking.id)

    async def on_history_appended(self, event) -> None:
        self.invalidate(event.entry.booking_id)

    def invalidate(self, booking_id: str) -> None:
        if self._cache.pop(booking_id, None) is not None:
            logger.debug("Timeline for %s invalidated", booking_id)
