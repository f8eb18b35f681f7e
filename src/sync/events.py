"""Internal events emitted by the synchronized booking store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from src.domain.entities import Booking, StatusHistoryEntry
from src.domain.enums import CanonicalPhase, RideStage


@dataclass(frozen=True)
class PhaseChanged:
    """Cached (phase, stage) of a booking moved.

    ``previous_phase`` is ``None`` the first time the store sees a booking.
    """

    booking: Booking
    previous_phase: Optional[CanonicalPhase]
    previous_stage: Optional[RideStage] = None

    @property
    def phase(self) -> CanonicalPhase:
        return self.booking.phase

    @property
    def stage(self) -> Optional[RideStage]:
        return self.booking.stage

    @property
    def first_sighting(self) -> bool:
        return self.previous_phase is None

    @property
    def phase_moved(self) -> bool:
        return self.previous_phase is not None and self.previous_phase is not self.phase


@dataclass(frozen=True)
class HistoryAppended:
    entry: StatusHistoryEntry
