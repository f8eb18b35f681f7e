"""Error taxonomy for the booking lifecycle core."""

from __future__ import annotations


class BookingError(Exception):
    """Base class for all lifecycle errors."""


class NotFound(BookingError):
    """Booking id unknown to the store."""

    def __init__(self, booking_id: str):
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


class UnknownTransition(BookingError):
    """Transition name is not registered in the transition table."""

    def __init__(self, name: str):
        super().__init__(f"Unknown transition: {name}")
        self.name = name


class InvalidState(BookingError):
    """Transition is not permitted from the booking's current phase."""

    def __init__(self, transition: str, phase: str, reason: str | None = None):
        message = f"Cannot apply {transition} in phase {phase}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.transition = transition
        self.phase = phase
        self.reason = reason


class InvalidPickupTime(BookingError):
    """Scheduled pickup time is outside the accepted booking window."""


class TransportError(BookingError):
    """Change-feed or connection failure."""


class PreferenceLoadFailure(BookingError):
    """Notification preferences could not be read."""


class PreferenceSaveFailure(BookingError):
    """Notification preferences could not be written; safe to retry."""
