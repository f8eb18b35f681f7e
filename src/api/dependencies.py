"""FastAPI dependency injection helpers."""

from fastapi import Request

from src.domain.timeline import TimelineProjector
from src.notifications.preferences import PreferenceService
from src.runtime import Runtime
from src.sync.store import BookingStore


def get_runtime(request: Request) -> Runtime:
    """The runtime built at startup (or injected by ``create_app``)."""
    return request.app.state.runtime


def get_store(request: Request) -> BookingStore:
    return get_runtime(request).store


def get_projector(request: Request) -> TimelineProjector:
    return get_runtime(request).projector


def get_preferences(request: Request) -> PreferenceService:
    return get_runtime(request).preferences
