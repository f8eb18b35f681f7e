"""
Admin / observability endpoints
===============================

GET /api/v1/admin/subscriptions -- live change-feed subscriptions
GET /api/v1/admin/health        -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_store
from src.api.middleware import limiter
from src.api.schemas import HealthResponse, SubscriptionResponse
from src.config import settings
from src.sync.store import BookingStore

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/subscriptions",
    response_model=list[SubscriptionResponse],
    summary="List live change-feed subscriptions",
)
@limiter.limit(settings.rate_limit)
async def get_subscriptions(
    request: Request,
    store: BookingStore = Depends(get_store),
):
    return [
        SubscriptionResponse(booking_id=booking_id, concern=concern.value)
        for booking_id, concern in store.registry.keys()
    ]


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(store: BookingStore = Depends(get_store)):
    return HealthResponse(cached_bookings=len(store), subscriptions=len(store.registry))
