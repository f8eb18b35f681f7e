"""
Booking endpoints
=================

POST /api/v1/bookings                              -- create a booking (submits the ride request)
GET  /api/v1/bookings/{booking_id}                 -- current phase, stage and parties
POST /api/v1/bookings/{booking_id}/transitions/{name} -- apply a named transition
GET  /api/v1/bookings/{booking_id}/timeline        -- deduplicated status timeline
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from src.api.dependencies import get_projector, get_store
from src.api.middleware import limiter
from src.api.schemas import (
    BookingCreateRequest,
    BookingResponse,
    TimelineEntryResponse,
    TransitionRequest,
    TransitionResponse,
)
from src.config import settings
from src.domain.enums import ActorRole
from src.domain.errors import (
    InvalidPickupTime,
    InvalidState,
    NotFound,
    UnknownTransition,
)
from src.domain.timeline import ASCENDING, DESCENDING, TimelineProjector
from src.sync.store import BookingStore

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    summary="Create a booking",
    responses={422: {"description": "Pickup time outside the booking window."}},
)
@limiter.limit(settings.rate_limit)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    store: BookingStore = Depends(get_store),
):
    try:
        booking = await store.create_booking(body.to_draft())
    except InvalidPickupTime as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return BookingResponse.from_booking(booking)


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Get booking phase and details",
)
@limiter.limit(settings.rate_limit)
async def get_booking(
    request: Request,
    booking_id: str,
    viewer: Optional[ActorRole] = Query(
        None, description="Role of the caller; fills in the other party."
    ),
    store: BookingStore = Depends(get_store),
):
    try:
        booking = await store.load(booking_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Booking not found")
    return BookingResponse.from_booking(booking, viewer)


@router.post(
    "/{booking_id}/transitions/{name}",
    response_model=TransitionResponse,
    summary="Apply a named lifecycle transition",
    description=(
        "Validates the transition against the booking's current phase and "
        "the caller's role, then persists it.  Concurrent transitions on "
        "the same booking resolve last-write-wins."
    ),
)
@limiter.limit(settings.rate_limit)
async def apply_transition(
    request: Request,
    booking_id: str,
    name: str,
    body: TransitionRequest,
    store: BookingStore = Depends(get_store),
):
    try:
        fields = await store.apply_transition(
            booking_id, name, extra=body.extra(), actor=body.actor
        )
    except UnknownTransition as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except NotFound:
        raise HTTPException(status_code=404, detail="Booking not found")
    except InvalidState as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return TransitionResponse(
        booking=BookingResponse.from_booking(store.get(booking_id)),
        updated_fields=fields,
    )


@router.get(
    "/{booking_id}/timeline",
    response_model=list[TimelineEntryResponse],
    summary="Deduplicated status timeline",
)
@limiter.limit(settings.rate_limit)
async def get_timeline(
    request: Request,
    booking_id: str,
    order: str = Query(ASCENDING, pattern=f"^({ASCENDING}|{DESCENDING})$"),
    store: BookingStore = Depends(get_store),
    projector: TimelineProjector = Depends(get_projector),
):
    try:
        await store.load(booking_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Booking not found")
    entries = await projector.project(booking_id, order)
    return [TimelineEntryResponse.from_entry(e) for e in entries]
