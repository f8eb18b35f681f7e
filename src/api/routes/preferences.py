"""
Notification preference endpoints
=================================

GET /api/v1/preferences/{user_id}/{role} -- current switches (defaults created on first read)
PUT /api/v1/preferences/{user_id}/{role} -- merge channel / category switches
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from src.api.dependencies import get_preferences
from src.api.middleware import limiter
from src.api.schemas import PreferenceResponse, PreferenceUpdateRequest
from src.config import settings
from src.domain.enums import ActorRole
from src.domain.errors import PreferenceSaveFailure
from src.notifications.preferences import PreferenceService

router = APIRouter(prefix="/preferences", tags=["preferences"])


@router.get(
    "/{user_id}/{role}",
    response_model=PreferenceResponse,
    summary="Get notification preferences",
)
@limiter.limit(settings.rate_limit)
async def get_preferences_for(
    request: Request,
    user_id: str,
    role: ActorRole,
    preferences: PreferenceService = Depends(get_preferences),
):
    pref = await preferences.get(user_id, role)
    return PreferenceResponse.from_preference(pref)


@router.put(
    "/{user_id}/{role}",
    response_model=PreferenceResponse,
    summary="Update notification preferences",
    responses={503: {"description": "Preferences could not be saved; retry."}},
)
@limiter.limit(settings.rate_limit)
async def update_preferences(
    request: Request,
    user_id: str,
    role: ActorRole,
    body: PreferenceUpdateRequest,
    preferences: PreferenceService = Depends(get_preferences),
):
    try:
        pref = await preferences.update(
            user_id, role, channels=body.channels, categories=body.categories
        )
    except PreferenceSaveFailure:
        raise HTTPException(
            status_code=503, detail="Preferences could not be saved, please retry"
        )
    return PreferenceResponse.from_preference(pref)
