"""Preferences endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shelfsync.api.deps import get_playback_manager
from shelfsync.api.schemas import PreferencesResponse
from shelfsync.db.models import PreferencesModel, PreferencesUpdate
from shelfsync.db.session import get_session
from shelfsync.services.playback_manager import PlaybackManager

router = APIRouter()


async def load_preferences(session: AsyncSession) -> PreferencesModel:
    """Return the preferences row, creating the default one on first use."""
    result = await session.execute(select(PreferencesModel).where(PreferencesModel.id == 1))
    preferences = result.scalar_one_or_none()

    if not preferences:
        preferences = PreferencesModel(id=1)
        session.add(preferences)
        await session.commit()
        await session.refresh(preferences)

    return preferences


def _to_response(preferences: PreferencesModel) -> PreferencesResponse:
    return PreferencesResponse(
        playback_rate=preferences.playback_rate,
        item_fetch_limit=preferences.item_fetch_limit,
        abs_host=preferences.abs_host,
    )


@router.get("", response_model=PreferencesResponse)
async def get_preferences(
    session: AsyncSession = Depends(get_session),
) -> PreferencesResponse:
    """Get current preferences."""
    return _to_response(await load_preferences(session))


@router.patch("", response_model=PreferencesResponse)
async def update_preferences(
    preferences_update: PreferencesUpdate,
    session: AsyncSession = Depends(get_session),
    manager: PlaybackManager = Depends(get_playback_manager),
) -> PreferencesResponse:
    """Update preferences."""
    preferences = await load_preferences(session)

    update_data = preferences_update.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        if value is not None:
            setattr(preferences, field, value)

    preferences.updated_at = datetime.utcnow()
    session.add(preferences)
    await session.commit()
    await session.refresh(preferences)

    if "playback_rate" in update_data and preferences_update.playback_rate is not None:
        # Applied by the next load; the current item keeps its rate.
        manager.preferred_rate = preferences.playback_rate

    return _to_response(preferences)
