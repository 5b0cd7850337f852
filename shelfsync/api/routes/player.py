"""Playback control endpoints and the playback event feed."""

import asyncio
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from shelfsync.api.deps import get_abs_client, get_playback_manager, get_ws_manager
from shelfsync.api.routes.settings import load_preferences
from shelfsync.api.schemas import (
    LoadRequest,
    PlayerStateResponse,
    RateRequest,
    SeekRequest,
    SkipRequest,
    SleepRequest,
)
from shelfsync.core.config import Settings, get_settings
from shelfsync.db.session import get_session
from shelfsync.services.abs_client import AudiobookshelfClient
from shelfsync.services.playback_manager import PlaybackManager
from shelfsync.services.websocket_manager import PLAYER_CHANNEL, WebSocketManager

logger = logging.getLogger(__name__)

router = APIRouter()


def _state(manager: PlaybackManager) -> PlayerStateResponse:
    return PlayerStateResponse(**manager.snapshot())


@router.get("", response_model=PlayerStateResponse)
async def get_player_state(
    manager: PlaybackManager = Depends(get_playback_manager),
) -> PlayerStateResponse:
    """Current playback state."""
    return _state(manager)


@router.post("/load", response_model=PlayerStateResponse)
async def load_item(
    request: LoadRequest,
    abs_client: AudiobookshelfClient = Depends(get_abs_client),
    manager: PlaybackManager = Depends(get_playback_manager),
) -> PlayerStateResponse:
    """Make an item current; playback starts only with autoplay."""
    item = await abs_client.fetch_item_details(request.item_id)
    await manager.load_item(item)
    if request.autoplay:
        await manager.play()
    return _state(manager)


@router.post("/play", response_model=PlayerStateResponse)
async def play(manager: PlaybackManager = Depends(get_playback_manager)) -> PlayerStateResponse:
    await manager.play()
    return _state(manager)


@router.post("/pause", response_model=PlayerStateResponse)
async def pause(manager: PlaybackManager = Depends(get_playback_manager)) -> PlayerStateResponse:
    await manager.pause()
    return _state(manager)


@router.post("/toggle", response_model=PlayerStateResponse)
async def toggle(manager: PlaybackManager = Depends(get_playback_manager)) -> PlayerStateResponse:
    await manager.toggle_play_pause()
    return _state(manager)


@router.post("/seek", response_model=PlayerStateResponse)
async def seek(
    request: SeekRequest,
    manager: PlaybackManager = Depends(get_playback_manager),
) -> PlayerStateResponse:
    await manager.seek(request.seconds)
    return _state(manager)


@router.post("/skip", response_model=PlayerStateResponse)
async def skip(
    request: SkipRequest,
    manager: PlaybackManager = Depends(get_playback_manager),
) -> PlayerStateResponse:
    await manager.skip(request.by_seconds)
    return _state(manager)


@router.post("/next-chapter", response_model=PlayerStateResponse)
async def next_chapter(manager: PlaybackManager = Depends(get_playback_manager)) -> PlayerStateResponse:
    await manager.next_chapter()
    return _state(manager)


@router.post("/previous-chapter", response_model=PlayerStateResponse)
async def previous_chapter(manager: PlaybackManager = Depends(get_playback_manager)) -> PlayerStateResponse:
    await manager.previous_chapter()
    return _state(manager)


async def _persist_rate(session: AsyncSession, rate: float) -> None:
    preferences = await load_preferences(session)
    preferences.playback_rate = rate
    preferences.updated_at = datetime.utcnow()
    session.add(preferences)
    await session.commit()


@router.post("/rate", response_model=PlayerStateResponse)
async def set_rate(
    request: RateRequest,
    session: AsyncSession = Depends(get_session),
    manager: PlaybackManager = Depends(get_playback_manager),
) -> PlayerStateResponse:
    """Set the playback rate (clamped to 0.5-3.0) and remember it."""
    rate = await manager.set_rate(request.rate)
    await _persist_rate(session, rate)
    return _state(manager)


@router.post("/rate/toggle", response_model=PlayerStateResponse)
async def toggle_rate(
    session: AsyncSession = Depends(get_session),
    manager: PlaybackManager = Depends(get_playback_manager),
) -> PlayerStateResponse:
    """Cycle through the rate presets and remember the result."""
    rate = await manager.toggle_rate()
    await _persist_rate(session, rate)
    return _state(manager)


@router.post("/sleep", response_model=PlayerStateResponse)
async def set_sleep(
    request: SleepRequest,
    manager: PlaybackManager = Depends(get_playback_manager),
) -> PlayerStateResponse:
    await manager.set_sleep(request.minutes)
    return _state(manager)


@router.delete("/sleep", response_model=PlayerStateResponse)
async def cancel_sleep(manager: PlaybackManager = Depends(get_playback_manager)) -> PlayerStateResponse:
    await manager.cancel_sleep()
    return _state(manager)


@router.post("/stop", response_model=PlayerStateResponse)
async def stop(manager: PlaybackManager = Depends(get_playback_manager)) -> PlayerStateResponse:
    """Stop playback, flush progress and close the session."""
    await manager.stop()
    return _state(manager)


@router.websocket("/ws")
async def player_websocket(
    websocket: WebSocket,
    manager: PlaybackManager = Depends(get_playback_manager),
    ws_manager: WebSocketManager = Depends(get_ws_manager),
    config: Settings = Depends(get_settings),
) -> None:
    """
    WebSocket endpoint for real-time playback events.

    A client silent for ws_ping_interval seconds is sent {"type": "ping"}.
    """
    await ws_manager.connect(websocket, PLAYER_CHANNEL)

    try:
        # Send the full state first so the client can render immediately.
        await websocket.send_json({"type": "state", **manager.snapshot()})

        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=config.ws_ping_interval)
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "ping"})
                continue
            if data == "ping":
                await websocket.send_text("pong")

    except WebSocketDisconnect:
        logger.debug("Player WebSocket disconnected")
    finally:
        ws_manager.disconnect(websocket, PLAYER_CHANNEL)
