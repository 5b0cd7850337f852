"""WebSocket connection manager for playback updates."""

import asyncio
from typing import Any

from fastapi import WebSocket

from shelfsync.core.config import get_settings
from shelfsync.services.playback_manager import PlaybackEvent, PlaybackListener

PLAYER_CHANNEL = "player"


class WebSocketManager:
    """
    Manages WebSocket connections and broadcasts.

    Features:
    - Connection tracking per channel
    - Position updates coalesced to the latest one per channel
    - Broadcast to all subscribers
    """

    def __init__(self) -> None:
        """Initialize WebSocket manager."""
        self.settings = get_settings()
        self._connections: dict[str, set[WebSocket]] = {}
        self._latest: dict[str, dict[str, Any]] = {}
        self._flush_tasks: dict[str, asyncio.Task[None]] = {}
        self._buffer_interval = self.settings.ws_time_buffer_ms / 1000.0

    async def connect(self, websocket: WebSocket, channel: str = PLAYER_CHANNEL) -> None:
        """
        Accept and register a WebSocket connection.

        Args:
            websocket: The WebSocket connection
            channel: Channel the connection listens on
        """
        await websocket.accept()
        self._connections.setdefault(channel, set()).add(websocket)

    def disconnect(self, websocket: WebSocket, channel: str = PLAYER_CHANNEL) -> None:
        conns = self._connections.get(channel)
        if conns is not None:
            conns.discard(websocket)
            if not conns:
                del self._connections[channel]

        # If no listeners remain, drop pending updates for that channel.
        if channel not in self._connections:
            self._latest.pop(channel, None)
            task = self._flush_tasks.pop(channel, None)
            if task is not None:
                task.cancel()

    def is_connected(self, channel: str = PLAYER_CHANNEL) -> bool:
        """Check if a channel has an active connection."""
        return bool(self._connections.get(channel))

    async def send_personal_message(self, message: dict[str, Any], channel: str = PLAYER_CHANNEL) -> bool:
        """
        Send a message to every connection on a channel.

        Returns:
            True if at least one connection received it
        """
        websockets = list(self._connections.get(channel, set()))
        if not websockets:
            return False

        sent_any = False
        to_drop: list[WebSocket] = []
        for ws in websockets:
            try:
                await ws.send_json(message)
                sent_any = True
            except Exception:
                to_drop.append(ws)

        for ws in to_drop:
            self.disconnect(ws, channel)

        return sent_any

    async def broadcast(self, message: dict[str, Any]) -> None:
        for channel in list(self._connections.keys()):
            await self.send_personal_message(message, channel)

    def buffer_message(self, message: dict[str, Any], channel: str = PLAYER_CHANNEL) -> None:
        """
        Queue a message, replacing any not yet flushed.

        Only the newest buffered message survives the window, so a slow client
        receives the current position rather than a backlog.
        """
        if channel not in self._connections:
            return

        self._latest[channel] = message

        if channel not in self._flush_tasks or self._flush_tasks[channel].done():
            self._flush_tasks[channel] = asyncio.create_task(self._flush_buffer(channel))

    async def _flush_buffer(self, channel: str) -> None:
        await asyncio.sleep(self._buffer_interval)

        message = self._latest.pop(channel, None)
        if message is None or channel not in self._connections:
            return
        await self.send_personal_message(message, channel)

    def create_playback_listener(self, channel: str = PLAYER_CHANNEL) -> PlaybackListener:
        """
        Create a playback event listener that forwards events to a channel.

        Position updates are buffered; every other event is sent immediately.
        """
        async def listener(event: PlaybackEvent, payload: dict[str, Any]) -> None:
            message = {"type": event.value, **payload}
            if event == PlaybackEvent.TIME_UPDATED:
                self.buffer_message(message, channel)
            else:
                await self.send_personal_message(message, channel)

        return listener

    async def close(self) -> None:
        """Cancel pending flushes (application shutdown)."""
        for task in self._flush_tasks.values():
            task.cancel()
        self._flush_tasks.clear()
        self._latest.clear()
