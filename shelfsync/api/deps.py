"""Dependency providers for the long-lived services stored on app.state."""

from fastapi.requests import HTTPConnection

from shelfsync.services.abs_client import AudiobookshelfClient
from shelfsync.services.cover_cache import CoverCache
from shelfsync.services.playback_manager import PlaybackManager
from shelfsync.services.reader import EbookReader
from shelfsync.services.websocket_manager import WebSocketManager


def get_abs_client(conn: HTTPConnection) -> AudiobookshelfClient:
    return conn.app.state.abs_client


def get_cover_cache(conn: HTTPConnection) -> CoverCache:
    return conn.app.state.cover_cache


def get_playback_manager(conn: HTTPConnection) -> PlaybackManager:
    return conn.app.state.playback_manager


def get_reader(conn: HTTPConnection) -> EbookReader:
    return conn.app.state.reader


def get_ws_manager(conn: HTTPConnection) -> WebSocketManager:
    return conn.app.state.ws_manager
