"""API routes module."""

from . import connection, ebooks, health, library, player, settings

__all__ = ["connection", "ebooks", "health", "library", "player", "settings"]
