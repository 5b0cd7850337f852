"""Database module."""

from .models import (
    PreferencesModel,
    PreferencesUpdate,
    ReadingPosition,
    SelectedLibrary,
    SelectedLibraryRead,
)
from .session import create_db_and_tables, get_session

__all__ = [
    "PreferencesModel",
    "PreferencesUpdate",
    "ReadingPosition",
    "SelectedLibrary",
    "SelectedLibraryRead",
    "create_db_and_tables",
    "get_session",
]
