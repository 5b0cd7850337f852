"""Database models using SQLModel."""

from datetime import datetime

from pydantic import field_validator
from sqlmodel import Field, SQLModel


class ReadingPosition(SQLModel, table=True):
    """Last page shown for an item's ebook."""

    __tablename__ = "reading_positions"

    item_id: str = Field(primary_key=True, max_length=64)
    page_index: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SelectedLibrary(SQLModel, table=True):
    """A library the user chose to browse, in display order."""

    __tablename__ = "selected_libraries"

    id: str = Field(primary_key=True, max_length=64)
    name: str = Field(default="")
    position: int = Field(default=0)


class SelectedLibraryRead(SQLModel):
    id: str
    name: str
    position: int


class PreferencesModel(SQLModel, table=True):
    """Preferences singleton table."""

    __tablename__ = "preferences"

    id: int = Field(default=1, primary_key=True)  # Singleton pattern
    playback_rate: float = Field(default=1.0)
    item_fetch_limit: int = Field(default=10)
    # Never stores the API key; it comes from ABS_API_KEY (or POST /connection, for the process lifetime).
    abs_host: str = Field(default="")
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class PreferencesUpdate(SQLModel):
    """Schema for updating preferences."""

    playback_rate: float | None = None
    item_fetch_limit: int | None = None
    abs_host: str | None = None

    @field_validator("playback_rate")
    @classmethod
    def validate_playback_rate(cls, v: float | None) -> float | None:
        if v is not None and not 0.5 <= v <= 3.0:
            raise ValueError("Playback rate must be between 0.5 and 3.0")
        return v

    @field_validator("item_fetch_limit")
    @classmethod
    def validate_item_fetch_limit(cls, v: int | None) -> int | None:
        if v is not None and not 1 <= v <= 200:
            raise ValueError("Item fetch limit must be between 1-200")
        return v

    @field_validator("abs_host")
    @classmethod
    def validate_abs_host(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip().rstrip("/")
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("Server host must start with http:// or https://")
        return v
