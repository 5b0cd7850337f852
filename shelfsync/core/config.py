"""Application configuration using Pydantic Settings."""

from functools import lru_cache
import json
from pathlib import Path
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "ShelfSync"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # Control server
    host: str = "127.0.0.1"
    port: int = 8080

    # Audiobookshelf server
    abs_host: str = Field(default="", description="Base URL of the Audiobookshelf server")
    abs_api_key: str = Field(default="", description="Bearer token for the Audiobookshelf API")
    request_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")
    device_name: str = Field(default="ShelfSync", description="Device name reported on session start")
    client_name: str = "ShelfSync"
    client_version: str = "0.1.0"
    supported_mime_types: list[str] = Field(
        default_factory=lambda: ["audio/mpeg", "audio/mp4", "audio/aac", "audio/flac", "audio/ogg"],
    )

    # Local state
    data_dir: Path = Field(default=Path.home() / ".shelfsync", description="Base data directory")
    database_url: str = Field(
        default="",
        description="SQLAlchemy URL for local state (defaults to SQLite under data_dir)",
    )
    database_echo: bool = False

    # Logging
    log_level: str = "INFO"
    log_file: Path | None = Field(default=None, description="Optional file the log is appended to")

    # Playback policy
    session_sync_interval: float = Field(default=20.0, gt=0, description="Session sync cadence in seconds")
    progress_save_interval: float = Field(default=90.0, gt=0, description="Durable progress cadence in seconds")
    resume_cushion_seconds: float = Field(default=5.0, ge=0, description="Rewind applied to the resume position")
    previous_restart_threshold: float = Field(
        default=3.0,
        ge=0,
        description="Seconds into a track after which 'previous' restarts the track",
    )
    position_tick_interval: float = Field(default=1.0, gt=0, description="Position ticker cadence in seconds")
    min_progress_save_interval: float = Field(
        default=5.0,
        ge=0,
        description="Minimum spacing of timer-driven durable saves",
    )
    default_playback_rate: float = Field(default=1.0, ge=0.5, le=3.0)

    # Library browsing
    item_fetch_limit: int = Field(default=10, ge=1, le=200, description="Items fetched per library listing")
    item_sort: str = "addedAt"
    item_sort_desc: bool = True

    # Reader pagination
    page_height: int = Field(default=800, gt=0)
    line_height: int = Field(default=30, gt=0)
    chars_per_line: int = Field(default=70, gt=0)

    # WebSocket
    ws_ping_interval: float = Field(default=30.0, gt=0, description="Idle seconds before the server pings a WebSocket client")
    ws_time_buffer_ms: int = Field(default=250, ge=0, description="Coalescing window for position updates")

    # CORS
    # NOTE: Keep this as a string so pydantic-settings doesn't attempt JSON parsing
    # before our validators run (which breaks on comma-separated values).
    cors_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        description='Allowed CORS origins (comma-separated or JSON array, e.g. \'["https://a","https://b"]\')',
    )

    @computed_field
    @property
    def cors_origins_list(self) -> list[str]:
        raw = (self.cors_origins or "").strip()
        if raw == "":
            return []
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
                if isinstance(parsed, list):
                    return [str(it).strip() for it in parsed if str(it).strip()]
            except json.JSONDecodeError:
                pass
        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    @computed_field
    @property
    def resolved_database_url(self) -> str:
        """Database URL, falling back to a SQLite file under data_dir."""
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{(self.data_dir / 'shelfsync.db').as_posix()}"

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if self.log_file is not None:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
