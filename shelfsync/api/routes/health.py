"""Health check endpoints."""

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from shelfsync.api.deps import get_abs_client, get_playback_manager
from shelfsync.core.config import Settings, get_settings
from shelfsync.db.session import get_session
from shelfsync.services.abs_client import AudiobookshelfClient
from shelfsync.services.playback_manager import PlaybackManager

router = APIRouter()


class HealthStatus(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy", "degraded"]
    database: Literal["connected", "disconnected"]
    server: Literal["configured", "unconfigured"]
    playback: str
    version: str
    environment: str


class LivenessResponse(BaseModel):
    """Liveness probe response."""

    status: Literal["ok"]


class ReadinessResponse(BaseModel):
    """Readiness probe response."""

    status: Literal["ready", "not_ready"]
    details: dict[str, bool]


async def _database_ok(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


@router.get("/health", response_model=HealthStatus)
async def health_check(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    abs_client: AudiobookshelfClient = Depends(get_abs_client),
    manager: PlaybackManager = Depends(get_playback_manager),
) -> HealthStatus:
    """Full health check endpoint."""
    db_status: Literal["connected", "disconnected"] = (
        "connected" if await _database_ok(session) else "disconnected"
    )
    server_status: Literal["configured", "unconfigured"] = (
        "configured" if abs_client.is_configured else "unconfigured"
    )

    # Determine overall status
    overall: Literal["healthy", "unhealthy", "degraded"]
    if db_status == "connected" and server_status == "configured":
        overall = "healthy"
    elif db_status == "connected":
        overall = "degraded"
    else:
        overall = "unhealthy"

    return HealthStatus(
        status=overall,
        database=db_status,
        server=server_status,
        playback=manager.state.value,
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get("/health/live", response_model=LivenessResponse)
async def liveness_probe() -> LivenessResponse:
    """Liveness probe - checks if app is running."""
    return LivenessResponse(status="ok")


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_probe(
    session: AsyncSession = Depends(get_session),
    abs_client: AudiobookshelfClient = Depends(get_abs_client),
) -> ReadinessResponse:
    """Readiness probe - checks if app can serve requests."""
    checks = {
        "database": await _database_ok(session),
        "server_configured": abs_client.is_configured,
    }
    return ReadinessResponse(
        status="ready" if all(checks.values()) else "not_ready",
        details=checks,
    )
