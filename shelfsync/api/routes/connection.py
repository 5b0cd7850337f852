"""Server connection endpoint."""

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shelfsync.api.deps import get_abs_client, get_cover_cache
from shelfsync.api.routes.settings import load_preferences
from shelfsync.api.schemas import ConnectionRequest, ConnectionResponse, LibraryResponse
from shelfsync.db.session import get_session
from shelfsync.services.abs_client import AudiobookshelfClient, AudiobookshelfError
from shelfsync.services.cover_cache import CoverCache

router = APIRouter()


@router.post("", response_model=ConnectionResponse)
async def connect(
    request: ConnectionRequest,
    session: AsyncSession = Depends(get_session),
    abs_client: AudiobookshelfClient = Depends(get_abs_client),
    cover_cache: CoverCache = Depends(get_cover_cache),
) -> ConnectionResponse:
    """
    Validate credentials by listing libraries, then keep them for this process.

    On failure the previous connection parameters stay in effect.
    """
    previous = (abs_client.host, abs_client.api_key)
    abs_client.configure(request.host.rstrip("/"), request.api_key)
    try:
        libraries = await abs_client.connect()
    except AudiobookshelfError:
        abs_client.configure(*previous)
        raise

    if previous[0] != abs_client.host:
        cover_cache.clear()

    preferences = await load_preferences(session)
    preferences.abs_host = abs_client.host
    preferences.updated_at = datetime.utcnow()
    session.add(preferences)
    await session.commit()

    return ConnectionResponse(
        host=abs_client.host,
        libraries=[LibraryResponse.from_library(library) for library in libraries],
    )
