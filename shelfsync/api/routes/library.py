"""Library browsing endpoints."""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from shelfsync.api.deps import get_abs_client, get_cover_cache
from shelfsync.api.routes.settings import load_preferences
from shelfsync.api.schemas import (
    ItemDetailsResponse,
    ItemSummaryResponse,
    LibraryResponse,
    SelectedLibrariesUpdate,
)
from shelfsync.core.config import Settings, get_settings
from shelfsync.db.models import SelectedLibrary
from shelfsync.db.session import get_session
from shelfsync.services.abs_client import AudiobookshelfClient
from shelfsync.services.cover_cache import CoverCache

router = APIRouter()

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
WEBP_MARKER = b"WEBP"


def _image_media_type(data: bytes) -> str:
    if data.startswith(PNG_SIGNATURE):
        return "image/png"
    if data[8:12] == WEBP_MARKER:
        return "image/webp"
    return "image/jpeg"


@router.get("/libraries", response_model=list[LibraryResponse])
async def list_libraries(
    abs_client: AudiobookshelfClient = Depends(get_abs_client),
) -> list[LibraryResponse]:
    """List libraries on the connected server."""
    libraries = await abs_client.list_libraries()
    return [LibraryResponse.from_library(library) for library in libraries]


@router.get("/libraries/selected", response_model=list[LibraryResponse])
async def get_selected_libraries(
    session: AsyncSession = Depends(get_session),
) -> list[LibraryResponse]:
    """Libraries chosen for browsing, in display order."""
    result = await session.execute(select(SelectedLibrary).order_by(SelectedLibrary.position))
    return [LibraryResponse(id=row.id, name=row.name) for row in result.scalars().all()]


@router.put("/libraries/selected", response_model=list[LibraryResponse])
async def set_selected_libraries(
    update: SelectedLibrariesUpdate,
    session: AsyncSession = Depends(get_session),
) -> list[LibraryResponse]:
    """Replace the selected libraries; duplicate ids keep their first position."""
    await session.execute(delete(SelectedLibrary))
    seen: set[str] = set()
    selected: list[LibraryResponse] = []
    for library in update.libraries:
        if library.id in seen:
            continue
        seen.add(library.id)
        session.add(SelectedLibrary(id=library.id, name=library.name, position=len(selected)))
        selected.append(LibraryResponse(id=library.id, name=library.name))
    await session.commit()
    return selected


@router.get("/libraries/{library_id}/items", response_model=list[ItemSummaryResponse])
async def list_library_items(
    library_id: str,
    limit: int | None = Query(default=None, ge=1, le=200),
    sort: str | None = Query(default=None),
    desc: bool | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    abs_client: AudiobookshelfClient = Depends(get_abs_client),
) -> list[ItemSummaryResponse]:
    """Recently added items of a library (limit defaults to the preference)."""
    if limit is None:
        limit = (await load_preferences(session)).item_fetch_limit
    items = await abs_client.list_items(
        library_id,
        limit=limit,
        sort_by=sort or settings.item_sort,
        desc=settings.item_sort_desc if desc is None else desc,
    )
    return [ItemSummaryResponse.from_item(item) for item in items]


@router.get("/items/{item_id}", response_model=ItemDetailsResponse)
async def get_item(
    item_id: str,
    abs_client: AudiobookshelfClient = Depends(get_abs_client),
) -> ItemDetailsResponse:
    """Full details of one item."""
    item = await abs_client.fetch_item_details(item_id)
    return ItemDetailsResponse.from_item(item)


@router.get("/items/{item_id}/cover")
async def get_item_cover(
    item_id: str,
    cover_cache: CoverCache = Depends(get_cover_cache),
) -> Response:
    """Cover art bytes, fetched once per item."""
    data = await cover_cache.get(item_id)
    return Response(content=data, media_type=_image_media_type(data))
