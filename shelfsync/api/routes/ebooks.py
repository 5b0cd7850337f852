"""Ebook reader endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shelfsync.api.deps import get_abs_client, get_playback_manager, get_reader
from shelfsync.api.schemas import (
    AudioPageResponse,
    EbookSummaryResponse,
    PageResponse,
    PositionResponse,
    PositionUpdate,
    TOCEntryResponse,
)
from shelfsync.db.models import ReadingPosition
from shelfsync.db.session import get_session
from shelfsync.services.abs_client import AudiobookshelfClient
from shelfsync.services.pagination import clamp_page
from shelfsync.services.playback_manager import PlaybackManager
from shelfsync.services.reader import EbookReader, LoadedEbook

router = APIRouter()


async def _stored_page(session: AsyncSession, item_id: str) -> int:
    result = await session.execute(select(ReadingPosition).where(ReadingPosition.item_id == item_id))
    position = result.scalar_one_or_none()
    return position.page_index if position else 0


async def _store_page(session: AsyncSession, item_id: str, page_index: int) -> None:
    result = await session.execute(select(ReadingPosition).where(ReadingPosition.item_id == item_id))
    position = result.scalar_one_or_none()
    if position is None:
        position = ReadingPosition(item_id=item_id)
    position.page_index = page_index
    position.updated_at = datetime.utcnow()
    session.add(position)
    await session.commit()


def _position(book: LoadedEbook, page_index: int) -> PositionResponse:
    left, right = book.spread(page_index)
    return PositionResponse(
        item_id=book.item_id,
        page_index=left,
        left_page=left,
        right_page=right,
        total_pages=book.total_pages,
    )


@router.post("/{item_id}/load", response_model=EbookSummaryResponse)
async def load_ebook(
    item_id: str,
    reload: bool = Query(default=False),
    session: AsyncSession = Depends(get_session),
    abs_client: AudiobookshelfClient = Depends(get_abs_client),
    reader: EbookReader = Depends(get_reader),
) -> EbookSummaryResponse:
    """Download, parse and paginate an item's ebook."""
    if item_id in reader and not reload:
        book = reader.get(item_id)
    else:
        item = await abs_client.fetch_item_details(item_id)
        book = await reader.load(item, reload=reload)

    # Only a first load starts at page 0; later loads keep the stored page.
    page_index = clamp_page(await _stored_page(session, item_id), book.total_pages)
    return EbookSummaryResponse(
        item_id=item_id,
        title=book.title,
        total_pages=book.total_pages,
        toc_entries=len(book.toc),
        mapped_chapters=len(book.chapter_mapping),
        page_index=page_index,
    )


@router.get("/{item_id}/toc", response_model=list[TOCEntryResponse])
async def get_toc(
    item_id: str,
    reader: EbookReader = Depends(get_reader),
) -> list[TOCEntryResponse]:
    """TOC entries with their start pages ("Section N" per spine item when empty)."""
    book = reader.get(item_id)
    return [
        TOCEntryResponse(
            index=i,
            title=entry.title,
            href=entry.href,
            fragment_id=entry.fragment_id,
            start_page=entry.start_page,
        )
        for i, entry in enumerate(book.toc)
    ]


@router.get("/{item_id}/pages/{index}", response_model=PageResponse)
async def get_page(
    item_id: str,
    index: int,
    reader: EbookReader = Depends(get_reader),
) -> PageResponse:
    book = reader.get(item_id)
    if not 0 <= index < book.total_pages:
        raise HTTPException(status_code=404, detail="Page not found")
    return PageResponse(index=index, text=book.page(index), total_pages=book.total_pages)


@router.get("/{item_id}/position", response_model=PositionResponse)
async def get_position(
    item_id: str,
    session: AsyncSession = Depends(get_session),
    reader: EbookReader = Depends(get_reader),
) -> PositionResponse:
    book = reader.get(item_id)
    return _position(book, await _stored_page(session, item_id))


@router.put("/{item_id}/position", response_model=PositionResponse)
async def update_position(
    item_id: str,
    update: PositionUpdate,
    session: AsyncSession = Depends(get_session),
    reader: EbookReader = Depends(get_reader),
) -> PositionResponse:
    """Jump to a page, turn a spread, or open a TOC entry."""
    book = reader.get(item_id)
    current = clamp_page(await _stored_page(session, item_id), book.total_pages)

    if update.page_index is not None:
        target = clamp_page(update.page_index, book.total_pages)
    elif update.move == "next":
        target = book.next_spread(current)
    elif update.move == "previous":
        target = book.previous_spread(current)
    else:
        toc_page = book.toc_page(update.toc_index) if update.toc_index is not None else None
        if toc_page is None:
            raise HTTPException(status_code=404, detail="No page for TOC entry")
        target = toc_page

    await _store_page(session, item_id, target)
    return _position(book, target)


@router.get("/{item_id}/audio-page", response_model=AudioPageResponse)
async def get_audio_page(
    item_id: str,
    session: AsyncSession = Depends(get_session),
    reader: EbookReader = Depends(get_reader),
    manager: PlaybackManager = Depends(get_playback_manager),
) -> AudioPageResponse:
    """
    Page matching the audio position, following playback when it moved.

    Follows only while the same item is playing; the stored page changes
    only when the audio is more than two pages away from it.
    """
    book = reader.get(item_id)
    current = clamp_page(await _stored_page(session, item_id), book.total_pages)

    same_item = manager.current_item is not None and manager.current_item.id == item_id
    following = same_item and manager.is_playing and manager.duration > 0
    audio_page = book.page_for_audio(manager.current_time) if same_item else None

    if following:
        target = book.follow_audio(current, manager.current_time)
        if target != current:
            await _store_page(session, item_id, target)
            current = target

    return AudioPageResponse(
        item_id=item_id,
        following=following,
        audio_page=audio_page,
        page_index=current,
    )
