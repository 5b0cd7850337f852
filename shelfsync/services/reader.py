"""
Ebook reader service.

Downloads an item's EPUB, parses and paginates it off the event loop, and
keeps the result per item. Page positions are left-page indices of a
two-page spread.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from shelfsync.core.config import get_settings
from shelfsync.services.abs_client import AudiobookshelfClient, AudiobookshelfError
from shelfsync.services.abs_models import Chapter, LibraryItem
from shelfsync.services.chapter_mapping import build_chapter_mapping, page_for_audio_position
from shelfsync.services.epub import EPUBContent, parse_epub
from shelfsync.services.pagination import Pagination, clamp_page, paginate_spine

logger = logging.getLogger(__name__)

SPREAD_SIZE = 2
AUDIO_FOLLOW_TOLERANCE = 2


class ReaderError(Exception):
    """Base exception for reader operations."""
    pass


class NoEbookFile(ReaderError):
    """The item has no ebook attached."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item {item_id} has no ebook file")


class EbookNotLoaded(ReaderError):
    """A page or TOC was requested before the ebook was loaded."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Ebook for item {item_id} is not loaded")


@dataclass(frozen=True)
class TOCEntry:
    title: str
    href: str
    fragment_id: str | None
    start_page: int | None


@dataclass
class LoadedEbook:
    """A parsed and paginated ebook, plus its link to the item's audio chapters."""

    item_id: str
    content: EPUBContent
    pagination: Pagination
    toc: list[TOCEntry]
    audio_chapters: list[Chapter] = field(default_factory=list)
    chapter_mapping: dict[int, int] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return self.content.title

    @property
    def total_pages(self) -> int:
        return self.pagination.total_pages

    def page(self, index: int) -> str:
        return self.pagination.page(index)

    def spread(self, index: int) -> tuple[int, int | None]:
        """Left and right page indices of the spread starting at ``index``."""
        left = clamp_page(index, self.total_pages)
        right = left + 1 if left + 1 < self.total_pages else None
        return left, right

    def next_spread(self, current: int) -> int:
        if current + SPREAD_SIZE < self.total_pages:
            return current + SPREAD_SIZE
        return clamp_page(current, self.total_pages)

    def previous_spread(self, current: int) -> int:
        return max(0, current - SPREAD_SIZE)

    def toc_page(self, toc_index: int) -> int | None:
        """Start page of a TOC entry, or None when its href never paginated."""
        if not 0 <= toc_index < len(self.toc):
            return None
        start = self.toc[toc_index].start_page
        return None if start is None else clamp_page(start, self.total_pages)

    def page_for_audio(self, position: float) -> int | None:
        return page_for_audio_position(
            position,
            self.audio_chapters,
            self.chapter_mapping,
            [entry.start_page for entry in self.toc],
            self.total_pages,
        )

    def follow_audio(self, current_page: int, position: float) -> int:
        """
        Page to show while following audio playback.

        Moves only when the audio's page is more than two pages away from
        ``current_page``, so small estimation noise does not flip pages.
        """
        target = self.page_for_audio(position)
        if target is None or abs(target - current_page) <= AUDIO_FOLLOW_TOLERANCE:
            return current_page
        logger.debug("Following audio of %s to page %d", self.item_id, target)
        return target


def build_toc(content: EPUBContent, pagination: Pagination) -> list[TOCEntry]:
    return [
        TOCEntry(
            title=chapter.title,
            href=chapter.href,
            fragment_id=chapter.fragment_id,
            start_page=pagination.spine_to_page.get(chapter.href),
        )
        for chapter in content.sections()
    ]


class EbookReader:
    """Loads and holds paginated ebooks, keyed by item id."""

    def __init__(self, client: AudiobookshelfClient) -> None:
        self.settings = get_settings()
        self.client = client
        self._books: dict[str, LoadedEbook] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._books

    def get(self, item_id: str) -> LoadedEbook:
        book = self._books.get(item_id)
        if book is None:
            raise EbookNotLoaded(item_id)
        return book

    def unload(self, item_id: str) -> None:
        self._books.pop(item_id, None)

    async def load(self, item: LibraryItem, reload: bool = False) -> LoadedEbook:
        """
        Download, parse and paginate the item's ebook.

        Raises:
            NoEbookFile: The item (even with full details) has no ebook.
            AudiobookshelfError: The details fetch (when the ebook was unknown) or the download failed.
            EPUBError: The archive could not be parsed.
        """
        async with self._lock:
            if not reload and item.id in self._books:
                return self._books[item.id]

            if item.ebook_ino is None or not item.chapters:
                try:
                    item = await self.client.fetch_item_details(item.id)
                except AudiobookshelfError as e:
                    logger.warning("Failed to fetch full details for %s: %s", item.id, e)
                    if item.ebook_ino is None:
                        raise
            ino = item.ebook_ino
            if ino is None:
                raise NoEbookFile(item.id)

            logger.info("Downloading ebook %s for %s", ino, item.id)
            data = await self.client.fetch_ebook(item.id, ino)
            content = await asyncio.to_thread(parse_epub, data)
            pagination = await asyncio.to_thread(
                paginate_spine,
                content.spine_items,
                self.settings.page_height,
                self.settings.line_height,
                self.settings.chars_per_line,
            )

            toc = build_toc(content, pagination)
            audio_chapters = item.chapters
            mapping = build_chapter_mapping(
                [chapter.title for chapter in audio_chapters],
                [entry.title for entry in toc],
            )
            if audio_chapters and not mapping:
                logger.info("No audio chapter of %s matched a TOC entry", item.id)

            book = LoadedEbook(
                item_id=item.id,
                content=content,
                pagination=pagination,
                toc=toc,
                audio_chapters=audio_chapters,
                chapter_mapping=mapping,
            )
            self._books[item.id] = book
            logger.info(
                "Loaded ebook %r for %s: %d pages, %d TOC entries, %d mapped chapters",
                content.title,
                item.id,
                book.total_pages,
                len(toc),
                len(mapping),
            )
            return book
