from typing import Literal

from pydantic import BaseModel, Field, model_validator

from shelfsync.services.abs_models import Library, LibraryItem


class LibraryResponse(BaseModel):
    id: str
    name: str
    media_type: str | None = None

    @classmethod
    def from_library(cls, library: Library) -> "LibraryResponse":
        return cls(id=library.id, name=library.name, media_type=library.media_type)


class ChapterResponse(BaseModel):
    id: int
    title: str
    start: float
    end: float


class ItemSummaryResponse(BaseModel):
    id: str
    library_id: str | None = None
    title: str
    author_name: str | None = None
    series_name: str | None = None
    duration: float | None = None
    progress: float | None = None
    current_time: float | None = None
    is_finished: bool = False
    has_ebook: bool = False

    @classmethod
    def from_item(cls, item: LibraryItem) -> "ItemSummaryResponse":
        progress = item.user_media_progress
        return cls(
            id=item.id,
            library_id=item.library_id,
            title=item.title,
            author_name=item.author_name,
            series_name=item.series_name,
            duration=item.duration,
            progress=progress.progress if progress else None,
            current_time=progress.current_time if progress else None,
            is_finished=progress.is_finished if progress else False,
            has_ebook=item.ebook_ino is not None,
        )


class ItemDetailsResponse(ItemSummaryResponse):
    """Canonical response model for item details."""
    chapters: list[ChapterResponse] = []
    track_count: int = 0
    audio_file_count: int = 0

    @classmethod
    def from_item(cls, item: LibraryItem) -> "ItemDetailsResponse":
        summary = ItemSummaryResponse.from_item(item)
        return cls(
            **summary.model_dump(),
            chapters=[
                ChapterResponse(id=c.id, title=c.title, start=c.start, end=c.end) for c in item.chapters
            ],
            track_count=len(item.tracks),
            audio_file_count=len(item.audio_files),
        )


class ConnectionRequest(BaseModel):
    host: str = Field(min_length=1)
    api_key: str = Field(min_length=1)


class ConnectionResponse(BaseModel):
    host: str
    libraries: list[LibraryResponse]


class SelectedLibrariesUpdate(BaseModel):
    libraries: list[LibraryResponse]


# Player

class PlayerStateResponse(BaseModel):
    state: str
    item_id: str | None = None
    title: str | None = None
    is_playing: bool
    current_time: float
    duration: float
    rate: float
    current_track_index: int
    current_track_title: str
    has_audio_stream: bool
    loading_status: str
    current_chapter_start: float
    current_chapter_duration: float
    sleep_remaining: float | None = None
    session_id: str | None = None


class LoadRequest(BaseModel):
    item_id: str = Field(min_length=1)
    autoplay: bool = False


class SeekRequest(BaseModel):
    seconds: float


class SkipRequest(BaseModel):
    by_seconds: float


class RateRequest(BaseModel):
    rate: float = Field(gt=0)


class SleepRequest(BaseModel):
    minutes: float = Field(gt=0, le=24 * 60)


# Ebooks

class EbookSummaryResponse(BaseModel):
    item_id: str
    title: str
    total_pages: int
    toc_entries: int
    mapped_chapters: int
    page_index: int


class TOCEntryResponse(BaseModel):
    index: int
    title: str
    href: str
    fragment_id: str | None = None
    start_page: int | None = None


class PageResponse(BaseModel):
    index: int
    text: str
    total_pages: int


class PositionResponse(BaseModel):
    item_id: str
    page_index: int
    left_page: int
    right_page: int | None = None
    total_pages: int


class PositionUpdate(BaseModel):
    """Exactly one of page_index, move or toc_index."""
    page_index: int | None = Field(default=None, ge=0)
    move: Literal["next", "previous"] | None = None
    toc_index: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_one_target(self) -> "PositionUpdate":
        given = [v for v in (self.page_index, self.move, self.toc_index) if v is not None]
        if len(given) != 1:
            raise ValueError("Provide exactly one of page_index, move or toc_index")
        return self


class AudioPageResponse(BaseModel):
    item_id: str
    following: bool
    audio_page: int | None = None
    page_index: int


# Preferences

class PreferencesResponse(BaseModel):
    playback_rate: float
    item_fetch_limit: int
    abs_host: str
