"""Pydantic models for Audiobookshelf REST payloads."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ABSModel(BaseModel):
    """Base model: camelCase on the wire, unknown keys ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Library(ABSModel):
    id: str
    name: str
    media_type: str | None = None


class Author(ABSModel):
    name: str
    id: str | None = None


class SeriesRef(ABSModel):
    name: str
    sequence: str | None = None


class BookMetadata(ABSModel):
    title: str | None = None
    subtitle: str | None = None
    authors: list[Author] = []
    series: list[SeriesRef] = []
    author_name: str | None = None
    author_name_lf: str | None = Field(default=None, alias="authorNameLF")
    series_name: str | None = None
    narrator_name: str | None = None
    description: str | None = None


class FileMetadata(ABSModel):
    filename: str | None = None
    ext: str | None = None
    size: int | None = None


class AudioFile(ABSModel):
    index: int = 0
    ino: str
    duration: float | None = None
    mime_type: str | None = None
    metadata: FileMetadata | None = None


class AudioTrack(ABSModel):
    index: int = 0
    start_offset: float = 0.0
    duration: float = 0.0
    title: str | None = None
    content_url: str
    mime_type: str | None = None


class Chapter(ABSModel):
    id: int = 0
    start: float
    end: float
    title: str = ""


class EbookFile(ABSModel):
    ino: str
    ebook_format: str | None = None
    metadata: FileMetadata | None = None


class LibraryFile(ABSModel):
    ino: str
    file_type: str | None = None
    metadata: FileMetadata | None = None


class Media(ABSModel):
    duration: float | None = None
    cover_path: str | None = None
    metadata: BookMetadata = Field(default_factory=BookMetadata)
    audio_files: list[AudioFile] = []
    chapters: list[Chapter] = []
    tracks: list[AudioTrack] = []
    ebook_file: EbookFile | None = None


class MediaProgress(ABSModel):
    id: str | None = None
    library_item_id: str | None = None
    duration: float = 0.0
    progress: float = 0.0
    current_time: float = 0.0
    is_finished: bool = False
    last_update: int | None = None
    started_at: int | None = None


class LibraryItem(ABSModel):
    """A book record as returned by the list and detail endpoints.

    List endpoints may omit tracks, audio files and chapters; the detail
    endpoint returns them in full. Instances are replaced wholesale on
    refetch, never mutated.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    library_id: str | None = None
    media: Media | None = None
    user_media_progress: MediaProgress | None = None
    library_files: list[LibraryFile] = []

    @property
    def title(self) -> str:
        if self.media and self.media.metadata.title:
            return self.media.metadata.title
        return "Untitled"

    @property
    def author_name(self) -> str | None:
        if self.media is None:
            return None
        metadata = self.media.metadata
        if metadata.author_name:
            return metadata.author_name
        if metadata.authors:
            return ", ".join(author.name for author in metadata.authors)
        return None

    @property
    def series_name(self) -> str | None:
        return self.media.metadata.series_name if self.media else None

    @property
    def duration(self) -> float | None:
        return self.media.duration if self.media else None

    @property
    def tracks(self) -> list[AudioTrack]:
        return list(self.media.tracks) if self.media else []

    @property
    def audio_files(self) -> list[AudioFile]:
        return list(self.media.audio_files) if self.media else []

    @property
    def chapters(self) -> list[Chapter]:
        return list(self.media.chapters) if self.media else []

    @property
    def ebook_ino(self) -> str | None:
        """Inode of the item's ebook file, if it has one."""
        if self.media and self.media.ebook_file:
            return self.media.ebook_file.ino
        for library_file in self.library_files:
            if (library_file.file_type or "").lower() == "ebook":
                return library_file.ino
        return None


class PlaybackSessionInfo(ABSModel):
    """Response of the play endpoint: a freshly opened server-side session."""

    id: str
    library_item_id: str | None = None
    audio_tracks: list[AudioTrack] = []
    duration: float = 0.0
    current_time: float = 0.0
    chapters: list[Chapter] = []


class DeviceInfo(ABSModel):
    device_id: str | None = None
    client_name: str
    client_version: str
    manufacturer: str | None = None
    model: str | None = None

    def as_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
