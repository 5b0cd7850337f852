"""
Audio chapter to ebook chapter matching.

Audio chapter titles are matched against TOC titles by normalized equality or
containment in either direction; the first TOC entry that matches wins. The
mapping is a heuristic: books whose audio and ebook chapters are named
differently get no mapping at all.
"""

import re
import unicodedata
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol


class TimedChapter(Protocol):
    start: float
    end: float
    title: str


@dataclass
class ChapterMatchResult:
    """Result of matching one audio chapter title."""
    audio_index: int
    toc_index: int
    match_method: str  # "title_exact", "title_contains"
    normalized_title: str


# Typographic variants that should compare equal
PUNCTUATION_MAP = {
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "–": "-",
    "—": "-",
}


def normalize_chapter_title(title: str) -> str:
    """Case-, width- and whitespace-insensitive form of a chapter title."""
    if not title:
        return ""

    normalized = unicodedata.normalize("NFKC", title).casefold()
    for char, replacement in PUNCTUATION_MAP.items():
        normalized = normalized.replace(char, replacement)
    normalized = re.sub(r"\s+", " ", normalized)
    return normalized.strip()


def match_chapter(audio_index: int, audio_title: str, toc_titles: Sequence[str]) -> ChapterMatchResult | None:
    """First TOC entry whose title equals, contains or is contained in ``audio_title``."""
    needle = normalize_chapter_title(audio_title)
    if not needle:
        return None

    for toc_index, toc_title in enumerate(toc_titles):
        candidate = normalize_chapter_title(toc_title)
        if not candidate:
            continue
        if needle == candidate:
            return ChapterMatchResult(audio_index, toc_index, "title_exact", needle)
        if needle in candidate or candidate in needle:
            return ChapterMatchResult(audio_index, toc_index, "title_contains", needle)
    return None


def build_chapter_mapping(audio_titles: Sequence[str], toc_titles: Sequence[str]) -> dict[int, int]:
    """Audio chapter index -> TOC index, for every audio chapter that matched."""
    mapping: dict[int, int] = {}
    for audio_index, title in enumerate(audio_titles):
        result = match_chapter(audio_index, title, toc_titles)
        if result is not None:
            mapping[audio_index] = result.toc_index
    return mapping


def audio_chapter_at(chapters: Sequence[TimedChapter], position: float) -> int | None:
    for i, chapter in enumerate(chapters):
        if chapter.start <= position < chapter.end:
            return i
    return None


def page_for_audio_position(
    position: float,
    audio_chapters: Sequence[TimedChapter],
    mapping: dict[int, int],
    toc_start_pages: Sequence[int | None],
    total_pages: int,
) -> int | None:
    """
    Estimate the ebook page that corresponds to an audio position.

    The position's fraction through its audio chapter is applied to the page
    span of the mapped TOC chapter, which runs to the next TOC chapter's start
    page (or the end of the book). None when the position falls outside every
    chapter, the chapter is unmapped, or its TOC entry has no page.
    """
    if total_pages <= 0:
        return None
    audio_index = audio_chapter_at(audio_chapters, position)
    if audio_index is None:
        return None
    toc_index = mapping.get(audio_index)
    if toc_index is None or toc_index >= len(toc_start_pages):
        return None
    start_page = toc_start_pages[toc_index]
    if start_page is None:
        return None

    end_page = total_pages
    if toc_index + 1 < len(toc_start_pages) and toc_start_pages[toc_index + 1] is not None:
        end_page = toc_start_pages[toc_index + 1]
    end_page = max(end_page, start_page)

    chapter = audio_chapters[audio_index]
    length = chapter.end - chapter.start
    fraction = (position - chapter.start) / length if length > 0 else 0.0
    page = start_page + int(fraction * (end_page - start_page))
    return max(0, min(page, total_pages - 1))
