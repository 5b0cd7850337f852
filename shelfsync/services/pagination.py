"""
Fixed-geometry pagination.

Pages are built from the normalized text of each spine item with greedy word
wrapping. The page count depends only on the text and the three geometry
numbers, so the same book always paginates the same way.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from shelfsync.services.epub import SpineItem
from shelfsync.services.html_text import html_to_text

DEFAULT_PAGE_HEIGHT = 800
DEFAULT_LINE_HEIGHT = 30
DEFAULT_CHARS_PER_LINE = 70


@dataclass
class Pagination:
    pages: list[str] = field(default_factory=list)
    spine_to_page: dict[str, int] = field(default_factory=dict)

    @property
    def total_pages(self) -> int:
        return len(self.pages)

    def page(self, index: int) -> str:
        """Text of a page, with the index clamped into range ("" for an empty book)."""
        if not self.pages:
            return ""
        return self.pages[clamp_page(index, len(self.pages))]


def clamp_page(index: int, total_pages: int) -> int:
    if total_pages <= 0:
        return 0
    return max(0, min(index, total_pages - 1))


def lines_per_page(page_height: float, line_height: float) -> int:
    if line_height <= 0:
        raise ValueError("line_height must be positive")
    return max(1, int(page_height // line_height))


def paginate(
    sections: Iterable[tuple[str, str]],
    page_height: float = DEFAULT_PAGE_HEIGHT,
    line_height: float = DEFAULT_LINE_HEIGHT,
    chars_per_line: int = DEFAULT_CHARS_PER_LINE,
) -> Pagination:
    """
    Paginate ``(href, plain_text)`` sections in order.

    Every section starts on a fresh page and its href maps to that page's
    index. Paragraphs are separated by ``"\\n\\n"``; each is followed by one
    blank line.
    """
    if chars_per_line <= 0:
        raise ValueError("chars_per_line must be positive")
    max_lines = lines_per_page(page_height, line_height)

    result = Pagination()
    page = ""
    line_count = 0

    def flush() -> None:
        nonlocal page, line_count
        if page:
            result.pages.append(page)
        page = ""
        line_count = 0

    for href, text in sections:
        flush()
        result.spine_to_page[href] = len(result.pages)

        for paragraph in text.split("\n\n"):
            words = paragraph.split()
            if not words:
                continue

            line = ""
            for word in words:
                candidate = f"{line} {word}" if line else word
                if len(candidate) > chars_per_line and line:
                    page += line + "\n"
                    line_count += 1
                    line = word
                    if line_count >= max_lines:
                        flush()
                else:
                    line = candidate

            if line:
                page += line + "\n"
                line_count += 1
                if line_count >= max_lines:
                    flush()

            # Blank line after every paragraph.
            page += "\n"
            line_count += 1
            if line_count >= max_lines:
                flush()

    flush()
    return result


def paginate_spine(
    spine_items: Sequence[SpineItem],
    page_height: float = DEFAULT_PAGE_HEIGHT,
    line_height: float = DEFAULT_LINE_HEIGHT,
    chars_per_line: int = DEFAULT_CHARS_PER_LINE,
) -> Pagination:
    """Normalize each spine document's HTML and paginate the result."""
    sections = ((item.href, html_to_text(item.html)) for item in spine_items)
    return paginate(sections, page_height, line_height, chars_per_line)
