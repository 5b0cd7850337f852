"""HTML to plain-text normalization for pagination."""

import re

from bs4 import BeautifulSoup

_DROP_BLOCKS = re.compile(r"<(script|style|head)\b[^>]*>[\s\S]*?</\1\s*>", re.IGNORECASE)
_DECLARATIONS = re.compile(r"<\?[\s\S]*?\?>|<!DOCTYPE[^>]*>|<!--[\s\S]*?-->", re.IGNORECASE)
_PARAGRAPH_END = re.compile(r"</p\s*>", re.IGNORECASE)
_DIV_END = re.compile(r"</div\s*>", re.IGNORECASE)
_LINE_BREAK = re.compile(r"<br\b[^>]*>", re.IGNORECASE)
_HEADING_END = re.compile(r"</h[1-6]\s*>", re.IGNORECASE)
_SPACES = re.compile(r"[ \t\f\v\u00a0]+")
_SPACE_AROUND_NEWLINE = re.compile(r" *\n *")
_EXTRA_NEWLINES = re.compile(r"\n{3,}")


def html_to_text(html: str) -> str:
    """
    Normalize an XHTML document to paragraph-separated plain text.

    Paragraphs and headings end with a blank line, divs and line breaks with a
    single newline. Entities are decoded, runs of spaces collapse to one, and
    there are never more than two consecutive newlines.
    """
    text = html.replace("\r\n", "\n").replace("\r", "\n")
    text = _DROP_BLOCKS.sub("", text)
    text = _DECLARATIONS.sub("", text)
    text = _PARAGRAPH_END.sub("\n\n", text)
    text = _DIV_END.sub("\n", text)
    text = _LINE_BREAK.sub("\n", text)
    text = _HEADING_END.sub("\n\n", text)

    # Strips the remaining tags and decodes entities.
    text = BeautifulSoup(text, "html.parser").get_text()

    text = _SPACES.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE.sub("\n", text)
    text = _EXTRA_NEWLINES.sub("\n\n", text)
    return text.strip()
