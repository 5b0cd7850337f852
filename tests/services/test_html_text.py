"""Tests for HTML to text normalization."""

import pytest

from shelfsync.services.html_text import html_to_text


class TestHtmlToText:
    """Tests for block structure, entities and whitespace."""

    def test_paragraphs_are_separated_by_blank_line(self) -> None:
        assert html_to_text("<p>One</p><p>Two</p>") == "One\n\nTwo"

    def test_headings_divs_and_breaks(self) -> None:
        html = "<h2>Title</h2><div>first</div><div>second<br/>third</div>"

        assert html_to_text(html) == "Title\n\nfirst\nsecond\nthird"

    def test_drops_head_script_and_style(self) -> None:
        html = (
            '<?xml version="1.0"?><!DOCTYPE html><html><head><title>Hidden</title>'
            "<style>p { color: red; }</style></head>"
            "<body><!-- note --><script>var x = 1;</script><p>Visible</p></body></html>"
        )

        assert html_to_text(html) == "Visible"

    def test_decodes_entities(self) -> None:
        assert html_to_text("<p>Fish &amp; Chips &lt;3 &#8212; caf&eacute;</p>") == "Fish & Chips <3 — café"

    @pytest.mark.parametrize(
        "html,expected",
        [
            ("<p>a   \t b</p>", "a b"),
            ("<p>a&nbsp;&nbsp;b</p>", "a b"),
            ("<p>  a  </p>\n\n\n<p>  b</p>", "a\n\nb"),
            ("<p>a</p>\r\n<p>b</p>", "a\n\nb"),
        ],
    )
    def test_whitespace_normalization(self, html: str, expected: str) -> None:
        assert html_to_text(html) == expected

    def test_never_more_than_two_newlines(self) -> None:
        text = html_to_text("<p>a</p><br/><br/><br/><p>b</p>")

        assert "\n\n\n" not in text
        assert text == "a\n\nb"

    def test_empty_document(self) -> None:
        assert html_to_text("<html><head><title>x</title></head><body></body></html>") == ""
