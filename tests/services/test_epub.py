"""Tests for EPUB archive, package and TOC parsing."""

import io
import struct
import zipfile
import zlib
from collections.abc import Callable

import pytest

from shelfsync.services.epub import (
    CorruptArchive,
    EPUBError,
    find_package_path,
    parse_epub,
    parse_nav,
    parse_ncx,
    parse_package,
    read_archive,
    scan_local_headers,
)

CONTAINER_XML = """<?xml version="1.0"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles><rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/></rootfiles>
</container>
"""


def strip_central_directory(data: bytes) -> bytes:
    """Cut an archive at its central directory, leaving only local entries."""
    return data[: data.find(b"PK\x01\x02")]


def _zip(files: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, text in files.items():
            zf.writestr(name, text)
    return buffer.getvalue()


def _stored_zip(name: str, payload: bytes) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_STORED) as zf:
        zf.writestr(name, payload)
    return buffer.getvalue()


def _local_entry(name: str, payload: bytes, method: int, uncompressed_size: int) -> bytes:
    header = struct.pack(
        "<4sHHHHHIIIHH",
        b"PK\x03\x04",
        20,
        0,
        method,
        0,
        0,
        zlib.crc32(payload),
        len(payload),
        uncompressed_size,
        len(name.encode("utf-8")),
        0,
    )
    return header + name.encode("utf-8") + payload


class TestParseEpub:
    """End-to-end parsing of generated books."""

    def test_nav_book(self, sample_epub: bytes) -> None:
        """Test a three-chapter EPUB 3 book yields spine and TOC in order."""
        content = parse_epub(sample_epub)

        assert content.title == "Test Ebook"
        assert [item.href for item in content.spine_items] == [
            "text/ch1.xhtml",
            "text/ch2.xhtml",
            "text/ch3.xhtml",
        ]
        assert [c.title for c in content.toc_chapters] == ["Chapter One", "Chapter Two", "Chapter Three"]
        # Nav hrefs are relative to nav/, spine hrefs to the package directory.
        assert [c.href for c in content.toc_chapters] == [item.href for item in content.spine_items]
        assert "bright cold day" in content.spine_items[0].html

    def test_ncx_book(self, epub_factory: Callable[..., bytes]) -> None:
        data = epub_factory([("One", ["a"]), ("Two", ["b"])], toc="ncx")

        content = parse_epub(data)

        assert [(c.title, c.href) for c in content.toc_chapters] == [
            ("One", "text/ch1.xhtml"),
            ("Two", "text/ch2.xhtml"),
        ]

    def test_book_without_toc_falls_back_to_sections(self, epub_factory: Callable[..., bytes]) -> None:
        """Test a missing TOC is not an error and sections are synthesized."""
        data = epub_factory([("One", ["a"]), ("Two", ["b"])], toc=None)

        content = parse_epub(data)

        assert content.toc_chapters == ()
        assert [(s.title, s.href) for s in content.sections()] == [
            ("Section 1", "text/ch1.xhtml"),
            ("Section 2", "text/ch2.xhtml"),
        ]

    def test_missing_container_is_corrupt(self) -> None:
        data = _zip({"mimetype": "application/epub+zip", "OEBPS/content.opf": "<package/>"})

        with pytest.raises(CorruptArchive):
            parse_epub(data)

    def test_missing_package_document_is_corrupt(self) -> None:
        data = _zip({"META-INF/container.xml": CONTAINER_XML})

        with pytest.raises(CorruptArchive):
            parse_epub(data)

    def test_missing_spine_document_is_corrupt(self) -> None:
        opf = (
            '<package xmlns="http://www.idpf.org/2007/opf"><metadata/>'
            '<manifest><item id="c1" href="gone.xhtml" media-type="application/xhtml+xml"/></manifest>'
            '<spine><itemref idref="c1"/></spine></package>'
        )
        data = _zip({"META-INF/container.xml": CONTAINER_XML, "OEBPS/content.opf": opf})

        with pytest.raises(CorruptArchive):
            parse_epub(data)

    def test_not_a_zip(self) -> None:
        with pytest.raises(EPUBError):
            parse_epub(b"definitely not an archive")


class TestArchiveReading:
    """Tests for the central-directory reader and the local-header scanner."""

    @pytest.mark.parametrize("compression", [zipfile.ZIP_STORED, zipfile.ZIP_DEFLATED])
    def test_scanner_matches_zipfile(self, epub_factory: Callable[..., bytes], compression: int) -> None:
        """Test scanning local headers extracts the same files as the central directory."""
        data = epub_factory([("One", ["a"]), ("Two", ["b"])], compression=compression)

        assert scan_local_headers(data) == read_archive(data)

    def test_archive_without_central_directory_still_parses(self, sample_epub: bytes) -> None:
        truncated = strip_central_directory(sample_epub)

        content = parse_epub(truncated)

        assert len(content.spine_items) == 3
        assert len(content.toc_chapters) == 3

    def test_scanner_skips_directories_and_leading_garbage(self) -> None:
        data = b"junk" + _local_entry("dir/", b"", 0, 0) + _local_entry("dir/a.txt", b"hello", 0, 5)

        assert scan_local_headers(data) == {"dir/a.txt": b"hello"}

    def test_scanner_inflates_deflate_entries(self) -> None:
        compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
        payload = compressor.compress(b"hello hello hello") + compressor.flush()

        files = scan_local_headers(_local_entry("a.txt", payload, 8, 17))

        assert files == {"a.txt": b"hello hello hello"}

    def test_corrupt_deflate_entry_raises(self) -> None:
        """Test an undecodable DEFLATE stream surfaces as CorruptArchive."""
        data = _local_entry("a.txt", b"\xff\xff\xff\xff", 8, 10)

        with pytest.raises(CorruptArchive):
            read_archive(data)

    def test_crc_mismatch_is_corrupt(self) -> None:
        """Test a damaged entry behind a readable central directory is not rescanned."""
        data = _stored_zip("a.txt", b"hello world").replace(b"hello world", b"jello world", 1)

        with pytest.raises(CorruptArchive):
            read_archive(data)

    def test_unsupported_compression_is_corrupt(self) -> None:
        data = bytearray(_stored_zip("a.txt", b"hello world"))
        central = data.find(b"PK\x01\x02")
        # Deflate64 in both the local and the central header.
        struct.pack_into("<H", data, 8, 9)
        struct.pack_into("<H", data, central + 10, 9)

        with pytest.raises(CorruptArchive):
            read_archive(bytes(data))

    def test_encrypted_entry_is_corrupt(self) -> None:
        data = bytearray(_stored_zip("a.txt", b"hello world"))
        central = data.find(b"PK\x01\x02")
        struct.pack_into("<H", data, 6, 1)
        struct.pack_into("<H", data, central + 8, 1)

        with pytest.raises(CorruptArchive):
            read_archive(bytes(data))

    def test_empty_archive_is_corrupt(self) -> None:
        with pytest.raises(CorruptArchive):
            read_archive(_zip({}))


class TestPackageDocument:
    """Tests for container.xml and the OPF package document."""

    def test_find_package_path(self) -> None:
        assert find_package_path({"META-INF/container.xml": CONTAINER_XML.encode()}) == "OEBPS/content.opf"

    def test_container_without_rootfile(self) -> None:
        with pytest.raises(CorruptArchive):
            find_package_path({"META-INF/container.xml": b"<container/>"})

    def test_malformed_container(self) -> None:
        with pytest.raises(CorruptArchive):
            find_package_path({"META-INF/container.xml": b"<container><rootfiles>"})

    def test_parse_package_prefers_nav_over_ncx(self) -> None:
        opf = (
            '<package xmlns="http://www.idpf.org/2007/opf"><metadata/>'
            "<manifest>"
            '<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>'
            '<item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>'
            '<item id="c1" href="Text/Chapter%201.xhtml" media-type="application/xhtml+xml"/>'
            "</manifest>"
            '<spine toc="ncx"><itemref idref="c1"/><itemref idref="unknown"/></spine></package>'
        )

        package = parse_package(opf)

        assert package.title == "Unknown"
        assert package.spine == ["Text/Chapter 1.xhtml"]
        assert package.toc_href == "nav.xhtml"

    def test_parse_package_ncx_by_media_type(self) -> None:
        opf = (
            '<package xmlns="http://www.idpf.org/2007/opf">'
            '<metadata xmlns:dc="http://purl.org/dc/elements/1.1/"><dc:title> My Book </dc:title></metadata>'
            '<manifest><item id="x" href="book.ncx" media-type="application/x-dtbncx+xml"/></manifest>'
            "<spine/></package>"
        )

        package = parse_package(opf)

        assert package.title == "My Book"
        assert package.toc_href == "book.ncx"


class TestTOCDocuments:
    """Tests for NCX and nav document parsing."""

    def test_parse_ncx_includes_nested_points_in_order(self) -> None:
        ncx = (
            '<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/"><navMap>'
            '<navPoint id="a"><navLabel><text>Part I</text></navLabel><content src="p1.xhtml"/>'
            '<navPoint id="b"><navLabel><text>Chapter 1</text></navLabel><content src="c1.xhtml#start"/></navPoint>'
            "</navPoint>"
            '<navPoint id="c"><navLabel><text>Part II</text></navLabel><content src="p2.xhtml"/></navPoint>'
            "</navMap></ncx>"
        )

        chapters = parse_ncx(ncx)

        assert [c.title for c in chapters] == ["Part I", "Chapter 1", "Part II"]
        assert chapters[1].href == "c1.xhtml"
        assert chapters[1].fragment_id == "start"

    def test_parse_nav_uses_toc_nav(self) -> None:
        html = (
            '<html><body><nav epub:type="landmarks"><a href="cover.xhtml">Cover</a></nav>'
            '<nav epub:type="toc"><ol><li><a href="c1.xhtml#s1">  One  </a></li>'
            '<li><a href="c2.xhtml">Two</a></li><li><a>No link</a></li></ol></nav></body></html>'
        )

        chapters = parse_nav(html)

        assert [(c.title, c.href, c.fragment_id) for c in chapters] == [
            ("One", "c1.xhtml", "s1"),
            ("Two", "c2.xhtml", None),
        ]

    def test_parse_nav_role_doc_toc(self) -> None:
        html = '<nav role="doc-toc"><a href="a.xhtml">A</a></nav>'

        assert [c.href for c in parse_nav(html)] == ["a.xhtml"]

    def test_parse_nav_without_nav_element(self) -> None:
        html = '<body><a href="a.xhtml">A</a><a href="b.xhtml">B</a></body>'

        assert [c.title for c in parse_nav(html)] == ["A", "B"]
