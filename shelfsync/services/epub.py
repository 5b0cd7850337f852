"""
EPUB container and package parsing.

Turns raw EPUB bytes into the reading-order spine, the table of contents and
the per-document HTML. Pure and synchronous: no network, no filesystem.
"""

import io
import logging
import posixpath
import struct
import xml.etree.ElementTree as ET
import zipfile
import zlib
from dataclasses import dataclass, field
from urllib.parse import unquote

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

LOCAL_HEADER_SIGNATURE = b"PK\x03\x04"
CENTRAL_DIRECTORY_SIGNATURE = b"PK\x01\x02"
LOCAL_HEADER_SIZE = 30

METHOD_STORED = 0
METHOD_DEFLATE = 8

CONTAINER_PATH = "META-INF/container.xml"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"
XHTML_MEDIA_TYPE = "application/xhtml+xml"


class EPUBError(Exception):
    """Base exception for EPUB parsing."""
    pass


class CorruptArchive(EPUBError):
    """Bad ZIP structure, or container.xml / package document missing or unreadable."""
    pass


@dataclass(frozen=True)
class SpineItem:
    href: str
    html: str


@dataclass(frozen=True)
class TOCChapter:
    title: str
    href: str
    fragment_id: str | None = None


@dataclass(frozen=True)
class ManifestItem:
    id: str
    href: str
    media_type: str = ""
    properties: str = ""


@dataclass
class PackageDocument:
    title: str
    manifest: dict[str, ManifestItem] = field(default_factory=dict)
    spine: list[str] = field(default_factory=list)
    toc_href: str | None = None


@dataclass(frozen=True)
class EPUBContent:
    """Parsed ebook; immutable once built."""

    title: str
    spine_items: tuple[SpineItem, ...]
    toc_chapters: tuple[TOCChapter, ...]

    def sections(self) -> list[TOCChapter]:
        """The TOC, or one unnamed section per spine item when there is none."""
        if self.toc_chapters:
            return list(self.toc_chapters)
        return [
            TOCChapter(title=f"Section {i + 1}", href=item.href)
            for i, item in enumerate(self.spine_items)
        ]


# ---------------------------------------------------------------------------
# Archive reading
# ---------------------------------------------------------------------------


def scan_local_headers(data: bytes) -> dict[str, bytes]:
    """
    Extract entries by walking local file headers in order.

    Trusts the sizes declared in each local header and stops at the central
    directory. Archives written with data descriptors (zero sizes in the local
    header) are not supported by this scanner.

    Raises:
        CorruptArchive: A DEFLATE entry fails to inflate.
    """
    files: dict[str, bytes] = {}
    offset = 0
    end = len(data)

    while offset < end - LOCAL_HEADER_SIZE:
        candidate = data.find(b"PK", offset)
        if candidate < 0 or candidate >= end - LOCAL_HEADER_SIZE:
            break
        offset = candidate
        signature = data[offset:offset + 4]
        if signature == CENTRAL_DIRECTORY_SIGNATURE:
            break
        if signature != LOCAL_HEADER_SIGNATURE:
            offset += 1
            continue

        (method,) = struct.unpack_from("<H", data, offset + 8)
        compressed_size, uncompressed_size = struct.unpack_from("<II", data, offset + 18)
        name_length, extra_length = struct.unpack_from("<HH", data, offset + 26)

        name_start = offset + LOCAL_HEADER_SIZE
        name_end = name_start + name_length
        if name_end > end:
            break
        data_start = name_end + extra_length
        data_end = data_start + compressed_size
        if data_end > end:
            break

        try:
            filename = data[name_start:name_end].decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Skipping entry with undecodable name at offset %d", offset)
            offset = data_end
            continue

        if not filename.endswith("/"):
            payload = data[data_start:data_end]
            if method == METHOD_STORED:
                files[filename] = payload
            elif method == METHOD_DEFLATE:
                files[filename] = _inflate(payload, uncompressed_size, filename)
            else:
                logger.debug("Skipping %s: unsupported compression method %d", filename, method)

        offset = data_end

    return files


def _inflate(payload: bytes, uncompressed_size: int, filename: str) -> bytes:
    try:
        return zlib.decompress(payload, -zlib.MAX_WBITS, max(uncompressed_size, 1))
    except zlib.error as e:
        raise CorruptArchive(f"Failed to inflate {filename}: {e}") from e


def read_archive(data: bytes) -> dict[str, bytes]:
    """
    Extract every file entry of a ZIP archive.

    Reads through the central directory first; archives without a readable
    central directory fall back to the local-header scanner. Once the central
    directory opened, any entry that cannot be read (bad CRC, truncated data,
    unsupported compression or encryption) makes the whole archive corrupt.

    Raises:
        CorruptArchive: Nothing could be extracted, or an entry is corrupt.
    """
    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        logger.info("Central directory unreadable (%s); scanning local headers", e)
        files = scan_local_headers(data)
    else:
        with zf:
            files = {}
            for info in zf.infolist():
                if info.is_dir():
                    continue
                try:
                    files[info.filename] = zf.read(info)
                except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError) as e:
                    raise CorruptArchive(f"Cannot read {info.filename}: {e}") from e

    if not files:
        raise CorruptArchive("Archive contains no files")
    return files


# ---------------------------------------------------------------------------
# XML helpers
# ---------------------------------------------------------------------------


def _local_name(tag: str) -> str:
    return tag.split("}", 1)[-1] if "}" in tag else tag


def _attr(elem: ET.Element, name: str) -> str | None:
    for key, value in elem.attrib.items():
        if _local_name(key) == name:
            return value
    return None


def _parse_xml(text: str, what: str) -> ET.Element:
    try:
        return ET.fromstring(text.encode("utf-8"))
    except ET.ParseError as e:
        raise CorruptArchive(f"Malformed {what}: {e}") from e


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8-sig", errors="replace")


def _resolve(base_dir: str, href: str) -> str:
    joined = posixpath.join(base_dir, href) if base_dir else href
    return posixpath.normpath(joined)


def _split_fragment(src: str) -> tuple[str, str | None]:
    href, sep, fragment = src.partition("#")
    return unquote(href), (unquote(fragment) if sep and fragment else None)


# ---------------------------------------------------------------------------
# Container, package and TOC documents
# ---------------------------------------------------------------------------


def find_package_path(files: dict[str, bytes]) -> str:
    """Path of the package document named by META-INF/container.xml."""
    raw = files.get(CONTAINER_PATH)
    if raw is None:
        raise CorruptArchive("META-INF/container.xml not found")
    root = _parse_xml(_decode(raw), "container.xml")
    for elem in root.iter():
        if _local_name(elem.tag) == "rootfile":
            full_path = _attr(elem, "full-path")
            if full_path:
                return full_path
    raise CorruptArchive("Could not find package document path in container.xml")


def parse_package(xml_text: str) -> PackageDocument:
    """Title, manifest, spine (as hrefs in reading order) and TOC document."""
    root = _parse_xml(xml_text, "package document")

    title = "Unknown"
    for elem in root.iter():
        if _local_name(elem.tag) == "title" and "".join(elem.itertext()).strip():
            title = "".join(elem.itertext()).strip()
            break

    package = PackageDocument(title=title)
    for elem in root.iter():
        if _local_name(elem.tag) != "item":
            continue
        item_id = _attr(elem, "id")
        href = _attr(elem, "href")
        if not item_id or not href:
            continue
        package.manifest[item_id] = ManifestItem(
            id=item_id,
            href=unquote(href),
            media_type=(_attr(elem, "media-type") or "").lower(),
            properties=(_attr(elem, "properties") or "").lower(),
        )

    ncx_href: str | None = None
    nav_href: str | None = None
    for elem in root.iter():
        tag = _local_name(elem.tag)
        if tag == "spine":
            toc_id = _attr(elem, "toc")
            if toc_id and toc_id in package.manifest:
                ncx_href = package.manifest[toc_id].href
        elif tag == "itemref":
            idref = _attr(elem, "idref")
            if idref and idref in package.manifest:
                package.spine.append(package.manifest[idref].href)

    for item in package.manifest.values():
        if item.media_type == NCX_MEDIA_TYPE and ncx_href is None:
            ncx_href = item.href
        elif "nav" in item.properties.split() and nav_href is None:
            nav_href = item.href

    package.toc_href = nav_href or ncx_href
    return package


def parse_ncx(xml_text: str) -> list[TOCChapter]:
    """Every navPoint, nested ones included, in document order."""
    root = _parse_xml(xml_text, "NCX document")
    chapters: list[TOCChapter] = []
    for nav_point in root.iter():
        if _local_name(nav_point.tag) != "navPoint":
            continue
        label = ""
        src = None
        for child in nav_point:
            name = _local_name(child.tag)
            if name == "navLabel" and not label:
                label = "".join(child.itertext()).strip()
            elif name == "content" and src is None:
                src = _attr(child, "src")
        if not src:
            continue
        href, fragment = _split_fragment(src)
        chapters.append(TOCChapter(title=label, href=href, fragment_id=fragment))
    return chapters


def parse_nav(html: str) -> list[TOCChapter]:
    """Anchors of the EPUB 3 navigation document's toc nav."""
    soup = BeautifulSoup(html, "html.parser")
    navs = [
        nav
        for nav in soup.find_all("nav")
        if "toc" in (nav.get("epub:type") or "").lower() or (nav.get("role") or "").lower() == "doc-toc"
    ]
    if not navs:
        navs = soup.find_all("nav") or [soup]

    chapters: list[TOCChapter] = []
    for nav in navs:
        for anchor in nav.find_all("a"):
            src = anchor.get("href")
            if not src:
                continue
            href, fragment = _split_fragment(src)
            chapters.append(TOCChapter(title=anchor.get_text(" ", strip=True), href=href, fragment_id=fragment))
    return chapters


def _parse_toc(files: dict[str, bytes], package: PackageDocument, package_dir: str) -> list[TOCChapter]:
    if package.toc_href is None:
        logger.info("No NCX or navigation document in package")
        return []
    toc_path = _resolve(package_dir, package.toc_href)
    raw = files.get(toc_path)
    if raw is None:
        logger.warning("TOC document not found at %s", toc_path)
        return []

    text = _decode(raw)
    if "<ncx" in text:
        entries = parse_ncx(text)
    elif "<nav" in text:
        entries = parse_nav(text)
    else:
        logger.warning("Unknown TOC format in %s", toc_path)
        return []

    # TOC hrefs are relative to the TOC document; spine hrefs to the package.
    toc_dir = posixpath.dirname(toc_path)
    chapters: list[TOCChapter] = []
    for entry in entries:
        href = entry.href
        if href and toc_dir != package_dir:
            absolute = _resolve(toc_dir, href)
            href = posixpath.relpath(absolute, package_dir) if package_dir else absolute
        chapters.append(TOCChapter(title=entry.title, href=href, fragment_id=entry.fragment_id))
    return chapters


def parse_epub(data: bytes) -> EPUBContent:
    """
    Parse raw EPUB bytes.

    Raises:
        CorruptArchive: Bad archive, missing container.xml, package document
            or spine document.
    """
    files = read_archive(data)
    package_path = find_package_path(files)
    raw_package = files.get(package_path)
    if raw_package is None:
        raise CorruptArchive(f"Package document {package_path} not found")

    package = parse_package(_decode(raw_package))
    package_dir = posixpath.dirname(package_path)

    spine_items: list[SpineItem] = []
    for href in package.spine:
        raw = files.get(_resolve(package_dir, href))
        if raw is None:
            raise CorruptArchive(f"Spine document {href} not found")
        spine_items.append(SpineItem(href=href, html=_decode(raw)))

    toc = _parse_toc(files, package, package_dir)
    logger.info(
        "Parsed EPUB %r: %d spine items, %d TOC entries",
        package.title,
        len(spine_items),
        len(toc),
    )
    return EPUBContent(title=package.title, spine_items=tuple(spine_items), toc_chapters=tuple(toc))
