"""Pytest fixtures for ShelfSync tests."""

import io
import json
import zipfile
from collections.abc import AsyncGenerator, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from shelfsync.core.config import Settings, get_settings
from shelfsync.db.session import get_session
from shelfsync.main import app, init_services
from shelfsync.services.abs_client import AudiobookshelfClient
from shelfsync.services.abs_models import LibraryItem, PlaybackSessionInfo

# Test database URL (SQLite in-memory for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_HOST = "http://abs.test"
TEST_API_KEY = "test-key"


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeABSServer:
    """
    In-process stand-in for an Audiobookshelf server.

    Routes are (method, path) pairs; unregistered routes answer 404. Every
    request is recorded for assertions.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        content: bytes | None = None,
        status: int = 200,
    ) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if content is not None:
                return httpx.Response(status, content=content)
            return httpx.Response(status, json=json_body if json_body is not None else {})

        self.routes[(method.upper(), path)] = respond

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, text="Not Found")
        return route(request)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def json_of(self, request: httpx.Request) -> Any:
        return json.loads(request.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings with overrides."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        debug=True,
        environment="development",
        abs_host=TEST_HOST,
        abs_api_key=TEST_API_KEY,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def abs_server() -> FakeABSServer:
    return FakeABSServer()


@pytest.fixture
async def abs_client(abs_server: FakeABSServer) -> AsyncGenerator[AudiobookshelfClient, None]:
    """Real client wired to the fake server."""
    client = AudiobookshelfClient(TEST_HOST, TEST_API_KEY, transport=abs_server.transport)
    yield client
    await client.aclose()


@pytest.fixture
def item_payload() -> Callable[..., dict[str, Any]]:
    """Factory for library item JSON as the server returns it."""

    def make(
        item_id: str = "li_1",
        title: str = "The Test Book",
        tracks: list[dict[str, Any]] | None = None,
        audio_files: list[dict[str, Any]] | None = None,
        chapters: list[dict[str, Any]] | None = None,
        duration: float | None = 3600.0,
        ebook_ino: str | None = None,
    ) -> dict[str, Any]:
        if tracks is None:
            tracks = [
                {
                    "index": 1,
                    "startOffset": 0,
                    "duration": 1800.0,
                    "title": "Part 1",
                    "contentUrl": f"/s/item/{item_id}/part1.mp3",
                    "mimeType": "audio/mpeg",
                },
                {
                    "index": 2,
                    "startOffset": 1800.0,
                    "duration": 1800.0,
                    "title": "Part 2",
                    "contentUrl": f"/s/item/{item_id}/part2.mp3",
                    "mimeType": "audio/mpeg",
                },
            ]
        if chapters is None:
            chapters = [
                {"id": 0, "start": 0, "end": 1800.0, "title": "Chapter One"},
                {"id": 1, "start": 1800.0, "end": 3600.0, "title": "Chapter Two"},
            ]
        media: dict[str, Any] = {
            "duration": duration,
            "metadata": {"title": title, "authorName": "Test Author"},
            "tracks": tracks,
            "audioFiles": audio_files or [],
            "chapters": chapters,
        }
        if ebook_ino is not None:
            media["ebookFile"] = {"ino": ebook_ino, "ebookFormat": "epub"}
        return {"id": item_id, "libraryId": "lib_1", "media": media}

    return make


@pytest.fixture
def make_item(item_payload: Callable[..., dict[str, Any]]) -> Callable[..., LibraryItem]:
    """Factory for parsed library items."""

    def make(**kwargs: Any) -> LibraryItem:
        return LibraryItem.model_validate(item_payload(**kwargs))

    return make


CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


def _chapter_xhtml(title: str, paragraphs: list[str]) -> str:
    body = "".join(f"<p>{p}</p>\n" for p in paragraphs)
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        "<!DOCTYPE html>\n"
        '<html xmlns="http://www.w3.org/1999/xhtml">'
        f"<head><title>{title}</title></head>\n"
        f"<body><h1>{title}</h1>\n{body}</body></html>"
    )


def build_epub(
    chapters: list[tuple[str, list[str]]],
    *,
    toc: str | None = "nav",
    title: str = "Test Ebook",
    compression: int = zipfile.ZIP_DEFLATED,
) -> bytes:
    """
    Build an EPUB in memory.

    Chapters are written to OEBPS/text/chN.xhtml. The nav document lives in
    OEBPS/nav/ so its hrefs are relative to a different directory than the
    package document's.
    """
    manifest = []
    spine = []
    files: dict[str, str] = {}
    for i, (chapter_title, paragraphs) in enumerate(chapters, start=1):
        href = f"text/ch{i}.xhtml"
        manifest.append(f'<item id="ch{i}" href="{href}" media-type="application/xhtml+xml"/>')
        spine.append(f'<itemref idref="ch{i}"/>')
        files[f"OEBPS/{href}"] = _chapter_xhtml(chapter_title, paragraphs)

    spine_attrs = ""
    if toc == "nav":
        manifest.append('<item id="nav" href="nav/nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>')
        links = "".join(
            f'<li><a href="../text/ch{i}.xhtml">{t}</a></li>' for i, (t, _) in enumerate(chapters, start=1)
        )
        files["OEBPS/nav/nav.xhtml"] = (
            '<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops"><body>'
            f'<nav epub:type="toc"><ol>{links}</ol></nav>'
            '<nav epub:type="landmarks"><ol><li><a href="../text/ch1.xhtml">Start</a></li></ol></nav>'
            "</body></html>"
        )
    elif toc == "ncx":
        manifest.append('<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>')
        spine_attrs = ' toc="ncx"'
        points = "".join(
            f'<navPoint id="p{i}" playOrder="{i}"><navLabel><text>{t}</text></navLabel>'
            f'<content src="text/ch{i}.xhtml"/></navPoint>'
            for i, (t, _) in enumerate(chapters, start=1)
        )
        files["OEBPS/toc.ncx"] = (
            '<?xml version="1.0" encoding="UTF-8"?>'
            f'<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1"><navMap>{points}</navMap></ncx>'
        )

    files["OEBPS/content.opf"] = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="id">'
        '<metadata xmlns:dc="http://purl.org/dc/elements/1.1/">'
        f"<dc:title>{title}</dc:title></metadata>"
        f"<manifest>{''.join(manifest)}</manifest>"
        f"<spine{spine_attrs}>{''.join(spine)}</spine>"
        "</package>"
    )

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression) as zf:
        zf.writestr(zipfile.ZipInfo("mimetype"), "application/epub+zip")
        zf.writestr("META-INF/container.xml", CONTAINER_XML)
        for name, text in files.items():
            zf.writestr(name, text)
    return buffer.getvalue()


@pytest.fixture
def epub_factory() -> Callable[..., bytes]:
    """Factory for in-memory EPUB archives."""
    return build_epub


@pytest.fixture
def sample_epub(epub_factory: Callable[..., bytes]) -> bytes:
    """Three chapters whose titles match the sample item's audio chapters."""
    return epub_factory(
        [
            ("Chapter One", ["It was a bright cold day in April.", "The clocks were striking thirteen."]),
            ("Chapter Two", ["Outside, even through the shut window-pane, the world looked cold."]),
            ("Chapter Three", ["The hallway smelt of boiled cabbage and old rag mats."]),
        ]
    )


@pytest.fixture
def mock_abs_client() -> MagicMock:
    """Create mock Audiobookshelf client."""
    mock = MagicMock(spec=AudiobookshelfClient)
    mock.host = TEST_HOST
    mock.api_key = TEST_API_KEY
    mock.is_configured = True
    mock.stream_url.side_effect = lambda path: f"{TEST_HOST}{path}?token={TEST_API_KEY}"
    mock.file_url.side_effect = lambda item_id, ino: f"{TEST_HOST}/api/items/{item_id}/file/{ino}?token={TEST_API_KEY}"
    mock.fetch_item_details = AsyncMock()
    mock.fetch_cover = AsyncMock(return_value=b"\xff\xd8cover")
    mock.load_progress = AsyncMock(return_value=None)
    mock.start_playback_session = AsyncMock(
        return_value=PlaybackSessionInfo(id="sess-1", library_item_id="li_1", duration=3600.0)
    )
    mock.sync_session = AsyncMock(return_value=None)
    mock.close_session = AsyncMock(return_value=None)
    mock.save_progress = AsyncMock(return_value=None)
    return mock


@pytest.fixture
async def test_engine(test_settings: Settings) -> AsyncGenerator[Any, None]:
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_session(test_engine: Any) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async_session_maker = sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session_maker() as session:
        yield session


@pytest.fixture
async def client(
    test_session: AsyncSession,
    test_settings: Settings,
    abs_client: AudiobookshelfClient,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with dependency overrides and fresh services."""

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        yield test_session

    def override_get_settings() -> Settings:
        return test_settings

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_settings] = override_get_settings
    manager = init_services(app, abs_client)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    await manager.shutdown()
    await app.state.ws_manager.close()
    app.dependency_overrides.clear()
