"""Async client for the Audiobookshelf REST API."""

import logging
from typing import Any
from urllib.parse import quote, urlencode

import httpx
from pydantic import TypeAdapter, ValidationError

from shelfsync.core.config import get_settings
from shelfsync.services.abs_models import (
    DeviceInfo,
    Library,
    LibraryItem,
    MediaProgress,
    PlaybackSessionInfo,
)
from shelfsync.services.progress_policy import build_progress_payload, build_sync_payload

logger = logging.getLogger(__name__)

_LIBRARIES_ADAPTER = TypeAdapter(list[Library])
_ITEMS_ADAPTER = TypeAdapter(list[LibraryItem])


class AudiobookshelfError(Exception):
    """Base exception for Audiobookshelf operations."""
    pass


class ConfigurationError(AudiobookshelfError):
    """Host or API key missing; the user has to (re)authenticate."""
    pass


class ServerError(AudiobookshelfError):
    """The server answered with a non-success status.

    Attributes:
        status: HTTP status code.
        body: Leading part of the response body, for logging.
    """

    def __init__(self, status: int, body: str = "", path: str = ""):
        self.status = status
        self.body = body
        self.path = path
        super().__init__(f"Server returned {status} for {path or 'request'}")


class DecodingError(AudiobookshelfError):
    """The response did not have the expected shape."""
    pass


class TransportError(AudiobookshelfError):
    """The request never produced a response (DNS, connect, timeout...)."""
    pass


class AudiobookshelfClient:
    """Stateless wrapper around the server's REST surface.

    Holds only connection parameters; every call is independently retryable
    except ``start_playback_session``, which allocates a new session on each
    call.
    """

    def __init__(
        self,
        host: str | None = None,
        api_key: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            host: Server base URL (defaults to settings.abs_host).
            api_key: Bearer token (defaults to settings.abs_api_key).
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests inject a MockTransport).
        """
        self.settings = get_settings()
        self.host = (host if host is not None else self.settings.abs_host).strip()
        self.api_key = (api_key if api_key is not None else self.settings.abs_api_key).strip()
        self.timeout = timeout or self.settings.request_timeout
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    def configure(self, host: str, api_key: str) -> None:
        """Replace the connection parameters used by subsequent calls."""
        self.host = host.strip()
        self.api_key = api_key.strip()

    @property
    def is_configured(self) -> bool:
        return bool(self.host) and bool(self.api_key)

    @property
    def http(self) -> httpx.AsyncClient:
        """Lazy-load the underlying httpx client."""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _require_config(self) -> None:
        if not self.host or not self.api_key:
            raise ConfigurationError("Host and API key required")

    def _url(self, path: str) -> str:
        return f"{self.host.rstrip('/')}{path}"

    def _headers(self, accept_json: bool = True) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if accept_json:
            headers["Accept"] = "application/json"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        accept_json: bool = True,
    ) -> httpx.Response:
        self._require_config()
        try:
            response = await self.http.request(
                method,
                self._url(path),
                params=params,
                json=json,
                headers=self._headers(accept_json),
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if not response.is_success:
            body = response.text[:500] if response.content else ""
            logger.debug("%s %s -> %d: %s", method, path, response.status_code, body)
            raise ServerError(response.status_code, body=body, path=path)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise DecodingError(f"Response is not valid JSON: {e}") from e

    # ------------------------------------------------------------------
    # Data fetches (failures propagate to the caller)
    # ------------------------------------------------------------------

    async def connect(self) -> list[Library]:
        """Validate host/API key by listing libraries."""
        libraries = await self.list_libraries()
        logger.info("Connected to %s (%d libraries)", self.host, len(libraries))
        return libraries

    async def list_libraries(self) -> list[Library]:
        """
        Fetch all libraries visible to the user.

        Returns:
            The complete list; never a partially decoded one.

        Raises:
            ConfigurationError, ServerError, TransportError, DecodingError.
        """
        payload = self._json(await self._request("GET", "/api/libraries"))
        if not isinstance(payload, dict) or "libraries" not in payload:
            raise DecodingError("Unexpected JSON structure for libraries")
        try:
            return _LIBRARIES_ADAPTER.validate_python(payload["libraries"])
        except ValidationError as e:
            raise DecodingError(f"Invalid library payload: {e}") from e

    async def list_items(
        self,
        library_id: str,
        limit: int | None = None,
        sort_by: str | None = None,
        desc: bool | None = None,
    ) -> list[LibraryItem]:
        """
        Fetch items of one library.

        Args:
            library_id: Library to list.
            limit: Maximum number of items (defaults to settings.item_fetch_limit).
            sort_by: Server sort key, e.g. "addedAt" or "media.metadata.title".
            desc: Sort descending.
        """
        params = {
            "limit": limit if limit is not None else self.settings.item_fetch_limit,
            "sort": sort_by or self.settings.item_sort,
            "desc": int(self.settings.item_sort_desc if desc is None else desc),
        }
        path = f"/api/libraries/{quote(library_id, safe='')}/items"
        payload = self._json(await self._request("GET", path, params=params))
        if not isinstance(payload, dict) or "results" not in payload:
            raise DecodingError("Unexpected JSON structure for library items")
        try:
            return _ITEMS_ADAPTER.validate_python(payload["results"])
        except ValidationError as e:
            raise DecodingError(f"Invalid library item payload: {e}") from e

    async def fetch_item_details(self, item_id: str) -> LibraryItem:
        """Fetch the full item, including tracks, audio files and chapters."""
        path = f"/api/items/{quote(item_id, safe='')}"
        payload = self._json(await self._request("GET", path, params={"expanded": 1}))
        try:
            return LibraryItem.model_validate(payload)
        except ValidationError as e:
            raise DecodingError(f"Invalid item payload for {item_id}: {e}") from e

    async def fetch_cover(self, item_id: str) -> bytes:
        """Fetch cover art bytes; caching is the caller's concern."""
        path = f"/api/items/{quote(item_id, safe='')}/cover"
        response = await self._request("GET", path, accept_json=False)
        return response.content

    async def fetch_ebook(self, item_id: str, ino: str) -> bytes:
        """Download the raw ebook file of an item."""
        path = f"/api/items/{quote(item_id, safe='')}/ebook/{quote(ino, safe='')}"
        response = await self._request("GET", path, accept_json=False)
        return response.content

    async def load_progress(self, item_id: str) -> MediaProgress | None:
        """
        Read durable progress for an item.

        Returns:
            The progress record, or None when the server has none (404).
        """
        path = f"/api/me/progress/{quote(item_id, safe='')}"
        try:
            response = await self._request("GET", path)
        except ServerError as e:
            if e.status == 404:
                return None
            raise
        try:
            return MediaProgress.model_validate(self._json(response))
        except ValidationError as e:
            raise DecodingError(f"Invalid progress payload for {item_id}: {e}") from e

    # ------------------------------------------------------------------
    # Sessions and progress (callers treat failures as telemetry)
    # ------------------------------------------------------------------

    def device_info(self) -> DeviceInfo:
        return DeviceInfo(
            device_id=self.settings.device_name,
            client_name=self.settings.client_name,
            client_version=self.settings.client_version,
        )

    async def start_playback_session(
        self,
        item_id: str,
        device_info: DeviceInfo | None = None,
    ) -> PlaybackSessionInfo:
        """
        Open a playback session on the server.

        Every call allocates a new session which must eventually be closed.
        """
        body = {
            "deviceInfo": (device_info or self.device_info()).as_payload(),
            "supportedMimeTypes": list(self.settings.supported_mime_types),
            "forceDirectPlay": True,
            "mediaPlayer": self.settings.client_name,
        }
        path = f"/api/items/{quote(item_id, safe='')}/play"
        payload = self._json(await self._request("POST", path, json=body))
        try:
            return PlaybackSessionInfo.model_validate(payload)
        except ValidationError as e:
            raise DecodingError(f"Invalid play session payload for {item_id}: {e}") from e

    async def sync_session(
        self,
        session_id: str,
        current_time: float,
        time_listened: float,
        duration: float,
    ) -> None:
        """Report incremental listening for an open session."""
        path = f"/api/session/{quote(session_id, safe='')}/sync"
        await self._request("POST", path, json=build_sync_payload(current_time, duration, time_listened))

    async def close_session(
        self,
        session_id: str,
        current_time: float,
        time_listened: float,
        duration: float,
    ) -> None:
        """Close a session, reporting its final position."""
        path = f"/api/session/{quote(session_id, safe='')}/close"
        await self._request("POST", path, json=build_sync_payload(current_time, duration, time_listened))

    async def save_progress(
        self,
        item_id: str,
        current_time: float,
        duration: float,
        time_listened: float | None = None,
        started_at: int | None = None,
    ) -> None:
        """PATCH durable progress; replaying the same pair is always safe."""
        path = f"/api/me/progress/{quote(item_id, safe='')}"
        body = build_progress_payload(
            current_time,
            duration,
            time_listened=time_listened,
            started_at=started_at,
        )
        await self._request("PATCH", path, json=body)

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def stream_url(self, content_url: str) -> str:
        """Absolute, token-authenticated URL for a track's content path."""
        separator = "&" if "?" in content_url else "?"
        return f"{self._url(content_url)}{separator}{urlencode({'token': self.api_key})}"

    def file_url(self, item_id: str, ino: str) -> str:
        """Direct URL to one of an item's audio files."""
        path = f"/api/items/{quote(item_id, safe='')}/file/{quote(ino, safe='')}"
        return self.stream_url(path)
