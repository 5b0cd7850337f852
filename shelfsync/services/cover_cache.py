"""Write-once cover art cache keyed by item id."""

import asyncio
import logging

from shelfsync.services.abs_client import AudiobookshelfClient

logger = logging.getLogger(__name__)


class CoverCache:
    """Fetches each cover at most once; concurrent requests share one fetch."""

    def __init__(self, client: AudiobookshelfClient) -> None:
        self.client = client
        self._covers: dict[str, bytes] = {}
        self._lock = asyncio.Lock()
        self._inflight: dict[str, asyncio.Task[bytes]] = {}

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._covers

    def peek(self, item_id: str) -> bytes | None:
        return self._covers.get(item_id)

    async def get(self, item_id: str) -> bytes:
        """
        Return the cover bytes for an item, fetching on first use.

        Raises:
            AudiobookshelfError: If the fetch fails (nothing is cached then).
        """
        async with self._lock:
            cached = self._covers.get(item_id)
            if cached is not None:
                return cached
            task = self._inflight.get(item_id)
            if task is None:
                task = asyncio.create_task(self.client.fetch_cover(item_id), name=f"cover-{item_id}")
                self._inflight[item_id] = task

        try:
            data = await task
        finally:
            async with self._lock:
                self._inflight.pop(item_id, None)

        async with self._lock:
            # setdefault keeps the first stored value (write-once).
            return self._covers.setdefault(item_id, data)

    def clear(self) -> None:
        self._covers.clear()
