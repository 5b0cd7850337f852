"""Cancellable repeating tasks on the running event loop."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RepeatingTask:
    """
    Runs an async callback every ``interval`` seconds until stopped.

    The first call happens one interval after ``start``. A failing callback
    is logged and the schedule continues. ``stop`` cancels the pending sleep
    immediately; a callback already in flight is allowed to finish, after
    which the loop exits.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[None]],
    ) -> None:
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: asyncio.Task[None] | None = None
        self._in_callback = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the schedule; restarting an active schedule resets its phase."""
        self.stop()
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.debug("Started repeating task %s (every %.1fs)", self.name, self.interval)

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            if self._in_callback:
                return
            task.cancel()
            logger.debug("Stopped repeating task %s", self.name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self._in_callback = True
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Repeating task %s failed", self.name)
            finally:
                self._in_callback = False
            if self._task is not asyncio.current_task():
                return
