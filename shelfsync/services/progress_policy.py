"""
Rules for reconciling local playback position with server-side progress.

Two independent cadences report playback to the server:

- session sync: ephemeral, cheap, every ``session_sync_interval`` while playing
  and immediately on pause/seek/close. Carries the listening *delta* since the
  previous sync.
- durable progress: the resume-on-reopen record, every
  ``progress_save_interval`` while playing and immediately on pause/close.
  Idempotent: replaying the same (currentTime, duration) pair is harmless.
"""

import time
from collections.abc import Callable
from time import monotonic
from typing import Any

FINISHED_THRESHOLD = 0.99


def compute_progress(current_time: float, duration: float) -> float:
    """Fraction listened, clamped to [0, 1]; 0 when duration is unknown."""
    if duration <= 0:
        return 0.0
    return min(1.0, max(0.0, current_time / duration))


def is_finished(progress: float) -> bool:
    return progress >= FINISHED_THRESHOLD


def resume_position(last_position: float, cushion: float = 5.0) -> float:
    """Resume target for a loaded item: the last durable position minus the cushion."""
    return max(0.0, last_position - cushion)


def now_ms() -> int:
    return int(time.time() * 1000)


def build_sync_payload(current_time: float, duration: float, time_listened: float) -> dict[str, Any]:
    return {
        "currentTime": max(0.0, current_time),
        "duration": max(0.0, duration),
        "timeListened": max(0.0, time_listened),
    }


def build_progress_payload(
    current_time: float,
    duration: float,
    time_listened: float | None = None,
    started_at: int | None = None,
    last_update: int | None = None,
) -> dict[str, Any]:
    """
    Body of the durable progress PATCH.

    ``isFinished`` is always derived from the clamped progress, never passed in.
    """
    progress = compute_progress(current_time, duration)
    payload: dict[str, Any] = {
        "duration": max(0.0, duration),
        "progress": progress,
        "currentTime": max(0.0, current_time),
        "isFinished": is_finished(progress),
        "lastUpdate": last_update if last_update is not None else now_ms(),
    }
    if time_listened is not None:
        payload["timeListened"] = max(0.0, time_listened)
    if started_at is not None:
        payload["startedAt"] = started_at
    return payload


class ListeningLedger:
    """
    Monotonic bookkeeping of listening time for one session.

    ``take_delta`` returns the time listened since the previous call and moves
    the mark forward on every call, whether or not the sync that consumes the
    delta succeeds, so a retried sync never reports the same seconds twice.
    """

    def __init__(self, clock: Callable[[], float] = monotonic) -> None:
        self._clock = clock
        self.playing = False
        self._last_sync: float | None = None
        self._play_started: float | None = None
        self._listened_closed = 0.0
        self.total_reported = 0.0
        self.started_at_ms: int | None = None

    def resume(self) -> None:
        if self.playing:
            return
        now = self._clock()
        self.playing = True
        self._last_sync = now
        self._play_started = now
        if self.started_at_ms is None:
            self.started_at_ms = now_ms()

    def take_delta(self) -> float:
        if not self.playing or self._last_sync is None:
            return 0.0
        now = self._clock()
        delta = max(0.0, now - self._last_sync)
        self._last_sync = now
        self.total_reported += delta
        return delta

    def pause(self) -> float:
        """Stop accumulating; returns the final unreported delta."""
        if not self.playing:
            return 0.0
        delta = self.take_delta()
        if self._play_started is not None:
            self._listened_closed += max(0.0, self._clock() - self._play_started)
        self.playing = False
        self._last_sync = None
        self._play_started = None
        return delta

    def listened_total(self) -> float:
        """Cumulative listening time, including the running interval."""
        total = self._listened_closed
        if self.playing and self._play_started is not None:
            total += max(0.0, self._clock() - self._play_started)
        return total

    def reset(self) -> None:
        self.playing = False
        self._last_sync = None
        self._play_started = None
        self._listened_closed = 0.0
        self.total_reported = 0.0
        self.started_at_ms = None


class SaveThrottle:
    """Limits timer-driven durable saves; forced saves always pass."""

    def __init__(self, min_interval: float, clock: Callable[[], float] = monotonic) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._last: float | None = None

    def allow(self, force: bool = False) -> bool:
        now = self._clock()
        if not force and self._last is not None and now - self._last < self.min_interval:
            return False
        self._last = now
        return True

    def reset(self) -> None:
        self._last = None
