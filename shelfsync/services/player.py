"""Local audio player seam and the headless playback clock."""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from time import monotonic
from typing import Protocol


@dataclass(frozen=True)
class ResolvedTrack:
    """A playable segment of the item, positioned on the item's timeline."""

    index: int
    title: str
    url: str
    start_offset: float
    duration: float

    @property
    def end(self) -> float:
        return self.start_offset + self.duration


class AudioPlayer(Protocol):
    """What the playback manager needs from an audio output."""

    @property
    def current_time(self) -> float: ...

    @property
    def duration(self) -> float: ...

    @property
    def is_playing(self) -> bool: ...

    @property
    def rate(self) -> float: ...

    @property
    def at_end(self) -> bool: ...

    def load(self, tracks: Sequence[ResolvedTrack]) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, position: float) -> None: ...

    def set_rate(self, rate: float) -> None: ...

    def teardown(self) -> None: ...


class PlaybackClock:
    """
    Player without audio output.

    Position advances with a monotonic clock at the current rate, across the
    ordered track list, and stops advancing at the end of the last track.
    """

    def __init__(self, clock: Callable[[], float] = monotonic) -> None:
        self._clock = clock
        self._tracks: list[ResolvedTrack] = []
        self._anchor_position = 0.0
        self._anchor_time = 0.0
        self._playing = False
        self._rate = 1.0

    @property
    def tracks(self) -> list[ResolvedTrack]:
        return list(self._tracks)

    @property
    def duration(self) -> float:
        return self._tracks[-1].end if self._tracks else 0.0

    @property
    def current_time(self) -> float:
        if not self._playing:
            return self._anchor_position
        elapsed = (self._clock() - self._anchor_time) * self._rate
        return min(self.duration, self._anchor_position + elapsed)

    @property
    def is_playing(self) -> bool:
        return self._playing and not self.at_end

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def at_end(self) -> bool:
        return bool(self._tracks) and self.current_time >= self.duration

    def _reanchor(self) -> None:
        self._anchor_position = self.current_time
        self._anchor_time = self._clock()

    def load(self, tracks: Sequence[ResolvedTrack]) -> None:
        self._tracks = sorted(tracks, key=lambda t: t.start_offset)
        self._anchor_position = 0.0
        self._anchor_time = self._clock()
        self._playing = False

    def play(self) -> None:
        if not self._tracks:
            return
        self._anchor_time = self._clock()
        self._playing = True

    def pause(self) -> None:
        self._reanchor()
        self._playing = False

    def seek(self, position: float) -> None:
        self._anchor_position = min(max(0.0, position), self.duration)
        self._anchor_time = self._clock()

    def set_rate(self, rate: float) -> None:
        self._reanchor()
        self._rate = rate

    def teardown(self) -> None:
        self._tracks = []
        self._anchor_position = 0.0
        self._playing = False
        self._rate = 1.0


def track_index_at(tracks: Sequence[ResolvedTrack], position: float) -> int:
    """Index (into ``tracks``) of the track playing at ``position``."""
    if not tracks:
        return 0
    for i, track in enumerate(tracks):
        if position < track.end:
            return i
    return len(tracks) - 1
