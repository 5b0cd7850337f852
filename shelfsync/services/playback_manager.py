"""Playback session manager: the single authority for what plays and where."""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from time import monotonic
from typing import Any, Protocol

from shelfsync.core.config import get_settings
from shelfsync.services.abs_client import AudiobookshelfClient, AudiobookshelfError
from shelfsync.services.abs_models import Chapter, LibraryItem
from shelfsync.services.cover_cache import CoverCache
from shelfsync.services.player import AudioPlayer, PlaybackClock, ResolvedTrack, track_index_at
from shelfsync.services.progress_policy import ListeningLedger, SaveThrottle, resume_position
from shelfsync.services.scheduling import RepeatingTask

logger = logging.getLogger(__name__)

RATE_PRESETS = (1.0, 1.25, 1.5, 1.75, 2.0)
MIN_RATE = 0.5
MAX_RATE = 3.0


class PlaybackError(Exception):
    """Base exception for playback operations."""
    pass


class NoPlayableAudio(PlaybackError):
    """The item has neither tracks nor audio files.

    Attributes:
        item_id: The item that could not be loaded.
    """

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"No audio available for item {item_id}")


class NoItemLoaded(PlaybackError):
    """A transport control was used while nothing is loaded."""
    pass


class PlaybackState(str, Enum):
    """Per-item playback state."""

    IDLE = "idle"
    LOADED = "loaded"
    PLAYING = "playing"
    PAUSED = "paused"


class PlaybackEvent(str, Enum):
    """Notifications emitted to subscribers, in emission order."""

    ITEM_CHANGED = "item_changed"
    TIME_UPDATED = "time_updated"
    PLAY_STATE_CHANGED = "play_state_changed"
    TRACK_CHANGED = "track_changed"
    RATE_CHANGED = "rate_changed"
    SLEEP_UPDATED = "sleep_updated"
    LOAD_FAILED = "load_failed"


class PlaybackListener(Protocol):
    """Protocol for playback event subscribers."""

    async def __call__(self, event: PlaybackEvent, payload: dict[str, Any]) -> None:
        """
        Called for every playback event.

        Args:
            event: What changed.
            payload: JSON-serializable details of the change.
        """
        ...


class PlaybackManager:
    """
    Owns the current item, its session and the reporting timers.

    One instance is constructed at startup and injected wherever playback is
    controlled. All state is confined to the event loop that drives it.
    """

    def __init__(
        self,
        client: AudiobookshelfClient,
        player: AudioPlayer | None = None,
        *,
        cover_cache: CoverCache | None = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        """
        Initialize the manager.

        Args:
            client: Server API client.
            player: Audio output (defaults to a headless PlaybackClock).
            cover_cache: Optional cover cache warmed on load.
            clock: Monotonic clock, injectable for tests.
        """
        self.settings = get_settings()
        self.client = client
        self.player: AudioPlayer = player or PlaybackClock(clock)
        self.cover_cache = cover_cache
        self._clock = clock

        self.current_item: LibraryItem | None = None
        self.state = PlaybackState.IDLE
        self.loading_status = "Ready"
        self.tracks: list[ResolvedTrack] = []
        self.preferred_rate = self.settings.default_playback_rate

        self._pending_resume: float | None = None
        self._session_id: str | None = None
        self._session_starting = False
        self._generation = 0
        self._last_track_index = 0
        self._sleep_deadline: float | None = None
        self._lock = asyncio.Lock()
        self._listeners: list[PlaybackListener] = []

        self._ledger = ListeningLedger(clock)
        self._throttle = SaveThrottle(self.settings.min_progress_save_interval, clock)

        self._sync_timer = RepeatingTask(
            "playback-session-sync", self.settings.session_sync_interval, self._periodic_sync
        )
        self._save_timer = RepeatingTask(
            "playback-progress-save", self.settings.progress_save_interval, self._periodic_save
        )
        self._ticker = RepeatingTask(
            "playback-position-tick", self.settings.position_tick_interval, self._tick
        )

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: PlaybackListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, event: PlaybackEvent, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event, payload)
            except Exception as e:
                logger.warning("Playback listener failed on %s: %s", event.value, e)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def pending_resume(self) -> float | None:
        return self._pending_resume

    @property
    def is_playing(self) -> bool:
        return self.state == PlaybackState.PLAYING

    @property
    def current_time(self) -> float:
        return self.player.current_time

    @property
    def duration(self) -> float:
        player_duration = self.player.duration
        if player_duration > 0:
            return player_duration
        if self.current_item and self.current_item.duration:
            return self.current_item.duration
        return 0.0

    @property
    def rate(self) -> float:
        return self.player.rate

    @property
    def has_audio_stream(self) -> bool:
        return bool(self.tracks)

    @property
    def current_track_index(self) -> int:
        return track_index_at(self.tracks, self.current_time)

    @property
    def current_track(self) -> ResolvedTrack | None:
        if not self.tracks:
            return None
        return self.tracks[self.current_track_index]

    @property
    def current_chapter(self) -> Chapter | None:
        """Audio chapter of the current item containing the position."""
        if self.current_item is None:
            return None
        position = self.current_time
        for chapter in self.current_item.chapters:
            if chapter.start <= position < chapter.end:
                return chapter
        return None

    @property
    def sleep_remaining(self) -> float | None:
        if self._sleep_deadline is None:
            return None
        return max(0.0, self._sleep_deadline - self._clock())

    def snapshot(self) -> dict[str, Any]:
        """JSON-serializable view of the whole playback state."""
        item = self.current_item
        track = self.current_track
        chapter = self.current_chapter
        return {
            "state": self.state.value,
            "item_id": item.id if item else None,
            "title": item.title if item else None,
            "is_playing": self.is_playing,
            "current_time": self.current_time,
            "duration": self.duration,
            "rate": self.rate,
            "current_track_index": self.current_track_index,
            "current_track_title": track.title if track else "",
            "has_audio_stream": self.has_audio_stream,
            "loading_status": self.loading_status,
            "current_chapter_start": chapter.start if chapter else 0.0,
            "current_chapter_duration": (chapter.end - chapter.start) if chapter else 0.0,
            "sleep_remaining": self.sleep_remaining,
            "session_id": self._session_id,
        }

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_item(self, item: LibraryItem) -> None:
        """
        Make ``item`` the current item without starting playback.

        The resume position is fetched and cached but only applied by the
        first ``play``. A newer ``load_item`` started while this one awaits
        the network wins; this call then returns without touching state.

        Raises:
            NoPlayableAudio: The item has no tracks and no audio files.
            AudiobookshelfError: Full details were needed for the audio and could not be fetched.
        """
        self._generation += 1
        generation = self._generation
        logger.info("Loading item %s (%s)", item.id, item.title)

        if item.duration is None or not (item.tracks or item.audio_files):
            try:
                item = await self.client.fetch_item_details(item.id)
                logger.debug("Fetched full details for %s (duration=%s)", item.id, item.duration)
            except AudiobookshelfError as e:
                logger.warning("Failed to fetch full details for %s: %s", item.id, e)
                # Only a missing duration can be tolerated; without audio the fetch failure is the error.
                if not (item.tracks or item.audio_files):
                    raise
            if generation != self._generation:
                logger.info("Discarding stale load of %s", item.id)
                return

        await self._stop_current()
        if generation != self._generation:
            logger.info("Discarding stale load of %s", item.id)
            return

        self.loading_status = f"Loading {item.title}..."
        tracks = self._resolve_tracks(item)
        if not tracks:
            self.loading_status = "No audio available"
            logger.warning("Item %s has no playable audio", item.id)
            await self._emit(PlaybackEvent.LOAD_FAILED, {"item_id": item.id, "reason": "no_playable_audio"})
            raise NoPlayableAudio(item.id)

        self.current_item = item
        self.tracks = tracks
        self.player.load(tracks)
        self.player.set_rate(self.preferred_rate)
        self._last_track_index = 0
        self.state = PlaybackState.LOADED
        self.loading_status = "Ready"
        await self._emit(
            PlaybackEvent.ITEM_CHANGED,
            {"item_id": item.id, "title": item.title, "duration": self.duration},
        )

        if self.cover_cache is not None:
            try:
                await self.cover_cache.get(item.id)
            except AudiobookshelfError as e:
                logger.warning("Failed to load cover art for %s: %s", item.id, e)

        last_position = await self._fetch_last_position(item)
        if generation != self._generation:
            return
        if last_position is not None and self.state == PlaybackState.LOADED:
            self._pending_resume = resume_position(last_position, self.settings.resume_cushion_seconds)
            logger.info(
                "Cached resume position %.1fs (server: %.1fs) for %s",
                self._pending_resume,
                last_position,
                item.id,
            )

    async def _fetch_last_position(self, item: LibraryItem) -> float | None:
        try:
            progress = await self.client.load_progress(item.id)
        except AudiobookshelfError as e:
            logger.warning("Failed to load progress for %s: %s", item.id, e)
            progress = item.user_media_progress
        if progress is None or progress.current_time <= 0:
            return None
        return progress.current_time

    def _resolve_tracks(self, item: LibraryItem) -> list[ResolvedTrack]:
        """Prefer the item's tracks; fall back to its first audio file."""
        if item.tracks:
            resolved: list[ResolvedTrack] = []
            offset = 0.0
            for i, track in enumerate(sorted(item.tracks, key=lambda t: t.index)):
                resolved.append(
                    ResolvedTrack(
                        index=i,
                        title=track.title or f"Track {i + 1}",
                        url=self.client.stream_url(track.content_url),
                        start_offset=offset,
                        duration=track.duration,
                    )
                )
                offset += track.duration
            return resolved

        if item.audio_files:
            first = sorted(item.audio_files, key=lambda f: f.index)[0]
            return [
                ResolvedTrack(
                    index=0,
                    title=item.title,
                    url=self.client.file_url(item.id, first.ino),
                    start_offset=0.0,
                    duration=first.duration or item.duration or 0.0,
                )
            ]
        return []

    # ------------------------------------------------------------------
    # Transport controls
    # ------------------------------------------------------------------

    def _require_item(self) -> LibraryItem:
        if self.current_item is None:
            raise NoItemLoaded("No item loaded")
        return self.current_item

    async def play(self) -> None:
        """Start or resume playback, applying the cached resume position once."""
        self._require_item()
        if self.state == PlaybackState.PLAYING:
            return

        resume, self._pending_resume = self._pending_resume, None
        if resume is not None and resume > 0:
            logger.info("Applying cached resume position %.1fs", resume)
            self.player.seek(resume)

        self.player.play()
        self._ledger.resume()
        self.state = PlaybackState.PLAYING
        self._sync_timer.start()
        self._save_timer.start()
        self._ticker.start()
        await self._emit(PlaybackEvent.PLAY_STATE_CHANGED, {"is_playing": True, "state": self.state.value})

        if self._session_id is None:
            await self._start_session()

    async def pause(self) -> None:
        """Pause and immediately flush one session sync and one durable save."""
        if self.state != PlaybackState.PLAYING:
            return
        self.player.pause()
        self._stop_timers()
        self.state = PlaybackState.PAUSED
        time_listened = self._ledger.pause()
        await self._emit(PlaybackEvent.PLAY_STATE_CHANGED, {"is_playing": False, "state": self.state.value})
        await self._sync_now(time_listened)
        await self._save_progress_now(force=True)

    async def toggle_play_pause(self) -> None:
        if self.state == PlaybackState.PLAYING:
            await self.pause()
        else:
            await self.play()

    async def seek(self, seconds: float) -> float:
        """
        Move to ``seconds`` (clamped to the item) and report it at once.

        The local position changes before any network call. The immediate
        sync reports no listening time and leaves the delta accounting of the
        periodic sync untouched.

        Returns:
            The clamped position.
        """
        self._require_item()
        target = min(max(0.0, seconds), self.duration)
        self.player.seek(target)
        self._pending_resume = None
        await self._emit(PlaybackEvent.TIME_UPDATED, {"current_time": target, "duration": self.duration})
        await self._check_track_change()
        await self._sync_now(0.0)
        return target

    async def skip(self, by_seconds: float) -> float:
        self._require_item()
        return await self.seek(self.current_time + by_seconds)

    async def next_chapter(self) -> None:
        """Jump to the next track; past the last track playback just stops."""
        self._require_item()
        index = self.current_track_index
        if index + 1 < len(self.tracks):
            await self.seek(self.tracks[index + 1].start_offset)
        else:
            logger.info("Next chapter requested on the last track; stopping playback")
            await self.pause()

    async def previous_chapter(self) -> None:
        """Restart the current track, or go to the previous one near its start."""
        self._require_item()
        index = self.current_track_index
        track = self.tracks[index]
        elapsed = self.current_time - track.start_offset
        if elapsed > self.settings.previous_restart_threshold or index == 0:
            await self.seek(track.start_offset)
        else:
            await self.seek(self.tracks[index - 1].start_offset)

    async def set_rate(self, rate: float) -> float:
        clamped = min(max(MIN_RATE, rate), MAX_RATE)
        self.player.set_rate(clamped)
        self.preferred_rate = clamped
        await self._emit(PlaybackEvent.RATE_CHANGED, {"rate": clamped})
        return clamped

    async def toggle_rate(self) -> float:
        """Cycle through the rate presets."""
        current = self.rate
        next_rate = RATE_PRESETS[0]
        for preset in RATE_PRESETS:
            if preset > current + 1e-6:
                next_rate = preset
                break
        return await self.set_rate(next_rate)

    async def set_sleep(self, minutes: float) -> None:
        """Pause automatically after ``minutes``."""
        self._sleep_deadline = self._clock() + minutes * 60.0
        logger.info("Sleep timer set for %.1f minutes", minutes)
        await self._emit(PlaybackEvent.SLEEP_UPDATED, {"remaining": self.sleep_remaining})

    async def cancel_sleep(self) -> None:
        self._sleep_deadline = None
        await self._emit(PlaybackEvent.SLEEP_UPDATED, {"remaining": None})

    async def stop(self) -> None:
        """Stop playback, flush progress and close the session."""
        had_item = self.current_item is not None
        self._generation += 1
        await self._stop_current()
        if had_item:
            await self._emit(PlaybackEvent.ITEM_CHANGED, {"item_id": None, "title": None, "duration": 0.0})

    async def shutdown(self) -> None:
        """Tear down at application exit, closing any open session."""
        logger.info("Shutting down playback manager")
        await self.stop()

    # ------------------------------------------------------------------
    # Session and progress reporting
    # ------------------------------------------------------------------

    async def _start_session(self) -> None:
        item = self.current_item
        if item is None or self._session_starting:
            return
        generation = self._generation
        self._session_starting = True
        try:
            info = await self.client.start_playback_session(item.id)
        except AudiobookshelfError as e:
            logger.warning("Failed to start playback session for %s: %s", item.id, e)
            return
        finally:
            self._session_starting = False

        if generation != self._generation or self.current_item is not item:
            logger.info("Discarding session %s opened for a replaced item", info.id)
            try:
                await self.client.close_session(info.id, 0.0, 0.0, info.duration)
            except AudiobookshelfError as e:
                logger.warning("Failed to close orphaned session %s: %s", info.id, e)
            return

        self._session_id = info.id
        logger.info("Playback session started: %s", info.id)

    async def _sync_now(self, time_listened: float) -> None:
        session_id = self._session_id
        if session_id is None:
            return
        try:
            await self.client.sync_session(session_id, self.current_time, time_listened, self.duration)
        except AudiobookshelfError as e:
            logger.warning("Session sync failed for %s: %s", session_id, e)

    async def _save_progress_now(self, force: bool) -> None:
        item = self.current_item
        if item is None:
            return
        duration = self.duration
        if duration <= 0:
            logger.debug("Skipping progress save for %s: unknown duration", item.id)
            return
        if not self._throttle.allow(force):
            logger.debug("Progress save throttled for %s", item.id)
            return
        try:
            await self.client.save_progress(
                item.id,
                self.current_time,
                duration,
                time_listened=self._ledger.listened_total(),
                started_at=self._ledger.started_at_ms,
            )
        except AudiobookshelfError as e:
            logger.warning("Progress save failed for %s: %s", item.id, e)

    async def _close_session(self, time_listened: float) -> None:
        session_id, self._session_id = self._session_id, None
        if session_id is None:
            return
        try:
            await self.client.close_session(session_id, self.current_time, time_listened, self.duration)
            logger.info("Playback session closed: %s", session_id)
        except AudiobookshelfError as e:
            logger.warning("Failed to close session %s: %s", session_id, e)

    async def _periodic_sync(self) -> None:
        time_listened = self._ledger.take_delta()
        if self._session_id is None:
            # No session could be opened: keep durable progress current instead.
            await self._save_progress_now(force=False)
            return
        await self._sync_now(time_listened)

    async def _periodic_save(self) -> None:
        await self._save_progress_now(force=False)

    async def _check_track_change(self) -> None:
        index = self.current_track_index
        if index != self._last_track_index:
            self._last_track_index = index
            track = self.tracks[index]
            await self._emit(PlaybackEvent.TRACK_CHANGED, {"index": index, "title": track.title})

    async def _tick(self) -> None:
        if self.state != PlaybackState.PLAYING:
            return
        await self._emit(
            PlaybackEvent.TIME_UPDATED,
            {"current_time": self.current_time, "duration": self.duration},
        )
        await self._check_track_change()

        if self._sleep_deadline is not None and self._clock() >= self._sleep_deadline:
            logger.info("Sleep timer expired; pausing")
            self._sleep_deadline = None
            await self._emit(PlaybackEvent.SLEEP_UPDATED, {"remaining": None})
            await self.pause()
            return

        if self.player.at_end:
            logger.info("Reached end of %s", self.current_item.id if self.current_item else "item")
            await self.pause()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _stop_timers(self) -> None:
        self._sync_timer.stop()
        self._save_timer.stop()
        self._ticker.stop()

    async def _stop_current(self) -> None:
        """Flush and close everything for the current item, then reset."""
        async with self._lock:
            self._stop_timers()
            time_listened = 0.0
            if self.current_item is not None:
                logger.info("Stopping current playback of %s", self.current_item.id)
                if self.state == PlaybackState.PLAYING:
                    self.player.pause()
                time_listened = self._ledger.pause()
                await self._save_progress_now(force=True)
            await self._close_session(time_listened)

            self.player.teardown()
            self.current_item = None
            self.tracks = []
            self.state = PlaybackState.IDLE
            self.loading_status = "Ready"
            self._pending_resume = None
            self._sleep_deadline = None
            self._last_track_index = 0
            self._ledger.reset()
            self._throttle.reset()
