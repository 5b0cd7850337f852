"""Unit tests for progress reporting rules."""

from typing import Any

from shelfsync.services.progress_policy import (
    ListeningLedger,
    SaveThrottle,
    build_progress_payload,
    build_sync_payload,
    compute_progress,
    is_finished,
    resume_position,
)


class TestProgressMath:
    """Tests for progress fraction, completion and resume position."""

    def test_compute_progress_clamps(self) -> None:
        assert compute_progress(1800, 3600) == 0.5
        assert compute_progress(5000, 3600) == 1.0
        assert compute_progress(-3, 3600) == 0.0

    def test_unknown_duration_is_zero_progress(self) -> None:
        assert compute_progress(100, 0) == 0.0

    def test_is_finished_threshold(self) -> None:
        assert is_finished(0.99) is True
        assert is_finished(0.989) is False

    def test_resume_position(self) -> None:
        """Test the resume cushion and its clamp at zero."""
        assert resume_position(1200.0) == 1195.0
        assert resume_position(3.0) == 0.0
        assert resume_position(100.0, cushion=0.0) == 100.0


class TestPayloads:
    """Tests for the session sync and durable progress bodies."""

    def test_sync_payload(self) -> None:
        assert build_sync_payload(12.5, 3600.0, 20.0) == {
            "currentTime": 12.5,
            "duration": 3600.0,
            "timeListened": 20.0,
        }

    def test_progress_payload_derives_finished(self) -> None:
        payload = build_progress_payload(3599.0, 3600.0, last_update=42)

        assert payload["isFinished"] is True
        assert payload["lastUpdate"] == 42
        assert "timeListened" not in payload
        assert "startedAt" not in payload

    def test_progress_payload_optional_fields(self) -> None:
        payload: dict[str, Any] = build_progress_payload(10.0, 100.0, time_listened=5.0, started_at=7)

        assert payload["progress"] == 0.1
        assert payload["isFinished"] is False
        assert payload["timeListened"] == 5.0
        assert payload["startedAt"] == 7


class TestListeningLedger:
    """Tests for listening-time deltas."""

    def test_deltas_partition_playing_time(self, clock: Any) -> None:
        """Test the reported deltas sum to exactly the time spent playing."""
        ledger = ListeningLedger(clock)
        ledger.resume()
        deltas = []
        for step in (3.0, 17.5, 0.5):
            clock.advance(step)
            deltas.append(ledger.take_delta())
        clock.advance(4.0)
        deltas.append(ledger.pause())

        assert deltas == [3.0, 17.5, 0.5, 4.0]
        assert sum(deltas) == ledger.total_reported == 25.0
        assert ledger.listened_total() == 25.0

    def test_paused_time_is_not_counted(self, clock: Any) -> None:
        ledger = ListeningLedger(clock)
        ledger.resume()
        clock.advance(10)
        ledger.pause()
        clock.advance(100)

        assert ledger.take_delta() == 0.0
        ledger.resume()
        clock.advance(5)

        assert ledger.take_delta() == 5.0
        assert ledger.listened_total() == 15.0

    def test_resume_twice_does_not_reset_mark(self, clock: Any) -> None:
        ledger = ListeningLedger(clock)
        ledger.resume()
        clock.advance(8)
        ledger.resume()

        assert ledger.take_delta() == 8.0

    def test_started_at_set_once(self, clock: Any) -> None:
        ledger = ListeningLedger(clock)
        ledger.resume()
        started = ledger.started_at_ms
        ledger.pause()
        ledger.resume()

        assert started is not None
        assert ledger.started_at_ms == started

    def test_reset(self, clock: Any) -> None:
        ledger = ListeningLedger(clock)
        ledger.resume()
        clock.advance(5)
        ledger.reset()

        assert ledger.playing is False
        assert ledger.listened_total() == 0.0
        assert ledger.started_at_ms is None


class TestSaveThrottle:
    """Tests for the timer-driven save throttle."""

    def test_throttles_unforced_saves(self, clock: Any) -> None:
        throttle = SaveThrottle(5.0, clock)

        assert throttle.allow() is True
        clock.advance(4.9)
        assert throttle.allow() is False
        clock.advance(0.2)
        assert throttle.allow() is True

    def test_forced_saves_always_pass(self, clock: Any) -> None:
        throttle = SaveThrottle(5.0, clock)

        assert throttle.allow() is True
        assert throttle.allow(force=True) is True
        assert throttle.allow() is False

    def test_reset_allows_next_save(self, clock: Any) -> None:
        throttle = SaveThrottle(5.0, clock)
        throttle.allow()
        throttle.reset()

        assert throttle.allow() is True
