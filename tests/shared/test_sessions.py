"""Tests for openwatch.shared.sessions — daily session reconstruction."""

from openwatch.shared.models import TransitionEvent
from openwatch.shared.sessions import build_sessions, group_by_day, group_raw_history, reconstruct_session


def _ev(date_key, time_of_day, is_opening):
    return TransitionEvent(date_key=date_key, time_of_day=time_of_day, is_opening=is_opening)


# ── reconstruct_session ─────────────────────────────────────────────────


class TestReconstructSession:
    def test_single_valid_pair(self):
        """Open at 09:00 and close at 17:30 gives one 510-minute session."""
        events = [_ev("2024-01-08", "09:00", True), _ev("2024-01-08", "17:30", False)]
        session = reconstruct_session("2024-01-08", events, 30)
        assert session is not None
        assert session.open_minutes == 540
        assert session.close_minutes == 1050
        assert session.duration_minutes == 510
        assert session.weekday == 1  # Monday

    def test_pair_shorter_than_minimum_is_dropped(self):
        """A 10-minute blip with a 30-minute minimum yields no session."""
        events = [_ev("2024-01-08", "09:00", True), _ev("2024-01-08", "09:10", False)]
        assert reconstruct_session("2024-01-08", events, 30) is None

    def test_duration_exactly_at_minimum_counts(self):
        events = [_ev("2024-01-08", "09:00", True), _ev("2024-01-08", "09:30", False)]
        session = reconstruct_session("2024-01-08", events, 30)
        assert session is not None
        assert session.duration_minutes == 30

    def test_zero_minimum_accepts_instant_flip(self):
        events = [_ev("2024-01-08", "09:00", True), _ev("2024-01-08", "09:00", False)]
        session = reconstruct_session("2024-01-08", events, 0)
        assert session is not None
        assert session.duration_minutes == 0

    def test_multiple_cycles_are_merged(self):
        """First valid open through last valid close span the whole day."""
        events = [
            _ev("2024-01-08", "08:00", True),
            _ev("2024-01-08", "12:00", False),
            _ev("2024-01-08", "13:00", True),
            _ev("2024-01-08", "18:00", False),
        ]
        session = reconstruct_session("2024-01-08", events, 30)
        assert session.open_minutes == 480
        assert session.close_minutes == 1080

    def test_short_cycle_between_valid_cycles_is_skipped(self):
        events = [
            _ev("2024-01-08", "08:00", True),
            _ev("2024-01-08", "08:05", False),
            _ev("2024-01-08", "09:00", True),
            _ev("2024-01-08", "17:00", False),
        ]
        session = reconstruct_session("2024-01-08", events, 30)
        assert session.open_minutes == 540
        assert session.close_minutes == 1020

    def test_leading_close_is_ignored(self):
        """A closing with no preceding opening (e.g. after midnight) is skipped."""
        events = [
            _ev("2024-01-08", "00:30", False),
            _ev("2024-01-08", "10:00", True),
            _ev("2024-01-08", "16:00", False),
        ]
        session = reconstruct_session("2024-01-08", events, 30)
        assert session.open_minutes == 600
        assert session.close_minutes == 960

    def test_trailing_open_is_ignored(self):
        events = [
            _ev("2024-01-08", "10:00", True),
            _ev("2024-01-08", "16:00", False),
            _ev("2024-01-08", "20:00", True),
        ]
        session = reconstruct_session("2024-01-08", events, 30)
        assert session.close_minutes == 960

    def test_repeated_opening_uses_most_recent(self):
        """Only the latest unmatched opening pairs with the next closing."""
        events = [
            _ev("2024-01-08", "08:00", True),
            _ev("2024-01-08", "09:00", True),
            _ev("2024-01-08", "17:00", False),
        ]
        session = reconstruct_session("2024-01-08", events, 30)
        assert session.open_minutes == 540

    def test_only_open_events(self):
        events = [_ev("2024-01-08", "08:00", True)]
        assert reconstruct_session("2024-01-08", events, 30) is None

    def test_empty_day(self):
        assert reconstruct_session("2024-01-08", [], 30) is None

    def test_is_deterministic(self):
        """Same input always yields an identical session."""
        events = [_ev("2024-01-08", "09:00", True), _ev("2024-01-08", "17:30", False)]
        first = reconstruct_session("2024-01-08", events, 30)
        second = reconstruct_session("2024-01-08", events, 30)
        assert first == second


# ── build_sessions ──────────────────────────────────────────────────────


class TestBuildSessions:
    def test_one_session_per_day(self):
        events = [
            _ev("2024-01-07", "10:00", True),
            _ev("2024-01-07", "14:00", False),
            _ev("2024-01-08", "09:00", True),
            _ev("2024-01-08", "09:10", False),
            _ev("2024-01-09", "09:00", True),
            _ev("2024-01-09", "18:00", False),
        ]
        sessions = build_sessions(events, 30)
        assert set(sessions) == {"2024-01-07", "2024-01-09"}
        for session in sessions.values():
            assert session.close_minutes - session.open_minutes >= 30

    def test_to_dict_shape(self):
        events = [_ev("2024-01-07", "10:00", True), _ev("2024-01-07", "14:00", False)]
        sessions = build_sessions(events, 30)
        assert sessions["2024-01-07"].to_dict() == {
            "openTime": 600,
            "closeTime": 840,
            "duration": 240,
            "weekday": 0,  # Sunday
        }

    def test_empty_input(self):
        assert build_sessions([], 30) == {}


# ── grouping helpers ────────────────────────────────────────────────────


class TestGrouping:
    def test_group_by_day_preserves_order(self):
        events = [
            _ev("2024-01-07", "10:00", True),
            _ev("2024-01-08", "09:00", True),
            _ev("2024-01-07", "14:00", False),
        ]
        days = group_by_day(events)
        assert [e.time_of_day for e in days["2024-01-07"]] == ["10:00", "14:00"]
        assert len(days["2024-01-08"]) == 1

    def test_raw_history_newest_first(self):
        """Raw history keeps every event, including ones no session uses."""
        events = [
            _ev("2024-01-07", "10:00", True),
            _ev("2024-01-07", "10:05", False),
            _ev("2024-01-08", "09:00", True),
        ]
        history = group_raw_history(events)
        assert list(history) == ["2024-01-08", "2024-01-07"]
        assert history["2024-01-07"] == {"open_times": ["10:00"], "close_times": ["10:05"]}
        assert history["2024-01-08"] == {"open_times": ["09:00"], "close_times": []}
