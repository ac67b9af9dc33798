"""Session reconstruction — turns one day's transition events into a session.

Only the most recent unmatched opening is tracked. A closing pairs with it
when the gap is at least the minimum session duration; the day's session
spans the first valid opening to the last valid closing. Multiple real
open/close cycles in one day are therefore merged into a single session.
This is a known approximation that the weekday predictions rely on.
"""

from collections.abc import Iterable

from openwatch.shared.models import Session, TransitionEvent


def reconstruct_session(
    date_key: str,
    events: Iterable[TransitionEvent],
    min_duration_minutes: int,
) -> Session | None:
    """Build at most one Session from a day's events in chronological order.

    An opening without a later closing contributes nothing; a closing
    without a preceding opening is ignored.
    """
    open_time: int | None = None
    first_valid_open: int | None = None
    last_valid_close: int | None = None

    for event in events:
        minutes = event.minutes
        if event.is_opening:
            open_time = minutes
            continue

        if open_time is None:
            continue

        if minutes - open_time >= min_duration_minutes:
            if first_valid_open is None:
                first_valid_open = open_time
            last_valid_close = minutes
        open_time = None

    if first_valid_open is None or last_valid_close is None:
        return None
    return Session(date=date_key, open_minutes=first_valid_open, close_minutes=last_valid_close)


def group_by_day(events: Iterable[TransitionEvent]) -> dict[str, list[TransitionEvent]]:
    """Group an ordered event list by date_key, preserving order within each day."""
    days: dict[str, list[TransitionEvent]] = {}
    for event in events:
        days.setdefault(event.date_key, []).append(event)
    return days


def build_sessions(
    events: Iterable[TransitionEvent],
    min_duration_minutes: int,
) -> dict[str, Session]:
    """Reconstruct one session per day. Days without a valid pair are omitted."""
    sessions: dict[str, Session] = {}
    for date_key, day_events in group_by_day(events).items():
        session = reconstruct_session(date_key, day_events, min_duration_minutes)
        if session is not None:
            sessions[date_key] = session
    return sessions


def group_raw_history(events: Iterable[TransitionEvent]) -> dict[str, dict[str, list[str]]]:
    """Unfiltered per-day view: every opening and closing time, newest day first."""
    history: dict[str, dict[str, list[str]]] = {}
    for date_key, day_events in group_by_day(events).items():
        history[date_key] = {
            "open_times": [e.time_of_day for e in day_events if e.is_opening],
            "close_times": [e.time_of_day for e in day_events if not e.is_opening],
        }
    return dict(sorted(history.items(), reverse=True))
