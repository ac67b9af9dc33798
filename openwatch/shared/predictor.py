"""Weekday open/close predictor using a recency-weighted median.

Sessions are re-derived from the event log on every call. Each session in
the lookback window gets a weight from its whole-calendar-month distance to
today (0, 1, 2 or 3+ months), and the open and close times are estimated
independently as weighted medians. A median keeps single outlier days from
dragging the estimate while the weights still favour recent behaviour.
"""

import calendar
from collections.abc import Iterable
from datetime import date, datetime, timedelta

from openwatch.hub.settings import PredictionParameters
from openwatch.shared.models import Session, WeekdayPrediction, format_minutes, weekday_of

# Tolerance for "cumulative weight lands exactly on the halfway point"
BOUNDARY_EPSILON = 1e-9


def month_offset(day: date, today: date) -> int:
    """Whole calendar months between ``day`` and ``today`` (0 = same month)."""
    return (today.year - day.year) * 12 + (today.month - day.month)


def lookback_cutoff(today: date, months: int) -> date:
    """Same day-of-month ``months`` calendar months earlier, clamped to month end."""
    month_index = today.year * 12 + (today.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(today.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def weighted_median(samples: Iterable[tuple[float, float]]) -> float | None:
    """Weighted median of (value, weight) pairs, None if there are none.

    Walks the values in ascending order accumulating weight. The median is
    the value where the running weight first reaches half the total. When
    it lands exactly on the half (within BOUNDARY_EPSILON) and a next value
    exists, the two neighbouring values are averaged.
    """
    ordered = sorted(samples, key=lambda s: s[0])
    if not ordered:
        return None

    half = sum(weight for _, weight in ordered) / 2
    cumulative = 0.0
    for i, (value, weight) in enumerate(ordered):
        cumulative += weight
        if cumulative >= half - BOUNDARY_EPSILON:
            if abs(cumulative - half) <= BOUNDARY_EPSILON and i + 1 < len(ordered):
                return (value + ordered[i + 1][0]) / 2
            return float(value)

    return float(ordered[-1][0])


def _weighted_sessions(
    sessions: Iterable[Session],
    weekday: int,
    params: PredictionParameters,
    today: date,
) -> list[tuple[Session, float]]:
    cutoff = lookback_cutoff(today, params.lookback_months).isoformat()
    weighted = []
    for session in sessions:
        if session.date < cutoff or session.weekday != weekday:
            continue
        months_ago = month_offset(date.fromisoformat(session.date), today)
        weighted.append((session, params.weight_for(months_ago)))
    return weighted


def predict_weekday(
    sessions: Iterable[Session],
    weekday: int,
    params: PredictionParameters,
    today: date,
) -> WeekdayPrediction:
    """Predict open and close minutes for one weekday (0=Sunday .. 6=Saturday)."""
    weighted = _weighted_sessions(sessions, weekday, params, today)
    return WeekdayPrediction(
        weekday=weekday,
        open_time=weighted_median((s.open_minutes, w) for s, w in weighted),
        close_time=weighted_median((s.close_minutes, w) for s, w in weighted),
        data_points=len(weighted),
    )


def predict_week(
    sessions: Iterable[Session],
    params: PredictionParameters,
    today: date,
) -> dict[int, WeekdayPrediction]:
    """Predictions for all seven weekdays in one pass over the sessions."""
    sessions = list(sessions)
    return {weekday: predict_weekday(sessions, weekday, params, today) for weekday in range(7)}


def predict_next_transition(
    sessions: Iterable[Session],
    is_open: bool,
    params: PredictionParameters,
    now: datetime,
) -> str | None:
    """Typical time of the next flip as HH:MM, or None without history.

    While open, this is today's usual closing time; while closed, tomorrow's
    usual opening time.
    """
    today = now.date()
    if is_open:
        target = weekday_of(today.isoformat())
    else:
        target = weekday_of((today + timedelta(days=1)).isoformat())

    prediction = predict_weekday(sessions, target, params, today)
    minutes = prediction.close_time if is_open else prediction.open_time
    if minutes is None:
        return None
    return format_minutes(minutes)


def prediction_text(is_open: bool, predicted_time: str | None) -> str | None:
    """Human-readable hint appended to state announcements."""
    if predicted_time is None:
        return None
    if is_open:
        return f"closes usually around {predicted_time}"
    return f"opens usually around {predicted_time}"
