"""Shared data models for transition events, sessions and predictions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def weekday_of(date_key: str) -> int:
    """Weekday for a YYYY-MM-DD key, 0=Sunday .. 6=Saturday."""
    return (date.fromisoformat(date_key).weekday() + 1) % 7


def to_minutes(time_of_day: str) -> int:
    """Convert HH:MM to minutes since midnight."""
    hours, minutes = time_of_day.split(":")
    return int(hours) * 60 + int(minutes)


def format_minutes(minutes: float) -> str:
    """Render minutes since midnight as HH:MM, rounded to the nearest minute."""
    total = int(round(minutes))
    return f"{total // 60:02d}:{total % 60:02d}"


@dataclass(frozen=True)
class TransitionEvent:
    """A recorded open/close flip of the monitored resource."""

    date_key: str  # YYYY-MM-DD, local calendar date
    time_of_day: str  # HH:MM, local time
    is_opening: bool
    id: int | None = None
    logged_at: str | None = None  # ISO 8601 insert time

    @property
    def weekday(self) -> int:
        return weekday_of(self.date_key)

    @property
    def minutes(self) -> int:
        return to_minutes(self.time_of_day)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date_key": self.date_key,
            "time_logged": self.time_of_day,
            "is_opening": self.is_opening,
            "logged_at": self.logged_at,
        }


@dataclass(frozen=True)
class Session:
    """One merged open-to-close interval for a calendar day."""

    date: str
    open_minutes: int
    close_minutes: int

    @property
    def weekday(self) -> int:
        return weekday_of(self.date)

    @property
    def duration_minutes(self) -> int:
        return self.close_minutes - self.open_minutes

    def to_dict(self) -> dict:
        return {
            "openTime": self.open_minutes,
            "closeTime": self.close_minutes,
            "duration": self.duration_minutes,
            "weekday": self.weekday,
        }


@dataclass(frozen=True)
class WeekdayPrediction:
    """Weighted-median open/close estimate for one weekday."""

    weekday: int
    open_time: float | None
    close_time: float | None
    data_points: int

    def to_dict(self) -> dict:
        return {
            "openTime": self.open_time,
            "closeTime": self.close_time,
            "dataPoints": self.data_points,
        }
