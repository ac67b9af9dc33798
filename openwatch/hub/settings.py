"""Prediction parameter store — single-row SQLite table with validation.

The row is seeded with defaults via INSERT OR IGNORE so user overrides
survive restarts. Reads always hit the database; nothing is cached, so an
update is visible to the very next prediction or scheduling decision.
"""

import os
from dataclasses import asdict, dataclass, field, fields
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from openwatch.errors import ParameterValidationError, PersistenceError

WEIGHT_KEYS = ("0", "1", "2", "3+")

# Column name per month-offset bucket in the prediction_parameters table
_WEIGHT_COLUMNS = {
    "0": "weight_current_month",
    "1": "weight_1_month_ago",
    "2": "weight_2_months_ago",
    "3+": "weight_3plus_months_ago",
}


def _default_weights() -> dict[str, float]:
    return {"0": 1.0, "1": 0.7, "2": 0.5, "3+": 0.2}


@dataclass
class PredictionParameters:
    """Tunable scheduling and prediction parameters."""

    poll_interval_open_ms: int = 5 * 60 * 1000
    poll_interval_closed_ms: int = 1 * 60 * 1000
    poll_interval_night_ms: int = 15 * 60 * 1000
    night_start_hour: int = 22
    night_end_hour: int = 5
    history_limit_days: int = 180
    min_session_duration_minutes: int = 30
    lookback_months: int = 4
    weight_by_month_offset: dict[str, float] = field(default_factory=_default_weights)

    def weight_for(self, months_ago: int) -> float:
        """Decay weight for a sample ``months_ago`` whole calendar months old."""
        if months_ago <= 0:
            return self.weight_by_month_offset["0"]
        if months_ago == 1:
            return self.weight_by_month_offset["1"]
        if months_ago == 2:
            return self.weight_by_month_offset["2"]
        return self.weight_by_month_offset["3+"]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PredictionParameters":
        """Build from a full record, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ParameterValidationError(f"Unknown parameter(s): {', '.join(sorted(unknown))}")
        params = cls(**data)
        params.validate()
        return params

    def validate(self) -> None:
        """Check field types and ranges. Raises ParameterValidationError."""
        int_ranges = {
            "poll_interval_open_ms": (1000, 24 * 3600 * 1000),
            "poll_interval_closed_ms": (1000, 24 * 3600 * 1000),
            "poll_interval_night_ms": (1000, 24 * 3600 * 1000),
            "night_start_hour": (0, 23),
            "night_end_hour": (0, 23),
            "history_limit_days": (1, 3650),
            "min_session_duration_minutes": (0, 24 * 60),
            "lookback_months": (1, 120),
        }
        for name, (low, high) in int_ranges.items():
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ParameterValidationError(f"{name}: expected integer, got {value!r}")
            if value < low or value > high:
                raise ParameterValidationError(f"{name}: value {value} outside [{low}, {high}]")

        weights = self.weight_by_month_offset
        if not isinstance(weights, dict) or set(weights) != set(WEIGHT_KEYS):
            raise ParameterValidationError(
                f"weight_by_month_offset: expected keys {list(WEIGHT_KEYS)}, got {weights!r}"
            )
        for key, weight in weights.items():
            if isinstance(weight, bool) or not isinstance(weight, int | float):
                raise ParameterValidationError(f"weight_by_month_offset[{key}]: expected number, got {weight!r}")
            if weight < 0:
                raise ParameterValidationError(f"weight_by_month_offset[{key}]: weight {weight} is negative")


class SettingsStore:
    """Persists the PredictionParameters singleton in hub.db."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self):
        """Create the parameters table and seed the default row."""
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA busy_timeout=5000")

        defaults = PredictionParameters()
        await self._conn.execute(f"""
            CREATE TABLE IF NOT EXISTS prediction_parameters (
                id INTEGER PRIMARY KEY CHECK(id = 1),
                check_interval_open INTEGER DEFAULT {defaults.poll_interval_open_ms},
                check_interval_closed INTEGER DEFAULT {defaults.poll_interval_closed_ms},
                check_interval_night INTEGER DEFAULT {defaults.poll_interval_night_ms},
                night_start_hour INTEGER DEFAULT {defaults.night_start_hour},
                night_end_hour INTEGER DEFAULT {defaults.night_end_hour},
                history_limit_days INTEGER DEFAULT {defaults.history_limit_days},
                min_session_duration INTEGER DEFAULT {defaults.min_session_duration_minutes},
                prediction_lookback_months INTEGER DEFAULT {defaults.lookback_months},
                weight_current_month REAL DEFAULT {defaults.weight_by_month_offset["0"]},
                weight_1_month_ago REAL DEFAULT {defaults.weight_by_month_offset["1"]},
                weight_2_months_ago REAL DEFAULT {defaults.weight_by_month_offset["2"]},
                weight_3plus_months_ago REAL DEFAULT {defaults.weight_by_month_offset["3+"]},
                updated_at TEXT
            )
        """)
        await self._conn.execute("INSERT OR IGNORE INTO prediction_parameters (id) VALUES (1)")
        await self._conn.commit()

    async def close(self):
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise PersistenceError("SettingsStore not initialized. Call initialize() first.")
        return self._conn

    async def get(self) -> PredictionParameters:
        """Read the current parameters from the database."""
        conn = self._require_conn()
        cursor = await conn.execute("SELECT * FROM prediction_parameters WHERE id = 1")
        row = await cursor.fetchone()
        if row is None:
            raise PersistenceError("prediction_parameters row missing")
        return self._params_from_row(row)

    async def get_updated_at(self) -> str | None:
        """Timestamp of the last successful replace(), None if never updated."""
        conn = self._require_conn()
        cursor = await conn.execute("SELECT updated_at FROM prediction_parameters WHERE id = 1")
        row = await cursor.fetchone()
        return row["updated_at"] if row else None

    async def replace(self, params: PredictionParameters) -> PredictionParameters:
        """Validate and persist a full parameter record.

        Raises:
            ParameterValidationError: If any field is malformed. Nothing is written.
        """
        params.validate()
        conn = self._require_conn()
        weights = params.weight_by_month_offset
        await conn.execute(
            """UPDATE prediction_parameters SET
                 check_interval_open = ?,
                 check_interval_closed = ?,
                 check_interval_night = ?,
                 night_start_hour = ?,
                 night_end_hour = ?,
                 history_limit_days = ?,
                 min_session_duration = ?,
                 prediction_lookback_months = ?,
                 weight_current_month = ?,
                 weight_1_month_ago = ?,
                 weight_2_months_ago = ?,
                 weight_3plus_months_ago = ?,
                 updated_at = ?
               WHERE id = 1""",
            (
                params.poll_interval_open_ms,
                params.poll_interval_closed_ms,
                params.poll_interval_night_ms,
                params.night_start_hour,
                params.night_end_hour,
                params.history_limit_days,
                params.min_session_duration_minutes,
                params.lookback_months,
                float(weights["0"]),
                float(weights["1"]),
                float(weights["2"]),
                float(weights["3+"]),
                datetime.now(tz=UTC).isoformat(),
            ),
        )
        await conn.commit()
        return await self.get()

    async def update(self, changes: dict[str, Any]) -> PredictionParameters:
        """Merge a partial record onto the current parameters and persist it.

        ``weight_by_month_offset`` may itself be partial; missing buckets keep
        their current weight.
        """
        current = (await self.get()).to_dict()
        merged = dict(current)
        for key, value in changes.items():
            if key == "weight_by_month_offset" and isinstance(value, dict):
                merged[key] = {**current[key], **{str(k): v for k, v in value.items()}}
            else:
                merged[key] = value
        params = PredictionParameters.from_dict(merged)
        return await self.replace(params)

    async def reset(self) -> PredictionParameters:
        """Restore the default parameters."""
        return await self.replace(PredictionParameters())

    @staticmethod
    def _params_from_row(row: aiosqlite.Row) -> PredictionParameters:
        return PredictionParameters(
            poll_interval_open_ms=row["check_interval_open"],
            poll_interval_closed_ms=row["check_interval_closed"],
            poll_interval_night_ms=row["check_interval_night"],
            night_start_hour=row["night_start_hour"],
            night_end_hour=row["night_end_hour"],
            history_limit_days=row["history_limit_days"],
            min_session_duration_minutes=row["min_session_duration"],
            lookback_months=row["prediction_lookback_months"],
            weight_by_month_offset={key: row[column] for key, column in _WEIGHT_COLUMNS.items()},
        )
