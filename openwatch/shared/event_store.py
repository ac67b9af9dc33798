"""SQLite event store for open/close transition events.

Separate database from hub.db to avoid write contention with settings
updates. Uses WAL mode so analytics reads can run while the monitor appends.
Every write is a single statement followed by a commit.
"""

import os
import re
from datetime import UTC, date, datetime

import aiosqlite

from openwatch.errors import EventValidationError, PersistenceError
from openwatch.shared.models import TransitionEvent

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def validate_event_fields(date_key: str, time_of_day: str) -> None:
    """Raise EventValidationError unless date is YYYY-MM-DD and time is HH:MM."""
    try:
        parsed = date.fromisoformat(date_key)
    except (TypeError, ValueError):
        raise EventValidationError(f"Invalid date_key: {date_key!r} (expected YYYY-MM-DD)") from None
    if parsed.isoformat() != date_key:
        raise EventValidationError(f"Invalid date_key: {date_key!r} (expected YYYY-MM-DD)")
    if not isinstance(time_of_day, str) or not _TIME_RE.match(time_of_day):
        raise EventValidationError(f"Invalid time: {time_of_day!r} (expected HH:MM)")


class TransitionEventStore:
    """Async SQLite store for append-only transition events."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create database, enable WAL mode, and ensure schema exists."""
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA busy_timeout=5000")

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS transition_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                date_key TEXT NOT NULL,
                time_logged TEXT NOT NULL,
                is_opening INTEGER NOT NULL,
                logged_at TEXT NOT NULL
            )
        """)
        await self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_te_day ON transition_events(date_key, time_logged)"
        )
        await self._conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise PersistenceError("TransitionEventStore not initialized")
        return self._conn

    # ── Write methods ───────────────────────────────────────────────────

    async def append(self, date_key: str, time_of_day: str, is_opening: bool) -> TransitionEvent:
        """Append one transition event and return it with its id."""
        validate_event_fields(date_key, time_of_day)
        conn = self._require_conn()
        logged_at = datetime.now(tz=UTC).isoformat()
        cursor = await conn.execute(
            """INSERT INTO transition_events (date_key, time_logged, is_opening, logged_at)
               VALUES (?, ?, ?, ?)""",
            (date_key, time_of_day, 1 if is_opening else 0, logged_at),
        )
        await conn.commit()
        return TransitionEvent(
            date_key=date_key,
            time_of_day=time_of_day,
            is_opening=bool(is_opening),
            id=cursor.lastrowid,
            logged_at=logged_at,
        )

    async def delete(self, event_id: int) -> bool:
        """Delete one event by id. Returns False if it did not exist."""
        conn = self._require_conn()
        cursor = await conn.execute("DELETE FROM transition_events WHERE id = ?", (event_id,))
        await conn.commit()
        return cursor.rowcount > 0

    # ── Read methods ────────────────────────────────────────────────────

    async def query_since(self, cutoff_date_key: str | None = None) -> list[TransitionEvent]:
        """Events on or after cutoff (all events if None), in chronological order."""
        conn = self._require_conn()
        if cutoff_date_key is None:
            cursor = await conn.execute(
                "SELECT * FROM transition_events ORDER BY date_key ASC, time_logged ASC, id ASC"
            )
        else:
            cursor = await conn.execute(
                """SELECT * FROM transition_events
                   WHERE date_key >= ?
                   ORDER BY date_key ASC, time_logged ASC, id ASC""",
                (cutoff_date_key,),
            )
        return [self._event_from_row(row) for row in await cursor.fetchall()]

    async def query_for_date(self, date_key: str) -> list[TransitionEvent]:
        """Events for one calendar day in chronological order."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """SELECT * FROM transition_events
               WHERE date_key = ?
               ORDER BY time_logged ASC, id ASC""",
            (date_key,),
        )
        return [self._event_from_row(row) for row in await cursor.fetchall()]

    async def get(self, event_id: int) -> TransitionEvent | None:
        """Fetch a single event by id."""
        conn = self._require_conn()
        cursor = await conn.execute("SELECT * FROM transition_events WHERE id = ?", (event_id,))
        row = await cursor.fetchone()
        return self._event_from_row(row) if row else None

    async def total_count(self) -> int:
        """Total number of events in the store."""
        conn = self._require_conn()
        cursor = await conn.execute("SELECT COUNT(*) FROM transition_events")
        row = await cursor.fetchone()
        return row[0]

    async def stats(self) -> dict:
        """Aggregate counts: total events and earliest/latest date."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """SELECT COUNT(*) AS total, MIN(date_key) AS first_date, MAX(date_key) AS last_date
               FROM transition_events"""
        )
        row = await cursor.fetchone()
        return {
            "total_events": row["total"],
            "first_date": row["first_date"],
            "last_date": row["last_date"],
        }

    # ── Retention / pruning ─────────────────────────────────────────────

    async def prune_before(self, cutoff_date_key: str) -> int:
        """Delete events dated strictly before cutoff. Returns count deleted."""
        conn = self._require_conn()
        cursor = await conn.execute(
            "DELETE FROM transition_events WHERE date_key < ?",
            (cutoff_date_key,),
        )
        await conn.commit()
        return cursor.rowcount

    @staticmethod
    def _event_from_row(row: aiosqlite.Row) -> TransitionEvent:
        return TransitionEvent(
            date_key=row["date_key"],
            time_of_day=row["time_logged"],
            is_opening=bool(row["is_opening"]),
            id=row["id"],
            logged_at=row["logged_at"],
        )
