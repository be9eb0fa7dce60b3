"""
RemindMe — Reminder Database.

The Memory pillar: firing records persist in SQLite across restarts.
Rows are append-only; consumption and user deletion are soft deletes.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Sequence
from zoneinfo import ZoneInfo

from remindme.data.models import (
    AbsoluteFiring,
    Firing,
    FiringRecord,
    RecordKind,
    RecurrentFiring,
)
from remindme.ports.store_port import StoreUnavailableError

logger = logging.getLogger(__name__)

# Fixed-width UTC text, so SQL string comparison orders instants correctly
_TS_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

_BUSY_TIMEOUT_SECONDS = 10.0


def _to_db_time(value: datetime) -> str:
    if value.tzinfo is None:
        raise ValueError(f"naive datetime not allowed: {value!r}")
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _from_db_time(raw: str | None) -> datetime | None:
    if raw is None:
        return None
    return datetime.strptime(raw, _TS_FORMAT).replace(tzinfo=timezone.utc)


class ReminderDB:
    """SQLite-backed due-record store."""

    def __init__(
        self, db_path: str | None = None, tz_name: str | None = None,
    ) -> None:
        if db_path is None or tz_name is None:
            from remindme.config import settings
            db_path = db_path or settings.DATABASE_PATH
            tz_name = tz_name or settings.TIMEZONE

        self._db_path = db_path
        self._tz = ZoneInfo(tz_name)
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection whose block is a single transaction.

        Commits on success, rolls back on error, and re-raises sqlite3
        failures other than constraint violations as StoreUnavailableError.
        """
        try:
            conn = sqlite3.connect(self._db_path, timeout=_BUSY_TIMEOUT_SECONDS)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"cannot open {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            raise StoreUnavailableError(str(exc)) from exc
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create the firing_records table and its indexes if missing."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS firing_records (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind          TEXT    NOT NULL,
                    owner_id      INTEGER NOT NULL,
                    text          TEXT    NOT NULL,
                    fires_at_utc  TEXT,
                    day_of_week   INTEGER,
                    hour          INTEGER,
                    minute        INTEGER,
                    is_consumed   INTEGER NOT NULL DEFAULT 0,
                    CHECK (
                        (kind = 'absolute' AND fires_at_utc IS NOT NULL
                            AND day_of_week IS NULL AND hour IS NULL AND minute IS NULL)
                        OR
                        (kind = 'recurrent' AND fires_at_utc IS NULL
                            AND day_of_week BETWEEN 1 AND 7
                            AND hour BETWEEN 0 AND 23
                            AND minute BETWEEN 0 AND 59)
                    )
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS firing_records_owner "
                "ON firing_records (owner_id, is_consumed)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS firing_records_due "
                "ON firing_records (is_consumed, kind, day_of_week)"
            )
        logger.debug("Firing records table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> FiringRecord:
        return FiringRecord(
            id=row["id"],
            kind=RecordKind(row["kind"]),
            owner_id=row["owner_id"],
            text=row["text"],
            fires_at_utc=_from_db_time(row["fires_at_utc"]),
            day_of_week=row["day_of_week"],
            hour=row["hour"],
            minute=row["minute"],
            is_consumed=bool(row["is_consumed"]),
        )

    def create(
        self, owner_id: int, text: str, firings: Sequence[Firing],
    ) -> list[int]:
        """Insert every firing in one transaction and return the new ids.

        Ids come back in input order; a recurrent firing yields one row
        per weekday, in ascending weekday order.
        """
        ids: list[int] = []
        with self._connect() as conn:
            for firing in firings:
                if isinstance(firing, AbsoluteFiring):
                    cursor = conn.execute(
                        """
                        INSERT INTO firing_records (kind, owner_id, text, fires_at_utc)
                        VALUES (?, ?, ?, ?)
                        """,
                        (
                            RecordKind.ABSOLUTE.value, owner_id, text,
                            _to_db_time(firing.fires_at_utc),
                        ),
                    )
                    ids.append(cursor.lastrowid)
                elif isinstance(firing, RecurrentFiring):
                    for day in sorted(set(firing.days_of_week)):
                        cursor = conn.execute(
                            """
                            INSERT INTO firing_records
                                (kind, owner_id, text, day_of_week, hour, minute)
                            VALUES (?, ?, ?, ?, ?, ?)
                            """,
                            (
                                RecordKind.RECURRENT.value, owner_id, text,
                                day, firing.hour, firing.minute,
                            ),
                        )
                        ids.append(cursor.lastrowid)
                else:
                    raise TypeError(f"Unsupported firing: {firing!r}")

        logger.info("Created %d firing record(s) for owner %d: %s", len(ids), owner_id, ids)
        return ids

    def due_at(self, now: datetime) -> list[FiringRecord]:
        """Return every non-consumed record that is due at `now`.

        Recurrent rows are matched against `now` in the civil calendar and
        stay due for the rest of their matching day until consumed.
        No ordering is guaranteed.
        """
        local_now = now.astimezone(self._tz)
        minutes_of_day = local_now.hour * 60 + local_now.minute

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM firing_records
                WHERE is_consumed = 0 AND (
                    (kind = 'absolute' AND fires_at_utc < ?)
                    OR (kind = 'recurrent' AND day_of_week = ?
                        AND hour * 60 + minute < ?)
                )
                """,
                (_to_db_time(now), local_now.isoweekday(), minutes_of_day),
            ).fetchall()

        return [self._row_to_record(r) for r in rows]

    def consume(self, ids: Sequence[int]) -> None:
        """Soft-delete the given records. Unknown or consumed ids are ignored."""
        unique_ids = sorted(set(ids))
        if not unique_ids:
            return

        placeholders = ", ".join("?" for _ in unique_ids)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE firing_records SET is_consumed = 1 "
                f"WHERE is_consumed = 0 AND id IN ({placeholders})",
                unique_ids,
            )
        logger.info("Consumed %d of %d firing record(s)", cursor.rowcount, len(unique_ids))

    def get(self, record_id: int) -> FiringRecord | None:
        """Fetch a single record by ID, consumed or not."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM firing_records WHERE id = ?", (record_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def list_pending(self, owner_id: int) -> list[FiringRecord]:
        """List an owner's non-consumed records, absolute ones first by time."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM firing_records
                WHERE owner_id = ? AND is_consumed = 0
                ORDER BY kind, fires_at_utc, day_of_week, hour, minute, id
                """,
                (owner_id,),
            ).fetchall()
        return [self._row_to_record(r) for r in rows]
