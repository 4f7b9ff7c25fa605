"""Durable rate storage with upsert-by-start-time semantics.

Every mutation runs in a single SQLite transaction behind one write lock,
so a reader sees either the state before a batch or after it, never a mix.
"""

import logging
import sqlite3
import threading
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

from .db import from_db_timestamp, get_connection, init_db, to_db_timestamp
from .errors import PersistenceError
from .models import RateRecord

logger = logging.getLogger(__name__)

UPSERT_SQL = """
INSERT INTO rates (valid_from, valid_to, value_exc_vat, value_inc_vat, updated_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(valid_from) DO UPDATE SET
    valid_to = excluded.valid_to,
    value_exc_vat = excluded.value_exc_vat,
    value_inc_vat = excluded.value_inc_vat,
    updated_at = excluded.updated_at
"""

SELECT_COLUMNS = "SELECT valid_from, valid_to, value_exc_vat, value_inc_vat FROM rates"


def _row_to_record(row: sqlite3.Row) -> RateRecord:
    return RateRecord(
        valid_from=from_db_timestamp(row["valid_from"]),
        valid_to=from_db_timestamp(row["valid_to"]),
        value_exc_vat=row["value_exc_vat"],
        value_inc_vat=row["value_inc_vat"],
    )


class RateStore:
    """SQLite-backed store of RateRecords keyed by ``valid_from``."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path
        self._write_lock = threading.Lock()
        init_db(db_path)

    def upsert(self, records: list[RateRecord]) -> dict:
        """Insert new records and overwrite existing ones with the same start time.

        The whole batch commits or none of it does.

        Returns dict with 'inserted' and 'updated' counts.
        """
        updated_at = to_db_timestamp(datetime.now(timezone.utc))
        rows = [
            (
                to_db_timestamp(r.valid_from),
                to_db_timestamp(r.valid_to),
                r.value_exc_vat,
                r.value_inc_vat,
                updated_at,
            )
            for r in records
        ]
        unique_keys = len({row[0] for row in rows})

        with self._write_lock:
            try:
                with get_connection(self.db_path) as conn:
                    with conn:
                        before = conn.execute("SELECT COUNT(*) FROM rates").fetchone()[0]
                        conn.executemany(UPSERT_SQL, rows)
                        after = conn.execute("SELECT COUNT(*) FROM rates").fetchone()[0]
            except sqlite3.Error as exc:
                raise PersistenceError(f"Failed to upsert {len(rows)} rates: {exc}") from exc

        inserted = after - before
        result = {"inserted": inserted, "updated": unique_keys - inserted}
        logger.info("Upserted rates: %(inserted)d inserted, %(updated)d updated", result)
        return result

    def fetch_all(self) -> list[RateRecord]:
        """All stored records, ascending by ``valid_from``."""
        return self._select(f"{SELECT_COLUMNS} ORDER BY valid_from ASC")

    def fetch_page(self, offset: int, limit: int, ascending: bool = True) -> list[RateRecord]:
        order = "ASC" if ascending else "DESC"
        return self._select(
            f"{SELECT_COLUMNS} ORDER BY valid_from {order} LIMIT ? OFFSET ?", (limit, offset)
        )

    def fetch_for_day(self, day: date, tz: ZoneInfo) -> list[RateRecord]:
        """Records overlapping the local calendar day ``day`` in ``tz``."""
        day_start = datetime.combine(day, time(0, 0), tz)
        day_end = datetime.combine(day + timedelta(days=1), time(0, 0), tz)
        return self._select(
            f"{SELECT_COLUMNS} WHERE valid_from < ? AND valid_to > ? ORDER BY valid_from ASC",
            (to_db_timestamp(day_end), to_db_timestamp(day_start)),
        )

    def count(self) -> int:
        try:
            with get_connection(self.db_path) as conn:
                return conn.execute("SELECT COUNT(*) FROM rates").fetchone()[0]
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to count rates: {exc}") from exc

    def earliest_valid_from(self) -> datetime | None:
        return self._scalar_timestamp("SELECT MIN(valid_from) FROM rates")

    def latest_valid_to(self) -> datetime | None:
        return self._scalar_timestamp("SELECT MAX(valid_to) FROM rates")

    def delete_all(self) -> int:
        """Irreversibly remove every stored record. Returns number deleted."""
        with self._write_lock:
            try:
                with get_connection(self.db_path) as conn:
                    with conn:
                        cursor = conn.execute("DELETE FROM rates")
            except sqlite3.Error as exc:
                raise PersistenceError(f"Failed to delete rates: {exc}") from exc
        logger.info("Deleted %d stored rates", cursor.rowcount)
        return cursor.rowcount

    def _select(self, sql: str, params: tuple = ()) -> list[RateRecord]:
        try:
            with get_connection(self.db_path) as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to read rates: {exc}") from exc
        return [_row_to_record(row) for row in rows]

    def _scalar_timestamp(self, sql: str) -> datetime | None:
        try:
            with get_connection(self.db_path) as conn:
                value = conn.execute(sql).fetchone()[0]
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to read rates: {exc}") from exc
        return from_db_timestamp(value) if value else None
