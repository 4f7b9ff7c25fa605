"""SQLite schema and connection handling for the rate cache."""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "agile-rates" / "rates.db"

SCHEMA = """
-- Half-hourly unit rates, keyed by interval start (UTC ISO-8601)
CREATE TABLE IF NOT EXISTS rates (
    valid_from TEXT PRIMARY KEY,
    valid_to TEXT NOT NULL,
    value_exc_vat REAL NOT NULL,
    value_inc_vat REAL NOT NULL,
    updated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_rates_valid_to ON rates(valid_to);
"""


def get_db_path() -> Path:
    """Default cache location, with its directory created on first use."""
    db_path = Path(DEFAULT_DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


@contextmanager
def get_connection(db_path: Path | None = None) -> Iterator[sqlite3.Connection]:
    """Open the rate cache with rows addressable by column name."""
    path = db_path or get_db_path()
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def to_db_timestamp(dt: datetime) -> str:
    """Canonical UTC string used as the storage key."""
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value).astimezone(timezone.utc)


def migrate_db(db_path: Path | None = None) -> None:
    """Bring a cache created by an older release up to the current schema."""
    with get_connection(db_path) as conn:
        cursor = conn.execute("PRAGMA table_info(rates)")
        existing_columns = {row["name"] for row in cursor.fetchall()}

        # Databases created before upserts were timestamped lack this column
        if "updated_at" not in existing_columns:
            conn.execute("ALTER TABLE rates ADD COLUMN updated_at TEXT")

        conn.commit()


def init_db(db_path: Path | None = None) -> None:
    """Create the rates table and index if missing, then migrate."""
    with get_connection(db_path) as conn:
        conn.executescript(SCHEMA)
        conn.commit()

    migrate_db(db_path)


def get_stats(db_path: Path | None = None) -> dict:
    """Row count, covered range and last write time of the rate cache."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            """SELECT COUNT(*) as count, MIN(valid_from) as earliest,
                      MAX(valid_to) as latest, MAX(updated_at) as last_updated
               FROM rates"""
        ).fetchone()
        return {
            "rates": {
                "count": row["count"],
                "earliest": row["earliest"],
                "latest": row["latest"],
                "last_updated": row["last_updated"],
            }
        }
