"""SQLite database management with WAL mode."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite

from windowpilot.planning.profile import (
    HourlyUsageRecord,
    UsageWindowRecord,
    format_date_hour,
)
from windowpilot.planning.windows import WINDOW_SIZE

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

-- Max cumulative usage seen in each hour slot
CREATE TABLE IF NOT EXISTS hourly_usage (
    date_hour TEXT PRIMARY KEY,
    usage_pct REAL NOT NULL,
    updated_at TEXT NOT NULL
);

-- Usage windows (5h accounting periods)
CREATE TABLE IF NOT EXISTS usage_windows (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    window_start TEXT NOT NULL,
    window_end TEXT NOT NULL,
    usage_pct REAL DEFAULT 0,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_windows_start ON usage_windows(window_start);

-- Numeric counters (adjustment timestamp/count, ...)
CREATE TABLE IF NOT EXISTS baseline_stats (
    key TEXT PRIMARY KEY,
    value REAL
);

-- Persisted scheduler state
CREATE TABLE IF NOT EXISTS scheduler_state (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""


class Database:
    """SQLite-backed history, counters and scheduler state."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Initialize database connection with WAL mode."""
        if self._connection is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            isolation_level=None,  # Autocommit mode, every statement commits on its own
        )

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")

        self._connection.row_factory = aiosqlite.Row

        await self._init_schema()

        logger.info(f"Database connected: {self.db_path}")

    async def _init_schema(self) -> None:
        if self._connection is None:
            raise RuntimeError("Database not connected")

        await self._connection.executescript(SCHEMA)

        async with self._connection.execute(
            "SELECT MAX(version) FROM schema_version"
        ) as cursor:
            row = await cursor.fetchone()
            current_version = row[0] if row and row[0] else 0

        if current_version < SCHEMA_VERSION:
            await self._connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            logger.info(f"Schema updated to version {SCHEMA_VERSION}")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    async def execute(self, query: str, params: tuple[Any, ...] = ()) -> int:
        """Execute a query and return last row ID."""
        if self._connection is None:
            raise RuntimeError("Database not connected")

        async with self._lock:
            cursor = await self._connection.execute(query, params)
            return cursor.lastrowid or 0

    async def fetch_one(
        self, query: str, params: tuple[Any, ...] = ()
    ) -> dict[str, Any] | None:
        """Fetch a single row."""
        if self._connection is None:
            raise RuntimeError("Database not connected")

        async with self._connection.execute(query, params) as cursor:
            row = await cursor.fetchone()
            if row:
                return dict(row)
            return None

    async def fetch_all(
        self, query: str, params: tuple[Any, ...] = ()
    ) -> list[dict[str, Any]]:
        """Fetch all rows."""
        if self._connection is None:
            raise RuntimeError("Database not connected")

        async with self._connection.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    # Hourly usage
    async def record_usage_sample(self, usage_pct: float, observed_at: datetime) -> None:
        """Store a cumulative usage sample, keeping the max per hour slot."""
        await self.execute(
            """INSERT INTO hourly_usage (date_hour, usage_pct, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(date_hour) DO UPDATE SET
                 usage_pct = MAX(usage_pct, excluded.usage_pct),
                 updated_at = excluded.updated_at""",
            (format_date_hour(observed_at), usage_pct, observed_at.isoformat(timespec="seconds")),
        )

    async def get_hourly_usage_since(self, since: datetime) -> list[HourlyUsageRecord]:
        rows = await self.fetch_all(
            "SELECT * FROM hourly_usage WHERE date_hour >= ? ORDER BY date_hour",
            (format_date_hour(since),),
        )
        return [HourlyUsageRecord.from_db_row(row) for row in rows]

    async def get_hourly_usage_count(self) -> int:
        row = await self.fetch_one("SELECT COUNT(*) AS count FROM hourly_usage")
        return row["count"] if row else 0

    # Usage windows
    async def create_window(self, window_start: datetime, window_end: datetime | None = None) -> int:
        window_end = window_end or window_start + timedelta(minutes=WINDOW_SIZE)
        window_id = await self.execute(
            "INSERT INTO usage_windows (window_start, window_end) VALUES (?, ?)",
            (window_start.isoformat(timespec="seconds"), window_end.isoformat(timespec="seconds")),
        )
        logger.debug(f"Window {window_id} created: {window_start} - {window_end}")
        return window_id

    async def update_window_end(self, window_id: int, window_end: datetime) -> None:
        await self.execute(
            "UPDATE usage_windows SET window_end = ? WHERE id = ?",
            (window_end.isoformat(timespec="seconds"), window_id),
        )

    async def update_window_usage(self, window_id: int, usage_pct: float) -> None:
        await self.execute(
            "UPDATE usage_windows SET usage_pct = MAX(usage_pct, ?) WHERE id = ?",
            (usage_pct, window_id),
        )

    async def get_current_window(self, now: datetime) -> UsageWindowRecord | None:
        timestamp = now.isoformat(timespec="seconds")
        row = await self.fetch_one(
            """SELECT * FROM usage_windows WHERE window_start <= ? AND window_end > ?
               ORDER BY window_start DESC LIMIT 1""",
            (timestamp, timestamp),
        )
        return UsageWindowRecord.from_db_row(row) if row else None

    async def get_windows_since(self, since: datetime) -> list[UsageWindowRecord]:
        rows = await self.fetch_all(
            "SELECT * FROM usage_windows WHERE window_start >= ? ORDER BY window_start ASC",
            (since.isoformat(timespec="seconds"),),
        )
        return [UsageWindowRecord.from_db_row(row) for row in rows]

    async def get_window_count(self) -> int:
        row = await self.fetch_one("SELECT COUNT(*) AS count FROM usage_windows")
        return row["count"] if row else 0

    # Baseline counters
    async def get_baseline_stat(self, key: str) -> float | None:
        row = await self.fetch_one("SELECT value FROM baseline_stats WHERE key = ?", (key,))
        if row is None or row["value"] is None:
            return None
        return float(row["value"])

    async def set_baseline_stat(self, key: str, value: float) -> None:
        await self.execute(
            "INSERT OR REPLACE INTO baseline_stats (key, value) VALUES (?, ?)",
            (key, value),
        )

    # Scheduler state
    async def get_state(self, key: str) -> str | None:
        row = await self.fetch_one("SELECT value FROM scheduler_state WHERE key = ?", (key,))
        return row["value"] if row else None

    async def set_state(self, key: str, value: str | None) -> None:
        await self.execute(
            """INSERT INTO scheduler_state (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP""",
            (key, value),
        )

    # Export / maintenance
    async def get_all_hourly_usage(self) -> list[HourlyUsageRecord]:
        rows = await self.fetch_all("SELECT * FROM hourly_usage ORDER BY date_hour")
        return [HourlyUsageRecord.from_db_row(row) for row in rows]

    async def get_all_windows(self) -> list[UsageWindowRecord]:
        rows = await self.fetch_all("SELECT * FROM usage_windows ORDER BY window_start ASC")
        return [UsageWindowRecord.from_db_row(row) for row in rows]

    async def get_all_baseline_stats(self) -> dict[str, float]:
        rows = await self.fetch_all("SELECT key, value FROM baseline_stats ORDER BY key")
        return {row["key"]: float(row["value"]) for row in rows if row["value"] is not None}

    async def get_all_state(self) -> dict[str, str | None]:
        rows = await self.fetch_all("SELECT key, value FROM scheduler_state ORDER BY key")
        return {row["key"]: row["value"] for row in rows}

    async def clear_usage_data(self) -> dict[str, int]:
        """Delete usage history, windows and counters; returns rows removed per table."""
        counts = {
            "hourly_usage": await self.get_hourly_usage_count(),
            "usage_windows": await self.get_window_count(),
        }
        for table in ("hourly_usage", "usage_windows", "baseline_stats"):
            await self.execute(f"DELETE FROM {table}")
        logger.info(
            f"Cleared {counts['hourly_usage']} hourly records and {counts['usage_windows']} windows"
        )
        return counts

    async def get_size_mb(self) -> float:
        """Get database file size in MB."""
        if self.db_path.exists():
            return self.db_path.stat().st_size / (1024 * 1024)
        return 0.0


# Singleton instance
_database: Database | None = None


def get_database(db_path: Path | None = None) -> Database:
    """Get the database singleton instance."""
    global _database

    if _database is None:
        if db_path is None:
            from windowpilot.core.config import get_config
            db_path = get_config().db_path
        _database = Database(db_path)

    return _database


async def init_database(db_path: Path | None = None) -> Database:
    """Initialize and connect to the database."""
    db = get_database(db_path)
    await db.connect()
    return db
