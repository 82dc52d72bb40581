"""Durable local usage store backed by SQLite."""

import asyncio
import json
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

import structlog

from .models import UsageCategory, UsageRecord

logger = structlog.get_logger(__name__)


class UsageStore:
    """Append-only usage log.

    The local store is the durability authority for usage: a record is
    counted once ``append`` returns, whatever happens to remote sync.
    Timestamps are stored as UTC epoch seconds.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    def _connect(self) -> sqlite3.Connection:
        """Open a SQLite connection with safer concurrency settings."""
        conn = sqlite3.connect(self._db_path, timeout=5.0)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout = 5000")
        return conn

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return

            def init_db() -> None:
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
                with self._connect() as conn:
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS usage_records (
                            id TEXT PRIMARY KEY,
                            category TEXT NOT NULL,
                            operation TEXT NOT NULL,
                            timestamp REAL NOT NULL,
                            metadata TEXT NOT NULL
                        )
                    """)
                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_usage_category_ts
                        ON usage_records(category, timestamp)
                    """)
                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_usage_ts
                        ON usage_records(timestamp)
                    """)
                    conn.commit()

            await asyncio.get_running_loop().run_in_executor(None, init_db)
            self._initialized = True
            logger.debug("usage_store_initialized", path=str(self._db_path))

    async def append(self, record: UsageRecord) -> None:
        await self._ensure_initialized()

        def do_append() -> None:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO usage_records (id, category, operation, timestamp, metadata)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        record.category.value,
                        record.operation,
                        record.timestamp.timestamp(),
                        json.dumps(record.metadata),
                    ),
                )
                conn.commit()

        await asyncio.get_running_loop().run_in_executor(None, do_append)

    async def query(
        self,
        category: UsageCategory | None = None,
        since: datetime | None = None,
    ) -> list[UsageRecord]:
        """Records at or after ``since``, optionally limited to one category, oldest first."""
        await self._ensure_initialized()
        clauses: list[str] = []
        params: list[object] = []
        if category is not None:
            clauses.append("category = ?")
            params.append(category.value)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(since.timestamp())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        def do_query() -> list[UsageRecord]:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"""
                    SELECT id, category, operation, timestamp, metadata
                    FROM usage_records {where}
                    ORDER BY timestamp ASC
                    """,
                    params,
                )
                return [
                    UsageRecord(
                        id=row[0],
                        category=UsageCategory(row[1]),
                        operation=row[2],
                        timestamp=datetime.fromtimestamp(row[3], UTC),
                        metadata=json.loads(row[4]),
                    )
                    for row in cursor
                ]

        return await asyncio.get_running_loop().run_in_executor(None, do_query)

    async def count_since(self, since: datetime | None = None) -> int:
        await self._ensure_initialized()

        def do_count() -> int:
            with self._connect() as conn:
                if since is None:
                    cursor = conn.execute("SELECT COUNT(*) FROM usage_records")
                else:
                    cursor = conn.execute(
                        "SELECT COUNT(*) FROM usage_records WHERE timestamp >= ?",
                        (since.timestamp(),),
                    )
                return cursor.fetchone()[0]

        return await asyncio.get_running_loop().run_in_executor(None, do_count)

    async def counts_by_operation(self, since: datetime) -> dict[str, int]:
        await self._ensure_initialized()

        def do_counts() -> dict[str, int]:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    SELECT operation, COUNT(*) FROM usage_records
                    WHERE timestamp >= ?
                    GROUP BY operation
                    """,
                    (since.timestamp(),),
                )
                return {row[0]: row[1] for row in cursor}

        return await asyncio.get_running_loop().run_in_executor(None, do_counts)

    async def purge_before(self, cutoff: datetime) -> int:
        """Delete records older than ``cutoff``. Returns the number removed."""
        await self._ensure_initialized()

        def do_purge() -> int:
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM usage_records WHERE timestamp < ?",
                    (cutoff.timestamp(),),
                )
                conn.commit()
                return cursor.rowcount

        removed = await asyncio.get_running_loop().run_in_executor(None, do_purge)
        if removed:
            logger.info("usage_records_purged", count=removed, cutoff=cutoff.isoformat())
        return removed
