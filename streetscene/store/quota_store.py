# Per-identity last-request timestamp: the pipeline's only durable state.
# Narrow interface (get / compare-and-set) so the cooldown gate can close the
# read-then-write race without knowing how users are persisted.

from __future__ import annotations

import asyncio
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiosqlite
import structlog
from cachetools import TTLCache  # type: ignore[import-untyped]

logger = structlog.get_logger(__name__)


@runtime_checkable
class QuotaStore(Protocol):
    """Storage for CallerQuota.last_request_at, keyed by identity."""

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def get_last_request(self, identity: str) -> datetime | None: ...

    async def compare_and_set_last_request(
        self, identity: str, expected: datetime | None, new: datetime
    ) -> bool: ...


def _as_utc(value: datetime) -> datetime:
    # Rows written by other tooling (e.g. SQL CURRENT_TIMESTAMP) are naive UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class InMemoryQuotaStore:
    """Process-local store. Entries expire once the cooldown window has passed.

    An expired entry and a missing entry mean the same thing to the gate
    (no recent request), so the TTL just bounds memory.

    When `maxsize` live identities are held, a new write evicts the least
    recently used one even if its window is still open, letting that caller
    through early. Size it above the number of callers expected per window;
    a warning is logged whenever that happens.
    """

    def __init__(self, ttl_seconds: float = 600, maxsize: int = 100_000) -> None:
        self._entries: TTLCache[str, datetime] = TTLCache(maxsize=maxsize, ttl=ttl_seconds)
        self._lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return True

    async def connect(self) -> None:
        logger.info("quota_store_memory_only", reason="no QUOTA_DB_PATH set")

    async def disconnect(self) -> None:
        return None

    async def get_last_request(self, identity: str) -> datetime | None:
        with self._lock:
            return self._entries.get(identity)

    async def compare_and_set_last_request(
        self, identity: str, expected: datetime | None, new: datetime
    ) -> bool:
        with self._lock:
            if self._entries.get(identity) != expected:
                return False
            if identity not in self._entries and len(self._entries) >= self._entries.maxsize:
                logger.warning("quota_store_at_capacity", maxsize=self._entries.maxsize)
            self._entries[identity] = _as_utc(new)
            return True


class SqliteQuotaStore:
    """SQLite-backed store (aiosqlite) over a `users` table.

    Compare-and-set runs inside BEGIN IMMEDIATE, which takes the database
    write lock, so two processes sharing the file cannot both pass.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path).expanduser()
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None: transactions are managed explicitly below
        self._conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        await self._conn.execute(
            "CREATE TABLE IF NOT EXISTS users ("
            " id TEXT PRIMARY KEY,"
            " last_request_at TEXT"
            ")"
        )
        logger.info("quota_store_connected", path=str(self._db_path))

    async def disconnect(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("SqliteQuotaStore is not connected; call connect() first")
        return self._conn

    @staticmethod
    async def _read(conn: aiosqlite.Connection, identity: str) -> datetime | None:
        async with conn.execute(
            "SELECT last_request_at FROM users WHERE id = ?", (identity,)
        ) as cur:
            row = await cur.fetchone()
        if row is None or row[0] is None:
            return None
        return _as_utc(datetime.fromisoformat(row[0]))

    async def get_last_request(self, identity: str) -> datetime | None:
        async with self._lock:
            return await self._read(self._connection(), identity)

    async def compare_and_set_last_request(
        self, identity: str, expected: datetime | None, new: datetime
    ) -> bool:
        conn = self._connection()
        async with self._lock:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                current = await self._read(conn, identity)
                if current != (None if expected is None else _as_utc(expected)):
                    await conn.execute("ROLLBACK")
                    return False
                await conn.execute(
                    "INSERT INTO users (id, last_request_at) VALUES (?, ?)"
                    " ON CONFLICT(id) DO UPDATE SET last_request_at = excluded.last_request_at",
                    (identity, _as_utc(new).isoformat()),
                )
                await conn.execute("COMMIT")
                return True
            except BaseException:
                await conn.execute("ROLLBACK")
                raise


def create_quota_store(db_path: str, ttl_seconds: float, max_entries: int = 100_000) -> QuotaStore:
    """Pick the SQLite store when a path is configured, else the in-memory one."""
    if db_path:
        return SqliteQuotaStore(db_path)
    return InMemoryQuotaStore(ttl_seconds=ttl_seconds, maxsize=max_entries)
