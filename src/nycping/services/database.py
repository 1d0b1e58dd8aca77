import aiosqlite
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional
import logging

logger = logging.getLogger(__name__)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    """UTC ISO-8601 with fixed precision so string comparison orders correctly."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    def __init__(self, path: str):
        self.path = path
        self._initialized = False

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = await aiosqlite.connect(self.path)
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA foreign_keys=ON;")
        await conn.execute("PRAGMA busy_timeout=5000;")
        try:
            yield conn
        finally:
            await conn.close()

    async def execute(self, query: str, params: tuple = ()) -> int:
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def fetchone(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()

    async def fetchall(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()

    async def init_tables(self) -> None:
        """Initialize content, send-history, lock and user tables."""
        if self._initialized:
            return
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        async with self.connect() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS content_items (
                    id TEXT PRIMARY KEY,
                    source TEXT NOT NULL,
                    external_id TEXT NOT NULL,
                    content_type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    body TEXT NOT NULL DEFAULT '',
                    dedup_key TEXT NOT NULL,
                    urgency TEXT NOT NULL,
                    priority_score REAL NOT NULL DEFAULT 0,
                    severity TEXT,
                    tags TEXT NOT NULL DEFAULT '[]',
                    trust_tier INTEGER NOT NULL DEFAULT 2,
                    url TEXT,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    starts_at TIMESTAMP,
                    ends_at TIMESTAMP,
                    version INTEGER NOT NULL DEFAULT 1,
                    status_changed INTEGER NOT NULL DEFAULT 0,
                    UNIQUE (source, external_id)
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_content_created_at ON content_items(created_at)
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_content_dedup_key ON content_items(dedup_key)
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS send_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    slot TEXT NOT NULL,
                    item_id TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    severity TEXT,
                    sent_at TIMESTAMP NOT NULL,
                    UNIQUE (user_id, day, slot, item_id, version)
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_send_records_user_sent ON send_records(user_id, sent_at)
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS digest_sends (
                    user_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    slot TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    message_id TEXT,
                    status TEXT NOT NULL DEFAULT 'sent',
                    sent_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (user_id, day, slot)
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS job_locks (
                    job_name TEXT PRIMARY KEY,
                    lock_id TEXT NOT NULL,
                    acquired_at TIMESTAMP NOT NULL,
                    expires_at TIMESTAMP NOT NULL
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    tier TEXT NOT NULL DEFAULT 'free',
                    slots TEXT NOT NULL DEFAULT '["morning"]',
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            await conn.commit()
        self._initialized = True
        logger.info("Database tables initialized")
