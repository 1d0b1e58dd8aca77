"""
TTL-bounded distributed job lock backed by a unique row per job name.
"""
import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional

import aiosqlite

from nycping.core.errors import LockUnavailable
from nycping.services.database import Database, to_db_time

logger = logging.getLogger(__name__)


class JobLock:
    def __init__(self, database: Database):
        self.db = database

    async def acquire(self, job_name: str, ttl_seconds: int = 60) -> Optional[str]:
        """
        Returns a lock id, or None when another holder's lock has not expired.
        An expired lock is taken over.
        """
        await self.db.init_tables()
        now = datetime.now(timezone.utc)
        lock_id = f"{job_name}-{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"

        async with self.db.connect() as conn:
            await conn.execute(
                "DELETE FROM job_locks WHERE job_name = ? AND expires_at < ?",
                (job_name, to_db_time(now)),
            )
            try:
                await conn.execute(
                    """INSERT INTO job_locks (job_name, lock_id, acquired_at, expires_at)
                       VALUES (?, ?, ?, ?)""",
                    (
                        job_name,
                        lock_id,
                        to_db_time(now),
                        to_db_time(now + timedelta(seconds=ttl_seconds)),
                    ),
                )
                await conn.commit()
            except aiosqlite.IntegrityError:
                await conn.rollback()
                logger.info(f"Lock {job_name} is held by another run")
                return None

        logger.debug(f"Acquired lock {lock_id}")
        return lock_id

    async def release(self, job_name: str, lock_id: str) -> None:
        """Deletes only our own lock; a failure is logged, never raised."""
        try:
            await self.db.execute(
                "DELETE FROM job_locks WHERE job_name = ? AND lock_id = ?",
                (job_name, lock_id),
            )
            logger.debug(f"Released lock {lock_id}")
        except Exception as e:
            logger.error(f"Failed to release lock {job_name} ({lock_id}): {e}")

    @asynccontextmanager
    async def hold(self, job_name: str, ttl_seconds: int = 60) -> AsyncIterator[str]:
        """Hold the lock for the body of the block; raises LockUnavailable if taken."""
        lock_id = await self.acquire(job_name, ttl_seconds)
        if lock_id is None:
            raise LockUnavailable(job_name)
        try:
            yield lock_id
        finally:
            await self.release(job_name, lock_id)
