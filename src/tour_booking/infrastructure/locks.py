"""Resource lock managers."""

import asyncio
import hashlib
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from src.tour_booking.application.ports.locks import LockKey, ResourceLockManager
from src.tour_booking.infrastructure.logging import get_logger

logger = get_logger(__name__)


class AsyncioResourceLockManager(ResourceLockManager):
    """In-process locks, one ``asyncio.Lock`` per key.

    Only serializes commits inside one event loop, so it suits a single worker
    and tests. Multi-worker deployments use ``PostgresAdvisoryLockManager``.
    """

    def __init__(self):
        self._locks: Dict[LockKey, asyncio.Lock] = {}

    def _lock_for(self, key: LockKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def is_locked(self, key: LockKey) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def acquire(self, keys: Iterable[LockKey], timeout: Optional[float] = None) -> AsyncIterator[None]:
        ordered = sorted(set(keys))
        held: List[asyncio.Lock] = []

        async def take_all() -> None:
            for key in ordered:
                lock = self._lock_for(key)
                await lock.acquire()
                held.append(lock)

        try:
            await asyncio.wait_for(take_all(), timeout)
            yield
        finally:
            for lock in reversed(held):
                lock.release()


def advisory_key(key: LockKey) -> int:
    """Stable signed 64-bit id for ``pg_advisory_lock``."""
    digest = hashlib.sha256(str(key).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


class PostgresAdvisoryLockManager(ResourceLockManager):
    """Session-level PostgreSQL advisory locks shared by every worker.

    Locks are taken with ``pg_try_advisory_lock`` in key order, polling until
    the timeout, so a cancelled waiter never leaves a lock behind on a pooled
    connection.
    """

    def __init__(self, engine: AsyncEngine, poll_interval: float = 0.05):
        self._engine = engine
        self._poll_interval = poll_interval

    async def _try_lock(self, conn: AsyncConnection, key: int) -> bool:
        result = await conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": key})
        return bool(result.scalar())

    @asynccontextmanager
    async def acquire(self, keys: Iterable[LockKey], timeout: Optional[float] = None) -> AsyncIterator[None]:
        ordered = sorted(set(keys))
        async with self._engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            held: List[int] = []

            async def take_all() -> None:
                for key in ordered:
                    lock_id = advisory_key(key)
                    while not await self._try_lock(conn, lock_id):
                        await asyncio.sleep(self._poll_interval)
                    held.append(lock_id)

            try:
                await asyncio.wait_for(take_all(), timeout)
                yield
            finally:
                for lock_id in reversed(held):
                    await conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": lock_id})
                if held:
                    logger.debug("Advisory locks released", extra={"lock_count": len(held)})
