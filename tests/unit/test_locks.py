"""Unit tests for resource lock managers."""

import asyncio
import pytest
from contextlib import asynccontextmanager
from datetime import date
from unittest.mock import AsyncMock, Mock

from src.tour_booking.application.ports.locks import LockKey
from src.tour_booking.infrastructure.locks import (
    AsyncioResourceLockManager,
    PostgresAdvisoryLockManager,
    advisory_key,
)

VEHICLE_1 = LockKey.for_resource("vehicle", 1)
VEHICLE_2 = LockKey.for_resource("vehicle", 2)
DRIVER_1 = LockKey.for_resource("driver", 1)


class TestLockKey:
    """Test cases for LockKey ordering."""

    def test_numeric_ids_sort_numerically(self):
        assert LockKey.for_resource("vehicle", 2) < LockKey.for_resource("vehicle", 10)

    def test_namespace_sorts_first(self):
        keys = sorted([VEHICLE_1, LockKey.for_day_capacity(date(2026, 10, 23)), DRIVER_1])

        assert [k.namespace for k in keys] == ["capacity", "driver", "vehicle"]

    def test_string_form(self):
        assert str(VEHICLE_1) == "vehicle:000000000001"
        assert str(LockKey.for_day_capacity(date(2026, 10, 23))) == "capacity:2026-10-23"


class TestAdvisoryKey:
    """Test cases for PostgreSQL advisory lock ids."""

    def test_stable_signed_64_bit(self):
        key = advisory_key(VEHICLE_1)

        assert key == advisory_key(LockKey.for_resource("vehicle", 1))
        assert -(2 ** 63) <= key < 2 ** 63
        assert key != advisory_key(DRIVER_1)


class TestAsyncioResourceLockManager:
    """Test cases for the in-process lock manager."""

    @pytest.mark.asyncio
    async def test_locks_held_inside_context_only(self):
        manager = AsyncioResourceLockManager()

        async with manager.acquire([VEHICLE_2, VEHICLE_1]):
            assert manager.is_locked(VEHICLE_1)
            assert manager.is_locked(VEHICLE_2)
            assert not manager.is_locked(DRIVER_1)

        assert not manager.is_locked(VEHICLE_1)
        assert not manager.is_locked(VEHICLE_2)

    @pytest.mark.asyncio
    async def test_released_when_body_raises(self):
        manager = AsyncioResourceLockManager()

        with pytest.raises(RuntimeError):
            async with manager.acquire([VEHICLE_1, DRIVER_1]):
                raise RuntimeError("write failed")

        assert not manager.is_locked(VEHICLE_1)
        assert not manager.is_locked(DRIVER_1)

    @pytest.mark.asyncio
    async def test_timeout_leaves_nothing_held(self):
        manager = AsyncioResourceLockManager()
        holding = asyncio.Event()
        done = asyncio.Event()

        async def holder():
            async with manager.acquire([VEHICLE_2]):
                holding.set()
                await done.wait()

        task = asyncio.create_task(holder())
        await holding.wait()

        with pytest.raises(asyncio.TimeoutError):
            async with manager.acquire([VEHICLE_1, VEHICLE_2], timeout=0.05):
                pytest.fail("acquired a lock that is held elsewhere")

        assert not manager.is_locked(VEHICLE_1)
        assert manager.is_locked(VEHICLE_2)

        done.set()
        await task
        assert not manager.is_locked(VEHICLE_2)

    @pytest.mark.asyncio
    async def test_overlapping_key_sets_do_not_deadlock(self):
        manager = AsyncioResourceLockManager()
        order = []

        async def worker(name, keys):
            async with manager.acquire(keys, timeout=1.0):
                order.append(name)
                await asyncio.sleep(0.01)

        await asyncio.gather(
            worker("a", [VEHICLE_1, DRIVER_1]),
            worker("b", [DRIVER_1, VEHICLE_1]),
            worker("c", [VEHICLE_1, VEHICLE_2, DRIVER_1]),
        )

        assert sorted(order) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_waiter_gets_lock_after_release(self):
        manager = AsyncioResourceLockManager()
        events = []

        async def first():
            async with manager.acquire([VEHICLE_1]):
                events.append("first-in")
                await asyncio.sleep(0.02)
                events.append("first-out")

        async def second():
            await asyncio.sleep(0)
            async with manager.acquire([VEHICLE_1], timeout=1.0):
                events.append("second-in")

        await asyncio.gather(first(), second())

        assert events == ["first-in", "first-out", "second-in"]


def advisory_engine(try_results):
    """Engine double whose connection answers ``pg_try_advisory_lock`` from ``try_results``."""
    answers = iter(try_results)
    conn = Mock()
    conn.execution_options = AsyncMock(return_value=conn)

    async def execute(statement, params):
        sql = str(statement)
        result = Mock()
        result.scalar.return_value = next(answers) if "try_advisory_lock" in sql else True
        return result

    conn.execute = AsyncMock(side_effect=execute)

    @asynccontextmanager
    async def connect():
        yield conn

    engine = Mock()
    engine.connect = connect
    return engine, conn


def executed(conn):
    return [(str(call.args[0]), call.args[1]["key"]) for call in conn.execute.await_args_list]


class TestPostgresAdvisoryLockManager:
    """Test cases for PostgreSQL advisory locks over a mocked connection."""

    @pytest.mark.asyncio
    async def test_locks_in_key_order_and_unlocks_in_reverse(self):
        engine, conn = advisory_engine([True, True])
        manager = PostgresAdvisoryLockManager(engine)

        async with manager.acquire([VEHICLE_1, DRIVER_1]):
            taken = executed(conn)

        assert taken == [
            ("SELECT pg_try_advisory_lock(:key)", advisory_key(DRIVER_1)),
            ("SELECT pg_try_advisory_lock(:key)", advisory_key(VEHICLE_1)),
        ]
        assert executed(conn)[2:] == [
            ("SELECT pg_advisory_unlock(:key)", advisory_key(VEHICLE_1)),
            ("SELECT pg_advisory_unlock(:key)", advisory_key(DRIVER_1)),
        ]
        conn.execution_options.assert_awaited_once_with(isolation_level="AUTOCOMMIT")

    @pytest.mark.asyncio
    async def test_polls_until_the_lock_frees(self):
        engine, conn = advisory_engine([False, False, True])
        manager = PostgresAdvisoryLockManager(engine, poll_interval=0)

        async with manager.acquire([VEHICLE_1]):
            pass

        assert [sql for sql, _ in executed(conn)] == [
            "SELECT pg_try_advisory_lock(:key)",
            "SELECT pg_try_advisory_lock(:key)",
            "SELECT pg_try_advisory_lock(:key)",
            "SELECT pg_advisory_unlock(:key)",
        ]

    @pytest.mark.asyncio
    async def test_timeout_releases_what_was_taken(self):
        engine, conn = advisory_engine([True] + [False] * 1000)
        manager = PostgresAdvisoryLockManager(engine, poll_interval=0.01)

        with pytest.raises(asyncio.TimeoutError):
            async with manager.acquire([VEHICLE_1, DRIVER_1], timeout=0.05):
                pass

        unlocks = [key for sql, key in executed(conn) if "unlock" in sql]
        assert unlocks == [advisory_key(DRIVER_1)]
