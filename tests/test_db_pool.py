import asyncio

import pytest

from workspace.db.pool import ConnectionPool, PoolConfig, PoolState
from workspace.errors import (
    ConnectionOpenError,
    NotConnectedError,
    PoolAlreadyInitializedError,
    PoolClosedError,
    PoolExhaustedError,
    PoolNotInitializedError,
)


def assert_invariants(pool: ConnectionPool) -> None:
    available = set(pool._available)
    assert len(available) == len(pool._available)
    assert available.isdisjoint(pool._in_use)
    assert available | pool._in_use == set(pool._connections)
    assert len(pool._in_use) <= pool.size


async def _ready_pool(path, **config) -> ConnectionPool:
    pool = ConnectionPool(path, PoolConfig(**config))
    await pool.initialize()
    return pool


def test_initialize_opens_every_connection(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=3)
        stats = pool.get_stats()
        opened = all(conn.is_open for conn in pool._connections)
        assert_invariants(pool)
        await pool.close()
        return stats, opened

    stats, opened = asyncio.run(scenario())

    assert (stats.total, stats.available, stats.in_use, stats.waiting) == (3, 3, 0, 0)
    assert opened


def test_initialize_twice_is_rejected(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=2)
        try:
            with pytest.raises(PoolAlreadyInitializedError):
                await pool.initialize()
            return pool.get_stats().total
        finally:
            await pool.close()

    assert asyncio.run(scenario()) == 2


def test_initialize_failure_closes_opened_connections(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    pool = ConnectionPool(blocker / "db.sqlite", PoolConfig(pool_size=2))

    with pytest.raises(ConnectionOpenError):
        asyncio.run(pool.initialize())

    assert pool.state is PoolState.NEW
    assert pool.get_stats().total == 0


def test_acquire_before_initialize_fails(db_path):
    pool = ConnectionPool(db_path)
    with pytest.raises(PoolNotInitializedError):
        asyncio.run(pool.acquire())


def test_acquire_and_release_move_connection_between_sets(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=2)
        conn = await pool.acquire()
        during = pool.get_stats()
        assert_invariants(pool)
        pool.release(conn)
        after = pool.get_stats()
        assert_invariants(pool)
        await pool.close()
        return during, after

    during, after = asyncio.run(scenario())

    assert (during.available, during.in_use) == (1, 1)
    assert (after.available, after.in_use) == (2, 0)
    assert after.acquires == 1
    assert after.releases == 1


def test_double_release_is_ignored(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=2)
        conn = await pool.acquire()
        pool.release(conn)
        pool.release(conn)
        stats = pool.get_stats()
        assert_invariants(pool)
        await pool.close()
        return stats

    stats = asyncio.run(scenario())

    assert (stats.available, stats.in_use, stats.releases) == (2, 0, 1)


def test_waiters_are_served_in_fifo_order(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=1, acquire_timeout=None)
        held = await pool.acquire()
        order = []

        async def waiter(name):
            conn = await pool.acquire()
            order.append(name)
            await asyncio.sleep(0.01)
            pool.release(conn)

        tasks = []
        for name in ("a", "b", "c"):
            tasks.append(asyncio.create_task(waiter(name)))
            await asyncio.sleep(0)

        queued = pool.get_stats().waiting
        pool.release(held)
        # handed straight to the oldest waiter, never back to available
        handed = pool.get_stats()
        assert_invariants(pool)

        await asyncio.gather(*tasks)
        final = pool.get_stats()
        await pool.close()
        return order, queued, handed, final

    order, queued, handed, final = asyncio.run(scenario())

    assert order == ["a", "b", "c"]
    assert queued == 3
    assert (handed.available, handed.in_use, handed.waiting) == (0, 1, 2)
    assert (final.available, final.in_use, final.waiting) == (1, 0, 0)


def test_execute_returns_callback_result(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=2)
        try:
            return await pool.execute(lambda conn: conn.get("SELECT 41 + 1 AS answer"))
        finally:
            await pool.close()

    assert asyncio.run(scenario()) == {"answer": 42}


def test_execute_releases_connection_when_callback_raises(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=2)
        before = pool.get_stats().available

        async def broken(conn):
            await conn.get("SELECT 1")
            raise ValueError("handler failed")

        with pytest.raises(ValueError, match="handler failed"):
            await pool.execute(broken)

        after = pool.get_stats().available
        assert_invariants(pool)
        await pool.close()
        return before, after

    before, after = asyncio.run(scenario())

    assert before == after == 2


def test_connection_context_manager_releases(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=1)
        with pytest.raises(RuntimeError):
            async with pool.connection() as conn:
                await conn.run("CREATE TABLE t (x INTEGER)")
                raise RuntimeError("boom")
        async with pool.connection() as conn:
            tables = await conn.all("SELECT name FROM sqlite_master WHERE type = 'table'")
        stats = pool.get_stats()
        await pool.close()
        return tables, stats

    tables, stats = asyncio.run(scenario())

    assert tables == [{"name": "t"}]
    assert stats.available == 1


def test_third_caller_waits_for_a_free_connection(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=2)
        events = []

        async def hold(name):
            async def callback(conn):
                events.append(("start", name))
                await conn.get("SELECT 1")
                await asyncio.sleep(0.1)
                events.append(("end", name))

            await pool.execute(callback)

        await asyncio.gather(hold(1), hold(2), hold(3))
        stats = pool.get_stats()
        await pool.close()
        return events, stats

    events, stats = asyncio.run(scenario())

    first_end = min(events.index(("end", 1)), events.index(("end", 2)))
    assert events.index(("start", 3)) > first_end
    assert stats.timeouts == 0
    assert stats.available == 2


def test_acquire_times_out_with_pool_exhausted(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=1, acquire_timeout=0.05)
        held = await pool.acquire()
        try:
            with pytest.raises(PoolExhaustedError) as excinfo:
                await pool.acquire()
            stats = pool.get_stats()
            # per-call override
            with pytest.raises(TimeoutError):
                await pool.acquire(timeout=0.01)
        finally:
            pool.release(held)
        final = pool.get_stats()
        await pool.close()
        return excinfo.value, stats, final

    error, stats, final = asyncio.run(scenario())

    assert error.code == "POOL_EXHAUSTED"
    assert stats.waiting == 0
    assert stats.timeouts == 1
    assert final.available == 1
    assert final.timeouts == 2


def test_cancelled_waiter_leaves_the_queue(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=1, acquire_timeout=None)
        held = await pool.acquire()
        task = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0)
        queued = pool.get_stats().waiting
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        after_cancel = pool.get_stats().waiting
        pool.release(held)
        final = pool.get_stats()
        assert_invariants(pool)
        await pool.close()
        return queued, after_cancel, final

    queued, after_cancel, final = asyncio.run(scenario())

    assert queued == 1
    assert after_cancel == 0
    assert (final.available, final.in_use) == (1, 0)


def test_close_rejects_pending_waiters(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=1, acquire_timeout=None)
        await pool.acquire()
        waiters = [asyncio.create_task(pool.acquire()) for _ in range(2)]
        await asyncio.sleep(0)
        await pool.close()
        return await asyncio.gather(*waiters, return_exceptions=True), pool.get_stats()

    results, stats = asyncio.run(scenario())

    assert all(isinstance(r, PoolClosedError) for r in results)
    assert (stats.total, stats.available, stats.in_use, stats.waiting) == (0, 0, 0, 0)


def test_close_invalidates_pooled_connections(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=2)
        borrowed = await pool.acquire()
        idle = pool._available[0]
        await pool.close()

        failures = []
        for conn in (borrowed, idle):
            try:
                await conn.get("SELECT 1")
            except NotConnectedError as e:
                failures.append(e)

        # releasing into a closed pool is a logged no-op
        pool.release(borrowed)

        with pytest.raises(PoolClosedError):
            await pool.acquire()
        return failures

    assert len(asyncio.run(scenario())) == 2


def test_closed_pool_can_be_initialized_again(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=2)
        await pool.close()
        await pool.close()
        await pool.initialize()
        value = await pool.execute(lambda conn: conn.get("SELECT 1 AS one"))
        stats = pool.get_stats()
        await pool.close()
        return value, stats

    value, stats = asyncio.run(scenario())

    assert value == {"one": 1}
    assert stats.total == 2


def test_pool_async_context_manager(db_path):
    async def scenario():
        async with ConnectionPool(db_path, PoolConfig(pool_size=2)) as pool:
            await pool.execute(lambda conn: conn.run("CREATE TABLE t (x INTEGER)"))
            ready = pool.is_ready
        return ready, pool.state

    ready, state = asyncio.run(scenario())

    assert ready
    assert state is PoolState.CLOSED


def test_writes_are_visible_across_pooled_connections(db_path):
    async def scenario():
        pool = await _ready_pool(db_path, pool_size=2)
        first = await pool.acquire()
        second = await pool.acquire()
        await first.run("CREATE TABLE notes (body TEXT)")
        await first.run("INSERT INTO notes VALUES ('hello')")
        rows = await second.all("SELECT body FROM notes")
        pool.release(first)
        pool.release(second)
        await pool.close()
        return rows

    assert asyncio.run(scenario()) == [{"body": "hello"}]


@pytest.mark.parametrize(
    "kwargs",
    [{"pool_size": 0}, {"acquire_timeout": 0}, {"busy_timeout": -1}],
)
def test_pool_config_validation(kwargs):
    with pytest.raises(ValueError):
        PoolConfig(**kwargs)
