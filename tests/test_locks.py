import asyncio
from unittest.mock import AsyncMock

from trendwatch.locks import LocalCycleLock, RedisCycleLock


def test_local_lock_is_exclusive():
    lock = LocalCycleLock()

    async def scenario():
        first = await lock.try_acquire()
        second = await lock.try_acquire()
        await lock.release()
        third = await lock.try_acquire()
        return first, second, third

    assert asyncio.run(scenario()) == (True, False, True)


def test_hold_releases_on_exit():
    lock = LocalCycleLock()

    async def scenario():
        async with lock.hold() as acquired:
            inner = await lock.try_acquire()
        after = await lock.try_acquire()
        return acquired, inner, after

    assert asyncio.run(scenario()) == (True, False, True)


def test_hold_busy_does_not_release_other_holder():
    lock = LocalCycleLock()

    async def scenario():
        await lock.try_acquire()
        async with lock.hold() as acquired:
            pass
        still_held = not await lock.try_acquire()
        return acquired, still_held

    assert asyncio.run(scenario()) == (False, True)


def test_redis_lock_set_nx_with_ttl():
    redis = AsyncMock()
    redis.set.return_value = True
    lock = RedisCycleLock(redis, "trendwatch:alert-cycle", ttl_seconds=55)

    async def scenario():
        async with lock.hold() as acquired:
            return acquired

    assert asyncio.run(scenario()) is True
    key, token = redis.set.await_args.args
    assert key == "trendwatch:alert-cycle"
    assert redis.set.await_args.kwargs == {"nx": True, "px": 55_000}
    # release only deletes the key if it still holds our token
    assert redis.eval.await_args.args[1:] == (1, "trendwatch:alert-cycle", token)


def test_redis_lock_busy():
    redis = AsyncMock()
    redis.set.return_value = None
    lock = RedisCycleLock(redis, "trendwatch:alert-cycle", ttl_seconds=55)

    async def scenario():
        async with lock.hold() as acquired:
            return acquired

    assert asyncio.run(scenario()) is False
    redis.eval.assert_not_awaited()
