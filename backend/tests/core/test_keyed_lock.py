import asyncio

import pytest

from app.core.keyed_lock import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLock()
    active = 0
    max_active = 0

    async def worker():
        nonlocal active, max_active
        async with locks.hold("user-1"):
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(worker() for _ in range(5)))
    assert max_active == 1


@pytest.mark.asyncio
async def test_different_keys_do_not_block_each_other():
    locks = KeyedLock()
    entered = asyncio.Event()

    async def holder():
        async with locks.hold("a"):
            await asyncio.wait_for(entered.wait(), timeout=1)

    async def other():
        async with locks.hold("b"):
            entered.set()

    await asyncio.gather(holder(), other())


@pytest.mark.asyncio
async def test_locks_are_released_after_use():
    locks = KeyedLock()
    async with locks.hold("a"):
        assert locks.locked("a")
        assert len(locks) == 1

    assert not locks.locked("a")
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_released_when_body_raises():
    locks = KeyedLock()
    with pytest.raises(RuntimeError):
        async with locks.hold("a"):
            raise RuntimeError("boom")
    assert len(locks) == 0
