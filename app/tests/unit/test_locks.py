import asyncio

import pytest

from app.core.errors import ConcurrencyConflict
from app.core.locks import KeyedLocks


@pytest.mark.unit
@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLocks(timeout=1.0)
    order = []

    async def worker(name):
        async with locks.hold("vehicle-1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


@pytest.mark.unit
@pytest.mark.asyncio
async def test_different_keys_do_not_block():
    locks = KeyedLocks(timeout=0.05)
    async with locks.hold(1):
        async with locks.hold(2):
            assert locks.locked(1) and locks.locked(2)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_wait_is_bounded():
    locks = KeyedLocks(timeout=0.05)
    async with locks.hold(7):
        with pytest.raises(ConcurrencyConflict) as exc:
            async with locks.hold(7):
                pass
    assert exc.value.retryable is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_entries_dropped_when_released():
    locks = KeyedLocks(timeout=1.0)
    async with locks.hold(3):
        assert len(locks) == 1
    assert len(locks) == 0
    assert not locks.locked(3)
