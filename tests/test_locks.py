"""Tests for KeyedLock."""

import asyncio

import pytest

from multichat.core.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLock()
    trace = []

    async def worker(name):
        async with locks.hold("foo"):
            trace.append(f"{name}+")
            await asyncio.sleep(0.01)
            trace.append(f"{name}-")

    await asyncio.gather(worker("a"), worker("b"), worker("c"))
    assert trace == ["a+", "a-", "b+", "b-", "c+", "c-"]


@pytest.mark.asyncio
async def test_different_keys_run_concurrently():
    locks = KeyedLock()
    inside = asyncio.Event()

    async def holder():
        async with locks.hold("foo"):
            await asyncio.wait_for(inside.wait(), 1.0)

    async def other():
        async with locks.hold("bar"):
            inside.set()

    await asyncio.gather(holder(), other())


@pytest.mark.asyncio
async def test_entry_dropped_when_idle():
    locks = KeyedLock()
    async with locks.hold("foo"):
        assert "foo" in locks
        assert len(locks) == 1
    assert "foo" not in locks
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_entry_kept_while_waiters_remain():
    locks = KeyedLock()
    release = asyncio.Event()

    async def first():
        async with locks.hold("foo"):
            await release.wait()

    async def second():
        async with locks.hold("foo"):
            pass

    tasks = [asyncio.create_task(first()), asyncio.create_task(second())]
    await asyncio.sleep(0)
    release.set()
    await asyncio.sleep(0)
    assert "foo" in locks
    await asyncio.gather(*tasks)
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_entry_dropped_after_error_or_cancel():
    locks = KeyedLock()
    with pytest.raises(RuntimeError):
        async with locks.hold("foo"):
            raise RuntimeError("boom")

    async def blocked():
        async with locks.hold("bar"):
            await asyncio.sleep(10)

    task = asyncio.create_task(blocked())
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(locks) == 0
