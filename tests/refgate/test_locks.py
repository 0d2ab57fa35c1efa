"""Tests for KeyedLock."""

import asyncio

from refgate.core.locks import KeyedLock


class TestKeyedLock:
    async def test_same_key_serialized(self):
        lock = KeyedLock()
        events: list[str] = []

        async def worker(name: str):
            async with lock.hold("pr-1"):
                events.append(f"{name}:in")
                await asyncio.sleep(0.01)
                events.append(f"{name}:out")

        await asyncio.gather(worker("a"), worker("b"))
        assert events in (
            ["a:in", "a:out", "b:in", "b:out"],
            ["b:in", "b:out", "a:in", "a:out"],
        )

    async def test_different_keys_run_concurrently(self):
        lock = KeyedLock()
        inside = asyncio.Event()
        release = asyncio.Event()

        async def first():
            async with lock.hold("pr-1"):
                inside.set()
                await release.wait()

        task = asyncio.create_task(first())
        await inside.wait()
        # would deadlock if keys shared a lock
        async with lock.hold("pr-2"):
            release.set()
        await task

    async def test_idle_locks_dropped(self):
        lock = KeyedLock()
        async with lock.hold("pr-1"):
            assert len(lock) == 1
        assert len(lock) == 0
