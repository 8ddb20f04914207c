"""Tests for per-key locks."""

import asyncio

from firezap.services.locks import KeyedLocks


def test_entry_is_released_after_use() -> None:
    async def scenario() -> None:
        locks = KeyedLocks()

        async with locks.hold("alpha"):
            assert len(locks) == 1

        assert len(locks) == 0

    asyncio.run(scenario())


def test_same_key_is_serialized() -> None:
    async def scenario() -> None:
        locks = KeyedLocks()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("alpha"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("first"), worker("second"))

        assert order == ["first-in", "first-out", "second-in", "second-out"]
        assert len(locks) == 0

    asyncio.run(scenario())


def test_different_keys_do_not_wait_on_each_other() -> None:
    async def scenario() -> None:
        locks = KeyedLocks()
        release = asyncio.Event()

        async def hold_alpha() -> None:
            async with locks.hold("alpha"):
                await release.wait()

        holder = asyncio.create_task(hold_alpha())
        await asyncio.sleep(0)
        async with asyncio.timeout(1.0):
            async with locks.hold("beta"):
                assert len(locks) == 2
        release.set()
        await holder

        assert len(locks) == 0

    asyncio.run(scenario())


def test_release_survives_an_exception() -> None:
    async def scenario() -> None:
        locks = KeyedLocks()

        try:
            async with locks.hold("alpha"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        assert len(locks) == 0

    asyncio.run(scenario())
