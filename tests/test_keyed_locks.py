import asyncio

from utils.keyed_locks import KeyedLocks


async def test_same_key_is_serialized_and_released():
    locks = KeyedLocks()
    order = []
    gate = asyncio.Event()

    async def first():
        async with locks.hold("a"):
            order.append("first-in")
            await gate.wait()
            order.append("first-out")

    async def second():
        async with locks.hold("a"):
            order.append("second")

    tasks = [asyncio.create_task(first()), asyncio.create_task(second())]
    await asyncio.sleep(0)
    assert locks.is_held("a")
    gate.set()
    await asyncio.gather(*tasks)

    assert order == ["first-in", "first-out", "second"]
    assert len(locks) == 0
    assert "a" not in locks


async def test_lock_is_dropped_when_the_body_raises():
    locks = KeyedLocks()
    try:
        async with locks.hold(1):
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert len(locks) == 0
