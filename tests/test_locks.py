import asyncio

import pytest

from sharesub.locks import PlanLocks


@pytest.mark.asyncio
async def test_in_memory_locks_serialize_per_plan():
    locks = PlanLocks()
    events = []

    async def critical(plan_id: str, name: str):
        async with locks.hold(plan_id):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    await asyncio.gather(critical("prod_1", "a"), critical("prod_1", "b"))

    assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


@pytest.mark.asyncio
async def test_different_plans_do_not_block_each_other():
    locks = PlanLocks()
    inside = asyncio.Event()

    async def holder():
        async with locks.hold("prod_1"):
            await asyncio.wait_for(inside.wait(), timeout=1)

    async def other():
        async with locks.hold("prod_2"):
            inside.set()

    await asyncio.gather(holder(), other())
    await locks.close()


@pytest.mark.asyncio
async def test_lock_is_released_on_error():
    locks = PlanLocks()

    with pytest.raises(RuntimeError):
        async with locks.hold("prod_1"):
            raise RuntimeError("boom")

    async with locks.hold("prod_1"):
        pass


@pytest.mark.asyncio
async def test_idle_plan_locks_are_forgotten():
    locks = PlanLocks()
    entered = asyncio.Event()
    release = asyncio.Event()

    async def holder():
        async with locks.hold("prod_1"):
            entered.set()
            await release.wait()

    async def waiter():
        async with locks.hold("prod_1"):
            pass

    held = asyncio.create_task(holder())
    await entered.wait()
    queued = asyncio.create_task(waiter())
    await asyncio.sleep(0)
    assert list(locks._local) == ["prod_1"]

    release.set()
    await asyncio.gather(held, queued)

    assert locks._local == {}
    async with locks.hold("prod_2"):
        pass
    assert locks._local == {}
