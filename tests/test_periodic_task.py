from __future__ import annotations

import asyncio

import pytest

from token_relay.services.periodic import PeriodicTask


@pytest.mark.anyio
async def test_tick_failures_are_logged_and_loop_continues() -> None:
    calls: list[int] = []

    async def tick() -> None:
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("first tick fails")

    task = PeriodicTask("test-task", tick, interval_seconds=0.01, run_immediately=True)
    await task.start()
    for _ in range(100):
        if len(calls) >= 3:
            break
        await asyncio.sleep(0.01)
    await task.stop()

    assert len(calls) >= 3
    assert not task.running


@pytest.mark.anyio
async def test_first_tick_waits_one_interval_by_default() -> None:
    calls: list[str] = []

    async def tick() -> None:
        calls.append("tick")

    task = PeriodicTask("slow", tick, interval_seconds=60)
    await task.start()
    await asyncio.sleep(0.05)
    assert task.running
    await task.stop()

    assert calls == []


@pytest.mark.anyio
async def test_run_once_returns_tick_result() -> None:
    async def tick() -> int:
        return 7

    assert await PeriodicTask("once", tick, interval_seconds=1).run_once() == 7


def test_interval_must_be_positive() -> None:
    async def tick() -> None:
        return None

    with pytest.raises(ValueError):
        PeriodicTask("bad", tick, interval_seconds=0)
