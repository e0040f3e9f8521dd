import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError

from foldy.errors import StageTimeoutError
from foldy.watchdog import ConcurrencyGate, StagePolicy, StageTimer, run_stage


async def test_gate_serializes_in_arrival_order():
    gate = ConcurrencyGate(1)
    events = []
    inside = 0
    peak = 0

    async def job(name):
        nonlocal inside, peak
        async with gate.slot():
            inside += 1
            peak = max(peak, inside)
            events.append(name)
            await asyncio.sleep(0.01)
            inside -= 1

    tasks = []
    for name in "abcd":
        tasks.append(asyncio.create_task(job(name)))
        await asyncio.sleep(0)  # fix arrival order
    await asyncio.gather(*tasks)

    assert peak == 1
    assert events == list("abcd")
    assert gate.active == 0


async def test_gate_allows_limit_concurrent():
    gate = ConcurrencyGate(2)
    inside = 0
    peak = 0

    async def job():
        nonlocal inside, peak
        async with gate.slot():
            inside += 1
            peak = max(peak, inside)
            await asyncio.sleep(0.01)
            inside -= 1

    await asyncio.gather(*(job() for _ in range(5)))
    assert peak == 2


async def test_cancelled_waiter_does_not_leak_slot():
    gate = ConcurrencyGate(1)
    await gate.acquire()
    waiter = asyncio.create_task(gate.acquire())
    await asyncio.sleep(0)
    assert gate.waiting == 1
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    gate.release()
    assert gate.active == 0
    await asyncio.wait_for(gate.acquire(), timeout=1)
    assert gate.active == 1


def test_gate_rejects_zero_limit():
    with pytest.raises(ValueError):
        ConcurrencyGate(0)


async def test_hard_stage_timeout_raises():
    timer = StageTimer()
    with pytest.raises(StageTimeoutError) as exc:
        await run_stage("nav", asyncio.sleep(1), 10, StagePolicy.HARD, timer)
    assert exc.value.reason == "nav_timeout"
    assert exc.value.status_code == 504
    assert exc.value.retryable
    assert "nav_ms" in timer.timings


async def test_soft_stage_timeout_degrades():
    timer = StageTimer()
    result = await run_stage("scan", asyncio.sleep(1), 10, StagePolicy.SOFT, timer, fallback="fallback")
    assert result == "fallback"
    assert timer.degraded == ["scan"]


async def test_stage_without_watchdog_and_errors_propagate():
    async def ok():
        await asyncio.sleep(0.01)
        return 42

    async def broken():
        raise RuntimeError("boom")

    timer = StageTimer()
    assert await run_stage("audit", ok(), None, StagePolicy.HARD, timer) == 42
    with pytest.raises(RuntimeError):
        await run_stage("hide", broken(), 1000, StagePolicy.SOFT, timer)
    assert timer.degraded == []
    totals = timer.total()
    assert {"audit_ms", "hide_ms", "total_ms"} <= set(totals)


async def test_soft_stage_absorbs_engine_errors():
    async def redirected():
        raise PlaywrightError("Execution context was destroyed, most likely because of a navigation")

    timer = StageTimer()
    assert await run_stage("settle", redirected(), 1000, StagePolicy.SOFT, timer) is None
    assert timer.degraded == ["settle"]
    with pytest.raises(PlaywrightError):
        await run_stage("audit", redirected(), 1000, StagePolicy.HARD, timer)
    assert timer.degraded == ["settle"]
