"""
Concurrency gate and per-stage watchdogs.

The gate bounds how many browser contexts this process keeps open and hands
out slots strictly in arrival order. Watchdogs bound each pipeline stage;
whether a timeout kills the request or just degrades it is decided per stage.
"""

import asyncio
import enum
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Optional

from playwright.async_api import Error as PlaywrightError

from foldy.errors import StageTimeoutError

logger = logging.getLogger(__name__)


class StagePolicy(enum.Enum):
    HARD = "hard"  # timeout aborts the request
    SOFT = "soft"  # timeout or engine error returns the fallback and flags degradation


class ConcurrencyGate:
    def __init__(self, limit: int = 1):
        if limit < 1:
            raise ValueError("concurrency limit must be >= 1")
        self.limit = limit
        self.active = 0
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self):
        if self.active < self.limit and not self._waiters:
            self.active += 1
            return
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            # slot was handed over just as we were cancelled: pass it on
            if fut.done() and not fut.cancelled():
                self.release()
            else:
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
            raise

    def release(self):
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                # slot transfers directly, active count unchanged
                fut.set_result(None)
                return
        self.active = max(0, self.active - 1)

    @asynccontextmanager
    async def slot(self):
        await self.acquire()
        try:
            yield
        finally:
            self.release()


class StageTimer:
    """Collects ``<stage>_ms`` timings for the response."""

    def __init__(self):
        self.started = time.perf_counter()
        self.timings: dict[str, int] = {}
        self.degraded: list[str] = []

    def record(self, stage: str, started: float):
        self.timings[f"{stage}_ms"] = int((time.perf_counter() - started) * 1000)

    def total(self) -> dict:
        out = dict(self.timings)
        out["total_ms"] = int((time.perf_counter() - self.started) * 1000)
        return out


async def run_stage(
    name: str,
    awaitable: Awaitable,
    timeout_ms: Optional[int],
    policy: StagePolicy = StagePolicy.HARD,
    timer: Optional[StageTimer] = None,
    fallback: Any = None,
    soft_errors: tuple = (PlaywrightError,),
):
    """
    Await one pipeline stage under its watchdog.

    ``timeout_ms=None`` disables the watchdog (relaxed mode). On timeout a HARD
    stage raises StageTimeoutError; a SOFT stage returns ``fallback`` and is
    recorded in ``timer.degraded``. A SOFT stage treats ``soft_errors`` (engine
    errors by default, e.g. a context destroyed by a client-side redirect) the
    same way; a HARD stage lets them propagate. The underlying engine call may
    keep running after we stop waiting for it.
    """
    started = time.perf_counter()
    try:
        if timeout_ms is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        if policy is StagePolicy.HARD:
            logger.warning("[watchdog] %s timed out after %sms (hard)", name, timeout_ms)
            raise StageTimeoutError(name, timeout_ms) from None
        logger.info("[watchdog] %s timed out after %sms, continuing degraded", name, timeout_ms)
        if timer is not None:
            timer.degraded.append(name)
        return fallback
    except soft_errors as e:
        if policy is StagePolicy.HARD:
            raise
        logger.warning("[watchdog] %s failed, continuing degraded: %s", name, e)
        if timer is not None:
            timer.degraded.append(name)
        return fallback
    finally:
        if timer is not None:
            timer.record(name, started)
