"""
Screenshot worker: sequential, one persistent browser, recycled every N jobs.

Run with ``python -m foldy.worker``. Several worker processes may poll the
same table; the claim RPC is the only thing that keeps them from processing
the same row, so it must stay atomic on the database side.
"""

import asyncio
import logging
import signal
import time
import uuid
from typing import Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from foldy.browser import BrowserManager
from foldy.config import Settings, get_settings
from foldy.devices import device_or_default
from foldy.errors import FoldyError, InvalidJobError
from foldy.jobs import ScreenshotJob, SupabaseJobStore, normalize_claim
from foldy.logging_config import setup_logging
from foldy.network_policy import install_request_policy, install_stability_css, wait_for_fonts
from foldy.page_programs import MINIMAL_HIDE_JS
from foldy.url_guard import validate_target_url

logger = logging.getLogger(__name__)


def is_retryable(exc: Exception) -> bool:
    """Timeouts and browser trouble may pass on another attempt; the rest won't."""
    if isinstance(exc, FoldyError):
        return exc.retryable
    return isinstance(exc, PlaywrightTimeoutError)


class ScreenshotWorker:
    def __init__(self, store, browser: Optional[BrowserManager] = None,
                 settings: Optional[Settings] = None, worker_id: Optional[str] = None):
        self.settings = settings or get_settings()
        self.store = store
        self.browser = browser or BrowserManager(recycle_every=self.settings.worker_browser_recycle_n)
        self.worker_id = worker_id or str(uuid.uuid4())
        self.stopping = asyncio.Event()
        self.idle_ms = self.settings.worker_sleep_ms
        self.processed = 0
        self.failed = 0

    # -- polling -----------------------------------------------------------

    def _backoff(self) -> float:
        """Current sleep in seconds; doubles up to the cap on every idle poll."""
        delay = self.idle_ms
        self.idle_ms = min(self.idle_ms * 2, self.settings.worker_max_sleep_ms)
        return delay / 1000

    def _reset_backoff(self):
        self.idle_ms = self.settings.worker_sleep_ms

    async def _sleep(self, seconds: float):
        try:
            await asyncio.wait_for(self.stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def claim_next(self) -> Optional[ScreenshotJob]:
        s = self.settings
        data = await self.store.claim(self.worker_id, s.worker_max_attempts, s.worker_lease_seconds)
        return normalize_claim(data)

    async def poll_once(self) -> bool:
        """One loop iteration. Returns True if a job was handled."""
        try:
            job = await self.claim_next()
        except InvalidJobError as e:
            logger.warning("[worker] rejected job %s: %s", e.job_id, e.message)
            if e.job_id:
                await self._mark_error(e.job_id, e.message)
            self._reset_backoff()
            return True
        except Exception as e:
            logger.error("[worker] claim failed: %s", e)
            await self._sleep(self._backoff())
            return False

        if job is None:
            await self._sleep(self._backoff())
            return False

        self._reset_backoff()
        await self.process(job)
        return True

    async def run(self):
        logger.info("[worker] started id=%s", self.worker_id)
        try:
            while not self.stopping.is_set():
                await self.poll_once()
        finally:
            await self.browser.shutdown()
            logger.info("[worker] stopped after %d done, %d failed", self.processed, self.failed)

    def stop(self):
        self.stopping.set()

    # -- processing --------------------------------------------------------

    async def _mark_error(self, job_id: str, message: str):
        try:
            await self.store.mark_error(job_id, message)
        except Exception as e:
            logger.error("[worker] could not mark job %s as error: %s", job_id, e)

    async def _requeue(self, job_id: str, message: str):
        try:
            await self.store.requeue(job_id, message)
        except Exception as e:
            # the lease expiry in the claim RPC picks the row up again
            logger.error("[worker] could not requeue job %s: %s", job_id, e)

    async def capture(self, job: ScreenshotJob) -> bytes:
        s = self.settings
        device = device_or_default(job.device)
        async with self.browser.page_for(device) as page:
            page.set_default_timeout(s.worker_nav_timeout_ms)
            await install_request_policy(page)
            await install_stability_css(page)
            await page.goto(job.url, wait_until="domcontentloaded", timeout=s.worker_nav_timeout_ms)
            try:
                await page.wait_for_load_state("networkidle", timeout=4000)
            except Exception:
                pass
            await page.wait_for_timeout(500)
            await page.evaluate(MINIMAL_HIDE_JS)
            await wait_for_fonts(page, s.font_wait_cap_ms)
            return await page.screenshot(
                type="png",
                full_page=False,
                timeout=s.worker_screenshot_timeout_ms,
                clip={"x": 0, "y": 0, "width": device.width, "height": device.height},
            )

    async def process(self, job: ScreenshotJob) -> bool:
        t0 = time.perf_counter()
        logger.info("[worker] processing %s attempt=%s device=%s url=%s",
                    job.id, job.attempt, job.device, job.url)
        try:
            await validate_target_url(job.url, self.settings.dns_timeout_ms)
            png = await self.capture(job)
            public_url = await self.store.upload(job.screenshot_key, png)
            await self.store.mark_done(job, public_url)
        except Exception as e:
            reason = e.reason if isinstance(e, FoldyError) else type(e).__name__
            message = f"{reason}: {e}"
            if is_retryable(e) and job.attempt < self.settings.worker_max_attempts:
                logger.warning("[worker] job %s attempt %s failed (%s), requeued: %s", job.id, job.attempt, reason, e)
                await self._requeue(job.id, message)
            else:
                logger.error("[worker] job %s failed (%s): %s", job.id, reason, e)
                await self._mark_error(job.id, message)
            self.failed += 1
            return False

        try:
            await self.store.link_run_device(job, public_url)
        except Exception as e:
            logger.warning("[worker] run_devices link failed for %s: %s", job.id, e)

        self.processed += 1
        logger.info("[worker] job %s done in %dms -> %s",
                    job.id, int((time.perf_counter() - t0) * 1000), public_url)
        return True


async def main():
    setup_logging()
    settings = get_settings()
    if not settings.jobs_enabled:
        raise SystemExit("[worker] SUPABASE_URL and SUPABASE_SERVICE_ROLE must be set")

    worker = ScreenshotWorker(SupabaseJobStore(), settings=settings)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, worker.stop)
        except NotImplementedError:
            pass  # Windows
    await worker.run()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
