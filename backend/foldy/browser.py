"""
One shared Chromium per process.

Launch is lazy and memoized behind a lock, so concurrent callers wait on the
same launch instead of starting their own. A dropped connection is noticed on
the next acquire() and the browser is launched again. Every request gets its
own BrowserContext, closed no matter how the request ends.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from foldy.devices import DeviceProfile
from foldy.errors import BrowserUnavailableError

logger = logging.getLogger(__name__)

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",  # small /dev/shm in tiny containers
    "--disable-gpu",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
]


class BrowserManager:
    def __init__(self, recycle_every: int = 0, headless: bool = True):
        self.recycle_every = recycle_every
        self.headless = headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()
        self._contexts_since_launch = 0
        self.launches = 0

    def is_healthy(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    def _needs_recycle(self) -> bool:
        return bool(self.recycle_every) and self._contexts_since_launch >= self.recycle_every

    async def acquire(self) -> Browser:
        if self.is_healthy() and not self._needs_recycle():
            return self._browser
        async with self._lock:
            # another caller may have launched while we waited
            if self.is_healthy() and not self._needs_recycle():
                return self._browser
            await self._launch()
            return self._browser

    async def relaunch(self) -> Browser:
        async with self._lock:
            await self._launch()
            return self._browser

    async def _launch(self):
        await self._close_browser()
        try:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            browser = await self._playwright.chromium.launch(
                headless=self.headless, args=BROWSER_ARGS,
            )
        except Exception as e:
            logger.error("[browser] launch failed: %s", e)
            raise BrowserUnavailableError(f"browser launch failed: {e}") from e
        browser.on("disconnected", self._on_disconnected)
        self._browser = browser
        self._contexts_since_launch = 0
        self.launches += 1
        logger.info("[browser] (re)launched Chromium %s", browser.version)

    def _on_disconnected(self, browser):
        if browser is self._browser:
            logger.warning("[browser] disconnected, will relaunch on next acquire")
            self._browser = None

    async def _close_browser(self):
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as e:
                logger.debug("[browser] close failed: %s", e)
            self._browser = None

    async def new_context(self, device: DeviceProfile) -> BrowserContext:
        browser = await self.acquire()
        context = await browser.new_context(**device.context_options())
        self._contexts_since_launch += 1
        return context

    @asynccontextmanager
    async def page_for(self, device: DeviceProfile):
        """Yield a fresh page in an isolated context; the context is always closed."""
        context = await self.new_context(device)
        try:
            page = await context.new_page()
            yield page
        finally:
            try:
                await context.close()
            except Exception as e:
                logger.debug("[browser] context close failed: %s", e)

    async def health(self) -> dict:
        browser = await self.acquire()
        return {"connected": browser.is_connected(), "version": browser.version}

    async def shutdown(self):
        async with self._lock:
            await self._close_browser()
            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as e:
                    logger.debug("[browser] playwright stop failed: %s", e)
                self._playwright = None
        logger.info("[browser] shut down")
