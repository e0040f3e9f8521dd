import asyncio
import io
import os
from contextlib import asynccontextmanager

import pytest
from PIL import Image

# Set test environment variables before any settings are read
os.environ.update({
    "RENDER_TOKEN": "test-token",
    "RENDER_TOKEN_NEXT": "",
    "SUPABASE_URL": "",
    "SUPABASE_SERVICE_ROLE": "",
    "LOG_LEVEL": "debug",
})

from foldy.config import Settings, get_settings  # noqa: E402
from foldy.page_programs import (  # noqa: E402
    BOT_CHECK_JS,
    FOLD_FACTS_JS,
    FONT_WAIT_JS,
    HIDE_OVERLAYS_JS,
    MINIMAL_HIDE_JS,
    OVERLAY_SCAN_JS,
    TAG_OVERLAYS_JS,
)

get_settings.cache_clear()


def make_png(width=393, height=852, color=(255, 255, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeResponse:
    def __init__(self, status=200):
        self.status = status


class FakePage:
    """
    Stands in for a Playwright page. ``evaluate`` dispatches on which in-page
    program was passed and returns canned facts for it.
    """

    def __init__(self, scan=None, facts=None, bot=None, png=None, goto_error=None, status=200, nav_delay=0.0,
                 load_delay=0.0, font_error=None):
        self.scan = scan or {"viewport": {"width": 393, "height": 852}, "candidates": []}
        self.facts = facts or {}
        self.bot = bot or {"title": "home", "text": "welcome", "textLength": 7, "marker": None}
        self.png = png if png is not None else make_png()
        self.goto_error = goto_error
        self.status = status
        self.nav_delay = nav_delay
        self.load_delay = load_delay
        self.font_error = font_error
        self.tagged = []
        self.hidden = False
        self.visited = []
        self.calls = []
        self.init_scripts = []
        self.routes = []
        self.default_timeout = None

    async def evaluate(self, script, arg=None):
        if script is OVERLAY_SCAN_JS:
            self.calls.append("scan")
            return self.scan
        if script is TAG_OVERLAYS_JS:
            self.calls.append("tag")
            self.tagged = list(arg)
            return len(arg)
        if script is HIDE_OVERLAYS_JS:
            self.calls.append("hide")
            self.hidden = True
            return len(self.tagged)
        if script is FOLD_FACTS_JS:
            self.calls.append("facts")
            return self.facts
        if script is BOT_CHECK_JS:
            self.calls.append("bot_check")
            return self.bot
        if script is FONT_WAIT_JS:
            self.calls.append("fonts")
            if self.font_error is not None:
                raise self.font_error
            return True
        if script is MINIMAL_HIDE_JS:
            self.calls.append("minimal_hide")
            return 0
        raise AssertionError("unexpected script")

    async def goto(self, url, wait_until=None, timeout=None):
        self.visited.append(url)
        await asyncio.sleep(self.nav_delay)
        if self.goto_error is not None:
            raise self.goto_error
        return FakeResponse(self.status)

    async def wait_for_load_state(self, state, timeout=None):
        await asyncio.sleep(self.load_delay)

    async def wait_for_timeout(self, ms):
        return None

    async def route(self, pattern, handler):
        self.routes.append(pattern)

    async def add_init_script(self, script=None):
        self.init_scripts.append(script)

    def set_default_timeout(self, ms):
        self.default_timeout = ms

    async def screenshot(self, **kwargs):
        self.calls.append("screenshot")
        return self.png


class FakeContext:
    def __init__(self, page, on_close=None):
        self.page = page
        self.closed = False
        self.on_close = on_close

    async def new_page(self):
        return self.page

    async def close(self):
        if not self.closed and self.on_close:
            self.on_close()
        self.closed = True


class FakeBrowserManager:
    """Hands out a FakePage per context; ``page_factory`` may vary it by call."""

    def __init__(self, page_factory=None):
        self.page_factory = page_factory or (lambda device: FakePage())
        self.contexts = []
        self.acquired = 0
        self.open = 0
        self.peak_open = 0
        self.shut_down = False

    async def acquire(self):
        self.acquired += 1
        return self

    async def new_context(self, device):
        await self.acquire()
        context = FakeContext(self.page_factory(device), on_close=self._closed)
        self.contexts.append(context)
        self.open += 1
        self.peak_open = max(self.peak_open, self.open)
        return context

    def _closed(self):
        self.open -= 1

    @asynccontextmanager
    async def page_for(self, device):
        context = await self.new_context(device)
        try:
            yield await context.new_page()
        finally:
            await context.close()

    async def health(self):
        return {"connected": True, "version": "fake"}

    async def shutdown(self):
        self.shut_down = True


@pytest.fixture
def settings():
    return Settings(
        render_token="test-token",
        supabase_url="",
        supabase_service_role="",
        worker_sleep_ms=10,
        worker_max_sleep_ms=40,
        settle_ms=0,
    )


@pytest.fixture
def fake_browser():
    return FakeBrowserManager()


@pytest.fixture
def sign_up_facts():
    """iPhone 15 Pro page: heading, one hero image and a Sign Up button in the fold."""
    return {
        "viewport": {"width": 393, "height": 852},
        "glyphs": [
            {"x": 20, "y": 100, "width": 350, "height": 40, "overlay": False},
            {"x": 20, "y": 150, "width": 300, "height": 24, "overlay": False},
        ],
        "media": [
            {"x": 0, "y": 200, "width": 393, "height": 300, "tag": "img", "overlay": False},
        ],
        "actionables": [
            {"x": 96, "y": 540, "width": 200, "height": 48, "inFold": True, "tag": "a",
             "text": "Sign Up", "href": "/signup", "cls": "btn btn-primary", "filled": True,
             "borderRadius": 8, "inNav": False, "overlay": False},
            {"x": 340, "y": 10, "width": 40, "height": 40, "inFold": True, "tag": "button",
             "ariaLabel": "Open menu", "cls": "hamburger", "inNav": True, "overlay": False},
        ],
        "heroes": [],
        "minFontPx": 14,
        "maxFontPx": 36,
        "hasViewportMeta": True,
        "usesSafeAreaCSS": False,
    }
