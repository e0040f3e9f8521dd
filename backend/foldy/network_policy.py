"""
Request blocking, animation freeze and the bot-challenge fast-fail.
"""

import logging
import re

from playwright.async_api import Page, Route

from foldy.errors import BotProtectionError
from foldy.page_programs import (
    BOT_CHECK_JS,
    CHALLENGE_PLATFORM_MARKERS,
    FONT_WAIT_JS,
    stability_init_script,
)

logger = logging.getLogger(__name__)

BLOCKED_HOST_PATTERN = re.compile(
    r"(hotjar|fullstory|segment\.(io|com)|google-analytics|googletagmanager|gtm\.js|"
    r"optimizely|clarity\.ms|doubleclick|facebook\.net|connect\.facebook|"
    r"mouseflow|newrelic|nr-data|quantserve|scorecardresearch|criteo|taboola|outbrain)",
    re.IGNORECASE,
)
BLOCKED_EXTENSIONS = re.compile(r"\.(mp4|mov|avi|m4v|webm)(\?|#|$)", re.IGNORECASE)

CHALLENGE_PHRASES = (
    "just a moment",
    "checking your browser",
    "verify you are human",
    "verifying you are human",
    "attention required",
    "are you a robot",
    "access denied",
    "pardon our interruption",
    "request unsuccessful",
    "press & hold",
)
SPARSE_BODY_CHARS = 600


def should_block(url: str) -> bool:
    return bool(BLOCKED_HOST_PATTERN.search(url) or BLOCKED_EXTENSIONS.search(url))


async def install_request_policy(page: Page) -> None:
    async def handle_route(route: Route):
        if should_block(route.request.url):
            await route.abort()
        else:
            await route.continue_()

    await page.route("**/*", handle_route)


async def install_stability_css(page: Page) -> None:
    await page.add_init_script(script=stability_init_script())


async def wait_for_fonts(page: Page, cap_ms: int) -> None:
    await page.evaluate(FONT_WAIT_JS, cap_ms)


def classify_challenge(facts: dict) -> str | None:
    """Reason string if the page facts look like a bot wall, else None."""
    if not isinstance(facts, dict):
        return None
    marker = facts.get("marker")
    # real pages also carry these; only trust them on near-empty bodies
    sparse = (facts.get("textLength") or 0) < SPARSE_BODY_CHARS
    if marker in CHALLENGE_PLATFORM_MARKERS or (marker and sparse):
        return f"challenge markup {marker}"
    title = facts.get("title") or ""
    text = facts.get("text") or ""
    for phrase in CHALLENGE_PHRASES:
        if phrase in title:
            return f"challenge title '{phrase}'"
    if sparse:
        for phrase in CHALLENGE_PHRASES:
            if phrase in text:
                return f"challenge text '{phrase}'"
    return None


async def detect_bot_challenge(page: Page) -> None:
    facts = await page.evaluate(BOT_CHECK_JS)
    reason = classify_challenge(facts)
    if reason:
        logger.info("[policy] bot protection detected: %s", reason)
        raise BotProtectionError(f"page is behind bot protection ({reason})")
