"""
Render pipeline: one request -> one isolated context -> fold report.

Stages run strictly in order:
  navigate -> settle -> bot check -> (as-seen capture) -> overlay scan
  -> hide -> clean audit -> screenshot -> (heatmap)
Each stage has its own watchdog. Navigation, audit and screenshot timeouts
abort the request; settle, bot check, overlay scan, hide and the debug
captures only degrade the report, on a timeout or an engine error alike.
Only page.goto counts against the navigation watchdog; the networkidle wait
belongs to settle.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from foldy.browser import BrowserManager
from foldy.config import Settings, get_settings
from foldy.devices import DeviceProfile
from foldy.errors import InputError, RenderError, StageTimeoutError
from foldy.fold_audit import audit_from_facts, collect_fold_facts, coverage_with
from foldy.geometry import CoverageGrid
from foldy.image_utils import render_heatmap, screenshot_to_b64
from foldy.jobs import enqueue_screenshot_job
from foldy.network_policy import (
    detect_bot_challenge,
    install_request_policy,
    install_stability_css,
    wait_for_fonts,
)
from foldy.overlays import OverlayScan, hide_overlays, scan_overlays
from foldy.url_guard import validate_target_url
from foldy.watchdog import ConcurrencyGate, StagePolicy, StageTimer, run_stage

logger = logging.getLogger(__name__)

HARD, SOFT = StagePolicy.HARD, StagePolicy.SOFT

# networkidle is best-effort once the DOM is there
NETWORK_IDLE_CAP_MS = 4000

SCREENSHOT_MODES = ("inline", "deferred")


@dataclass
class RenderOptions:
    url: str
    device: DeviceProfile
    debug_overlay: bool = False
    debug_rects: bool = False
    debug_heatmap: bool = False
    relaxed: bool = False
    run_id: Optional[str] = None
    screenshot_mode: str = "inline"


class RenderService:
    def __init__(self, browser: BrowserManager, gate: ConcurrencyGate,
                 settings: Optional[Settings] = None, job_store=None):
        self.browser = browser
        self.gate = gate
        self.settings = settings or get_settings()
        self.job_store = job_store
        self._background: set[asyncio.Task] = set()

    # -- helpers -----------------------------------------------------------

    def _limit(self, ms: int, opts: RenderOptions) -> Optional[int]:
        return None if opts.relaxed else ms

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _navigate(self, page, url: str, timeout_ms: Optional[int]):
        try:
            response = await page.goto(url, wait_until="domcontentloaded")
        except PlaywrightTimeoutError:
            raise StageTimeoutError("nav", timeout_ms or self.settings.relaxed_page_timeout_ms) from None
        except PlaywrightError as e:
            raise RenderError(f"navigation to {url} failed: {e}", reason="navigation_failed") from e
        return response.status if response is not None else None

    async def _settle(self, page):
        try:
            await page.wait_for_load_state("networkidle", timeout=NETWORK_IDLE_CAP_MS)
        except PlaywrightError:
            pass
        await page.wait_for_timeout(self.settings.settle_ms)
        await wait_for_fonts(page, self.settings.font_wait_cap_ms)

    async def _capture(self, page, device: DeviceProfile) -> bytes:
        return await page.screenshot(
            type="png",
            full_page=False,
            clip={"x": 0, "y": 0, "width": device.width, "height": device.height},
        )

    async def _scan(self, page, device: DeviceProfile):
        """Overlay scan plus the pre-hide coverage snapshot."""
        vw, vh = device.width, device.height
        scan = await scan_overlays(page, vw, vh, self.settings)
        pre_facts = await collect_fold_facts(page)
        pre = audit_from_facts(pre_facts, vw, vh, self.settings, include_overlay=True)
        return scan, coverage_with(pre.rects, scan.rects, vw, vh, self.settings)

    async def _open_context(self, device: DeviceProfile):
        task = asyncio.ensure_future(self.browser.new_context(device))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # the watchdog stopped waiting; close the context if it still arrives
            task.add_done_callback(self._close_late_context)
            raise

    def _close_late_context(self, task: asyncio.Future):
        if task.cancelled() or task.exception() is not None:
            return
        self._spawn(self._close_context(task.result()))

    async def _close_context(self, context):
        try:
            await context.close()
        except Exception as e:
            logger.debug("[render] context close failed: %s", e)

    async def _enqueue(self, opts: RenderOptions, render_ts_ms: int):
        if self.job_store is None:
            return None
        return await enqueue_screenshot_job(
            self.job_store, opts.url, opts.device.key, opts.run_id, render_ts_ms,
        )

    # -- pipeline ----------------------------------------------------------

    async def render(self, opts: RenderOptions) -> dict:
        if opts.screenshot_mode not in SCREENSHOT_MODES:
            raise InputError(f"unknown screenshotMode {opts.screenshot_mode!r}")
        if opts.screenshot_mode == "deferred" and self.job_store is None:
            raise InputError("deferred screenshots need a job store", reason="deferred_unavailable")

        opts.url = await validate_target_url(opts.url, self.settings.dns_timeout_ms)

        render_ts_ms = int(time.time() * 1000)
        job_row = None
        if opts.screenshot_mode == "deferred":
            job_row = await self._enqueue(opts, render_ts_ms)
        elif self.job_store is not None:
            self._spawn(self._enqueue(opts, render_ts_ms))

        timer = StageTimer()
        queued_at = time.perf_counter()
        async with self.gate.slot():
            timer.record("queue", queued_at)
            try:
                result = await self._render_locked(opts, timer, capture_inline=job_row is None)
            except PlaywrightError as e:
                raise RenderError(f"render failed: {e}") from e

        if job_row is not None:
            result["screenshotReference"] = {
                "jobId": job_row.get("id"),
                "storageKey": job_row.get("screenshot_key"),
            }
        result["timings"] = timer.total()
        logger.info(
            "[render] %s %s coverage=%s cta=%s overlays=%s total_ms=%s",
            opts.device.key, urlparse(opts.url).hostname, result["ux"]["foldCoveragePct"],
            result["ux"]["firstCtaInFold"], result["ux"]["overlayBlockers"], result["timings"]["total_ms"],
        )
        return result

    async def _render_locked(self, opts: RenderOptions, timer: StageTimer, capture_inline: bool) -> dict:
        s = self.settings
        device = opts.device
        vw, vh = device.width, device.height

        await run_stage("launch", self.browser.acquire(), self._limit(s.launch_timeout_ms, opts), HARD, timer)
        context = await run_stage(
            "context", self._open_context(device), self._limit(s.context_timeout_ms, opts), HARD, timer,
        )
        try:
            page = await context.new_page()
            page.set_default_timeout(s.relaxed_page_timeout_ms if opts.relaxed else s.nav_timeout_ms)
            await install_request_policy(page)
            await install_stability_css(page)

            nav_limit = self._limit(s.nav_timeout_ms, opts)
            http_status = await run_stage("nav", self._navigate(page, opts.url, nav_limit), nav_limit, HARD, timer)
            await run_stage("settle", self._settle(page),
                            self._limit(NETWORK_IDLE_CAP_MS + s.settle_ms + s.font_wait_cap_ms + 1000, opts), SOFT, timer)
            await run_stage("bot_check", detect_bot_challenge(page),
                            self._limit(s.bot_check_timeout_ms, opts), SOFT, timer)

            as_seen = None
            if opts.debug_overlay:
                as_seen = await run_stage("as_seen", self._capture(page, device),
                                          self._limit(s.as_seen_timeout_ms, opts), SOFT, timer)

            scanned = await run_stage("scan", self._scan(page, device),
                                      self._limit(s.scan_timeout_ms, opts), SOFT, timer)
            if scanned is None:
                scan, pre_hide_pct = OverlayScan.degraded_result(), None
            else:
                scan, pre_hide_pct = scanned

            hidden, hide_degraded = 0, False
            if scan.overlays:
                hidden = await run_stage("hide", hide_overlays(page),
                                         self._limit(s.hide_timeout_ms, opts), SOFT, timer)
                if hidden is None:
                    hidden, hide_degraded = 0, True

            facts = await run_stage("audit", collect_fold_facts(page),
                                    self._limit(s.audit_timeout_ms, opts), HARD, timer)
            audit = audit_from_facts(facts, vw, vh, s)

            png = None
            if capture_inline or opts.debug_heatmap:
                png = await run_stage("screenshot", self._capture(page, device),
                                      self._limit(s.screenshot_timeout_ms, opts), HARD, timer)

            heatmap = None
            if opts.debug_heatmap and png:
                grid = CoverageGrid(vw, vh, s.grid_rows, s.grid_cols)
                for kind, group in audit.rects.items():
                    if kind != "smallTap":
                        grid.add_all(group)
                outlines = {**audit.rects, "overlay": scan.rects}
                heatmap = await run_stage("heatmap", asyncio.to_thread(render_heatmap, png, grid, outlines),
                                          self._limit(s.heatmap_timeout_ms, opts), SOFT, timer,
                                          soft_errors=(PlaywrightError, OSError, ValueError))
        finally:
            await self._close_context(context)

        ux = audit.to_ux()
        ux.update({
            "preHideCoveragePct": pre_hide_pct,
            "overlayCoveragePct": scan.coverage_pct,
            "overlayBlockers": scan.blockers,
            "overlayReasons": scan.reasons,
            "overlaysHidden": hidden,
            "overlayScanDegraded": scan.degraded,
            "overlayHideDegraded": hide_degraded,
        })
        result = {
            "device": device.key,
            "deviceMeta": device.meta(),
            "httpStatus": http_status,
            "ux": ux,
            "degradedStages": list(timer.degraded),
        }
        if capture_inline and png is not None:
            result["pngBase64"] = screenshot_to_b64(png)

        debug = {}
        if opts.debug_overlay:
            debug["overlays"] = [o.to_dict() for o in scan.overlays]
            debug["overlayCandidates"] = scan.considered
            if as_seen:
                debug["asSeenPngBase64"] = screenshot_to_b64(as_seen)
        if opts.debug_rects:
            debug["rects"] = {**audit.rects_debug(), "overlay": [r.to_dict() for r in scan.rects]}
        if opts.debug_heatmap and heatmap:
            debug["heatmapPngBase64"] = screenshot_to_b64(heatmap)
        if debug:
            result["debug"] = debug
        return result
