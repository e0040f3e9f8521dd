"""
Screenshot job records.

The claim RPC has returned several shapes over time (bare row, one-element
list, ``{"job": row}``, empty object, null) and rows written by other
producers nest the URL under ``payload``/``data``/``target``.
``normalize_claim`` maps all of that onto one strict ``ScreenshotJob`` or
rejects it with InvalidJobError.
"""

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from foldy import database
from foldy.devices import DEFAULT_DEVICE
from foldy.errors import InvalidJobError

logger = logging.getLogger(__name__)

STATUS_QUEUED = "queued"
STATUS_RUNNING = "running"
STATUS_DONE = "done"
STATUS_ERROR = "error"

_URL_IN_TEXT = re.compile(r"https?://[^\s\"'<>\\]+", re.IGNORECASE)
_NESTED_KEYS = ("payload", "data", "job", "target")


@dataclass(frozen=True)
class ScreenshotJob:
    id: str
    url: str
    device: str
    screenshot_key: str
    attempt: int = 0
    run_id: Optional[str] = None
    render_ts_ms: Optional[int] = None


def screenshot_key_for(run_id: Optional[str], device: str, render_ts_ms: int) -> str:
    return f"{run_id or 'adhoc'}/{device}/{render_ts_ms}.png"


def coerce_url(value) -> Optional[str]:
    """Accept a string, ``{url}``/``{href}``, or find the first http(s) URL in it."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("url", "href"):
            if isinstance(value.get(key), str) and value[key]:
                return value[key]
    try:
        text = json.dumps(value, default=str)
    except (TypeError, ValueError):
        return None
    match = _URL_IN_TEXT.search(text)
    return match.group(0) if match else None


def extract_url(row: dict) -> Optional[str]:
    for key in ("url", "href"):
        found = coerce_url(row.get(key))
        if found:
            return found
    for key in _NESTED_KEYS:
        nested = row.get(key)
        if nested:
            found = coerce_url(nested)
            if found:
                return found
    # last resort: scan the row, minus our own output columns
    rest = {k: v for k, v in row.items() if not str(k).startswith("screenshot_")}
    return coerce_url(rest)


def is_absolute_http_url(url) -> bool:
    if not isinstance(url, str):
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def unwrap_claim(data) -> Optional[dict]:
    """Reduce a raw claim result to a single row dict, or None when idle."""
    if data is None:
        return None
    if isinstance(data, list):
        if not data:
            return None
        if len(data) > 1:
            logger.warning("[jobs] claim returned %d rows, taking first", len(data))
        data = data[0]
    if not isinstance(data, dict):
        logger.warning("[jobs] claim returned unexpected %s, treating as idle", type(data).__name__)
        return None
    if not data:
        return None
    if isinstance(data.get("job"), dict) and "id" not in data:
        data = data["job"]
    return data or None


def normalize_claim(data) -> Optional[ScreenshotJob]:
    row = unwrap_claim(data)
    if row is None:
        return None

    job_id = row.get("id")
    url = extract_url(row)
    if not is_absolute_http_url(url):
        raise InvalidJobError(
            f"invalid_job_url: got {type(row.get('url')).__name__} value={json.dumps(row.get('url'), default=str)[:200]}",
            job_id=str(job_id) if job_id is not None else None,
        )
    if job_id is None:
        raise InvalidJobError("claimed job has no id")

    device = row.get("device") or DEFAULT_DEVICE
    render_ts = row.get("render_ts_ms")
    try:
        render_ts = int(render_ts) if render_ts is not None else None
    except (TypeError, ValueError):
        render_ts = None
    try:
        attempt = int(row.get("attempt") or 0)
    except (TypeError, ValueError):
        attempt = 0

    key = row.get("screenshot_key") or screenshot_key_for(
        row.get("run_id"), device, render_ts or int(time.time() * 1000)
    )
    return ScreenshotJob(
        id=str(job_id),
        url=url.strip(),
        device=str(device),
        screenshot_key=str(key),
        attempt=attempt,
        run_id=str(row["run_id"]) if row.get("run_id") else None,
        render_ts_ms=render_ts,
    )


class SupabaseJobStore:
    """Job persistence as seen by the worker and the render path."""

    async def enqueue(self, url: str, device: str, run_id: Optional[str], render_ts_ms: int) -> dict:
        row = {
            "url": url,
            "device": device,
            "run_id": run_id,
            "render_ts_ms": render_ts_ms,
            "status": STATUS_QUEUED,
            "attempt": 0,
            "screenshot_key": screenshot_key_for(run_id, device, render_ts_ms),
        }
        inserted = await database.insert_job(row)
        return {**row, **(inserted or {})}

    async def claim(self, worker_id: str, max_attempts: int, lease_seconds: int):
        return await database.claim_job(worker_id, max_attempts, lease_seconds)

    async def upload(self, key: str, png: bytes) -> str:
        return await database.upload_screenshot(key, png)

    async def mark_done(self, job: ScreenshotJob, screenshot_url: str):
        await database.update_job(job.id, {
            "status": STATUS_DONE,
            "finished_at": database.now_iso(),
            "screenshot_url": screenshot_url,
            "error": None,
        })

    async def mark_error(self, job_id: str, message: str):
        await database.update_job(job_id, {
            "status": STATUS_ERROR,
            "finished_at": database.now_iso(),
            "error": message[:1000],
        })

    async def requeue(self, job_id: str, message: str):
        """Hand a leased row back to the queue; the attempt count is kept."""
        await database.update_job(job_id, {
            "status": STATUS_QUEUED,
            "worker_id": None,
            "started_at": None,
            "error": message[:1000],
        })

    async def link_run_device(self, job: ScreenshotJob, screenshot_url: str) -> bool:
        if not job.run_id:
            return False
        return await database.link_run_device(
            job.run_id, job.device, job.render_ts_ms, job.screenshot_key, screenshot_url,
        )


async def enqueue_screenshot_job(store, url: str, device: str, run_id: Optional[str],
                                 render_ts_ms: int) -> Optional[dict]:
    """Insert a queued job. Failures are logged, never raised to the caller."""
    try:
        row = await store.enqueue(url, device, run_id, render_ts_ms)
        logger.info("[jobs] queued %s device=%s key=%s", row.get("id"), device, row.get("screenshot_key"))
        return row
    except Exception as e:
        logger.error("[jobs] enqueue failed for %s (%s): %s", url, device, e)
        return None
