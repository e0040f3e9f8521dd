"""
Supabase client for screenshot job rows and the screenshot bucket.

supabase-py is synchronous; every call is pushed to a worker thread so the
render path never blocks the event loop on the network.
"""

import asyncio
from datetime import datetime, timezone

from foldy.config import get_settings
from foldy.errors import StorageError

JOBS_TABLE = "screenshot_jobs"
CLAIM_RPC = "claim_screenshot_job"


def _get_client():
    """Get a Supabase client. Raises if credentials are missing."""
    settings = get_settings()
    url = settings.supabase_url
    key = settings.supabase_service_role
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE must be set")
    from supabase import create_client
    return create_client(url, key)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def insert_job(data: dict) -> dict:
    """Insert a job row. Returns the inserted row."""
    def _run():
        client = _get_client()
        result = client.table(JOBS_TABLE).insert(data).execute()
        return result.data[0] if result.data else {}
    return await asyncio.to_thread(_run)


async def claim_job(worker_id: str, max_attempts: int, lease_seconds: int):
    """Call the atomic claim RPC. Returns whatever shape the RPC hands back."""
    def _run():
        client = _get_client()
        result = client.rpc(CLAIM_RPC, {
            "p_worker_id": worker_id,
            "p_max_attempts": max_attempts,
            "p_lease_seconds": lease_seconds,
        }).execute()
        return result.data
    return await asyncio.to_thread(_run)


async def update_job(job_id: str, data: dict) -> dict:
    def _run():
        client = _get_client()
        result = client.table(JOBS_TABLE).update(data).eq("id", job_id).execute()
        return result.data[0] if result.data else {}
    return await asyncio.to_thread(_run)


async def upload_screenshot(key: str, png: bytes) -> str:
    """Upload (upsert) a PNG and return its public URL."""
    bucket = get_settings().supabase_bucket

    def _run():
        client = _get_client()
        storage = client.storage.from_(bucket)
        storage.upload(
            path=key,
            file=png,
            file_options={"content-type": "image/png", "upsert": "true"},
        )
        return storage.get_public_url(key)

    try:
        return await asyncio.to_thread(_run)
    except Exception as e:
        raise StorageError(f"upload of {key} failed: {e}") from e


async def link_run_device(run_id: str, device: str, render_ts_ms, key: str, url: str) -> bool:
    """Point the newest matching run_devices row at the uploaded screenshot."""
    def _run():
        client = _get_client()
        query = (
            client.table("run_devices")
            .select("id")
            .eq("run_id", run_id)
            .eq("device", device)
        )
        if render_ts_ms is not None:
            query = query.eq("render_ts_ms", render_ts_ms)
        found = query.order("created_at", desc=True).limit(1).execute()
        if not found.data:
            return False
        client.table("run_devices").update({
            "screenshot_key": key,
            "screenshot_url": url,
        }).eq("id", found.data[0]["id"]).execute()
        return True
    return await asyncio.to_thread(_run)
