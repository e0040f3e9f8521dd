from contextlib import asynccontextmanager
from typing import Literal, Optional
import asyncio
import logging
import secrets

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from foldy.browser import BrowserManager
from foldy.config import get_settings
from foldy.devices import DEVICES, get_device
from foldy.errors import AuthError, FoldyError
from foldy.jobs import SupabaseJobStore
from foldy.logging_config import setup_logging
from foldy.render import RenderOptions, RenderService
from foldy.url_guard import parse_target_url
from foldy.watchdog import ConcurrencyGate

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging()
    browser = BrowserManager()
    app.state.browser = browser
    app.state.renderer = RenderService(
        browser,
        ConcurrencyGate(settings.render_concurrency),
        settings,
        job_store=SupabaseJobStore() if settings.jobs_enabled else None,
    )
    logger.info("[app] up, concurrency=%s jobs=%s", settings.render_concurrency, settings.jobs_enabled)
    yield
    # uvicorn turns SIGTERM into a lifespan shutdown
    await browser.shutdown()


app = FastAPI(title="foldy-render", lifespan=lifespan)


@app.exception_handler(FoldyError)
async def foldy_error_handler(request: Request, exc: FoldyError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("[app] unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "render_failed", "message": f"{type(exc).__name__}: {exc}", "retryable": False},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"error": "bad_input", "message": f"invalid fields: {', '.join(fields) or 'body'}",
                 "retryable": False},
    )


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class RenderRequest(BaseModel):
    url: str
    device: str
    debugOverlay: bool = False
    debugRects: bool = False
    debugHeatmap: bool = False
    relaxed: bool = False
    runId: Optional[str] = None
    screenshotMode: Literal["inline", "deferred"] = "inline"


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

def require_auth(authorization: str = Header(default="")):
    token = authorization
    if token[:7].lower() == "bearer ":
        token = token[7:]
    token = token.strip()
    accepted = get_settings().accepted_tokens
    if not token or not any(secrets.compare_digest(token, t) for t in accepted):
        raise AuthError("missing or invalid bearer token")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/")
def root():
    return {"message": "foldy-render is running"}


@app.get("/health")
async def health(request: Request):
    """Liveness plus a browser launch check (also warms the pod)."""
    settings = get_settings()
    try:
        info = await asyncio.wait_for(
            request.app.state.browser.health(), timeout=settings.launch_timeout_ms / 1000,
        )
    except asyncio.TimeoutError:
        return JSONResponse(status_code=503, content={"ok": False, "error": "launch_timeout"})
    except Exception as e:
        return JSONResponse(status_code=503, content={"ok": False, "error": str(e)})
    return {"ok": True, "up": True, "browser": info}


@app.get("/devices")
def list_devices():
    return {"devices": {key: d.meta() for key, d in DEVICES.items()}}


@app.post("/render", dependencies=[Depends(require_auth)])
async def render_endpoint(body: RenderRequest, request: Request):
    """Render one URL on one device and return the fold report."""
    device = get_device(body.device)
    parse_target_url(body.url)
    opts = RenderOptions(
        url=body.url.strip(),
        device=device,
        debug_overlay=body.debugOverlay,
        debug_rects=body.debugRects,
        debug_heatmap=body.debugHeatmap,
        relaxed=body.relaxed,
        run_id=body.runId,
        screenshot_mode=body.screenshotMode,
    )
    return await request.app.state.renderer.render(opts)


def run():
    import uvicorn
    uvicorn.run("foldy.main:app", host="0.0.0.0", port=get_settings().port)


if __name__ == "__main__":
    run()
