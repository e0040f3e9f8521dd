"""
Error taxonomy for the render service and the screenshot worker.

Every error carries a machine-readable ``reason`` that ends up in the JSON
body, so callers never have to parse a raw browser exception.
"""

from typing import Optional


class FoldyError(Exception):
    """Base class. ``status_code`` is the HTTP status used by the API."""

    status_code = 500
    reason = "render_failed"
    retryable = False

    def __init__(self, message: str = "", reason: Optional[str] = None,
                 retryable: Optional[bool] = None):
        self.message = message or self.reason
        if reason is not None:
            self.reason = reason
        if retryable is not None:
            self.retryable = retryable
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.reason,
            "message": self.message,
            "retryable": self.retryable,
        }


class InputError(FoldyError):
    status_code = 400
    reason = "bad_input"


class AuthError(FoldyError):
    status_code = 401
    reason = "unauthorized"


class BlockedTargetError(FoldyError):
    """Destination resolves to loopback/private/link-local space."""
    status_code = 422
    reason = "ssrf_blocked"


class BotProtectionError(FoldyError):
    status_code = 422
    reason = "bot_protection"


class BrowserUnavailableError(FoldyError):
    status_code = 503
    reason = "browser_unavailable"
    retryable = True


class StageTimeoutError(FoldyError):
    status_code = 504
    retryable = True

    def __init__(self, stage: str, timeout_ms: int):
        self.stage = stage
        self.timeout_ms = timeout_ms
        super().__init__(
            f"{stage} exceeded {timeout_ms}ms",
            reason=f"{stage}_timeout",
        )


class RenderError(FoldyError):
    status_code = 500
    reason = "render_failed"


class StorageError(FoldyError):
    reason = "storage_failed"


class InvalidJobError(FoldyError):
    """A claimed job that cannot be turned into a usable job record."""
    reason = "invalid_job_url"

    def __init__(self, message: str, job_id: Optional[str] = None):
        self.job_id = job_id
        super().__init__(message)
