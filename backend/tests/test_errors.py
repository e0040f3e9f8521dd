import json
import logging

from foldy.errors import (
    BrowserUnavailableError,
    InputError,
    InvalidJobError,
    StageTimeoutError,
    StorageError,
)
from foldy.logging_config import JsonFormatter


def test_error_bodies():
    assert InputError("url is required", reason="invalid_url").to_dict() == {
        "error": "invalid_url", "message": "url is required", "retryable": False,
    }
    err = BrowserUnavailableError("launch failed")
    assert (err.status_code, err.retryable) == (503, True)


def test_stage_timeout_names_the_stage():
    err = StageTimeoutError("screenshot", 8000)
    assert err.reason == "screenshot_timeout"
    assert err.stage == "screenshot" and err.timeout_ms == 8000
    assert "8000ms" in err.message


def test_default_messages():
    assert StorageError().message == "storage_failed"
    assert InvalidJobError("bad", job_id="j1").job_id == "j1"


def test_json_formatter_includes_extras():
    record = logging.LogRecord("foldy.render", logging.INFO, __file__, 1, "[render] %s done", ("pixel_8",), None)
    record.job_id = "job-1"
    entry = json.loads(JsonFormatter().format(record))
    assert entry["message"] == "[render] pixel_8 done"
    assert entry["level"] == "INFO"
    assert entry["job_id"] == "job-1"
