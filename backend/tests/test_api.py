import pytest
from fastapi.testclient import TestClient

from foldy import main
from foldy.config import Settings
from foldy.render import RenderService
from foldy.watchdog import ConcurrencyGate

from conftest import FakeBrowserManager, FakePage

AUTH = {"Authorization": "Bearer test-token"}
PUBLIC_URL = "https://93.184.216.34/"


@pytest.fixture
def browser(sign_up_facts):
    return FakeBrowserManager(lambda device: FakePage(facts=sign_up_facts))


@pytest.fixture
def client(browser, settings):
    with TestClient(main.app) as c:
        c.app.state.browser = browser
        c.app.state.renderer = RenderService(browser, ConcurrencyGate(1), settings)
        yield c


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["message"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert response.json()["browser"]["connected"] is True


def test_health_reports_launch_failure(client):
    class Broken(FakeBrowserManager):
        async def health(self):
            raise RuntimeError("chromium missing")

    client.app.state.browser = Broken()
    response = client.get("/health")
    assert response.status_code == 503
    assert response.json()["ok"] is False


def test_devices(client):
    devices = client.get("/devices").json()["devices"]
    assert set(devices) == {"iphone_se_2", "iphone_15_pro", "iphone_15_pro_max", "pixel_8", "galaxy_s23"}
    assert devices["pixel_8"]["dpr"] == 2.625


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer nope"}, {"Authorization": "test"}])
def test_render_requires_token(client, browser, headers):
    response = client.post("/render", json={"url": PUBLIC_URL, "device": "pixel_8"}, headers=headers)
    assert response.status_code == 401
    assert response.json()["error"] == "unauthorized"
    assert browser.acquired == 0


def test_render_accepts_next_token(client, monkeypatch):
    monkeypatch.setattr(main, "get_settings", lambda: Settings(render_token="old", render_token_next="new"))
    for token in ("old", "new"):
        response = client.post("/render", json={"url": PUBLIC_URL, "device": "pixel_8"},
                               headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200


def test_unknown_device_is_rejected_before_navigation(client, browser):
    response = client.post("/render", json={"url": PUBLIC_URL, "device": "nokia_3310"}, headers=AUTH)
    assert response.status_code == 400
    assert response.json()["error"] == "unknown_device"
    assert browser.acquired == 0


def test_missing_fields_are_bad_input(client):
    response = client.post("/render", json={"device": "pixel_8"}, headers=AUTH)
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "bad_input"
    assert "url" in body["message"]


def test_invalid_url_is_bad_input(client, browser):
    response = client.post("/render", json={"url": "javascript:alert(1)", "device": "pixel_8"}, headers=AUTH)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_url"
    assert browser.acquired == 0


def test_ssrf_target_is_blocked(client, browser):
    response = client.post("/render", json={"url": "http://169.254.169.254/", "device": "pixel_8"}, headers=AUTH)
    assert response.status_code == 422
    assert response.json()["error"] == "ssrf_blocked"
    assert browser.acquired == 0


def test_render_success(client):
    response = client.post("/render", json={"url": PUBLIC_URL, "device": "iphone_15_pro"}, headers=AUTH)
    assert response.status_code == 200
    body = response.json()
    assert body["device"] == "iphone_15_pro"
    assert body["ux"]["firstCtaInFold"] is True
    assert body["pngBase64"]
    assert "total_ms" in body["timings"]


def test_bot_protection_maps_to_422(client, browser):
    browser.page_factory = lambda device: FakePage(
        bot={"title": "attention required! | cloudflare", "text": "", "textLength": 0, "marker": None},
    )
    response = client.post("/render", json={"url": PUBLIC_URL, "device": "pixel_8"}, headers=AUTH)
    assert response.status_code == 422
    assert response.json()["error"] == "bot_protection"


def test_deferred_without_store_is_rejected(client):
    response = client.post(
        "/render",
        json={"url": PUBLIC_URL, "device": "pixel_8", "screenshotMode": "deferred"},
        headers=AUTH,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "deferred_unavailable"


def test_unknown_screenshot_mode_is_bad_input(client):
    response = client.post(
        "/render",
        json={"url": PUBLIC_URL, "device": "pixel_8", "screenshotMode": "later"},
        headers=AUTH,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "bad_input"


def test_unexpected_error_keeps_the_error_body(browser, settings):
    class BrokenRenderer(RenderService):
        async def render(self, opts):
            raise TypeError("'NoneType' object is not subscriptable")

    with TestClient(main.app, raise_server_exceptions=False) as c:
        c.app.state.browser = browser
        c.app.state.renderer = BrokenRenderer(browser, ConcurrencyGate(1), settings)
        response = c.post("/render", json={"url": PUBLIC_URL, "device": "pixel_8"}, headers=AUTH)
    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "render_failed"
    assert "TypeError" in body["message"]
