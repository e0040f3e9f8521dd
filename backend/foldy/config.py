from pydantic_settings import BaseSettings
from functools import lru_cache
import os


class Settings(BaseSettings):
    # Auth (RENDER_TOKEN_NEXT lets callers switch tokens without downtime)
    render_token: str = "devtoken"
    render_token_next: str = ""

    port: int = 3000
    log_level: str = "INFO"
    log_json: bool = False

    # Concurrency: contexts allowed to be open at once in this process
    render_concurrency: int = 1

    # Per-stage watchdogs (milliseconds)
    launch_timeout_ms: int = 20000
    context_timeout_ms: int = 5000
    nav_timeout_ms: int = 15000
    settle_ms: int = 800
    font_wait_cap_ms: int = 1500
    bot_check_timeout_ms: int = 2000
    as_seen_timeout_ms: int = 8000
    scan_timeout_ms: int = 3000
    hide_timeout_ms: int = 2000
    audit_timeout_ms: int = 5000
    screenshot_timeout_ms: int = 8000
    heatmap_timeout_ms: int = 4000
    dns_timeout_ms: int = 2000
    relaxed_page_timeout_ms: int = 120000

    # Fold heuristics
    grid_rows: int = 32
    grid_cols: int = 24
    overlay_area_threshold: float = 0.20
    bottom_bar_min_width_ratio: float = 0.60
    bottom_bar_min_height_px: int = 48
    cta_max_area_ratio: float = 0.15
    hero_min_width_ratio: float = 0.50
    hero_min_height_px: int = 120
    hero_min_aspect: float = 0.5
    hero_max_aspect: float = 6.0
    hero_media_cover_ratio: float = 0.60
    glyph_erosion_px: float = 1.0
    min_tap_px: int = 44
    chat_bubble_max_px: int = 100
    chat_bubble_zone_px: int = 120

    # Supabase (job table + storage bucket)
    supabase_url: str = ""
    supabase_service_role: str = ""
    supabase_bucket: str = "screenshot"

    # Screenshot worker
    worker_sleep_ms: int = 1500
    worker_max_sleep_ms: int = 15000
    worker_max_attempts: int = 3
    # a running row older than this is considered abandoned and can be claimed again
    worker_lease_seconds: int = 300
    worker_browser_recycle_n: int = 50
    worker_nav_timeout_ms: int = 25000
    worker_screenshot_timeout_ms: int = 15000

    class Config:
        # .env in the repo root (two levels up from backend/foldy/), optional in production
        _env_path = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        env_file = _env_path if os.path.exists(_env_path) else None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def accepted_tokens(self) -> set[str]:
        return {t for t in (self.render_token, self.render_token_next) if t}

    @property
    def jobs_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role)


@lru_cache()
def get_settings():
    return Settings()
