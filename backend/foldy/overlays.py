"""
Overlay detection and removal.

Two phases on the same page. The scan program tags every visible
fixed/sticky element in the fold with a candidate index and returns its
facts; ``classify_candidates`` decides which ones are overlays, and only those
get the overlay tag. The hide program then applies a single style rule to
tagged nodes, so nothing that wasn't classified is ever hidden.
"""

import logging
import re
from dataclasses import dataclass, field

from foldy.config import Settings, get_settings
from foldy.geometry import CoverageGrid, Rect
from foldy.page_programs import HIDE_OVERLAYS_JS, OVERLAY_SCAN_JS, TAG_OVERLAYS_JS

logger = logging.getLogger(__name__)

CONSENT_RE = re.compile(
    r"(cookie|consent|gdpr|ccpa|privacy (settings|preferences|choices)|"
    r"we use cookies|accept all|reject all|manage (preferences|options)|"
    r"utilizamos cookies|usamos cookies|aceptar todas|"
    r"nous utilisons des cookies|consentement|tout accepter|"
    r"wir verwenden cookies|einwilligung|datenschutzeinstellungen|alle akzeptieren|"
    r"utilizziamo i cookie|consenso|accetta tutti|"
    r"consentimento|aceitar todos|"
    r"toestemming|alles accepteren)",
    re.IGNORECASE,
)

NAV_HINT_RE = re.compile(
    r"(navbar|nav-bar|navigation|site-header|main-header|top-bar|topbar|masthead)",
    re.IGNORECASE,
)

REASON_CONSENT = "consent_text"
REASON_BOTTOM_BAR = "bottom_bar"
REASON_LARGE = "large_fixed"


@dataclass
class OverlayCandidate:
    index: int
    rect: Rect
    reason: str
    tag: str = ""
    text: str = ""

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "reason": self.reason,
            "tag": self.tag,
            "text": self.text[:120],
            "rect": self.rect.to_dict(),
        }


@dataclass
class OverlayScan:
    overlays: list[OverlayCandidate] = field(default_factory=list)
    considered: int = 0
    coverage_pct: float = 0.0
    blockers: int = 0
    degraded: bool = False

    @property
    def rects(self) -> list[Rect]:
        return [o.rect for o in self.overlays]

    @property
    def reasons(self) -> dict:
        counts: dict[str, int] = {}
        for o in self.overlays:
            counts[o.reason] = counts.get(o.reason, 0) + 1
        return counts

    @classmethod
    def degraded_result(cls) -> "OverlayScan":
        return cls(degraded=True)


def is_nav_like(cand: dict) -> bool:
    if cand.get("navLike"):
        return True
    hints = " ".join(str(cand.get(k) or "") for k in ("tag", "id", "cls", "role"))
    return bool(NAV_HINT_RE.search(hints))


def classify_candidate(cand: dict, vw: float, vh: float, settings: Settings):
    """Return ``(reason, clipped_rect)`` for an overlay, or ``None``."""
    rect = Rect.from_dict(cand, kind="overlay").clip(vw, vh)
    if rect is None:
        return None
    if is_nav_like(cand):
        return None

    text = " ".join(str(cand.get(k) or "") for k in ("text", "ariaLabel", "id", "cls"))
    if CONSENT_RE.search(text):
        return REASON_CONSENT, rect

    raw_top = float(cand.get("y", 0))
    if (
        rect.width >= settings.bottom_bar_min_width_ratio * vw
        and rect.height >= settings.bottom_bar_min_height_px
        and raw_top >= vh * 0.8
        and int(cand.get("actionableCount") or 0) >= 2
    ):
        return REASON_BOTTOM_BAR, rect

    if rect.area >= settings.overlay_area_threshold * vw * vh:
        return REASON_LARGE, rect
    return None


def classify_candidates(candidates: list, vw: float, vh: float,
                        settings: Settings | None = None) -> list[OverlayCandidate]:
    settings = settings or get_settings()
    accepted = []
    for cand in candidates or []:
        if not isinstance(cand, dict):
            continue
        verdict = classify_candidate(cand, vw, vh, settings)
        if verdict is None:
            continue
        reason, rect = verdict
        accepted.append(OverlayCandidate(
            index=int(cand.get("index", len(accepted))),
            rect=rect,
            reason=reason,
            tag=str(cand.get("tag") or ""),
            text=str(cand.get("text") or ""),
        ))
    return accepted


def summarize(overlays: list[OverlayCandidate], considered: int, vw: float, vh: float,
              settings: Settings | None = None) -> OverlayScan:
    settings = settings or get_settings()
    grid = CoverageGrid(vw, vh, settings.grid_rows, settings.grid_cols)
    grid.add_all(o.rect for o in overlays)
    big = settings.overlay_area_threshold * vw * vh
    blockers = sum(1 for o in overlays if o.reason == REASON_LARGE or o.rect.area >= big)
    return OverlayScan(
        overlays=overlays,
        considered=considered,
        coverage_pct=grid.percent,
        blockers=blockers,
    )


async def scan_overlays(page, vw: float, vh: float, settings: Settings | None = None) -> OverlayScan:
    """Pre-hide pass: find, classify and tag overlays in place."""
    settings = settings or get_settings()
    facts = await page.evaluate(OVERLAY_SCAN_JS) or {}
    candidates = facts.get("candidates") or []
    overlays = classify_candidates(candidates, vw, vh, settings)
    if overlays:
        await page.evaluate(TAG_OVERLAYS_JS, [o.index for o in overlays])
    scan = summarize(overlays, len(candidates), vw, vh, settings)
    logger.debug("[overlays] %d/%d candidates tagged %s", len(overlays), len(candidates), scan.reasons)
    return scan


async def hide_overlays(page) -> int:
    """Hide every tagged overlay (and therefore its descendants)."""
    return int(await page.evaluate(HIDE_OVERLAYS_JS) or 0)
