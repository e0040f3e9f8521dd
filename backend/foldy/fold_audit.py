"""
Fold audit: turn the raw facts gathered in-page into the UX report.

Content that counts towards fold coverage:
  - glyph rects (one per rendered text line, slightly eroded so line gutters
    and letter spacing don't fill whole cells)
  - foreground media
  - CTA elements, each capped so one giant button can't dominate
  - large non-repeating background images ("hero" backgrounds), unless a
    foreground media child already covers most of them
"""

import logging
import re
from dataclasses import dataclass, field

from foldy.config import Settings, get_settings
from foldy.geometry import CoverageGrid, Rect, clip_all
from foldy.page_programs import AUDIT_PROGRAM_VERSION, FOLD_FACTS_JS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CTA lexicon
# ---------------------------------------------------------------------------

CTA_LEXICON = {
    "en": [
        "buy", "buy now", "shop now", "shop", "add to cart", "add to bag", "add to basket",
        "sign up", "sign-up", "signup", "get started", "get-started", "start free",
        "start now", "free trial", "try", "try it free", "subscribe", "join", "join now",
        "book", "book now", "order", "order now", "download", "contact", "contact us",
        "checkout", "check out", "continue", "register", "get a quote", "request a demo",
        "book a demo", "get the app", "apply now",
    ],
    "es": [
        "comprar", "comprar ahora", "añadir al carrito", "agregar al carrito", "regístrate",
        "registrarse", "empezar", "comenzar", "empieza ahora", "prueba gratis", "suscríbete",
        "suscribirse", "reservar", "pedir", "descargar", "contactar", "contáctanos",
    ],
    "fr": [
        "acheter", "ajouter au panier", "s'inscrire", "inscrivez-vous", "commencer",
        "essayer", "essai gratuit", "s'abonner", "abonnez-vous", "réserver", "commander",
        "télécharger", "contactez-nous",
    ],
    "de": [
        "kaufen", "jetzt kaufen", "in den warenkorb", "registrieren", "jetzt registrieren",
        "jetzt starten", "loslegen", "kostenlos testen", "testen", "abonnieren", "buchen",
        "jetzt buchen", "bestellen", "herunterladen", "kontakt aufnehmen",
    ],
    "it": [
        "acquista", "acquista ora", "compra", "aggiungi al carrello", "registrati",
        "iscriviti", "inizia", "inizia ora", "prova gratis", "abbonati", "prenota",
        "ordina", "scarica", "contattaci",
    ],
    "pt": [
        "comprar agora", "adicionar ao carrinho", "cadastre-se", "inscreva-se", "começar",
        "comece agora", "experimente", "teste grátis", "assinar", "assine", "reservar",
        "encomendar", "baixar", "fale conosco",
    ],
    "nl": [
        "kopen", "koop nu", "in winkelwagen", "aanmelden", "registreren", "begin nu",
        "probeer", "probeer gratis", "abonneren", "boeken", "bestellen", "downloaden",
        "neem contact op",
    ],
}

_ALL_PHRASES = sorted({p for phrases in CTA_LEXICON.values() for p in phrases}, key=len, reverse=True)
CTA_RE = re.compile(r"(?<!\w)(" + "|".join(re.escape(p) for p in _ALL_PHRASES) + r")(?!\w)", re.IGNORECASE)

INTENT_HREF_RE = re.compile(
    r"(sign-?up|register|cart|basket|checkout|buy|pricing|trial|demo|contact|book|"
    r"subscribe|order|download|get-?started|join|apply|quote)",
    re.IGNORECASE,
)
BUTTON_CLASS_RE = re.compile(r"(btn|button|cta|primary)", re.IGNORECASE)
TOGGLE_CLASS_RE = re.compile(
    r"(hamburger|burger|nav-?toggle|menu-?toggle|navbar-toggler|menu-?button|menu-?trigger|offcanvas)",
    re.IGNORECASE,
)
TOGGLE_LABEL_RE = re.compile(
    r"^(menu|open menu|close menu|main menu|toggle menu|toggle navigation|navigation|open navigation|close)$",
    re.IGNORECASE,
)


def label_of(el: dict) -> str:
    for key in ("text", "ariaLabel", "title", "value"):
        val = (el.get(key) or "").strip()
        if val:
            return val
    return ""


def is_nav_toggle(el: dict) -> bool:
    if TOGGLE_CLASS_RE.search(el.get("cls") or ""):
        return True
    label = " ".join(label_of(el).lower().split())
    if TOGGLE_LABEL_RE.match(label):
        return True
    controls = (el.get("ariaControls") or "").lower()
    return bool(el.get("ariaExpanded") and ("nav" in controls or "menu" in controls))


def looks_like_primary_button(el: dict) -> bool:
    hints = 0
    if BUTTON_CLASS_RE.search(el.get("cls") or "") or el.get("role") == "button" or el.get("tag") == "button":
        hints += 1
    if el.get("filled"):
        hints += 1
    if float(el.get("borderRadius") or 0) >= 4:
        hints += 1
    return hints >= 2


def is_cta(el: dict) -> bool:
    if is_nav_toggle(el):
        return False
    label = label_of(el)
    if label and CTA_RE.search(label):
        return True
    if el.get("inNav"):
        return False
    href = el.get("href") or ""
    if el.get("type") == "submit" and looks_like_primary_button(el):
        return True
    return bool(href and INTENT_HREF_RE.search(href) and looks_like_primary_button(el))


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@dataclass
class FoldAudit:
    first_cta_in_fold: bool = False
    cta_count: int = 0
    fold_coverage_pct: float = 0.0
    min_font_px: float = 0.0
    max_font_px: float = 0.0
    small_tap_targets: int = 0
    has_viewport_meta: bool = False
    uses_safe_area_css: bool = False
    rects: dict = field(default_factory=dict)

    def to_ux(self) -> dict:
        return {
            "firstCtaInFold": self.first_cta_in_fold,
            "ctaCount": self.cta_count,
            "foldCoveragePct": self.fold_coverage_pct,
            "minFontPx": self.min_font_px,
            "maxFontPx": self.max_font_px,
            "smallTapTargets": self.small_tap_targets,
            "hasViewportMeta": self.has_viewport_meta,
            "usesSafeAreaCSS": self.uses_safe_area_css,
            "auditProgramVersion": AUDIT_PROGRAM_VERSION,
        }

    def rects_debug(self) -> dict:
        return {kind: [r.to_dict() for r in rects] for kind, rects in self.rects.items()}


def _visible(items, include_overlay: bool):
    for item in items or []:
        if not isinstance(item, dict):
            continue
        if item.get("overlay") and not include_overlay:
            continue
        yield item


def in_chat_bubble_zone(rect: Rect, vw: float, vh: float, settings: Settings) -> bool:
    small = rect.width <= settings.chat_bubble_max_px and rect.height <= settings.chat_bubble_max_px
    zone = settings.chat_bubble_zone_px
    return small and rect.x >= vw - zone and rect.y >= vh - zone


def content_rects(facts: dict, vw: float, vh: float, settings: Settings,
                  include_overlay: bool = False) -> dict:
    """Clipped content rects grouped by kind."""
    glyphs = []
    for g in _visible(facts.get("glyphs"), include_overlay):
        eroded = Rect.from_dict(g, "glyph").erode(settings.glyph_erosion_px)
        if eroded is not None:
            glyphs.append(eroded)

    media = [Rect.from_dict(m, "media") for m in _visible(facts.get("media"), include_overlay)]

    cta_cap = settings.cta_max_area_ratio * vw * vh
    ctas = [
        Rect.from_dict(a, "cta").capped(cta_cap)
        for a in _visible(facts.get("actionables"), include_overlay)
        if is_cta(a)
    ]

    heroes = []
    for h in _visible(facts.get("heroes"), include_overlay):
        rect = Rect.from_dict(h, "heroBackground").clip(vw, vh)
        if rect is None:
            continue
        if rect.width < settings.hero_min_width_ratio * vw or rect.height < settings.hero_min_height_px:
            continue
        aspect = rect.width / rect.height
        if not (settings.hero_min_aspect <= aspect <= settings.hero_max_aspect):
            continue
        if float(h.get("mediaChildArea") or 0) >= settings.hero_media_cover_ratio * rect.area:
            continue
        heroes.append(rect)

    return {
        "glyph": clip_all(glyphs, vw, vh),
        "media": clip_all(media, vw, vh),
        "cta": clip_all(ctas, vw, vh),
        "heroBackground": heroes,
    }


def small_tap_rects(facts: dict, vw: float, vh: float, settings: Settings,
                    include_overlay: bool = False) -> list[Rect]:
    out = []
    for a in _visible(facts.get("actionables"), include_overlay):
        rect = Rect.from_dict(a, "smallTap")
        if rect.width <= 0 or rect.height <= 0 or not rect.intersects(vw, vh):
            continue
        if rect.width >= settings.min_tap_px and rect.height >= settings.min_tap_px:
            continue
        if in_chat_bubble_zone(rect, vw, vh, settings):
            continue
        out.append(rect)
    return out


def audit_from_facts(facts: dict, vw: float, vh: float, settings: Settings | None = None,
                     include_overlay: bool = False) -> FoldAudit:
    settings = settings or get_settings()
    facts = facts or {}
    rects = content_rects(facts, vw, vh, settings, include_overlay)

    grid = CoverageGrid(vw, vh, settings.grid_rows, settings.grid_cols)
    for group in rects.values():
        grid.add_all(group)

    cta_in_fold = False
    cta_count = 0
    for a in _visible(facts.get("actionables"), include_overlay):
        if not is_cta(a):
            continue
        cta_count += 1
        if Rect.from_dict(a).inside(vw, vh):
            cta_in_fold = True

    taps = small_tap_rects(facts, vw, vh, settings, include_overlay)
    rects["smallTap"] = clip_all(taps, vw, vh)

    return FoldAudit(
        first_cta_in_fold=cta_in_fold,
        cta_count=cta_count,
        fold_coverage_pct=grid.percent,
        min_font_px=float(facts.get("minFontPx") or 0),
        max_font_px=float(facts.get("maxFontPx") or 0),
        small_tap_targets=len(taps),
        has_viewport_meta=bool(facts.get("hasViewportMeta")),
        uses_safe_area_css=bool(facts.get("usesSafeAreaCSS")),
        rects=rects,
    )


def coverage_with(rects: dict, extra: list[Rect], vw: float, vh: float,
                  settings: Settings | None = None) -> float:
    settings = settings or get_settings()
    grid = CoverageGrid(vw, vh, settings.grid_rows, settings.grid_cols)
    for kind, group in rects.items():
        if kind != "smallTap":
            grid.add_all(group)
    grid.add_all(extra)
    return grid.percent


async def collect_fold_facts(page, max_glyphs: int = 4000) -> dict:
    return await page.evaluate(FOLD_FACTS_JS, {"maxGlyphs": max_glyphs}) or {}
