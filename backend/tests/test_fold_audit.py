import pytest

from foldy.fold_audit import (
    audit_from_facts,
    collect_fold_facts,
    content_rects,
    coverage_with,
    is_cta,
    is_nav_toggle,
)
from foldy.geometry import Rect
from foldy.page_programs import AUDIT_PROGRAM_VERSION

from conftest import FakePage

VW, VH = 393, 852


def test_sign_up_page(settings, sign_up_facts):
    audit = audit_from_facts(sign_up_facts, VW, VH, settings)
    assert audit.first_cta_in_fold is True
    assert audit.cta_count == 1
    assert audit.small_tap_targets == 1  # the 40px hamburger
    assert 0 < audit.fold_coverage_pct < 100
    assert audit.min_font_px == 14 and audit.max_font_px == 36

    ux = audit.to_ux()
    assert ux["auditProgramVersion"] == AUDIT_PROGRAM_VERSION
    assert ux["hasViewportMeta"] is True
    assert ux["usesSafeAreaCSS"] is False


def test_cta_below_fold_is_counted_but_not_in_fold(settings, sign_up_facts):
    sign_up_facts["actionables"][0].update({"y": 900, "inFold": False})
    audit = audit_from_facts(sign_up_facts, VW, VH, settings)
    assert audit.cta_count == 1
    assert audit.first_cta_in_fold is False


def test_cta_straddling_fold_is_not_in_fold(settings, sign_up_facts):
    sign_up_facts["actionables"][0].update({"y": 830})
    assert audit_from_facts(sign_up_facts, VW, VH, settings).first_cta_in_fold is False


@pytest.mark.parametrize("el", [
    {"tag": "a", "text": "Comprar ahora"},
    {"tag": "button", "text": "Jetzt kaufen"},
    {"tag": "a", "text": "Essai gratuit"},
    {"tag": "a", "text": "Get started"},
    {"tag": "button", "ariaLabel": "Add to cart"},
    {"tag": "input", "type": "submit", "value": "Go", "cls": "btn", "filled": True},
    {"tag": "a", "text": "See plans", "href": "/pricing", "cls": "cta", "filled": True, "borderRadius": 6},
])
def test_cta_positive(el):
    assert is_cta(el)


@pytest.mark.parametrize("el", [
    {"tag": "a", "text": "Buyer's guide"},
    {"tag": "a", "text": "Pricing", "href": "/pricing", "inNav": True},
    {"tag": "a", "text": "Read more", "href": "/blog/signup-tips"},
    {"tag": "button", "ariaLabel": "Open menu", "cls": "hamburger"},
    {"tag": "button", "text": "Menu"},
    {"tag": "button", "ariaExpanded": True, "ariaControls": "main-nav", "text": "Shop"},
])
def test_cta_negative(el):
    assert not is_cta(el)


def test_nav_toggle_by_label_and_aria():
    assert is_nav_toggle({"text": "Toggle navigation"})
    assert is_nav_toggle({"ariaExpanded": True, "ariaControls": "mobile-menu"})
    assert not is_nav_toggle({"text": "Sign Up", "cls": "btn"})


def test_giant_cta_is_capped(settings):
    facts = {"actionables": [
        {"x": 0, "y": 0, "width": VW, "height": VH, "tag": "a", "text": "Buy now", "inFold": True},
    ]}
    audit = audit_from_facts(facts, VW, VH, settings)
    assert audit.first_cta_in_fold
    assert audit.fold_coverage_pct < 30


def test_chat_bubble_is_not_a_small_tap(settings):
    facts = {"actionables": [
        {"x": VW - 70, "y": VH - 80, "width": 56, "height": 56, "tag": "button", "ariaLabel": "Chat"},
        {"x": 10, "y": 400, "width": 30, "height": 20, "tag": "a", "text": "terms"},
    ]}
    audit = audit_from_facts(facts, VW, VH, settings)
    assert audit.small_tap_targets == 1


def test_hero_background_counts_unless_media_covers_it(settings):
    hero = {"x": 0, "y": 0, "width": VW, "height": 400, "mediaChildArea": 0}
    rects = content_rects({"heroes": [hero]}, VW, VH, settings)
    assert len(rects["heroBackground"]) == 1

    covered = dict(hero, mediaChildArea=VW * 400 * 0.9)
    rects = content_rects({"heroes": [covered]}, VW, VH, settings)
    assert rects["heroBackground"] == []

    thin = dict(hero, height=60)
    assert content_rects({"heroes": [thin]}, VW, VH, settings)["heroBackground"] == []


def test_overlay_descendants_excluded_after_hide(settings, sign_up_facts):
    sign_up_facts["glyphs"].append({"x": 0, "y": 600, "width": VW, "height": 250, "overlay": True})
    sign_up_facts["actionables"].append(
        {"x": 20, "y": 780, "width": 150, "height": 44, "tag": "button", "text": "Accept all", "overlay": True},
    )
    clean = audit_from_facts(sign_up_facts, VW, VH, settings)
    as_seen = audit_from_facts(sign_up_facts, VW, VH, settings, include_overlay=True)
    assert as_seen.fold_coverage_pct > clean.fold_coverage_pct
    assert clean.cta_count == 1


def test_coverage_with_adds_overlays_but_not_small_taps(settings, sign_up_facts):
    audit = audit_from_facts(sign_up_facts, VW, VH, settings)
    assert coverage_with(audit.rects, [], VW, VH, settings) == audit.fold_coverage_pct
    with_overlay = coverage_with(audit.rects, [Rect(0, 700, VW, 152, "overlay")], VW, VH, settings)
    assert with_overlay > audit.fold_coverage_pct


def test_empty_facts_do_not_crash(settings):
    audit = audit_from_facts({}, VW, VH, settings)
    assert audit.fold_coverage_pct == 0.0
    assert audit.cta_count == 0
    assert audit.first_cta_in_fold is False


async def test_collect_fold_facts_uses_page_program(sign_up_facts):
    page = FakePage(facts=sign_up_facts)
    assert await collect_fold_facts(page) is sign_up_facts
    assert page.calls == ["facts"]
