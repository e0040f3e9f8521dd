from foldy.overlays import (
    REASON_BOTTOM_BAR,
    REASON_CONSENT,
    REASON_LARGE,
    classify_candidates,
    hide_overlays,
    scan_overlays,
    summarize,
)

from conftest import FakePage

VW, VH = 393, 852


def cand(index, x, y, width, height, **extra):
    base = {"index": index, "x": x, "y": y, "width": width, "height": height,
            "tag": "div", "id": "", "cls": "", "role": "", "ariaLabel": "", "text": "",
            "actionableCount": 0, "position": "fixed", "zIndex": 10, "navLike": False}
    base.update(extra)
    return base


def test_cookie_bottom_bar_is_consent(settings):
    bar = cand(0, 20, VH - 60, VW * 0.9, 60, text="We use cookies. Accept All Reject", actionableCount=2)
    [overlay] = classify_candidates([bar], VW, VH, settings)
    assert overlay.reason == REASON_CONSENT
    assert overlay.index == 0


def test_promo_bottom_bar_without_consent_words(settings):
    bar = cand(3, 10, VH - 60, VW * 0.9, 60, text="Get 10% off today Shop Dismiss", actionableCount=2)
    [overlay] = classify_candidates([bar], VW, VH, settings)
    assert overlay.reason == REASON_BOTTOM_BAR


def test_bottom_bar_needs_two_actions(settings):
    bar = cand(0, 10, VH - 60, VW * 0.9, 60, text="Free shipping over $50", actionableCount=1)
    assert classify_candidates([bar], VW, VH, settings) == []


def test_large_fixed_modal(settings):
    modal = cand(1, 40, 200, 320, 320, text="Subscribe to our newsletter")
    [overlay] = classify_candidates([modal], VW, VH, settings)
    assert overlay.reason == REASON_LARGE


def test_nav_headers_are_never_overlays(settings):
    header = cand(0, 0, 0, VW, 300, tag="header", cls="site-header", text="cookie policy")
    flagged = cand(1, 0, 0, VW, 400, navLike=True)
    assert classify_candidates([header, flagged], VW, VH, settings) == []


def test_small_widgets_and_offscreen_ignored(settings):
    chat = cand(0, VW - 70, VH - 80, 56, 56, text="Chat with us")
    offscreen = cand(1, 0, VH + 100, VW, 400, text="cookie")
    assert classify_candidates([chat, offscreen], VW, VH, settings) == []


def test_summary_counts_blockers(settings):
    modal = cand(0, 0, 0, VW, VH * 0.5, text="We use cookies")
    bar = cand(1, 0, VH - 60, VW, 60, text="cookie notice", actionableCount=2)
    overlays = classify_candidates([modal, bar], VW, VH, settings)
    scan = summarize(overlays, 2, VW, VH, settings)
    assert scan.blockers == 1
    assert scan.reasons == {REASON_CONSENT: 2}
    assert 50.0 <= scan.coverage_pct <= 60.0


async def test_scan_tags_only_classified_candidates(settings):
    page = FakePage(scan={"viewport": {"width": VW, "height": VH}, "candidates": [
        cand(0, 0, 0, VW, 56, tag="nav", navLike=True),
        cand(1, 20, VH - 60, VW * 0.9, 60, text="Accept All Reject", actionableCount=2),
        cand(2, VW - 70, VH - 80, 56, 56),
    ]})
    scan = await scan_overlays(page, VW, VH, settings)
    assert page.tagged == [1]
    assert scan.considered == 3
    assert [o.index for o in scan.overlays] == [1]
    assert await hide_overlays(page) == 1
    assert page.hidden


async def test_scan_without_overlays_does_not_tag(settings):
    page = FakePage()
    scan = await scan_overlays(page, VW, VH, settings)
    assert scan.overlays == []
    assert "tag" not in page.calls
    assert scan.coverage_pct == 0.0
