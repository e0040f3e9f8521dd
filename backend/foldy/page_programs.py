"""
In-page programs evaluated through ``page.evaluate``.

These only gather layout facts and flip tags; every heuristic decision
(overlay classification, CTA matching, tap targets, coverage) happens in
Python on the returned facts. Bump AUDIT_PROGRAM_VERSION whenever a program's
return shape changes.
"""

import json

AUDIT_PROGRAM_VERSION = "2025.09.1"

CANDIDATE_ATTR = "data-foldy-cand"
OVERLAY_ATTR = "data-foldy-overlay"

ACTIONABLE_SELECTOR = (
    'a,button,[role="button"],input[type="submit"],input[type="button"]'
)

# ---------------------------------------------------------------------------
# Stability
# ---------------------------------------------------------------------------

STABILITY_CSS = """
*, *::before, *::after {
    animation-duration: 0s !important;
    animation-delay: 0s !important;
    animation-iteration-count: 1 !important;
    transition-duration: 0s !important;
    transition-delay: 0s !important;
    scroll-behavior: auto !important;
}
html, body { scroll-behavior: auto !important; }
"""

# Registered with add_init_script, so it runs before any page script.
STABILITY_INIT_JS = """
(() => {
    const css = %s;
    const inject = () => {
        if (document.getElementById('foldy-stability')) return;
        const s = document.createElement('style');
        s.id = 'foldy-stability';
        s.textContent = css;
        (document.head || document.documentElement).appendChild(s);
    };
    if (document.documentElement) inject();
    document.addEventListener('DOMContentLoaded', inject);
})();
"""

FONT_WAIT_JS = """
async (capMs) => {
    try {
        if (document.fonts && document.fonts.ready) {
            await Promise.race([
                document.fonts.ready,
                new Promise(r => setTimeout(r, capMs)),
            ]);
        }
    } catch (e) {}
    return true;
}
"""

# Markup that only challenge interstitials serve.
CHALLENGE_PLATFORM_MARKERS = (
    "#challenge-form",
    "#challenge-running",
    "#cf-challenge-running",
    'iframe[src*="challenges.cloudflare.com"]',
    "#px-captcha",
)
# Captcha widgets that ordinary pages embed in forms and badges.
CAPTCHA_WIDGET_MARKERS = (
    'iframe[src*="captcha"]',
    'iframe[src*="hcaptcha.com"]',
    ".g-recaptcha",
    ".h-captcha",
    "[data-sitekey]",
)

# Platform markers come first so they win over a widget on the same page.
BOT_CHECK_JS = """
() => {
    const title = (document.title || '').toLowerCase();
    const body = ((document.body && document.body.innerText) || '').slice(0, 4000).toLowerCase();
    const markers = %s;
    let marker = null;
    for (const sel of markers) {
        try {
            if (document.querySelector(sel)) { marker = sel; break; }
        } catch (e) {}
    }
    return {
        title,
        text: body.slice(0, 600),
        textLength: body.length,
        marker,
    };
}
""" % json.dumps(list(CHALLENGE_PLATFORM_MARKERS + CAPTCHA_WIDGET_MARKERS))

# ---------------------------------------------------------------------------
# Overlays
# ---------------------------------------------------------------------------

OVERLAY_SCAN_JS = """
() => {
    const vw = window.innerWidth, vh = window.innerHeight;
    const CAND = '%(cand)s', OVL = '%(ovl)s';
    document.querySelectorAll('[' + CAND + ']').forEach(el => el.removeAttribute(CAND));
    document.querySelectorAll('[' + OVL + ']').forEach(el => el.removeAttribute(OVL));

    const isVisible = (el, st) => {
        if (st.display === 'none' || st.visibility === 'hidden' || parseFloat(st.opacity) === 0) return false;
        if (el.checkVisibility && !el.checkVisibility({opacityProperty: true, visibilityProperty: true})) return false;
        const r = el.getBoundingClientRect();
        return r.width > 0 && r.height > 0;
    };

    const found = [];
    const set = new Set();
    for (const el of document.querySelectorAll('body *')) {
        let st;
        try { st = getComputedStyle(el); } catch (e) { continue; }
        if (st.position !== 'fixed' && st.position !== 'sticky') continue;
        if (!isVisible(el, st)) continue;
        const r = el.getBoundingClientRect();
        if (!(r.top < vh && r.bottom > 0 && r.left < vw && r.right > 0)) continue;
        found.push([el, st, r]);
        set.add(el);
    }

    const candidates = [];
    for (const [el, st, r] of found) {
        let p = el.parentElement, nested = false;
        while (p) { if (set.has(p)) { nested = true; break; } p = p.parentElement; }
        if (nested) continue;
        const index = candidates.length;
        el.setAttribute(CAND, String(index));
        const tag = el.tagName.toLowerCase();
        const actionable = Array.from(el.querySelectorAll('%(act)s')).filter(a => {
            const ar = a.getBoundingClientRect();
            return ar.width > 0 && ar.height > 0;
        });
        candidates.push({
            index,
            x: r.left, y: r.top, width: r.width, height: r.height,
            tag,
            id: (el.id || '').toLowerCase(),
            cls: (el.className || '').toString().toLowerCase().slice(0, 200),
            role: (el.getAttribute('role') || '').toLowerCase(),
            ariaLabel: (el.getAttribute('aria-label') || '').toLowerCase(),
            text: (el.innerText || el.textContent || '').trim().replace(/\\s+/g, ' ').slice(0, 400).toLowerCase(),
            actionableCount: actionable.length,
            position: st.position,
            zIndex: parseInt(st.zIndex, 10) || 0,
            navLike: tag === 'nav' || tag === 'header' ||
                !!el.querySelector(':scope > nav') ||
                el.getAttribute('role') === 'navigation' || el.getAttribute('role') === 'banner',
        });
    }
    return { viewport: { width: vw, height: vh }, candidates };
}
""" % {"cand": CANDIDATE_ATTR, "ovl": OVERLAY_ATTR, "act": ACTIONABLE_SELECTOR}

TAG_OVERLAYS_JS = """
(indices) => {
    let tagged = 0;
    for (const i of indices) {
        const el = document.querySelector('[%(cand)s="' + i + '"]');
        if (!el) continue;
        el.setAttribute('%(ovl)s', '1');
        tagged += 1;
    }
    return tagged;
}
""" % {"cand": CANDIDATE_ATTR, "ovl": OVERLAY_ATTR}

HIDE_OVERLAYS_JS = """
() => {
    const tagged = document.querySelectorAll('[%(ovl)s="1"]').length;
    if (!document.getElementById('foldy-hide')) {
        const s = document.createElement('style');
        s.id = 'foldy-hide';
        s.textContent = '[%(ovl)s="1"] { display: none !important; visibility: hidden !important; }';
        (document.head || document.documentElement).appendChild(s);
    }
    // consent managers usually lock scrolling on the root while open
    if (tagged > 0) {
        for (const root of [document.documentElement, document.body]) {
            if (!root) continue;
            root.style.removeProperty('overflow');
            root.style.removeProperty('overflow-y');
        }
    }
    return tagged;
}
""" % {"ovl": OVERLAY_ATTR}

# Used by the screenshot worker, which has no scan pass of its own.
MINIMAL_HIDE_JS = """
() => {
    const sel = '[role="dialog"], [aria-modal="true"], .modal, .popup, [data-cookiebanner], ' +
        '[id*="cookie" i], [class*="cookie-banner" i], [class*="cookie-consent" i], ' +
        '#onetrust-consent-sdk, #CybotCookiebotDialog, .cc-window';
    let hidden = 0;
    for (const el of Array.from(document.querySelectorAll(sel))) {
        try {
            const st = getComputedStyle(el);
            if (st.position !== 'fixed' && st.position !== 'sticky' && !el.matches('[role="dialog"], [aria-modal="true"]')) continue;
            el.setAttribute('%(ovl)s', '1');
            el.style.setProperty('display', 'none', 'important');
            hidden += 1;
        } catch (e) {}
    }
    return hidden;
}
""" % {"ovl": OVERLAY_ATTR}

# ---------------------------------------------------------------------------
# Fold facts
# ---------------------------------------------------------------------------

FOLD_FACTS_JS = """
(opts) => {
    const vw = window.innerWidth, vh = window.innerHeight;
    const maxGlyphs = (opts && opts.maxGlyphs) || 4000;
    const OVL = '[%(ovl)s="1"]';
    const inFold = (r) => r.top < vh && r.bottom > 0 && r.left < vw && r.right > 0;
    const rectOf = (r) => ({ x: r.left, y: r.top, width: r.width, height: r.height });
    const inOverlay = (el) => !!(el && el.closest && el.closest(OVL));

    const isVisible = (el) => {
        let st;
        try { st = getComputedStyle(el); } catch (e) { return false; }
        if (st.display === 'none' || st.visibility === 'hidden' || st.visibility === 'collapse') return false;
        if (parseFloat(st.opacity) === 0) return false;
        if (el.checkVisibility && !el.checkVisibility({opacityProperty: true, visibilityProperty: true})) return false;
        const r = el.getBoundingClientRect();
        return r.width > 0 && r.height > 0;
    };

    // glyph-tight text line boxes
    const glyphs = [];
    const walker = document.createTreeWalker(document.body || document.documentElement, NodeFilter.SHOW_TEXT);
    const range = document.createRange();
    const skipTags = new Set(['SCRIPT', 'STYLE', 'NOSCRIPT', 'TEMPLATE', 'OPTION']);
    let node;
    while ((node = walker.nextNode()) && glyphs.length < maxGlyphs) {
        const text = node.nodeValue;
        if (!text || !text.trim()) continue;
        const parent = node.parentElement;
        if (!parent || skipTags.has(parent.tagName)) continue;
        if (!isVisible(parent)) continue;
        range.selectNodeContents(node);
        const overlay = inOverlay(parent);
        for (const r of range.getClientRects()) {
            if (r.width <= 0 || r.height <= 0 || !inFold(r)) continue;
            glyphs.push({ ...rectOf(r), overlay });
        }
    }

    // foreground media
    const media = [];
    for (const el of document.querySelectorAll('img, video, svg, canvas, iframe')) {
        if (el.tagName.toLowerCase() === 'svg' && el.parentElement && el.parentElement.closest('svg')) continue;
        if (!isVisible(el)) continue;
        const r = el.getBoundingClientRect();
        if (!inFold(r)) continue;
        media.push({ ...rectOf(r), tag: el.tagName.toLowerCase(), overlay: inOverlay(el) });
    }

    // actionable elements
    const actionables = [];
    for (const el of document.querySelectorAll('%(act)s')) {
        if (!isVisible(el)) continue;
        const r = el.getBoundingClientRect();
        const st = getComputedStyle(el);
        const bg = st.backgroundColor || '';
        const filled = (bg && bg !== 'transparent' && !/rgba\\([^)]*,\\s*0\\)$/.test(bg)) ||
            (st.backgroundImage || '').includes('gradient');
        actionables.push({
            ...rectOf(r),
            inFold: inFold(r),
            tag: el.tagName.toLowerCase(),
            type: (el.getAttribute('type') || '').toLowerCase(),
            role: (el.getAttribute('role') || '').toLowerCase(),
            text: (el.innerText || el.textContent || '').trim().replace(/\\s+/g, ' ').slice(0, 120),
            ariaLabel: el.getAttribute('aria-label') || '',
            title: el.getAttribute('title') || '',
            value: (el.value && typeof el.value === 'string') ? el.value : '',
            href: el.getAttribute('href') || '',
            cls: ((el.className || '').toString() + ' ' + (el.id || '')).toLowerCase().slice(0, 200),
            filled,
            borderRadius: parseFloat(st.borderTopLeftRadius) || 0,
            ariaExpanded: el.hasAttribute('aria-expanded'),
            ariaControls: el.getAttribute('aria-controls') || '',
            inNav: !!el.closest('nav, [role="navigation"]'),
            overlay: inOverlay(el),
        });
    }

    // hero backgrounds + typography in one pass over the fold
    const heroes = [];
    let minFont = Infinity, maxFont = 0;
    for (const el of document.querySelectorAll('body, body *')) {
        if (skipTags.has(el.tagName)) continue;
        const r = el.getBoundingClientRect();
        if (r.width <= 0 || r.height <= 0 || !inFold(r)) continue;
        if (!isVisible(el)) continue;
        const st = getComputedStyle(el);
        const overlay = inOverlay(el);

        let hasText = false;
        for (const c of el.childNodes) {
            if (c.nodeType === 3 && c.nodeValue && c.nodeValue.trim()) { hasText = true; break; }
        }
        if (hasText && !overlay) {
            const fs = parseFloat(st.fontSize || '0');
            if (fs > 0) {
                if (fs < minFont) minFont = fs;
                if (fs > maxFont) maxFont = fs;
            }
        }

        const bgi = st.backgroundImage || '';
        if (bgi.includes('url(')) {
            const rep = st.backgroundRepeat || '';
            const size = st.backgroundSize || '';
            const nonRepeating = rep.includes('no-repeat') || size === 'cover' || size === 'contain';
            if (nonRepeating) {
                let mediaArea = 0;
                for (const m of el.querySelectorAll('img, video, picture, canvas')) {
                    const mr = m.getBoundingClientRect();
                    const w = Math.min(mr.right, r.right) - Math.max(mr.left, r.left);
                    const h = Math.min(mr.bottom, r.bottom) - Math.max(mr.top, r.top);
                    if (w > 0 && h > 0) mediaArea = Math.max(mediaArea, w * h);
                }
                heroes.push({ ...rectOf(r), mediaChildArea: mediaArea, overlay });
            }
        }
    }

    let usesSafeAreaCSS = false;
    for (const ss of Array.from(document.styleSheets)) {
        try {
            for (const rule of Array.from(ss.cssRules)) {
                if (rule.cssText && rule.cssText.includes('safe-area-inset')) { usesSafeAreaCSS = true; break; }
            }
        } catch (e) { /* cross-origin stylesheet */ }
        if (usesSafeAreaCSS) break;
    }
    if (!usesSafeAreaCSS) {
        usesSafeAreaCSS = !!document.querySelector('[style*="safe-area-inset"]');
    }

    const meta = document.querySelector('meta[name="viewport"]');
    return {
        viewport: { width: vw, height: vh },
        glyphs,
        media,
        actionables,
        heroes,
        minFontPx: Number.isFinite(minFont) ? minFont : 0,
        maxFontPx: maxFont,
        hasViewportMeta: !!meta,
        viewportMetaContent: meta ? (meta.getAttribute('content') || '') : null,
        usesSafeAreaCSS,
    };
}
""" % {"ovl": OVERLAY_ATTR, "act": ACTIONABLE_SELECTOR}


def stability_init_script() -> str:
    return STABILITY_INIT_JS % json.dumps(STABILITY_CSS)
