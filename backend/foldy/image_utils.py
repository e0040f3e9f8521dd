"""Screenshot encoding and the debug coverage heatmap."""
from PIL import Image, ImageDraw
import io
import base64

from foldy.geometry import CoverageGrid, Rect

# outline colour per rect kind (RGBA)
KIND_COLORS = {
    "glyph": (30, 144, 255, 255),
    "media": (46, 204, 113, 255),
    "cta": (231, 76, 60, 255),
    "heroBackground": (155, 89, 182, 255),
    "overlay": (243, 156, 18, 255),
    "smallTap": (241, 196, 15, 255),
}
COVERED_FILL = (255, 0, 0, 70)
GRID_LINE = (0, 0, 0, 40)


def screenshot_to_b64(screenshot_bytes: bytes) -> str:
    return base64.b64encode(screenshot_bytes).decode()


def _box(rect: Rect, sx: float, sy: float) -> list[float]:
    x0, y0 = rect.x * sx, rect.y * sy
    # Pillow rejects boxes whose far corner precedes the near one
    return [x0, y0, max(x0, rect.right * sx - 1), max(y0, rect.bottom * sy - 1)]


def render_heatmap(screenshot_bytes: bytes, grid: CoverageGrid,
                   rects: dict[str, list[Rect]]) -> bytes:
    """
    Overlay covered grid cells and per-kind rect outlines on the screenshot.
    Rects are in CSS pixels; the screenshot is in device pixels, so everything
    is scaled by the image/viewport ratio.
    """
    base = Image.open(io.BytesIO(screenshot_bytes)).convert("RGBA")
    sx = base.width / grid.vw
    sy = base.height / grid.vh

    layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)

    for index in sorted(grid.covered):
        cell = grid.cell_rect(index)
        draw.rectangle(_box(cell, sx, sy), fill=COVERED_FILL)
    for c in range(1, grid.cols):
        x = c * grid.cell_w * sx
        draw.line([(x, 0), (x, base.height)], fill=GRID_LINE)
    for r in range(1, grid.rows):
        y = r * grid.cell_h * sy
        draw.line([(0, y), (base.width, y)], fill=GRID_LINE)

    width = max(1, int(round(sx)))
    for kind, group in rects.items():
        color = KIND_COLORS.get(kind, (0, 0, 0, 255))
        for rect in group:
            if rect.width <= 0 or rect.height <= 0:
                continue
            draw.rectangle(_box(rect, sx, sy), outline=color, width=width)

    out = Image.alpha_composite(base, layer).convert("RGB")
    buf = io.BytesIO()
    out.save(buf, format="PNG", optimize=True)
    return buf.getvalue()
