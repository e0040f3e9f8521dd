"""
Rects and the fold coverage grid.

The viewport is split into a fixed rows x cols grid. A cell counts as covered
when any content rect overlaps it with positive area, so overlapping rects
never double count and the result only grows as rects are added.
"""

from dataclasses import dataclass, asdict
from typing import Iterable, Optional

RECT_KINDS = ("glyph", "media", "cta", "heroBackground", "overlay", "smallTap")


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float
    kind: str = "glyph"

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @classmethod
    def from_dict(cls, d: dict, kind: Optional[str] = None) -> "Rect":
        return cls(
            float(d.get("x", 0)), float(d.get("y", 0)),
            float(d.get("width", d.get("w", 0))), float(d.get("height", d.get("h", 0))),
            kind or d.get("kind", "glyph"),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    def clip(self, vw: float, vh: float) -> Optional["Rect"]:
        """Intersection with the viewport, or None if nothing is left."""
        x0, y0 = max(0.0, self.x), max(0.0, self.y)
        x1, y1 = min(float(vw), self.right), min(float(vh), self.bottom)
        if x1 <= x0 or y1 <= y0:
            return None
        return Rect(x0, y0, x1 - x0, y1 - y0, self.kind)

    def erode(self, px: float) -> Optional["Rect"]:
        if px <= 0:
            return self
        if self.width <= 2 * px or self.height <= 2 * px:
            return None
        return Rect(self.x + px, self.y + px, self.width - 2 * px, self.height - 2 * px, self.kind)

    def intersection_area(self, other: "Rect") -> float:
        w = min(self.right, other.right) - max(self.x, other.x)
        h = min(self.bottom, other.bottom) - max(self.y, other.y)
        return w * h if w > 0 and h > 0 else 0.0

    def intersects(self, vw: float, vh: float) -> bool:
        return self.x < vw and self.right > 0 and self.y < vh and self.bottom > 0

    def inside(self, vw: float, vh: float) -> bool:
        """Entirely within the viewport."""
        return self.width > 0 and self.height > 0 and \
            self.x >= 0 and self.y >= 0 and self.right <= vw and self.bottom <= vh

    def capped(self, max_area: float) -> "Rect":
        """Shrink around the centre so the area is at most ``max_area``."""
        if self.area <= max_area or self.area <= 0:
            return self
        scale = (max_area / self.area) ** 0.5
        w, h = self.width * scale, self.height * scale
        cx, cy = self.x + self.width / 2, self.y + self.height / 2
        return Rect(cx - w / 2, cy - h / 2, w, h, self.kind)


class CoverageGrid:
    def __init__(self, viewport_width: float, viewport_height: float,
                 rows: int = 32, cols: int = 24):
        if rows <= 0 or cols <= 0:
            raise ValueError("grid needs at least one row and one column")
        self.vw = float(viewport_width)
        self.vh = float(viewport_height)
        self.rows = rows
        self.cols = cols
        self.cell_w = self.vw / cols
        self.cell_h = self.vh / rows
        self.covered: set[int] = set()

    def add(self, rect: Rect) -> int:
        """Rasterize one rect. Returns how many new cells it covered."""
        clipped = rect.clip(self.vw, self.vh)
        if clipped is None:
            return 0
        # Half-open cell spans: a rect ending exactly on a boundary does not
        # spill into the next cell.
        c0 = int(clipped.x // self.cell_w)
        r0 = int(clipped.y // self.cell_h)
        c1 = min(self.cols - 1, int(-(-clipped.right // self.cell_w)) - 1)
        r1 = min(self.rows - 1, int(-(-clipped.bottom // self.cell_h)) - 1)
        before = len(self.covered)
        for r in range(r0, r1 + 1):
            base = r * self.cols
            for c in range(c0, c1 + 1):
                self.covered.add(base + c)
        return len(self.covered) - before

    def add_all(self, rects: Iterable[Rect]) -> "CoverageGrid":
        for rect in rects:
            self.add(rect)
        return self

    @property
    def total_cells(self) -> int:
        return self.rows * self.cols

    @property
    def percent(self) -> float:
        pct = len(self.covered) / self.total_cells * 100
        return round(min(100.0, max(0.0, pct)), 1)

    def cell_rect(self, index: int) -> Rect:
        r, c = divmod(index, self.cols)
        return Rect(c * self.cell_w, r * self.cell_h, self.cell_w, self.cell_h, "cell")


def coverage_percent(rects: Iterable[Rect], vw: float, vh: float,
                     rows: int = 32, cols: int = 24) -> float:
    return CoverageGrid(vw, vh, rows, cols).add_all(rects).percent


def clip_all(rects: Iterable[Rect], vw: float, vh: float) -> list[Rect]:
    out = []
    for rect in rects:
        clipped = rect.clip(vw, vh)
        if clipped is not None:
            out.append(clipped)
    return out
