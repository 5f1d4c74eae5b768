"""Region overlay compositing on top of the terrain raster."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Sequence

from matplotlib import colors as mcolors
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from regionmap.partition import GridSpec
from regionmap.pipeline import GenerationResult, Region

MIN_LABEL_CELLS = 8
FILL_ALPHA = 90
STROKE_ALPHA = 220


def region_tints(count: int, *, saturation: float = 0.55, value: float = 0.9) -> np.ndarray:
    """`count` RGB uint8 colours from evenly spaced hues."""

    if count <= 0:
        return np.zeros((0, 3), dtype=np.uint8)
    hues = np.arange(count, dtype=np.float64) / count
    hsv = np.column_stack((hues, np.full(count, saturation), np.full(count, value)))
    return np.round(mcolors.hsv_to_rgb(hsv) * 255.0).astype(np.uint8)


def label_size(cell_count: int, cell_area: float) -> int:
    return int(max(12, min(48, math.sqrt(cell_count * cell_area) / 6.0)))


def _surface_points(polygon: np.ndarray, spec: GridSpec) -> list[tuple[float, float]]:
    return [spec.lonlat_to_surface(float(lon), float(lat)) for lon, lat in polygon]


def draw_regions(
    terrain: np.ndarray,
    regions: Sequence[Region],
    spec: GridSpec,
    *,
    labels: bool = True,
) -> np.ndarray:
    """Translucent fills, outlines and optional labels over the terrain."""

    base = Image.fromarray(np.ascontiguousarray(terrain[:, :, :3])).convert("RGBA")
    if base.size != (spec.surface_w, spec.surface_h):
        base = base.resize((spec.surface_w, spec.surface_h), resample=Image.Resampling.BILINEAR)
    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)

    region_ids = sorted({r.id for r in regions})
    tints = region_tints(len(region_ids))
    tint_by_id = {region_id: tuple(int(c) for c in tints[i]) for i, region_id in enumerate(region_ids)}

    for region in regions:
        r, g, b = tint_by_id[region.id]
        for polygon in region.polygons:
            points = _surface_points(polygon, spec)
            if len(points) < 3:
                continue
            draw.polygon(points, fill=(r, g, b, FILL_ALPHA))
            draw.line(points + [points[0]], fill=(r // 2, g // 2, b // 2, STROKE_ALPHA), width=2)

    if labels:
        for region in regions:
            if region.cell_count < MIN_LABEL_CELLS:
                continue
            x, y = spec.lonlat_to_surface(*region.centroid)
            font = ImageFont.load_default(size=label_size(region.cell_count, spec.cell_area))
            left, top, right, bottom = draw.textbbox((0, 0), region.name, font=font)
            origin = (x - (right - left) / 2.0, y - (bottom - top) / 2.0)
            draw.text(origin, region.name, fill=(20, 20, 20, 255), font=font)

    return np.asarray(Image.alpha_composite(base, overlay).convert("RGB"), dtype=np.uint8)


def render_result(result: GenerationResult, *, labels: bool = True) -> np.ndarray:
    return draw_regions(result.terrain, result.regions, result.spec, labels=labels)


@dataclass(frozen=True)
class Viewport:
    """Visible source rectangle of the surface, scaled onto a canvas."""

    src_x: float
    src_y: float
    src_w: float
    src_h: float
    canvas_w: int
    canvas_h: int

    def __post_init__(self) -> None:
        if self.src_w <= 0 or self.src_h <= 0 or self.canvas_w <= 0 or self.canvas_h <= 0:
            raise ValueError("viewport sizes must be positive")

    @classmethod
    def full(cls, spec: GridSpec, canvas_w: int, canvas_h: int) -> "Viewport":
        return cls(0.0, 0.0, float(spec.surface_w), float(spec.surface_h), canvas_w, canvas_h)

    def to_surface(self, canvas_x: float, canvas_y: float) -> tuple[float, float]:
        return (
            self.src_x + canvas_x / self.canvas_w * self.src_w,
            self.src_y + canvas_y / self.canvas_h * self.src_h,
        )
