"""River polylines rasterised onto the region grid."""

from __future__ import annotations

from typing import Iterable, Sequence

import numpy as np
from PIL import Image, ImageDraw

from regionmap.partition import GridSpec

Polyline = Sequence[tuple[float, float]]


def river_mask(polylines: Iterable[Polyline], spec: GridSpec, line_width: int = 2) -> np.ndarray:
    """Boolean grid_h x grid_w mask of cells crossed by any river line."""

    image = Image.new("1", (spec.grid_w, spec.grid_h), 0)
    draw = ImageDraw.Draw(image)
    for line in polylines:
        points = [spec.lonlat_to_grid(float(lon), float(lat)) for lon, lat in line]
        if len(points) < 2:
            continue
        draw.line(points, fill=1, width=max(1, int(line_width)))
    mask = np.asarray(image, dtype=bool).copy()
    mask.setflags(write=False)
    return mask
