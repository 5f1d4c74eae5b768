"""Polygon helpers and Chaikin corner cutting."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from regionmap.config import BoundaryConfig, clamp_int


def polygon_area(points: np.ndarray) -> float:
    """Signed shoelace area of a closed ring given as an (n, 2) array."""

    pts = np.asarray(points, dtype=np.float64)
    if len(pts) < 3:
        return 0.0
    x = pts[:, 0]
    y = pts[:, 1]
    return float(np.sum(x * np.roll(y, -1) - np.roll(x, -1) * y) / 2.0)


def polygon_centroid(points: np.ndarray) -> tuple[float, float]:
    """Area centroid; falls back to the first vertex for degenerate rings."""

    pts = np.asarray(points, dtype=np.float64)
    if len(pts) == 0:
        raise ValueError("points must be non-empty")
    x = pts[:, 0]
    y = pts[:, 1]
    xn = np.roll(x, -1)
    yn = np.roll(y, -1)
    cross = x * yn - xn * y
    area = float(np.sum(cross)) / 2.0
    if abs(area) < 1e-9:
        return float(x[0]), float(y[0])
    cx = float(np.sum((x + xn) * cross)) / (6.0 * area)
    cy = float(np.sum((y + yn) * cross)) / (6.0 * area)
    return cx, cy


def downsample(points: np.ndarray, step: int) -> np.ndarray:
    if step <= 1 or len(points) == 0:
        return points
    return points[::step]


def budget_stride(point_count: int, budget: int) -> int:
    return max(1, math.ceil(point_count / max(1, budget)))


def chaikin_iterations(smooth_passes: int, *, config: BoundaryConfig | None = None) -> int:
    cfg = config or BoundaryConfig()
    return clamp_int(int(smooth_passes) or 2, cfg.min_chaikin_iterations, cfg.max_chaikin_iterations)


def chaikin_smooth(points: np.ndarray, iterations: int) -> np.ndarray:
    """Closed-ring corner cutting; each pass doubles the vertex count."""

    pts = np.asarray(points, dtype=np.float64)
    for _ in range(max(0, int(iterations))):
        if len(pts) < 3:
            return pts
        nxt = np.roll(pts, -1, axis=0)
        q = 0.75 * pts + 0.25 * nxt
        r = 0.25 * pts + 0.75 * nxt
        out = np.empty((len(pts) * 2, 2), dtype=np.float64)
        out[0::2] = q
        out[1::2] = r
        pts = out
    return pts


def close_ring(coords: Sequence[Sequence[float]]) -> list[list[float]]:
    """Copy of `coords` with the first point repeated at the end if needed."""

    ring = [[float(c[0]), float(c[1])] for c in coords]
    if ring and ring[0] != ring[-1]:
        ring.append(list(ring[0]))
    return ring
