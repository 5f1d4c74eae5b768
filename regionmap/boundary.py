"""Region boundary tracing from assignment grid cell edges."""

from __future__ import annotations

from typing import Iterable

import numpy as np

from regionmap.config import BoundaryConfig
from regionmap.geometry import budget_stride, downsample, polygon_area
from regionmap.partition import UNASSIGNED, GridSpec
from regionmap.scheduling import LOOPS_PER_YIELD, Steps

Point = tuple[int, int]
Segment = tuple[Point, Point]


def snap_size(spec: GridSpec) -> int:
    """Half a grid cell in surface pixels, at least one pixel."""

    return max(1, int(np.floor(min(spec.cell_w, spec.cell_h) / 2.0 + 0.5)))


def collect_segments(assignments: np.ndarray, spec: GridSpec, snap: int | None = None) -> dict[int, list[Segment]]:
    """Cell edges facing a different region or the grid border, per region.

    Endpoints are surface pixels snapped to a lattice of `snap` pixels so that
    coincident corners from neighbouring cells share one key.
    """

    grid = assignments
    grid_h, grid_w = grid.shape
    step = snap or snap_size(spec)
    padded = np.pad(grid, 1, mode="constant", constant_values=UNASSIGNED)
    neighbours = (
        padded[:-2, 1:-1],  # top
        padded[1:-1, 2:],  # right
        padded[2:, 1:-1],  # bottom
        padded[1:-1, :-2],  # left
    )

    gy, gx = np.indices((grid_h, grid_w))
    x = gx * spec.cell_w
    y = gy * spec.cell_h
    x2 = x + spec.cell_w
    y2 = y + spec.cell_h
    corners = (
        (x, y, x2, y),
        (x2, y, x2, y2),
        (x2, y2, x, y2),
        (x, y2, x, y),
    )

    parts = []
    for edge_order, (neighbour, (ax, ay, bx, by)) in enumerate(zip(neighbours, corners)):
        selected = (grid != UNASSIGNED) & (neighbour != grid)
        if not np.any(selected):
            continue
        cell_index = (gy * grid_w + gx)[selected]
        parts.append(
            np.column_stack(
                (
                    cell_index,
                    np.full(cell_index.shape, edge_order),
                    grid[selected],
                    _snap(ax[selected], step),
                    _snap(ay[selected], step),
                    _snap(bx[selected], step),
                    _snap(by[selected], step),
                )
            )
        )

    segments: dict[int, list[Segment]] = {}
    if not parts:
        return segments
    rows = np.concatenate(parts)
    rows = rows[np.lexsort((rows[:, 1], rows[:, 0]))]
    for _, _, region_id, ax, ay, bx, by in rows.tolist():
        segments.setdefault(region_id, []).append(((ax, ay), (bx, by)))
    return segments


def _snap(values: np.ndarray, step: int) -> np.ndarray:
    return (np.floor(values / step + 0.5) * step).astype(np.int64)


def _adjacency(segments: Iterable[Segment]) -> dict[Point, dict[Point, None]]:
    adjacency: dict[Point, dict[Point, None]] = {}
    for a, b in segments:
        if a == b:
            continue
        adjacency.setdefault(a, {})[b] = None
        adjacency.setdefault(b, {})[a] = None
    return adjacency


def walk_loops(segments: Iterable[Segment], *, max_steps: int = 20000) -> Steps[list[list[Point]]]:
    """Reconstruct closed loops by walking the segment adjacency graph.

    Each walk starts on an untraversed edge and keeps stepping to a neighbour
    other than the one it came from, preferring untraversed edges. Walks that
    neither return to their start nor end next to it, or that have fewer than
    three points, are discarded.
    """

    adjacency = _adjacency(segments)
    visited: set[tuple[Point, Point]] = set()
    loops: list[list[Point]] = []
    walks = 0

    for start, first_hops in adjacency.items():
        for first in first_hops:
            if (start, first) in visited:
                continue
            visited.add((start, first))
            visited.add((first, start))
            loop = [start]
            prev, curr = start, first
            closed = False
            while True:
                if curr == start:
                    closed = True
                    break
                loop.append(curr)
                if len(loop) > max_steps:
                    break
                options = [p for p in adjacency[curr] if p != prev]
                if not options:
                    break
                nxt = next((p for p in options if (curr, p) not in visited), options[0])
                visited.add((curr, nxt))
                visited.add((nxt, curr))
                prev, curr = curr, nxt

            if not closed and len(loop) >= 3 and start in adjacency[loop[-1]]:
                closed = True
            if closed and len(loop) >= 3:
                loops.append(loop)

            walks += 1
            if walks % LOOPS_PER_YIELD == 0:
                yield
    return loops


def select_loops(
    loops: Iterable[list[Point]],
    *,
    min_area: float,
    point_budget: int = 800,
) -> list[np.ndarray]:
    """Loops above `min_area`, largest first, thinned to `point_budget` points."""

    kept = []
    for loop in loops:
        pts = np.asarray(loop, dtype=np.float64)
        area = abs(polygon_area(pts))
        if area > min_area:
            kept.append((area, pts))
    kept.sort(key=lambda item: -item[0])
    return [downsample(pts, budget_stride(len(pts), point_budget)) for _, pts in kept]


def region_boundaries_steps(
    assignments: np.ndarray,
    spec: GridSpec,
    *,
    config: BoundaryConfig | None = None,
) -> Steps[dict[int, list[np.ndarray]]]:
    """Per region id, its retained loops in surface pixels, primary loop first."""

    cfg = config or BoundaryConfig()
    segments = collect_segments(assignments, spec)
    yield
    min_area = spec.cell_area * cfg.min_area_cells
    boundaries: dict[int, list[np.ndarray]] = {}
    for region_id in sorted(segments):
        loops = yield from walk_loops(segments[region_id], max_steps=cfg.max_walk_steps)
        selected = select_loops(loops, min_area=min_area, point_budget=cfg.point_budget)
        if selected:
            boundaries[region_id] = selected
    return boundaries
