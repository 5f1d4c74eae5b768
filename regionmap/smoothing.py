"""Majority-filter smoothing and small-region merging on the assignment grid."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging

import numpy as np

from regionmap.config import BoundaryConfig, clamp_int
from regionmap.partition import UNASSIGNED
from regionmap.scheduling import FILTER_ROWS_PER_YIELD, Steps, row_blocks

logger = logging.getLogger(__name__)

_NEIGHBOURS_8 = (
    (-1, -1),
    (-1, 0),
    (-1, 1),
    (0, -1),
    (0, 1),
    (1, -1),
    (1, 0),
    (1, 1),
)


def smooth_pass_cap(divisor: int) -> int:
    """Coarser grids get fewer majority passes."""

    if divisor >= 16:
        return 1
    if divisor >= 8:
        return 2
    return 3


def effective_smooth_passes(passes: int, divisor: int, *, config: BoundaryConfig | None = None) -> int:
    cfg = config or BoundaryConfig()
    return min(clamp_int(passes, 0, cfg.max_smooth_passes), smooth_pass_cap(divisor))


def _majority_rows(
    padded: np.ndarray,
    current: np.ndarray,
    y0: int,
    y1: int,
    seed_count: int,
) -> np.ndarray:
    grid_w = current.shape[1]
    ids = np.arange(seed_count, dtype=np.int32)[:, None, None]
    counts = np.zeros((seed_count, y1 - y0, grid_w), dtype=np.int16)
    for dy, dx in _NEIGHBOURS_8:
        window = padded[y0 + 1 + dy : y1 + 1 + dy, 1 + dx : grid_w + 1 + dx]
        counts += window[None, :, :] == ids

    cells = current[y0:y1]
    best_count = counts.max(axis=0)
    best = counts.argmax(axis=0).astype(np.int32)
    own = np.take_along_axis(counts, np.clip(cells, 0, None)[None, :, :], axis=0)[0]
    keep = (cells == UNASSIGNED) | (best_count == 0) | (own == best_count)
    return np.where(keep, cells, best)


def majority_steps(assignments: np.ndarray, passes: int, seed_count: int) -> Steps[np.ndarray]:
    """Replace each assigned cell by the most common assigned 8-neighbour value.

    Ties keep the cell's own value when it is among the leaders, otherwise the
    lowest id wins. Unassigned cells are never touched.
    """

    current = assignments.astype(np.int32, copy=True)
    if seed_count <= 0:
        return current

    grid_h = current.shape[0]
    for _ in range(max(0, int(passes))):
        padded = np.pad(current, 1, mode="constant", constant_values=UNASSIGNED)
        nxt = np.empty_like(current)
        for y0, y1 in row_blocks(grid_h, FILTER_ROWS_PER_YIELD):
            nxt[y0:y1] = _majority_rows(padded, current, y0, y1, seed_count)
            yield
        current = nxt
    return current


def merge_threshold(assigned_cells: int, region_count: int, *, config: BoundaryConfig | None = None) -> int:
    """Minimum surviving region size: a fraction of the average rounded up, with a floor."""

    cfg = config or BoundaryConfig()
    average = assigned_cells / max(1, region_count)
    return max(cfg.merge_floor, int(np.ceil(average * cfg.merge_fraction)))


@dataclass(frozen=True)
class MergeResult:
    """Assignment grid after merging, plus what happened to each small region."""

    assignments: np.ndarray
    threshold: int
    merged: dict[int, int] = field(default_factory=dict)
    dropped: tuple[int, ...] = ()


def _adjacency_counts(grid: np.ndarray, seed_count: int) -> np.ndarray:
    adjacency = np.zeros((seed_count, seed_count), dtype=np.int64)
    for a, b in ((grid[:, :-1], grid[:, 1:]), (grid[:-1, :], grid[1:, :])):
        shared = (a != UNASSIGNED) & (b != UNASSIGNED) & (a != b)
        np.add.at(adjacency, (a[shared], b[shared]), 1)
        np.add.at(adjacency, (b[shared], a[shared]), 1)
    return adjacency


def merge_small_regions(
    assignments: np.ndarray,
    seed_count: int,
    *,
    config: BoundaryConfig | None = None,
) -> MergeResult:
    """Fold regions below the size threshold into their most-adjacent neighbour.

    One pass in first-encountered order using pre-merge sizes. Earlier merges
    are followed, so a region is never folded into an id that no longer
    exists. Regions still below the threshold afterwards have no neighbour to
    join and are dropped to unassigned.
    """

    grid = assignments.astype(np.int32, copy=True)
    flat = grid.ravel()
    assigned = flat[flat != UNASSIGNED]
    if assigned.size == 0 or seed_count <= 0:
        return MergeResult(grid, merge_threshold(0, 1, config=config))

    sizes = np.bincount(assigned, minlength=seed_count)
    present, first_index = np.unique(assigned, return_index=True)
    order = present[np.argsort(first_index, kind="stable")]
    threshold = merge_threshold(int(assigned.size), len(present), config=config)
    adjacency = _adjacency_counts(grid, seed_count)

    target = np.arange(seed_count, dtype=np.int32)

    def resolve(region_id: int) -> int:
        while target[region_id] != region_id:
            region_id = int(target[region_id])
        return region_id

    merged: dict[int, int] = {}
    for cid in order:
        cid = int(cid)
        if sizes[cid] >= threshold:
            continue
        row = adjacency[cid]
        candidates = np.flatnonzero(row > 0)
        if candidates.size == 0:
            continue
        ranked = sorted(candidates.tolist(), key=lambda nid: (-int(row[nid]), nid))
        for nid in ranked:
            dest = resolve(nid)
            if dest != cid:
                target[cid] = dest
                merged[cid] = dest
                break

    lut = np.array([resolve(i) for i in range(seed_count)], dtype=np.int32)
    mask = grid != UNASSIGNED
    grid[mask] = lut[grid[mask]]

    final_sizes = np.bincount(grid[grid != UNASSIGNED], minlength=seed_count)
    dropped = tuple(int(i) for i in np.flatnonzero((final_sizes > 0) & (final_sizes < threshold)))
    if dropped:
        grid[np.isin(grid, dropped)] = UNASSIGNED
        logger.debug("Dropped %d isolated regions below %d cells", len(dropped), threshold)

    return MergeResult(grid, threshold, merged, dropped)
