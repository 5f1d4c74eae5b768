"""Region size and fragmentation metrics."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

import numpy as np
from scipy import ndimage

from regionmap.partition import UNASSIGNED

_EIGHT_CONNECTED = np.ones((3, 3), dtype=bool)


@dataclass(frozen=True)
class RegionMetrics:
    """Summary of an assignment grid after smoothing and merging."""

    region_count: int
    land_cells: int
    assigned_cells: int
    min_cells: int
    max_cells: int
    mean_cells: float
    fragment_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def fragment_count(assignments: np.ndarray, region_id: int) -> int:
    """Number of 8-connected pieces region `region_id` is split into."""

    _, count = ndimage.label(assignments == region_id, structure=_EIGHT_CONNECTED)
    return int(count)


def region_metrics(assignments: np.ndarray, land: np.ndarray | None = None) -> RegionMetrics:
    if assignments.ndim != 2:
        raise ValueError("assignments must be 2D")

    assigned = assignments[assignments != UNASSIGNED]
    land_cells = int(land.sum()) if land is not None else int(assigned.size)
    if assigned.size == 0:
        return RegionMetrics(0, land_cells, 0, 0, 0, 0.0, 0)

    ids, sizes = np.unique(assigned, return_counts=True)
    fragments = sum(fragment_count(assignments, int(region_id)) for region_id in ids)
    return RegionMetrics(
        region_count=int(ids.size),
        land_cells=land_cells,
        assigned_cells=int(assigned.size),
        min_cells=int(sizes.min()),
        max_cells=int(sizes.max()),
        mean_cells=float(sizes.mean()),
        fragment_count=int(fragments),
    )
