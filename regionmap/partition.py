"""Grid Voronoi partitioning with Lloyd relaxation."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Sequence

import numpy as np
from scipy import ndimage

from regionmap.config import BoundingBox, PartitionConfig, clamp_int
from regionmap.rng import Mulberry32
from regionmap.sampler import Seed
from regionmap.scheduling import ASSIGN_ROWS_PER_YIELD, Steps, row_blocks, run_cooperatively
from regionmap.terrain import classify_land

if TYPE_CHECKING:
    from regionmap.worker import RegionWorker

logger = logging.getLogger(__name__)

UNASSIGNED = -1
SEAT_ATTEMPTS = 3


@dataclass(frozen=True)
class GridSpec:
    """Region grid laid over a render surface covering `bbox`."""

    grid_w: int
    grid_h: int
    surface_w: int
    surface_h: int
    bbox: BoundingBox

    @property
    def cell_w(self) -> float:
        return self.surface_w / self.grid_w

    @property
    def cell_h(self) -> float:
        return self.surface_h / self.grid_h

    @property
    def cell_area(self) -> float:
        return self.cell_w * self.cell_h

    def lonlat_to_grid(self, lon: float, lat: float) -> tuple[float, float]:
        x = (lon - self.bbox.west) / self.bbox.lon_span * self.grid_w
        y = (self.bbox.north - lat) / self.bbox.lat_span * self.grid_h
        return x, y

    def grid_to_lonlat(self, gx: float, gy: float) -> tuple[float, float]:
        lon = self.bbox.west + (gx / self.grid_w) * self.bbox.lon_span
        lat = self.bbox.north - (gy / self.grid_h) * self.bbox.lat_span
        return lon, lat

    def lonlat_to_surface(self, lon: float, lat: float) -> tuple[float, float]:
        x = (lon - self.bbox.west) / self.bbox.lon_span * self.surface_w
        y = (self.bbox.north - lat) / self.bbox.lat_span * self.surface_h
        return x, y

    def surface_to_lonlat(self, x: float, y: float) -> tuple[float, float]:
        lon = self.bbox.west + (x / self.surface_w) * self.bbox.lon_span
        lat = self.bbox.north - (y / self.surface_h) * self.bbox.lat_span
        return lon, lat

    def surface_to_cell(self, x: float, y: float) -> tuple[int, int]:
        return (
            int(np.floor(x / self.surface_w * self.grid_w)),
            int(np.floor(y / self.surface_h * self.grid_h)),
        )

    def contains_cell(self, gx: int, gy: int) -> bool:
        return 0 <= gx < self.grid_w and 0 <= gy < self.grid_h

    def seed_positions(self, seeds: Sequence[Seed]) -> np.ndarray:
        xy = np.zeros((len(seeds), 2), dtype=np.float64)
        for i, seed in enumerate(seeds):
            xy[i] = self.lonlat_to_grid(seed.lon, seed.lat)
        return xy


def grid_for_surface(
    surface_w: int,
    surface_h: int,
    divisor: int,
    bbox: BoundingBox,
    *,
    config: PartitionConfig | None = None,
) -> GridSpec:
    """Coarse grid for a surface; small surfaces still get a minimum grid."""

    if surface_w <= 0 or surface_h <= 0:
        raise ValueError("surface size must be positive")
    cfg = config or PartitionConfig()
    div = max(cfg.min_divisor, int(divisor))
    grid_w = max(cfg.min_grid_w, int(round(surface_w / div)))
    grid_h = max(cfg.min_grid_h, int(round(surface_h / div)))
    return GridSpec(grid_w, grid_h, surface_w, surface_h, bbox)


def relax_iterations(
    smooth_passes: int,
    requested: int | None = None,
    *,
    config: PartitionConfig | None = None,
) -> int:
    """Relaxation rounds: explicit request, else derived from smoothing."""

    cfg = config or PartitionConfig()
    value = requested if requested is not None else (int(smooth_passes) or 2)
    return clamp_int(value, cfg.min_relax_iterations, cfg.max_relax_iterations)


@dataclass(frozen=True)
class PartitionResult:
    """Assignment grid on relaxed seeds plus the stream position after relaxing."""

    assignments: np.ndarray
    seeds: tuple[Seed, ...]
    rng_state: int


def assign_steps(
    land: np.ndarray,
    seed_xy: np.ndarray,
    river_mask: np.ndarray | None = None,
) -> Steps[np.ndarray]:
    """Nearest seed per land cell by squared grid distance; first minimum wins."""

    grid_h, grid_w = land.shape
    out = np.full((grid_h, grid_w), UNASSIGNED, dtype=np.int32)
    if len(seed_xy) == 0:
        return out

    eligible = land.astype(bool, copy=False)
    if river_mask is not None:
        eligible = eligible & ~river_mask.astype(bool, copy=False)

    sx = seed_xy[:, 0][:, None, None]
    sy = seed_xy[:, 1][:, None, None]
    gx = np.arange(grid_w, dtype=np.float64)[None, None, :]
    for y0, y1 in row_blocks(grid_h, ASSIGN_ROWS_PER_YIELD):
        gy = np.arange(y0, y1, dtype=np.float64)[None, :, None]
        dx = sx - gx
        dy = sy - gy
        nearest = np.argmin(dx * dx + dy * dy, axis=0).astype(np.int32)
        block = eligible[y0:y1]
        out[y0:y1][block] = nearest[block]
        yield
    return out


def _recentre(
    assignments: np.ndarray,
    seeds: Sequence[Seed],
    spec: GridSpec,
    rand: Mulberry32,
    jitter: float,
) -> list[Seed]:
    grid_h, grid_w = assignments.shape
    ys, xs = np.nonzero(assignments != UNASSIGNED)
    ids = assignments[ys, xs]
    k = len(seeds)
    counts = np.bincount(ids, minlength=k)
    sum_x = np.bincount(ids, weights=xs.astype(np.float64), minlength=k)
    sum_y = np.bincount(ids, weights=ys.astype(np.float64), minlength=k)

    moved: list[Seed] = []
    for idx, seed in enumerate(seeds):
        n = int(counts[idx])
        if n == 0:
            moved.append(seed)
            continue
        lon, lat = spec.grid_to_lonlat(sum_x[idx] / n, sum_y[idx] / n)
        lon += rand.uniform(-jitter, jitter)
        lat += rand.uniform(-jitter, jitter)
        moved.append(Seed(*spec.bbox.clamp(lon, lat)))
    return moved


def _main_area(eligible: np.ndarray) -> np.ndarray:
    """Largest 8-connected block of eligible cells."""

    labels, count = ndimage.label(eligible, structure=np.ones((3, 3), dtype=bool))
    if count == 0:
        return np.zeros_like(eligible, dtype=bool)
    sizes = np.bincount(labels.ravel())[1:]
    return labels == int(np.argmax(sizes)) + 1


def _small_seeds(assignments: np.ndarray, seed_count: int, min_cells: int) -> list[int]:
    counts = np.bincount(assignments[assignments != UNASSIGNED], minlength=seed_count)
    return [int(i) for i in np.nonzero(counts[:seed_count] < min_cells)[0]]


def _seat(
    seeds: Sequence[Seed],
    small: Sequence[int],
    area: np.ndarray,
    spec: GridSpec,
) -> list[Seed]:
    """Move each small seed onto the `area` cell farthest from every other seed.

    Seeds are placed in index order and each placement counts for the next.
    """

    ys, xs = np.nonzero(area)
    if len(xs) == 0:
        return list(seeds)
    cell_x = xs.astype(np.float64)
    cell_y = ys.astype(np.float64)
    positions = spec.seed_positions(seeds)
    pending = set(small)

    gap = np.full(len(xs), np.inf)
    for idx, (sx, sy) in enumerate(positions):
        if idx not in pending:
            np.minimum(gap, (cell_x - sx) ** 2 + (cell_y - sy) ** 2, out=gap)

    seated = list(seeds)
    for idx in small:
        pick = int(np.argmax(gap))
        seated[idx] = Seed(*spec.grid_to_lonlat(float(cell_x[pick]), float(cell_y[pick])))
        np.minimum(gap, (cell_x - cell_x[pick]) ** 2 + (cell_y - cell_y[pick]) ** 2, out=gap)
    return seated


def _seat_steps(
    land: np.ndarray,
    seeds: list[Seed],
    assignments: np.ndarray,
    spec: GridSpec,
    area: np.ndarray,
    river_mask: np.ndarray | None,
    min_cells: int,
) -> Steps[tuple[list[Seed], np.ndarray]]:
    # Ask only for a size the area can give every seed.
    room = int(np.count_nonzero(area))
    need = max(1, min_cells) if room >= max(1, min_cells) * len(seeds) else 1
    previous: list[int] = []
    for _ in range(SEAT_ATTEMPTS):
        small = _small_seeds(assignments, len(seeds), need)
        if not small or small == previous or room == 0:
            break
        logger.debug("Seating %d seeds that own fewer than %d cells", len(small), need)
        seeds = _seat(seeds, small, area, spec)
        assignments = yield from assign_steps(land, spec.seed_positions(seeds), river_mask)
        previous = small
    return seeds, assignments


def relax_steps(
    land: np.ndarray,
    seeds: Sequence[Seed],
    spec: GridSpec,
    iterations: int,
    rand: Mulberry32,
    *,
    river_mask: np.ndarray | None = None,
    jitter: float = 0.5,
    min_cells: int = 1,
) -> Steps[PartitionResult]:
    """Lloyd relaxation followed by a final assignment on the relaxed seeds.

    Seeds owning fewer than `min_cells` cells before the first round or after
    the last one are seated on the largest connected eligible area. Between
    those points seeds without cells stay where they are.
    """

    if land.shape != (spec.grid_h, spec.grid_w):
        raise ValueError("land mask shape does not match grid")
    if river_mask is not None and river_mask.shape != land.shape:
        raise ValueError("river mask shape does not match grid")

    eligible = land.astype(bool, copy=False)
    if river_mask is not None:
        eligible = eligible & ~river_mask.astype(bool, copy=False)
    area = _main_area(eligible)

    current = list(seeds)
    assignments = yield from assign_steps(land, spec.seed_positions(current), river_mask)
    current, assignments = yield from _seat_steps(land, current, assignments, spec, area, river_mask, min_cells)
    for _ in range(max(0, int(iterations))):
        current = _recentre(assignments, current, spec, rand, jitter)
        yield
        assignments = yield from assign_steps(land, spec.seed_positions(current), river_mask)
    current, assignments = yield from _seat_steps(land, current, assignments, spec, area, river_mask, min_cells)
    return PartitionResult(assignments, tuple(current), rand.state)


def land_from_raster(grid_raster: np.ndarray, ocean_rgb: tuple[int, int, int], threshold: float) -> np.ndarray:
    return classify_land(grid_raster, ocean_rgb=ocean_rgb, threshold=threshold)


async def partition(
    grid_raster: np.ndarray,
    seeds: Sequence[Seed],
    spec: GridSpec,
    iterations: int,
    rand: Mulberry32,
    *,
    ocean_rgb: tuple[int, int, int],
    water_distance: float,
    river_mask: np.ndarray | None = None,
    jitter: float = 0.5,
    min_cells: int = 1,
    worker: RegionWorker | None = None,
) -> PartitionResult:
    """Assign and relax, on `worker` when available, else cooperatively.

    Both paths consume the same random stream, so their output is identical.
    `rand` is advanced to the post-relaxation state either way.
    """

    if worker is not None:
        try:
            result = await worker.request(
                grid_raster=grid_raster,
                seeds=seeds,
                spec=spec,
                iterations=iterations,
                rng_state=rand.state,
                ocean_rgb=ocean_rgb,
                water_distance=water_distance,
                river_mask=river_mask,
                jitter=jitter,
                min_cells=min_cells,
            )
        except Exception as exc:
            logger.warning("Region worker failed, falling back to cooperative computation: %s", exc)
        else:
            rand.state = result.rng_state
            return result

    land = land_from_raster(grid_raster, ocean_rgb, water_distance)
    return await run_cooperatively(
        relax_steps(
            land,
            seeds,
            spec,
            iterations,
            rand,
            river_mask=river_mask,
            jitter=jitter,
            min_cells=min_cells,
        )
    )
