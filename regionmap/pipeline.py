"""One full generation pass from terrain raster to named region polygons."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import TYPE_CHECKING, Callable, Sequence

import numpy as np

from regionmap.boundary import region_boundaries_steps
from regionmap.cache import RenderCache
from regionmap.config import (
    DEFAULT_REGION_COUNT,
    DEFAULT_SMOOTH_PASSES,
    NORTH_AMERICA,
    BoundingBox,
    GeneratorConfig,
    clamp_int,
)
from regionmap.geometry import chaikin_iterations, chaikin_smooth, polygon_centroid
from regionmap.metrics import RegionMetrics, region_metrics
from regionmap.naming import region_name
from regionmap.partition import UNASSIGNED, GridSpec, grid_for_surface, land_from_raster, partition, relax_iterations
from regionmap.rivers import Polyline, river_mask
from regionmap.rng import RngStream
from regionmap.sampler import DEFAULT_WEIGHT_POINTS, Seed, reachable_points, sample_seeds
from regionmap.scheduling import run_cooperatively
from regionmap.smoothing import (
    MergeResult,
    effective_smooth_passes,
    majority_steps,
    merge_small_regions,
    merge_threshold,
)
from regionmap.terrain import downsample_to_grid, render_terrain

if TYPE_CHECKING:
    from regionmap.worker import RegionWorker

logger = logging.getLogger(__name__)


class StaleGenerationError(Exception):
    """A newer generation request superseded the pass that raised this."""


@dataclass(frozen=True)
class PassParameters:
    """Inputs of a single pass at one surface size and grid resolution."""

    surface_w: int
    surface_h: int
    seed: int
    bbox: BoundingBox = NORTH_AMERICA
    region_count: int = DEFAULT_REGION_COUNT
    smooth_passes: int = DEFAULT_SMOOTH_PASSES
    grid_divisor: int = 8
    relax_iterations: int | None = None
    rivers: tuple[Polyline, ...] | None = None


@dataclass(frozen=True)
class Region:
    """One named region: closed lon/lat polygons, largest first."""

    id: int
    seed: Seed
    polygons: tuple[np.ndarray, ...]
    centroid: tuple[float, float]
    name: str
    cell_count: int


@dataclass(frozen=True)
class GenerationResult:
    """Everything one committed pass produced."""

    request_id: int
    stage: str
    params: PassParameters
    spec: GridSpec
    assignments: np.ndarray
    seeds: tuple[Seed, ...]
    regions: tuple[Region, ...]
    terrain: np.ndarray
    merge: MergeResult
    metrics: RegionMetrics
    timings: dict[str, float] = field(default_factory=dict)

    def region(self, region_id: int) -> Region | None:
        for region in self.regions:
            if region.id == region_id:
                return region
        return None

    def pick(self, surface_x: float, surface_y: float) -> int:
        """Region id under a render-surface coordinate, -1 for water or outside."""

        gx, gy = self.spec.surface_to_cell(surface_x, surface_y)
        if not self.spec.contains_cell(gx, gy):
            return UNASSIGNED
        return int(self.assignments[gy, gx])


def _surface_to_lonlat(points: np.ndarray, spec: GridSpec) -> np.ndarray:
    bbox = spec.bbox
    lon = bbox.west + points[:, 0] / spec.surface_w * bbox.lon_span
    lat = bbox.north - points[:, 1] / spec.surface_h * bbox.lat_span
    return np.column_stack((lon, lat))


def _cell_mean_lonlat(assignments: np.ndarray, region_id: int, spec: GridSpec) -> tuple[float, float]:
    ys, xs = np.nonzero(assignments == region_id)
    return spec.grid_to_lonlat(float(xs.mean()) + 0.5, float(ys.mean()) + 0.5)


def build_regions(
    assignments: np.ndarray,
    boundaries: dict[int, list[np.ndarray]],
    seeds: Sequence[Seed],
    spec: GridSpec,
    *,
    smooth_passes: int,
    stream: RngStream,
) -> tuple[Region, ...]:
    """Smooth each region's loops, project them to lon/lat and name the result."""

    iterations = chaikin_iterations(smooth_passes)
    sizes = np.bincount(assignments[assignments != UNASSIGNED], minlength=len(seeds))
    names_rand = stream.fork(f"names:{len(seeds)}").generator()

    regions = []
    for region_id in sorted(boundaries):
        smoothed = [chaikin_smooth(loop, iterations) for loop in boundaries[region_id]]
        polygons = tuple(_surface_to_lonlat(loop, spec) for loop in smoothed)
        if smoothed:
            cx, cy = polygon_centroid(smoothed[0])
            centroid = spec.surface_to_lonlat(cx, cy)
        else:
            centroid = _cell_mean_lonlat(assignments, region_id, spec)
        regions.append(
            Region(
                id=region_id,
                seed=seeds[region_id],
                polygons=polygons,
                centroid=(float(centroid[0]), float(centroid[1])),
                name=region_name(centroid[0], centroid[1], names_rand),
                cell_count=int(sizes[region_id]),
            )
        )
    return tuple(regions)


async def run_pass(
    params: PassParameters,
    *,
    config: GeneratorConfig | None = None,
    cache: RenderCache | None = None,
    worker: RegionWorker | None = None,
    is_stale: Callable[[], bool] | None = None,
    request_id: int = 0,
    stage: str = "refined",
) -> GenerationResult:
    """Run terrain, partition, smoothing, merge, tracing and naming for one pass.

    Raises StaleGenerationError if `is_stale` reports a newer request before
    the partition step starts.
    """

    cfg = config or GeneratorConfig()
    timings: dict[str, float] = {}
    t0 = time.perf_counter()

    points = reachable_points(DEFAULT_WEIGHT_POINTS, params.bbox, config=cfg.sampler)
    terrain = render_terrain(
        params.surface_w,
        params.surface_h,
        params.bbox,
        params.seed,
        noise=cfg.noise,
        terrain=cfg.terrain,
        continent=cfg.continent,
        points=points,
        cache=cache,
    )
    spec = grid_for_surface(params.surface_w, params.surface_h, params.grid_divisor, params.bbox, config=cfg.partition)
    grid_raster = downsample_to_grid(terrain, spec.grid_w, spec.grid_h)
    land = land_from_raster(grid_raster, cfg.terrain.ocean_rgb, cfg.terrain.water_distance)
    rivers = river_mask(params.rivers, spec) if params.rivers else None
    timings["terrain_s"] = time.perf_counter() - t0

    count = clamp_int(params.region_count, 1, cfg.partition.max_region_count)
    stream = RngStream(params.seed)
    rand = stream.fork(f"seeds:{count}").generator()
    seeds = sample_seeds(count, params.bbox, rand, points=points, config=cfg.sampler)
    eligible = land if rivers is None else land & ~rivers
    # Seeds whose cells would not clear the merge threshold after smoothing are
    # seated elsewhere during partitioning.
    threshold = merge_threshold(int(np.count_nonzero(eligible)), count, config=cfg.boundary)
    min_cells = int(np.ceil(threshold * cfg.partition.seat_margin))

    if is_stale is not None and is_stale():
        raise StaleGenerationError(f"request {request_id} superseded before partition")

    t1 = time.perf_counter()
    result = await partition(
        grid_raster,
        seeds,
        spec,
        relax_iterations(params.smooth_passes, params.relax_iterations, config=cfg.partition),
        rand,
        ocean_rgb=cfg.terrain.ocean_rgb,
        water_distance=cfg.terrain.water_distance,
        river_mask=rivers,
        jitter=cfg.partition.relax_jitter,
        min_cells=min_cells,
        worker=worker,
    )
    timings["partition_s"] = time.perf_counter() - t1

    t2 = time.perf_counter()
    passes = effective_smooth_passes(params.smooth_passes, params.grid_divisor, config=cfg.boundary)
    smoothed = await run_cooperatively(majority_steps(result.assignments, passes, count))
    merge = merge_small_regions(smoothed, count, config=cfg.boundary)
    boundaries = await run_cooperatively(region_boundaries_steps(merge.assignments, spec, config=cfg.boundary))
    regions = build_regions(
        merge.assignments,
        boundaries,
        result.seeds,
        spec,
        smooth_passes=params.smooth_passes,
        stream=stream,
    )
    timings["regions_s"] = time.perf_counter() - t2

    assignments = merge.assignments
    assignments.setflags(write=False)
    logger.info(
        "%s pass %d: grid %dx%d, %d regions in %.3fs",
        stage,
        request_id,
        spec.grid_w,
        spec.grid_h,
        len(regions),
        time.perf_counter() - t0,
    )
    return GenerationResult(
        request_id=request_id,
        stage=stage,
        params=params,
        spec=spec,
        assignments=assignments,
        seeds=result.seeds,
        regions=regions,
        terrain=terrain,
        merge=merge,
        metrics=region_metrics(assignments, land),
        timings=timings,
    )
