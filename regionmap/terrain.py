"""Terrain raster rendering and land/water classification."""

from __future__ import annotations

from typing import Sequence

import numpy as np
from matplotlib.colors import to_rgb
from PIL import Image

from regionmap.cache import RenderCache
from regionmap.config import BoundingBox, ContinentConfig, NoiseConfig, TerrainConfig
from regionmap.noise import fractal_noise_grid
from regionmap.sampler import DEFAULT_WEIGHT_POINTS, WeightPoint, reachable_points


def pixel_centers(width: int, height: int, bbox: BoundingBox) -> tuple[np.ndarray, np.ndarray]:
    """Longitudes (1, W) and latitudes (H, 1) of pixel centres."""

    xs = (np.arange(width, dtype=np.float64) + 0.5) / width
    ys = (np.arange(height, dtype=np.float64) + 0.5) / height
    lon = bbox.west + xs * bbox.lon_span
    lat = bbox.north - ys * bbox.lat_span
    return lon[None, :], lat[:, None]


def continent_potential(
    width: int,
    height: int,
    bbox: BoundingBox,
    points: Sequence[WeightPoint],
    *,
    radius: float,
) -> np.ndarray:
    """Potential in [0, 1] that peaks at each point and fades over `radius` degrees."""

    lon, lat = pixel_centers(width, height, bbox)
    open_sea = np.ones((height, width), dtype=np.float64)
    scale = 2.0 * radius * radius
    for point in points:
        d2 = (lon - point.lon) ** 2 + (lat - point.lat) ** 2
        open_sea *= 1.0 - np.exp(-d2 / scale)
    return (1.0 - open_sea).astype(np.float32)


def elevation_field(
    width: int,
    height: int,
    bbox: BoundingBox,
    seed: int,
    *,
    config: NoiseConfig | None = None,
    continent: ContinentConfig | None = None,
    points: Sequence[WeightPoint] | None = None,
) -> np.ndarray:
    """Fractal noise at each pixel's lon/lat, raised around the points of interest.

    `points` defaults to the default points in reach of `bbox`. Result is in [0, 1].
    """

    if width <= 0 or height <= 0:
        raise ValueError("width and height must be positive")

    cfg = config or NoiseConfig()
    land_cfg = continent or ContinentConfig()
    if points is None:
        points = reachable_points(DEFAULT_WEIGHT_POINTS, bbox)
    lon, lat = pixel_centers(width, height, bbox)
    noise = fractal_noise_grid(
        seed,
        lon,
        lat,
        scale=cfg.scale,
        octaves=cfg.octaves,
        persistence=cfg.persistence,
    )
    potential = continent_potential(width, height, bbox, points, radius=land_cfg.radius)
    field = land_cfg.noise_weight * noise + land_cfg.continent_weight * potential
    return np.clip(field, 0.0, 1.0).astype(np.float32)


def _rgb(color: str) -> np.ndarray:
    return np.array(to_rgb(color), dtype=np.float32) * 255.0


def colorize(elevation: np.ndarray, config: TerrainConfig | None = None) -> np.ndarray:
    """Map elevation to the classic palette as an H x W x 3 uint8 raster."""

    cfg = config or TerrainConfig()
    bands = (
        (0.0, cfg.sea_level, (cfg.deep_water, cfg.shallow_water)),
        (cfg.sea_level, cfg.beach_level, cfg.beach),
        (cfg.beach_level, cfg.grass_level, cfg.grass),
        (cfg.grass_level, cfg.rock_level, cfg.rock),
        (cfg.rock_level, 1.0, cfg.snow),
    )

    e = elevation.astype(np.float32)
    out = np.zeros(e.shape + (3,), dtype=np.float32)
    for index, (low, high, (start, end)) in enumerate(bands):
        if index == 0:
            selected = e < high
        elif index == len(bands) - 1:
            selected = e >= low
        else:
            selected = (e >= low) & (e < high)
        if not np.any(selected):
            continue
        t = np.clip((e[selected] - low) / max(high - low, 1e-6), 0.0, 1.0)[:, None]
        c0 = _rgb(start)
        c1 = _rgb(end)
        out[selected] = c0 + (c1 - c0) * t
    return np.round(out).astype(np.uint8)


def render_terrain(
    width: int,
    height: int,
    bbox: BoundingBox,
    seed: int,
    *,
    noise: NoiseConfig | None = None,
    terrain: TerrainConfig | None = None,
    continent: ContinentConfig | None = None,
    points: Sequence[WeightPoint] | None = None,
    cache: RenderCache | None = None,
) -> np.ndarray:
    """Render the coloured terrain raster, reusing `cache` when given."""

    noise_cfg = noise or NoiseConfig()
    terrain_cfg = terrain or TerrainConfig()
    land_cfg = continent or ContinentConfig()
    land_points = tuple(points) if points is not None else tuple(reachable_points(DEFAULT_WEIGHT_POINTS, bbox))

    def factory() -> np.ndarray:
        elevation = elevation_field(
            width,
            height,
            bbox,
            seed,
            config=noise_cfg,
            continent=land_cfg,
            points=land_points,
        )
        raster = colorize(elevation, terrain_cfg)
        raster.setflags(write=False)
        return raster

    if cache is None:
        return factory()
    key = ("terrain", width, height, bbox, int(seed), noise_cfg, terrain_cfg, land_cfg, land_points)
    return cache.get_or_create(key, factory)


def downsample_to_grid(raster: np.ndarray, grid_w: int, grid_h: int) -> np.ndarray:
    """Area-resample an RGB raster to the region grid size."""

    if raster.ndim != 3 or raster.shape[2] < 3:
        raise ValueError("raster must be H x W x 3")
    image = Image.fromarray(np.ascontiguousarray(raster[:, :, :3]))
    resized = image.resize((grid_w, grid_h), resample=Image.Resampling.BOX)
    return np.asarray(resized, dtype=np.uint8)


def classify_land(
    grid_raster: np.ndarray,
    *,
    ocean_rgb: tuple[int, int, int],
    threshold: float,
) -> np.ndarray:
    """True where a cell's colour is farther than `threshold` from the ocean colour."""

    diff = grid_raster[:, :, :3].astype(np.int32) - np.array(ocean_rgb, dtype=np.int32)
    dist2 = np.sum(diff * diff, axis=2)
    return dist2 >= threshold * threshold
