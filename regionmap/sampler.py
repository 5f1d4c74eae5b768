"""Weighted region seed sampling."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from regionmap.config import BoundingBox, SamplerConfig
from regionmap.rng import Mulberry32


@dataclass(frozen=True)
class WeightPoint:
    """Point of interest pulling region seeds toward it."""

    lon: float
    lat: float
    weight: float


@dataclass(frozen=True)
class Seed:
    """Representative point of one region."""

    lon: float
    lat: float


# Population and resource centres of the default North America framing.
DEFAULT_WEIGHT_POINTS: tuple[WeightPoint, ...] = (
    WeightPoint(-74.0060, 40.7128, 3.0),  # New York
    WeightPoint(-118.2437, 34.0522, 3.0),  # Los Angeles
    WeightPoint(-87.6298, 41.8781, 2.0),  # Chicago
    WeightPoint(-99.1332, 19.4326, 2.0),  # Mexico City
    WeightPoint(-79.3832, 43.6532, 1.5),  # Toronto
    WeightPoint(-3.5, 60.0, 0.2),  # outside the default reach
    WeightPoint(-123.1207, 49.2827, 1.2),  # Vancouver
    WeightPoint(-122.3321, 47.6062, 1.3),  # Seattle
    WeightPoint(-95.3698, 29.7604, 1.8),  # Houston
    WeightPoint(-112.0740, 33.4484, 1.1),  # Phoenix
    WeightPoint(-80.1918, 25.7617, 1.0),  # Miami
    WeightPoint(-104.9903, 39.7392, 1.0),  # Denver
    WeightPoint(-123.1162, 49.2463, 0.8),
    WeightPoint(-106.3468, 56.1304, 0.6),  # northern central Canada
    WeightPoint(-149.4937, 64.2008, 0.6),  # Anchorage
    WeightPoint(-89.0, 43.5, 0.9),  # Great Lakes
    WeightPoint(-95.9928, 36.15398, 0.7),
    WeightPoint(-111.0937, 45.5202, 0.6),
    WeightPoint(-100.0, 45.0, 0.6),  # Prairies
    WeightPoint(-101.0, 29.4, 0.7),  # Texas
    WeightPoint(-80.0, 35.0, 0.7),
    WeightPoint(-75.0, 39.0, 0.7),  # Mid-Atlantic
    WeightPoint(-88.0, 19.0, 0.7),  # Yucatan
)


def points_in_reach(
    points: Sequence[WeightPoint],
    bbox: BoundingBox,
    *,
    lon_margin: float = 20.0,
    lat_margin: float = 10.0,
) -> list[WeightPoint]:
    """Drop points far outside the working extent or with non-positive weight."""

    return [
        p
        for p in points
        if p.weight > 0
        and bbox.west - lon_margin <= p.lon <= bbox.east + lon_margin
        and bbox.south - lat_margin <= p.lat <= bbox.north + lat_margin
    ]


def pick_weighted(points: Sequence[WeightPoint], rand: Mulberry32) -> WeightPoint:
    """Cumulative-weight selection against a running total."""

    if not points:
        raise ValueError("points must be non-empty")
    remaining = rand.random() * sum(p.weight for p in points)
    for point in points:
        remaining -= point.weight
        if remaining <= 0:
            return point
    return points[-1]


def _fallback_points(bbox: BoundingBox) -> list[WeightPoint]:
    # Uniform 3x3 lattice when no point of interest reaches the extent.
    return [
        WeightPoint(
            bbox.west + bbox.lon_span * (i + 0.5) / 3.0,
            bbox.north - bbox.lat_span * (j + 0.5) / 3.0,
            1.0,
        )
        for j in range(3)
        for i in range(3)
    ]


def reachable_points(
    points: Sequence[WeightPoint],
    bbox: BoundingBox,
    *,
    config: SamplerConfig | None = None,
) -> list[WeightPoint]:
    """Points in reach of `bbox`, or a uniform lattice when none are."""

    cfg = config or SamplerConfig()
    reachable = points_in_reach(points, bbox, lon_margin=cfg.reach_lon, lat_margin=cfg.reach_lat)
    return reachable or _fallback_points(bbox)


def sample_seeds(
    count: int,
    bbox: BoundingBox,
    rand: Mulberry32,
    *,
    points: Sequence[WeightPoint] = DEFAULT_WEIGHT_POINTS,
    config: SamplerConfig | None = None,
) -> list[Seed]:
    """Draw `count` jittered seeds around weighted points, clamped to `bbox`."""

    cfg = config or SamplerConfig()
    reachable = reachable_points(points, bbox, config=cfg)

    seeds: list[Seed] = []
    for _ in range(max(0, int(count))):
        point = pick_weighted(reachable, rand)
        lon = point.lon + rand.uniform(-cfg.jitter_lon, cfg.jitter_lon)
        lat = point.lat + rand.uniform(-cfg.jitter_lat, cfg.jitter_lat)
        seeds.append(Seed(*bbox.clamp(lon, lat)))

    zone = cfg.crowded_zone
    if zone is None:
        return seeds

    crowded = [i for i, s in enumerate(seeds) if zone.contains(s.lon, s.lat)]
    excess = max(0, len(crowded) - zone.max_seeds)
    for index in crowded[:excess]:
        seed = seeds[index]
        lat = max(bbox.south + zone.floor_margin, seed.lat - zone.shift_lat)
        seeds[index] = Seed(seed.lon, min(bbox.north, lat))
    return seeds
