"""Configuration models for region map generation."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


DEFAULT_WIDTH = 960
DEFAULT_HEIGHT = 540
DEFAULT_REGION_COUNT = 21
DEFAULT_SMOOTH_PASSES = 2

# Surface scale and region grid divisor per quality tier.
QUALITY_SCALE = {"low": 1, "medium": 2, "high": 4}
QUALITY_GRID_DIVISOR = {"low": 16, "medium": 8, "high": 4}

# Canonical ocean colour of the rendered terrain and the distance under which a
# grid cell counts as water. Tuned for the default North America framing.
OCEAN_RGB = (113, 166, 213)
WATER_DISTANCE_THRESHOLD = 45.0


@dataclass(frozen=True)
class BoundingBox:
    """Working longitude/latitude extent, equirectangular."""

    west: float
    east: float
    north: float
    south: float

    def __post_init__(self) -> None:
        if self.east <= self.west:
            raise ValueError("east must be greater than west")
        if self.north <= self.south:
            raise ValueError("north must be greater than south")

    @property
    def lon_span(self) -> float:
        return self.east - self.west

    @property
    def lat_span(self) -> float:
        return self.north - self.south

    def contains(self, lon: float, lat: float) -> bool:
        return self.west <= lon <= self.east and self.south <= lat <= self.north

    def clamp(self, lon: float, lat: float) -> tuple[float, float]:
        return (
            max(self.west, min(self.east, lon)),
            max(self.south, min(self.north, lat)),
        )


NORTH_AMERICA = BoundingBox(west=-170.0, east=-50.0, north=72.0, south=14.0)


@dataclass(frozen=True)
class NoiseConfig:
    """Fractal value-noise parameters in lon/lat units."""

    scale: float = 40.0
    octaves: int = 4
    persistence: float = 0.5


@dataclass(frozen=True)
class ContinentConfig:
    """Blend of fractal noise with a continent potential around the points of interest.

    The potential is 1 minus the product of `1 - exp(-d^2 / 2r^2)` over the
    points, with `d` in degrees. Weights sum to 1 so elevation stays in [0, 1].
    """

    radius: float = 9.0
    noise_weight: float = 0.55
    continent_weight: float = 0.45


@dataclass(frozen=True)
class TerrainConfig:
    """Palette bands and land/water classification constants."""

    sea_level: float = 0.4
    beach_level: float = 0.5
    grass_level: float = 0.75
    rock_level: float = 0.9
    deep_water: str = "#6296c8"
    shallow_water: str = "#7db2de"
    beach: tuple[str, str] = ("#f0d9b5", "#d1b57b")
    grass: tuple[str, str] = ("#4bbf5b", "#2f8b3a")
    rock: tuple[str, str] = ("#8b7a6b", "#80736d")
    snow: tuple[str, str] = ("#eaeaea", "#ffffff")
    ocean_rgb: tuple[int, int, int] = OCEAN_RGB
    water_distance: float = WATER_DISTANCE_THRESHOLD


@dataclass(frozen=True)
class CrowdedZone:
    """Zone that must not collect more than `max_seeds` region seeds.

    Seeds beyond the limit are pushed south. This is a hand-tuned correction
    for the Alaska corner of the default framing, not a general rule.
    """

    max_lon: float = -140.0
    min_lat: float = 55.0
    max_seeds: int = 2
    shift_lat: float = 12.0
    floor_margin: float = 5.0

    def contains(self, lon: float, lat: float) -> bool:
        return lon < self.max_lon and lat > self.min_lat


@dataclass(frozen=True)
class SamplerConfig:
    """Weighted seed sampling parameters in degrees."""

    jitter_lon: float = 3.0
    jitter_lat: float = 2.0
    reach_lon: float = 20.0
    reach_lat: float = 10.0
    crowded_zone: CrowdedZone | None = field(default_factory=CrowdedZone)


@dataclass(frozen=True)
class PartitionConfig:
    """Grid partitioning and Lloyd relaxation parameters."""

    min_grid_w: int = 120
    min_grid_h: int = 80
    min_divisor: int = 2
    min_relax_iterations: int = 1
    max_relax_iterations: int = 4
    relax_jitter: float = 0.5
    seat_margin: float = 2.0
    max_region_count: int = 256


@dataclass(frozen=True)
class BoundaryConfig:
    """Boundary tracing and polygon smoothing limits."""

    max_walk_steps: int = 20000
    point_budget: int = 800
    min_area_cells: float = 2.0
    max_smooth_passes: int = 5
    min_chaikin_iterations: int = 1
    max_chaikin_iterations: int = 3
    merge_fraction: float = 0.08
    merge_floor: int = 10


@dataclass(frozen=True)
class GeneratorConfig:
    """Primary generation configuration."""

    noise: NoiseConfig = field(default_factory=NoiseConfig)
    continent: ContinentConfig = field(default_factory=ContinentConfig)
    terrain: TerrainConfig = field(default_factory=TerrainConfig)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    partition: PartitionConfig = field(default_factory=PartitionConfig)
    boundary: BoundaryConfig = field(default_factory=BoundaryConfig)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def clamp_int(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))
