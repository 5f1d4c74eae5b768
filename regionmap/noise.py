"""Seeded value noise and fractal composition.

Scalar functions are the reference; `fractal_noise_grid` is the vectorised
form used to render rasters and reproduces the scalar values exactly.
"""

from __future__ import annotations

import math

import numpy as np

from regionmap.rng import MASK32, Mulberry32

_PRIME_X = 374761393
_PRIME_Y = 668265263
_SALT = 0x9E3779B1
_GOLDEN_GAMMA = 0x6D2B79F5


def _smoothstep(t):
    return t * t * (3.0 - 2.0 * t)


def _lerp(a, b, t):
    return a + (b - a) * t


def lattice_seed(seed: int, cx: int, cy: int) -> int:
    n = (cx * _PRIME_X + cy * _PRIME_Y + int(seed)) & MASK32
    return (n ^ _SALT) & MASK32


def lattice_value(seed: int, cx: int, cy: int) -> float:
    """First output of a fresh generator keyed by `(seed, cx, cy)`."""

    return Mulberry32(lattice_seed(seed, cx, cy)).random()


def value_noise(seed: int, x: float, y: float) -> float:
    """Bilinear value noise in [0, 1) with smoothstep easing."""

    x0 = math.floor(x)
    y0 = math.floor(y)
    u = _smoothstep(x - x0)
    v = _smoothstep(y - y0)

    a = lattice_value(seed, x0, y0)
    b = lattice_value(seed, x0 + 1, y0)
    c = lattice_value(seed, x0, y0 + 1)
    d = lattice_value(seed, x0 + 1, y0 + 1)
    return _lerp(_lerp(a, b, u), _lerp(c, d, u), v)


def fractal_noise(
    seed: int,
    x: float,
    y: float,
    *,
    scale: float,
    octaves: int,
    persistence: float,
) -> float:
    """Sum `octaves` value-noise layers, normalised to [0, 1]."""

    if scale <= 0:
        raise ValueError("scale must be positive")

    total = 0.0
    frequency = 1.0 / scale
    amplitude = 1.0
    max_amplitude = 0.0
    for _ in range(max(1, int(octaves))):
        total += value_noise(seed, x * frequency, y * frequency) * amplitude
        max_amplitude += amplitude
        amplitude *= persistence
        frequency *= 2.0
    return total / max_amplitude


def _lattice_values(seed: int, cx: np.ndarray, cy: np.ndarray) -> np.ndarray:
    """Vectorised `lattice_value` using uint64 lanes masked to 32 bits."""

    mask = np.uint64(MASK32)
    n = (
        cx.astype(np.int64) * _PRIME_X
        + cy.astype(np.int64) * _PRIME_Y
        + (int(seed) & MASK32)
    )
    state = (n.astype(np.uint64) & mask) ^ np.uint64(_SALT)

    t = (state + np.uint64(_GOLDEN_GAMMA)) & mask
    r = ((t ^ (t >> np.uint64(15))) * (t | np.uint64(1))) & mask
    inner = ((r ^ (r >> np.uint64(7))) * (r | np.uint64(61))) & mask
    r = (r ^ ((r + inner) & mask)) & mask
    out = (r ^ (r >> np.uint64(14))) & mask
    return out.astype(np.float64) / 4294967296.0


def value_noise_grid(seed: int, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Vectorised `value_noise` over broadcastable coordinate arrays."""

    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    x, y = np.broadcast_arrays(x, y)
    x0 = np.floor(x)
    y0 = np.floor(y)
    u = _smoothstep(x - x0)
    v = _smoothstep(y - y0)

    ix = x0.astype(np.int64)
    iy = y0.astype(np.int64)
    a = _lattice_values(seed, ix, iy)
    b = _lattice_values(seed, ix + 1, iy)
    c = _lattice_values(seed, ix, iy + 1)
    d = _lattice_values(seed, ix + 1, iy + 1)
    return _lerp(_lerp(a, b, u), _lerp(c, d, u), v)


def fractal_noise_grid(
    seed: int,
    x: np.ndarray,
    y: np.ndarray,
    *,
    scale: float,
    octaves: int,
    persistence: float,
) -> np.ndarray:
    """Vectorised `fractal_noise`; identical values for identical inputs."""

    if scale <= 0:
        raise ValueError("scale must be positive")

    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    total = np.zeros(np.broadcast_shapes(x.shape, y.shape), dtype=np.float64)
    frequency = 1.0 / scale
    amplitude = 1.0
    max_amplitude = 0.0
    for _ in range(max(1, int(octaves))):
        total += value_noise_grid(seed, x * frequency, y * frequency) * amplitude
        max_amplitude += amplitude
        amplitude *= persistence
        frequency *= 2.0
    return total / max_amplitude
