"""Deterministic 32-bit random streams."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
from typing import Callable

MASK32 = 0xFFFFFFFF
_GOLDEN_GAMMA = 0x6D2B79F5
_TWO_POW_32 = 4294967296.0


def _imul(a: int, b: int) -> int:
    return (a * b) & MASK32


class Mulberry32:
    """Counter-based generator producing floats in [0, 1).

    The whole state is one 32-bit counter, so a stream can be captured with
    `state`, shipped elsewhere, and resumed bit-for-bit.
    """

    __slots__ = ("state",)

    def __init__(self, seed: int) -> None:
        self.state = int(seed) & MASK32

    def next_u32(self) -> int:
        self.state = (self.state + _GOLDEN_GAMMA) & MASK32
        t = self.state
        r = _imul(t ^ (t >> 15), 1 | t)
        r = (r ^ ((r + _imul(r ^ (r >> 7), 61 | r)) & MASK32)) & MASK32
        return (r ^ (r >> 14)) & MASK32

    def random(self) -> float:
        return self.next_u32() / _TWO_POW_32

    def uniform(self, low: float, high: float) -> float:
        return low + (high - low) * self.random()

    def choice_index(self, count: int) -> int:
        if count <= 0:
            raise ValueError("count must be positive")
        return min(count - 1, int(self.random() * count))

    def __call__(self) -> float:
        return self.random()


def seeded_random(seed: int) -> Callable[[], float]:
    """Return a zero-argument callable yielding the stream of `seed`."""

    return Mulberry32(seed).random


def derive_seed(parent_seed: int, key: str, *, namespace: str = "regionmap-v1") -> int:
    """Derive a deterministic 32-bit child seed from a parent seed and label."""

    payload = f"{namespace}:{int(parent_seed) & MASK32}:{key}".encode("utf-8")
    digest = hashlib.blake2b(payload, digest_size=4, person=b"rngfork00").digest()
    return int.from_bytes(digest, byteorder="big", signed=False)


@dataclass(frozen=True)
class RngStream:
    """Immutable RNG stream that can be forked by deterministic stage names."""

    seed: int
    namespace: str = "regionmap-v1"

    def fork(self, key: str) -> "RngStream":
        if not key:
            raise ValueError("fork key must be non-empty")
        return RngStream(derive_seed(self.seed, key, namespace=self.namespace), self.namespace)

    def generator(self) -> Mulberry32:
        return Mulberry32(self.seed)
