"""Seed parsing, canonicalization, and hashing utilities."""

from __future__ import annotations

from dataclasses import dataclass
import re
import secrets

from regionmap.rng import MASK32

_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619
_INT_RE = re.compile(r"^[+-]?\d+$")

_EXAMPLE_SEEDS = ["42", "1337", "northwind", "random"]


class SeedParseError(ValueError):
    """Raised when a seed is empty or not representable."""


@dataclass(frozen=True)
class ParsedSeed:
    """Validated seed text and its 32-bit numeric form."""

    original: str
    canonical: str
    seed_hash: int


def fnv1a_32(text: str) -> int:
    """32-bit FNV-1a hash of `text` code points."""

    h = _FNV_OFFSET
    for ch in text:
        h ^= ord(ch)
        h = (h * _FNV_PRIME) & MASK32
    return h


def parse_seed(seed_text: str | int | None) -> ParsedSeed:
    """Parse `seed_text` into a deterministic 32-bit seed.

    Integers are taken modulo 2**32, other ASCII text is hashed with FNV-1a and
    the literal ``random`` draws a fresh seed.
    """

    if seed_text is None:
        raise SeedParseError(_error_message("Seed is required."))
    if isinstance(seed_text, int):
        value = seed_text & MASK32
        return ParsedSeed(str(seed_text), str(value), value)

    raw = seed_text.strip()
    if not raw:
        raise SeedParseError(_error_message("Seed cannot be empty."))
    if not raw.isascii():
        raise SeedParseError(_error_message("Seed must be ASCII text."))

    if _INT_RE.fullmatch(raw):
        value = int(raw) & MASK32
        return ParsedSeed(raw, str(value), value)

    lowered = raw.lower()
    if lowered == "random":
        value = secrets.randbits(31)
        return ParsedSeed(raw, str(value), value)

    if not lowered.replace("-", "").replace("_", "").isalnum():
        raise SeedParseError(
            _error_message("Seed text may only contain letters, digits, '-' and '_'.")
        )
    return ParsedSeed(raw, lowered, fnv1a_32(lowered))


def _error_message(reason: str) -> str:
    examples = ", ".join(_EXAMPLE_SEEDS)
    return f"{reason} Examples: {examples}"
