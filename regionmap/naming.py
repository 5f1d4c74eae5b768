"""Region names drawn from themed word pools by centroid position."""

from __future__ import annotations

from typing import Callable, Sequence

from regionmap.rng import Mulberry32

Predicate = Callable[[float, float], bool]

NORTH_WORDS = ("Glacial", "Frost", "Boreal", "Arctic", "Fjord", "Tundra")
PACIFIC_WORDS = ("Cascadia", "Rainshore", "Pacifica", "Fogreach")
PRAIRIE_WORDS = ("Prairie", "Wheat", "Golden", "Plains", "Windstep")
MOUNTAIN_WORDS = ("Rock", "Ridge", "Crown", "Highland", "Spine")
GULF_WORDS = ("Gulf", "Bay", "Marsh", "Delta")
EAST_WORDS = ("Hearth", "Harbor", "Granite", "Iron")
MEXICAN_WORDS = ("Sierra", "Sol", "Cenote", "Basin")
FRONTIER_WORDS = ("Frontier", "Belt", "Shore", "Wastes")
SUFFIXES = ("Dominion", "Marches", "Expanse", "Heights", "Terrace", "Province")

# Predicates overlap on purpose; every matching pool contributes one word.
THEMES: tuple[tuple[Predicate, Sequence[str]], ...] = (
    (lambda lon, lat: lat > 60, NORTH_WORDS),
    (lambda lon, lat: lon < -140 or (lon < -130 and lat > 50), PACIFIC_WORDS),
    (lambda lon, lat: -125 < lon < -95 and 30 < lat < 55, PRAIRIE_WORDS),
    (lambda lon, lat: -120 < lon < -100 and 35 < lat < 65, MOUNTAIN_WORDS),
    (lambda lon, lat: lat < 30, GULF_WORDS),
    (lambda lon, lat: -90 < lon < -65, EAST_WORDS),
    (lambda lon, lat: lat < 25, MEXICAN_WORDS),
)


def _pick(words: Sequence[str], rand: Mulberry32) -> str:
    return words[rand.choice_index(len(words))]


def name_parts(lon: float, lat: float, rand: Mulberry32) -> list[str]:
    parts = [_pick(words, rand) for matches, words in THEMES if matches(lon, lat)]
    if not parts:
        parts.append(_pick(FRONTIER_WORDS, rand))
    return parts


def region_name(lon: float, lat: float, rand: Mulberry32) -> str:
    """Themed words for the centroid followed by a random suffix.

    Draws one value from `rand` per word, so names depend on the order in
    which regions are named.
    """

    parts = name_parts(lon, lat, rand)
    return " ".join(parts) + " " + _pick(SUFFIXES, rand)
