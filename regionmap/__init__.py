"""Procedural terrain with named, organically shaped regions."""

from .config import DEFAULT_HEIGHT, DEFAULT_REGION_COUNT, DEFAULT_WIDTH, NORTH_AMERICA, GeneratorConfig

__all__ = ["DEFAULT_WIDTH", "DEFAULT_HEIGHT", "DEFAULT_REGION_COUNT", "NORTH_AMERICA", "GeneratorConfig"]
