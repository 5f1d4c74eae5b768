"""GeoJSON, PNG and JSON serialization plus output directory handling."""

from __future__ import annotations

import json
from pathlib import Path
import shutil
from typing import Any, Iterable

import numpy as np
from PIL import Image

from regionmap.geometry import close_ring
from regionmap.pipeline import Region
from regionmap.rivers import Polyline


def region_feature(region: Region) -> dict[str, Any]:
    """One Feature per region; several loops become a MultiPolygon."""

    rings = [close_ring(polygon.tolist()) for polygon in region.polygons]
    if len(rings) == 1:
        geometry = {"type": "Polygon", "coordinates": [rings[0]]}
    else:
        geometry = {"type": "MultiPolygon", "coordinates": [[ring] for ring in rings]}
    return {
        "type": "Feature",
        "id": region.id,
        "geometry": geometry,
        "properties": {
            "id": region.id,
            "name": region.name,
            "centroid": [region.centroid[0], region.centroid[1]],
            "cell_count": region.cell_count,
        },
    }


def regions_to_geojson(regions: Iterable[Region]) -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [region_feature(region) for region in regions if region.polygons],
    }


def _lines_from_geometry(geometry: dict[str, Any] | None) -> list[list[tuple[float, float]]]:
    if not geometry:
        return []
    kind = geometry.get("type")
    coords = geometry.get("coordinates") or []
    if kind == "LineString":
        return [[(float(p[0]), float(p[1])) for p in coords]]
    if kind == "MultiLineString":
        return [[(float(p[0]), float(p[1])) for p in line] for line in coords]
    if kind == "GeometryCollection":
        lines = []
        for child in geometry.get("geometries") or []:
            lines.extend(_lines_from_geometry(child))
        return lines
    return []


def load_river_geojson(path: str | Path) -> tuple[Polyline, ...]:
    """Read LineString and MultiLineString geometries as lon/lat polylines.

    Other geometry types are skipped. Lines with fewer than two points are
    dropped.
    """

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    kind = payload.get("type")
    if kind == "FeatureCollection":
        geometries = [feature.get("geometry") for feature in payload.get("features") or []]
    elif kind == "Feature":
        geometries = [payload.get("geometry")]
    else:
        geometries = [payload]

    lines: list[Polyline] = []
    for geometry in geometries:
        for line in _lines_from_geometry(geometry):
            if len(line) >= 2:
                lines.append(tuple(line))
    return tuple(lines)


def resolve_output_dir(
    out_root: str | Path,
    canonical_seed: str,
    width: int,
    height: int,
    *,
    overwrite: bool,
) -> Path:
    """Create and return the output directory for one generation run."""

    target = Path(out_root) / canonical_seed / f"{width}x{height}"
    if target.exists() and any(target.iterdir()) and not overwrite:
        raise FileExistsError(
            f"Output directory already exists and is not empty: {target}. Use --overwrite to replace files."
        )
    target.mkdir(parents=True, exist_ok=True)
    return target


def safe_clean_output_dir(target: Path, *, out_root: Path, project_root: Path) -> None:
    """Delete all children of target with strict path-safety guards."""

    out_root_r = out_root.resolve()
    target_r = target.resolve()
    target_r.relative_to(out_root_r)
    out_root_r.relative_to(project_root.resolve())

    if not target_r.exists():
        target_r.mkdir(parents=True, exist_ok=True)
        return
    for child in target_r.iterdir():
        if child.is_symlink() or child.is_file():
            child.unlink()
        elif child.is_dir():
            shutil.rmtree(child)


def move_tree_contents(src_dir: Path, dst_dir: Path) -> None:
    for child in src_dir.iterdir():
        shutil.move(str(child), str(dst_dir / child.name))


def write_png_rgb(path: str | Path, raster: np.ndarray) -> None:
    Image.fromarray(np.ascontiguousarray(raster[:, :, :3]).astype(np.uint8)).save(Path(path))


def write_assignments_npy(path: str | Path, assignments: np.ndarray) -> None:
    np.save(Path(path), assignments.astype(np.int32), allow_pickle=False)


def write_json(path: str | Path, payload: dict[str, Any]) -> None:
    text = json.dumps(payload, indent=2, sort_keys=True)
    Path(path).write_text(text + "\n", encoding="utf-8")
