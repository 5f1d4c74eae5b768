from __future__ import annotations

import json

import numpy as np
import pytest

from regionmap.config import NORTH_AMERICA
from regionmap.io import load_river_geojson, regions_to_geojson, resolve_output_dir, write_json
from regionmap.partition import GridSpec
from regionmap.pipeline import Region
from regionmap.rivers import river_mask
from regionmap.sampler import Seed


def _region(region_id: int, loops: int) -> Region:
    square = np.array([[-120.0, 50.0], [-110.0, 50.0], [-110.0, 40.0], [-120.0, 40.0]])
    polygons = tuple(square + np.array([15.0 * i, 0.0]) for i in range(loops))
    return Region(
        id=region_id,
        seed=Seed(-115.0, 45.0),
        polygons=polygons,
        centroid=(-115.0, 45.0),
        name="Prairie Rock Expanse",
        cell_count=120,
    )


def test_single_loop_region_is_a_closed_polygon() -> None:
    collection = regions_to_geojson([_region(3, 1)])

    assert collection["type"] == "FeatureCollection"
    feature = collection["features"][0]
    assert feature["geometry"]["type"] == "Polygon"
    ring = feature["geometry"]["coordinates"][0]
    assert ring[0] == ring[-1]
    assert len(ring) == 5
    assert feature["properties"] == {
        "id": 3,
        "name": "Prairie Rock Expanse",
        "centroid": [-115.0, 45.0],
        "cell_count": 120,
    }


def test_multi_loop_region_is_a_multipolygon() -> None:
    feature = regions_to_geojson([_region(1, 2)])["features"][0]

    assert feature["geometry"]["type"] == "MultiPolygon"
    polygons = feature["geometry"]["coordinates"]
    assert len(polygons) == 2
    for polygon in polygons:
        assert polygon[0][0] == polygon[0][-1]


def test_geojson_is_serialisable(tmp_path) -> None:
    path = tmp_path / "regions.geojson"
    write_json(path, regions_to_geojson([_region(0, 1), _region(1, 2)]))
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert len(payload["features"]) == 2


def test_load_river_geojson_reads_line_geometries(tmp_path) -> None:
    path = tmp_path / "rivers.geojson"
    path.write_text(
        json.dumps(
            {
                "type": "FeatureCollection",
                "features": [
                    {"type": "Feature", "geometry": {"type": "LineString", "coordinates": [[-90, 30], [-91, 40]]}},
                    {
                        "type": "Feature",
                        "geometry": {
                            "type": "MultiLineString",
                            "coordinates": [[[-100, 45], [-95, 46]], [[-80, 35]]],
                        },
                    },
                    {"type": "Feature", "geometry": {"type": "Point", "coordinates": [-90, 30]}},
                    {"type": "Feature", "geometry": None},
                ],
            }
        ),
        encoding="utf-8",
    )

    lines = load_river_geojson(path)

    assert lines == (
        ((-90.0, 30.0), (-91.0, 40.0)),
        ((-100.0, 45.0), (-95.0, 46.0)),
    )


def test_river_mask_marks_crossed_cells() -> None:
    spec = GridSpec(120, 80, 960, 540, NORTH_AMERICA)
    mask = river_mask([((-110.0, 43.0), (-90.0, 43.0))], spec)

    assert mask.shape == (80, 120)
    assert mask.dtype == bool
    assert not mask.flags.writeable
    gx, gy = spec.lonlat_to_grid(-100.0, 43.0)
    assert mask[int(gy), int(gx)]
    assert not mask[5, 5]
    assert not river_mask([], spec).any()


def test_resolve_output_dir_refuses_non_empty_without_overwrite(tmp_path) -> None:
    target = resolve_output_dir(tmp_path, "42", 10, 10, overwrite=False)
    (target / "file.txt").write_text("x", encoding="utf-8")

    with pytest.raises(FileExistsError):
        resolve_output_dir(tmp_path, "42", 10, 10, overwrite=False)
    assert resolve_output_dir(tmp_path, "42", 10, 10, overwrite=True) == target
