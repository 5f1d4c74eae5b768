from __future__ import annotations

import json

import numpy as np
import pytest

from cli.main import main


def _run(out_dir, *extra: str) -> int:
    return main(
        [
            "--seed",
            "42",
            "--out",
            str(out_dir),
            "--w",
            "240",
            "--h",
            "135",
            "--quality",
            "low",
            "--regions",
            "8",
            "--no-worker",
            "--overwrite",
            *extra,
        ]
    )


def test_runtime_fields_only_in_meta_json(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    out_dir = tmp_path / "out"
    assert _run(out_dir) == 0

    base = out_dir / "42" / "240x135"
    meta = json.loads((base / "meta.json").read_text(encoding="utf-8"))
    deterministic_meta = json.loads((base / "deterministic_meta.json").read_text(encoding="utf-8"))

    for key in ("generation_seconds", "generated_at_utc", "timings", "python_version"):
        assert key in meta
        assert key not in deterministic_meta
    assert meta["generation_seconds"] >= 0.0
    assert meta["stage"] == "refined"

    assert deterministic_meta["seed_hash"] == 42
    assert deterministic_meta["region_count"] == 8
    assert deterministic_meta["grid"] == {"width": 120, "height": 80}
    assert "fragment_count" in deterministic_meta["metrics"]
    assert deterministic_meta["merge"]["threshold"] >= 10
    assert all(region["name"] for region in deterministic_meta["regions"])


def test_outputs_are_written_and_deterministic(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    out_dir = tmp_path / "out"
    base = out_dir / "42" / "240x135"

    assert _run(out_dir) == 0
    for name in ("terrain.png", "regions.png", "regions.geojson", "assignments.npy"):
        assert (base / name).is_file()
    first = np.load(base / "assignments.npy")
    first_meta = (base / "deterministic_meta.json").read_text(encoding="utf-8")

    assert _run(out_dir) == 0
    assert np.array_equal(first, np.load(base / "assignments.npy"))
    assert first_meta == (base / "deterministic_meta.json").read_text(encoding="utf-8")

    collection = json.loads((base / "regions.geojson").read_text(encoding="utf-8"))
    assert collection["type"] == "FeatureCollection"


def test_no_json_skips_metadata(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    out_dir = tmp_path / "out"
    assert _run(out_dir, "--no-json") == 0

    base = out_dir / "42" / "240x135"
    assert not (base / "meta.json").exists()
    assert (base / "regions.png").is_file()


def test_rivers_flag_reads_geojson(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    rivers = tmp_path / "rivers.geojson"
    rivers.write_text(
        json.dumps({"type": "LineString", "coordinates": [[-130.0, 50.0], [-70.0, 50.0]]}),
        encoding="utf-8",
    )
    out_dir = tmp_path / "out"
    assert _run(out_dir, "--rivers", str(rivers)) == 0

    meta = json.loads((out_dir / "42" / "240x135" / "deterministic_meta.json").read_text(encoding="utf-8"))
    assert meta["rivers"] is True


def test_invalid_seed_exits_with_usage_error(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit) as exc:
        main(["--seed", "no spaces allowed", "--out", str(tmp_path / "out")])
    assert exc.value.code == 2
