"""CLI entry point for region map generation."""

from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timezone
import logging
from pathlib import Path
import platform
import shutil
import tempfile
import time

import numpy as np
from regionmap.config import (
    DEFAULT_HEIGHT,
    DEFAULT_REGION_COUNT,
    DEFAULT_SMOOTH_PASSES,
    DEFAULT_WIDTH,
    NORTH_AMERICA,
    QUALITY_SCALE,
    GeneratorConfig,
)
from regionmap.io import (
    load_river_geojson,
    move_tree_contents,
    regions_to_geojson,
    resolve_output_dir,
    safe_clean_output_dir,
    write_assignments_npy,
    write_json,
    write_png_rgb,
)
from regionmap.orchestrator import GenerationOptions, GenerationOrchestrator
from regionmap.pipeline import GenerationResult
from regionmap.render import render_result
from regionmap.seed import SeedParseError, parse_seed
from regionmap.worker import RegionWorker


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deterministic procedural region map generator")
    parser.add_argument("--seed", required=True, help="Integer or short text seed (e.g. 42, northwind, random)")
    parser.add_argument("--out", default="out", help="Output root directory")
    parser.add_argument("--w", type=int, default=DEFAULT_WIDTH, help="Base surface width in pixels")
    parser.add_argument("--h", type=int, default=DEFAULT_HEIGHT, help="Base surface height in pixels")
    parser.add_argument("--regions", type=int, default=DEFAULT_REGION_COUNT, help="Number of region seeds")
    parser.add_argument("--smooth", type=int, default=DEFAULT_SMOOTH_PASSES, help="Boundary smoothing passes")
    parser.add_argument(
        "--quality",
        choices=sorted(QUALITY_SCALE),
        default="medium",
        help="Surface scale and grid resolution tier",
    )
    parser.add_argument("--relax", type=int, default=None, help="Lloyd relaxation iterations (default: from --smooth)")
    parser.add_argument("--rivers", default=None, help="GeoJSON file of river lines to keep regions off")
    parser.add_argument(
        "--worker",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Delegate partitioning to a worker process",
    )
    parser.add_argument("--overwrite", action="store_true", help="Overwrite files in existing output directory")
    parser.add_argument(
        "--json",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Write metadata JSON files",
    )
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        default="WARNING",
        help="Logging verbosity",
    )
    return parser


async def _generate(options: GenerationOptions, config: GeneratorConfig, *, use_worker: bool) -> GenerationResult:
    worker = RegionWorker() if use_worker else None
    try:
        orchestrator = GenerationOrchestrator(config, worker=worker)
        preview = await orchestrator.generate(options)
        refined = await orchestrator.wait_refined()
        result = refined or orchestrator.latest or preview
    finally:
        if worker is not None:
            worker.close()
    if result is None:
        raise RuntimeError("generation produced no committed result")
    return result


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")

    try:
        parsed_seed = parse_seed(args.seed)
    except SeedParseError as exc:
        parser.error(str(exc))
    if args.w <= 0 or args.h <= 0:
        parser.error("--w and --h must be positive")

    rivers = None
    if args.rivers:
        try:
            rivers = load_river_geojson(args.rivers)
        except (OSError, ValueError) as exc:
            parser.error(f"could not read rivers from {args.rivers}: {exc}")

    config = GeneratorConfig()
    options = GenerationOptions(
        seed=parsed_seed.seed_hash,
        width=args.w,
        height=args.h,
        bbox=NORTH_AMERICA,
        region_count=args.regions,
        smooth_passes=args.smooth,
        quality=args.quality,
        relax_iterations=args.relax,
        rivers=rivers,
        use_rivers=rivers is not None,
    )

    generation_start = time.perf_counter()
    result = asyncio.run(_generate(options, config, use_worker=args.worker))
    generation_seconds = time.perf_counter() - generation_start

    out_dir = resolve_output_dir(
        args.out,
        parsed_seed.canonical,
        args.w,
        args.h,
        overwrite=args.overwrite,
    )
    stage_dir = Path(tempfile.mkdtemp(prefix=".staging-", dir=str(out_dir.parent)))
    try:
        write_png_rgb(stage_dir / "terrain.png", result.terrain)
        write_png_rgb(stage_dir / "regions.png", render_result(result))
        write_assignments_npy(stage_dir / "assignments.npy", result.assignments)
        write_json(stage_dir / "regions.geojson", regions_to_geojson(result.regions))
        if args.json:
            timestamp = datetime.now(timezone.utc).isoformat()
            deterministic_meta = {
                "canonical_seed": parsed_seed.canonical,
                "seed_hash": parsed_seed.seed_hash,
                "width": args.w,
                "height": args.h,
                "region_count": args.regions,
                "smooth_passes": args.smooth,
                "quality": args.quality,
                "relax_iterations": args.relax,
                "rivers": rivers is not None,
                "bbox": {
                    "west": NORTH_AMERICA.west,
                    "east": NORTH_AMERICA.east,
                    "north": NORTH_AMERICA.north,
                    "south": NORTH_AMERICA.south,
                },
                "surface": {"width": result.spec.surface_w, "height": result.spec.surface_h},
                "grid": {"width": result.spec.grid_w, "height": result.spec.grid_h},
                "config": config.to_dict(),
                "metrics": result.metrics.to_dict(),
                "merge": {
                    "threshold": result.merge.threshold,
                    "merged": {str(k): v for k, v in sorted(result.merge.merged.items())},
                    "dropped": list(result.merge.dropped),
                },
                "regions": [
                    {
                        "id": region.id,
                        "name": region.name,
                        "cell_count": region.cell_count,
                        "centroid": [region.centroid[0], region.centroid[1]],
                        "loops": len(region.polygons),
                    }
                    for region in result.regions
                ],
            }
            meta = {
                **deterministic_meta,
                "generated_at_utc": timestamp,
                "original_seed": parsed_seed.original,
                "stage": result.stage,
                "worker": args.worker,
                "generation_seconds": generation_seconds,
                "timings": result.timings,
                "python_version": platform.python_version(),
                "numpy_version": np.__version__,
            }
            write_json(stage_dir / "deterministic_meta.json", deterministic_meta)
            write_json(stage_dir / "meta.json", meta)

        safe_clean_output_dir(
            out_dir,
            out_root=Path(args.out),
            project_root=Path.cwd(),
        )
        move_tree_contents(stage_dir, out_dir)
    finally:
        shutil.rmtree(stage_dir, ignore_errors=True)

    metrics = result.metrics
    print(f"Generated regions: {out_dir}")
    print(
        f"Grid {result.spec.grid_w}x{result.spec.grid_h}; "
        f"{len(result.regions)} regions over {metrics.assigned_cells} land cells "
        f"(min={metrics.min_cells}, max={metrics.max_cells}, mean={metrics.mean_cells:.1f})"
    )
    print(
        f"Merge threshold {result.merge.threshold}: "
        f"merged={len(result.merge.merged)}, dropped={len(result.merge.dropped)}, "
        f"fragments={metrics.fragment_count}"
    )
    for region in result.regions:
        print(f"  [{region.id:>3}] {region.name} ({region.cell_count} cells)")
    print(f"Generation time: {generation_seconds:.3f} s ({args.w}x{args.h}, {args.quality})")
    file_count = sum(1 for child in out_dir.iterdir() if child.is_file())
    print(f"Output files: {file_count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
