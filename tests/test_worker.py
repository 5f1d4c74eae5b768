from __future__ import annotations

import asyncio
from concurrent.futures import Executor, Future, ThreadPoolExecutor
import logging

import numpy as np
import pytest

from regionmap.config import NORTH_AMERICA, OCEAN_RGB, WATER_DISTANCE_THRESHOLD
from regionmap.partition import grid_for_surface, partition
from regionmap.rng import Mulberry32
from regionmap.sampler import sample_seeds
from regionmap.terrain import downsample_to_grid, render_terrain
from regionmap.worker import PartitionRequest, PartitionResponse, RegionWorker, WorkerError, compute_partition


class RejectingExecutor(Executor):
    def submit(self, fn, /, *args, **kwargs):
        raise RuntimeError("executor unavailable")


class MalformedExecutor(Executor):
    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        request = args[0]
        future.set_result(PartitionResponse(request.request_id, assignments=np.zeros((1, 1), dtype=np.int32)))
        return future


class ErroringExecutor(Executor):
    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        future.set_exception(OSError("worker crashed"))
        return future


class HangingExecutor(Executor):
    def submit(self, fn, /, *args, **kwargs):
        return Future()


def _inputs():
    spec = grid_for_surface(480, 270, 16, NORTH_AMERICA)
    terrain = render_terrain(spec.surface_w, spec.surface_h, spec.bbox, 42)
    raster = downsample_to_grid(terrain, spec.grid_w, spec.grid_h)
    seeds = sample_seeds(15, NORTH_AMERICA, Mulberry32(42))
    return spec, raster, seeds


async def _partition(worker, rand):
    spec, raster, seeds = _inputs()
    return await partition(
        raster,
        seeds,
        spec,
        2,
        rand,
        ocean_rgb=OCEAN_RGB,
        water_distance=WATER_DISTANCE_THRESHOLD,
        worker=worker,
    )


def test_worker_and_cooperative_paths_are_identical() -> None:
    local_rand = Mulberry32(77)
    local = asyncio.run(_partition(None, local_rand))

    worker_rand = Mulberry32(77)
    with ThreadPoolExecutor(max_workers=1) as pool:
        worker = RegionWorker(pool)
        delegated = asyncio.run(_partition(worker, worker_rand))
        assert worker.pending_count == 0

    assert np.array_equal(local.assignments, delegated.assignments)
    assert local.seeds == delegated.seeds
    assert local_rand.state == worker_rand.state


@pytest.mark.parametrize("executor_cls", [RejectingExecutor, MalformedExecutor, ErroringExecutor])
def test_worker_failures_fall_back_to_cooperative_path(executor_cls, caplog) -> None:
    expected = asyncio.run(_partition(None, Mulberry32(3)))

    worker = RegionWorker(executor_cls())
    with caplog.at_level(logging.WARNING, logger="regionmap.partition"):
        result = asyncio.run(_partition(worker, Mulberry32(3)))

    assert np.array_equal(result.assignments, expected.assignments)
    assert worker.pending_count == 0
    assert "falling back" in caplog.text


def test_close_rejects_pending_requests_once() -> None:
    spec, raster, seeds = _inputs()

    async def scenario() -> None:
        worker = RegionWorker(HangingExecutor())
        task = asyncio.create_task(
            worker.request(
                grid_raster=raster,
                seeds=seeds,
                spec=spec,
                iterations=1,
                rng_state=1,
                ocean_rgb=OCEAN_RGB,
                water_distance=WATER_DISTANCE_THRESHOLD,
            )
        )
        await asyncio.sleep(0)
        assert worker.pending_count == 1
        worker.close()
        worker.close()
        with pytest.raises(WorkerError):
            await task
        assert worker.pending_count == 0
        assert worker.closed

        with pytest.raises(WorkerError):
            await worker.request(
                grid_raster=raster,
                seeds=seeds,
                spec=spec,
                iterations=1,
                rng_state=1,
                ocean_rgb=OCEAN_RGB,
                water_distance=WATER_DISTANCE_THRESHOLD,
            )

    asyncio.run(scenario())


def test_compute_partition_reports_errors_in_response() -> None:
    spec, raster, seeds = _inputs()
    request = PartitionRequest(
        request_id=9,
        grid_raster=raster[:10],
        seeds=tuple((s.lon, s.lat) for s in seeds),
        spec=spec,
        iterations=1,
        rng_state=1,
        ocean_rgb=OCEAN_RGB,
        water_distance=WATER_DISTANCE_THRESHOLD,
    )

    response = compute_partition(request)

    assert response.request_id == 9
    assert response.assignments is None
    assert response.error is not None
    assert "ValueError" in response.error


def test_request_ids_increase_per_request() -> None:
    spec, raster, seeds = _inputs()
    seen: list[int] = []

    class RecordingExecutor(Executor):
        def submit(self, fn, /, *args, **kwargs):
            seen.append(args[0].request_id)
            future: Future = Future()
            future.set_result(fn(*args, **kwargs))
            return future

    async def scenario() -> None:
        worker = RegionWorker(RecordingExecutor())
        for _ in range(3):
            await worker.request(
                grid_raster=raster,
                seeds=seeds,
                spec=spec,
                iterations=1,
                rng_state=1,
                ocean_rgb=OCEAN_RGB,
                water_distance=WATER_DISTANCE_THRESHOLD,
            )

    asyncio.run(scenario())
    assert seen == [1, 2, 3]
