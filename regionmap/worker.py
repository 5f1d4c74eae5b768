"""Request/response channel to a parallel partition worker."""

from __future__ import annotations

import asyncio
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass
import functools
import itertools
import logging
from typing import Sequence

import numpy as np

from regionmap.partition import GridSpec, PartitionResult, UNASSIGNED, land_from_raster, relax_steps
from regionmap.rng import Mulberry32
from regionmap.sampler import Seed
from regionmap.scheduling import run_to_completion

logger = logging.getLogger(__name__)


class WorkerError(RuntimeError):
    """Raised when a partition request cannot be delegated or answered."""


@dataclass(frozen=True)
class PartitionRequest:
    """Everything the worker needs to assign and relax one grid."""

    request_id: int
    grid_raster: np.ndarray
    seeds: tuple[tuple[float, float], ...]
    spec: GridSpec
    iterations: int
    rng_state: int
    ocean_rgb: tuple[int, int, int]
    water_distance: float
    river_mask: np.ndarray | None = None
    jitter: float = 0.5
    min_cells: int = 1


@dataclass(frozen=True)
class PartitionResponse:
    """Finished assignment grid, or an error message."""

    request_id: int
    assignments: np.ndarray | None = None
    seeds: tuple[tuple[float, float], ...] = ()
    rng_state: int = 0
    error: str | None = None


def compute_partition(request: PartitionRequest) -> PartitionResponse:
    """Worker-side entry point; failures are reported in the response."""

    try:
        land = land_from_raster(request.grid_raster, request.ocean_rgb, request.water_distance)
        rand = Mulberry32(request.rng_state)
        seeds = [Seed(lon, lat) for lon, lat in request.seeds]
        result = run_to_completion(
            relax_steps(
                land,
                seeds,
                request.spec,
                request.iterations,
                rand,
                river_mask=request.river_mask,
                jitter=request.jitter,
                min_cells=request.min_cells,
            )
        )
    except Exception as exc:
        return PartitionResponse(request.request_id, error=f"{type(exc).__name__}: {exc}")
    return PartitionResponse(
        request.request_id,
        assignments=result.assignments,
        seeds=tuple((s.lon, s.lat) for s in result.seeds),
        rng_state=result.rng_state,
    )


class RegionWorker:
    """Delegates partition requests to a `concurrent.futures` executor.

    Requests are correlated by a local counter; each pending request is
    settled exactly once, whichever of result, error or shutdown comes first.
    """

    def __init__(
        self,
        executor: Executor | None = None,
        *,
        processes: bool = True,
        max_workers: int = 1,
    ) -> None:
        self._executor = executor
        self._owns_executor = executor is None
        self._processes = processes
        self._max_workers = max(1, int(max_workers))
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_executor(self) -> Executor:
        if self._executor is None:
            if self._processes:
                self._executor = ProcessPoolExecutor(max_workers=self._max_workers)
            else:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="region-worker",
                )
        return self._executor

    async def request(
        self,
        *,
        grid_raster: np.ndarray,
        seeds: Sequence[Seed],
        spec: GridSpec,
        iterations: int,
        rng_state: int,
        ocean_rgb: tuple[int, int, int],
        water_distance: float,
        river_mask: np.ndarray | None = None,
        jitter: float = 0.5,
        min_cells: int = 1,
    ) -> PartitionResult:
        if self._closed:
            raise WorkerError("region worker is closed")

        loop = asyncio.get_running_loop()
        request_id = next(self._ids)
        message = PartitionRequest(
            request_id=request_id,
            grid_raster=np.array(grid_raster, dtype=np.uint8, copy=True),
            seeds=tuple((s.lon, s.lat) for s in seeds),
            spec=spec,
            iterations=int(iterations),
            rng_state=int(rng_state),
            ocean_rgb=tuple(int(c) for c in ocean_rgb),
            water_distance=float(water_distance),
            river_mask=None if river_mask is None else np.array(river_mask, dtype=bool, copy=True),
            jitter=float(jitter),
            min_cells=int(min_cells),
        )

        waiter = loop.create_future()
        self._pending[request_id] = waiter
        try:
            submitted = self._ensure_executor().submit(compute_partition, message)
        except Exception as exc:
            self._pending.pop(request_id, None)
            raise WorkerError(f"could not submit request {request_id}: {exc}") from exc
        submitted.add_done_callback(functools.partial(self._on_done, loop, request_id))

        try:
            response = await waiter
        finally:
            self._pending.pop(request_id, None)
        return _to_result(message, response)

    def _on_done(self, loop: asyncio.AbstractEventLoop, request_id: int, future: Future) -> None:
        try:
            loop.call_soon_threadsafe(self._settle, request_id, future)
        except RuntimeError:
            logger.debug("Event loop closed before worker request %d completed", request_id)

    def _settle(self, request_id: int, future: Future) -> None:
        waiter = self._pending.pop(request_id, None)
        if waiter is None or waiter.done():
            return
        if future.cancelled():
            waiter.set_exception(WorkerError(f"request {request_id} was cancelled"))
            return
        exc = future.exception()
        if exc is not None:
            waiter.set_exception(WorkerError(f"request {request_id} failed: {exc}"))
            return
        response = future.result()
        if not isinstance(response, PartitionResponse) or response.request_id != request_id:
            waiter.set_exception(WorkerError(f"malformed response for request {request_id}"))
        elif response.error is not None:
            waiter.set_exception(WorkerError(response.error))
        else:
            waiter.set_result(response)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for request_id, waiter in list(self._pending.items()):
            if not waiter.done():
                waiter.set_exception(WorkerError(f"worker closed with request {request_id} pending"))
        self._pending.clear()
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "RegionWorker":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _to_result(request: PartitionRequest, response: PartitionResponse) -> PartitionResult:
    spec = request.spec
    assignments = response.assignments
    if assignments is None or np.shape(assignments) != (spec.grid_h, spec.grid_w):
        raise WorkerError(f"response {response.request_id} has a malformed assignment grid")
    assignments = np.asarray(assignments, dtype=np.int32)
    seed_count = len(request.seeds)
    if assignments.size and (assignments.min() < UNASSIGNED or assignments.max() >= seed_count):
        raise WorkerError(f"response {response.request_id} holds out-of-range region ids")
    if len(response.seeds) != seed_count:
        raise WorkerError(f"response {response.request_id} returned {len(response.seeds)} seeds")
    seeds = tuple(Seed(float(lon), float(lat)) for lon, lat in response.seeds)
    return PartitionResult(assignments, seeds, int(response.rng_state))
