"""Preview-then-refined generation with stale-pass suppression."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import enum
import logging
from typing import TYPE_CHECKING, Callable

from regionmap.cache import RenderCache
from regionmap.config import (
    DEFAULT_HEIGHT,
    DEFAULT_REGION_COUNT,
    DEFAULT_SMOOTH_PASSES,
    DEFAULT_WIDTH,
    NORTH_AMERICA,
    QUALITY_GRID_DIVISOR,
    QUALITY_SCALE,
    BoundingBox,
    GeneratorConfig,
)
from regionmap.pipeline import GenerationResult, PassParameters, StaleGenerationError, run_pass
from regionmap.rivers import Polyline

if TYPE_CHECKING:
    from regionmap.worker import RegionWorker

logger = logging.getLogger(__name__)

Listener = Callable[[GenerationResult], None]


class GenerationState(enum.Enum):
    IDLE = "idle"
    PREVIEW_RUNNING = "preview_running"
    REFINED_RUNNING = "refined_running"


@dataclass(frozen=True)
class GenerationOptions:
    """User-facing parameters of one generation request."""

    seed: int
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    bbox: BoundingBox = NORTH_AMERICA
    region_count: int = DEFAULT_REGION_COUNT
    smooth_passes: int = DEFAULT_SMOOTH_PASSES
    quality: str = "medium"
    relax_iterations: int | None = None
    rivers: tuple[Polyline, ...] | None = None
    use_rivers: bool = True

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError("width and height must be positive")
        if self.quality not in QUALITY_SCALE:
            raise ValueError(f"quality must be one of {sorted(QUALITY_SCALE)}")

    def pass_parameters(self, *, preview: bool) -> PassParameters:
        """Surface size and grid divisor for the preview or refined pass."""

        scale = QUALITY_SCALE[self.quality]
        divisor = QUALITY_GRID_DIVISOR[self.quality]
        if preview:
            scale = max(1, scale // 2)
            divisor = max(8, divisor * 2)
        return PassParameters(
            surface_w=self.width * scale,
            surface_h=self.height * scale,
            seed=self.seed,
            bbox=self.bbox,
            region_count=self.region_count,
            smooth_passes=self.smooth_passes,
            grid_divisor=divisor,
            relax_iterations=self.relax_iterations,
            rivers=self.rivers if self.use_rivers else None,
        )


class GenerationOrchestrator:
    """Runs generation requests and keeps only the newest committed result.

    Each `generate` call takes a new request id, commits a preview pass and
    schedules the refined pass as a task. A refined pass whose id is no longer
    the latest when it reaches partitioning or commit is dropped.
    """

    def __init__(
        self,
        config: GeneratorConfig | None = None,
        *,
        worker: RegionWorker | None = None,
        cache: RenderCache | None = None,
    ) -> None:
        self.config = config or GeneratorConfig()
        self.worker = worker
        self.cache = cache if cache is not None else RenderCache()
        self._latest_request_id = 0
        self._latest: GenerationResult | None = None
        self._state = GenerationState.IDLE
        self._refined_task: asyncio.Task | None = None
        self._listeners: list[Listener] = []

    @property
    def latest(self) -> GenerationResult | None:
        return self._latest

    @property
    def latest_request_id(self) -> int:
        return self._latest_request_id

    @property
    def state(self) -> GenerationState:
        return self._state

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        """Call `callback` with every committed result; returns an unsubscribe function."""

        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def is_stale(self, request_id: int) -> bool:
        return request_id != self._latest_request_id

    def _commit(self, result: GenerationResult) -> None:
        self._latest = result
        for listener in list(self._listeners):
            listener(result)

    async def generate(self, options: GenerationOptions) -> GenerationResult | None:
        """Start a request and return its preview, or None if it was superseded."""

        self._latest_request_id += 1
        request_id = self._latest_request_id
        self._state = GenerationState.PREVIEW_RUNNING

        preview = await run_pass(
            options.pass_parameters(preview=True),
            config=self.config,
            cache=self.cache,
            request_id=request_id,
            stage="preview",
        )
        if self.is_stale(request_id):
            logger.debug("Dropping stale preview for request %d", request_id)
            return None
        self._commit(preview)

        self._state = GenerationState.REFINED_RUNNING
        self._refined_task = asyncio.create_task(self._refine(options, request_id))
        return preview

    async def _refine(self, options: GenerationOptions, request_id: int) -> GenerationResult | None:
        try:
            result = await run_pass(
                options.pass_parameters(preview=False),
                config=self.config,
                cache=self.cache,
                worker=self.worker,
                is_stale=lambda: self.is_stale(request_id),
                request_id=request_id,
                stage="refined",
            )
        except StaleGenerationError:
            logger.debug("Refined pass for request %d superseded before partition", request_id)
            return None
        except Exception:
            logger.exception("Refined pass for request %d failed; keeping the preview", request_id)
            if not self.is_stale(request_id):
                self._state = GenerationState.IDLE
            return None
        if self.is_stale(request_id):
            logger.debug("Discarding refined result for stale request %d", request_id)
            return None
        self._commit(result)
        self._state = GenerationState.IDLE
        return result

    async def wait_refined(self) -> GenerationResult | None:
        """Wait for the latest scheduled refined pass; None if it was dropped."""

        while True:
            task = self._refined_task
            if task is None:
                return self._latest
            result = await task
            if task is self._refined_task:
                return result

