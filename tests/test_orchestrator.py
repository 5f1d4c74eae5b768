from __future__ import annotations

import asyncio
import logging

import pytest

from regionmap import orchestrator as orchestrator_module
from regionmap.orchestrator import GenerationOptions, GenerationOrchestrator, GenerationState
from regionmap.worker import WorkerError


def _options(seed: int = 42, **overrides) -> GenerationOptions:
    values = dict(seed=seed, width=480, height=270, quality="low", region_count=10)
    values.update(overrides)
    return GenerationOptions(**values)


class GatedWorker:
    """Blocks its first request until released, then fails every request."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def request(self, **kwargs):
        self.calls += 1
        if self.calls == 1:
            self.started.set()
            await self.release.wait()
        raise WorkerError("unavailable")


def test_pass_parameters_per_quality_tier() -> None:
    medium = GenerationOptions(seed=1, width=960, height=540, quality="medium")
    assert medium.pass_parameters(preview=False).surface_w == 1920
    assert medium.pass_parameters(preview=False).grid_divisor == 8
    assert medium.pass_parameters(preview=True).surface_w == 960
    assert medium.pass_parameters(preview=True).grid_divisor == 16

    high = GenerationOptions(seed=1, width=960, height=540, quality="high")
    assert high.pass_parameters(preview=False).grid_divisor == 4
    assert high.pass_parameters(preview=True).grid_divisor == 8

    low = GenerationOptions(seed=1, width=960, height=540, quality="low")
    assert low.pass_parameters(preview=True).surface_w == 960
    assert low.pass_parameters(preview=True).grid_divisor == 32

    rivers = (((-100.0, 40.0), (-90.0, 40.0)),)
    assert GenerationOptions(seed=1, rivers=rivers, use_rivers=False).pass_parameters(preview=False).rivers is None

    with pytest.raises(ValueError):
        GenerationOptions(seed=1, quality="ultra")
    with pytest.raises(ValueError):
        GenerationOptions(seed=1, width=0)


def test_generate_commits_preview_then_refined() -> None:
    async def scenario():
        orchestrator = GenerationOrchestrator()
        committed: list[tuple[int, str]] = []
        orchestrator.subscribe(lambda result: committed.append((result.request_id, result.stage)))

        assert orchestrator.state is GenerationState.IDLE
        preview = await orchestrator.generate(_options())
        assert preview is not None
        assert orchestrator.latest is preview
        assert orchestrator.state is GenerationState.REFINED_RUNNING

        refined = await orchestrator.wait_refined()
        assert orchestrator.state is GenerationState.IDLE
        assert orchestrator.latest is refined
        return committed, preview, refined

    committed, preview, refined = asyncio.run(scenario())

    assert committed == [(1, "preview"), (1, "refined")]
    assert preview.stage == "preview"
    assert refined.stage == "refined"
    assert preview.seeds != () and refined.seeds != ()


def test_newer_request_supersedes_pending_refined_pass() -> None:
    async def scenario():
        orchestrator = GenerationOrchestrator()
        committed: list[tuple[int, str]] = []
        orchestrator.subscribe(lambda result: committed.append((result.request_id, result.stage)))

        await orchestrator.generate(_options(seed=1))
        await orchestrator.generate(_options(seed=2))
        final = await orchestrator.wait_refined()
        await _drain()
        return orchestrator, committed, final

    orchestrator, committed, final = asyncio.run(scenario())

    assert committed == [(1, "preview"), (2, "preview"), (2, "refined")]
    assert final.request_id == 2
    assert orchestrator.latest is final
    assert orchestrator.latest_request_id == 2


def test_stale_result_is_not_committed_after_partition() -> None:
    async def scenario():
        worker = GatedWorker()
        orchestrator = GenerationOrchestrator(worker=worker)
        committed: list[tuple[int, str]] = []
        orchestrator.subscribe(lambda result: committed.append((result.request_id, result.stage)))

        await orchestrator.generate(_options(seed=1))
        await worker.started.wait()
        await orchestrator.generate(_options(seed=2))
        worker.release.set()
        final = await orchestrator.wait_refined()
        await _drain()
        return orchestrator, committed, final, worker

    orchestrator, committed, final, worker = asyncio.run(scenario())

    assert worker.calls == 2
    assert committed == [(1, "preview"), (2, "preview"), (2, "refined")]
    assert orchestrator.latest is final
    assert final.params.seed == 2


def test_failed_refined_pass_keeps_preview_and_returns_to_idle(monkeypatch, caplog) -> None:
    real_run_pass = orchestrator_module.run_pass

    async def failing_refined(params, **kwargs):
        if kwargs.get("stage") == "refined":
            raise RuntimeError("grid exploded")
        return await real_run_pass(params, **kwargs)

    monkeypatch.setattr(orchestrator_module, "run_pass", failing_refined)

    async def scenario():
        orchestrator = GenerationOrchestrator()
        preview = await orchestrator.generate(_options())
        refined = await orchestrator.wait_refined()
        return orchestrator, preview, refined

    with caplog.at_level(logging.ERROR, logger="regionmap.orchestrator"):
        orchestrator, preview, refined = asyncio.run(scenario())

    assert refined is None
    assert orchestrator.latest is preview
    assert orchestrator.state is GenerationState.IDLE
    assert any(record.exc_info and "grid exploded" in str(record.exc_info[1]) for record in caplog.records)


def test_unsubscribe_stops_notifications() -> None:
    async def scenario():
        orchestrator = GenerationOrchestrator()
        seen: list[int] = []
        unsubscribe = orchestrator.subscribe(lambda result: seen.append(result.request_id))
        await orchestrator.generate(_options())
        unsubscribe()
        await orchestrator.wait_refined()
        return seen

    assert asyncio.run(scenario()) == [1]


def test_render_cache_is_shared_between_requests() -> None:
    async def scenario():
        orchestrator = GenerationOrchestrator()
        await orchestrator.generate(_options())
        await orchestrator.wait_refined()
        misses = orchestrator.cache.misses
        await orchestrator.generate(_options())
        await orchestrator.wait_refined()
        return orchestrator.cache, misses

    cache, misses = asyncio.run(scenario())
    assert cache.misses == misses
    assert cache.hits >= 2


async def _drain() -> None:
    current = asyncio.current_task()
    pending = [task for task in asyncio.all_tasks() if task is not current]
    if pending:
        await asyncio.gather(*pending)
