"""Tests for ethquake.scheduler — warm-up gating, cron jobs, in-flight guard, isolation.

Verifies:
  - A failing warm-up leaves the strategy unregistered and unscheduled
  - One strategy failing on its tick never stops another's runs
  - Overlapping runs of the same strategy are rejected, not queued
  - Manual triggers of unknown strategies report not-found
  - Jobs can be cancelled and acquire fire times once started
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from ethquake.models.loaded_strategy import LoadedStrategy
from ethquake.scheduler import HEARTBEAT_JOB_ID, RunStatus, StrategyScheduler
from ethquake.strategy.models import (
    IndicatorParams,
    PipelineResult,
    StrategyConfig,
    TradingParams,
)


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_config(name: str = "emas_sol", cron: str = "*/15 * * * *") -> StrategyConfig:
    return StrategyConfig(
        name=name,
        enabled=True,
        cron_schedule=cron,
        entry="ema_crossover",
        trading=TradingParams(symbol="PF_SOLUSD", position_size=1.0, timeframe=15),
        indicators=IndicatorParams(ema={"ema_fast": 10, "ema_slow": 100}),
    )


def _recording(success: bool = True, error: str = "boom"):
    """Pipeline double that records a result on the strategy like the real runner."""

    async def _pipeline(loaded: LoadedStrategy) -> PipelineResult:
        if success:
            result = PipelineResult.ok({"strategy": loaded.name})
        else:
            result = PipelineResult(success=False, error=error, error_type="DataError")
        loaded.record(result)
        return result

    return _pipeline


def _loaded(name: str = "emas_sol", pipeline=None) -> LoadedStrategy:
    return LoadedStrategy(config=_make_config(name), pipeline=pipeline or _recording())


def _scheduler() -> StrategyScheduler:
    return StrategyScheduler(heartbeat_seconds=0)


# ── Registration ─────────────────────────────────────────────────────────


class TestRegister:
    @pytest.mark.asyncio
    async def test_successful_warmup_schedules(self):
        scheduler = _scheduler()
        loaded = _loaded()

        assert await scheduler.register(loaded) is True
        assert scheduler.get("emas_sol") is loaded
        assert scheduler.scheduled_names == ["emas_sol"]
        assert loaded.run_count == 1
        assert loaded.in_flight is False

    @pytest.mark.asyncio
    async def test_failed_warmup_not_registered(self):
        scheduler = _scheduler()
        loaded = _loaded(pipeline=_recording(success=False))

        assert await scheduler.register(loaded) is False
        assert scheduler.get("emas_sol") is None
        assert scheduler.scheduled_names == []

    @pytest.mark.asyncio
    async def test_raising_warmup_not_registered(self):
        scheduler = _scheduler()
        pipeline = AsyncMock(side_effect=RuntimeError("exchange down"))
        loaded = _loaded(pipeline=pipeline)

        assert await scheduler.register(loaded) is False
        assert scheduler.strategies == {}
        assert loaded.last_error == "exchange down"
        assert loaded.in_flight is False

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self):
        scheduler = _scheduler()
        await scheduler.register(_loaded())
        assert await scheduler.register(_loaded()) is False
        assert len(scheduler.strategies) == 1

    def test_heartbeat_job(self):
        scheduler = StrategyScheduler(heartbeat_seconds=60)
        assert scheduler._scheduler.get_job(HEARTBEAT_JOB_ID) is not None
        assert scheduler.scheduled_names == []


# ── Runs ─────────────────────────────────────────────────────────────────


class TestRuns:
    @pytest.mark.asyncio
    async def test_trigger_unknown(self):
        outcome = await _scheduler().trigger("nope")
        assert outcome.status is RunStatus.NOT_FOUND
        assert outcome.error == "Strategy not found or not enabled"

    @pytest.mark.asyncio
    async def test_trigger_returns_result(self):
        scheduler = _scheduler()
        await scheduler.register(_loaded())

        outcome = await scheduler.trigger("emas_sol")
        assert outcome.status is RunStatus.OK
        assert outcome.result.details == {"strategy": "emas_sol"}
        assert scheduler.get("emas_sol").run_count == 2

    @pytest.mark.asyncio
    async def test_failing_tick_does_not_stop_others(self):
        scheduler = _scheduler()
        calls = {"n": 0}

        async def _flaky(loaded):
            calls["n"] += 1
            if calls["n"] > 1:
                raise RuntimeError("provider timeout")
            return await _recording()(loaded)

        await scheduler.register(_loaded("a", pipeline=_flaky))
        await scheduler.register(_loaded("b"))

        await scheduler._on_tick("a")
        await scheduler._on_tick("b")
        await scheduler._on_tick("a")
        await scheduler._on_tick("b")

        assert scheduler.get("b").run_count == 3
        assert scheduler.get("b").last_error is None
        assert scheduler.get("a").last_error == "provider timeout"
        assert scheduler.get("a").last_result.error_type == "ExecutionError"
        # A stays scheduled and retries at its next tick
        assert "a" in scheduler.scheduled_names

    @pytest.mark.asyncio
    async def test_fired_jobs_isolate_failures(self):
        scheduler = _scheduler()
        a_ticked = asyncio.Event()
        b_ticked = asyncio.Event()
        warm = set()

        async def _failing(loaded):
            if loaded.name in warm:
                a_ticked.set()
                raise RuntimeError("provider timeout")
            warm.add(loaded.name)
            return await _recording()(loaded)

        async def _counting(loaded):
            result = await _recording()(loaded)
            if loaded.run_count > 1:
                b_ticked.set()
            return result

        await scheduler.register(_loaded("a", pipeline=_failing))
        await scheduler.register(_loaded("b", pipeline=_counting))

        scheduler.start()
        try:
            # Pull both cron jobs forward so they fire now
            now = datetime.now(timezone.utc)
            scheduler._scheduler.modify_job("a", next_run_time=now)
            scheduler._scheduler.modify_job("b", next_run_time=now)

            await asyncio.wait_for(a_ticked.wait(), timeout=5)
            await asyncio.wait_for(b_ticked.wait(), timeout=5)
            for _ in range(50):
                if scheduler.get("a").last_error is not None:
                    break
                await asyncio.sleep(0.01)
        finally:
            scheduler.shutdown()

        assert scheduler.get("b").run_count == 2
        assert scheduler.get("b").last_error is None
        assert scheduler.get("a").last_error == "provider timeout"
        assert sorted(scheduler.scheduled_names) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_overlapping_run_rejected(self):
        scheduler = _scheduler()
        release = asyncio.Event()
        entered = asyncio.Event()
        warm = {"done": False}

        async def _slow(loaded):
            if warm["done"]:
                entered.set()
                await release.wait()
            warm["done"] = True
            return await _recording()(loaded)

        await scheduler.register(_loaded(pipeline=_slow))

        first = asyncio.create_task(scheduler.trigger("emas_sol"))
        await entered.wait()

        second = await scheduler.trigger("emas_sol")
        assert second.status is RunStatus.ALREADY_RUNNING
        assert scheduler.get("emas_sol").in_flight is True

        release.set()
        assert (await first).status is RunStatus.OK
        assert scheduler.get("emas_sol").in_flight is False
        assert scheduler.get("emas_sol").run_count == 2

    @pytest.mark.asyncio
    async def test_reported_failure_is_failed_outcome(self):
        scheduler = _scheduler()
        outcomes = iter([True, False])

        async def _pipeline(loaded):
            return await _recording(success=next(outcomes), error="no candles")(loaded)

        await scheduler.register(_loaded(pipeline=_pipeline))
        outcome = await scheduler.trigger("emas_sol")
        assert outcome.status is RunStatus.FAILED
        assert outcome.error == "no candles"
        assert outcome.result.error_type == "DataError"


# ── Jobs ─────────────────────────────────────────────────────────────────


class TestJobs:
    @pytest.mark.asyncio
    async def test_unschedule(self):
        scheduler = _scheduler()
        await scheduler.register(_loaded())

        assert scheduler.unschedule("emas_sol") is True
        assert scheduler.scheduled_names == []
        assert scheduler.get("emas_sol") is not None
        assert scheduler.unschedule("emas_sol") is False

    @pytest.mark.asyncio
    async def test_next_run_time_after_start(self):
        scheduler = _scheduler()
        await scheduler.register(_loaded())
        scheduler.start()
        try:
            assert scheduler.running is True
            next_run = scheduler.next_run_time("emas_sol")
            assert next_run is not None
            assert next_run.minute % 15 == 0
        finally:
            scheduler.shutdown()
        assert scheduler.next_run_time("unknown") is None
