"""Tests for ethquake.pipeline — one strategy cycle end-to-end with fakes."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from ethquake.broker.paper import PaperExecutor
from ethquake.errors import DataError
from ethquake.market.feed import EmaFeed
from ethquake.market.models import Candle, IndicatorSnapshot
from ethquake.models.loaded_strategy import LoadedStrategy
from ethquake.pipeline import PipelineRunner
from ethquake.repos.activity_repo import ActivityRepo
from ethquake.repos.db import close_all
from ethquake.repos.state_repo import StateRepo
from ethquake.strategy.ema_crossover import EmaCrossoverStrategy
from ethquake.strategy.models import (
    ExitRule,
    IndicatorParams,
    PositionState,
    RiskParams,
    StrategyConfig,
    TradingParams,
)


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_config() -> StrategyConfig:
    return StrategyConfig(
        name="emas_sol",
        enabled=True,
        cron_schedule="*/15 * * * *",
        entry="emas",
        trading=TradingParams(symbol="PF_SOLUSD", position_size=1.0, timeframe=15),
        indicators=IndicatorParams(ema={"ema_fast": 10, "ema_mid": 50, "ema_slow": 100}),
        risk_management=RiskParams(
            take_profit=ExitRule(enabled=True, percentage=4),
            stop_loss=ExitRule(enabled=True, percentage=2),
        ),
    )


def _snap(price, fast, mid, slow) -> IndicatorSnapshot:
    return IndicatorSnapshot(
        price=price, high=price + 1, low=price - 1,
        timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc),
        emas={10: fast, 50: mid, 100: slow},
    )


LONG_BARS = [_snap(100.0, 104.0, 102.0, 100.0), _snap(110.0, 110.0, 105.0, 100.0)]
SHORT_BARS = [_snap(100.0, 101.0, 99.0, 100.0), _snap(95.0, 95.0, 98.0, 100.0)]
QUIET_BARS = [_snap(100.0, 99.0, 101.0, 100.0), _snap(100.0, 99.0, 101.0, 100.0)]


class _FakeFeed:
    def __init__(self, snapshots=None, error=None):
        self.snapshots = snapshots
        self.error = error
        self.calls = []

    async def get_emas(self, symbol, timeframe, periods, lookback=1):
        self.calls.append((symbol, timeframe, tuple(periods), lookback))
        if self.error is not None:
            raise self.error
        return self.snapshots


@pytest.fixture
def repos(tmp_path):
    path = str(tmp_path / "pipeline.db")
    yield StateRepo(path), ActivityRepo(path)
    close_all()


def _runner(repos, feed, executor=None, notifier=None) -> PipelineRunner:
    state_repo, activity_repo = repos
    return PipelineRunner(
        feed=feed,
        executor=executor or PaperExecutor(),
        state_repo=state_repo,
        activity_repo=activity_repo,
        notifier=notifier,
    )


def _loaded(runner: PipelineRunner) -> LoadedStrategy:
    config = _make_config()
    return LoadedStrategy(config=config, pipeline=runner, strategy=EmaCrossoverStrategy(config))


# ── Success path ─────────────────────────────────────────────────────────


class TestPipelineSuccess:
    @pytest.mark.asyncio
    async def test_long_entry(self, repos):
        feed = _FakeFeed(LONG_BARS)
        runner = _runner(repos, feed)
        loaded = _loaded(runner)

        result = await loaded.run()

        assert result.success is True
        assert feed.calls == [("PF_SOLUSD", 15, (10, 50, 100), 2)]
        assert result.details["longSignal"] is True
        assert result.details["position"] == "long"
        assert result.details["snapshot"]["ema10"] == 110.0
        assert [o["kind"] for o in result.details["orders"]] == ["open"]
        assert loaded.run_count == 1
        assert loaded.last_result is result

        state = repos[0].load("emas_sol", "PF_SOLUSD")
        assert state.position == "long"
        assert state.entry_price == 110.0
        assert state.stop_order_id is not None
        assert state.take_profit_order_id is not None

        types = [r["type"] for r in repos[1].recent("emas_sol")]
        assert types == ["state_update", "order", "signal_evaluation", "pipeline_start"]

    @pytest.mark.asyncio
    async def test_no_signal_keeps_flat(self, repos):
        result = await _loaded(_runner(repos, _FakeFeed(QUIET_BARS))).run()
        assert result.success is True
        assert result.details["orders"] == []
        assert result.details["position"] is None

    @pytest.mark.asyncio
    async def test_missing_position_resets_state(self, repos):
        repos[0].save("emas_sol", "PF_SOLUSD", PositionState(position="long", entry_price=90.0))

        result = await _loaded(_runner(repos, _FakeFeed(QUIET_BARS))).run()

        assert result.success is True
        assert repos[0].load("emas_sol", "PF_SOLUSD") == PositionState()
        assert "state_reset" in [r["type"] for r in repos[1].recent("emas_sol")]

    @pytest.mark.asyncio
    async def test_rearm_replaces_exit_orders(self, repos):
        executor = PaperExecutor()
        runner = _runner(repos, _FakeFeed(LONG_BARS), executor=executor)
        await _loaded(runner).run()
        first = repos[0].load("emas_sol", "PF_SOLUSD")

        result = await _loaded(runner).run()

        kinds = [o["kind"] for o in result.details["orders"]]
        assert kinds == ["replace_stop", "replace_take_profit"]
        second = repos[0].load("emas_sol", "PF_SOLUSD")
        assert second.position == "long"
        assert second.stop_order_id != first.stop_order_id
        assert second.take_profit_order_id != first.take_profit_order_id

    @pytest.mark.asyncio
    async def test_notifies_on_open(self, repos):
        notifier = AsyncMock()
        await _loaded(_runner(repos, _FakeFeed(LONG_BARS), notifier=notifier)).run()

        notifier.send.assert_awaited_once()
        message, key = notifier.send.await_args.args
        assert key == "emas_sol"
        assert "open buy" in message


# ── Failure path ─────────────────────────────────────────────────────────


class TestPipelineFailure:
    @pytest.mark.asyncio
    async def test_data_error_becomes_result(self, repos):
        loaded = _loaded(_runner(repos, _FakeFeed(error=DataError("Provider returned no candles"))))

        result = await loaded.run()

        assert result.success is False
        assert result.error_type == "DataError"
        assert result.to_dict() == {
            "success": False,
            "error": "Provider returned no candles",
            "errorType": "DataError",
        }
        assert loaded.last_error == "Provider returned no candles"
        assert repos[1].recent("emas_sol")[0]["type"] == "error"

    @pytest.mark.asyncio
    async def test_short_history_is_unreliable(self, repos):
        class _Provider:
            def effective_interval(self, symbol, interval):
                return interval

            async def fetch_candles(self, symbol, interval, hours_needed):
                return [
                    Candle(timestamp=1_700_000_000 + i * 900, price=100.0, high=101.0, low=99.0)
                    for i in range(50)
                ]

        result = await _loaded(_runner(repos, EmaFeed(_Provider()))).run()
        assert result.success is False
        assert result.error_type == "UnreliableData"

    @pytest.mark.asyncio
    async def test_executor_crash_is_execution_error(self, repos):
        executor = PaperExecutor()
        executor.place_order = AsyncMock(side_effect=ConnectionError("venue unreachable"))

        result = await _loaded(_runner(repos, _FakeFeed(LONG_BARS), executor=executor)).run()

        assert result.success is False
        assert result.error_type == "ExecutionError"
        assert "venue unreachable" in result.error
        # State is not advanced when an order fails
        assert repos[0].load("emas_sol", "PF_SOLUSD") == PositionState()

    @pytest.mark.asyncio
    async def test_close_filled_then_open_fails_saves_flat(self, repos):
        executor = PaperExecutor()
        feed = _FakeFeed(SHORT_BARS)
        runner = _runner(repos, feed, executor=executor)
        await _loaded(runner).run()
        assert repos[0].load("emas_sol", "PF_SOLUSD").position == "short"

        real_place = executor.place_order

        async def _entries_rejected(order):
            if not order.reduce_only:
                raise ConnectionError("entry rejected")
            return await real_place(order)

        executor.place_order = _entries_rejected
        feed.snapshots = LONG_BARS

        result = await _loaded(runner).run()

        assert result.success is False
        assert await executor.has_open_position("PF_SOLUSD") is False
        assert repos[0].load("emas_sol", "PF_SOLUSD") == PositionState()

    @pytest.mark.asyncio
    async def test_partial_rearm_keeps_replaced_stop(self, repos):
        executor = PaperExecutor()
        runner = _runner(repos, _FakeFeed(LONG_BARS), executor=executor)
        await _loaded(runner).run()
        before = repos[0].load("emas_sol", "PF_SOLUSD")

        real_replace = executor.replace_order

        async def _stop_only(order_id, order):
            if order_id == before.take_profit_order_id:
                raise ConnectionError("venue unreachable")
            return await real_replace(order_id, order)

        executor.replace_order = _stop_only

        result = await _loaded(runner).run()

        assert result.success is False
        after = repos[0].load("emas_sol", "PF_SOLUSD")
        assert after.position == "long"
        assert after.stop_order_id != before.stop_order_id
        assert after.take_profit_order_id == before.take_profit_order_id

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self, repos):
        loaded = _loaded(_runner(repos, _FakeFeed(error=KeyError("emas"))))
        result = await loaded.run()
        assert result.success is False
        assert result.error_type == "ExecutionError"
        assert loaded.run_count == 1

    @pytest.mark.asyncio
    async def test_unbound_strategy(self, repos):
        runner = _runner(repos, _FakeFeed(LONG_BARS))
        loaded = LoadedStrategy(config=_make_config(), pipeline=runner)
        result = await loaded.run()
        assert result.success is False
        assert result.error_type == "ExecutionError"
