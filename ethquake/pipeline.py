"""Pipeline runner — one strategy cycle end-to-end.

fetch candles → compute EMAs → reconcile state → evaluate → trade →
persist → alert.  ``PipelineRunner.run`` is the failure boundary: it
always returns a ``PipelineResult`` and never raises.
"""

import logging
import sqlite3
from typing import Optional

from ethquake.alerts.telegram import TelegramNotifier
from ethquake.broker.models import OrderResult
from ethquake.broker.paper import TradeExecutor
from ethquake.errors import EthquakeError, ExecutionError
from ethquake.market.feed import EmaFeed
from ethquake.models.loaded_strategy import LoadedStrategy
from ethquake.repos.activity_repo import ActivityRepo
from ethquake.repos.state_repo import StateRepo
from ethquake.strategy.base import (
    CLOSE,
    OPEN,
    REPLACE_STOP,
    REPLACE_TAKE_PROFIT,
    StrategyProtocol,
    TradeAction,
)
from ethquake.strategy.models import PipelineResult, PositionState

logger = logging.getLogger("ethquake.pipeline")


class PipelineRunner:
    """Runs strategy cycles against shared collaborators.

    Args:
        feed: ``EmaFeed`` producing indicator snapshots.
        executor: A ``TradeExecutor`` (``PaperExecutor`` or a venue client).
        state_repo: Position state storage.
        activity_repo: Activity log storage.
        notifier: Optional alert sender for opened/closed positions.
    """

    def __init__(
        self,
        feed: EmaFeed,
        executor: TradeExecutor,
        state_repo: StateRepo,
        activity_repo: ActivityRepo,
        notifier: Optional[TelegramNotifier] = None,
    ) -> None:
        self._feed = feed
        self._executor = executor
        self._state = state_repo
        self._activity = activity_repo
        self._notifier = notifier

    async def __call__(self, loaded: LoadedStrategy) -> PipelineResult:
        return await self.run(loaded)

    async def run(self, loaded: LoadedStrategy) -> PipelineResult:
        """Run one cycle for *loaded* and record the outcome on it."""
        name = loaded.name
        symbol = loaded.config.trading.symbol
        try:
            if loaded.strategy is None:
                raise ExecutionError(f"strategy {name} has no implementation bound")
            details = await self.run_cycle(loaded.strategy)
            result = PipelineResult.ok(details)
        except EthquakeError as exc:
            logger.error("[%s] Pipeline error (%s): %s", name, type(exc).__name__, exc)
            result = PipelineResult.failed(exc)
            self._activity.log(name, "error", {"error": str(exc), "type": result.error_type}, symbol)
        except Exception as exc:
            logger.exception("[%s] Unexpected pipeline error", name)
            result = PipelineResult.failed(exc, error_type=ExecutionError.__name__)
            self._activity.log(name, "error", {"error": str(exc), "type": result.error_type}, symbol)

        loaded.record(result)
        return result

    async def run_cycle(self, strategy: StrategyProtocol) -> dict:
        """Execute the pipeline steps; raises on any failure."""
        cfg = strategy.config
        name = cfg.name
        symbol = cfg.trading.symbol

        snapshots = await self._feed.get_emas(
            symbol, cfg.trading.timeframe, cfg.indicators.periods, strategy.lookback,
        )
        curr = snapshots[-1]
        logger.info(
            "[%s] EMAs calculated @ %.2f: %s",
            name, curr.price,
            ", ".join(f"ema{p}={v:.2f}" for p, v in sorted(curr.emas.items())),
        )

        state = self._load_state(name, symbol)
        self._activity.log(name, "pipeline_start", {"state": state.to_dict()}, symbol)

        if state.position and not await self._executor.has_open_position(symbol):
            logger.error("[%s] State reset: position not found", name)
            state.reset()
            self._activity.log(name, "state_reset", {"reason": "position_not_found"}, symbol)

        decision = strategy.evaluate(snapshots, state)
        self._activity.log(
            name,
            "signal_evaluation",
            {
                "timestamp": curr.timestamp.isoformat(),
                "price": curr.price,
                "longSignal": decision.long_signal,
                "shortSignal": decision.short_signal,
                "conditions": decision.conditions,
            },
            symbol,
        )

        # Persisted after each fill so stored state matches the executor
        progress = PositionState.from_dict(state.to_dict())
        orders: list[dict] = []
        for action in decision.actions:
            result = await self._apply(action, decision.state)
            _advance(progress, action, result)
            self._save_state(name, symbol, progress)
            entry = {
                "kind": action.kind,
                "side": action.order.side,
                "size": action.order.size,
                "price": result.price,
                "orderId": result.order_id,
                "reason": action.reason,
            }
            orders.append(entry)
            self._activity.log(name, "order", entry, symbol)
            if action.kind in (OPEN, CLOSE) and self._notifier is not None:
                await self._notifier.send(
                    f"[{name}] {action.kind} {action.order.side} {action.order.size} "
                    f"{symbol} @ {result.price:.2f} ({action.reason})",
                    name,
                )

        self._save_state(name, symbol, decision.state)
        self._activity.log(name, "state_update", {"state": decision.state.to_dict()}, symbol)

        return {
            "strategy": name,
            "symbol": symbol,
            "snapshot": curr.to_dict(),
            "longSignal": decision.long_signal,
            "shortSignal": decision.short_signal,
            "orders": orders,
            "position": decision.state.position,
        }

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _apply(self, action: TradeAction, state: PositionState) -> OrderResult:
        """Send one action to the executor and fold order ids into *state*."""
        try:
            if action.kind in (OPEN, CLOSE):
                result = await self._executor.place_order(action.order)
            elif action.kind in (REPLACE_STOP, REPLACE_TAKE_PROFIT):
                result = await self._executor.replace_order(action.replaces, action.order)
            else:
                raise ExecutionError(f"Unknown action kind '{action.kind}'")
        except EthquakeError:
            raise
        except Exception as exc:
            raise ExecutionError(f"{action.kind} order failed: {exc}") from exc

        if action.kind == OPEN:
            state.stop_order_id = result.stop_order_id
            state.take_profit_order_id = result.take_profit_order_id
        elif action.kind == REPLACE_STOP:
            state.stop_order_id = result.order_id
        elif action.kind == REPLACE_TAKE_PROFIT:
            state.take_profit_order_id = result.order_id
        return result

    def _load_state(self, name: str, symbol: str) -> PositionState:
        try:
            return self._state.load(name, symbol)
        except sqlite3.Error as exc:
            raise ExecutionError(f"Failed to load state: {exc}") from exc

    def _save_state(self, name: str, symbol: str, state: PositionState) -> None:
        try:
            self._state.save(name, symbol, state)
        except sqlite3.Error as exc:
            raise ExecutionError(f"Failed to save state: {exc}") from exc


def _advance(state: PositionState, action: TradeAction, result: OrderResult) -> None:
    """Apply one filled action to *state*."""
    if action.kind == CLOSE:
        state.reset()
    elif action.kind == OPEN:
        state.position = action.position
        state.entry_price = result.price
        state.stop_order_id = result.stop_order_id
        state.take_profit_order_id = result.take_profit_order_id
        state.trailing_stop = None
    elif action.kind == REPLACE_STOP:
        state.stop_order_id = result.order_id
    elif action.kind == REPLACE_TAKE_PROFIT:
        state.take_profit_order_id = result.order_id
