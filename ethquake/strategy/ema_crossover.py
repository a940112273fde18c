"""EMA crossover strategy — trend entries from a fast/mid/slow EMA stack.

Entry rules:
  - Long when the fast EMA is above the slow EMA and above every mid EMA.
  - Short when the fast EMA crosses below the slow EMA on this bar and is
    below every mid EMA.
An opposite signal closes the open position before reversing.  A signal
in the direction already held re-arms the exits from the current price.
"""

import logging
from typing import Optional, Sequence

from ethquake.broker.models import OrderRequest, StopSpec
from ethquake.errors import ConfigError, DataError
from ethquake.market.models import IndicatorSnapshot
from ethquake.risk.exits import ExitLevels, exit_levels, update_trailing_stop
from ethquake.strategy.base import (
    CLOSE,
    OPEN,
    REPLACE_STOP,
    REPLACE_TAKE_PROFIT,
    Decision,
    TradeAction,
)
from ethquake.strategy.models import PositionState, StrategyConfig

logger = logging.getLogger("ethquake.strategy.ema_crossover")

FAST_KEY = "ema_fast"
SLOW_KEY = "ema_slow"


class EmaCrossoverStrategy:
    """Stateless evaluator; position state is loaded and saved by the pipeline.

    Args:
        config: Validated descriptor.  ``indicators`` must name ``ema_fast``
                and ``ema_slow``; any other ``ema_*`` entries are mids.
    """

    lookback = 2

    def __init__(self, config: StrategyConfig) -> None:
        self.config = config

    def initialize(self) -> None:
        ema = self.config.indicators.ema
        missing = [k for k in (FAST_KEY, SLOW_KEY) if k not in ema]
        if missing:
            raise ConfigError(
                f"strategy {self.config.name} needs indicators {', '.join(missing)}"
            )

    @property
    def fast_period(self) -> int:
        return self.config.indicators.ema[FAST_KEY]

    @property
    def slow_period(self) -> int:
        return self.config.indicators.ema[SLOW_KEY]

    @property
    def mid_periods(self) -> list[int]:
        return sorted(
            p for k, p in self.config.indicators.ema.items()
            if k not in (FAST_KEY, SLOW_KEY)
        )

    # ── Evaluation ───────────────────────────────────────────────────────

    def evaluate(
        self,
        snapshots: Sequence[IndicatorSnapshot],
        state: PositionState,
    ) -> Decision:
        """Return the signals, the orders to send, and the resulting state."""
        if len(snapshots) < 2:
            raise DataError(
                f"Insufficient candle data returned: need 2 snapshots, got {len(snapshots)}"
            )
        prev, curr = snapshots[-2], snapshots[-1]

        fast = curr.ema(self.fast_period)
        slow = curr.ema(self.slow_period)
        mids = [curr.ema(p) for p in self.mid_periods]

        conditions = {
            "long": {
                "ema_fast_above_slow": fast > slow,
                "ema_fast_above_mids": all(fast > m for m in mids),
            },
            "short": {
                "prev_ema_fast_above_slow": prev.ema(self.fast_period) >= prev.ema(self.slow_period),
                "curr_ema_fast_below_slow": fast < slow,
                "ema_fast_below_mids": all(fast < m for m in mids),
            },
        }
        long_signal = all(conditions["long"].values())
        short_signal = all(conditions["short"].values())

        risk = self.config.risk_management
        new_state = PositionState.from_dict(state.to_dict())
        actions: list[TradeAction] = []

        in_long = state.position == "long"
        in_short = state.position == "short"

        if state.position and state.entry_price is not None:
            recalculate = (in_long and long_signal) or (in_short and short_signal)
            reference = curr.price if recalculate else state.entry_price
            levels = exit_levels(reference, state.position, risk)

            if risk.trailing_stop.enabled:
                new_state.trailing_stop = update_trailing_stop(
                    state.position, curr.price, curr.high, curr.low,
                    state.trailing_stop, risk.trailing_stop.percentage,
                )

            if recalculate:
                actions.extend(self._rearm_exits(state, levels, curr.price))
        else:
            new_state.trailing_stop = None

        if long_signal:
            if in_short:
                actions.append(self._close("buy", curr.price, "long signal while short"))
                new_state.reset()
            if not in_long:
                actions.append(self._open("long", curr.price))
                self._mark_open(new_state, "long", curr.price)

        if short_signal:
            if in_long:
                actions.append(self._close("sell", curr.price, "short signal while long"))
                new_state.reset()
            if not in_short:
                actions.append(self._open("short", curr.price))
                self._mark_open(new_state, "short", curr.price)

        return Decision(
            long_signal=long_signal,
            short_signal=short_signal,
            state=new_state,
            actions=actions,
            conditions=conditions,
        )

    # ── Order construction ───────────────────────────────────────────────

    def _stop_spec(self, levels: ExitLevels) -> Optional[StopSpec]:
        risk = self.config.risk_management
        if risk.trailing_stop.enabled:
            return StopSpec(kind="trailing", distance_pct=risk.trailing_stop.percentage)
        if risk.stop_loss.enabled and levels.stop_loss is not None:
            return StopSpec(kind="fixed", stop_price=levels.stop_loss)
        return None

    def _open(self, direction: str, price: float) -> TradeAction:
        levels = exit_levels(price, direction, self.config.risk_management)
        order = OrderRequest(
            symbol=self.config.trading.symbol,
            side="buy" if direction == "long" else "sell",
            size=self.config.trading.position_size,
            reference_price=price,
            stop=self._stop_spec(levels),
            take_profit_price=levels.take_profit,
        )
        return TradeAction(kind=OPEN, order=order, position=direction, reason=f"{direction} signal")

    def _close(self, side: str, price: float, reason: str) -> TradeAction:
        order = OrderRequest(
            symbol=self.config.trading.symbol,
            side=side,
            size=self.config.trading.position_size,
            reference_price=price,
            reduce_only=True,
        )
        return TradeAction(kind=CLOSE, order=order, reason=reason)

    def _rearm_exits(
        self, state: PositionState, levels: ExitLevels, price: float
    ) -> list[TradeAction]:
        risk = self.config.risk_management
        exit_side = "sell" if state.position == "long" else "buy"
        actions: list[TradeAction] = []

        stop = self._stop_spec(levels)
        if state.stop_order_id and stop is not None:
            actions.append(TradeAction(
                kind=REPLACE_STOP,
                order=OrderRequest(
                    symbol=self.config.trading.symbol,
                    side=exit_side,
                    size=self.config.trading.position_size,
                    reference_price=price,
                    reduce_only=True,
                    stop=stop,
                ),
                replaces=state.stop_order_id,
                reason=f"re-arm stop for {state.position} at {price}",
            ))

        if state.take_profit_order_id and risk.take_profit.enabled:
            actions.append(TradeAction(
                kind=REPLACE_TAKE_PROFIT,
                order=OrderRequest(
                    symbol=self.config.trading.symbol,
                    side=exit_side,
                    size=self.config.trading.position_size,
                    reference_price=price,
                    reduce_only=True,
                    take_profit_price=levels.take_profit,
                ),
                replaces=state.take_profit_order_id,
                reason=f"re-arm take-profit for {state.position} at {price}",
            ))
        return actions

    @staticmethod
    def _mark_open(state: PositionState, direction: str, price: float) -> None:
        state.position = direction
        state.entry_price = price
        state.stop_order_id = None
        state.take_profit_order_id = None
        state.trailing_stop = None
