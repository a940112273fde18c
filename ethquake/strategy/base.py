"""Strategy protocol and shared decision types.

Defines the interface that all strategies must implement.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence, runtime_checkable

from ethquake.broker.models import OrderRequest
from ethquake.market.models import IndicatorSnapshot
from ethquake.strategy.models import PositionState, StrategyConfig

# Action kinds understood by the pipeline runner
OPEN = "open"
CLOSE = "close"
REPLACE_STOP = "replace_stop"
REPLACE_TAKE_PROFIT = "replace_take_profit"


@dataclass(frozen=True)
class TradeAction:
    """One order the pipeline should send, in the order given."""

    kind: str
    order: OrderRequest
    position: Optional[str] = None  # direction opened by an OPEN action
    replaces: Optional[str] = None  # working order id for REPLACE_* actions
    reason: str = ""


@dataclass
class Decision:
    """Result of evaluating a strategy against the latest snapshots.

    ``state`` is the position state *after* all ``actions`` fill; the
    pipeline fills in order ids as it executes them.
    """

    long_signal: bool
    short_signal: bool
    state: PositionState
    actions: list[TradeAction] = field(default_factory=list)
    conditions: dict = field(default_factory=dict)

    @property
    def has_actions(self) -> bool:
        return bool(self.actions)


@runtime_checkable
class StrategyProtocol(Protocol):
    """Interface that all strategies must satisfy."""

    config: StrategyConfig
    lookback: int

    def initialize(self) -> None:
        """Validate the descriptor for this strategy; raise ``ConfigError`` if unusable."""
        ...

    def evaluate(
        self,
        snapshots: Sequence[IndicatorSnapshot],
        state: PositionState,
    ) -> Decision:
        """Decide entries and exits; must not perform I/O."""
        ...
