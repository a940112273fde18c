"""Percentage exits — take-profit, stop-loss, and trailing stop. Pure math, no I/O.

Rules:
  - TP: long ``p × (1 + tp%)``, short ``p × (1 − tp%)``.
  - SL: long ``p × (1 − sl%)``, short ``p × (1 + sl%)``.
  - Trailing stop only ratchets in the profit direction, measured from the
    bar's high (long) or low (short).
"""

from dataclasses import dataclass
from typing import Optional

from ethquake.strategy.models import RiskParams


@dataclass(frozen=True)
class ExitLevels:
    """Computed exit prices for one position direction."""

    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None


def _check_direction(direction: str) -> None:
    if direction not in ("long", "short"):
        raise ValueError(f"direction must be 'long' or 'short', got '{direction}'")


def exit_levels(reference_price: float, direction: str, risk: RiskParams) -> ExitLevels:
    """Return the enabled TP/SL prices around *reference_price*."""
    _check_direction(direction)
    sign = 1 if direction == "long" else -1

    tp = None
    if risk.take_profit.enabled:
        tp = reference_price * (1 + sign * risk.take_profit.percentage / 100)

    sl = None
    if risk.stop_loss.enabled:
        sl = reference_price * (1 - sign * risk.stop_loss.percentage / 100)

    return ExitLevels(take_profit=tp, stop_loss=sl)


def update_trailing_stop(
    direction: str,
    price: float,
    high: float,
    low: float,
    previous: Optional[float],
    percentage: float,
) -> float:
    """Return the new trailing-stop level.

    The first level is seeded from the current price; afterwards it is
    ``max(high × (1 − tr%), previous)`` for longs and
    ``min(low × (1 + tr%), previous)`` for shorts.
    """
    _check_direction(direction)
    offset = percentage / 100

    if direction == "long":
        if previous is None:
            return price * (1 - offset)
        return max(high * (1 - offset), previous)

    if previous is None:
        return price * (1 + offset)
    return min(low * (1 + offset), previous)
