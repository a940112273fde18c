"""Order models shared by strategies and trade executors."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class StopSpec:
    """Protective stop attached to an entry.

    ``kind`` is ``"fixed"`` (uses ``stop_price``) or ``"trailing"``
    (uses ``distance_pct``).
    """

    kind: str
    stop_price: Optional[float] = None
    distance_pct: Optional[float] = None


@dataclass(frozen=True)
class OrderRequest:
    """A market order, optionally with stop and take-profit legs."""

    symbol: str
    side: str  # "buy" or "sell"
    size: float
    reference_price: float
    reduce_only: bool = False
    stop: Optional[StopSpec] = None
    take_profit_price: Optional[float] = None


@dataclass(frozen=True)
class OrderResult:
    """Response from placing or replacing an order."""

    order_id: str
    symbol: str
    side: str
    size: float
    price: float
    stop_order_id: Optional[str] = None
    take_profit_order_id: Optional[str] = None
