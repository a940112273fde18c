"""Market data models — provider-agnostic candle and indicator snapshot."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class Candle:
    """A single OHLC bar; only close (``price``), high, and low are kept."""

    timestamp: int  # seconds since epoch
    price: float
    high: float
    low: float


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Candle values plus the EMAs computed as of that candle's time."""

    price: float
    high: float
    low: float
    timestamp: datetime
    emas: dict[int, float] = field(default_factory=dict)

    def ema(self, period: int) -> float:
        """Return the EMA for *period*; ``KeyError`` if not computed."""
        return self.emas[period]

    def to_dict(self) -> dict:
        return {
            "price": self.price,
            "high": self.high,
            "low": self.low,
            "timestamp": self.timestamp.isoformat(),
            **{f"ema{p}": v for p, v in sorted(self.emas.items())},
        }
