"""Technical indicators — SMA, EMA, resolution mapping, snapshot batching. Pure functions, no I/O."""

import logging
import math
from datetime import datetime, timezone
from typing import NamedTuple, Sequence

from ethquake.errors import DataError, InsufficientData, UnreliableData
from ethquake.market.models import Candle, IndicatorSnapshot

logger = logging.getLogger("ethquake.indicators")

# Three periods of warm-up before an EMA is considered trustworthy
EMA_WARMUP_FACTOR = 3

# Futures charts API: minutes → resolution token, in table order
FUTURES_RESOLUTIONS: tuple[tuple[int, str], ...] = (
    (1, "1m"),
    (5, "5m"),
    (15, "15m"),
    (30, "30m"),
    (60, "1h"),
    (240, "4h"),
    (720, "12h"),
    (1440, "1d"),
    (10080, "1w"),
)

# Spot OHLC API accepts the minute value itself
SPOT_INTERVALS: tuple[tuple[int, str], ...] = tuple(
    (m, str(m)) for m in (1, 5, 15, 30, 60, 240, 1440, 10080, 21600)
)


def calculate_sma(prices: Sequence[float], period: int) -> float:
    """Return the arithmetic mean of the last *period* prices.

    Raises ``InsufficientData`` if fewer than *period* prices are given.
    """
    if len(prices) < period:
        raise InsufficientData(
            f"Need at least {period} prices for SMA({period}), got {len(prices)}"
        )
    recent = prices[len(prices) - period:]
    return sum(recent) / period


def calculate_ema(prices: Sequence[float], period: int) -> float:
    """Return the Exponential Moving Average as of the last price.

    Uses the standard EMA formula:
        ``EMA_today = price × k + EMA_yesterday × (1 - k)``
    where ``k = 2 / (period + 1)``, seeded with the SMA of the first
    *period* prices and walked forward to the end of the series.

    Raises ``InsufficientData`` below *period* prices and
    ``UnreliableData`` below ``3 × period`` prices.
    """
    if len(prices) < period:
        raise InsufficientData(
            f"Need at least {period} prices for EMA({period}), got {len(prices)}"
        )
    min_length = period * EMA_WARMUP_FACTOR
    if len(prices) < min_length:
        raise UnreliableData(
            f"For reliable EMA({period}) need at least {min_length} prices, "
            f"got {len(prices)}"
        )

    k = 2.0 / (period + 1)
    ema = calculate_sma(prices[:period], period)
    for price in prices[period:]:
        ema = price * k + ema * (1 - k)
    return ema


# ── Resolution mapping ───────────────────────────────────────────────────


class ResolutionChoice(NamedTuple):
    """Provider token chosen for a requested timeframe."""

    token: str
    minutes: int
    substituted: bool


def resolve_resolution(
    minutes: int,
    table: Sequence[tuple[int, str]] = FUTURES_RESOLUTIONS,
) -> ResolutionChoice:
    """Map a timeframe in minutes onto a provider token.

    An exact match is returned as-is.  Otherwise the closest supported
    value wins (on a tie the earlier table entry is kept) and a warning
    is logged so the substitution is visible.
    """
    choice = closest_resolution(minutes, table)
    if choice.substituted:
        logger.warning(
            "%d minute interval not supported by provider. "
            "Using closest supported interval: %d minutes",
            minutes, choice.minutes,
        )
    return choice


def closest_resolution(
    minutes: int,
    table: Sequence[tuple[int, str]] = FUTURES_RESOLUTIONS,
) -> ResolutionChoice:
    """Same choice as ``resolve_resolution`` without logging."""
    for value, token in table:
        if value == minutes:
            return ResolutionChoice(token, value, False)

    best_value, best_token = table[0]
    for value, token in table[1:]:
        if abs(value - minutes) < abs(best_value - minutes):
            best_value, best_token = value, token
    return ResolutionChoice(best_token, best_value, True)


def minutes_to_resolution(minutes: int) -> str:
    """Return the futures resolution token for *minutes*."""
    return resolve_resolution(minutes, FUTURES_RESOLUTIONS).token


# ── Window sizing and snapshot batching ──────────────────────────────────


def min_data_points(periods: Sequence[int]) -> int:
    """Samples required for a reliable EMA of the largest period."""
    return max(periods) * EMA_WARMUP_FACTOR


def hours_needed(periods: Sequence[int], lookback: int, timeframe: int) -> int:
    """Hours of history to request so every snapshot has a full window."""
    return math.ceil((min_data_points(periods) + lookback) * timeframe / 60)


def build_snapshots(
    candles: Sequence[Candle],
    periods: Sequence[int],
    lookback: int,
) -> list[IndicatorSnapshot]:
    """Produce one ``IndicatorSnapshot`` per each of the last *lookback* candles.

    Each snapshot's EMAs are computed on the trailing ``3 × max(periods)``
    prices ending at that candle, so earlier snapshots see slightly older
    windows than later ones ("EMA as of that candle's time").

    Raises ``DataError`` when there are fewer than ``lookback + 1``
    candles and ``UnreliableData`` when the history cannot give every
    snapshot a full window.
    """
    if lookback < 1:
        raise ValueError(f"lookback must be at least 1, got {lookback}")
    if not periods:
        raise ValueError("at least one EMA period is required")

    if len(candles) < lookback + 1:
        raise DataError(
            f"Failed to fetch enough price data. Need at least {lookback + 1} "
            f"candles, got {len(candles)}"
        )

    window = min_data_points(periods)
    if len(candles) < window + lookback:
        raise UnreliableData(
            f"Not enough price data for reliable EMA calculations: got "
            f"{len(candles)}, need at least {window + lookback}"
        )

    prices = [c.price for c in candles]
    recent = candles[len(candles) - lookback:]

    snapshots: list[IndicatorSnapshot] = []
    for idx, candle in enumerate(recent):
        end = len(prices) - lookback + idx + 1
        start = max(0, end - window)
        trailing = prices[start:end]
        emas = {period: calculate_ema(trailing, period) for period in periods}
        snapshots.append(
            IndicatorSnapshot(
                price=candle.price,
                high=candle.high,
                low=candle.low,
                timestamp=datetime.fromtimestamp(candle.timestamp, tz=timezone.utc),
                emas=emas,
            )
        )
    return snapshots
