"""EMA feed — sizes the candle window, fetches candles, batches snapshots."""

import logging
from typing import Protocol, Sequence, runtime_checkable

from ethquake.market.models import Candle, IndicatorSnapshot
from ethquake.strategy.indicators import build_snapshots, hours_needed

logger = logging.getLogger("ethquake.feed")


@runtime_checkable
class CandleProvider(Protocol):
    """Anything that can return ascending candles for a symbol and report
    the candle size it actually serves for a requested interval.
    """

    async def fetch_candles(
        self, symbol: str, interval: int, hours_needed: int
    ) -> list[Candle]:
        ...

    def effective_interval(self, symbol: str, interval: int) -> int:
        ...


class EmaFeed:
    """Produces ``IndicatorSnapshot`` batches for a symbol and timeframe.

    Args:
        provider: A ``CandleProvider`` (``KrakenMarketData`` or a test double).
    """

    def __init__(self, provider: CandleProvider) -> None:
        self._provider = provider

    async def get_emas(
        self,
        symbol: str,
        timeframe: int,
        periods: Sequence[int],
        lookback: int = 1,
    ) -> list[IndicatorSnapshot]:
        """Fetch enough history and compute one snapshot per lookback candle.

        The window is sized from the candle size the provider serves, which
        can differ from *timeframe* when the provider substitutes a resolution.
        """
        served = self._provider.effective_interval(symbol, timeframe)
        hours = hours_needed(periods, lookback, served)
        candles = await self._provider.fetch_candles(symbol, timeframe, hours)
        logger.debug(
            "Fetched %d candles for %s (%dm, %dh window)",
            len(candles), symbol, served, hours,
        )
        return build_snapshots(candles, periods, lookback)
