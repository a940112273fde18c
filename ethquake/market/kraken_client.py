"""Kraken public market-data async client.

Fetches OHLC candles from the spot or futures API, selected by the
instrument symbol, and normalises both into the same ``Candle`` shape.
"""

import asyncio
import logging
import time
from typing import Optional

import httpx

from ethquake.config import Config
from ethquake.errors import DataError
from ethquake.market.models import Candle
from ethquake.strategy.indicators import (
    FUTURES_RESOLUTIONS,
    SPOT_INTERVALS,
    closest_resolution,
    resolve_resolution,
)

logger = logging.getLogger("ethquake.market")

SPOT_BASE_URL = "https://api.kraken.com"
FUTURES_BASE_URL = "https://futures.kraken.com"

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

# Futures chart timestamps are milliseconds; anything above this is not seconds
_MS_THRESHOLD = 10**11


class KrakenMarketData:
    """Async candle provider wrapping Kraken's public spot and futures APIs.

    Args:
        config: Application configuration (timeouts, retries, futures prefix).
    """

    def __init__(
        self,
        config: Config,
        spot_base_url: str = SPOT_BASE_URL,
        futures_base_url: str = FUTURES_BASE_URL,
    ) -> None:
        self._timeout = config.candle_timeout_seconds
        self._max_retries = config.candle_max_retries
        self._retry_base_delay = config.candle_retry_base_delay
        self._futures_prefix = config.futures_symbol_prefix
        self._spot_base_url = spot_base_url
        self._futures_base_url = futures_base_url

    def is_futures_symbol(self, symbol: str) -> bool:
        """Return ``True`` if *symbol* names a futures instrument."""
        return symbol.startswith(self._futures_prefix)

    def effective_interval(self, symbol: str, interval: int) -> int:
        """Candle size in minutes actually served for *interval*."""
        table = FUTURES_RESOLUTIONS if self.is_futures_symbol(symbol) else SPOT_INTERVALS
        return closest_resolution(interval, table).minutes

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _get_with_retry(self, url: str, params: dict) -> httpx.Response:
        """GET with a bounded timeout and exponential-backoff retry.

        Retries on transport errors (including timeouts), rate limits, and
        transient server errors.  Gives up with ``DataError`` once the
        retries are exhausted or on a non-retryable status.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(self._max_retries):
            delay = self._retry_base_delay * (2 ** attempt)
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(url, params=params, timeout=self._timeout)

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    logger.warning(
                        "GET %s returned %d — retry %d/%d in %.1fs",
                        url, resp.status_code, attempt + 1, self._max_retries, delay,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                else:
                    resp.raise_for_status()
                    return resp

            except httpx.TransportError as exc:
                logger.warning(
                    "GET %s transport error (%s) — retry %d/%d in %.1fs",
                    url, exc, attempt + 1, self._max_retries, delay,
                )
                last_exc = exc
            except httpx.HTTPStatusError as exc:
                raise DataError(f"Market data request failed: {exc}") from exc

            if attempt + 1 < self._max_retries:
                await asyncio.sleep(delay)

        raise DataError(
            f"Market data request to {url} failed after {self._max_retries} attempts: {last_exc}"
        ) from last_exc

    # ── Candles ──────────────────────────────────────────────────────────

    async def fetch_candles(
        self,
        symbol: str,
        interval: int,
        hours_needed: int,
    ) -> list[Candle]:
        """Fetch candles for *symbol* covering the last *hours_needed* hours.

        Args:
            symbol: e.g. ``"ETHUSD"`` (spot) or ``"PF_ETHUSD"`` (futures)
            interval: candle timeframe in minutes
            hours_needed: lookback window in hours

        Returns:
            List of ``Candle`` objects ordered oldest-first.
        """
        since = int(time.time()) - hours_needed * 3600
        if self.is_futures_symbol(symbol):
            return await self.fetch_futures_candles(symbol, interval, since)
        return await self.fetch_spot_candles(symbol, interval, since)

    async def fetch_spot_candles(self, pair: str, interval: int, since: int) -> list[Candle]:
        """Fetch OHLC rows from the spot API."""
        choice = resolve_resolution(interval, SPOT_INTERVALS)
        url = f"{self._spot_base_url}/0/public/OHLC"
        params = {"pair": pair, "interval": choice.token, "since": since}

        resp = await self._get_with_retry(url, params)
        data = _json(resp)

        errors = data.get("error") or []
        if errors:
            raise DataError(f"Kraken API error: {', '.join(map(str, errors))}")

        result = data.get("result")
        if not isinstance(result, dict):
            raise DataError("Unexpected response format from Kraken API: no result")

        rows = next((v for k, v in result.items() if k != "last"), None)
        if not isinstance(rows, list):
            raise DataError("Unexpected response format from Kraken API: no OHLC rows")

        try:
            candles = [
                Candle(
                    timestamp=int(row[0]),
                    price=float(row[4]),
                    high=float(row[2]),
                    low=float(row[3]),
                )
                for row in rows
            ]
        except (IndexError, TypeError, ValueError) as exc:
            raise DataError(f"Malformed OHLC row from Kraken API: {exc}") from exc
        return _require_candles(candles, pair)

    async def fetch_futures_candles(self, symbol: str, interval: int, since: int) -> list[Candle]:
        """Fetch candles from the futures charts API."""
        choice = resolve_resolution(interval, FUTURES_RESOLUTIONS)
        url = f"{self._futures_base_url}/api/charts/v1/trade/{symbol}/{choice.token}"

        resp = await self._get_with_retry(url, {"from": since})
        data = _json(resp)

        raw = data.get("candles")
        if not isinstance(raw, list):
            raise DataError("Unexpected response format from Kraken Futures API")

        try:
            candles = [
                Candle(
                    timestamp=_to_seconds(c["time"]),
                    price=float(c["close"]),
                    high=float(c["high"]),
                    low=float(c["low"]),
                )
                for c in raw
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise DataError(f"Malformed candle from Kraken Futures API: {exc}") from exc
        return _require_candles(candles, symbol)


def _json(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError as exc:
        raise DataError(f"Provider returned non-JSON body: {exc}") from exc
    if not isinstance(data, dict):
        raise DataError("Provider returned an unexpected JSON payload")
    return data


def _to_seconds(raw) -> int:
    value = int(raw)
    if value > _MS_THRESHOLD:
        return value // 1000
    return value


def _require_candles(candles: list[Candle], symbol: str) -> list[Candle]:
    if not candles:
        raise DataError(f"Provider returned no candles for {symbol}")
    candles.sort(key=lambda c: c.timestamp)
    return candles
