"""
Market Data Module for Agent Trader.

This module defines the market data contract the trading service depends on
and a Yahoo Finance chart-API implementation of it.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, Field

from agent_trader.core.models import IndicatorSnapshot
from agent_trader.data.indicators import TechnicalIndicatorCalculator
from agent_trader.utils.decorators import async_retry
from agent_trader.utils.exceptions import DataFetchError, DataMissingError


logger = logging.getLogger(__name__)


class Bar(BaseModel):
    """OHLCV bar."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    timestamp: datetime
    open: float = Field(gt=0.0)
    high: float = Field(gt=0.0)
    low: float = Field(gt=0.0)
    close: float = Field(gt=0.0)
    volume: int = Field(default=0, ge=0)


class MarketDataBundle(BaseModel):
    """Price history plus the indicator snapshot computed from it."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    bars: tuple[Bar, ...]
    indicators: IndicatorSnapshot

    @property
    def current_price(self) -> float:
        return self.bars[-1].close

    @property
    def closes(self) -> list[float]:
        return [bar.close for bar in self.bars]


@runtime_checkable
class MarketDataProvider(Protocol):
    """Market data collaborator used by the trading service."""

    async def get_current_price(self, symbol: str) -> float:
        ...

    async def get_data_with_indicators(
        self,
        symbol: str,
        period: str = "3mo",
        interval: str = "1d",
    ) -> MarketDataBundle:
        ...


def build_bundle(
    symbol: str,
    bars: list[Bar],
    calculator: Optional[TechnicalIndicatorCalculator] = None,
) -> MarketDataBundle:
    """Compute indicators over ``bars`` and wrap both in a bundle."""
    calculator = calculator or TechnicalIndicatorCalculator()
    indicators = calculator.snapshot(
        [b.high for b in bars],
        [b.low for b in bars],
        [b.close for b in bars],
    )
    return MarketDataBundle(symbol=symbol, bars=tuple(bars), indicators=indicators)


class YahooFinanceProvider:
    """
    Yahoo Finance chart-API market data provider.

    Bars come from ``/v8/finance/chart/{symbol}``; bars with a missing or
    zero OHLC value are dropped.
    """

    def __init__(
        self,
        base_url: str = "https://query1.finance.yahoo.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._calculator = TechnicalIndicatorCalculator()
        self._request_count = 0

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
            "Accept": "application/json",
        }

    async def connect(self) -> None:
        """Open the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
            logger.info("Yahoo Finance provider connected")

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Yahoo Finance provider disconnected")

    async def __aenter__(self) -> "YahooFinanceProvider":
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    @async_retry(max_attempts=3, delay=1.0, exceptions=(httpx.TransportError,))
    async def _fetch_chart(self, symbol: str, period: str, interval: str) -> dict[str, Any]:
        if self._client is None:
            await self.connect()

        self._request_count += 1
        response = await self._client.get(
            f"/v8/finance/chart/{symbol}",
            params={"interval": interval, "range": period},
        )
        if response.status_code != 200:
            raise DataFetchError(
                f"Yahoo Finance returned {response.status_code} for {symbol}",
                details={"symbol": symbol, "status_code": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise DataFetchError(f"Invalid chart payload for {symbol}", cause=e) from e

        chart = data.get("chart") or {}
        if chart.get("error"):
            raise DataFetchError(
                f"Yahoo Finance error for {symbol}: {chart['error']}",
                details={"symbol": symbol},
            )
        results = chart.get("result") or []
        if not results:
            raise DataMissingError(f"No chart data for {symbol}", details={"symbol": symbol})
        return results[0]

    @staticmethod
    def _parse_bars(symbol: str, result: dict[str, Any]) -> list[Bar]:
        timestamps = result.get("timestamp") or []
        quote_data = ((result.get("indicators") or {}).get("quote") or [{}])[0]

        opens = quote_data.get("open") or []
        highs = quote_data.get("high") or []
        lows = quote_data.get("low") or []
        closes = quote_data.get("close") or []
        volumes = quote_data.get("volume") or []

        def at(values: list, i: int) -> Any:
            return values[i] if i < len(values) else None

        bars = []
        for i, ts in enumerate(timestamps):
            o, h, l, c = at(opens, i), at(highs, i), at(lows, i), at(closes, i)
            if ts is None or not (o and h and l and c):
                continue
            bars.append(Bar(
                symbol=symbol,
                timestamp=datetime.fromtimestamp(ts, tz=timezone.utc),
                open=float(o),
                high=float(h),
                low=float(l),
                close=float(c),
                volume=int(at(volumes, i) or 0),
            ))
        return bars

    async def get_bars(self, symbol: str, period: str = "3mo", interval: str = "1d") -> list[Bar]:
        """
        Get historical bars.

        Args:
            symbol: Trading symbol
            period: Yahoo range (e.g. "3mo")
            interval: Yahoo interval (e.g. "1d")

        Returns:
            Bars oldest first
        """
        symbol = symbol.upper()
        result = await self._fetch_chart(symbol, period, interval)
        bars = self._parse_bars(symbol, result)
        logger.debug(f"Fetched {len(bars)} bars for {symbol}", extra={"symbol": symbol})
        return bars

    async def get_current_price(self, symbol: str) -> float:
        """Latest regular-market price, falling back to the last close."""
        symbol = symbol.upper()
        result = await self._fetch_chart(symbol, "1d", "1m")
        price = (result.get("meta") or {}).get("regularMarketPrice")
        if price:
            return float(price)

        bars = self._parse_bars(symbol, result)
        if not bars:
            raise DataMissingError(f"No price available for {symbol}", details={"symbol": symbol})
        return bars[-1].close

    async def get_data_with_indicators(
        self,
        symbol: str,
        period: str = "3mo",
        interval: str = "1d",
    ) -> MarketDataBundle:
        """Bars plus their indicator snapshot."""
        bars = await self.get_bars(symbol, period, interval)
        return build_bundle(symbol.upper(), bars, self._calculator)
