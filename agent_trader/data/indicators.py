"""
Technical Indicators Module for Agent Trader.

Indicator calculations over plain price lists (leading values that cannot
be computed yet are NaN) and the snapshot builder that feeds the analysis
context.
"""

import logging
import math

import numpy as np
from pydantic import BaseModel

from agent_trader.core.models import IndicatorSnapshot
from agent_trader.utils.exceptions import DataMissingError


logger = logging.getLogger(__name__)


class MACDResult(BaseModel):
    """MACD indicator result."""

    macd_line: float
    signal_line: float
    histogram: float


class BollingerBandsResult(BaseModel):
    """Bollinger Bands result."""

    upper: float
    middle: float
    lower: float


class TechnicalIndicatorCalculator:
    """
    Technical indicators calculator.

    Provides SMA, EMA, RSI (Wilder), MACD, Bollinger Bands and ATR (Wilder),
    plus ``snapshot`` which returns the latest value of each.
    """

    min_bars: int = 50

    def sma(self, data: list[float], period: int = 20) -> list[float]:
        """
        Calculate Simple Moving Average.

        Args:
            data: Price data
            period: SMA period

        Returns:
            List of SMA values
        """
        if len(data) < period:
            return [np.nan] * len(data)

        values = np.asarray(data, dtype=float)
        window_sums = np.convolve(values, np.ones(period), mode="valid")
        return [np.nan] * (period - 1) + list(window_sums / period)

    def ema(self, data: list[float], period: int = 20) -> list[float]:
        """
        Calculate Exponential Moving Average seeded with the first SMA.

        Args:
            data: Price data
            period: EMA period

        Returns:
            List of EMA values
        """
        if len(data) < period:
            return [np.nan] * len(data)

        multiplier = 2.0 / (period + 1)
        result = [np.nan] * (period - 1)
        result.append(sum(data[:period]) / period)

        for i in range(period, len(data)):
            result.append((data[i] - result[-1]) * multiplier + result[-1])

        return result

    def rsi(self, data: list[float], period: int = 14) -> list[float]:
        """
        Calculate Relative Strength Index.

        Args:
            data: Price data
            period: RSI period

        Returns:
            List of RSI values
        """
        if len(data) < period + 1:
            return [np.nan] * len(data)

        deltas = np.diff(np.asarray(data, dtype=float))
        gains = np.clip(deltas, 0, None)
        losses = np.clip(-deltas, 0, None)

        avg_gain = gains[:period].mean()
        avg_loss = losses[:period].mean()

        result = [np.nan] * period
        result.append(self._rsi_value(avg_gain, avg_loss))

        for i in range(period, len(deltas)):
            avg_gain = (avg_gain * (period - 1) + gains[i]) / period
            avg_loss = (avg_loss * (period - 1) + losses[i]) / period
            result.append(self._rsi_value(avg_gain, avg_loss))

        return result

    @staticmethod
    def _rsi_value(avg_gain: float, avg_loss: float) -> float:
        if avg_loss == 0:
            return 100.0 if avg_gain > 0 else 50.0
        rs = avg_gain / avg_loss
        return float(100 - (100 / (1 + rs)))

    def macd(
        self,
        data: list[float],
        fast_period: int = 12,
        slow_period: int = 26,
        signal_period: int = 9,
    ) -> list[MACDResult]:
        """
        Calculate MACD indicator.

        Args:
            data: Price data
            fast_period: Fast EMA period
            slow_period: Slow EMA period
            signal_period: Signal line period

        Returns:
            List of MACDResult objects (NaN fields until enough data)
        """
        fast_ema = self.ema(data, fast_period)
        slow_ema = self.ema(data, slow_period)
        macd_line = [f - s for f, s in zip(fast_ema, slow_ema)]

        valid = [m for m in macd_line if not math.isnan(m)]
        signal_valid = self.ema(valid, signal_period)
        signal_line = [np.nan] * (len(macd_line) - len(valid)) + signal_valid

        return [
            MACDResult(macd_line=m, signal_line=s, histogram=m - s)
            for m, s in zip(macd_line, signal_line)
        ]

    def bollinger_bands(
        self,
        data: list[float],
        period: int = 20,
        std_dev: float = 2.0,
    ) -> list[BollingerBandsResult]:
        """
        Calculate Bollinger Bands.

        Args:
            data: Price data
            period: Moving average period
            std_dev: Standard deviation multiplier

        Returns:
            List of BollingerBandsResult objects
        """
        sma_values = self.sma(data, period)

        results = []
        for i, middle in enumerate(sma_values):
            if i < period - 1:
                results.append(BollingerBandsResult(upper=np.nan, middle=np.nan, lower=np.nan))
                continue
            std = float(np.std(data[i - period + 1:i + 1]))
            results.append(BollingerBandsResult(
                upper=middle + std_dev * std,
                middle=middle,
                lower=middle - std_dev * std,
            ))

        return results

    def atr(
        self,
        high: list[float],
        low: list[float],
        close: list[float],
        period: int = 14,
    ) -> list[float]:
        """
        Calculate Average True Range.

        Args:
            high: High prices
            low: Low prices
            close: Close prices
            period: ATR period

        Returns:
            List of ATR values
        """
        n = len(close)
        if n < period:
            return [np.nan] * n

        tr_values: list[float] = [high[0] - low[0]]
        for i in range(1, n):
            hl = high[i] - low[i]
            hc = abs(high[i] - close[i - 1])
            lc = abs(low[i] - close[i - 1])
            tr_values.append(max(hl, hc, lc))

        result = [np.nan] * (period - 1)
        atr_value = sum(tr_values[:period]) / period
        result.append(atr_value)

        for i in range(period, n):
            atr_value = (atr_value * (period - 1) + tr_values[i]) / period
            result.append(atr_value)

        return result

    def snapshot(
        self,
        high: list[float],
        low: list[float],
        close: list[float],
    ) -> IndicatorSnapshot:
        """
        Latest value of every indicator.

        Args:
            high: High prices
            low: Low prices
            close: Close prices

        Returns:
            IndicatorSnapshot

        Raises:
            DataMissingError: fewer than ``min_bars`` bars
        """
        if len(close) < self.min_bars:
            raise DataMissingError(
                f"Need at least {self.min_bars} bars for indicators, got {len(close)}",
                details={"bars": len(close)},
            )

        macd = self.macd(close)[-1]
        bands = self.bollinger_bands(close)[-1]
        return IndicatorSnapshot(
            rsi=self.rsi(close)[-1],
            macd=macd.macd_line,
            macd_signal=macd.signal_line,
            macd_histogram=macd.histogram,
            bollinger_upper=bands.upper,
            bollinger_middle=bands.middle,
            bollinger_lower=bands.lower,
            sma20=self.sma(close, 20)[-1],
            sma50=self.sma(close, 50)[-1],
            ema12=self.ema(close, 12)[-1],
            ema26=self.ema(close, 26)[-1],
            atr=self.atr(high, low, close)[-1],
        )
