"""
Data Package for Agent Trader.

Market data, technical indicators and persistence.
"""

from agent_trader.data.indicators import (
    MACDResult,
    BollingerBandsResult,
    TechnicalIndicatorCalculator,
)
from agent_trader.data.market_data import (
    Bar,
    MarketDataBundle,
    MarketDataProvider,
    YahooFinanceProvider,
    build_bundle,
)
from agent_trader.data.storage import TradingStore, SQLiteStore


__all__ = [
    "MACDResult",
    "BollingerBandsResult",
    "TechnicalIndicatorCalculator",
    "Bar",
    "MarketDataBundle",
    "MarketDataProvider",
    "YahooFinanceProvider",
    "build_bundle",
    "TradingStore",
    "SQLiteStore",
]
