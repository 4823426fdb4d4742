import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from agent_trader.ai.orchestrator import AgentOrchestrator
from agent_trader.ai.reports import RoleKind
from agent_trader.ai.role_invoker import RoleInvoker
from agent_trader.config.settings import Settings
from agent_trader.core.models import (
    AnalysisContext,
    IndicatorSnapshot,
    PortfolioSnapshot,
    StrategyRiskParameters,
)
from agent_trader.core.trading_service import TradingService
from agent_trader.data.market_data import Bar, build_bundle
from agent_trader.data.storage import SQLiteStore
from agent_trader.execution.broker import PaperBroker
from agent_trader.utils.exceptions import DataFetchError


DEFAULT_REPLIES = {
    RoleKind.TECHNICAL: {
        "recommendation": "buy", "confidence": 0.7, "reasoning": "Uptrend intact",
        "signals": {"rsi": {"value": 55, "signal": "neutral"}}, "keyPoints": ["MA cross"],
    },
    RoleKind.FUNDAMENTAL: {
        "recommendation": "buy", "confidence": 0.6, "reasoning": "Reasonable valuation",
        "valuation": "fairly_valued",
    },
    RoleKind.SENTIMENT: {
        "recommendation": "hold", "confidence": 0.5, "reasoning": "Mixed news",
        "sentiment": "neutral", "score": 0.1,
    },
    RoleKind.BULL: {"strength": 0.7, "arguments": ["Momentum"], "conclusion": "Trend favours longs"},
    RoleKind.BEAR: {"strength": 0.4, "arguments": ["Overbought soon"], "conclusion": "Limited downside"},
    RoleKind.TRADER: {
        "action": "buy", "confidence": 0.75, "reasoning": "Bull case stronger",
        "synthesis": "Analysts lean long",
    },
    RoleKind.RISK_MANAGER: {
        "approved": True, "riskScore": 0.3, "reasoning": "Within limits",
    },
}


class FakeInferenceClient:
    """Replies per role. A reply may be a dict (sent as JSON), a str, or an exception."""

    def __init__(self, overrides=None, delays=None):
        self.replies = {**DEFAULT_REPLIES, **(overrides or {})}
        self.delays = delays or {}
        self.calls = []

    async def invoke_model(self, role, messages):
        self.calls.append(role)
        delay = self.delays.get(role)
        if delay:
            await asyncio.sleep(delay)
        reply = self.replies[role]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


def make_bars(symbol="AAPL", count=60, start=100.0, step=0.2):
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    bars = []
    for i in range(count):
        close = start + i * step + (i % 5) * 0.3
        bars.append(Bar(
            symbol=symbol,
            timestamp=base + timedelta(days=i),
            open=close - 0.2,
            high=close + 1.0,
            low=close - 1.0,
            close=close,
            volume=1_000_000,
        ))
    return bars


class FakeMarketData:
    def __init__(self, bars=None, fail=False):
        self.bars = bars or make_bars()
        self.fail = fail

    def set_last_close(self, price):
        last = self.bars[-1]
        self.bars[-1] = last.model_copy(update={"close": price, "high": price + 1.0, "low": price - 1.0})

    async def get_current_price(self, symbol):
        if self.fail:
            raise DataFetchError("market data unavailable")
        return self.bars[-1].close

    async def get_data_with_indicators(self, symbol, period="3mo", interval="1d"):
        if self.fail:
            raise DataFetchError("market data unavailable")
        return build_bundle(symbol.upper(), self.bars)


def make_indicators(**overrides):
    values = dict(
        rsi=55.0, macd=0.5, macd_signal=0.3, macd_histogram=0.2,
        bollinger_upper=105.0, bollinger_middle=100.0, bollinger_lower=95.0,
        sma20=100.0, sma50=98.0, ema12=101.0, ema26=99.5, atr=2.0,
    )
    values.update(overrides)
    return IndicatorSnapshot(**values)


def make_context(
    price=100.0,
    max_position_size_pct=5.0,
    stop_loss_pct=2.0,
    daily_loss_limit_pct=10.0,
    total_value=100_000.0,
    open_positions=0,
    daily_pnl=0.0,
    atr=2.0,
):
    return AnalysisContext(
        symbol="aapl",
        current_price=price,
        indicators=make_indicators(atr=atr),
        risk=StrategyRiskParameters(
            max_position_size_pct=max_position_size_pct,
            stop_loss_pct=stop_loss_pct,
            daily_loss_limit_pct=daily_loss_limit_pct,
        ),
        portfolio=PortfolioSnapshot(
            total_value=total_value,
            available_cash=total_value,
            open_positions=open_positions,
            daily_pnl=daily_pnl,
        ),
        strategy_id="strategy-1",
    )


@pytest.fixture
def context_factory():
    return make_context


@pytest.fixture
def bars_factory():
    return make_bars


@pytest.fixture
def fake_client():
    return FakeInferenceClient()


@pytest.fixture
def client_factory():
    return FakeInferenceClient


@pytest.fixture
def orchestrator_factory():
    def build(client, role_timeout=5.0):
        return AgentOrchestrator(RoleInvoker(client), role_timeout=role_timeout)
    return build


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        logs_dir=tmp_path / "logs",
        storage={"sqlite_path": tmp_path / "test.db"},
        loop={"default_interval_seconds": 0.05, "role_timeout_seconds": 5},
    )


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "agent_trader.db"


@pytest.fixture
def service_factory(settings):
    """Build a TradingService over SQLite, fake market data and a paper broker inside a running loop."""
    async def build(client=None, market_data=None, cash=100_000.0):
        store = SQLiteStore(settings.storage.sqlite_path)
        await store.connect()
        orchestrator = AgentOrchestrator(RoleInvoker(client or FakeInferenceClient()), role_timeout=5.0)
        return TradingService(
            store,
            market_data or FakeMarketData(),
            PaperBroker(initial_cash=cash),
            orchestrator,
            settings,
        )
    return build
