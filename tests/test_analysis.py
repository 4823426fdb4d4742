import math

import pytest

from agent_trader.data.indicators import TechnicalIndicatorCalculator
from agent_trader.data.market_data import build_bundle
from agent_trader.utils.exceptions import DataMissingError


def test_sma_values():
    values = TechnicalIndicatorCalculator().sma([1.0, 2.0, 3.0, 4.0, 5.0], period=3)
    assert math.isnan(values[0]) and math.isnan(values[1])
    assert values[2:] == pytest.approx([2.0, 3.0, 4.0])


def test_ema_seeded_with_sma():
    values = TechnicalIndicatorCalculator().ema([2.0, 4.0, 6.0, 8.0], period=3)
    assert values[2] == pytest.approx(4.0)
    assert values[3] == pytest.approx(6.0)


def test_rsi_extremes():
    calc = TechnicalIndicatorCalculator()
    assert calc.rsi([float(i) for i in range(1, 30)])[-1] == 100.0
    assert calc.rsi([50.0] * 30)[-1] == 50.0
    assert calc.rsi([float(i) for i in range(30, 1, -1)])[-1] == pytest.approx(0.0)


def test_atr_constant_range():
    high = [11.0] * 20
    low = [9.0] * 20
    close = [10.0] * 20
    assert TechnicalIndicatorCalculator().atr(high, low, close)[-1] == pytest.approx(2.0)


def test_snapshot_is_finite(bars_factory):
    bundle = build_bundle("AAPL", bars_factory())
    snapshot = bundle.indicators
    assert all(math.isfinite(v) for v in snapshot.model_dump().values())
    assert snapshot.bollinger_lower < snapshot.bollinger_middle < snapshot.bollinger_upper
    assert snapshot.sma20 > snapshot.sma50
    assert bundle.current_price == bundle.closes[-1]


def test_snapshot_needs_enough_bars(bars_factory):
    with pytest.raises(DataMissingError):
        build_bundle("AAPL", bars_factory(count=30))
