import asyncio

import pytest

from agent_trader.core.models import OrderSide, OrderStatus
from agent_trader.execution.broker import PaperBroker
from agent_trader.utils.exceptions import ExecutionError


def test_paper_buy_fills_at_last_price():
    async def run():
        broker = PaperBroker(initial_cash=10_000.0)
        broker.set_price("aapl", 100.0)
        result = await broker.submit_order("AAPL", OrderSide.BUY, 20)
        account = await broker.get_account()
        positions = await broker.get_positions()
        return result, account, positions

    result, account, positions = asyncio.run(run())
    assert result.status == OrderStatus.FILLED
    assert result.filled_price == 100.0
    assert account.cash == pytest.approx(8_000.0)
    assert account.equity == pytest.approx(10_000.0)
    assert positions[0].quantity == 20


def test_paper_rejects_unaffordable_buy():
    async def run():
        broker = PaperBroker(initial_cash=1_000.0)
        broker.set_price("AAPL", 100.0)
        result = await broker.submit_order("AAPL", OrderSide.BUY, 20)
        return result, await broker.get_account()

    result, account = asyncio.run(run())
    assert result.status == OrderStatus.REJECTED
    assert "Insufficient funds" in result.message
    assert account.cash == 1_000.0


def test_paper_rejects_unknown_price():
    result = asyncio.run(PaperBroker().submit_order("MSFT", OrderSide.BUY, 1))
    assert result.status == OrderStatus.REJECTED


def test_paper_round_trip_and_short():
    async def run():
        broker = PaperBroker(initial_cash=10_000.0)
        broker.set_price("AAPL", 100.0)
        await broker.submit_order("AAPL", OrderSide.BUY, 10)
        broker.set_price("AAPL", 110.0)
        await broker.submit_order("AAPL", OrderSide.SELL, 10)
        flat = await broker.get_positions()
        await broker.submit_order("AAPL", OrderSide.SELL, 5)
        return broker, flat, await broker.get_positions(), await broker.get_account()

    broker, flat, positions, account = asyncio.run(run())
    assert flat == []
    assert positions[0].quantity == -5
    assert account.cash == pytest.approx(10_100.0 + 550.0)
    assert broker.get_statistics()["filled"] == 3


def test_non_positive_quantity_raises():
    broker = PaperBroker()
    broker.set_price("AAPL", 100.0)
    with pytest.raises(ExecutionError):
        asyncio.run(broker.submit_order("AAPL", OrderSide.BUY, 0))
