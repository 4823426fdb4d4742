import asyncio

import pytest

from agent_trader.ai.reports import RoleKind
from agent_trader.core.models import (
    OrderResult,
    OrderStatus,
    Position,
    PositionSide,
    PositionStatus,
    Strategy,
    TradeAction,
)
from agent_trader.utils.exceptions import DataFetchError, PersistenceError

from conftest import FakeInferenceClient, FakeMarketData


def strategy(**kw):
    values = dict(name="Momentum", symbol="AAPL", is_active=True, max_position_size_pct=5.0,
                  daily_loss_limit_pct=3.0, account_value=100_000.0)
    values.update(kw)
    return Strategy(**values)


def test_cycle_executes_approved_buy(service_factory):
    async def run():
        service = await service_factory()
        s = await service.create_strategy(strategy())
        signal = await service.run_cycle(s.id)

        positions = await service.store.get_open_positions(s.id)
        decisions = await service.store.list_agent_decisions(s.id)
        events = {log.event_type for log in await service.store.list_audit_logs(s.id)}
        account = await service.broker.get_account()
        await service.store.close()
        return signal, positions, decisions, events, account

    signal, positions, decisions, events, account = asyncio.run(run())
    assert signal.action == TradeAction.BUY
    assert len(positions) == 1
    assert positions[0].side == PositionSide.LONG
    assert positions[0].quantity == signal.proposed_trade.quantity
    assert positions[0].stop_loss == signal.proposed_trade.stop_loss
    assert len(decisions) == 7
    assert {"trading_signal", "trade_executed"} <= events
    assert account.cash < 100_000.0


def test_cycle_skips_inactive_strategy(service_factory):
    async def run():
        service = await service_factory()
        s = await service.create_strategy(strategy(is_active=False))
        result = await service.run_cycle(s.id)
        await service.store.close()
        return result

    assert asyncio.run(run()) is None


def test_vetoed_cycle_places_no_order(service_factory):
    client = FakeInferenceClient({
        RoleKind.TRADER: {"action": "buy", "confidence": 0.9, "reasoning": "Size up", "positionSize": 9},
    })

    async def run():
        service = await service_factory(client=client)
        s = await service.create_strategy(strategy())
        signal = await service.run_cycle(s.id)
        positions = await service.store.get_open_positions(s.id)
        alerts = await service.store.list_risk_alerts(s.id)
        orders = service.broker.orders
        await service.store.close()
        return signal, positions, alerts, orders

    signal, positions, alerts, orders = asyncio.run(run())
    assert signal.action == TradeAction.HOLD
    assert signal.vetoed
    assert positions == []
    assert orders == []
    assert any(a.metadata["violation"] for a in alerts)


def test_manual_trade_rejected_by_validator(service_factory):
    async def run():
        service = await service_factory()
        s = await service.create_strategy(strategy(daily_loss_limit_pct=3.0))
        losing = Position(strategy_id=s.id, symbol="MSFT", side=PositionSide.LONG,
                          quantity=100, entry_price=100.0, current_price=100.0)
        await service.store.create_position(losing)
        losing.close(65.0)
        await service.store.update_position(losing)

        result = await service.manual_trade(s.id, "AAPL", TradeAction.BUY)
        orders = service.broker.orders
        await service.store.close()
        return result, orders

    result, orders = asyncio.run(run())
    assert not result.success
    assert "daily loss limit" in result.message
    assert orders == []


def test_manual_trade_executes_when_approved(service_factory):
    async def run():
        service = await service_factory()
        s = await service.create_strategy(strategy())
        result = await service.manual_trade(s.id, "aapl", TradeAction.BUY)
        positions = await service.store.get_open_positions(s.id)
        await service.store.close()
        return result, positions

    result, positions = asyncio.run(run())
    assert result.success
    assert len(positions) == 1
    assert result.data["position_id"] == positions[0].id


def test_start_and_stop_strategy(service_factory):
    async def run():
        service = await service_factory()
        s = await service.create_strategy(strategy(is_active=False))

        started = await service.start_strategy(s.id, account_value=50_000.0)
        again = await service.start_strategy(s.id)
        persisted = await service.store.get_strategy(s.id)

        stopped = await service.stop_strategy(s.id)
        stopped_again = await service.stop_strategy(s.id)
        after = await service.store.get_strategy(s.id)
        missing = await service.start_strategy("missing")
        await service.store.close()
        return started, again, persisted, stopped, stopped_again, after, missing

    started, again, persisted, stopped, stopped_again, after, missing = asyncio.run(run())
    assert started.success
    assert not again.success and "already running" in again.message
    assert persisted.is_active and persisted.account_value == 50_000.0
    assert stopped.success
    assert not stopped_again.success and "not running" in stopped_again.message
    assert not after.is_active
    assert not missing.success


def test_acknowledge_alert(service_factory):
    client = FakeInferenceClient({
        RoleKind.TRADER: {"action": "buy", "confidence": 0.9, "reasoning": "Size up", "positionSize": 9},
    })

    async def run():
        service = await service_factory(client=client)
        s = await service.create_strategy(strategy())
        await service.run_cycle(s.id)
        alert = (await service.store.list_risk_alerts(s.id))[0]
        result = await service.acknowledge_alert(alert.id)
        missing = await service.acknowledge_alert("missing")
        pending = await service.store.list_risk_alerts(s.id, unacknowledged_only=True)
        await service.store.close()
        return alert, result, missing, pending

    alert, result, missing, pending = asyncio.run(run())
    assert result.success
    assert not missing.success
    assert alert.id not in {a.id for a in pending}


def test_cycle_closes_position_at_stop(service_factory):
    hold = FakeInferenceClient({RoleKind.TRADER: {"action": "hold", "confidence": 0.5, "reasoning": "Wait"}})

    async def run():
        service = await service_factory(client=hold)
        s = await service.create_strategy(strategy())
        position = await service.store.create_position(Position(
            strategy_id=s.id, symbol="AAPL", side=PositionSide.LONG, quantity=10,
            entry_price=120.0, current_price=120.0, stop_loss=115.0,
        ))
        await service.run_cycle(s.id)
        positions = await service.store.list_positions(s.id)
        await service.store.close()
        return position.id, positions

    position_id, positions = asyncio.run(run())
    closed = next(p for p in positions if p.id == position_id)
    assert closed.status == PositionStatus.CLOSED
    assert closed.realized_pnl < 0


def test_cycle_trails_stop(service_factory):
    hold = FakeInferenceClient({RoleKind.TRADER: {"action": "hold", "confidence": 0.5, "reasoning": "Wait"}})

    async def run():
        service = await service_factory(client=hold)
        s = await service.create_strategy(strategy())
        await service.store.create_position(Position(
            strategy_id=s.id, symbol="AAPL", side=PositionSide.LONG, quantity=10,
            entry_price=100.0, current_price=100.0, stop_loss=90.0,
        ))
        await service.run_cycle(s.id)
        positions = await service.store.get_open_positions(s.id)
        await service.store.close()
        return positions

    (position,) = asyncio.run(run())
    assert position.stop_loss > 98.0
    assert position.unrealized_pnl > 0


def test_cycle_propagates_market_data_failure(service_factory):
    async def run():
        service = await service_factory(market_data=FakeMarketData(fail=True))
        s = await service.create_strategy(strategy())
        try:
            with pytest.raises(DataFetchError):
                await service.run_cycle(s.id)
        finally:
            await service.store.close()

    asyncio.run(run())


def test_loop_tick_runs_cycle(service_factory):
    async def run():
        service = await service_factory()
        s = await service.create_strategy(strategy(is_active=False, interval_seconds=0.05))
        await service.start_strategy(s.id)
        await asyncio.sleep(0.3)
        state = service.loops.status(s.id)
        await service.loops.shutdown()
        summary = await service.portfolio_summary(s.id)
        await service.store.close()
        return state, summary

    state, summary = asyncio.run(run())
    assert state.cycle_count >= 1
    assert state.error_count == 0
    assert summary["open_positions"]


def test_unknown_strategy_returns_error_payload(service_factory):
    async def run():
        service = await service_factory()
        result = await service.manual_trade("missing", "AAPL", TradeAction.BUY)
        await service.store.close()
        return result

    result = asyncio.run(run())
    assert not result.success
    assert result.data["error"]["error_type"] == "StrategyNotFoundError"


def test_rejected_exit_order_leaves_position_open(service_factory):
    async def run():
        service = await service_factory()
        s = await service.create_strategy(strategy())
        position = await service.store.create_position(Position(
            strategy_id=s.id, symbol="AAPL", side=PositionSide.LONG, quantity=10,
            entry_price=100.0, current_price=100.0,
        ))

        async def reject(symbol, side, quantity):
            return OrderResult(symbol=symbol, side=side, quantity=quantity,
                               status=OrderStatus.REJECTED, message="Market closed")

        service.broker.submit_order = reject
        result = await service.manual_trade(s.id, "AAPL", TradeAction.SELL)
        positions = await service.store.get_open_positions(s.id)
        events = [log.event_type for log in await service.store.list_audit_logs(s.id)]
        await service.store.close()
        return position.id, result, positions, events

    position_id, result, positions, events = asyncio.run(run())
    assert not result.success
    assert [p.id for p in positions] == [position_id]
    assert positions[0].status == PositionStatus.OPEN
    assert "order_rejected" in events
    assert "position_closed" not in events


def test_stop_strategy_reports_persistence_failure(service_factory):
    async def run():
        service = await service_factory()
        s = await service.create_strategy(strategy(is_active=False))
        await service.start_strategy(s.id)

        async def locked(strategy_id, active):
            raise PersistenceError("database is locked")

        service.store.set_strategy_active = locked
        result = await service.stop_strategy(s.id)
        running = service.loops.is_running(s.id)
        await service.store.close()
        return result, running

    result, running = asyncio.run(run())
    assert not result.success
    assert "database is locked" in result.message
    assert result.data["error"]["error_type"] == "PersistenceError"
    assert not running
