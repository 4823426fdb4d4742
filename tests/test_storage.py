import asyncio
from datetime import timedelta

import pytest

from agent_trader.core.models import (
    AgentDecision,
    AlertSeverity,
    AlertType,
    AuditLog,
    Position,
    PositionSide,
    RiskAlert,
    Strategy,
    TradeAction,
)
from agent_trader.data.storage import SQLiteStore
from agent_trader.utils.date_utils import now_utc
from agent_trader.utils.exceptions import DatabaseConnectionError, PersistenceError


def test_strategy_round_trip(db_path):
    async def run():
        async with SQLiteStore(db_path) as store:
            created = await store.create_strategy(Strategy(
                name="Momentum", symbol="AAPL", max_position_size_pct=5.0, account_value=50_000.0,
            ))
            loaded = await store.get_strategy(created.id)
            assert loaded.name == "Momentum"
            assert loaded.max_position_size_pct == 5.0
            assert loaded.account_value == 50_000.0
            assert not loaded.is_active

            await store.set_strategy_active(created.id, True)
            active = await store.list_active_strategies()
            assert [s.id for s in active] == [created.id]

            loaded.description = "updated"
            await store.update_strategy(loaded)
            assert (await store.get_strategy(created.id)).description == "updated"
            assert await store.get_strategy("missing") is None

    asyncio.run(run())


def test_set_active_on_missing_strategy_fails(db_path):
    async def run():
        async with SQLiteStore(db_path) as store:
            with pytest.raises(PersistenceError):
                await store.set_strategy_active("missing", True)

    asyncio.run(run())


def test_alert_acknowledge(db_path):
    async def run():
        async with SQLiteStore(db_path) as store:
            alert = await store.create_risk_alert(RiskAlert(
                strategy_id="s1",
                alert_type=AlertType.DAILY_LOSS_LIMIT,
                severity=AlertSeverity.CRITICAL,
                message="Daily loss 3.50% exceeds daily loss limit of 3.00%",
                metadata={"rule": "daily_loss"},
            ))
            assert len(await store.list_risk_alerts("s1", unacknowledged_only=True)) == 1

            acknowledged = await store.acknowledge_alert(alert.id)
            assert acknowledged.acknowledged
            assert acknowledged.acknowledged_at is not None
            assert acknowledged.metadata == {"rule": "daily_loss"}
            assert await store.list_risk_alerts("s1", unacknowledged_only=True) == []
            assert await store.acknowledge_alert("missing") is None

    asyncio.run(run())


def test_positions_and_realized_pnl(db_path):
    async def run():
        async with SQLiteStore(db_path) as store:
            position = await store.create_position(Position(
                strategy_id="s1", symbol="AAPL", side=PositionSide.LONG,
                quantity=10, entry_price=100.0, current_price=100.0, stop_loss=96.0,
            ))
            assert len(await store.get_open_positions("s1", "aapl")) == 1

            position.close(95.0)
            await store.update_position(position)
            assert await store.get_open_positions("s1") == []
            pnl = await store.realized_pnl_since("s1", now_utc() - timedelta(hours=1))
            assert pnl == pytest.approx(-50.0)

    asyncio.run(run())


def test_decisions_and_audit(db_path):
    async def run():
        async with SQLiteStore(db_path) as store:
            await store.create_agent_decision(AgentDecision(
                strategy_id="s1", symbol="AAPL", role="technical",
                recommendation=TradeAction.BUY, confidence=0.7, metrics={"keyPoints": ["MA cross"]},
            ))
            await store.create_audit_log(AuditLog(
                strategy_id="s1", event_type="trading_signal", event_data={"action": "buy"},
                risk_checks=[{"rule": "position_size", "passed": True}],
            ))
            decisions = await store.list_agent_decisions("s1")
            logs = await store.list_audit_logs("s1")
            assert decisions[0].metrics == {"keyPoints": ["MA cross"]}
            assert logs[0].risk_checks[0]["rule"] == "position_size"

    asyncio.run(run())


def test_store_requires_connection():
    async def run():
        with pytest.raises(DatabaseConnectionError):
            await SQLiteStore(":memory:").list_strategies()

    asyncio.run(run())
