"""
Storage Module for Agent Trader.

This module defines the persistence contract for strategies, positions,
agent decisions, risk alerts and audit logs, and an SQLite implementation
built on aiosqlite.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import aiosqlite

from agent_trader.core.models import (
    AgentDecision,
    AuditLog,
    Position,
    PositionStatus,
    RiskAlert,
    Strategy,
)
from agent_trader.utils.date_utils import now_utc
from agent_trader.utils.helpers import safe_json_dumps, safe_json_loads
from agent_trader.utils.exceptions import (
    DatabaseConnectionError,
    DatabaseWriteError,
    PersistenceError,
)


logger = logging.getLogger(__name__)


class TradingStore(ABC):
    """Persistence collaborator used by the trading service and loop manager."""

    # Strategies

    @abstractmethod
    async def create_strategy(self, strategy: Strategy) -> Strategy:
        ...

    @abstractmethod
    async def update_strategy(self, strategy: Strategy) -> Strategy:
        ...

    @abstractmethod
    async def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        ...

    @abstractmethod
    async def list_strategies(self) -> list[Strategy]:
        ...

    @abstractmethod
    async def list_active_strategies(self) -> list[Strategy]:
        ...

    @abstractmethod
    async def set_strategy_active(self, strategy_id: str, active: bool) -> None:
        ...

    # Positions

    @abstractmethod
    async def create_position(self, position: Position) -> Position:
        ...

    @abstractmethod
    async def update_position(self, position: Position) -> Position:
        ...

    @abstractmethod
    async def get_open_positions(self, strategy_id: str, symbol: Optional[str] = None) -> list[Position]:
        ...

    @abstractmethod
    async def list_positions(self, strategy_id: str) -> list[Position]:
        ...

    @abstractmethod
    async def realized_pnl_since(self, strategy_id: str, since: datetime) -> float:
        ...

    # Decisions, alerts, audit

    @abstractmethod
    async def create_agent_decision(self, decision: AgentDecision) -> AgentDecision:
        ...

    @abstractmethod
    async def list_agent_decisions(self, strategy_id: str, limit: int = 50) -> list[AgentDecision]:
        ...

    @abstractmethod
    async def create_risk_alert(self, alert: RiskAlert) -> RiskAlert:
        ...

    @abstractmethod
    async def list_risk_alerts(
        self,
        strategy_id: Optional[str] = None,
        unacknowledged_only: bool = False,
    ) -> list[RiskAlert]:
        ...

    @abstractmethod
    async def acknowledge_alert(self, alert_id: str) -> Optional[RiskAlert]:
        ...

    @abstractmethod
    async def create_audit_log(self, entry: AuditLog) -> AuditLog:
        ...

    @abstractmethod
    async def list_audit_logs(self, strategy_id: Optional[str] = None, limit: int = 100) -> list[AuditLog]:
        ...


_SCHEMA = """
    CREATE TABLE IF NOT EXISTS strategies (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        symbol TEXT NOT NULL,
        description TEXT DEFAULT '',
        is_active INTEGER NOT NULL DEFAULT 0,
        risk_level TEXT NOT NULL,
        max_position_size_pct REAL NOT NULL,
        stop_loss_pct REAL NOT NULL,
        daily_loss_limit_pct REAL NOT NULL,
        account_value REAL,
        interval_seconds REAL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_strategies_active
        ON strategies(is_active);

    CREATE TABLE IF NOT EXISTS positions (
        id TEXT PRIMARY KEY,
        strategy_id TEXT NOT NULL,
        symbol TEXT NOT NULL,
        side TEXT NOT NULL,
        quantity REAL NOT NULL,
        entry_price REAL NOT NULL,
        current_price REAL NOT NULL,
        stop_loss REAL,
        take_profit REAL,
        unrealized_pnl REAL DEFAULT 0,
        realized_pnl REAL DEFAULT 0,
        status TEXT NOT NULL,
        opened_at TEXT NOT NULL,
        closed_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_positions_strategy_status
        ON positions(strategy_id, status);

    CREATE TABLE IF NOT EXISTS agent_decisions (
        id TEXT PRIMARY KEY,
        strategy_id TEXT NOT NULL,
        symbol TEXT NOT NULL,
        role TEXT NOT NULL,
        recommendation TEXT NOT NULL,
        confidence REAL NOT NULL,
        reasoning TEXT,
        metrics TEXT,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_decisions_strategy
        ON agent_decisions(strategy_id, created_at);

    CREATE TABLE IF NOT EXISTS risk_alerts (
        id TEXT PRIMARY KEY,
        strategy_id TEXT NOT NULL,
        alert_type TEXT NOT NULL,
        severity TEXT NOT NULL,
        message TEXT NOT NULL,
        metadata TEXT,
        acknowledged INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        acknowledged_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_alerts_strategy
        ON risk_alerts(strategy_id, acknowledged);

    CREATE TABLE IF NOT EXISTS audit_logs (
        id TEXT PRIMARY KEY,
        strategy_id TEXT,
        user_id TEXT NOT NULL,
        event_type TEXT NOT NULL,
        event_data TEXT,
        risk_checks TEXT,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_audit_strategy
        ON audit_logs(strategy_id, created_at);
"""

_JSON_COLUMNS = {"metrics", "metadata", "event_data", "risk_checks"}
_BOOL_COLUMNS = {"is_active", "acknowledged"}


def _to_row(model: Any) -> dict[str, Any]:
    """Flatten a model into column values (JSON for dicts/lists, ISO for dates)."""
    row = model.model_dump(mode="json")
    for key, value in model.model_dump().items():
        if isinstance(value, datetime):
            row[key] = value.isoformat()
    for key in _JSON_COLUMNS & row.keys():
        row[key] = safe_json_dumps(row[key])
    for key in _BOOL_COLUMNS & row.keys():
        row[key] = int(row[key])
    return row


def _from_row(row: aiosqlite.Row) -> dict[str, Any]:
    data = dict(row)
    for key in _JSON_COLUMNS & data.keys():
        data[key] = safe_json_loads(data[key], [] if key == "risk_checks" else {})
    for key in _BOOL_COLUMNS & data.keys():
        data[key] = bool(data[key])
    return data


class SQLiteStore(TradingStore):
    """
    aiosqlite-backed store.

    Writes are serialised with an asyncio lock; every failure surfaces as a
    PersistenceError subclass.
    """

    def __init__(self, path: Union[str, Path] = "data/agent_trader.db", wal_mode: bool = True) -> None:
        self._path = str(path)
        self._wal_mode = wal_mode
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    async def connect(self) -> None:
        """Open the database and create tables."""
        if self._db is not None:
            return
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)

            self._db = await aiosqlite.connect(self._path)
            self._db.row_factory = aiosqlite.Row

            if self._wal_mode and self._path != ":memory:":
                await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.executescript(_SCHEMA)
            await self._db.commit()
        except (aiosqlite.Error, OSError) as e:
            logger.error(f"Database connection error: {e}")
            raise DatabaseConnectionError(f"Failed to connect to {self._path}: {e}", cause=e) from e

        logger.info(f"Connected to SQLite: {self._path}")

    async def close(self) -> None:
        """Close the database."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Disconnected from database")

    async def __aenter__(self) -> "SQLiteStore":
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # =========================================================================
    # LOW LEVEL
    # =========================================================================

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise DatabaseConnectionError("Store is not connected")
        return self._db

    async def _write(self, sql: str, params: Union[tuple, dict]) -> int:
        db = self._require_db()
        async with self._lock:
            try:
                cursor = await db.execute(sql, params)
                await db.commit()
                return cursor.rowcount
            except aiosqlite.Error as e:
                logger.error(f"Database write failed: {e}")
                raise DatabaseWriteError(f"Write failed: {e}", cause=e) from e

    async def _insert(self, table: str, model: Any) -> None:
        row = _to_row(model)
        columns = ", ".join(row)
        placeholders = ", ".join(f":{key}" for key in row)
        await self._write(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", row)

    async def _update(self, table: str, model: Any) -> int:
        row = _to_row(model)
        assignments = ", ".join(f"{key} = :{key}" for key in row if key != "id")
        return await self._write(f"UPDATE {table} SET {assignments} WHERE id = :id", row)

    async def _fetch(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        db = self._require_db()
        try:
            async with db.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.error(f"Database query failed: {e}")
            raise PersistenceError(f"Query failed: {e}", cause=e) from e
        return [_from_row(row) for row in rows]

    # =========================================================================
    # STRATEGIES
    # =========================================================================

    async def create_strategy(self, strategy: Strategy) -> Strategy:
        await self._insert("strategies", strategy)
        logger.debug(f"Created strategy {strategy.id}", extra={"strategy_id": strategy.id})
        return strategy

    async def update_strategy(self, strategy: Strategy) -> Strategy:
        strategy.updated_at = now_utc()
        if await self._update("strategies", strategy) == 0:
            raise PersistenceError(f"Strategy {strategy.id} does not exist")
        return strategy

    async def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        rows = await self._fetch("SELECT * FROM strategies WHERE id = ?", (strategy_id,))
        return Strategy(**rows[0]) if rows else None

    async def list_strategies(self) -> list[Strategy]:
        rows = await self._fetch("SELECT * FROM strategies ORDER BY created_at")
        return [Strategy(**row) for row in rows]

    async def list_active_strategies(self) -> list[Strategy]:
        rows = await self._fetch("SELECT * FROM strategies WHERE is_active = 1 ORDER BY created_at")
        return [Strategy(**row) for row in rows]

    async def set_strategy_active(self, strategy_id: str, active: bool) -> None:
        count = await self._write(
            "UPDATE strategies SET is_active = ?, updated_at = ? WHERE id = ?",
            (int(active), now_utc().isoformat(), strategy_id),
        )
        if count == 0:
            raise PersistenceError(f"Strategy {strategy_id} does not exist")

    # =========================================================================
    # POSITIONS
    # =========================================================================

    async def create_position(self, position: Position) -> Position:
        await self._insert("positions", position)
        return position

    async def update_position(self, position: Position) -> Position:
        if await self._update("positions", position) == 0:
            raise PersistenceError(f"Position {position.id} does not exist")
        return position

    async def get_open_positions(self, strategy_id: str, symbol: Optional[str] = None) -> list[Position]:
        sql = "SELECT * FROM positions WHERE strategy_id = ? AND status = ?"
        params: tuple = (strategy_id, PositionStatus.OPEN.value)
        if symbol:
            sql += " AND symbol = ?"
            params += (symbol.upper(),)
        rows = await self._fetch(sql + " ORDER BY opened_at", params)
        return [Position(**row) for row in rows]

    async def list_positions(self, strategy_id: str) -> list[Position]:
        rows = await self._fetch(
            "SELECT * FROM positions WHERE strategy_id = ? ORDER BY opened_at", (strategy_id,)
        )
        return [Position(**row) for row in rows]

    async def realized_pnl_since(self, strategy_id: str, since: datetime) -> float:
        rows = await self._fetch(
            "SELECT COALESCE(SUM(realized_pnl), 0) AS pnl FROM positions "
            "WHERE strategy_id = ? AND status = ? AND closed_at >= ?",
            (strategy_id, PositionStatus.CLOSED.value, since.isoformat()),
        )
        return float(rows[0]["pnl"]) if rows else 0.0

    # =========================================================================
    # DECISIONS, ALERTS, AUDIT
    # =========================================================================

    async def create_agent_decision(self, decision: AgentDecision) -> AgentDecision:
        await self._insert("agent_decisions", decision)
        return decision

    async def list_agent_decisions(self, strategy_id: str, limit: int = 50) -> list[AgentDecision]:
        rows = await self._fetch(
            "SELECT * FROM agent_decisions WHERE strategy_id = ? ORDER BY created_at DESC LIMIT ?",
            (strategy_id, limit),
        )
        return [AgentDecision(**row) for row in rows]

    async def create_risk_alert(self, alert: RiskAlert) -> RiskAlert:
        await self._insert("risk_alerts", alert)
        return alert

    async def list_risk_alerts(
        self,
        strategy_id: Optional[str] = None,
        unacknowledged_only: bool = False,
    ) -> list[RiskAlert]:
        clauses = []
        params: tuple = ()
        if strategy_id:
            clauses.append("strategy_id = ?")
            params += (strategy_id,)
        if unacknowledged_only:
            clauses.append("acknowledged = 0")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._fetch(f"SELECT * FROM risk_alerts{where} ORDER BY created_at DESC", params)
        return [RiskAlert(**row) for row in rows]

    async def acknowledge_alert(self, alert_id: str) -> Optional[RiskAlert]:
        count = await self._write(
            "UPDATE risk_alerts SET acknowledged = 1, acknowledged_at = ? WHERE id = ?",
            (now_utc().isoformat(), alert_id),
        )
        if count == 0:
            return None
        rows = await self._fetch("SELECT * FROM risk_alerts WHERE id = ?", (alert_id,))
        return RiskAlert(**rows[0]) if rows else None

    async def create_audit_log(self, entry: AuditLog) -> AuditLog:
        await self._insert("audit_logs", entry)
        return entry

    async def list_audit_logs(self, strategy_id: Optional[str] = None, limit: int = 100) -> list[AuditLog]:
        if strategy_id:
            rows = await self._fetch(
                "SELECT * FROM audit_logs WHERE strategy_id = ? ORDER BY created_at DESC LIMIT ?",
                (strategy_id, limit),
            )
        else:
            rows = await self._fetch(
                "SELECT * FROM audit_logs ORDER BY created_at DESC LIMIT ?", (limit,)
            )
        return [AuditLog(**row) for row in rows]
