"""
Core Package for Agent Trader.

Domain models and the trading loop manager. The trading service lives in
``agent_trader.core.trading_service``.
"""

from agent_trader.core.models import (
    TradeAction,
    RiskLevel,
    PositionSide,
    PositionStatus,
    AlertType,
    AlertSeverity,
    OrderSide,
    OrderStatus,
    IndicatorSnapshot,
    StrategyRiskParameters,
    PortfolioSnapshot,
    AnalysisContext,
    ProposedTrade,
    RiskCheck,
    RiskVerdict,
    Strategy,
    Position,
    AgentDecision,
    RiskAlert,
    AuditLog,
    OrderResult,
    ActionResult,
)
from agent_trader.core.loop_manager import (
    LoopStatus,
    StrategyRuntimeState,
    TradingLoopManager,
)


__all__ = [
    "TradeAction",
    "RiskLevel",
    "PositionSide",
    "PositionStatus",
    "AlertType",
    "AlertSeverity",
    "OrderSide",
    "OrderStatus",
    "IndicatorSnapshot",
    "StrategyRiskParameters",
    "PortfolioSnapshot",
    "AnalysisContext",
    "ProposedTrade",
    "RiskCheck",
    "RiskVerdict",
    "Strategy",
    "Position",
    "AgentDecision",
    "RiskAlert",
    "AuditLog",
    "OrderResult",
    "ActionResult",
    "LoopStatus",
    "StrategyRuntimeState",
    "TradingLoopManager",
]
