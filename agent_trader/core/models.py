"""
Core Domain Models for Agent Trader.

Pydantic models shared by the orchestration pipeline, the risk validator,
the trading service and the persistence layer. Percentages are expressed
in percent units (5.0 means 5 %).
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from agent_trader.utils.date_utils import now_utc
from agent_trader.utils.helpers import generate_uuid


# =============================================================================
# ENUMS
# =============================================================================

class TradeAction(str, Enum):
    """Final or per-role recommendation."""

    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class RiskLevel(str, Enum):
    """Strategy risk appetite."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PositionSide(str, Enum):
    """Position direction."""

    LONG = "long"
    SHORT = "short"


class PositionStatus(str, Enum):
    """Position lifecycle status."""

    OPEN = "open"
    CLOSED = "closed"


class AlertType(str, Enum):
    """Risk alert categories."""

    DAILY_LOSS_LIMIT = "daily_loss_limit"
    POSITION_SIZE_EXCEEDED = "position_size_exceeded"
    STOP_LOSS_INVALID = "stop_loss_invalid"
    EXPOSURE_LIMIT = "exposure_limit"
    INVALID_PRICE = "invalid_price"
    LOW_CONFIDENCE = "low_confidence"
    DRAWDOWN_LIMIT = "drawdown_limit"
    CIRCUIT_BREAKER = "circuit_breaker"
    VOLATILITY_SPIKE = "volatility_spike"


class AlertSeverity(str, Enum):
    """Risk alert severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class OrderSide(str, Enum):
    """Broker order side."""

    BUY = "buy"
    SELL = "sell"


class OrderStatus(str, Enum):
    """Broker order status."""

    FILLED = "filled"
    PARTIALLY_FILLED = "partially_filled"
    PENDING = "pending"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# =============================================================================
# ANALYSIS CONTEXT
# =============================================================================

class IndicatorSnapshot(BaseModel):
    """Latest value of every indicator the analysts look at."""

    model_config = ConfigDict(frozen=True)

    rsi: float
    macd: float
    macd_signal: float
    macd_histogram: float
    bollinger_upper: float
    bollinger_middle: float
    bollinger_lower: float
    sma20: float
    sma50: float
    ema12: float
    ema26: float
    atr: float = Field(ge=0.0)

    @field_validator("*")
    @classmethod
    def must_be_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("indicator values must be finite")
        return v


class StrategyRiskParameters(BaseModel):
    """Limits a strategy imposes on every trade."""

    model_config = ConfigDict(frozen=True)

    risk_level: RiskLevel = RiskLevel.MEDIUM
    max_position_size_pct: float = Field(default=2.0, gt=0.0, le=100.0)
    stop_loss_pct: float = Field(default=2.0, gt=0.0, le=100.0)
    daily_loss_limit_pct: float = Field(default=10.0, gt=0.0, le=100.0)


class PortfolioSnapshot(BaseModel):
    """Point-in-time account state used by the pipeline and the validator."""

    model_config = ConfigDict(frozen=True)

    total_value: float = Field(gt=0.0)
    available_cash: float = Field(ge=0.0)
    open_positions: int = Field(default=0, ge=0)
    daily_pnl: float = 0.0

    @property
    def daily_loss(self) -> float:
        """Today's loss as a positive amount (0 when the day is up)."""
        return max(0.0, -self.daily_pnl)


class AnalysisContext(BaseModel):
    """Immutable input to one pipeline run."""

    model_config = ConfigDict(frozen=True)

    symbol: str = Field(min_length=1)
    current_price: float
    indicators: IndicatorSnapshot
    risk: StrategyRiskParameters
    portfolio: PortfolioSnapshot
    strategy_id: Optional[str] = None
    recent_closes: tuple[float, ...] = ()
    timestamp: datetime = Field(default_factory=now_utc)

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        return v.strip().upper()


# =============================================================================
# RISK VALIDATION
# =============================================================================

class ProposedTrade(BaseModel):
    """A concrete trade the validator is asked to approve."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    action: TradeAction
    side: Optional[PositionSide] = None
    quantity: float = Field(default=0.0, ge=0.0)
    entry_price: float = 0.0
    position_value: float = Field(default=0.0, ge=0.0)
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reduce_only: bool = False

    @property
    def is_hold(self) -> bool:
        return self.action == TradeAction.HOLD


class RiskCheck(BaseModel):
    """Outcome of a single validator rule. A failed check is a violation."""

    rule: str
    passed: bool
    warning: bool = False
    severity: AlertSeverity = AlertSeverity.LOW
    alert_type: Optional[AlertType] = None
    utilisation: float = Field(default=0.0, ge=0.0, le=1.0)
    message: str = ""

    @property
    def raises_alert(self) -> bool:
        return (not self.passed or self.warning) and self.alert_type is not None


class RiskVerdict(BaseModel):
    """Validator output. ``approved`` is false whenever violations exist."""

    approved: bool
    risk_score: float = Field(ge=0.0, le=1.0)
    violations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    checks: list[RiskCheck] = Field(default_factory=list)

    @model_validator(mode="after")
    def violations_block_approval(self) -> "RiskVerdict":
        if self.violations and self.approved:
            raise ValueError("a verdict with violations cannot be approved")
        return self


# =============================================================================
# PERSISTED ENTITIES
# =============================================================================

class Strategy(BaseModel):
    """A user-defined trading strategy."""

    id: str = Field(default_factory=generate_uuid)
    user_id: str = "default"
    name: str
    symbol: str
    description: str = ""
    is_active: bool = False
    risk_level: RiskLevel = RiskLevel.MEDIUM
    max_position_size_pct: float = Field(default=2.0, gt=0.0, le=100.0)
    stop_loss_pct: float = Field(default=2.0, gt=0.0, le=100.0)
    daily_loss_limit_pct: float = Field(default=10.0, gt=0.0, le=100.0)
    account_value: Optional[float] = Field(default=None, gt=0.0)
    interval_seconds: Optional[float] = Field(default=None, gt=0.0)
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    def risk_parameters(self) -> StrategyRiskParameters:
        return StrategyRiskParameters(
            risk_level=self.risk_level,
            max_position_size_pct=self.max_position_size_pct,
            stop_loss_pct=self.stop_loss_pct,
            daily_loss_limit_pct=self.daily_loss_limit_pct,
        )


class Position(BaseModel):
    """An open or closed position held by a strategy."""

    id: str = Field(default_factory=generate_uuid)
    strategy_id: str
    symbol: str
    side: PositionSide
    quantity: float = Field(gt=0.0)
    entry_price: float = Field(gt=0.0)
    current_price: float = Field(gt=0.0)
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    status: PositionStatus = PositionStatus.OPEN
    opened_at: datetime = Field(default_factory=now_utc)
    closed_at: Optional[datetime] = None

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def pnl_at(self, price: float) -> float:
        """Profit or loss if the position were marked at ``price``."""
        if self.side == PositionSide.LONG:
            return (price - self.entry_price) * self.quantity
        return (self.entry_price - price) * self.quantity

    def mark(self, price: float) -> None:
        self.current_price = price
        self.unrealized_pnl = self.pnl_at(price)

    def close(self, price: float) -> None:
        self.current_price = price
        self.realized_pnl = self.pnl_at(price)
        self.unrealized_pnl = 0.0
        self.status = PositionStatus.CLOSED
        self.closed_at = now_utc()


class AgentDecision(BaseModel):
    """One persisted role report from one pipeline run."""

    id: str = Field(default_factory=generate_uuid)
    strategy_id: str
    symbol: str
    role: str
    recommendation: TradeAction
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    metrics: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=now_utc)


class RiskAlert(BaseModel):
    """A risk event raised for a strategy. Mutated only by acknowledge."""

    id: str = Field(default_factory=generate_uuid)
    strategy_id: str
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    acknowledged: bool = False
    created_at: datetime = Field(default_factory=now_utc)
    acknowledged_at: Optional[datetime] = None


class AuditLog(BaseModel):
    """Append-only record of what the service did and why."""

    id: str = Field(default_factory=generate_uuid)
    strategy_id: Optional[str] = None
    user_id: str = "default"
    event_type: str
    event_data: dict[str, Any] = Field(default_factory=dict)
    risk_checks: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=now_utc)


class OrderResult(BaseModel):
    """Broker response to a submitted order."""

    order_id: str = Field(default_factory=generate_uuid)
    symbol: str
    side: OrderSide
    quantity: float
    status: OrderStatus
    filled_quantity: float = 0.0
    filled_price: Optional[float] = None
    message: str = ""
    timestamp: datetime = Field(default_factory=now_utc)

    @property
    def is_filled(self) -> bool:
        return self.status == OrderStatus.FILLED


class ActionResult(BaseModel):
    """Outcome returned by the control surface."""

    success: bool
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
