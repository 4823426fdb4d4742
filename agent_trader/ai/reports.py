"""
Role Reports Module for Agent Trader.

Typed outputs of the seven pipeline roles, the failure value returned when
a role cannot produce one, and the final trading signal. Every report
exposes the shared projection ``recommendation`` / ``confidence`` /
``reasoning`` so orchestration never needs to look at role-specific fields.

Inference output arrives in camelCase (``keyPoints``, ``riskScore``); the
models accept both that and snake_case.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

from agent_trader.core.models import ProposedTrade, RiskVerdict, TradeAction
from agent_trader.utils.date_utils import now_utc


class RoleKind(str, Enum):
    """Pipeline roles."""

    TECHNICAL = "technical"
    FUNDAMENTAL = "fundamental"
    SENTIMENT = "sentiment"
    BULL = "bull"
    BEAR = "bear"
    TRADER = "trader"
    RISK_MANAGER = "risk_manager"


ANALYST_ROLES: tuple[RoleKind, ...] = (RoleKind.TECHNICAL, RoleKind.FUNDAMENTAL, RoleKind.SENTIMENT)
RESEARCH_ROLES: tuple[RoleKind, ...] = (RoleKind.BULL, RoleKind.BEAR)


class FailureCause(str, Enum):
    """Why a role produced no report."""

    TIMEOUT = "timeout"
    MALFORMED_OUTPUT = "malformed_output"
    TRANSPORT_ERROR = "transport_error"


class RoleFailure(BaseModel):
    """A role invocation that produced no usable report."""

    model_config = ConfigDict(frozen=True)

    role: RoleKind
    cause: FailureCause
    detail: str = ""

    def describe(self) -> str:
        text = f"{self.role.value} failed ({self.cause.value})"
        return f"{text}: {self.detail}" if self.detail else text


class _ReportBase(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    recommendation: TradeAction = TradeAction.HOLD
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""
    placeholder: bool = False


# =============================================================================
# PHASE 1: ANALYSTS
# =============================================================================

class RSISignal(BaseModel):
    value: Optional[float] = None
    signal: str = "neutral"


class MACDSignal(BaseModel):
    signal: str = "neutral"


class BollingerSignal(BaseModel):
    position: str = "within"
    signal: str = ""


class MovingAverageSignal(BaseModel):
    trend: str = "neutral"


class TechnicalSignals(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    rsi: RSISignal = Field(default_factory=RSISignal)
    macd: MACDSignal = Field(default_factory=MACDSignal)
    bollinger_bands: BollingerSignal = Field(default_factory=BollingerSignal)
    moving_averages: MovingAverageSignal = Field(default_factory=MovingAverageSignal)


class TechnicalReport(_ReportBase):
    role: Literal["technical"] = "technical"
    signals: TechnicalSignals = Field(default_factory=TechnicalSignals)
    key_points: list[str] = Field(default_factory=list)


class FundamentalFactors(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    market_conditions: str = ""
    sector_outlook: str = ""
    economic_indicators: str = ""


class FundamentalReport(_ReportBase):
    role: Literal["fundamental"] = "fundamental"
    valuation: Literal["undervalued", "fairly_valued", "overvalued"] = "fairly_valued"
    factors: FundamentalFactors = Field(default_factory=FundamentalFactors)
    key_points: list[str] = Field(default_factory=list)


class SentimentSources(BaseModel):
    news: str = ""
    social: str = ""
    market: str = ""


class SentimentReport(_ReportBase):
    role: Literal["sentiment"] = "sentiment"
    sentiment: Literal["bullish", "bearish", "neutral"] = "neutral"
    score: float = Field(default=0.0, ge=-1.0, le=1.0)
    sources: SentimentSources = Field(default_factory=SentimentSources)
    key_points: list[str] = Field(default_factory=list)


# =============================================================================
# PHASE 2: RESEARCH DEBATE
# =============================================================================

class _ResearchReport(_ReportBase):
    """Strength mirrors confidence and conclusion mirrors reasoning."""

    strength: float = Field(default=0.0, ge=0.0, le=1.0)
    arguments: list[str] = Field(default_factory=list)
    evidence: list[str] = Field(default_factory=list)
    counterarguments: list[str] = Field(default_factory=list)
    conclusion: str = ""

    leaning: ClassVar[TradeAction] = TradeAction.HOLD

    @model_validator(mode="before")
    @classmethod
    def mirror_projection(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "strength" in data and "confidence" not in data:
            data["confidence"] = data["strength"]
        elif "confidence" in data and "strength" not in data:
            data["strength"] = data["confidence"]
        if "conclusion" in data and "reasoning" not in data:
            data["reasoning"] = data["conclusion"]
        elif "reasoning" in data and "conclusion" not in data:
            data["conclusion"] = data["reasoning"]
        data.setdefault("recommendation", cls.leaning.value)
        return data


class BullReport(_ResearchReport):
    role: Literal["bull"] = "bull"
    leaning: ClassVar[TradeAction] = TradeAction.BUY


class BearReport(_ResearchReport):
    role: Literal["bear"] = "bear"
    leaning: ClassVar[TradeAction] = TradeAction.SELL


# =============================================================================
# PHASE 3 / 4: TRADER AND RISK MANAGER
# =============================================================================

class TraderReport(_ReportBase):
    """The trader's decision. ``action`` is its recommendation."""

    role: Literal["trader"] = "trader"
    synthesis: str = ""
    risk_assessment: str = ""
    target_price: Optional[float] = Field(default=None, gt=0.0)
    stop_loss: Optional[float] = Field(default=None, gt=0.0)
    position_size: Optional[float] = Field(default=None, gt=0.0, le=100.0)

    @model_validator(mode="before")
    @classmethod
    def action_is_recommendation(cls, data: Any) -> Any:
        if isinstance(data, dict) and "action" in data and "recommendation" not in data:
            data = dict(data)
            data["recommendation"] = data.pop("action")
        return data

    @property
    def action(self) -> TradeAction:
        return self.recommendation


class RiskManagerReport(_ReportBase):
    """Qualitative risk review. Its confidence defaults to 1 - risk score."""

    role: Literal["risk_manager"] = "risk_manager"
    approved: bool = False
    risk_score: float = Field(default=1.0, ge=0.0, le=1.0)
    violations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def derive_confidence(cls, data: Any) -> Any:
        if isinstance(data, dict) and "confidence" not in data:
            score = data.get("riskScore", data.get("risk_score"))
            if isinstance(score, (int, float)) and not isinstance(score, bool) and 0.0 <= score <= 1.0:
                data = dict(data)
                data["confidence"] = 1.0 - float(score)
        return data


RoleReport = Annotated[
    Union[
        TechnicalReport,
        FundamentalReport,
        SentimentReport,
        BullReport,
        BearReport,
        TraderReport,
        RiskManagerReport,
    ],
    Field(discriminator="role"),
]

role_report_adapter: TypeAdapter[Any] = TypeAdapter(RoleReport)

REPORT_MODELS: dict[RoleKind, type[_ReportBase]] = {
    RoleKind.TECHNICAL: TechnicalReport,
    RoleKind.FUNDAMENTAL: FundamentalReport,
    RoleKind.SENTIMENT: SentimentReport,
    RoleKind.BULL: BullReport,
    RoleKind.BEAR: BearReport,
    RoleKind.TRADER: TraderReport,
    RoleKind.RISK_MANAGER: RiskManagerReport,
}


def placeholder_report(failure: RoleFailure) -> Any:
    """
    Neutral stand-in for a failed role: hold, confidence 0, strength 0.

    Args:
        failure: The failure being replaced

    Returns:
        A report of the failed role's type flagged as a placeholder
    """
    model = REPORT_MODELS[failure.role]
    return model(
        role=failure.role.value,
        recommendation=TradeAction.HOLD,
        confidence=0.0,
        reasoning=f"No {failure.role.value} report: {failure.describe()}",
        placeholder=True,
    )


class TradingSignal(BaseModel):
    """Final output of one pipeline run."""

    symbol: str
    action: TradeAction
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str
    reports: dict[RoleKind, RoleReport]
    failures: list[RoleFailure] = Field(default_factory=list)
    verdict: RiskVerdict
    proposed_trade: ProposedTrade
    vetoed: bool = False
    timestamp: datetime = Field(default_factory=now_utc)

    def report(self, role: RoleKind) -> Any:
        return self.reports[role]

    @property
    def is_actionable(self) -> bool:
        return self.action != TradeAction.HOLD and self.verdict.approved and not self.vetoed
