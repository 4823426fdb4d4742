"""
Risk Validator Module for Agent Trader.

Deterministic pre-trade gate. Given a proposed trade, the strategy limits
carried by the analysis context, and live portfolio state, it runs an
ordered list of rules and returns a RiskVerdict:

1. position size      - position value / portfolio value vs max position size
2. daily loss         - today's loss / portfolio value vs daily loss limit
3. stop-loss sanity   - long stops below entry, short stops above entry
4. exposure           - open positions after the trade vs the position cap
5. price sanity       - entry price finite and positive
6. confidence floor   - low-confidence signals are flagged

Rules 1-5 can veto; rule 6 only warns. The same component maintains
trailing stops for open positions.
"""

import logging
import math
from typing import Optional

from pydantic import BaseModel, Field

from agent_trader.core.models import (
    AlertSeverity,
    AlertType,
    AnalysisContext,
    PortfolioSnapshot,
    Position,
    PositionSide,
    ProposedTrade,
    RiskAlert,
    RiskCheck,
    RiskVerdict,
    TradeAction,
)
from agent_trader.risk.stop_loss import (
    ExitReason,
    StopLossUpdate,
    TrailingStopConfig,
    should_close_position,
    trailing_stop_update,
)
from agent_trader.utils.helpers import clamp


logger = logging.getLogger(__name__)


class RiskValidatorConfig(BaseModel):
    """Configuration for the risk validator."""

    max_open_positions: int = Field(default=10, ge=1, le=100)
    warning_ratio: float = Field(default=0.8, gt=0.0, lt=1.0)
    min_confidence: float = Field(default=0.6, ge=0.0, le=1.0)

    position_weight: float = Field(default=0.35, ge=0.0)
    daily_loss_weight: float = Field(default=0.35, ge=0.0)
    stop_loss_weight: float = Field(default=0.10, ge=0.0)
    exposure_weight: float = Field(default=0.20, ge=0.0)

    trailing: TrailingStopConfig = Field(default_factory=TrailingStopConfig)


class RiskValidator:
    """
    Pure pre-trade risk gate.

    ``validate`` has no side effects; alerts are built separately with
    ``build_alerts`` so callers decide when to persist them.
    """

    def __init__(self, config: Optional[RiskValidatorConfig] = None) -> None:
        self.config = config or RiskValidatorConfig()

    def validate(
        self,
        trade: ProposedTrade,
        context: AnalysisContext,
        portfolio: Optional[PortfolioSnapshot] = None,
    ) -> RiskVerdict:
        """
        Validate a proposed trade.

        Args:
            trade: Trade to validate
            context: Analysis context (supplies the strategy limits)
            portfolio: Live portfolio state; defaults to the context's snapshot

        Returns:
            RiskVerdict with ordered violations, warnings and checks
        """
        portfolio = portfolio or context.portfolio
        risk = context.risk
        opening = not trade.is_hold and not trade.reduce_only

        checks = [
            self._check_position_size(trade, portfolio, risk.max_position_size_pct, opening),
            self._check_daily_loss(portfolio, risk.daily_loss_limit_pct, opening),
            self._check_stop_loss(trade, opening),
            self._check_exposure(portfolio, opening),
        ]
        if not trade.is_hold:
            checks.append(self._check_price(trade))
            checks.append(self._check_confidence(trade))

        violations = [c.message for c in checks if not c.passed]
        warnings = [c.message for c in checks if c.passed and c.warning]

        weights = {
            "position_size": self.config.position_weight,
            "daily_loss": self.config.daily_loss_weight,
            "stop_loss": self.config.stop_loss_weight,
            "exposure": self.config.exposure_weight,
        }
        total_weight = sum(weights.values()) or 1.0
        score = sum(
            weights[c.rule] * (1.0 if not c.passed else c.utilisation)
            for c in checks
            if c.rule in weights
        ) / total_weight

        verdict = RiskVerdict(
            approved=not violations,
            risk_score=round(clamp(score, 0.0, 1.0), 4),
            violations=violations,
            warnings=warnings,
            checks=checks,
        )

        log = logger.info if verdict.approved else logger.warning
        log(
            f"Risk verdict for {trade.symbol} {trade.action.value}: "
            f"{'approved' if verdict.approved else 'vetoed'} (score {verdict.risk_score:.2f})",
            extra={
                "symbol": trade.symbol,
                "strategy_id": context.strategy_id,
                "violations": violations,
                "warnings": warnings,
            },
        )
        return verdict

    # =========================================================================
    # RULES
    # =========================================================================

    def _check_position_size(
        self,
        trade: ProposedTrade,
        portfolio: PortfolioSnapshot,
        limit_pct: float,
        opening: bool,
    ) -> RiskCheck:
        if not opening:
            return RiskCheck(rule="position_size", passed=True, message="No new exposure")

        size_pct = trade.position_value / portfolio.total_value * 100
        utilisation = clamp(size_pct / limit_pct, 0.0, 1.0)

        if size_pct > limit_pct:
            return RiskCheck(
                rule="position_size",
                passed=False,
                severity=AlertSeverity.HIGH,
                alert_type=AlertType.POSITION_SIZE_EXCEEDED,
                utilisation=1.0,
                message=f"Position size {size_pct:.2f}% exceeds limit of {limit_pct:.2f}%",
            )
        if size_pct >= limit_pct * self.config.warning_ratio:
            return RiskCheck(
                rule="position_size",
                passed=True,
                warning=True,
                severity=AlertSeverity.MEDIUM,
                alert_type=AlertType.POSITION_SIZE_EXCEEDED,
                utilisation=utilisation,
                message=f"Position size {size_pct:.2f}% is close to limit of {limit_pct:.2f}%",
            )
        return RiskCheck(
            rule="position_size",
            passed=True,
            utilisation=utilisation,
            message=f"Position size {size_pct:.2f}% within limit of {limit_pct:.2f}%",
        )

    def _check_daily_loss(
        self,
        portfolio: PortfolioSnapshot,
        limit_pct: float,
        opening: bool,
    ) -> RiskCheck:
        loss_pct = portfolio.daily_loss / portfolio.total_value * 100
        utilisation = clamp(loss_pct / limit_pct, 0.0, 1.0)

        if loss_pct > limit_pct:
            message = f"Daily loss {loss_pct:.2f}% exceeds daily loss limit of {limit_pct:.2f}%"
            if opening:
                return RiskCheck(
                    rule="daily_loss",
                    passed=False,
                    severity=AlertSeverity.CRITICAL,
                    alert_type=AlertType.DAILY_LOSS_LIMIT,
                    utilisation=1.0,
                    message=message,
                )
            return RiskCheck(
                rule="daily_loss",
                passed=True,
                warning=True,
                severity=AlertSeverity.MEDIUM,
                alert_type=AlertType.DAILY_LOSS_LIMIT,
                utilisation=1.0,
                message=message,
            )
        if loss_pct >= limit_pct * self.config.warning_ratio:
            return RiskCheck(
                rule="daily_loss",
                passed=True,
                warning=True,
                severity=AlertSeverity.MEDIUM,
                alert_type=AlertType.DAILY_LOSS_LIMIT,
                utilisation=utilisation,
                message=f"Daily loss {loss_pct:.2f}% is close to daily loss limit of {limit_pct:.2f}%",
            )
        return RiskCheck(
            rule="daily_loss",
            passed=True,
            utilisation=utilisation,
            message=f"Daily loss {loss_pct:.2f}% within limit of {limit_pct:.2f}%",
        )

    def _check_stop_loss(self, trade: ProposedTrade, opening: bool) -> RiskCheck:
        if not opening:
            return RiskCheck(rule="stop_loss", passed=True, message="No new position to protect")

        side = trade.side or (PositionSide.LONG if trade.action == TradeAction.BUY else PositionSide.SHORT)

        if trade.stop_loss is None:
            return RiskCheck(
                rule="stop_loss",
                passed=True,
                warning=True,
                severity=AlertSeverity.LOW,
                alert_type=AlertType.STOP_LOSS_INVALID,
                utilisation=0.5,
                message="No stop-loss set for new position",
            )

        valid = (
            trade.stop_loss < trade.entry_price
            if side == PositionSide.LONG
            else trade.stop_loss > trade.entry_price
        )
        if not valid:
            relation = "below" if side == PositionSide.LONG else "above"
            return RiskCheck(
                rule="stop_loss",
                passed=False,
                severity=AlertSeverity.HIGH,
                alert_type=AlertType.STOP_LOSS_INVALID,
                utilisation=1.0,
                message=(
                    f"Stop-loss {trade.stop_loss:.2f} must be {relation} entry "
                    f"{trade.entry_price:.2f} for a {side.value} position"
                ),
            )
        return RiskCheck(
            rule="stop_loss",
            passed=True,
            message=f"Stop-loss {trade.stop_loss:.2f} on the protective side of entry",
        )

    def _check_exposure(self, portfolio: PortfolioSnapshot, opening: bool) -> RiskCheck:
        cap = self.config.max_open_positions
        after = portfolio.open_positions + (1 if opening else 0)
        utilisation = clamp(after / cap, 0.0, 1.0)

        if after > cap and opening:
            return RiskCheck(
                rule="exposure",
                passed=False,
                severity=AlertSeverity.HIGH,
                alert_type=AlertType.EXPOSURE_LIMIT,
                utilisation=1.0,
                message=f"Open positions would reach {after}, above the cap of {cap}",
            )
        if after >= cap - 1:
            return RiskCheck(
                rule="exposure",
                passed=True,
                warning=True,
                severity=AlertSeverity.LOW,
                alert_type=AlertType.EXPOSURE_LIMIT,
                utilisation=utilisation,
                message=f"Open positions {after}/{cap} near the cap",
            )
        return RiskCheck(
            rule="exposure",
            passed=True,
            utilisation=utilisation,
            message=f"Open positions {after}/{cap} acceptable",
        )

    @staticmethod
    def _check_price(trade: ProposedTrade) -> RiskCheck:
        if not math.isfinite(trade.entry_price) or trade.entry_price <= 0:
            return RiskCheck(
                rule="price",
                passed=False,
                severity=AlertSeverity.HIGH,
                alert_type=AlertType.INVALID_PRICE,
                utilisation=1.0,
                message=f"Invalid entry price: {trade.entry_price}",
            )
        return RiskCheck(rule="price", passed=True, message="Price validation passed")

    def _check_confidence(self, trade: ProposedTrade) -> RiskCheck:
        floor = self.config.min_confidence
        if trade.confidence < floor:
            return RiskCheck(
                rule="confidence",
                passed=True,
                warning=True,
                severity=AlertSeverity.LOW,
                alert_type=AlertType.LOW_CONFIDENCE,
                message=f"Signal confidence {trade.confidence:.2f} below {floor:.2f}",
            )
        return RiskCheck(
            rule="confidence",
            passed=True,
            message=f"Signal confidence {trade.confidence:.2f} acceptable",
        )

    # =========================================================================
    # ALERTS AND POSITION MAINTENANCE
    # =========================================================================

    @staticmethod
    def build_alerts(strategy_id: str, verdict: RiskVerdict, symbol: Optional[str] = None) -> list[RiskAlert]:
        """
        Turn violated and warned checks into risk alerts.

        Args:
            strategy_id: Owning strategy
            verdict: Verdict to convert
            symbol: Symbol recorded in alert metadata

        Returns:
            One alert per violation or warning, in rule order
        """
        alerts = []
        for check in verdict.checks:
            if not check.raises_alert:
                continue
            alerts.append(
                RiskAlert(
                    strategy_id=strategy_id,
                    alert_type=check.alert_type,
                    severity=check.severity,
                    message=check.message,
                    metadata={
                        "rule": check.rule,
                        "violation": not check.passed,
                        "utilisation": check.utilisation,
                        "symbol": symbol,
                        "risk_score": verdict.risk_score,
                    },
                )
            )
        return alerts

    def update_trailing_stop(self, position: Position, price: float, atr: float) -> Optional[StopLossUpdate]:
        """Favourable stop move for an open position, or None."""
        return trailing_stop_update(position, price, atr, self.config.trailing)

    @staticmethod
    def check_exit(position: Position, price: float) -> Optional[ExitReason]:
        """Stop-loss / take-profit trigger for an open position, or None."""
        return should_close_position(position, price)
