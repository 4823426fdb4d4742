"""
Agent Orchestrator Module for Agent Trader.

Runs the seven pipeline roles in four phases and produces one TradingSignal:

1. technical, fundamental and sentiment analysts, concurrently
2. bull and bear researchers, concurrently, on the analyst reports
3. the trader, on everything so far
4. the LLM risk manager plus the deterministic risk validator

Phases 1 and 2 are gather barriers. A role that fails is replaced by a
neutral placeholder and recorded in the signal's failures; nothing a role
does can raise out of ``analyze_and_decide``.
"""

import asyncio
import logging
import math
from typing import Any, Optional, Sequence

from agent_trader.ai.reports import (
    ANALYST_ROLES,
    RESEARCH_ROLES,
    RiskManagerReport,
    RoleFailure,
    RoleKind,
    TraderReport,
    TradingSignal,
    placeholder_report,
)
from agent_trader.ai.role_invoker import RoleInvoker
from agent_trader.core.models import (
    AnalysisContext,
    Position,
    PositionSide,
    ProposedTrade,
    RiskVerdict,
    TradeAction,
)
from agent_trader.risk.position_sizer import PositionSizer
from agent_trader.risk.validator import RiskValidator
from agent_trader.utils.helpers import clamp


logger = logging.getLogger(__name__)


class AgentOrchestrator:
    """
    Coordinates the pipeline roles for one symbol.

    The trader's action is final unless the validator (or the LLM risk
    manager) vetoes it, in which case the action becomes hold. The signal's
    confidence is always the trader's.
    """

    def __init__(
        self,
        invoker: RoleInvoker,
        validator: Optional[RiskValidator] = None,
        sizer: Optional[PositionSizer] = None,
        role_timeout: float = 90.0,
    ) -> None:
        self._invoker = invoker
        self._validator = validator or RiskValidator()
        self._sizer = sizer or PositionSizer()
        self._role_timeout = role_timeout

    @property
    def validator(self) -> RiskValidator:
        return self._validator

    async def analyze_and_decide(
        self,
        context: AnalysisContext,
        positions: Sequence[Position] = (),
    ) -> TradingSignal:
        """
        Run the full pipeline.

        Args:
            context: Immutable input for this run
            positions: The strategy's open positions; a sell against open
                longs (or a buy against open shorts) closes them

        Returns:
            TradingSignal with every role's report and the risk verdict
        """
        log_extra = {"symbol": context.symbol, "strategy_id": context.strategy_id}
        logger.info(f"Starting analysis for {context.symbol}", extra=log_extra)

        reports: dict[RoleKind, Any] = {}
        failures: list[RoleFailure] = []

        # Phase 1
        await self._run_phase(ANALYST_ROLES, context, {}, reports, failures)
        analyst_inputs = {role.value: reports[role] for role in ANALYST_ROLES}

        # Phase 2
        await self._run_phase(RESEARCH_ROLES, context, analyst_inputs, reports, failures)
        research_inputs = {
            **analyst_inputs,
            **{role.value: reports[role] for role in RESEARCH_ROLES},
        }

        # Phase 3
        await self._run_phase((RoleKind.TRADER,), context, research_inputs, reports, failures)
        trader: TraderReport = reports[RoleKind.TRADER]

        # Phase 4
        trade = self.build_trade(trader, context, positions)
        await self._run_phase(
            (RoleKind.RISK_MANAGER,),
            context,
            {**research_inputs, RoleKind.TRADER.value: trader, "proposed_trade": trade},
            reports,
            failures,
        )
        risk_manager: RiskManagerReport = reports[RoleKind.RISK_MANAGER]
        verdict = self._validator.validate(trade, context)

        veto_reasons = list(verdict.violations)
        if risk_manager.placeholder:
            verdict = self._with_warning(verdict, "Risk manager review unavailable; deterministic checks only")
        elif not risk_manager.approved and not trade.is_hold:
            veto_reasons.append(
                "Risk manager veto: "
                + ("; ".join(risk_manager.violations) or risk_manager.reasoning or "not approved")
            )

        vetoed = bool(veto_reasons) and not trade.is_hold
        action = TradeAction.HOLD if vetoed else trader.action

        reasoning = trader.reasoning or trader.synthesis or "No trader reasoning"
        if vetoed:
            reasoning = f"{reasoning}\n\nVetoed: {'; '.join(veto_reasons)}"

        signal = TradingSignal(
            symbol=context.symbol,
            action=action,
            confidence=clamp(trader.confidence, 0.0, 1.0),
            reasoning=reasoning,
            reports=reports,
            failures=failures,
            verdict=verdict,
            proposed_trade=trade,
            vetoed=vetoed,
        )

        logger.info(
            f"Final decision for {context.symbol}: {signal.action.value} "
            f"(trader {trader.action.value}, vetoed={vetoed}, failures={len(failures)})",
            extra={**log_extra, "risk_score": verdict.risk_score},
        )
        return signal

    async def _run_phase(
        self,
        roles: Sequence[RoleKind],
        context: AnalysisContext,
        inputs: dict[str, Any],
        reports: dict[RoleKind, Any],
        failures: list[RoleFailure],
    ) -> None:
        results = await asyncio.gather(
            *(self._invoker.invoke(role, context, inputs, self._role_timeout) for role in roles)
        )
        for role, result in zip(roles, results):
            if isinstance(result, RoleFailure):
                logger.warning(
                    f"Using placeholder for {result.describe()}",
                    extra={"role": role.value, "symbol": context.symbol},
                )
                failures.append(result)
                reports[role] = placeholder_report(result)
            else:
                reports[role] = result

    def build_trade(
        self,
        trader: TraderReport,
        context: AnalysisContext,
        positions: Sequence[Position] = (),
    ) -> ProposedTrade:
        """
        Turn the trader's decision into a concrete trade.

        Hold yields an empty hold proposal. An action opposite to open
        positions in the symbol closes them (reduce-only). Otherwise the trade
        opens a new position sized by the position sizer; trader-supplied
        position size, stop-loss and target override the computed values.
        """
        price = context.current_price
        action = trader.action
        base = {
            "symbol": context.symbol,
            "action": action,
            "entry_price": price,
            "confidence": clamp(trader.confidence, 0.0, 1.0),
        }
        if action == TradeAction.HOLD:
            return ProposedTrade(**base)

        closing_side = PositionSide.LONG if action == TradeAction.SELL else PositionSide.SHORT
        to_close = [
            p for p in positions
            if p.is_open and p.symbol == context.symbol and p.side == closing_side
        ]
        if to_close:
            quantity = sum(p.quantity for p in to_close)
            return ProposedTrade(
                **base,
                side=closing_side,
                quantity=quantity,
                position_value=quantity * price if price > 0 else 0.0,
                reduce_only=True,
            )

        side = PositionSide.LONG if action == TradeAction.BUY else PositionSide.SHORT
        if not math.isfinite(price) or price <= 0:
            return ProposedTrade(**base, side=side)

        sizing = self._sizer.calculate(
            side=side,
            price=price,
            account_value=context.portfolio.total_value,
            max_position_pct=context.risk.max_position_size_pct,
            atr=context.indicators.atr,
            stop_loss_pct=context.risk.stop_loss_pct,
            position_pct=trader.position_size,
            stop_loss=trader.stop_loss,
            take_profit=trader.target_price,
        )
        return ProposedTrade(
            **base,
            side=side,
            quantity=sizing.quantity,
            position_value=sizing.position_value,
            stop_loss=sizing.stop_loss,
            take_profit=sizing.take_profit,
        )

    @staticmethod
    def _with_warning(verdict: RiskVerdict, warning: str) -> RiskVerdict:
        return verdict.model_copy(update={"warnings": [*verdict.warnings, warning]})
