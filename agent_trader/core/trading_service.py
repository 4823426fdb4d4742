"""
Trading Service Module for Agent Trader.

The control surface over the pipeline. It owns the trading cycle the loop
manager runs on every tick:

    fetch market data -> maintain open positions -> build context
    -> orchestrator -> persist decisions, alerts and audit -> execute

plus one-off analysis, manual trades (gated by the same risk validator),
strategy start/stop and alert acknowledgement. Broker calls happen only
after an approved verdict.
"""

import logging
from typing import Any, Optional, Sequence

from agent_trader.ai.orchestrator import AgentOrchestrator
from agent_trader.ai.reports import TraderReport, TradingSignal
from agent_trader.config.settings import Settings, get_settings
from agent_trader.core.loop_manager import TradingLoopManager
from agent_trader.core.models import (
    ActionResult,
    AgentDecision,
    AnalysisContext,
    AuditLog,
    OrderSide,
    PortfolioSnapshot,
    Position,
    PositionSide,
    ProposedTrade,
    RiskVerdict,
    Strategy,
    TradeAction,
)
from agent_trader.data.market_data import MarketDataBundle, MarketDataProvider
from agent_trader.data.storage import TradingStore
from agent_trader.execution.broker import Broker
from agent_trader.utils.date_utils import start_of_day_utc
from agent_trader.utils.decorators import async_timer
from agent_trader.utils.exceptions import (
    NotRunningError,
    SchedulingError,
    StrategyNotFoundError,
    TradingBotException,
)


logger = logging.getLogger(__name__)


class TradingService:
    """
    Trading control surface.

    Args:
        store: Persistence collaborator
        market_data: Market data collaborator
        broker: Execution collaborator
        orchestrator: Agent pipeline
        settings: Application settings
    """

    def __init__(
        self,
        store: TradingStore,
        market_data: MarketDataProvider,
        broker: Broker,
        orchestrator: AgentOrchestrator,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.market_data = market_data
        self.broker = broker
        self.orchestrator = orchestrator
        self.validator = orchestrator.validator
        self.loops = TradingLoopManager(
            self.run_cycle,
            default_interval=self.settings.loop.default_interval_seconds,
        )

    # =========================================================================
    # CYCLE
    # =========================================================================

    @async_timer
    async def run_cycle(self, strategy_id: str) -> Optional[TradingSignal]:
        """
        One tick of a strategy's loop.

        Re-fetches live state, runs the pipeline, persists the signal and
        executes it when approved. Exceptions propagate to the loop manager,
        which records them as cycle errors.

        Returns:
            The signal, or None when the strategy is no longer active
        """
        strategy = await self._load_strategy(strategy_id)
        if not strategy.is_active:
            logger.info(f"Strategy {strategy_id} inactive, skipping cycle", extra={"strategy_id": strategy_id})
            return None

        symbol = strategy.symbol.upper()
        bundle = await self._fetch_market_data(symbol)
        price = bundle.current_price

        positions = await self.store.get_open_positions(strategy.id)
        positions = await self._maintain_positions(strategy, positions, symbol, price, bundle.indicators.atr)

        context = await self._build_context(strategy, bundle, positions)
        signal = await self.orchestrator.analyze_and_decide(context, positions)
        await self._persist_signal(strategy, signal, "trading_signal")

        if signal.is_actionable:
            await self._execute(strategy, signal.proposed_trade, positions, source="agents")
        return signal

    async def run_analysis(self, strategy_id: str, symbol: Optional[str] = None) -> TradingSignal:
        """
        One-off pipeline run. Persists the signal; never places an order.

        Args:
            strategy_id: Strategy supplying the risk limits
            symbol: Symbol to analyse (defaults to the strategy's)
        """
        strategy = await self._load_strategy(strategy_id)
        symbol = (symbol or strategy.symbol).upper()
        bundle = await self._fetch_market_data(symbol)

        positions = await self.store.get_open_positions(strategy.id)
        context = await self._build_context(strategy, bundle, positions)
        signal = await self.orchestrator.analyze_and_decide(context, positions)
        await self._persist_signal(strategy, signal, "analysis")
        return signal

    async def manual_trade(
        self,
        strategy_id: str,
        symbol: str,
        action: TradeAction,
        account_value: Optional[float] = None,
    ) -> ActionResult:
        """
        Place a user-requested trade through the same risk validator.

        Args:
            strategy_id: Owning strategy
            symbol: Symbol to trade
            action: buy or sell
            account_value: Override of the strategy's account value

        Returns:
            ActionResult; a rejected trade places no order
        """
        try:
            strategy = await self._load_strategy(strategy_id)
        except StrategyNotFoundError as e:
            return ActionResult(success=False, message=e.message, data={"error": e.to_dict()})

        if action == TradeAction.HOLD:
            return ActionResult(success=False, message="Manual trade requires buy or sell")

        symbol = symbol.upper()
        bundle = await self._fetch_market_data(symbol)
        positions = await self.store.get_open_positions(strategy.id)
        context = await self._build_context(strategy, bundle, positions, account_value)

        decision = TraderReport(
            recommendation=action,
            confidence=1.0,
            reasoning="Manual trade",
        )
        trade = self.orchestrator.build_trade(decision, context, positions)
        verdict = self.validator.validate(trade, context)
        await self._persist_alerts(strategy, verdict, symbol)

        if not verdict.approved:
            await self._audit(
                strategy,
                "manual_trade_rejected",
                {"symbol": symbol, "action": action.value, "violations": verdict.violations},
                verdict,
            )
            return ActionResult(
                success=False,
                message=f"Trade rejected by risk validator: {'; '.join(verdict.violations)}",
                data={"verdict": verdict.model_dump(mode="json")},
            )

        executed = await self._execute(strategy, trade, positions, source="manual")
        if executed is None:
            return ActionResult(
                success=False,
                message=f"Manual {action.value} for {symbol} was not executed",
                data={"trade": trade.model_dump(mode="json")},
            )
        return ActionResult(
            success=True,
            message=f"Manual {action.value} of {executed['quantity']:g} {symbol} filled at {executed['price']:.2f}",
            data={"trade": trade.model_dump(mode="json"), "warnings": verdict.warnings, **executed},
        )

    # =========================================================================
    # STRATEGY CONTROL
    # =========================================================================

    async def create_strategy(self, strategy: Strategy) -> Strategy:
        strategy.symbol = strategy.symbol.upper()
        return await self.store.create_strategy(strategy)

    async def start_strategy(
        self,
        strategy_id: str,
        symbol: Optional[str] = None,
        account_value: Optional[float] = None,
    ) -> ActionResult:
        """Register the strategy's loop and persist it as active."""
        try:
            strategy = await self._load_strategy(strategy_id)
        except StrategyNotFoundError as e:
            return ActionResult(success=False, message=e.message, data={"error": e.to_dict()})

        try:
            state = self.loops.start(strategy.id, strategy.interval_seconds)
        except SchedulingError as e:
            return ActionResult(success=False, message=e.message, data={"error": e.to_dict()})

        if symbol:
            strategy.symbol = symbol.upper()
        if account_value:
            strategy.account_value = account_value
        strategy.is_active = True
        try:
            await self.store.update_strategy(strategy)
        except TradingBotException as e:
            self.loops.stop(strategy.id)
            return ActionResult(success=False, message=f"Could not persist strategy state: {e.message}")

        await self._audit(strategy, "strategy_started", {"interval_seconds": state.interval_seconds})
        return ActionResult(
            success=True,
            message=f"Strategy {strategy.name} started",
            data={"interval_seconds": state.interval_seconds, "symbol": strategy.symbol},
        )

    async def stop_strategy(self, strategy_id: str) -> ActionResult:
        """Cancel the strategy's loop and persist it as inactive."""
        try:
            state = self.loops.stop(strategy_id)
        except NotRunningError as e:
            return ActionResult(success=False, message=e.message, data={"error": e.to_dict()})

        try:
            await self.store.set_strategy_active(strategy_id, False)
        except TradingBotException as e:
            return ActionResult(
                success=False,
                message=f"Strategy {strategy_id} stopped but could not persist state: {e.message}",
                data={"error": e.to_dict(), "cycles": state.cycle_count},
            )
        await self.store.create_audit_log(AuditLog(
            strategy_id=strategy_id,
            event_type="strategy_stopped",
            event_data={"cycles": state.cycle_count, "errors": state.error_count},
        ))
        return ActionResult(
            success=True,
            message=f"Strategy {strategy_id} stopped",
            data={"cycles": state.cycle_count},
        )

    async def acknowledge_alert(self, alert_id: str) -> ActionResult:
        alert = await self.store.acknowledge_alert(alert_id)
        if alert is None:
            return ActionResult(success=False, message=f"Alert {alert_id} not found")
        return ActionResult(success=True, message="Alert acknowledged", data={"alert_id": alert.id})

    async def portfolio_summary(self, strategy_id: str) -> dict[str, Any]:
        """Open positions, P&L and broker account for a strategy."""
        strategy = await self._load_strategy(strategy_id)
        positions = await self.store.get_open_positions(strategy.id)
        realized_today = await self.store.realized_pnl_since(strategy.id, start_of_day_utc())
        account = await self.broker.get_account()
        return {
            "strategy_id": strategy.id,
            "symbol": strategy.symbol,
            "running": self.loops.is_running(strategy.id),
            "open_positions": [p.model_dump(mode="json") for p in positions],
            "positions_value": sum(p.market_value for p in positions),
            "unrealized_pnl": sum(p.unrealized_pnl for p in positions),
            "realized_pnl_today": realized_today,
            "account": account.model_dump(),
        }

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _load_strategy(self, strategy_id: str) -> Strategy:
        strategy = await self.store.get_strategy(strategy_id)
        if strategy is None:
            raise StrategyNotFoundError(
                f"Strategy {strategy_id} not found",
                details={"strategy_id": strategy_id},
            )
        return strategy

    async def _fetch_market_data(self, symbol: str) -> MarketDataBundle:
        bundle = await self.market_data.get_data_with_indicators(
            symbol,
            period=self.settings.loop.market_data_period,
            interval=self.settings.loop.market_data_interval,
        )
        self.broker.set_price(symbol, bundle.current_price)
        return bundle

    async def _build_context(
        self,
        strategy: Strategy,
        bundle: MarketDataBundle,
        positions: Sequence[Position],
        account_value: Optional[float] = None,
    ) -> AnalysisContext:
        total_value = (
            account_value
            or strategy.account_value
            or self.settings.broker.default_account_value
        )
        realized_today = await self.store.realized_pnl_since(strategy.id, start_of_day_utc())
        unrealized = sum(p.unrealized_pnl for p in positions if p.is_open)
        account = await self.broker.get_account()

        portfolio = PortfolioSnapshot(
            total_value=total_value,
            available_cash=max(0.0, min(account.cash, total_value)),
            open_positions=sum(1 for p in positions if p.is_open),
            daily_pnl=realized_today + unrealized,
        )
        return AnalysisContext(
            symbol=bundle.symbol,
            current_price=bundle.current_price,
            indicators=bundle.indicators,
            risk=strategy.risk_parameters(),
            portfolio=portfolio,
            strategy_id=strategy.id,
            recent_closes=tuple(bundle.closes[-20:]),
        )

    async def _maintain_positions(
        self,
        strategy: Strategy,
        positions: list[Position],
        symbol: str,
        price: float,
        atr: float,
    ) -> list[Position]:
        """Mark, exit on stop-loss / take-profit, and trail stops. Returns what stays open."""
        still_open = []
        for position in positions:
            if position.symbol != symbol:
                still_open.append(position)
                continue

            position.mark(price)
            reason = self.validator.check_exit(position, price)
            if reason is not None:
                closed = await self._close_position(strategy, position, reason.value)
                if closed:
                    continue
            else:
                update = self.validator.update_trailing_stop(position, price, atr)
                if update is not None:
                    position.stop_loss = update.new_stop
                    await self._audit(strategy, "stop_loss_updated", update.model_dump(mode="json"))

            await self.store.update_position(position)
            still_open.append(position)
        return still_open

    async def _close_position(self, strategy: Strategy, position: Position, reason: str) -> bool:
        side = OrderSide.SELL if position.side == PositionSide.LONG else OrderSide.BUY
        result = await self.broker.submit_order(position.symbol, side, position.quantity)
        if not result.is_filled:
            logger.warning(
                f"Exit order for position {position.id} not filled: {result.message}",
                extra={"strategy_id": strategy.id, "symbol": position.symbol},
            )
            return False

        position.close(result.filled_price)
        await self.store.update_position(position)
        await self._audit(strategy, "position_closed", {
            "position_id": position.id,
            "symbol": position.symbol,
            "reason": reason,
            "price": result.filled_price,
            "realized_pnl": position.realized_pnl,
        })
        logger.info(
            f"Closed {position.side.value} {position.symbol} ({reason}) P&L {position.realized_pnl:.2f}",
            extra={"strategy_id": strategy.id, "symbol": position.symbol},
        )
        return True

    async def _execute(
        self,
        strategy: Strategy,
        trade: ProposedTrade,
        positions: Sequence[Position],
        source: str,
    ) -> Optional[dict[str, Any]]:
        """Submit an approved trade. Returns fill details, or None when nothing filled."""
        extra = {"strategy_id": strategy.id, "symbol": trade.symbol}
        if trade.is_hold:
            return None
        if trade.quantity <= 0:
            logger.info(f"Sized quantity for {trade.symbol} is zero, not trading", extra=extra)
            await self._audit(strategy, "trade_skipped", {"reason": "zero_quantity", "source": source})
            return None

        if trade.reduce_only:
            candidates = [
                p for p in positions
                if p.is_open and p.symbol == trade.symbol and p.side == trade.side
            ]
            closed = []
            for position in candidates:
                if await self._close_position(strategy, position, f"{source}_{trade.action.value}"):
                    closed.append(position)
                else:
                    await self._audit(strategy, "order_rejected", {
                        "symbol": trade.symbol,
                        "position_id": position.id,
                        "quantity": position.quantity,
                        "source": source,
                    })
            if not closed:
                return None
            return {
                "quantity": sum(p.quantity for p in closed),
                "price": closed[-1].current_price,
                "closed": [p.id for p in closed],
            }

        side = OrderSide.BUY if trade.action == TradeAction.BUY else OrderSide.SELL
        result = await self.broker.submit_order(trade.symbol, side, trade.quantity)
        if not result.is_filled:
            await self._audit(strategy, "order_rejected", {
                "symbol": trade.symbol,
                "side": side.value,
                "quantity": trade.quantity,
                "message": result.message,
                "source": source,
            })
            return None

        position = Position(
            strategy_id=strategy.id,
            symbol=trade.symbol,
            side=trade.side or (PositionSide.LONG if side == OrderSide.BUY else PositionSide.SHORT),
            quantity=result.filled_quantity,
            entry_price=result.filled_price,
            current_price=result.filled_price,
            stop_loss=trade.stop_loss,
            take_profit=trade.take_profit,
        )
        await self.store.create_position(position)
        await self._audit(strategy, "trade_executed", {
            "order_id": result.order_id,
            "position_id": position.id,
            "symbol": trade.symbol,
            "side": side.value,
            "quantity": result.filled_quantity,
            "price": result.filled_price,
            "source": source,
        })
        logger.info(
            f"Opened {position.side.value} {position.quantity:g} {position.symbol} @ {position.entry_price:.2f}",
            extra=extra,
        )
        return {"quantity": result.filled_quantity, "price": result.filled_price, "position_id": position.id}

    async def _persist_signal(self, strategy: Strategy, signal: TradingSignal, event_type: str) -> None:
        shared = {"role", "recommendation", "confidence", "reasoning"}
        for role, report in signal.reports.items():
            await self.store.create_agent_decision(AgentDecision(
                strategy_id=strategy.id,
                symbol=signal.symbol,
                role=role.value,
                recommendation=report.recommendation,
                confidence=report.confidence,
                reasoning=report.reasoning,
                metrics=report.model_dump(mode="json", exclude=shared),
            ))

        await self._persist_alerts(strategy, signal.verdict, signal.symbol)
        await self._audit(
            strategy,
            event_type,
            {
                "symbol": signal.symbol,
                "action": signal.action.value,
                "confidence": signal.confidence,
                "vetoed": signal.vetoed,
                "reasoning": signal.reasoning,
                "proposed_trade": signal.proposed_trade.model_dump(mode="json"),
                "failures": [f.model_dump(mode="json") for f in signal.failures],
            },
            signal.verdict,
        )

    async def _persist_alerts(self, strategy: Strategy, verdict: RiskVerdict, symbol: str) -> None:
        for alert in self.validator.build_alerts(strategy.id, verdict, symbol):
            await self.store.create_risk_alert(alert)

    async def _audit(
        self,
        strategy: Strategy,
        event_type: str,
        data: dict[str, Any],
        verdict: Optional[RiskVerdict] = None,
    ) -> None:
        await self.store.create_audit_log(AuditLog(
            strategy_id=strategy.id,
            user_id=strategy.user_id,
            event_type=event_type,
            event_data=data,
            risk_checks=[c.model_dump(mode="json") for c in verdict.checks] if verdict else [],
        ))
