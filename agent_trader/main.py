"""
Command line entry point for Agent Trader.

    agent-trader run                               resume active strategies and run until interrupted
    agent-trader analyze --strategy ID --symbol SYM   one analysis, printed as JSON
    agent-trader create-strategy --name N --symbol SYM   create a strategy and print its id
"""

import argparse
import asyncio
import json
import logging
import sys
from contextlib import AsyncExitStack
from typing import Optional, Sequence

from agent_trader.ai.llm_client import OpenRouterClient
from agent_trader.ai.orchestrator import AgentOrchestrator
from agent_trader.ai.role_invoker import RoleInvoker
from agent_trader.config.logging_config import LogDestination, LogFormat, LoggingConfig, setup_logging
from agent_trader.config.settings import Settings, get_settings
from agent_trader.core.models import RiskLevel, Strategy
from agent_trader.core.trading_service import TradingService
from agent_trader.data.market_data import YahooFinanceProvider
from agent_trader.data.storage import SQLiteStore
from agent_trader.execution.broker import PaperBroker
from agent_trader.risk.position_sizer import PositionSizer, PositionSizerConfig
from agent_trader.risk.stop_loss import TrailingStopConfig
from agent_trader.risk.validator import RiskValidator, RiskValidatorConfig
from agent_trader.utils.exceptions import ConfigurationError, TradingBotException


logger = logging.getLogger("agent_trader.main")


def build_risk_components(settings: Settings) -> tuple[RiskValidator, PositionSizer]:
    """Validator and sizer configured from the risk settings."""
    risk = settings.risk
    validator = RiskValidator(RiskValidatorConfig(
        max_open_positions=risk.max_open_positions,
        warning_ratio=risk.warning_ratio,
        min_confidence=risk.min_confidence,
        trailing=TrailingStopConfig(
            atr_multiplier=risk.atr_stop_multiplier,
            floor_pct=risk.trailing_floor_pct,
        ),
    ))
    sizer = PositionSizer(PositionSizerConfig(
        risk_per_trade_pct=risk.risk_per_trade_pct,
        atr_multiplier=risk.atr_stop_multiplier,
        reward_risk_ratio=risk.reward_risk_ratio,
    ))
    return validator, sizer


async def build_service(settings: Settings, stack: AsyncExitStack) -> TradingService:
    """Wire the production adapters; each is closed when ``stack`` unwinds."""
    if not settings.inference.is_configured:
        raise ConfigurationError("AGENT_TRADER_INFERENCE__API_KEY is not set")

    store = await stack.enter_async_context(
        SQLiteStore(settings.storage.sqlite_path, wal_mode=settings.storage.wal_mode)
    )
    market_data = await stack.enter_async_context(YahooFinanceProvider())
    client = await stack.enter_async_context(OpenRouterClient(settings.inference))

    validator, sizer = build_risk_components(settings)
    orchestrator = AgentOrchestrator(
        RoleInvoker(client, default_timeout=settings.loop.role_timeout_seconds),
        validator=validator,
        sizer=sizer,
        role_timeout=settings.loop.role_timeout_seconds,
    )
    broker = PaperBroker(initial_cash=settings.broker.initial_cash)
    return TradingService(store, market_data, broker, orchestrator, settings)


async def _run(settings: Settings) -> int:
    async with AsyncExitStack() as stack:
        service = await build_service(settings, stack)
        resumed = await service.loops.recover(service.store)
        logger.info(f"Agent Trader running with {len(resumed)} strategies; Ctrl+C to stop")
        try:
            await asyncio.Event().wait()
        finally:
            await service.loops.shutdown()
    return 0


async def _analyze(settings: Settings, strategy_id: str, symbol: Optional[str]) -> int:
    async with AsyncExitStack() as stack:
        service = await build_service(settings, stack)
        signal = await service.run_analysis(strategy_id, symbol)
    print(json.dumps(signal.model_dump(mode="json"), indent=2))
    return 0


async def _create_strategy(settings: Settings, args: argparse.Namespace) -> int:
    async with SQLiteStore(settings.storage.sqlite_path, wal_mode=settings.storage.wal_mode) as store:
        strategy = await store.create_strategy(Strategy(
            name=args.name,
            symbol=args.symbol.upper(),
            risk_level=RiskLevel(args.risk_level),
            max_position_size_pct=args.max_position_size,
            stop_loss_pct=args.stop_loss,
            daily_loss_limit_pct=args.daily_loss_limit,
            account_value=args.account_value,
            interval_seconds=args.interval,
            is_active=args.active,
        ))
    print(strategy.id)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agent-trader", description="Multi-agent LLM trading loop")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Resume active strategies and run until interrupted")

    analyze = sub.add_parser("analyze", help="Run one analysis and print the signal")
    analyze.add_argument("--strategy", required=True, help="Strategy id")
    analyze.add_argument("--symbol", default=None, help="Symbol (defaults to the strategy's)")

    create = sub.add_parser("create-strategy", help="Create a strategy")
    create.add_argument("--name", required=True)
    create.add_argument("--symbol", required=True)
    create.add_argument("--risk-level", choices=[r.value for r in RiskLevel], default="medium")
    create.add_argument("--max-position-size", type=float, default=2.0, help="Percent of account")
    create.add_argument("--stop-loss", type=float, default=2.0, help="Percent of price")
    create.add_argument("--daily-loss-limit", type=float, default=10.0, help="Percent of account")
    create.add_argument("--account-value", type=float, default=None)
    create.add_argument("--interval", type=float, default=None, help="Loop interval seconds")
    create.add_argument("--active", action="store_true", help="Resume on the next run")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    setup_logging(LoggingConfig(
        level=(args.log_level or settings.log_level.value).upper(),
        format=LogFormat.JSON if (args.json_logs or settings.log_json) else LogFormat.DETAILED,
        destination=LogDestination.BOTH if args.command == "run" else LogDestination.CONSOLE,
        log_dir=settings.logs_dir,
    ))

    try:
        if args.command == "run":
            return asyncio.run(_run(settings))
        if args.command == "analyze":
            return asyncio.run(_analyze(settings, args.strategy, args.symbol))
        return asyncio.run(_create_strategy(settings, args))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 0
    except TradingBotException as e:
        logger.error(f"{type(e).__name__}: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
