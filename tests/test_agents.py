import asyncio

from agent_trader.ai.reports import (
    FailureCause,
    RoleFailure,
    RoleKind,
    TechnicalReport,
    TraderReport,
)
from agent_trader.ai.response_parser import ResponseParser, extract_json_object
from agent_trader.ai.role_invoker import RoleInvoker
from agent_trader.core.models import Position, PositionSide, TradeAction
from agent_trader.utils.exceptions import InferenceError


def test_parser_accepts_fenced_json():
    raw = 'Here you go:\n```json\n{"recommendation": "buy", "confidence": 0.8, "reasoning": "ok"}\n```'
    report = ResponseParser().parse(RoleKind.TECHNICAL, raw)
    assert isinstance(report, TechnicalReport)
    assert report.recommendation == TradeAction.BUY


def test_parser_repairs_wrapped_object_with_trailing_comma():
    raw = 'Decision follows {"action": "sell", "confidence": 0.6, "reasoning": "weak",} thanks'
    parser = ResponseParser()
    report = parser.parse(RoleKind.TRADER, raw)
    assert isinstance(report, TraderReport)
    assert report.action == TradeAction.SELL
    assert parser.get_stats()["repaired"] == 1


def test_parser_clamps_and_lowercases():
    report = ResponseParser().parse(RoleKind.TECHNICAL, '{"recommendation": "BUY", "confidence": 1.2}')
    assert report.recommendation == TradeAction.BUY
    assert report.confidence == 1.0


def test_parser_forces_invoked_role():
    report = ResponseParser().parse(RoleKind.TECHNICAL, '{"role": "bear", "recommendation": "hold"}')
    assert isinstance(report, TechnicalReport)


def test_parser_gives_up_after_one_repair():
    result = ResponseParser().parse(RoleKind.SENTIMENT, "I think the market is bullish.")
    assert isinstance(result, RoleFailure)
    assert result.cause == FailureCause.MALFORMED_OUTPUT


def test_extract_json_object_without_object():
    assert extract_json_object("no json here") is None


def test_invoker_timeout(client_factory, context_factory):
    client = client_factory(delays={RoleKind.TECHNICAL: 1.0})
    result = asyncio.run(RoleInvoker(client).invoke(RoleKind.TECHNICAL, context_factory(), timeout=0.05))
    assert isinstance(result, RoleFailure)
    assert result.cause == FailureCause.TIMEOUT


def test_invoker_transport_errors(client_factory, context_factory):
    client = client_factory({
        RoleKind.TECHNICAL: InferenceError("HTTP 500"),
        RoleKind.FUNDAMENTAL: RuntimeError("socket closed"),
    })
    invoker = RoleInvoker(client)

    async def run():
        return await asyncio.gather(
            invoker.invoke(RoleKind.TECHNICAL, context_factory()),
            invoker.invoke(RoleKind.FUNDAMENTAL, context_factory()),
        )

    for result in asyncio.run(run()):
        assert isinstance(result, RoleFailure)
        assert result.cause == FailureCause.TRANSPORT_ERROR


def test_invoker_rejects_non_text_reply(client_factory, context_factory):
    client = client_factory()

    async def invoke_model(role, messages):
        return None

    client.invoke_model = invoke_model
    result = asyncio.run(RoleInvoker(client).invoke(RoleKind.TECHNICAL, context_factory()))
    assert result.cause == FailureCause.MALFORMED_OUTPUT


def test_pipeline_buy(fake_client, orchestrator_factory, context_factory):
    signal = asyncio.run(orchestrator_factory(fake_client).analyze_and_decide(context_factory()))

    assert signal.action == TradeAction.BUY
    assert signal.confidence == 0.75
    assert not signal.vetoed
    assert signal.failures == []
    assert set(signal.reports) == set(RoleKind)
    assert signal.proposed_trade.quantity == 50
    assert signal.proposed_trade.stop_loss == 96.0
    assert signal.is_actionable


def test_pipeline_phase_order(fake_client, orchestrator_factory, context_factory):
    asyncio.run(orchestrator_factory(fake_client).analyze_and_decide(context_factory()))
    calls = fake_client.calls
    assert set(calls[:3]) == {RoleKind.TECHNICAL, RoleKind.FUNDAMENTAL, RoleKind.SENTIMENT}
    assert set(calls[3:5]) == {RoleKind.BULL, RoleKind.BEAR}
    assert calls[5:] == [RoleKind.TRADER, RoleKind.RISK_MANAGER]


def test_all_roles_failing_yields_hold(client_factory, orchestrator_factory, context_factory):
    client = client_factory({role: InferenceError("down") for role in RoleKind})
    signal = asyncio.run(orchestrator_factory(client).analyze_and_decide(context_factory()))

    assert signal.action == TradeAction.HOLD
    assert signal.confidence == 0.0
    assert len(signal.failures) == 7
    assert all(report.placeholder for report in signal.reports.values())
    assert signal.report(RoleKind.BULL).strength == 0.0
    assert signal.verdict.approved
    assert any("Risk manager review unavailable" in w for w in signal.verdict.warnings)


def test_failed_analyst_gets_placeholder(client_factory, orchestrator_factory, context_factory):
    client = client_factory({RoleKind.SENTIMENT: "not json"})
    signal = asyncio.run(orchestrator_factory(client).analyze_and_decide(context_factory()))

    sentiment = signal.report(RoleKind.SENTIMENT)
    assert sentiment.placeholder
    assert sentiment.recommendation == TradeAction.HOLD
    assert sentiment.confidence == 0.0
    assert signal.action == TradeAction.BUY


def test_validator_veto_forces_hold(client_factory, orchestrator_factory, context_factory):
    trader = {"action": "buy", "confidence": 0.9, "reasoning": "All in", "positionSize": 8}
    client = client_factory({RoleKind.TRADER: trader})
    signal = asyncio.run(orchestrator_factory(client).analyze_and_decide(context_factory(max_position_size_pct=5.0)))

    assert signal.action == TradeAction.HOLD
    assert signal.vetoed
    assert not signal.verdict.approved
    assert signal.confidence == 0.9
    assert "Vetoed" in signal.reasoning
    assert not signal.is_actionable


def test_risk_manager_veto_forces_hold(client_factory, orchestrator_factory, context_factory):
    client = client_factory({
        RoleKind.RISK_MANAGER: {"approved": False, "riskScore": 0.9, "violations": ["Earnings tomorrow"]},
    })
    signal = asyncio.run(orchestrator_factory(client).analyze_and_decide(context_factory()))

    assert signal.action == TradeAction.HOLD
    assert signal.vetoed
    assert "Earnings tomorrow" in signal.reasoning


def test_completion_order_does_not_change_result(client_factory, orchestrator_factory, context_factory):
    slow_technical = client_factory(delays={RoleKind.TECHNICAL: 0.05, RoleKind.BULL: 0.05})
    slow_sentiment = client_factory(delays={RoleKind.SENTIMENT: 0.05, RoleKind.BEAR: 0.05})

    first = asyncio.run(orchestrator_factory(slow_technical).analyze_and_decide(context_factory()))
    second = asyncio.run(orchestrator_factory(slow_sentiment).analyze_and_decide(context_factory()))

    assert first.action == second.action
    assert first.reports == second.reports
    assert first.proposed_trade == second.proposed_trade


def test_sell_against_open_long_closes_it(client_factory, orchestrator_factory, context_factory):
    client = client_factory({RoleKind.TRADER: {"action": "sell", "confidence": 0.8, "reasoning": "Take profit"}})
    position = Position(
        strategy_id="strategy-1",
        symbol="AAPL",
        side=PositionSide.LONG,
        quantity=30,
        entry_price=90.0,
        current_price=100.0,
    )
    signal = asyncio.run(
        orchestrator_factory(client).analyze_and_decide(context_factory(open_positions=1), [position])
    )

    trade = signal.proposed_trade
    assert trade.reduce_only
    assert trade.side == PositionSide.LONG
    assert trade.quantity == 30
    assert signal.action == TradeAction.SELL


def test_non_finite_price_is_not_sized(orchestrator_factory, context_factory):
    orchestrator = orchestrator_factory(None)
    context = context_factory(price=float("nan"))
    decision = TraderReport(recommendation=TradeAction.BUY, confidence=0.9, reasoning="Breakout")

    trade = orchestrator.build_trade(decision, context)
    verdict = orchestrator.validator.validate(trade, context)

    assert trade.quantity == 0
    assert trade.side == PositionSide.LONG
    assert not verdict.approved
    assert any("Invalid entry price" in v for v in verdict.violations)
