"""
Prompt Manager Module for Agent Trader.

Per-role prompt templates. Each role gets a system prompt, the JSON schema
of its report model, and a user prompt rendered from the analysis context
plus whatever upstream reports the role receives.
"""

import json
import logging
from string import Template
from typing import Any, Mapping, Optional

from pydantic import BaseModel

from agent_trader.ai.llm_client import ChatMessage
from agent_trader.ai.reports import REPORT_MODELS, RoleKind
from agent_trader.core.models import AnalysisContext, ProposedTrade


logger = logging.getLogger(__name__)


class PromptTemplate(BaseModel):
    """Prompt template model."""

    role: RoleKind
    system_prompt: str
    template: str

    def render(self, **kwargs: Any) -> str:
        """Render template with variables."""
        return Template(self.template).safe_substitute(**kwargs)


SYSTEM_PROMPTS: dict[RoleKind, str] = {
    RoleKind.TECHNICAL: (
        "You are an expert technical analyst. Analyze price charts, technical "
        "indicators, and market patterns to provide trading insights."
    ),
    RoleKind.FUNDAMENTAL: (
        "You are an expert fundamental analyst. Evaluate market conditions, sector "
        "outlook, and economic indicators to assess investment value."
    ),
    RoleKind.SENTIMENT: (
        "You are an expert sentiment analyst. Gauge news flow, social media mood and "
        "investor psychology. Scores run from -1.0 (very bearish) to 1.0 (very bullish)."
    ),
    RoleKind.BULL: (
        "You are a bull researcher. Find and present the strongest bullish arguments "
        "for the trade. Be optimistic but evidence-based."
    ),
    RoleKind.BEAR: (
        "You are a bear researcher. Find and present the strongest bearish arguments "
        "against the trade. Be skeptical but evidence-based."
    ),
    RoleKind.TRADER: (
        "You are the lead trader. Synthesize every analyst report and the research "
        "debate into one final decision. Consider risk, opportunity, and market conditions."
    ),
    RoleKind.RISK_MANAGER: (
        "You are a risk manager with veto authority. Evaluate trades for position "
        "limits, stop-loss adequacy, and portfolio concentration. Reject trades that "
        "violate risk parameters."
    ),
}


_INDICATOR_BLOCK = """Current price: $$${price}
RSI(14): ${rsi}
MACD: ${macd} (signal ${macd_signal}, histogram ${macd_histogram})
Bollinger Bands: upper ${bb_upper}, middle ${bb_middle}, lower ${bb_lower}
SMA20: ${sma20}, SMA50: ${sma50}
EMA12: ${ema12}, EMA26: ${ema26}
ATR(14): ${atr}
Recent closes: ${recent_closes}"""


DEFAULT_TEMPLATES: dict[RoleKind, str] = {
    RoleKind.TECHNICAL: "Analyze the technical picture for ${symbol}.\n\n" + _INDICATOR_BLOCK + """

Provide a buy/sell/hold recommendation, a confidence between 0 and 1,
a reading of each indicator, your reasoning and the key technical points.""",

    RoleKind.FUNDAMENTAL: """Provide fundamental analysis for ${symbol} at $$${price}.

Consider current market conditions, sector outlook, economic indicators and
valuation. Give a buy/sell/hold recommendation with confidence and key factors.""",

    RoleKind.SENTIMENT: """Analyze market sentiment for ${symbol} at $$${price}.

Consider recent news, social media trends, market momentum and fear/greed.
Classify sentiment as bullish, bearish or neutral, score it, and recommend
buy/sell/hold with a confidence level.""",

    RoleKind.BULL: """Build the strongest bull case for ${symbol} at $$${price}.

ANALYST REPORTS:
${analyst_summary}

Provide your strongest bullish arguments, supporting evidence, likely
counterarguments, a conclusion and the overall bull case strength (0-1).""",

    RoleKind.BEAR: """Build the strongest bear case against ${symbol} at $$${price}.

ANALYST REPORTS:
${analyst_summary}

Provide your strongest bearish arguments, supporting evidence, likely
counterarguments, a conclusion and the overall bear case strength (0-1).""",

    RoleKind.TRADER: """Make the final trading decision for ${symbol} at $$${price}.

ANALYST REPORTS:
${analyst_summary}

RESEARCH DEBATE:
${research_summary}

STRATEGY PARAMETERS:
- Risk level: ${risk_level}
- Max position size: ${max_position_size_pct}% of portfolio
- Stop loss: ${stop_loss_pct}%
- ATR(14): ${atr}

Return an action (buy/sell/hold), confidence, reasoning, a synthesis of all
inputs and a risk assessment. When trading, you may add targetPrice, stopLoss
(absolute price) and positionSize (percent of portfolio).""",

    RoleKind.RISK_MANAGER: """Review this proposed trade for ${symbol} with veto authority.

PROPOSED TRADE:
${trade_summary}

TRADER REASONING:
${trader_reasoning}

RISK PARAMETERS:
- Risk level: ${risk_level}
- Max position size: ${max_position_size_pct}%
- Stop loss: ${stop_loss_pct}%
- Daily loss limit: ${daily_loss_limit_pct}%

PORTFOLIO:
- Total value: $$${total_value}
- Available cash: $$${available_cash}
- Open positions: ${open_positions}
- P&L today: $$${daily_pnl}

Evaluate position size, stop-loss adequacy and concentration risk, give a
risk score (0-1), and APPROVE or VETO with reasoning.""",
}


class PromptManager:
    """
    Renders chat messages for a pipeline role.

    The system message carries the role persona followed by the JSON schema
    the reply must match.
    """

    def __init__(self, templates: Optional[Mapping[RoleKind, str]] = None) -> None:
        self._templates: dict[RoleKind, PromptTemplate] = {}
        for role, template in {**DEFAULT_TEMPLATES, **(templates or {})}.items():
            self._templates[role] = PromptTemplate(
                role=role,
                system_prompt=SYSTEM_PROMPTS[role],
                template=template,
            )
        self._schemas = {
            role: json.dumps(model.model_json_schema(by_alias=True), indent=2)
            for role, model in REPORT_MODELS.items()
        }

    def build_messages(
        self,
        role: RoleKind,
        context: AnalysisContext,
        inputs: Optional[Mapping[str, Any]] = None,
    ) -> list[ChatMessage]:
        """
        Build the message list for one role invocation.

        Args:
            role: Role being invoked
            context: Analysis context for this run
            inputs: Upstream reports keyed by role value, plus "proposed_trade"
                for the risk manager

        Returns:
            System and user messages
        """
        template = self._templates[role]
        variables = self._variables(context, inputs or {})
        system = (
            f"{template.system_prompt}\n\n"
            f"You MUST respond with a single valid JSON object matching this schema:\n"
            f"{self._schemas[role]}"
        )
        return [
            ChatMessage(role="system", content=system),
            ChatMessage(role="user", content=template.render(**variables)),
        ]

    def _variables(self, context: AnalysisContext, inputs: Mapping[str, Any]) -> dict[str, Any]:
        ind = context.indicators
        closes = ", ".join(f"{c:.2f}" for c in context.recent_closes[-20:]) or "n/a"
        variables: dict[str, Any] = {
            "symbol": context.symbol,
            "price": f"{context.current_price:.2f}",
            "rsi": f"{ind.rsi:.2f}",
            "macd": f"{ind.macd:.4f}",
            "macd_signal": f"{ind.macd_signal:.4f}",
            "macd_histogram": f"{ind.macd_histogram:.4f}",
            "bb_upper": f"{ind.bollinger_upper:.2f}",
            "bb_middle": f"{ind.bollinger_middle:.2f}",
            "bb_lower": f"{ind.bollinger_lower:.2f}",
            "sma20": f"{ind.sma20:.2f}",
            "sma50": f"{ind.sma50:.2f}",
            "ema12": f"{ind.ema12:.2f}",
            "ema26": f"{ind.ema26:.2f}",
            "atr": f"{ind.atr:.4f}",
            "recent_closes": closes,
            "risk_level": context.risk.risk_level.value,
            "max_position_size_pct": context.risk.max_position_size_pct,
            "stop_loss_pct": context.risk.stop_loss_pct,
            "daily_loss_limit_pct": context.risk.daily_loss_limit_pct,
            "total_value": f"{context.portfolio.total_value:,.2f}",
            "available_cash": f"{context.portfolio.available_cash:,.2f}",
            "open_positions": context.portfolio.open_positions,
            "daily_pnl": f"{context.portfolio.daily_pnl:,.2f}",
            "analyst_summary": self._summarize(inputs, ("technical", "fundamental", "sentiment")),
            "research_summary": self._summarize(inputs, ("bull", "bear")),
            "trader_reasoning": "n/a",
            "trade_summary": "n/a",
        }

        trader = inputs.get(RoleKind.TRADER.value)
        if trader is not None:
            variables["trader_reasoning"] = trader.reasoning or "n/a"

        trade = inputs.get("proposed_trade")
        if isinstance(trade, ProposedTrade):
            variables["trade_summary"] = self.format_trade(trade, context.portfolio.total_value)

        return variables

    @staticmethod
    def _summarize(inputs: Mapping[str, Any], roles: tuple[str, ...]) -> str:
        lines = []
        for role in roles:
            report = inputs.get(role)
            if report is None:
                continue
            lines.append(
                f"- {role.title()}: {report.recommendation.value} "
                f"(confidence {report.confidence:.2f})"
            )
            if report.reasoning:
                lines.append(f"  {report.reasoning}")
            arguments = getattr(report, "arguments", None)
            if arguments:
                lines.append(f"  Arguments: {'; '.join(arguments)}")
        return "\n".join(lines) or "n/a"

    @staticmethod
    def format_trade(trade: ProposedTrade, total_value: float) -> str:
        """Human-readable summary of a proposed trade."""
        if trade.is_hold:
            return "- Action: hold (no order)"
        size_pct = trade.position_value / total_value * 100 if total_value > 0 else 0.0
        stop = f"{trade.stop_loss:.2f}" if trade.stop_loss is not None else "not set"
        target = f"{trade.take_profit:.2f}" if trade.take_profit is not None else "not set"
        return (
            f"- Action: {trade.action.value} ({trade.side.value if trade.side else 'n/a'})\n"
            f"- Quantity: {trade.quantity:g} @ ${trade.entry_price:.2f}\n"
            f"- Position value: ${trade.position_value:,.2f} ({size_pct:.2f}% of portfolio)\n"
            f"- Stop loss: {stop}\n"
            f"- Take profit: {target}\n"
            f"- Confidence: {trade.confidence:.2f}"
        )
