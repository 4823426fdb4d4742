"""
AI Package for Agent Trader.

Inference client, prompts, role reports, response parsing, role invocation
and the four-phase orchestrator.
"""

from agent_trader.ai.reports import (
    RoleKind,
    ANALYST_ROLES,
    RESEARCH_ROLES,
    FailureCause,
    RoleFailure,
    TechnicalReport,
    FundamentalReport,
    SentimentReport,
    BullReport,
    BearReport,
    TraderReport,
    RiskManagerReport,
    RoleReport,
    REPORT_MODELS,
    placeholder_report,
    TradingSignal,
)
from agent_trader.ai.llm_client import (
    ChatMessage,
    ChatCompletion,
    UsageStats,
    InferenceClient,
    OpenRouterClient,
)
from agent_trader.ai.prompts import PromptTemplate, PromptManager
from agent_trader.ai.response_parser import ResponseParser, extract_json_object, coerce_fields
from agent_trader.ai.role_invoker import RoleInvoker
from agent_trader.ai.orchestrator import AgentOrchestrator


__all__ = [
    "RoleKind",
    "ANALYST_ROLES",
    "RESEARCH_ROLES",
    "FailureCause",
    "RoleFailure",
    "TechnicalReport",
    "FundamentalReport",
    "SentimentReport",
    "BullReport",
    "BearReport",
    "TraderReport",
    "RiskManagerReport",
    "RoleReport",
    "REPORT_MODELS",
    "placeholder_report",
    "TradingSignal",
    "ChatMessage",
    "ChatCompletion",
    "UsageStats",
    "InferenceClient",
    "OpenRouterClient",
    "PromptTemplate",
    "PromptManager",
    "ResponseParser",
    "extract_json_object",
    "coerce_fields",
    "RoleInvoker",
    "AgentOrchestrator",
]
