"""
Execution Package for Agent Trader.
"""

from agent_trader.execution.broker import AccountInfo, Broker, BrokerPosition, PaperBroker


__all__ = [
    "AccountInfo",
    "Broker",
    "BrokerPosition",
    "PaperBroker",
]
