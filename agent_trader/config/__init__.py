"""
Configuration Package for Agent Trader.
"""

from agent_trader.config.settings import (
    Environment,
    LogLevel,
    InferenceSettings,
    LoopSettings,
    RiskSettings,
    StorageSettings,
    BrokerSettings,
    Settings,
    get_settings,
    reload_settings,
)
from agent_trader.config.logging_config import (
    LogFormat,
    LogDestination,
    LoggingConfig,
    ColorizedFormatter,
    JSONFormatter,
    setup_logging,
)


__all__ = [
    "Environment",
    "LogLevel",
    "InferenceSettings",
    "LoopSettings",
    "RiskSettings",
    "StorageSettings",
    "BrokerSettings",
    "Settings",
    "get_settings",
    "reload_settings",
    "LogFormat",
    "LogDestination",
    "LoggingConfig",
    "ColorizedFormatter",
    "JSONFormatter",
    "setup_logging",
]
