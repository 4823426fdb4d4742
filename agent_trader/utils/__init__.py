"""
Utilities Package for Agent Trader.

Exceptions, decorators, and small helpers shared across the project.
"""

from agent_trader.utils.exceptions import (
    ErrorCode,
    TradingBotException,
    ConfigurationError,
    DataError,
    DataFetchError,
    DataMissingError,
    ExecutionError,
    APIError,
    APIConnectionError,
    APIAuthenticationError,
    APIRateLimitError,
    APIResponseError,
    InferenceError,
    AIBudgetExceededError,
    PersistenceError,
    DatabaseConnectionError,
    DatabaseWriteError,
    StrategyError,
    StrategyNotFoundError,
    CycleError,
    SchedulingError,
    AlreadyRunningError,
    NotRunningError,
)
from agent_trader.utils.decorators import async_retry, async_timer
from agent_trader.utils.helpers import (
    generate_uuid,
    truncate,
    clamp,
    is_finite_number,
    safe_json_loads,
    safe_json_dumps,
)
from agent_trader.utils.date_utils import (
    UTC,
    now_utc,
    start_of_day_utc,
    seconds_between,
    add_seconds,
)


__all__ = [
    "ErrorCode",
    "TradingBotException",
    "ConfigurationError",
    "DataError",
    "DataFetchError",
    "DataMissingError",
    "ExecutionError",
    "APIError",
    "APIConnectionError",
    "APIAuthenticationError",
    "APIRateLimitError",
    "APIResponseError",
    "InferenceError",
    "AIBudgetExceededError",
    "PersistenceError",
    "DatabaseConnectionError",
    "DatabaseWriteError",
    "StrategyError",
    "StrategyNotFoundError",
    "CycleError",
    "SchedulingError",
    "AlreadyRunningError",
    "NotRunningError",
    "async_retry",
    "async_timer",
    "generate_uuid",
    "truncate",
    "clamp",
    "is_finite_number",
    "safe_json_loads",
    "safe_json_dumps",
    "UTC",
    "now_utc",
    "start_of_day_utc",
    "seconds_between",
    "add_seconds",
]
