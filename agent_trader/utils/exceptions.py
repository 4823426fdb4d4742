"""
Custom Exceptions Module for Agent Trader.

This module defines the exceptions raised across the orchestration pipeline,
the loop manager and the external adapters.
"""

from typing import Any, Dict, Optional
from enum import IntEnum
import logging


logger = logging.getLogger(__name__)


class ErrorCode(IntEnum):
    """Error code enumeration for all exceptions."""

    # General errors (1xxx)
    UNKNOWN = 1000
    CONFIGURATION = 1001
    TIMEOUT = 1004
    NOT_FOUND = 1005

    # Data errors (2xxx)
    DATA_FETCH = 2000
    DATA_PARSE = 2001
    DATA_MISSING = 2002

    # Trading errors (3xxx)
    ORDER_SUBMISSION = 3001

    # API errors (4xxx)
    API_CONNECTION = 4000
    API_AUTHENTICATION = 4001
    API_RATE_LIMIT = 4003
    API_TIMEOUT = 4004
    API_RESPONSE = 4005

    # AI errors (5xxx)
    AI_REQUEST = 5000
    AI_RESPONSE = 5001
    AI_BUDGET_EXCEEDED = 5002

    # Database errors (6xxx)
    DB_CONNECTION = 6000
    DB_QUERY = 6001
    DB_WRITE = 6002

    # Strategy errors (8xxx)
    STRATEGY_EXECUTION = 8001
    STRATEGY_NOT_FOUND = 8003
    STRATEGY_ALREADY_RUNNING = 8010
    STRATEGY_NOT_RUNNING = 8011


class TradingBotException(Exception):
    """
    Root of the agent trader exceptions.

    Carries an ErrorCode, free-form details for logs and audit entries, and
    the lower-level exception it wraps, if any.
    """

    error_code: ErrorCode = ErrorCode.UNKNOWN
    default_message: str = "An unknown error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ) -> None:
        self.message = message or self.default_message
        self.error_code = error_code or self.__class__.error_code
        self.details = details or {}
        self.cause = cause

        full_message = f"[{self.error_code.name}:{self.error_code.value}] {self.message}"
        if self.details:
            full_message += f" | Details: {self.details}"

        super().__init__(full_message)

        logger.debug(
            f"Exception raised: {self.__class__.__name__}",
            extra={
                "error_code": self.error_code.value,
                "details": self.details,
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialisable form used in ActionResult payloads and logs."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value,
            "error_name": self.error_code.name,
            "message": self.message,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(TradingBotException):
    """Raised when there's a configuration error."""
    error_code = ErrorCode.CONFIGURATION
    default_message = "Configuration error"


# =============================================================================
# DATA EXCEPTIONS
# =============================================================================

class DataError(TradingBotException):
    """Base class for data-related errors."""
    error_code = ErrorCode.DATA_FETCH
    default_message = "Data error"


class DataFetchError(DataError):
    """Raised when market data cannot be fetched."""
    error_code = ErrorCode.DATA_FETCH
    default_message = "Failed to fetch data"


class DataMissingError(DataError):
    """Raised when there are not enough bars to compute indicators."""
    error_code = ErrorCode.DATA_MISSING
    default_message = "Required data is missing"


# =============================================================================
# TRADING EXCEPTIONS
# =============================================================================

class ExecutionError(TradingBotException):
    """Raised when the broker cannot accept an order request."""
    error_code = ErrorCode.ORDER_SUBMISSION
    default_message = "Failed to submit order"


# =============================================================================
# API / INFERENCE EXCEPTIONS
# =============================================================================

class APIError(TradingBotException):
    """Base class for API-related errors."""
    error_code = ErrorCode.API_CONNECTION
    default_message = "API error"


class APIConnectionError(APIError):
    """Raised when connection to an API fails."""
    error_code = ErrorCode.API_CONNECTION
    default_message = "Failed to connect to API"


class APIAuthenticationError(APIError):
    """Raised when API authentication fails."""
    error_code = ErrorCode.API_AUTHENTICATION
    default_message = "API authentication failed"


class APIRateLimitError(APIError):
    """Raised when the remote API rate limit is hit."""
    error_code = ErrorCode.API_RATE_LIMIT
    default_message = "API rate limit exceeded"

    def __init__(
        self,
        message: Optional[str] = None,
        retry_after: Optional[float] = None,
        **kwargs: Any
    ) -> None:
        self.retry_after = retry_after
        details = kwargs.pop("details", {}) or {}
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(message, details=details, **kwargs)


class APIResponseError(APIError):
    """Raised when an API answers with an unusable payload."""
    error_code = ErrorCode.API_RESPONSE
    default_message = "Invalid API response"


class InferenceError(APIError):
    """Transport-level failure talking to the inference service."""
    error_code = ErrorCode.AI_REQUEST
    default_message = "Inference request failed"


class AIBudgetExceededError(InferenceError):
    """Raised when the daily inference budget is spent."""
    error_code = ErrorCode.AI_BUDGET_EXCEEDED
    default_message = "AI budget exceeded"


# =============================================================================
# PERSISTENCE EXCEPTIONS
# =============================================================================

class PersistenceError(TradingBotException):
    """Base class for store errors."""
    error_code = ErrorCode.DB_QUERY
    default_message = "Persistence error"


class DatabaseConnectionError(PersistenceError):
    """Raised when the store is used before it is connected."""
    error_code = ErrorCode.DB_CONNECTION
    default_message = "Failed to connect to database"


class DatabaseWriteError(PersistenceError):
    """Raised when a write fails."""
    error_code = ErrorCode.DB_WRITE
    default_message = "Database write failed"


# =============================================================================
# STRATEGY / SCHEDULING EXCEPTIONS
# =============================================================================

class StrategyError(TradingBotException):
    """Base class for strategy-related errors."""
    error_code = ErrorCode.STRATEGY_EXECUTION
    default_message = "Strategy error"


class StrategyNotFoundError(StrategyError):
    """Raised when a strategy id is unknown to the store."""
    error_code = ErrorCode.STRATEGY_NOT_FOUND
    default_message = "Strategy not found"


class CycleError(StrategyError):
    """Wraps an exception that escaped one trading-cycle tick."""
    error_code = ErrorCode.STRATEGY_EXECUTION
    default_message = "Trading cycle failed"


class SchedulingError(StrategyError):
    """Base class for loop registry errors."""
    error_code = ErrorCode.STRATEGY_EXECUTION
    default_message = "Scheduling error"


class AlreadyRunningError(SchedulingError):
    """Raised when start is called for a strategy that already has a loop."""
    error_code = ErrorCode.STRATEGY_ALREADY_RUNNING
    default_message = "Trading loop already running"


class NotRunningError(SchedulingError):
    """Raised when stop is called for a strategy without a loop."""
    error_code = ErrorCode.STRATEGY_NOT_RUNNING
    default_message = "Trading loop not running"
