"""
Risk Package for Agent Trader.
"""

from agent_trader.risk.position_sizer import PositionSizer, PositionSizerConfig, PositionSizeResult
from agent_trader.risk.stop_loss import (
    ExitReason,
    StopLossUpdate,
    TrailingStopConfig,
    calculate_trailing_stop,
    trailing_stop_update,
    should_close_position,
)
from agent_trader.risk.validator import RiskValidator, RiskValidatorConfig


__all__ = [
    "PositionSizer",
    "PositionSizerConfig",
    "PositionSizeResult",
    "ExitReason",
    "StopLossUpdate",
    "TrailingStopConfig",
    "calculate_trailing_stop",
    "trailing_stop_update",
    "should_close_position",
    "RiskValidator",
    "RiskValidatorConfig",
]
