"""
Stop Loss Module for Agent Trader.

ATR trailing stops for open positions and the stop-loss / take-profit exit
check run at the start of every trading cycle.
"""

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from agent_trader.core.models import Position, PositionSide


logger = logging.getLogger(__name__)


class ExitReason(str, Enum):
    """Why a position should be closed."""

    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"


class StopLossUpdate(BaseModel):
    """A favourable move of a position's stop."""

    position_id: str
    symbol: str
    side: PositionSide
    previous_stop: Optional[float] = None
    new_stop: float
    price: float


class TrailingStopConfig(BaseModel):
    """Configuration for trailing stops."""

    atr_multiplier: float = Field(default=2.0, ge=0.5, le=5.0)
    floor_pct: float = Field(default=2.0, ge=0.0, le=20.0)


def calculate_trailing_stop(
    position: Position,
    price: float,
    atr: float,
    config: Optional[TrailingStopConfig] = None,
) -> float:
    """
    Candidate stop for a position at the current price.

    Long: max(price - ATR x mult, current stop, entry x (1 - floor)).
    Short: min(price + ATR x mult, current stop, entry x (1 + floor)).

    Args:
        position: Open position
        price: Current price
        atr: Average true range
        config: Trailing configuration

    Returns:
        Candidate stop price
    """
    config = config or TrailingStopConfig()
    distance = atr * config.atr_multiplier
    floor = config.floor_pct / 100

    if position.side == PositionSide.LONG:
        candidates = [price - distance, position.entry_price * (1 - floor)]
        if position.stop_loss is not None:
            candidates.append(position.stop_loss)
        return max(candidates)

    candidates = [price + distance, position.entry_price * (1 + floor)]
    if position.stop_loss is not None:
        candidates.append(position.stop_loss)
    return min(candidates)


def trailing_stop_update(
    position: Position,
    price: float,
    atr: float,
    config: Optional[TrailingStopConfig] = None,
) -> Optional[StopLossUpdate]:
    """
    Return an update only when the stop moves in the position's favour.

    A long stop only rises and a short stop only falls. A position without a
    stop always receives one.
    """
    if not position.is_open or price <= 0:
        return None

    new_stop = calculate_trailing_stop(position, price, atr, config)
    current = position.stop_loss

    if current is not None:
        improved = new_stop > current if position.side == PositionSide.LONG else new_stop < current
        if not improved:
            return None

    return StopLossUpdate(
        position_id=position.id,
        symbol=position.symbol,
        side=position.side,
        previous_stop=current,
        new_stop=round(new_stop, 4),
        price=price,
    )


def should_close_position(position: Position, price: float) -> Optional[ExitReason]:
    """
    Check a position against its stop-loss and take-profit levels.

    Args:
        position: Open position
        price: Current price

    Returns:
        The exit reason, or None when the position stays open
    """
    stop = position.stop_loss
    target = position.take_profit

    if position.side == PositionSide.LONG:
        if stop is not None and price <= stop:
            return ExitReason.STOP_LOSS
        if target is not None and price >= target:
            return ExitReason.TAKE_PROFIT
    else:
        if stop is not None and price >= stop:
            return ExitReason.STOP_LOSS
        if target is not None and price <= target:
            return ExitReason.TAKE_PROFIT

    return None
