"""
Position Sizing Module for Agent Trader.

Risk-percent sizing against an ATR (or fixed percent) stop distance, with
a reward/risk take-profit.
"""

import logging
import math
from typing import Optional

from pydantic import BaseModel, Field

from agent_trader.core.models import PositionSide


logger = logging.getLogger(__name__)


class PositionSizerConfig(BaseModel):
    """Configuration for position sizing."""

    risk_per_trade_pct: float = Field(default=1.0, gt=0.0, le=10.0)
    atr_multiplier: float = Field(default=2.0, ge=0.5, le=5.0)
    reward_risk_ratio: float = Field(default=2.0, gt=0.0, le=10.0)
    round_to_lot_size: bool = Field(default=True)


class PositionSizeResult(BaseModel):
    """Model for position sizing result."""

    side: PositionSide
    quantity: float
    position_value: float
    position_pct: float
    stop_loss: float
    take_profit: float
    stop_distance: float
    risk_amount: float
    constraints_applied: list[str] = Field(default_factory=list)


class PositionSizer:
    """
    Position sizing calculator.

    Risk amount = account value x risk per trade. Stop distance is
    ATR x multiplier, or the strategy stop-loss percent of price when no ATR
    is available. The resulting position value is capped at the strategy's
    max position size unless the caller supplies an explicit size.
    """

    def __init__(self, config: Optional[PositionSizerConfig] = None) -> None:
        self.config = config or PositionSizerConfig()

    def calculate(
        self,
        side: PositionSide,
        price: float,
        account_value: float,
        max_position_pct: float,
        atr: float = 0.0,
        stop_loss_pct: float = 2.0,
        position_pct: Optional[float] = None,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
    ) -> PositionSizeResult:
        """
        Size a new position.

        Args:
            side: Long or short
            price: Expected entry price (must be > 0)
            account_value: Portfolio value
            max_position_pct: Strategy cap in percent of account value
            atr: Average true range (0 when unknown)
            stop_loss_pct: Fallback stop distance in percent of price
            position_pct: Explicit size in percent of account; bypasses the cap
            stop_loss: Explicit stop price; replaces the computed one
            take_profit: Explicit target price; replaces the computed one

        Returns:
            PositionSizeResult
        """
        if price <= 0 or not math.isfinite(price):
            raise ValueError(f"cannot size a position at price {price}")

        constraints: list[str] = []
        risk_amount = account_value * self.config.risk_per_trade_pct / 100

        if atr > 0:
            stop_distance = atr * self.config.atr_multiplier
        else:
            stop_distance = price * stop_loss_pct / 100
            constraints.append("no_atr_fixed_pct_stop")

        if position_pct is not None:
            target_value = account_value * position_pct / 100
            constraints.append("explicit_size")
        else:
            target_value = risk_amount / (stop_distance / price)
            max_value = account_value * max_position_pct / 100
            if target_value > max_value:
                target_value = max_value
                constraints.append("max_position_cap")

        quantity = target_value / price
        if self.config.round_to_lot_size:
            quantity = math.floor(quantity)
            if quantity == 0 and target_value > 0:
                constraints.append("below_one_share")

        if side == PositionSide.LONG:
            computed_stop = price - stop_distance
            computed_target = price + stop_distance * self.config.reward_risk_ratio
        else:
            computed_stop = price + stop_distance
            computed_target = price - stop_distance * self.config.reward_risk_ratio

        if stop_loss is not None:
            constraints.append("explicit_stop")
        if take_profit is not None:
            constraints.append("explicit_target")

        position_value = quantity * price
        return PositionSizeResult(
            side=side,
            quantity=quantity,
            position_value=position_value,
            position_pct=position_value / account_value * 100 if account_value > 0 else 0.0,
            stop_loss=stop_loss if stop_loss is not None else max(computed_stop, 0.0),
            take_profit=take_profit if take_profit is not None else max(computed_target, 0.0),
            stop_distance=stop_distance,
            risk_amount=risk_amount,
            constraints_applied=constraints,
        )
