"""
Broker Module for Agent Trader.

This module defines the execution contract the trading service calls after
an approved verdict, and a paper broker that fills market orders
immediately at the last known price.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field

from agent_trader.core.models import OrderResult, OrderSide, OrderStatus
from agent_trader.utils.exceptions import ExecutionError


logger = logging.getLogger(__name__)


class BrokerPosition(BaseModel):
    """Net broker-side holding for one symbol. Negative quantity is short."""

    symbol: str
    quantity: float = 0.0
    avg_entry_price: float = 0.0
    current_price: float = 0.0

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price


class AccountInfo(BaseModel):
    """Broker account summary."""

    cash: float
    equity: float
    positions_value: float = 0.0
    open_positions: int = Field(default=0, ge=0)


class Broker(ABC):
    """Execution collaborator."""

    @abstractmethod
    async def submit_order(self, symbol: str, side: OrderSide, quantity: float) -> OrderResult:
        """
        Submit a market order.

        Args:
            symbol: Trading symbol
            side: Buy or sell
            quantity: Shares (> 0)

        Returns:
            OrderResult; a rejection is a result, not an exception

        Raises:
            ExecutionError: The broker could not be reached
        """

    @abstractmethod
    async def cancel_all_orders(self) -> int:
        """Cancel every working order; returns how many were cancelled."""

    @abstractmethod
    async def get_positions(self) -> list[BrokerPosition]:
        ...

    @abstractmethod
    async def get_account(self) -> AccountInfo:
        ...

    def set_price(self, symbol: str, price: float) -> None:
        """Latest observed price; live brokers price orders themselves."""


class PaperBroker(Broker):
    """
    In-process simulated broker.

    Orders fill in full at the price last set with ``set_price`` (no
    slippage, no partial fills). A buy that costs more than available cash
    is rejected.
    """

    def __init__(self, initial_cash: float = 100000.0) -> None:
        self._cash = initial_cash
        self._prices: dict[str, float] = {}
        self._positions: dict[str, BrokerPosition] = {}
        self._order_history: list[OrderResult] = []
        self._lock = asyncio.Lock()

        logger.info("PaperBroker initialized", extra={"initial_cash": initial_cash})

    @property
    def orders(self) -> list[OrderResult]:
        return list(self._order_history)

    def set_price(self, symbol: str, price: float) -> None:
        """Record the last known price for a symbol."""
        symbol = symbol.upper()
        self._prices[symbol] = price
        if symbol in self._positions:
            self._positions[symbol].current_price = price

    async def submit_order(self, symbol: str, side: OrderSide, quantity: float) -> OrderResult:
        symbol = symbol.upper()
        if quantity <= 0:
            raise ExecutionError(f"Order quantity must be positive, got {quantity}")

        price = self._prices.get(symbol)
        if price is None or price <= 0:
            return self._record(OrderResult(
                symbol=symbol,
                side=side,
                quantity=quantity,
                status=OrderStatus.REJECTED,
                message=f"No market price for {symbol}",
            ))

        async with self._lock:
            cost = quantity * price
            if side == OrderSide.BUY and cost > self._cash:
                return self._record(OrderResult(
                    symbol=symbol,
                    side=side,
                    quantity=quantity,
                    status=OrderStatus.REJECTED,
                    message=f"Insufficient funds: need {cost:.2f}, have {self._cash:.2f}",
                ))

            self._apply_fill(symbol, side, quantity, price)

            return self._record(OrderResult(
                symbol=symbol,
                side=side,
                quantity=quantity,
                status=OrderStatus.FILLED,
                filled_quantity=quantity,
                filled_price=price,
            ))

    def _apply_fill(self, symbol: str, side: OrderSide, quantity: float, price: float) -> None:
        pos = self._positions.setdefault(symbol, BrokerPosition(symbol=symbol, current_price=price))
        signed = quantity if side == OrderSide.BUY else -quantity
        new_qty = pos.quantity + signed

        if pos.quantity == 0 or (pos.quantity > 0) == (signed > 0):
            pos.avg_entry_price = (abs(pos.quantity) * pos.avg_entry_price + quantity * price) / abs(new_qty)
        elif new_qty != 0 and (new_qty > 0) != (pos.quantity > 0):
            pos.avg_entry_price = price

        pos.quantity = new_qty
        pos.current_price = price
        self._cash -= signed * price

        if pos.quantity == 0:
            del self._positions[symbol]

    def _record(self, result: OrderResult) -> OrderResult:
        self._order_history.append(result)
        log = logger.info if result.is_filled else logger.warning
        log(
            f"Paper order {result.side.value} {result.quantity} {result.symbol}: {result.status.value}",
            extra={"symbol": result.symbol, "order_id": result.order_id, "message": result.message},
        )
        return result

    async def cancel_all_orders(self) -> int:
        # Paper orders fill synchronously, so nothing is ever working.
        return 0

    async def get_positions(self) -> list[BrokerPosition]:
        return [pos.model_copy() for pos in self._positions.values()]

    async def get_account(self) -> AccountInfo:
        positions_value = sum(pos.market_value for pos in self._positions.values())
        return AccountInfo(
            cash=self._cash,
            equity=self._cash + positions_value,
            positions_value=positions_value,
            open_positions=len(self._positions),
        )

    def get_statistics(self) -> dict[str, Any]:
        filled = sum(1 for o in self._order_history if o.is_filled)
        return {
            "orders": len(self._order_history),
            "filled": filled,
            "rejected": len(self._order_history) - filled,
            "cash": self._cash,
        }

    def last_price(self, symbol: str) -> Optional[float]:
        return self._prices.get(symbol.upper())
