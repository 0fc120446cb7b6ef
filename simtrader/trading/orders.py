"""Order execution for the trading simulator.

This module provides the execution engine and its error taxonomy:
- SimulationError and the specific errors raised on bad requests
- fill price and fee calculation (slippage, fee models)
- ExecutionEngine, the only writer of wallet, order and trade state
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional

from .models import Order, OrderSide, OrderStatus, OrderType, Trade, Wallet, utcnow
from .portfolio import IPortfolioManager
from .risk import RiskSettings

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

LimitCheck = Callable[[Order, Wallet, Wallet, Decimal], Optional[str]]


class SimulationError(Exception):
    """Base class for errors raised by the trading simulator."""


class InvalidOrder(SimulationError, ValueError):
    """Malformed order submission or fill request."""


class AlreadyTerminal(SimulationError):
    """Fill or cancel requested for an order that is no longer NEW."""

    def __init__(self, order: Order) -> None:
        super().__init__(f"Order {order.id} is already {order.status.value}")
        self.order = order


class UnknownOrder(SimulationError, KeyError):
    """No order with the given id exists."""

    def __str__(self) -> str:
        return f"Unknown order: {self.args[0]}"


class UnknownTrade(SimulationError, KeyError):
    """No trade with the given id exists."""

    def __str__(self) -> str:
        return f"Unknown trade: {self.args[0]}"


class SessionNotInitialized(SimulationError):
    """The session has to be initialized before orders are accepted."""


def to_decimal(value: Any, name: str) -> Decimal:
    """Convert a numeric input to Decimal, rejecting NaN and infinities."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise InvalidOrder(f"{name} must be a number, got {value!r}")
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise InvalidOrder(f"{name} must be a number, got {value!r}") from None
    if not result.is_finite():
        raise InvalidOrder(f"{name} must be finite, got {value!r}")
    return result


def compute_fill_price(order: Order, market_price: Decimal, slippage_pct: Decimal) -> Decimal:
    """Price an order fills at.

    Market orders take slippage against the trader: buys fill above the
    market price, sells below it. Limit orders fill at their own price.
    """
    if order.type is OrderType.LIMIT:
        return order.price
    if order.side is OrderSide.BUY:
        return market_price * (1 + slippage_pct / HUNDRED)
    return market_price * (1 - slippage_pct / HUNDRED)


def compute_fee(fill_price: Decimal, qty: Decimal, fee_pct: Decimal) -> Decimal:
    return fill_price * qty * fee_pct / HUNDRED


class ExecutionEngine:
    """Turns orders and market prices into wallet, order and trade changes.

    Each fill is computed in full against the current state and then
    committed in one step under the engine lock, so no partially applied
    fill is ever observable and an order can be filled at most once.
    """

    def __init__(
        self,
        portfolio: IPortfolioManager,
        risk_settings: Callable[[], RiskSettings],
        strict_transitions: bool = False,
        limit_check: Optional[LimitCheck] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the engine.

        Args:
            portfolio: Wallet holder the fills are applied to
            risk_settings: Returns the risk settings in force, read once per fill
            strict_transitions: Raise AlreadyTerminal instead of ignoring
                fills and cancels of terminal orders
            limit_check: Optional pre-commit check; a returned string rejects
                the order with that reason
            clock: Source of timestamps
        """
        self._portfolio = portfolio
        self._risk_settings = risk_settings
        self._strict = strict_transitions
        self._limit_check = limit_check
        self._clock = clock
        self._lock = threading.Lock()
        self._orders: List[Order] = []
        self._index: Dict[str, int] = {}
        self._trades: List[Trade] = []

    # ----- commands -----

    def submit_order(
        self,
        symbol: str,
        side: OrderSide,
        type: OrderType,
        qty: Any,
        price: Any = None,
    ) -> str:
        """Validate and record a new order.

        Returns:
            Id of the NEW order

        Raises:
            InvalidOrder: Non-positive quantity, missing or non-positive limit
                price, a price on a market order, or an empty symbol
        """
        symbol = (symbol or "").strip().upper()
        if not symbol:
            raise InvalidOrder("Symbol is required")
        try:
            side = OrderSide(side)
            type = OrderType(type)
        except ValueError as e:
            raise InvalidOrder(str(e)) from None
        qty = to_decimal(qty, "qty")
        if qty <= 0:
            raise InvalidOrder(f"Quantity must be greater than zero, got {qty}")

        if type is OrderType.LIMIT:
            if price is None:
                raise InvalidOrder("Limit orders require a price")
            price = to_decimal(price, "price")
            if price <= 0:
                raise InvalidOrder(f"Limit price must be greater than zero, got {price}")
        elif price is not None:
            raise InvalidOrder("Market orders must not carry a price")

        order = Order(
            symbol=symbol, side=side, type=type, qty=qty, price=price, placed_at=self._clock()
        )
        with self._lock:
            self._index[order.id] = len(self._orders)
            self._orders.append(order)

        logger.info(f"Order {order.id} submitted: {side.value} {qty} {symbol} {type.value}")
        return order.id

    def fill(self, order_id: str, market_price: Any) -> Optional[Trade]:
        """Execute a NEW order against a market price.

        Returns:
            The resulting Trade, or None when the order was already terminal
            or got rejected by the limit check

        Raises:
            UnknownOrder: No such order
            InvalidOrder: Market price is not a positive number
            AlreadyTerminal: Order is not NEW and strict transitions are on
        """
        market_price = to_decimal(market_price, "market_price")
        if market_price <= 0:
            raise InvalidOrder(f"Market price must be greater than zero, got {market_price}")

        with self._lock:
            idx = self._lookup(order_id)
            order = self._orders[idx]
            if order.status.is_terminal:
                return self._ignore_terminal(order, "fill")

            risk = self._risk_settings()
            fill_price = compute_fill_price(order, market_price, risk.slippage_pct)
            fee = compute_fee(fill_price, order.qty, risk.fee_pct)
            before = self._portfolio.get_wallet()
            after = self._portfolio.preview_fill(order.symbol, order.signed_qty, fill_price, fee)

            if self._limit_check is not None:
                reason = self._limit_check(order, before, after, fill_price)
                if reason:
                    self._orders[idx] = replace(order, status=OrderStatus.REJECTED, reject_reason=reason)
                    logger.warning(f"Order {order.id} rejected: {reason}")
                    return None

            now = self._clock()
            slippage = risk.slippage_pct if order.type is OrderType.MARKET else Decimal("0")
            trade = Trade(
                order_id=order.id,
                symbol=order.symbol,
                side=order.side,
                price=fill_price,
                qty=order.qty,
                fee=fee,
                slippage_pct=slippage,
                executed_at=now,
            )
            filled = replace(
                order,
                status=OrderStatus.FILLED,
                filled_at=now,
                filled_price=fill_price,
                filled_qty=order.qty,
            )

            self._portfolio.commit(after)
            self._orders[idx] = filled
            self._trades.append(trade)

        logger.info(
            f"Order {order.id} filled: {order.side.value} {order.qty} {order.symbol} "
            f"@ {fill_price} fee {fee}"
        )
        return trade

    def cancel_order(self, order_id: str) -> bool:
        """Cancel a NEW order.

        Returns:
            True if the order was canceled, False if it was already terminal
        """
        with self._lock:
            idx = self._lookup(order_id)
            order = self._orders[idx]
            if order.status.is_terminal:
                self._ignore_terminal(order, "cancel")
                return False
            self._orders[idx] = replace(order, status=OrderStatus.CANCELED)

        logger.info(f"Order {order_id} canceled")
        return True

    def clear(self) -> None:
        """Drop all orders and trades."""
        with self._lock:
            self._orders.clear()
            self._index.clear()
            self._trades.clear()

    def load(self, orders: Iterable[Order], trades: Iterable[Trade]) -> None:
        """Replace both ledgers, e.g. with a restored snapshot."""
        orders = list(orders)
        trades = list(trades)
        with self._lock:
            self._orders = orders
            self._index = {o.id: i for i, o in enumerate(orders)}
            self._trades = trades

    # ----- queries -----

    def get_order(self, order_id: str) -> Order:
        with self._lock:
            return self._orders[self._lookup(order_id)]

    def get_orders(self, status: Optional[OrderStatus] = None) -> List[Order]:
        """Get orders in submission order, optionally filtered by status."""
        with self._lock:
            if status is None:
                return list(self._orders)
            status = OrderStatus(status)
            return [o for o in self._orders if o.status is status]

    def get_trades(self) -> List[Trade]:
        with self._lock:
            return list(self._trades)

    def find_trade(self, trade_id: str) -> Trade:
        with self._lock:
            for trade in self._trades:
                if trade.id == trade_id:
                    return trade
        raise UnknownTrade(trade_id)

    # ----- helpers -----

    def _lookup(self, order_id: str) -> int:
        try:
            return self._index[order_id]
        except KeyError:
            raise UnknownOrder(order_id) from None

    def _ignore_terminal(self, order: Order, action: str) -> None:
        if self._strict:
            raise AlreadyTerminal(order)
        logger.info(f"Ignoring {action} of order {order.id}: already {order.status.value}")
        return None
