"""Data models for the simulated trading session."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional
import uuid


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class BaseCurrency(Enum):
    """Currencies a wallet can be denominated in."""
    USDT = "USDT"
    USD = "USD"
    INR = "INR"


class OrderSide(Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class OrderStatus(Enum):
    """Lifecycle status of an order. Everything except NEW is terminal."""
    NEW = "NEW"
    FILLED = "FILLED"
    CANCELED = "CANCELED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.NEW


@dataclass
class Position:
    """An open holding in one symbol.

    Attributes:
        symbol: Instrument identifier (e.g., "BTCUSDT")
        qty: Signed quantity, positive for long and negative for short
        avg_price: Weighted average entry price per unit
    """
    symbol: str
    qty: Decimal
    avg_price: Decimal

    @property
    def cost_value(self) -> Decimal:
        """Position value marked at average cost (signed)."""
        return self.qty * self.avg_price

    @property
    def is_long(self) -> bool:
        return self.qty > 0


@dataclass
class Wallet:
    """Cash and positions of a session.

    Attributes:
        base_currency: Currency the wallet is denominated in
        cash: Signed cash balance
        equity: Cash plus positions marked at average cost
        positions: Open positions keyed by symbol
    """
    base_currency: BaseCurrency
    cash: Decimal
    equity: Decimal
    positions: Dict[str, Position] = field(default_factory=dict)

    @classmethod
    def fresh(cls, base_currency: BaseCurrency, starting_balance: Decimal) -> "Wallet":
        return cls(base_currency=base_currency, cash=starting_balance, equity=starting_balance)


@dataclass(frozen=True)
class Order:
    """A submitted order.

    Orders are immutable; a status transition replaces the ledger entry
    with an updated copy.
    """
    symbol: str
    side: OrderSide
    type: OrderType
    qty: Decimal
    price: Optional[Decimal] = None
    status: OrderStatus = OrderStatus.NEW
    placed_at: datetime = field(default_factory=utcnow)
    filled_at: Optional[datetime] = None
    filled_price: Optional[Decimal] = None
    filled_qty: Optional[Decimal] = None
    reject_reason: Optional[str] = None
    id: str = field(default_factory=lambda: new_id("order"))

    @property
    def signed_qty(self) -> Decimal:
        return self.qty if self.side is OrderSide.BUY else -self.qty


@dataclass(frozen=True)
class Trade:
    """An executed fill. Created once per filled order and never modified.

    Attributes:
        order_id: Id of the order this fill executed (lookup only)
        price: Fill price per unit after slippage
        fee: Fee charged in the base currency
        slippage_pct: Slippage percentage applied to the fill price
    """
    order_id: str
    symbol: str
    side: OrderSide
    price: Decimal
    qty: Decimal
    fee: Decimal
    slippage_pct: Decimal
    executed_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: new_id("trade"))

    @property
    def notional(self) -> Decimal:
        return self.price * self.qty


@dataclass(frozen=True)
class JournalEntry:
    """Free-form notes a trader attaches to an executed trade."""
    trade_id: str
    why: str = ""
    plan: str = ""
    lesson: str = ""
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class EquitySample:
    timestamp: datetime
    equity: Decimal
