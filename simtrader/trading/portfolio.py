"""Wallet and position accounting for simulated trading."""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Iterable, Optional

from .models import BaseCurrency, Position, Wallet

ZERO = Decimal("0")


def compute_equity(cash: Decimal, positions: Iterable[Position]) -> Decimal:
    """Cash plus every position marked at its average cost."""
    return cash + sum((p.cost_value for p in positions), ZERO)


def blend_position(
    existing: Optional[Position], symbol: str, signed_qty: Decimal, fill_price: Decimal
) -> Optional[Position]:
    """Apply a signed fill quantity to a position.

    Returns the updated position, or None when the fill brings the net
    quantity back to zero.

    - Opening or adding on the same side blends the cost basis:
      ``|qty0 * avg0 + d * price| / |qty0 + d|``.
    - Reducing without crossing zero keeps the average price.
    - Crossing zero (a flip) uses the same blend formula over the residual.
      No realized gain or loss is booked at the flip boundary.
    """
    qty0 = existing.qty if existing else ZERO
    avg0 = existing.avg_price if existing else ZERO
    new_qty = qty0 + signed_qty

    if new_qty == ZERO:
        return None

    same_side = qty0 == ZERO or (qty0 > 0) == (signed_qty > 0)
    flipped = qty0 != ZERO and (qty0 > 0) != (new_qty > 0)

    if same_side or flipped:
        new_avg = abs(qty0 * avg0 + signed_qty * fill_price) / abs(new_qty)
    else:
        new_avg = avg0

    return Position(symbol=symbol, qty=new_qty, avg_price=new_avg)


class IPortfolioManager(ABC):
    """Interface for wallet state access and fill accounting."""

    @abstractmethod
    def get_wallet(self) -> Wallet:
        """Get a detached copy of the wallet."""
        ...

    @abstractmethod
    def get_position(self, symbol: str) -> Optional[Position]:
        """Get the open position for a symbol, if any."""
        ...

    @abstractmethod
    def preview_fill(
        self, symbol: str, signed_qty: Decimal, fill_price: Decimal, fee: Decimal
    ) -> Wallet:
        """Compute the wallet that would result from a fill, without applying it."""
        ...

    @abstractmethod
    def commit(self, wallet: Wallet) -> None:
        """Replace the wallet with a previously previewed one."""
        ...

    @abstractmethod
    def reset(self, base_currency: BaseCurrency, starting_balance: Decimal) -> None:
        """Replace the wallet with a fresh one."""
        ...


class PortfolioManager(IPortfolioManager):
    """Holds the session wallet and applies the average-cost rules.

    Only the execution engine is expected to call ``preview_fill`` and
    ``commit``; everything else is read-only.
    """

    def __init__(
        self,
        base_currency: BaseCurrency = BaseCurrency.USDT,
        starting_balance: Decimal = Decimal("10000"),
    ) -> None:
        self._wallet = Wallet.fresh(base_currency, starting_balance)

    def get_wallet(self) -> Wallet:
        return _copy_wallet(self._wallet)

    def get_equity(self) -> Decimal:
        return self._wallet.equity

    def get_position(self, symbol: str) -> Optional[Position]:
        position = self._wallet.positions.get(symbol)
        return _copy_position(position) if position else None

    def preview_fill(
        self, symbol: str, signed_qty: Decimal, fill_price: Decimal, fee: Decimal
    ) -> Wallet:
        """Compute the post-fill wallet.

        Args:
            symbol: Instrument being traded
            signed_qty: Positive for a buy, negative for a sell
            fill_price: Execution price per unit
            fee: Fee deducted from cash regardless of side

        Returns:
            A new Wallet; the current one is left untouched
        """
        positions = dict(self._wallet.positions)
        updated = blend_position(positions.get(symbol), symbol, signed_qty, fill_price)
        if updated is None:
            positions.pop(symbol, None)
        else:
            positions[symbol] = updated

        # Buying spends notional, selling receives it; the fee always costs.
        cash = self._wallet.cash - signed_qty * fill_price - fee
        return Wallet(
            base_currency=self._wallet.base_currency,
            cash=cash,
            equity=compute_equity(cash, positions.values()),
            positions=positions,
        )

    def commit(self, wallet: Wallet) -> None:
        self._wallet = _copy_wallet(wallet)

    def reset(self, base_currency: BaseCurrency, starting_balance: Decimal) -> None:
        self._wallet = Wallet.fresh(base_currency, starting_balance)


def _copy_position(position: Position) -> Position:
    return Position(symbol=position.symbol, qty=position.qty, avg_price=position.avg_price)


def _copy_wallet(wallet: Wallet) -> Wallet:
    return Wallet(
        base_currency=wallet.base_currency,
        cash=wallet.cash,
        equity=wallet.equity,
        positions={s: _copy_position(p) for s, p in wallet.positions.items()},
    )
