"""Simulation session controller.

Owns the complete state of one paper-trading session (wallet, order and
trade ledgers, journal, risk settings, equity history) and is the entry
point for every command and query. State changes are announced to
subscribed listeners; persistence is one such listener.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from .analytics import PerformanceAnalytics, PortfolioSummary
from .models import (
    BaseCurrency,
    EquitySample,
    JournalEntry,
    Order,
    OrderStatus,
    Position,
    Trade,
    Wallet,
    utcnow,
)
from .orders import ExecutionEngine, InvalidOrder, SessionNotInitialized, to_decimal
from .portfolio import PortfolioManager
from .risk import DEFAULT_RISK_SETTINGS, RiskSettings

logger = logging.getLogger(__name__)

DEFAULT_BASE_CURRENCY = BaseCurrency.USDT
DEFAULT_STARTING_BALANCE = Decimal("10000")


@dataclass(frozen=True)
class StateChange:
    """Notification sent to listeners after a state-affecting command."""
    kind: str
    subject_id: Optional[str] = None


@dataclass
class SessionSnapshot:
    """Detached copy of the full session state, as persisted and exported."""
    wallet: Wallet
    orders: List[Order]
    trades: List[Trade]
    journal: List[JournalEntry]
    risk_settings: RiskSettings
    is_initialized: bool
    starting_balance: Decimal
    equity_history: List[EquitySample] = field(default_factory=list)


Listener = Callable[[StateChange], None]


class SimulationSession:
    """Command and query surface of one simulation session."""

    def __init__(
        self,
        strict_transitions: bool = False,
        enforce_risk_limits: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Create a session in its default, uninitialized state.

        Args:
            strict_transitions: Raise AlreadyTerminal on fills and cancels of
                terminal orders instead of ignoring them
            enforce_risk_limits: Reject fills that breach the position size or
                daily loss limits of the risk settings
            clock: Source of timestamps
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._analytics = PerformanceAnalytics()
        self._portfolio = PortfolioManager(DEFAULT_BASE_CURRENCY, DEFAULT_STARTING_BALANCE)
        self._engine = ExecutionEngine(
            self._portfolio,
            risk_settings=lambda: self._risk,
            strict_transitions=strict_transitions,
            limit_check=self._check_limits if enforce_risk_limits else None,
            clock=clock,
        )
        self._risk = DEFAULT_RISK_SETTINGS
        self._journal: List[JournalEntry] = []
        self._history: List[EquitySample] = []
        self._starting_balance = DEFAULT_STARTING_BALANCE
        self._initialized = False

    # ----- lifecycle -----

    def initialize(self, base_currency: Any, starting_balance: Any) -> None:
        """Start a fresh session with the given currency and balance.

        Clears every ledger. Safe to call again to start over.

        Raises:
            ValueError: Unknown currency or non-positive balance
        """
        currency = BaseCurrency(base_currency)
        try:
            balance = to_decimal(starting_balance, "starting_balance")
        except InvalidOrder as e:
            raise ValueError(f"Starting balance must be a finite number, got {starting_balance!r}") from e
        if balance <= 0:
            raise ValueError(f"Starting balance must be greater than zero, got {balance}")

        with self._lock:
            self._portfolio.reset(currency, balance)
            self._engine.clear()
            self._journal.clear()
            self._starting_balance = balance
            self._history = [EquitySample(self._clock(), balance)]
            self._initialized = True

        logger.info(f"Session initialized with {balance} {currency.value}")
        self._notify(StateChange("initialized"))

    def reset(self) -> None:
        """Return to the default, uninitialized state.

        The wallet goes back to DEFAULT_STARTING_BALANCE, not to the balance
        last passed to initialize.
        """
        with self._lock:
            self._portfolio.reset(DEFAULT_BASE_CURRENCY, DEFAULT_STARTING_BALANCE)
            self._engine.clear()
            self._journal.clear()
            self._risk = DEFAULT_RISK_SETTINGS
            self._starting_balance = DEFAULT_STARTING_BALANCE
            self._history = []
            self._initialized = False

        logger.info("Session reset to defaults")
        self._notify(StateChange("reset"))

    def restore(self, snapshot: SessionSnapshot) -> None:
        """Replace the whole session state with a snapshot."""
        with self._lock:
            self._portfolio.commit(snapshot.wallet)
            self._engine.load(snapshot.orders, snapshot.trades)
            self._journal = list(snapshot.journal)
            self._risk = snapshot.risk_settings
            self._starting_balance = snapshot.starting_balance
            self._history = sorted(snapshot.equity_history, key=lambda s: s.timestamp)
            self._initialized = snapshot.is_initialized

        logger.info(
            f"Session restored: {len(snapshot.orders)} orders, {len(snapshot.trades)} trades"
        )
        self._notify(StateChange("restored"))

    # ----- commands -----

    def submit_order(
        self,
        symbol: str,
        side: Any,
        type: Any,
        qty: Any,
        price: Any = None,
    ) -> str:
        with self._lock:
            if not self._initialized:
                raise SessionNotInitialized("Initialize the session before placing orders")
            order_id = self._engine.submit_order(symbol, side, type, qty, price)
        self._notify(StateChange("order_submitted", order_id))
        return order_id

    def fill(self, order_id: str, market_price: Any) -> Optional[Trade]:
        """Fill a NEW order at the given market price.

        Returns:
            The new Trade, or None if nothing was filled
        """
        with self._lock:
            before = self._engine.get_order(order_id).status
            trade = self._engine.fill(order_id, market_price)
            if trade is not None:
                self._record_equity(trade.executed_at)
            after = self._engine.get_order(order_id).status

        if trade is not None:
            self._notify(StateChange("order_filled", order_id))
        elif before is OrderStatus.NEW and after is OrderStatus.REJECTED:
            self._notify(StateChange("order_rejected", order_id))
        return trade

    def cancel_order(self, order_id: str) -> bool:
        with self._lock:
            canceled = self._engine.cancel_order(order_id)
        if canceled:
            self._notify(StateChange("order_canceled", order_id))
        return canceled

    def add_journal_entry(self, trade_id: str, why: str = "", plan: str = "", lesson: str = "") -> JournalEntry:
        """Attach notes to an executed trade.

        Raises:
            UnknownTrade: No trade with that id
        """
        with self._lock:
            self._engine.find_trade(trade_id)
            entry = JournalEntry(trade_id=trade_id, why=why, plan=plan, lesson=lesson, created_at=self._clock())
            self._journal.append(entry)
        self._notify(StateChange("journal_added", trade_id))
        return entry

    def update_risk_settings(self, **changes: Any) -> RiskSettings:
        """Replace risk settings fields. Past fills are not affected."""
        with self._lock:
            self._risk = self._risk.updated(**changes)
            settings = self._risk
        logger.info(f"Risk settings updated: {', '.join(sorted(changes))}")
        self._notify(StateChange("risk_updated"))
        return settings

    # ----- queries -----

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def starting_balance(self) -> Decimal:
        return self._starting_balance

    def get_wallet(self) -> Wallet:
        return self._portfolio.get_wallet()

    def get_position(self, symbol: str) -> Optional[Position]:
        return self._portfolio.get_position(symbol.upper())

    def get_order(self, order_id: str) -> Order:
        return self._engine.get_order(order_id)

    def get_orders(self, status: Optional[OrderStatus] = None) -> List[Order]:
        return self._engine.get_orders(status)

    def get_trades(self) -> List[Trade]:
        return self._engine.get_trades()

    def get_journal(self) -> List[JournalEntry]:
        with self._lock:
            return list(self._journal)

    def get_risk_settings(self) -> RiskSettings:
        return self._risk

    def get_equity_history(self) -> List[EquitySample]:
        with self._lock:
            return list(self._history)

    def get_portfolio(self, prices: Optional[Dict[str, Any]] = None) -> PortfolioSummary:
        """Summarize the portfolio, marking positions to the given prices."""
        marks = {s.upper(): to_decimal(p, f"price of {s}") for s, p in (prices or {}).items()}
        with self._lock:
            return self._analytics.summarize(
                wallet=self._portfolio.get_wallet(),
                trades=self._engine.get_trades(),
                history=list(self._history),
                starting_balance=self._starting_balance,
                prices=marks,
                risk=self._risk,
                now=self._clock(),
            )

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                wallet=self._portfolio.get_wallet(),
                orders=self._engine.get_orders(),
                trades=self._engine.get_trades(),
                journal=list(self._journal),
                risk_settings=self._risk,
                is_initialized=self._initialized,
                starting_balance=self._starting_balance,
                equity_history=list(self._history),
            )

    # ----- listeners -----

    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, change: StateChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception(f"State listener failed on {change.kind}")

    # ----- helpers -----

    def _record_equity(self, timestamp: datetime) -> None:
        equity = self._portfolio.get_equity()
        if self._history and timestamp < self._history[-1].timestamp:
            timestamp = self._history[-1].timestamp
        self._history.append(EquitySample(timestamp, equity))

    def _check_limits(self, order: Order, before: Wallet, after: Wallet, fill_price: Decimal) -> Optional[str]:
        """Position size and daily loss limits for fills that add exposure."""
        old = before.positions.get(order.symbol)
        new = after.positions.get(order.symbol)
        old_qty = abs(old.qty) if old else Decimal("0")
        new_qty = abs(new.qty) if new else Decimal("0")
        if new_qty <= old_qty:
            return None

        risk = self._risk
        cap = before.equity * risk.max_position_size / 100
        notional = new_qty * fill_price
        if notional > cap:
            return f"position notional {notional} exceeds {risk.max_position_size}% of equity ({cap})"

        loss = -self._analytics.calculate_daily_pnl(self._history, before.equity, self._clock())
        limit = self._starting_balance * risk.max_daily_loss / 100
        if loss > limit:
            return f"daily loss {loss} exceeds {risk.max_daily_loss}% of starting balance ({limit})"
        return None
