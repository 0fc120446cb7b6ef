"""Performance analytics for simulated trading."""

import csv
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from .models import EquitySample, OrderSide, Position, Trade, Wallet
from .risk import RiskSettings

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass
class PerformanceMetrics:
    """Trade statistics reconstructed from the trade ledger.

    Attributes:
        total_trades: Number of executed trades
        closed_trades: Trades that reduced or closed existing exposure
        profitable_trades: Closing trades with positive realized PnL
        win_rate: Percentage of profitable closing trades (0-100)
        realized_pnl: Sum of realized PnL over all closing trades, net of their fees
        total_fees: Sum of fees over all trades
        total_volume: Sum of trade notionals
    """
    total_trades: int
    closed_trades: int
    profitable_trades: int
    win_rate: Decimal
    realized_pnl: Decimal
    total_fees: Decimal
    total_volume: Decimal


@dataclass
class PositionView:
    """An open position marked against a market price."""
    symbol: str
    qty: Decimal
    avg_price: Decimal
    market_price: Decimal
    market_value: Decimal
    pnl: Decimal
    pnl_pct: Decimal
    stop_loss_price: Decimal
    take_profit_price: Decimal


@dataclass
class PortfolioSummary:
    """Portfolio-level figures for display.

    ``equity`` is the authoritative cost-basis equity of the wallet;
    ``market_value`` is the same wallet marked to the supplied prices.
    """
    equity: Decimal
    cash: Decimal
    market_value: Decimal
    unrealized_pnl: Decimal
    pnl: Decimal
    pnl_pct: Decimal
    daily_pnl: Decimal
    max_drawdown: Decimal
    max_drawdown_pct: Decimal
    win_rate: Decimal
    total_trades: int
    realized_pnl: Decimal
    total_fees: Decimal
    positions: List[PositionView] = field(default_factory=list)


class PerformanceAnalytics:
    """Read-only derivations over wallet, trades and equity history.

    Realized PnL is not recorded by the execution engine, so it is
    reconstructed here by replaying the trade ledger with a cost basis that
    closes the old side before opening the new one on a flip.
    """

    def calculate_metrics(self, trades: Sequence[Trade]) -> PerformanceMetrics:
        closing_pnls = self._calculate_per_trade_pnl(trades)
        closed = len(closing_pnls)
        profitable = sum(1 for pnl in closing_pnls if pnl > ZERO)
        win_rate = Decimal(profitable) / Decimal(closed) * HUNDRED if closed else ZERO
        return PerformanceMetrics(
            total_trades=len(trades),
            closed_trades=closed,
            profitable_trades=profitable,
            win_rate=win_rate,
            realized_pnl=sum(closing_pnls, ZERO),
            total_fees=sum((t.fee for t in trades), ZERO),
            total_volume=sum((t.notional for t in trades), ZERO),
        )

    def _calculate_per_trade_pnl(self, trades: Sequence[Trade]) -> List[Decimal]:
        """Realized PnL of every trade that reduced existing exposure.

        The fee of a closing trade is charged in proportion to the part of
        its quantity that closed exposure.
        """
        # {symbol: (signed quantity, average entry price)}
        basis: Dict[str, Tuple[Decimal, Decimal]] = {}
        pnls: List[Decimal] = []

        for trade in sorted(trades, key=lambda t: t.executed_at):
            qty0, avg0 = basis.get(trade.symbol, (ZERO, ZERO))
            delta = trade.qty if trade.side is OrderSide.BUY else -trade.qty

            if qty0 == ZERO or (qty0 > 0) == (delta > 0):
                new_qty = qty0 + delta
                new_avg = (abs(qty0) * avg0 + abs(delta) * trade.price) / abs(new_qty)
                basis[trade.symbol] = (new_qty, new_avg)
                continue

            closed = min(abs(qty0), abs(delta))
            direction = 1 if qty0 > 0 else -1
            fee_share = trade.fee * closed / abs(delta)
            pnls.append((trade.price - avg0) * closed * direction - fee_share)

            new_qty = qty0 + delta
            if new_qty == ZERO:
                basis.pop(trade.symbol, None)
            elif (new_qty > 0) == (qty0 > 0):
                basis[trade.symbol] = (new_qty, avg0)
            else:
                basis[trade.symbol] = (new_qty, trade.price)

        return pnls

    def calculate_max_drawdown(self, history: Sequence[EquitySample]) -> Tuple[Decimal, Decimal]:
        """Largest peak-to-trough decline of an equity curve.

        Returns:
            (drawdown amount, drawdown as a percentage of its peak)
        """
        peak: Optional[Decimal] = None
        max_dd = ZERO
        max_dd_pct = ZERO
        for sample in history:
            if peak is None or sample.equity > peak:
                peak = sample.equity
                continue
            drawdown = peak - sample.equity
            if drawdown > max_dd:
                max_dd = drawdown
                max_dd_pct = drawdown / peak * HUNDRED if peak > ZERO else ZERO
        return max_dd, max_dd_pct

    def calculate_daily_pnl(
        self, history: Sequence[EquitySample], current_equity: Decimal, now: datetime
    ) -> Decimal:
        """Equity change since the start of the current UTC day."""
        if not history:
            return ZERO
        day_start = datetime.combine(now.astimezone(timezone.utc).date(), time(), tzinfo=timezone.utc)
        baseline = None
        for sample in history:
            if sample.timestamp < day_start:
                baseline = sample
            elif baseline is None:
                baseline = sample
                break
            else:
                break
        return current_equity - baseline.equity

    def mark_positions(
        self,
        positions: Sequence[Position],
        prices: Dict[str, Decimal],
        risk: RiskSettings,
    ) -> List[PositionView]:
        """Mark positions to market.

        Positions without a supplied price are marked at average cost.
        """
        views = []
        for position in positions:
            market = prices.get(position.symbol, position.avg_price)
            pnl = (market - position.avg_price) * position.qty
            cost = abs(position.qty) * position.avg_price
            sign = 1 if position.is_long else -1
            views.append(PositionView(
                symbol=position.symbol,
                qty=position.qty,
                avg_price=position.avg_price,
                market_price=market,
                market_value=position.qty * market,
                pnl=pnl,
                pnl_pct=pnl / cost * HUNDRED if cost else ZERO,
                stop_loss_price=position.avg_price * (1 - sign * risk.stop_loss_pct / HUNDRED),
                take_profit_price=position.avg_price * (1 + sign * risk.take_profit_pct / HUNDRED),
            ))
        return views

    def summarize(
        self,
        wallet: Wallet,
        trades: Sequence[Trade],
        history: Sequence[EquitySample],
        starting_balance: Decimal,
        prices: Dict[str, Decimal],
        risk: RiskSettings,
        now: datetime,
    ) -> PortfolioSummary:
        metrics = self.calculate_metrics(trades)
        views = self.mark_positions(list(wallet.positions.values()), prices, risk)
        max_dd, max_dd_pct = self.calculate_max_drawdown(history)
        pnl = wallet.equity - starting_balance
        return PortfolioSummary(
            equity=wallet.equity,
            cash=wallet.cash,
            market_value=wallet.cash + sum((v.market_value for v in views), ZERO),
            unrealized_pnl=sum((v.pnl for v in views), ZERO),
            pnl=pnl,
            pnl_pct=pnl / starting_balance * HUNDRED if starting_balance else ZERO,
            daily_pnl=self.calculate_daily_pnl(history, wallet.equity, now),
            max_drawdown=max_dd,
            max_drawdown_pct=max_dd_pct,
            win_rate=metrics.win_rate,
            total_trades=metrics.total_trades,
            realized_pnl=metrics.realized_pnl,
            total_fees=metrics.total_fees,
            positions=views,
        )

    def sort_trades_by_time(self, trades: Sequence[Trade], descending: bool = True) -> List[Trade]:
        return sorted(trades, key=lambda t: t.executed_at, reverse=descending)

    def export_trades_to_csv(self, trades: Sequence[Trade], filepath: str) -> None:
        """Export the trade ledger to a CSV file."""
        fieldnames = [
            "id", "order_id", "symbol", "side", "qty", "price",
            "notional", "fee", "slippage_pct", "executed_at",
        ]
        with open(filepath, "w", newline="", encoding="utf-8") as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=fieldnames)
            writer.writeheader()
            for trade in trades:
                writer.writerow({
                    "id": trade.id,
                    "order_id": trade.order_id,
                    "symbol": trade.symbol,
                    "side": trade.side.value,
                    "qty": str(trade.qty),
                    "price": str(trade.price),
                    "notional": str(trade.notional),
                    "fee": str(trade.fee),
                    "slippage_pct": str(trade.slippage_pct),
                    "executed_at": trade.executed_at.isoformat(),
                })
