"""
CLI entry point: simtrader init | order | fill | cancel | status | orders |
trades | risk | journal | export | import | reset.

Every command restores the session from the storage directory and writes
it back before exiting.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Dict, Optional, Tuple

import click
from PySide6.QtCore import QCoreApplication

from simtrader.config import EngineConfig
from simtrader.storage import JsonFileStorage, SessionAutosaver, SessionSerializer, SnapshotError, load_session
from simtrader.trading import OrderStatus, PerformanceAnalytics, SimulationError, SimulationSession, Trade

logger = logging.getLogger("simtrader")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s  %(message)s",
        stream=sys.stderr,
    )


def _session(ctx: click.Context) -> SimulationSession:
    return ctx.obj["session"]


def _parse_prices(pairs: Tuple[str, ...]) -> Dict[str, str]:
    prices = {}
    for pair in pairs:
        symbol, sep, price = pair.partition("=")
        if not sep or not symbol or not price:
            raise click.BadParameter(f"expected SYMBOL=PRICE, got {pair!r}", param_hint="--price")
        prices[symbol.strip().upper()] = price.strip()
    return prices


@click.group()
@click.option("--data-dir", default=None, help="Storage directory (default: $SIMTRADER_DATA_DIR or ~/.simtrader/data).")
@click.pass_context
def cli(ctx: click.Context, data_dir: Optional[str]) -> None:
    """simtrader: paper-trading wallet with simulated fills."""
    config = EngineConfig.from_env()
    if data_dir:
        config.data_dir = data_dir
    _setup_logging(config.log_level)

    # QTimer-based autosave needs a Qt application object
    app = QCoreApplication.instance() or QCoreApplication([])
    storage = JsonFileStorage(config.data_dir)
    session = load_session(
        storage,
        strict_transitions=config.strict_transitions,
        enforce_risk_limits=config.enforce_risk_limits,
    )
    autosaver = SessionAutosaver(session, storage, delay_ms=config.autosave_delay_ms)
    ctx.ensure_object(dict)
    ctx.obj.update(app=app, config=config, storage=storage, session=session, autosaver=autosaver)
    ctx.call_on_close(autosaver.detach)


@cli.command()
@click.option("--currency", type=click.Choice(["USDT", "USD", "INR"]), default="USDT", show_default=True)
@click.option("--balance", default="10000", show_default=True, help="Starting cash balance.")
@click.pass_context
def init(ctx: click.Context, currency: str, balance: str) -> None:
    """Start a new session, clearing all orders, trades and journal entries."""
    try:
        _session(ctx).initialize(currency, balance)
    except (SimulationError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(f"Session initialized: {balance} {currency}")


@cli.command()
@click.argument("symbol")
@click.argument("side", type=click.Choice(["BUY", "SELL"], case_sensitive=False))
@click.argument("qty")
@click.option("--type", "order_type", type=click.Choice(["MARKET", "LIMIT"], case_sensitive=False), default="MARKET", show_default=True)
@click.option("--price", default=None, help="Limit price (LIMIT orders only).")
@click.option("--market-price", default=None, help="Fill immediately against this market price.")
@click.pass_context
def order(
    ctx: click.Context,
    symbol: str,
    side: str,
    qty: str,
    order_type: str,
    price: Optional[str],
    market_price: Optional[str],
) -> None:
    """Submit an order, optionally filling it right away."""
    session = _session(ctx)
    try:
        order_id = session.submit_order(symbol, side.upper(), order_type.upper(), qty, price)
        click.echo(f"Order {order_id} NEW")
        if market_price is not None:
            _report_fill(session, order_id, session.fill(order_id, market_price))
    except SimulationError as e:
        raise click.ClickException(str(e))


@cli.command()
@click.argument("order_id")
@click.argument("market_price")
@click.pass_context
def fill(ctx: click.Context, order_id: str, market_price: str) -> None:
    """Fill a NEW order against a market price."""
    session = _session(ctx)
    try:
        _report_fill(session, order_id, session.fill(order_id, market_price))
    except SimulationError as e:
        raise click.ClickException(str(e))


def _report_fill(session: SimulationSession, order_id: str, trade: Optional[Trade]) -> None:
    if trade is not None:
        click.echo(
            f"Filled {trade.side.value} {trade.qty} {trade.symbol} @ {trade.price} "
            f"(fee {trade.fee}) trade {trade.id}"
        )
        return
    current = session.get_order(order_id)
    suffix = f": {current.reject_reason}" if current.reject_reason else ""
    click.echo(f"Order {order_id} not filled ({current.status.value}){suffix}")


@cli.command()
@click.argument("order_id")
@click.pass_context
def cancel(ctx: click.Context, order_id: str) -> None:
    """Cancel a NEW order."""
    try:
        canceled = _session(ctx).cancel_order(order_id)
    except SimulationError as e:
        raise click.ClickException(str(e))
    click.echo(f"Order {order_id} {'canceled' if canceled else 'already final'}")


@cli.command()
@click.option("--price", "prices", multiple=True, help="Mark price as SYMBOL=PRICE (repeatable).")
@click.pass_context
def status(ctx: click.Context, prices: Tuple[str, ...]) -> None:
    """Show wallet, positions and performance figures."""
    session = _session(ctx)
    try:
        summary = session.get_portfolio(_parse_prices(prices))
    except SimulationError as e:
        raise click.ClickException(str(e))
    wallet = session.get_wallet()
    state = "initialized" if session.is_initialized else "not initialized"
    click.echo(f"Session {state} ({wallet.base_currency.value})")
    click.echo(f"Cash:          {summary.cash}")
    click.echo(f"Equity:        {summary.equity}")
    click.echo(f"Market value:  {summary.market_value}")
    click.echo(f"PnL:           {summary.pnl} ({summary.pnl_pct:.2f}%)")
    click.echo(f"Daily PnL:     {summary.daily_pnl}")
    click.echo(f"Realized PnL:  {summary.realized_pnl}  fees {summary.total_fees}")
    click.echo(f"Max drawdown:  {summary.max_drawdown} ({summary.max_drawdown_pct:.2f}%)")
    click.echo(f"Win rate:      {summary.win_rate:.1f}% over {summary.total_trades} trades")
    for view in summary.positions:
        click.echo(
            f"  {view.symbol}: qty {view.qty} avg {view.avg_price} mark {view.market_price} "
            f"pnl {view.pnl} ({view.pnl_pct:.2f}%)"
        )


@cli.command()
@click.option("--status", "status_filter", type=click.Choice([s.value for s in OrderStatus]), default=None)
@click.pass_context
def orders(ctx: click.Context, status_filter: Optional[str]) -> None:
    """List orders, optionally by status."""
    selected = OrderStatus(status_filter) if status_filter else None
    for o in _session(ctx).get_orders(selected):
        price = f" @ {o.price}" if o.price is not None else ""
        filled = f" filled {o.filled_qty} @ {o.filled_price}" if o.status is OrderStatus.FILLED else ""
        click.echo(f"{o.id} {o.status.value} {o.side.value} {o.type.value} {o.qty} {o.symbol}{price}{filled}")


@cli.command()
@click.option("--csv", "csv_path", default=None, type=click.Path(dir_okay=False), help="Write the trade ledger to a CSV file.")
@click.pass_context
def trades(ctx: click.Context, csv_path: Optional[str]) -> None:
    """List executed trades, newest first."""
    ledger = _session(ctx).get_trades()
    analytics = PerformanceAnalytics()
    if csv_path:
        analytics.export_trades_to_csv(ledger, csv_path)
        click.echo(f"Wrote {len(ledger)} trades to {csv_path}")
        return
    for t in analytics.sort_trades_by_time(ledger):
        click.echo(f"{t.id} {t.executed_at.isoformat()} {t.side.value} {t.qty} {t.symbol} @ {t.price} fee {t.fee}")


@cli.command()
@click.option("--fee-pct", default=None)
@click.option("--slippage-pct", default=None)
@click.option("--max-position-size", default=None)
@click.option("--stop-loss-pct", default=None)
@click.option("--take-profit-pct", default=None)
@click.option("--max-daily-loss", default=None)
@click.pass_context
def risk(ctx: click.Context, **options: Optional[str]) -> None:
    """Show or update risk settings."""
    session = _session(ctx)
    changes = {k: v for k, v in options.items() if v is not None}
    try:
        settings = session.update_risk_settings(**changes) if changes else session.get_risk_settings()
    except ValueError as e:
        raise click.ClickException(str(e))
    for name in options:
        click.echo(f"{name}: {getattr(settings, name)}")


@cli.command()
@click.argument("trade_id")
@click.option("--why", default="")
@click.option("--plan", default="")
@click.option("--lesson", default="")
@click.pass_context
def journal(ctx: click.Context, trade_id: str, why: str, plan: str, lesson: str) -> None:
    """Attach journal notes to a trade."""
    try:
        _session(ctx).add_journal_entry(trade_id, why=why, plan=plan, lesson=lesson)
    except SimulationError as e:
        raise click.ClickException(str(e))
    click.echo(f"Journal entry added for {trade_id}")


@cli.command(name="export")
@click.argument("path", type=click.Path(dir_okay=False))
@click.pass_context
def export_cmd(ctx: click.Context, path: str) -> None:
    """Export the full session to a JSON file."""
    data = SessionSerializer.export(_session(ctx).snapshot())
    Path(path).write_text(json.dumps(data, indent=2), encoding="utf-8")
    click.echo(f"Exported session to {path}")


@cli.command(name="import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_cmd(ctx: click.Context, path: str) -> None:
    """Replace the session with a previously exported JSON file."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        snapshot = SessionSerializer.import_(data)
    except (json.JSONDecodeError, SnapshotError) as e:
        raise click.ClickException(f"Import failed: {e}")
    _session(ctx).restore(snapshot)
    click.echo(f"Imported {len(snapshot.orders)} orders and {len(snapshot.trades)} trades")


@cli.command()
@click.option("--yes", is_flag=True, help="Confirm the reset.")
@click.pass_context
def reset(ctx: click.Context, yes: bool) -> None:
    """Reset the session to the default uninitialized state."""
    if not yes:
        raise click.ClickException("Refusing to reset without --yes")
    _session(ctx).reset()
    click.echo("Session reset")


def main() -> int:
    return cli(obj={})


if __name__ == "__main__":
    raise SystemExit(main())
