"""Session snapshot serialization.

The persisted record and the export document share one JSON layout:

    {
      "schemaVersion": 1,
      "wallet": {...}, "orders": [...], "trades": [...], "journal": [...],
      "riskSettings": {...}, "isInitialized": true,
      "startingBalance": "10000", "equityHistory": [...]
    }

Decimals are stored as strings and datetimes as ISO-8601. Exports add an
``exportedAt`` timestamp, which imports ignore.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from simtrader.trading.models import (
    BaseCurrency,
    EquitySample,
    JournalEntry,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    Trade,
    Wallet,
    utcnow,
)
from simtrader.trading.portfolio import compute_equity
from simtrader.trading.risk import RiskSettings
from simtrader.trading.session import SessionSnapshot

SCHEMA_VERSION = 1

_RISK_FIELDS = {
    "maxPositionSize": "max_position_size",
    "stopLossPct": "stop_loss_pct",
    "takeProfitPct": "take_profit_pct",
    "maxDailyLoss": "max_daily_loss",
    "feePct": "fee_pct",
    "slippagePct": "slippage_pct",
}


class SnapshotError(ValueError):
    """A persisted or imported record failed validation."""


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return None if value is None else value.isoformat()


class SessionSerializer:
    """Converts session snapshots to and from JSON-compatible dictionaries."""

    @staticmethod
    def serialize(snapshot: SessionSnapshot) -> dict:
        wallet = snapshot.wallet
        return {
            "schemaVersion": SCHEMA_VERSION,
            "wallet": {
                "baseCurrency": wallet.base_currency.value,
                "cash": str(wallet.cash),
                "equity": str(wallet.equity),
                "positions": [
                    {"symbol": p.symbol, "qty": str(p.qty), "avgPrice": str(p.avg_price)}
                    for p in wallet.positions.values()
                ],
            },
            "orders": [
                {
                    "id": o.id,
                    "symbol": o.symbol,
                    "side": o.side.value,
                    "type": o.type.value,
                    "qty": str(o.qty),
                    "price": _dec(o.price),
                    "status": o.status.value,
                    "placedAt": _ts(o.placed_at),
                    "filledAt": _ts(o.filled_at),
                    "filledPrice": _dec(o.filled_price),
                    "filledQty": _dec(o.filled_qty),
                    "rejectReason": o.reject_reason,
                }
                for o in snapshot.orders
            ],
            "trades": [
                {
                    "id": t.id,
                    "orderId": t.order_id,
                    "symbol": t.symbol,
                    "side": t.side.value,
                    "price": str(t.price),
                    "qty": str(t.qty),
                    "fee": str(t.fee),
                    "slippagePct": str(t.slippage_pct),
                    "executedAt": _ts(t.executed_at),
                }
                for t in snapshot.trades
            ],
            "journal": [
                {
                    "tradeId": j.trade_id,
                    "why": j.why,
                    "plan": j.plan,
                    "lesson": j.lesson,
                    "createdAt": _ts(j.created_at),
                }
                for j in snapshot.journal
            ],
            "riskSettings": {
                key: str(getattr(snapshot.risk_settings, attr)) for key, attr in _RISK_FIELDS.items()
            },
            "isInitialized": snapshot.is_initialized,
            "startingBalance": str(snapshot.starting_balance),
            "equityHistory": [
                {"time": _ts(s.timestamp), "equity": str(s.equity)} for s in snapshot.equity_history
            ],
        }

    @staticmethod
    def deserialize(data: Any) -> SessionSnapshot:
        """Rebuild a snapshot, validating every field.

        Raises:
            SnapshotError: Wrong schema version, missing or malformed fields,
                or a record whose ledgers do not agree
        """
        if not isinstance(data, dict):
            raise SnapshotError("Snapshot must be a JSON object")
        version = data.get("schemaVersion")
        if isinstance(version, bool) or version != SCHEMA_VERSION:
            raise SnapshotError(f"Unsupported schema version: {version!r} (expected {SCHEMA_VERSION})")

        try:
            wallet = _parse_wallet(_require(data, "wallet", dict))
            orders = [_parse_order(o) for o in _entries(data, "orders")]
            trades = [_parse_trade(t) for t in _entries(data, "trades")]
            journal = [_parse_journal(j) for j in _entries(data, "journal")]
            risk = _parse_risk(_require(data, "riskSettings", dict))
            is_initialized = _require(data, "isInitialized", bool)
            starting_balance = _decimal(data, "startingBalance")
            history = [
                EquitySample(_datetime(s, "time"), _decimal(s, "equity"))
                for s in _entries(data, "equityHistory")
            ]
        except (KeyError, TypeError, ValueError) as e:
            if isinstance(e, SnapshotError):
                raise
            raise SnapshotError(f"Malformed snapshot: {e}") from e

        try:
            _check_consistency(wallet, orders, trades, journal, starting_balance)
        except ArithmeticError as e:
            raise SnapshotError(f"Snapshot amounts out of range: {e!r}") from e
        return SessionSnapshot(
            wallet=wallet,
            orders=orders,
            trades=trades,
            journal=journal,
            risk_settings=risk,
            is_initialized=is_initialized,
            starting_balance=starting_balance,
            equity_history=sorted(history, key=lambda s: s.timestamp),
        )

    @staticmethod
    def export(snapshot: SessionSnapshot, exported_at: Optional[datetime] = None) -> dict:
        """Serialize a snapshot for export, stamped with ``exportedAt``."""
        data = SessionSerializer.serialize(snapshot)
        data["exportedAt"] = (exported_at or utcnow()).isoformat()
        return data

    @staticmethod
    def import_(data: Any) -> SessionSnapshot:
        """Validate and rebuild an exported document."""
        if isinstance(data, dict) and "exportedAt" in data:
            data = {k: v for k, v in data.items() if k != "exportedAt"}
        return SessionSerializer.deserialize(data)


def _require(obj: Dict[str, Any], key: str, kind: type) -> Any:
    if key not in obj:
        raise SnapshotError(f"Missing field '{key}'")
    value = obj[key]
    if not isinstance(value, kind):
        raise SnapshotError(f"Field '{key}' must be {kind.__name__}, got {type(value).__name__}")
    return value


def _entries(obj: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    items = _require(obj, key, list)
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise SnapshotError(f"Entry {i} of '{key}' must be an object, got {type(item).__name__}")
    return items


def _decimal(obj: Dict[str, Any], key: str, optional: bool = False) -> Optional[Decimal]:
    value = obj.get(key)
    if value is None:
        if optional:
            return None
        raise SnapshotError(f"Missing field '{key}'")
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise SnapshotError(f"Field '{key}' must be a number")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise SnapshotError(f"Field '{key}' is not a number: {value!r}") from None
    if not result.is_finite():
        raise SnapshotError(f"Field '{key}' must be finite")
    return result


def _datetime(obj: Dict[str, Any], key: str, optional: bool = False) -> Optional[datetime]:
    value = obj.get(key)
    if value is None:
        if optional:
            return None
        raise SnapshotError(f"Missing field '{key}'")
    if not isinstance(value, str):
        raise SnapshotError(f"Field '{key}' must be an ISO-8601 string")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise SnapshotError(f"Field '{key}' is not an ISO-8601 timestamp: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_text(obj: Dict[str, Any], key: str) -> Optional[str]:
    value = obj.get(key)
    if value is not None and not isinstance(value, str):
        raise SnapshotError(f"Field '{key}' must be a string")
    return value


def _positive(obj: Dict[str, Any], key: str) -> Decimal:
    value = _decimal(obj, key)
    if value <= 0:
        raise SnapshotError(f"Field '{key}' must be positive, got {value}")
    return value


def _parse_wallet(data: Dict[str, Any]) -> Wallet:
    positions: Dict[str, Position] = {}
    for item in _entries(data, "positions"):
        symbol = _require(item, "symbol", str)
        qty = _decimal(item, "qty")
        avg = _decimal(item, "avgPrice")
        if qty == 0:
            raise SnapshotError(f"Position {symbol} has zero quantity")
        if avg < 0:
            raise SnapshotError(f"Position {symbol} has a negative average price")
        if symbol in positions:
            raise SnapshotError(f"Duplicate position for {symbol}")
        positions[symbol] = Position(symbol=symbol, qty=qty, avg_price=avg)
    return Wallet(
        base_currency=BaseCurrency(_require(data, "baseCurrency", str)),
        cash=_decimal(data, "cash"),
        equity=_decimal(data, "equity"),
        positions=positions,
    )


def _parse_order(data: Dict[str, Any]) -> Order:
    order = Order(
        id=_require(data, "id", str),
        symbol=_require(data, "symbol", str),
        side=OrderSide(_require(data, "side", str)),
        type=OrderType(_require(data, "type", str)),
        qty=_positive(data, "qty"),
        price=_decimal(data, "price", optional=True),
        status=OrderStatus(_require(data, "status", str)),
        placed_at=_datetime(data, "placedAt"),
        filled_at=_datetime(data, "filledAt", optional=True),
        filled_price=_decimal(data, "filledPrice", optional=True),
        filled_qty=_decimal(data, "filledQty", optional=True),
        reject_reason=_optional_text(data, "rejectReason"),
    )
    if order.type is OrderType.LIMIT and (order.price is None or order.price <= 0):
        raise SnapshotError(f"Limit order {order.id} has no valid price")
    fill_fields = (order.filled_at, order.filled_price, order.filled_qty)
    if order.status is OrderStatus.FILLED and None in fill_fields:
        raise SnapshotError(f"Filled order {order.id} is missing fill details")
    if order.status is not OrderStatus.FILLED and any(f is not None for f in fill_fields):
        raise SnapshotError(f"Order {order.id} has fill details but status {order.status.value}")
    return order


def _parse_trade(data: Dict[str, Any]) -> Trade:
    fee = _decimal(data, "fee")
    if fee < 0:
        raise SnapshotError("Trade fee must not be negative")
    return Trade(
        id=_require(data, "id", str),
        order_id=_require(data, "orderId", str),
        symbol=_require(data, "symbol", str),
        side=OrderSide(_require(data, "side", str)),
        price=_positive(data, "price"),
        qty=_positive(data, "qty"),
        fee=fee,
        slippage_pct=_decimal(data, "slippagePct"),
        executed_at=_datetime(data, "executedAt"),
    )


def _parse_journal(data: Dict[str, Any]) -> JournalEntry:
    return JournalEntry(
        trade_id=_require(data, "tradeId", str),
        why=str(data.get("why", "")),
        plan=str(data.get("plan", "")),
        lesson=str(data.get("lesson", "")),
        created_at=_datetime(data, "createdAt"),
    )


def _parse_risk(data: Dict[str, Any]) -> RiskSettings:
    values = {attr: _decimal(data, key) for key, attr in _RISK_FIELDS.items()}
    return RiskSettings(**values)


def _check_consistency(
    wallet: Wallet,
    orders: List[Order],
    trades: List[Trade],
    journal: List[JournalEntry],
    starting_balance: Decimal,
) -> None:
    if starting_balance <= 0:
        raise SnapshotError("Starting balance must be positive")
    if wallet.equity != compute_equity(wallet.cash, wallet.positions.values()):
        raise SnapshotError("Wallet equity does not match cash plus positions at cost")

    order_ids = [o.id for o in orders]
    if len(set(order_ids)) != len(order_ids):
        raise SnapshotError("Duplicate order ids")
    filled = {o.id for o in orders if o.status is OrderStatus.FILLED}

    trade_ids = [t.id for t in trades]
    if len(set(trade_ids)) != len(trade_ids):
        raise SnapshotError("Duplicate trade ids")
    traded = [t.order_id for t in trades]
    if set(traded) != filled or len(set(traded)) != len(traded):
        raise SnapshotError("Trades must match filled orders one to one")

    known_trades = set(trade_ids)
    for entry in journal:
        if entry.trade_id not in known_trades:
            raise SnapshotError(f"Journal entry references unknown trade {entry.trade_id}")
