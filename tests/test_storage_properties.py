"""Property-based tests for storage module.

Tests the storage service, snapshot serializer and autosave wiring.
"""

from __future__ import annotations

import json
import tempfile
import time
from decimal import Decimal
from typing import Any, Dict, Optional

import pytest
from hypothesis import given, settings, strategies as st
from PySide6.QtCore import QCoreApplication

from simtrader.storage import (
    SCHEMA_VERSION,
    IStorageService,
    JsonFileStorage,
    SessionAutosaver,
    SessionSerializer,
    SnapshotError,
    load_session,
)
from simtrader.trading import OrderStatus, SimulationSession


@st.composite
def document_strategy(draw):
    """JSON documents shaped like stored session records."""
    return {
        "schemaVersion": draw(st.integers(min_value=0, max_value=5)),
        "cash": str(draw(st.decimals(min_value=Decimal("-1000000"), max_value=Decimal("1000000"), places=8))),
        "symbols": draw(st.lists(st.sampled_from(["BTCUSDT", "ETHUSDT", "BNBUSDT", "SOLUSDT"]), max_size=5)),
        "note": draw(st.text(max_size=40)),
        "isInitialized": draw(st.booleans()),
    }


class MemoryStorage(IStorageService):

    def __init__(self, fail: bool = False) -> None:
        self.data: Dict[str, Any] = {}
        self.fail = fail
        self.saves = 0

    def save(self, key: str, data: Any) -> None:
        if self.fail:
            raise OSError("disk full")
        self.saves += 1
        self.data[key] = json.loads(json.dumps(data))

    def load(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


def trading_session() -> SimulationSession:
    """Session with one open position, one round trip, a canceled order and a journal note."""
    session = SimulationSession()
    session.initialize("USD", "25000")
    buy = session.submit_order("BTCUSDT", "BUY", "MARKET", "0.5")
    trade = session.fill(buy, "42000.5")
    session.fill(session.submit_order("ETHUSDT", "SELL", "LIMIT", "2", "2500"), "2400")
    session.fill(session.submit_order("ETHUSDT", "BUY", "MARKET", "2"), "2300")
    session.cancel_order(session.submit_order("SOLUSDT", "BUY", "LIMIT", "10", "20"))
    session.add_journal_entry(trade.id, why="breakout", plan="trail stop", lesson="size smaller")
    session.update_risk_settings(stop_loss_pct=3)
    return session


# ----- JsonFileStorage -----

@given(document=document_strategy())
@settings(max_examples=100)
def test_storage_round_trip(document: Dict[str, Any]):
    """
    **Property: Storage round-trip**

    Any JSON document saved under a key SHALL load back unchanged.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        storage = JsonFileStorage(tmpdir)

        storage.save("session", document)

        assert storage.load("session") == document


@given(key=st.text(min_size=1, max_size=50, alphabet=st.characters(whitelist_categories=('L', 'N'))))
@settings(max_examples=100)
def test_storage_delete_removes_data(key: str):
    """Test that delete properly removes stored data."""
    with tempfile.TemporaryDirectory() as tmpdir:
        storage = JsonFileStorage(tmpdir)
        test_data = {"test": "value"}

        storage.save(key, test_data)
        assert storage.load(key) == test_data

        storage.delete(key)

        assert storage.load(key) is None


def test_storage_load_nonexistent_returns_none():
    """Test that loading a non-existent key returns None."""
    with tempfile.TemporaryDirectory() as tmpdir:
        storage = JsonFileStorage(tmpdir)
        assert storage.load("nonexistent_key") is None
        storage.delete("nonexistent_key")


def test_storage_corrupt_file_returns_none(tmp_path):
    storage = JsonFileStorage(tmp_path)
    storage.path_for("session").write_text("{not json", encoding="utf-8")

    assert storage.load("session") is None


def test_storage_failed_write_keeps_previous_document(tmp_path):
    storage = JsonFileStorage(tmp_path)
    storage.save("session", {"cash": "1"})

    with pytest.raises(TypeError):
        storage.save("session", {"cash": object()})

    assert storage.load("session") == {"cash": "1"}
    assert [p.name for p in tmp_path.iterdir()] == ["session.json"]


# ----- SessionSerializer -----

def test_serializer_round_trip():
    session = trading_session()
    snapshot = session.snapshot()

    data = json.loads(json.dumps(SessionSerializer.serialize(snapshot)))
    restored = SessionSerializer.deserialize(data)

    assert data["schemaVersion"] == SCHEMA_VERSION
    assert restored.wallet == snapshot.wallet
    assert restored.orders == snapshot.orders
    assert restored.trades == snapshot.trades
    assert restored.journal == snapshot.journal
    assert restored.risk_settings == snapshot.risk_settings
    assert restored.is_initialized is True
    assert restored.starting_balance == Decimal("25000")
    assert restored.equity_history == snapshot.equity_history


def test_serialized_layout():
    data = SessionSerializer.serialize(trading_session().snapshot())

    assert data["wallet"]["baseCurrency"] == "USD"
    assert data["wallet"]["positions"] == [{"symbol": "BTCUSDT", "qty": "0.5", "avgPrice": "42042.5005"}]
    assert data["riskSettings"]["stopLossPct"] == "3"
    assert [o["status"] for o in data["orders"]] == ["FILLED", "FILLED", "FILLED", "CANCELED"]
    assert data["trades"][1]["slippagePct"] == "0"
    assert data["journal"][0]["why"] == "breakout"
    assert len(data["equityHistory"]) == 4


@pytest.mark.parametrize(
    "mutate, message",
    [
        (lambda d: d.update(schemaVersion=SCHEMA_VERSION + 1), "schema version"),
        (lambda d: d.pop("schemaVersion"), "schema version"),
        (lambda d: d.pop("trades"), "trades"),
        (lambda d: d["wallet"].update(equity="1"), "equity"),
        (lambda d: d["wallet"].update(cash="NaN"), "finite"),
        (lambda d: d["wallet"].update(baseCurrency="EUR"), "Malformed"),
        (lambda d: d["wallet"]["positions"][0].update(qty="0"), "zero quantity"),
        (lambda d: d["orders"][0].update(status="NEW"), "fill details"),
        (lambda d: d["orders"][3].update(qty="-1"), "positive"),
        (lambda d: d["trades"].pop(), "one to one"),
        (lambda d: d["journal"][0].update(tradeId="trade_missing"), "unknown trade"),
        (lambda d: d["riskSettings"].update(feePct="-1"), "Malformed"),
        (lambda d: d.update(isInitialized="yes"), "isInitialized"),
        (lambda d: d.update(schemaVersion=True), "schema version"),
        (lambda d: d.update(equityHistory=[5]), "equityHistory"),
        (lambda d: d.update(equityHistory=[None]), "equityHistory"),
        (lambda d: d.update(trades=["x"]), "trades"),
        (lambda d: d.update(orders=[[]]), "orders"),
        (lambda d: d.update(journal=[3]), "journal"),
        (lambda d: d["wallet"].update(positions=["BTCUSDT"]), "positions"),
        (lambda d: d["orders"][3].update(rejectReason=5), "rejectReason"),
        (lambda d: d["wallet"]["positions"][0].update(qty="9E+999999", avgPrice="9E+999999"), "out of range"),
    ],
)
def test_invalid_records_are_rejected(mutate, message):
    data = json.loads(json.dumps(SessionSerializer.serialize(trading_session().snapshot())))
    mutate(data)

    with pytest.raises(SnapshotError, match=message):
        SessionSerializer.deserialize(data)


@pytest.mark.parametrize("data", [None, [], "session", 42])
def test_non_object_is_rejected(data):
    with pytest.raises(SnapshotError):
        SessionSerializer.deserialize(data)


def test_export_then_import():
    session = trading_session()

    exported = json.loads(json.dumps(SessionSerializer.export(session.snapshot())))
    assert "exportedAt" in exported

    other = SimulationSession()
    other.restore(SessionSerializer.import_(exported))

    assert other.get_wallet() == session.get_wallet()
    assert other.get_journal() == session.get_journal()
    assert other.get_orders(OrderStatus.CANCELED) == session.get_orders(OrderStatus.CANCELED)


# ----- load_session -----

def test_load_session_restores_stored_state(tmp_path):
    storage = JsonFileStorage(tmp_path)
    stored = trading_session()
    storage.save("session", SessionSerializer.serialize(stored.snapshot()))

    session = load_session(storage)

    assert session.is_initialized
    assert session.get_trades() == stored.get_trades()
    assert session.get_risk_settings().stop_loss_pct == Decimal("3")


@pytest.mark.parametrize(
    "field, value",
    [
        ("schemaVersion", 0),
        ("equityHistory", [5]),
        ("equityHistory", [None]),
        ("trades", ["x"]),
    ],
)
def test_load_session_discards_untrusted_record(tmp_path, field, value):
    storage = JsonFileStorage(tmp_path)
    data = SessionSerializer.serialize(trading_session().snapshot())
    data[field] = value
    storage.save("session", data)

    session = load_session(storage)

    assert not session.is_initialized
    assert session.get_wallet().cash == Decimal("10000")
    assert storage.load("session") is None


def test_load_session_without_record():
    session = load_session(MemoryStorage(), strict_transitions=True)
    assert not session.is_initialized
    assert session.get_orders() == []


# ----- SessionAutosaver -----

def test_autosaver_flush_writes_snapshot():
    storage = MemoryStorage()
    session = SimulationSession()
    autosaver = SessionAutosaver(session, storage, delay_ms=10000)
    saved = []
    autosaver.saved.connect(lambda: saved.append(True))

    session.initialize("USDT", 1000)
    assert autosaver.is_pending

    assert autosaver.flush() is True
    assert not autosaver.is_pending
    assert saved == [True]
    restored = SessionSerializer.deserialize(storage.load("session"))
    assert restored.starting_balance == Decimal("1000")


def test_autosaver_coalesces_bursts():
    storage = MemoryStorage()
    session = SimulationSession()
    autosaver = SessionAutosaver(session, storage, delay_ms=0)

    session.initialize("USDT", 1000)
    for _ in range(5):
        session.submit_order("BTCUSDT", "BUY", "MARKET", 1)

    deadline = time.monotonic() + 5
    while autosaver.is_pending and time.monotonic() < deadline:
        QCoreApplication.processEvents()

    assert not autosaver.is_pending
    assert storage.saves == 1
    assert len(storage.load("session")["orders"]) == 5


def test_autosaver_failure_keeps_session_usable():
    session = SimulationSession()
    autosaver = SessionAutosaver(session, MemoryStorage(fail=True), delay_ms=10000)
    failures = []
    autosaver.saveFailed.connect(failures.append)

    session.initialize("USDT", 1000)
    order_id = session.submit_order("BTCUSDT", "BUY", "MARKET", 1)

    assert autosaver.flush() is False
    assert failures == ["disk full"]
    assert autosaver.is_pending
    assert session.fill(order_id, 100) is not None


def test_detach_flushes_pending_changes():
    storage = MemoryStorage()
    session = SimulationSession()
    autosaver = SessionAutosaver(session, storage, delay_ms=10000)

    session.initialize("INR", 5000)
    autosaver.detach()
    session.reset()

    assert storage.saves == 1
    assert storage.load("session")["isInitialized"] is True
    assert not autosaver.is_pending
