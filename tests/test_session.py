"""Tests for the simulation session controller: lifecycle, journal, risk settings and listeners."""

from __future__ import annotations

import logging
from decimal import Decimal

import pytest

from simtrader.trading import (
    DEFAULT_RISK_SETTINGS,
    BaseCurrency,
    InvalidOrder,
    OrderStatus,
    RiskSettings,
    SessionNotInitialized,
    SimulationSession,
    StateChange,
    UnknownTrade,
)


def place_and_fill(session: SimulationSession, side: str, qty, price) -> str:
    order_id = session.submit_order("BTCUSDT", side, "MARKET", qty)
    session.fill(order_id, price)
    return order_id


class TestLifecycle:

    def test_new_session_is_uninitialized(self):
        session = SimulationSession()

        assert not session.is_initialized
        wallet = session.get_wallet()
        assert wallet.base_currency is BaseCurrency.USDT
        assert wallet.cash == Decimal("10000")
        assert session.get_equity_history() == []

    def test_initialize_sets_wallet_and_first_sample(self, clock):
        session = SimulationSession(clock=clock)
        session.initialize("INR", "250000")

        wallet = session.get_wallet()
        assert session.is_initialized
        assert wallet.base_currency is BaseCurrency.INR
        assert wallet.cash == wallet.equity == Decimal("250000")
        assert session.starting_balance == Decimal("250000")
        history = session.get_equity_history()
        assert len(history) == 1
        assert history[0].equity == Decimal("250000")

    @pytest.mark.parametrize("balance", [0, -5, "-0.01"])
    def test_initialize_rejects_non_positive_balance(self, balance):
        session = SimulationSession()
        with pytest.raises(ValueError):
            session.initialize("USDT", balance)
        assert not session.is_initialized

    @pytest.mark.parametrize("balance", ["abc", "NaN", None, True])
    def test_initialize_rejects_non_numeric_balance(self, balance):
        session = SimulationSession()
        with pytest.raises(ValueError, match="Starting balance") as excinfo:
            session.initialize("USDT", balance)
        assert not isinstance(excinfo.value, InvalidOrder)
        assert not session.is_initialized

    def test_initialize_rejects_unknown_currency(self):
        with pytest.raises(ValueError):
            SimulationSession().initialize("EUR", 1000)

    def test_reinitialize_clears_ledgers(self, frictionless):
        place_and_fill(frictionless, "BUY", 1, 100)

        frictionless.initialize("USD", 500)

        assert frictionless.get_orders() == []
        assert frictionless.get_trades() == []
        assert frictionless.get_journal() == []
        assert frictionless.get_wallet().positions == {}
        assert len(frictionless.get_equity_history()) == 1

    def test_reset_returns_to_defaults(self, session):
        session.initialize("INR", 50000)
        session.update_risk_settings(fee_pct=1)
        order_id = session.submit_order("BTCUSDT", "BUY", "MARKET", 1)
        trade = session.fill(order_id, 100)
        session.add_journal_entry(trade.id, why="breakout")

        session.reset()

        assert not session.is_initialized
        wallet = session.get_wallet()
        assert wallet.base_currency is BaseCurrency.USDT
        assert wallet.cash == wallet.equity == Decimal("10000")
        assert wallet.positions == {}
        assert session.get_orders() == []
        assert session.get_trades() == []
        assert session.get_journal() == []
        assert session.get_equity_history() == []
        assert session.get_risk_settings() == RiskSettings()
        assert session.starting_balance == Decimal("10000")

    def test_orders_rejected_after_reset(self, session):
        session.reset()
        with pytest.raises(SessionNotInitialized):
            session.submit_order("BTCUSDT", "BUY", "MARKET", 1)

    def test_restore_replaces_state(self, frictionless):
        place_and_fill(frictionless, "BUY", 2, 100)
        snapshot = frictionless.snapshot()

        other = SimulationSession()
        other.restore(snapshot)

        assert other.is_initialized
        assert other.get_wallet() == frictionless.get_wallet()
        assert other.get_orders() == frictionless.get_orders()
        assert other.get_trades() == frictionless.get_trades()
        assert other.get_equity_history() == frictionless.get_equity_history()

    def test_restored_wallet_is_detached_from_snapshot(self, frictionless):
        place_and_fill(frictionless, "BUY", 2, 100)
        snapshot = frictionless.snapshot()
        other = SimulationSession()
        other.restore(snapshot)

        snapshot.wallet.cash = Decimal("0")
        snapshot.wallet.positions["BTCUSDT"].qty = Decimal("99")
        snapshot.wallet.positions.clear()

        wallet = other.get_wallet()
        assert wallet.cash == frictionless.get_wallet().cash
        assert other.get_position("BTCUSDT").qty == Decimal("2")

    def test_default_risk_settings_match_fresh_settings(self):
        assert DEFAULT_RISK_SETTINGS == RiskSettings()
        assert SimulationSession().get_risk_settings() == DEFAULT_RISK_SETTINGS


class TestJournal:

    def test_entry_is_attached_to_trade(self, frictionless):
        order_id = frictionless.submit_order("ETHUSDT", "BUY", "MARKET", "0.5")
        trade = frictionless.fill(order_id, 2000)

        entry = frictionless.add_journal_entry(trade.id, why="trend", plan="hold a week", lesson="")

        assert entry.trade_id == trade.id
        assert frictionless.get_journal() == [entry]
        assert entry.why == "trend"

    def test_unknown_trade_is_rejected(self, session):
        with pytest.raises(UnknownTrade):
            session.add_journal_entry("trade_missing", why="?")
        assert session.get_journal() == []

    def test_order_id_is_not_a_trade_id(self, frictionless):
        order_id = place_and_fill(frictionless, "BUY", 1, 100)
        with pytest.raises(UnknownTrade):
            frictionless.add_journal_entry(order_id)


class TestRiskSettings:

    def test_defaults(self):
        risk = SimulationSession().get_risk_settings()
        assert risk.max_position_size == Decimal("25")
        assert risk.stop_loss_pct == Decimal("5")
        assert risk.take_profit_pct == Decimal("15")
        assert risk.max_daily_loss == Decimal("10")
        assert risk.fee_pct == Decimal("0.1")
        assert risk.slippage_pct == Decimal("0.1")

    def test_unknown_field_is_rejected(self, session):
        with pytest.raises(ValueError, match="Unknown risk settings"):
            session.update_risk_settings(leverage=10)
        assert session.get_risk_settings() == RiskSettings()

    @pytest.mark.parametrize("value", [-1, "abc", "Infinity"])
    def test_invalid_value_is_rejected(self, session, value):
        with pytest.raises(ValueError):
            session.update_risk_settings(fee_pct=value)
        assert session.get_risk_settings().fee_pct == Decimal("0.1")

    def test_changes_apply_to_later_fills_only(self, session):
        session.update_risk_settings(slippage_pct=0)
        first = session.fill(session.submit_order("BTCUSDT", "BUY", "MARKET", 1), 100)

        session.update_risk_settings(fee_pct=1)
        second = session.fill(session.submit_order("BTCUSDT", "BUY", "MARKET", 1), 100)

        assert session.get_trades()[0] == first
        assert first.fee == Decimal("0.1")
        assert second.fee == Decimal("1")


class TestListeners:

    def test_commands_are_announced(self, frictionless):
        changes = []
        frictionless.subscribe(changes.append)

        order_id = frictionless.submit_order("BTCUSDT", "BUY", "MARKET", 1)
        trade = frictionless.fill(order_id, 100)
        frictionless.add_journal_entry(trade.id, why="test")
        other = frictionless.submit_order("BTCUSDT", "SELL", "LIMIT", 1, 200)
        frictionless.cancel_order(other)
        frictionless.cancel_order(other)
        frictionless.update_risk_settings(fee_pct=0.2)
        frictionless.reset()

        assert changes == [
            StateChange("order_submitted", order_id),
            StateChange("order_filled", order_id),
            StateChange("journal_added", trade.id),
            StateChange("order_submitted", other),
            StateChange("order_canceled", other),
            StateChange("risk_updated"),
            StateChange("reset"),
        ]

    def test_rejection_is_announced(self, clock):
        session = SimulationSession(enforce_risk_limits=True, clock=clock)
        session.initialize("USDT", 10000)
        changes = []
        session.subscribe(changes.append)

        order_id = session.submit_order("BTCUSDT", "BUY", "MARKET", 1)
        assert session.fill(order_id, 5000) is None

        assert session.get_order(order_id).status is OrderStatus.REJECTED
        assert changes[-1] == StateChange("order_rejected", order_id)

    def test_failing_listener_does_not_break_commands(self, frictionless, caplog):
        received = []

        def broken(change):
            raise RuntimeError("listener down")

        frictionless.subscribe(broken)
        frictionless.subscribe(received.append)

        with caplog.at_level(logging.ERROR):
            order_id = place_and_fill(frictionless, "BUY", 1, 100)

        assert frictionless.get_order(order_id).status is OrderStatus.FILLED
        assert len(received) == 2
        assert "State listener failed" in caplog.text

    def test_unsubscribe(self, session):
        changes = []
        session.subscribe(changes.append)
        session.subscribe(changes.append)
        session.unsubscribe(changes.append)

        session.submit_order("BTCUSDT", "BUY", "MARKET", 1)

        assert changes == []


class TestEquityHistory:

    def test_one_sample_per_fill(self, frictionless):
        place_and_fill(frictionless, "BUY", 1, 100)
        place_and_fill(frictionless, "SELL", 1, 150)
        frictionless.cancel_order(frictionless.submit_order("BTCUSDT", "BUY", "MARKET", 1))

        history = frictionless.get_equity_history()

        assert [s.equity for s in history] == [Decimal("10000"), Decimal("10000"), Decimal("10050")]
        assert all(a.timestamp <= b.timestamp for a, b in zip(history, history[1:]))

    def test_portfolio_summary(self, frictionless):
        place_and_fill(frictionless, "BUY", 2, 100)
        place_and_fill(frictionless, "SELL", 1, 120)

        summary = frictionless.get_portfolio({"btcusdt": 130})

        assert summary.equity == Decimal("10020")
        assert summary.pnl == Decimal("20")
        assert summary.realized_pnl == Decimal("20")
        assert summary.unrealized_pnl == Decimal("30")
        assert summary.win_rate == Decimal("100")
        assert summary.total_trades == 2
        assert summary.positions[0].market_price == Decimal("130")
