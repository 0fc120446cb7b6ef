from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

import pytest
from PySide6.QtCore import QCoreApplication

from simtrader.trading import SimulationSession


@pytest.fixture(scope="session", autouse=True)
def _qt_app():
    # Offscreen so autosave timers work without a display in CI
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


class FakeClock:
    """Deterministic clock; each call advances by ``step``."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session(clock: FakeClock) -> SimulationSession:
    """Session initialized with 10,000 USDT and default risk settings."""
    s = SimulationSession(clock=clock)
    s.initialize("USDT", "10000")
    return s


@pytest.fixture
def frictionless(session: SimulationSession) -> SimulationSession:
    """Initialized session with zero fees and zero slippage."""
    session.update_risk_settings(fee_pct=0, slippage_pct=0)
    return session
