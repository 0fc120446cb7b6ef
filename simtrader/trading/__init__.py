# Trading module
"""Paper trading core: order execution, position accounting, analytics and the session controller."""

from .models import (
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
)
from .risk import DEFAULT_RISK_SETTINGS, RiskSettings
from .portfolio import IPortfolioManager, PortfolioManager
from .orders import (
    AlreadyTerminal,
    ExecutionEngine,
    InvalidOrder,
    SessionNotInitialized,
    SimulationError,
    UnknownOrder,
    UnknownTrade,
)
from .analytics import (
    PerformanceAnalytics,
    PerformanceMetrics,
    PortfolioSummary,
    PositionView,
)
from .session import (
    DEFAULT_BASE_CURRENCY,
    DEFAULT_STARTING_BALANCE,
    SessionSnapshot,
    SimulationSession,
    StateChange,
)

__all__ = [
    "BaseCurrency",
    "EquitySample",
    "JournalEntry",
    "Order",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "Position",
    "Trade",
    "Wallet",
    "DEFAULT_RISK_SETTINGS",
    "RiskSettings",
    "IPortfolioManager",
    "PortfolioManager",
    "AlreadyTerminal",
    "ExecutionEngine",
    "InvalidOrder",
    "SessionNotInitialized",
    "SimulationError",
    "UnknownOrder",
    "UnknownTrade",
    "PerformanceAnalytics",
    "PerformanceMetrics",
    "PortfolioSummary",
    "PositionView",
    "DEFAULT_BASE_CURRENCY",
    "DEFAULT_STARTING_BALANCE",
    "SessionSnapshot",
    "SimulationSession",
    "StateChange",
]
