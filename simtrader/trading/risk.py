"""Risk and cost parameters consumed by the execution engine."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from decimal import Decimal, InvalidOperation
from typing import Any


@dataclass(frozen=True)
class RiskSettings:
    """Per-fill cost model and position limits.

    All values are percentages. ``max_position_size`` is relative to current
    equity, ``max_daily_loss`` to the session's starting balance.
    """
    max_position_size: Decimal = Decimal("25")
    stop_loss_pct: Decimal = Decimal("5")
    take_profit_pct: Decimal = Decimal("15")
    max_daily_loss: Decimal = Decimal("10")
    fee_pct: Decimal = Decimal("0.1")
    slippage_pct: Decimal = Decimal("0.1")

    def __post_init__(self) -> None:
        for f in fields(self):
            value = _to_decimal(f.name, getattr(self, f.name))
            if value < 0:
                raise ValueError(f"{f.name} must not be negative, got {value}")
            object.__setattr__(self, f.name, value)

    def updated(self, **changes: Any) -> "RiskSettings":
        """Return a copy with the given fields replaced.

        Raises:
            ValueError: On unknown field names or negative values
        """
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown risk settings: {', '.join(sorted(unknown))}")
        return replace(self, **changes)


def _to_decimal(name: str, value: Any) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"{name} is not a number: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"{name} must be finite, got {value!r}")
    return result


DEFAULT_RISK_SETTINGS = RiskSettings()
