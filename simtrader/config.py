"""Engine configuration."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_DATA_DIR = Path.home() / ".simtrader" / "data"

_TRUE = {"1", "true", "yes", "on"}


@dataclass
class EngineConfig:
    """Runtime settings for storage and engine behaviour."""
    data_dir: str = str(DEFAULT_DATA_DIR)
    autosave_delay_ms: int = 750
    strict_transitions: bool = False
    enforce_risk_limits: bool = False
    log_level: str = "INFO"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        return cls(
            data_dir=str(data.get("data_dir", DEFAULT_DATA_DIR)),
            autosave_delay_ms=int(data.get("autosave_delay_ms", 750)),
            strict_transitions=bool(data.get("strict_transitions", False)),
            enforce_risk_limits=bool(data.get("enforce_risk_limits", False)),
            log_level=str(data.get("log_level", "INFO")).upper(),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """Build a config from SIMTRADER_* environment variables.

        Raises:
            ValueError: SIMTRADER_AUTOSAVE_MS is not an integer
        """
        env = os.environ if environ is None else environ
        data: dict = {}
        if env.get("SIMTRADER_DATA_DIR"):
            data["data_dir"] = os.path.expanduser(env["SIMTRADER_DATA_DIR"])
        if env.get("SIMTRADER_AUTOSAVE_MS"):
            data["autosave_delay_ms"] = int(env["SIMTRADER_AUTOSAVE_MS"])
        if "SIMTRADER_STRICT" in env:
            data["strict_transitions"] = env["SIMTRADER_STRICT"].strip().lower() in _TRUE
        if "SIMTRADER_ENFORCE_RISK" in env:
            data["enforce_risk_limits"] = env["SIMTRADER_ENFORCE_RISK"].strip().lower() in _TRUE
        if env.get("SIMTRADER_LOG_LEVEL"):
            data["log_level"] = env["SIMTRADER_LOG_LEVEL"]
        return cls.from_dict(data)
