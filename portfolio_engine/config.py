"""Process-level settings read from PORTFOLIO_ENGINE_* environment variables"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

_ENV_PREFIX = "PORTFOLIO_ENGINE"
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class EngineSettings:
    """Engine configuration

    Attributes:
        log_level: Level for the portfolio_engine logger
        workers: Process pool size for scenario generation/simulation (1 = inline)
        time_budget_seconds: Default wall-clock budget for a pipeline request
        trade_notional: Portfolio notional used to size advice trades
    """
    log_level: str = "INFO"
    workers: int = 1
    time_budget_seconds: Optional[float] = None
    trade_notional: float = 100_000.0


def _env(name: str) -> Optional[str]:
    return os.environ.get(f"{_ENV_PREFIX}_{name}")


def get_settings() -> EngineSettings:
    """Get settings from environment variables"""
    budget = _env("TIME_BUDGET_SECONDS")
    return EngineSettings(
        log_level=_env("LOG_LEVEL") or "INFO",
        workers=max(1, int(_env("WORKERS") or "1")),
        time_budget_seconds=float(budget) if budget else None,
        trade_notional=float(_env("TRADE_NOTIONAL") or "100000"),
    )


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stream handler to the package logger"""
    logger = logging.getLogger("portfolio_engine")
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(handler)
    return logger
