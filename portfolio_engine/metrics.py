"""Return and risk statistics shared by the simulator and the optimizer"""

import math
from typing import Sequence

import numpy as np

from portfolio_engine.models import Distribution

TRADING_DAYS = 252
RATIO_CAP = 99.0  # sentinel for undefined or unbounded ratios
EPSILON = 1e-12
LOSS_THRESHOLD = -0.10


def capped_ratio(numerator: float, denominator: float, cap: float = RATIO_CAP) -> float:
    """numerator / denominator, with a zero denominator mapped to 0 or a signed cap"""
    if denominator <= EPSILON:
        if abs(numerator) <= EPSILON:
            return 0.0
        return math.copysign(cap, numerator)
    return float(np.clip(numerator / denominator, -cap, cap))


def max_drawdown(values: np.ndarray) -> float:
    """Largest peak-to-trough decline as a positive fraction of the peak"""
    if len(values) == 0:
        return 0.0
    roll_max = np.maximum.accumulate(values)
    dd = np.where(roll_max > 0, (roll_max - values) / np.where(roll_max > 0, roll_max, 1.0), 0.0)
    return float(dd.max())


def time_under_water(values: np.ndarray) -> float:
    """Fraction of observations strictly below the running peak"""
    if len(values) == 0:
        return 0.0
    roll_max = np.maximum.accumulate(values)
    return float(np.count_nonzero(values < roll_max) / len(values))


def annualized_volatility(returns: np.ndarray) -> float:
    if len(returns) == 0:
        return 0.0
    return float(np.std(returns) * np.sqrt(TRADING_DAYS))


def sharpe_ratio(returns: np.ndarray) -> float:
    if len(returns) == 0:
        return 0.0
    return capped_ratio(float(np.mean(returns)) * np.sqrt(TRADING_DAYS), float(np.std(returns)))


def sortino_ratio(returns: np.ndarray) -> float:
    """
    Mean return over downside deviation, annualized.

    With no negative day the ratio is undefined; report the cap for a
    positive mean and 0 otherwise.
    """
    if len(returns) == 0:
        return 0.0
    mean = float(np.mean(returns))
    downside = returns[returns < 0]
    if len(downside) == 0:
        return RATIO_CAP if mean > EPSILON else 0.0
    downside_dev = float(np.sqrt(np.mean(downside ** 2)))
    return capped_ratio(mean * np.sqrt(TRADING_DAYS), downside_dev)


def value_at_risk(returns: Sequence[float], confidence: float = 0.95) -> float:
    """Order-statistic VaR, reported as the cutoff return (negative for a loss)"""
    if len(returns) == 0:
        return 0.0
    ordered = np.sort(np.asarray(returns, dtype=float))
    index = int(math.floor((1 - confidence) * len(ordered)))
    return float(ordered[min(index, len(ordered) - 1)])


def conditional_value_at_risk(returns: Sequence[float], confidence: float = 0.95) -> float:
    """Mean of the worst (1 - confidence) share of returns, at least one observation"""
    if len(returns) == 0:
        return 0.0
    ordered = np.sort(np.asarray(returns, dtype=float))
    cutoff = max(1, int(math.floor((1 - confidence) * len(ordered))))
    return float(np.mean(ordered[:cutoff]))


def pass_rate(returns: Sequence[float], threshold: float = LOSS_THRESHOLD) -> float:
    if len(returns) == 0:
        return 0.0
    values = np.asarray(returns, dtype=float)
    return float(np.count_nonzero(values > threshold) / len(values))


def distribution(values: np.ndarray) -> Distribution:
    """Compute simple distribution stats for one metric."""
    return Distribution(
        mean=float(np.mean(values)),
        median=float(np.median(values)),
        std=float(np.std(values)),
        p5=float(np.percentile(values, 5)),
        p25=float(np.percentile(values, 25)),
        p75=float(np.percentile(values, 75)),
        p95=float(np.percentile(values, 95)),
        min=float(np.min(values)),
        max=float(np.max(values)),
    )
