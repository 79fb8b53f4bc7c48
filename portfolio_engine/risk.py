import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from portfolio_engine.exceptions import ConfigurationError, EstimationError, ScenarioDataError
from portfolio_engine.models import Scenario
from portfolio_engine.reference import DEFAULT_REFERENCE, ReferenceData

logger = logging.getLogger(__name__)

TRADING_DAYS = 252
SHRINKAGE_INTENSITY = 0.2  # fixed, not data-adaptive
SYNTHETIC_PERIODS = 252
SHRINKAGE_METHODS = ("LedoitWolf", "none")


@dataclass
class ParameterEstimate:
    """Daily expected returns and covariance for an ordered symbol list"""
    symbols: List[str]
    expected_returns: np.ndarray
    covariance: np.ndarray
    n_observations: int
    skipped_scenarios: int = 0
    synthetic: bool = False
    shrinkage: str = "LedoitWolf"


def scenario_returns(scenario: Scenario, symbols: Sequence[str]) -> np.ndarray:
    """
    Daily simple returns of one scenario

    Returns:
        (n_days, n_assets) array, columns ordered as ``symbols``

    Raises:
        ScenarioDataError: missing asset, unequal lengths or unusable prices
    """
    columns = []
    for symbol in symbols:
        path = scenario.paths.get(symbol)
        if path is None:
            raise ScenarioDataError(scenario.id, f"no path for {symbol}")
        columns.append(path)

    lengths = {len(c) for c in columns}
    if len(lengths) != 1:
        raise ScenarioDataError(scenario.id, f"path lengths differ: {sorted(lengths)}")

    prices = np.array(columns, dtype=float).T
    if prices.shape[0] < 2:
        raise ScenarioDataError(scenario.id, "path shorter than two points")
    if not np.all(np.isfinite(prices)) or np.any(prices <= 0):
        raise ScenarioDataError(scenario.id, "non-finite or non-positive prices")

    return prices[1:] / prices[:-1] - 1.0


def pool_returns(symbols: Sequence[str], scenarios: Sequence[Scenario]) -> Tuple[np.ndarray, int]:
    """Stack daily returns of every usable scenario; returns (matrix, skipped count)"""
    blocks = []
    skipped = 0
    for scenario in scenarios:
        try:
            blocks.append(scenario_returns(scenario, symbols))
        except ScenarioDataError as e:
            logger.warning("Skipping scenario in estimation: %s", e)
            skipped += 1

    if not blocks:
        return np.empty((0, len(symbols))), skipped
    return np.vstack(blocks), skipped


def estimate_covariance_sample(returns: np.ndarray) -> np.ndarray:
    """
    Simple sample covariance matrix

    Args:
        returns: (n_periods, n_assets) array of returns

    Returns:
        (n_assets, n_assets) covariance matrix
    """
    return np.atleast_2d(np.cov(returns, rowvar=False))


def shrinkage_target(sample_cov: np.ndarray) -> np.ndarray:
    """Single-index target: mean variance on the diagonal, zero elsewhere"""
    n_assets = sample_cov.shape[0]
    return np.eye(n_assets) * np.trace(sample_cov) / n_assets


def shrink_covariance(sample_cov: np.ndarray, intensity: float = SHRINKAGE_INTENSITY) -> np.ndarray:
    return (1 - intensity) * sample_cov + intensity * shrinkage_target(sample_cov)


def synthetic_returns(symbols: Sequence[str],
                      rng: np.random.Generator,
                      reference: ReferenceData = DEFAULT_REFERENCE,
                      periods: int = SYNTHETIC_PERIODS) -> np.ndarray:
    """Fallback daily returns from the static base return/volatility tables"""
    base_returns = np.array([reference.expected_return(s) for s in symbols]) / TRADING_DAYS
    base_vols = np.array([reference.volatility(s) for s in symbols]) / np.sqrt(TRADING_DAYS)
    shocks = (rng.random((periods, len(symbols))) - 0.5) * 2.0
    return base_returns + base_vols * shocks


def estimate_parameters(symbols: Sequence[str],
                        scenarios: Sequence[Scenario],
                        shrinkage: str = "LedoitWolf",
                        reference: Optional[ReferenceData] = None,
                        seed: int = 0) -> ParameterEstimate:
    """
    Pool scenario returns into expected returns and a shrunk covariance.

    With no usable scenario data, falls back to synthetic returns drawn
    from the reference tables and marks the estimate ``synthetic``.
    """
    if shrinkage not in SHRINKAGE_METHODS:
        raise ConfigurationError(
            f"Unknown shrinkage method {shrinkage!r}; expected one of {SHRINKAGE_METHODS}"
        )
    symbols = list(symbols)
    if not symbols:
        raise ConfigurationError("Asset universe is empty")

    returns, skipped = pool_returns(symbols, scenarios)
    synthetic = returns.shape[0] < 2
    if synthetic:
        logger.warning(
            "No usable scenario returns for %s; using synthetic fallback series", symbols
        )
        rng = np.random.default_rng(seed)
        returns = synthetic_returns(symbols, rng, reference or DEFAULT_REFERENCE)

    expected_returns = returns.mean(axis=0)
    covariance = estimate_covariance_sample(returns)
    if shrinkage == "LedoitWolf":
        covariance = shrink_covariance(covariance)
    if not (np.all(np.isfinite(expected_returns)) and np.all(np.isfinite(covariance))):
        raise EstimationError(f"Non-finite estimates from {returns.shape[0]} observations")

    logger.debug(
        "Estimated parameters from %d observations (skipped=%d, synthetic=%s)",
        returns.shape[0], skipped, synthetic,
    )
    return ParameterEstimate(
        symbols=symbols,
        expected_returns=expected_returns,
        covariance=covariance,
        n_observations=int(returns.shape[0]),
        skipped_scenarios=skipped,
        synthetic=synthetic,
        shrinkage=shrinkage,
    )
