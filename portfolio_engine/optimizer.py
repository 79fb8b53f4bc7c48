import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Sequence, Tuple

import numpy as np
import cvxpy as cp
from scipy.stats import norm

from portfolio_engine.exceptions import ConfigurationError
from portfolio_engine.metrics import capped_ratio, TRADING_DAYS
from portfolio_engine.models import (
    BlackLittermanView,
    Diagnostics,
    OptimizationConstraints,
    OptimizationRequest,
    OptimizationResult,
    Priors,
)
from portfolio_engine.reference import ReferenceData
from portfolio_engine.risk import ParameterEstimate, estimate_parameters

logger = logging.getLogger(__name__)

OBJECTIVES = ("maxSharpe", "minVol", "maxReturn", "minCVaR", "riskParity", "blackLitterman")
RISK_AVERSION = 3.0
CVAR_CONFIDENCE = 0.95
TAIL_RISK_THRESHOLD = 0.20
TAIL_RISK_HAIRCUT = 0.8
WEIGHT_TOLERANCE = 1e-6
EPSILON = 1e-12


# ---------------------------------------------------------------------------
# Portfolio arithmetic
# ---------------------------------------------------------------------------

def portfolio_return(weights: np.ndarray, expected_returns: np.ndarray) -> float:
    return float(weights @ expected_returns)


def portfolio_volatility(weights: np.ndarray, cov_matrix: np.ndarray) -> float:
    return float(np.sqrt(max(0.0, weights @ cov_matrix @ weights)))


def portfolio_sharpe(weights: np.ndarray, expected_returns: np.ndarray, cov_matrix: np.ndarray) -> float:
    return capped_ratio(portfolio_return(weights, expected_returns),
                        portfolio_volatility(weights, cov_matrix))


def sharpe_gradient(weights: np.ndarray, expected_returns: np.ndarray, cov_matrix: np.ndarray) -> np.ndarray:
    """Analytic gradient of w'mu / sqrt(w'Sigma w); zero where the variance vanishes"""
    variance = float(weights @ cov_matrix @ weights)
    if variance <= EPSILON:
        return np.zeros_like(weights)
    sigma = np.sqrt(variance)
    return expected_returns / sigma - (weights @ expected_returns) * (cov_matrix @ weights) / sigma ** 3


def risk_contributions(weights: np.ndarray, cov_matrix: np.ndarray) -> np.ndarray:
    """Share of portfolio variance contributed by each asset (sums to 1)"""
    variance = float(weights @ cov_matrix @ weights)
    if variance <= EPSILON:
        return np.full(len(weights), 1.0 / len(weights))
    return weights * (cov_matrix @ weights) / variance


def weights_by_symbol(symbols: Sequence[str], weights: np.ndarray) -> Dict[str, float]:
    return {s: float(w) for s, w in zip(symbols, weights)}


def turnover(new_weights: np.ndarray, current_weights: np.ndarray) -> float:
    """One-way turnover"""
    return float(np.sum(np.abs(new_weights - current_weights)) / 2)


def apply_constraints(weights: np.ndarray, max_weight: float = 1.0) -> np.ndarray:
    """
    Project weights onto the long-only, capped simplex.

    Negative and non-finite entries are clipped to zero, the vector is
    renormalized, and the excess of any name above the cap is handed to
    the uncapped names in proportion to their weight.
    """
    n_assets = len(weights)
    if max_weight * n_assets < 1.0 - WEIGHT_TOLERANCE:
        raise ConfigurationError(
            f"max_weight_per_asset={max_weight} cannot fully invest {n_assets} assets"
        )

    w = np.where(np.isfinite(weights), weights, 0.0)
    w = np.clip(w, 0.0, None)
    total = w.sum()
    w = w / total if total > EPSILON else np.full(n_assets, 1.0 / n_assets)

    capped = np.zeros(n_assets, dtype=bool)
    for _ in range(n_assets):
        over = w > max_weight
        if not over.any():
            break
        excess = float(np.sum(w[over] - max_weight))
        capped |= over
        w[capped] = max_weight
        free = ~capped
        if not free.any():
            break
        free_total = w[free].sum()
        if free_total > EPSILON:
            w[free] += excess * w[free] / free_total
        else:
            w[free] += excess / free.sum()
    return w


# ---------------------------------------------------------------------------
# Swappable numeric strategies
# ---------------------------------------------------------------------------

class CovarianceInverter(Protocol):
    def invert(self, cov_matrix: np.ndarray) -> np.ndarray: ...


class ReferenceInverter:
    """Analytic inverse for 2x2 matrices, identity for every other size."""

    def invert(self, cov_matrix: np.ndarray) -> np.ndarray:
        n_assets = cov_matrix.shape[0]
        if n_assets != 2:
            return np.eye(n_assets)
        a, b = cov_matrix[0]
        c, d = cov_matrix[1]
        det = a * d - b * c
        if abs(det) <= EPSILON:
            # Singular: fall back to equal weighting
            return np.eye(2)
        return np.array([[d, -b], [-c, a]]) / det


class PseudoInverseInverter:
    """Moore-Penrose inverse of any size; tolerates singular matrices"""

    def invert(self, cov_matrix: np.ndarray) -> np.ndarray:
        return np.linalg.pinv(cov_matrix)


class SharpeOptimizer(Protocol):
    def optimize(self, expected_returns: np.ndarray, cov_matrix: np.ndarray,
                 max_weight: float) -> Tuple[np.ndarray, int]: ...


@dataclass
class GradientAscentSharpe:
    """Fixed-step projected gradient ascent from equal weights. Local heuristic."""
    learning_rate: float = 0.001
    iterations: int = 1000

    def optimize(self, expected_returns: np.ndarray, cov_matrix: np.ndarray,
                 max_weight: float) -> Tuple[np.ndarray, int]:
        n_assets = len(expected_returns)
        weights = apply_constraints(np.full(n_assets, 1.0 / n_assets), max_weight)
        for _ in range(self.iterations):
            step = self.learning_rate * sharpe_gradient(weights, expected_returns, cov_matrix)
            weights = apply_constraints(weights + step, max_weight)
        return weights, self.iterations


@dataclass
class RiskParitySolver:
    """Multiplicative risk-contribution equalization"""
    step: float = 0.5
    max_iterations: int = 100
    tolerance: float = 1e-6

    def solve(self, cov_matrix: np.ndarray, max_weight: float) -> Tuple[np.ndarray, int]:
        n_assets = cov_matrix.shape[0]
        target = 1.0 / n_assets
        weights = apply_constraints(np.full(n_assets, target), max_weight)

        iterations = 0
        for iterations in range(1, self.max_iterations + 1):
            diff = risk_contributions(weights, cov_matrix) - target
            weights = apply_constraints(weights * (1 - self.step * diff), max_weight)
            if np.max(np.abs(diff)) < self.tolerance:
                break
        logger.debug("Risk parity stopped after %d iterations", iterations)
        return weights, iterations


# ---------------------------------------------------------------------------
# Objectives
# ---------------------------------------------------------------------------

def minimize_volatility(cov_matrix: np.ndarray,
                        max_weight: float = 1.0,
                        inverter: Optional[CovarianceInverter] = None) -> np.ndarray:
    """Weights proportional to inverse(Sigma) . 1, normalized and constrained"""
    inverter = inverter or ReferenceInverter()
    n_assets = cov_matrix.shape[0]
    raw = inverter.invert(cov_matrix) @ np.ones(n_assets)
    total = raw.sum()
    if not np.all(np.isfinite(raw)) or total <= EPSILON:
        logger.warning("Degenerate inverse covariance; using equal weights")
        raw, total = np.ones(n_assets), float(n_assets)
    return apply_constraints(raw / total, max_weight)


def minimize_volatility_qp(cov_matrix: np.ndarray, max_weight: float = 1.0) -> np.ndarray:
    """
    Long-only capped minimum-variance portfolio solved as a QP with cvxpy.

    Falls back to the closed-form routine if the solver does not reach an
    optimal status.
    """
    n_assets = cov_matrix.shape[0]
    if max_weight * n_assets < 1.0 - WEIGHT_TOLERANCE:
        raise ConfigurationError(
            f"max_weight_per_asset={max_weight} cannot fully invest {n_assets} assets"
        )
    sym_cov = (cov_matrix + cov_matrix.T) / 2

    w = cp.Variable(n_assets, nonneg=True)
    objective = cp.Minimize(cp.quad_form(w, cp.psd_wrap(sym_cov)))
    constraints = [cp.sum(w) == 1, w <= max_weight]
    problem = cp.Problem(objective, constraints)

    try:
        problem.solve(solver=cp.OSQP, verbose=False, eps_abs=1e-8, eps_rel=1e-8)
    except cp.error.SolverError as e:
        logger.warning("Minimum-variance QP failed (%s); using closed form", e)
        return minimize_volatility(cov_matrix, max_weight, PseudoInverseInverter())

    if w.value is None or problem.status not in ["optimal", "optimal_inaccurate"]:
        logger.warning("Minimum-variance QP status %s; using closed form", problem.status)
        return minimize_volatility(cov_matrix, max_weight, PseudoInverseInverter())
    return apply_constraints(np.asarray(w.value, dtype=float), max_weight)


def maximize_return(expected_returns: np.ndarray, max_weight: float = 1.0) -> np.ndarray:
    """Greedy fill: best expected return first, each name up to the cap"""
    n_assets = len(expected_returns)
    if max_weight * n_assets < 1.0 - WEIGHT_TOLERANCE:
        raise ConfigurationError(
            f"max_weight_per_asset={max_weight} cannot fully invest {n_assets} assets"
        )
    weights = np.zeros(n_assets)
    remaining = 1.0
    for idx in np.argsort(-expected_returns, kind="stable"):
        if remaining <= EPSILON:
            break
        weights[idx] = min(max_weight, remaining)
        remaining -= weights[idx]
    return weights


def asset_tail_risk(expected_returns: np.ndarray, cov_matrix: np.ndarray,
                    confidence: float = CVAR_CONFIDENCE) -> np.ndarray:
    """Parametric (normal) annualized CVaR loss per asset"""
    sigma = np.sqrt(np.clip(np.diag(cov_matrix), 0.0, None) * TRADING_DAYS)
    mu = expected_returns * TRADING_DAYS
    z = norm.ppf(confidence)
    return sigma * norm.pdf(z) / (1 - confidence) - mu


def minimize_cvar(expected_returns: np.ndarray,
                  cov_matrix: np.ndarray,
                  max_weight: float = 1.0,
                  inverter: Optional[CovarianceInverter] = None) -> np.ndarray:
    """minVol weights with a haircut on assets whose tail risk exceeds the threshold"""
    weights = minimize_volatility(cov_matrix, max_weight, inverter)
    tail_risk = asset_tail_risk(expected_returns, cov_matrix)
    weights = np.where(tail_risk > TAIL_RISK_THRESHOLD, weights * TAIL_RISK_HAIRCUT, weights)
    return apply_constraints(weights / weights.sum(), max_weight)


def black_litterman_returns(cov_matrix: np.ndarray,
                            symbols: Sequence[str],
                            views: Sequence[BlackLittermanView],
                            risk_aversion: float = RISK_AVERSION) -> np.ndarray:
    """Implied equilibrium returns of the equal-weight proxy, blended view by view"""
    n_assets = len(symbols)
    market_weights = np.full(n_assets, 1.0 / n_assets)
    implied = cov_matrix @ (market_weights * risk_aversion)

    index = {s: i for i, s in enumerate(symbols)}
    adjusted = implied.copy()
    for view in views:
        if view.symbol not in index:
            raise ConfigurationError(f"Black-Litterman view on unknown symbol {view.symbol!r}")
        i = index[view.symbol]
        adjusted[i] = (1 - view.confidence) * implied[i] + view.confidence * view.expected_return
    return adjusted


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def _validate_inputs(symbols: Sequence[str], expected_returns: np.ndarray, cov_matrix: np.ndarray) -> None:
    n_assets = len(symbols)
    if n_assets == 0:
        raise ConfigurationError("Asset universe is empty")
    if len(set(symbols)) != n_assets:
        raise ConfigurationError(f"Duplicate symbols in asset universe: {list(symbols)}")
    if expected_returns.shape != (n_assets,):
        raise ConfigurationError(
            f"Expected {n_assets} expected returns, got shape {expected_returns.shape}"
        )
    if cov_matrix.shape != (n_assets, n_assets):
        raise ConfigurationError(
            f"Expected a {n_assets}x{n_assets} covariance matrix, got shape {cov_matrix.shape}"
        )
    if not (np.all(np.isfinite(expected_returns)) and np.all(np.isfinite(cov_matrix))):
        raise ConfigurationError("Expected returns and covariance must be finite")


def optimize_weights(objective: str,
                     symbols: Sequence[str],
                     expected_returns,
                     cov_matrix,
                     constraints: Optional[OptimizationConstraints] = None,
                     priors: Optional[Priors] = None,
                     inverter: Optional[CovarianceInverter] = None,
                     sharpe_optimizer: Optional[SharpeOptimizer] = None,
                     risk_parity: Optional[RiskParitySolver] = None) -> OptimizationResult:
    """
    Compute target weights for one objective from estimated parameters.

    Args:
        objective: one of OBJECTIVES
        symbols: asset order of ``expected_returns`` and ``cov_matrix``
        expected_returns: (n_assets,) daily expected returns
        cov_matrix: (n_assets, n_assets) daily covariance
        constraints: per-asset cap and solver choice
        priors: Black-Litterman views, Kelly cap, current weights
        inverter, sharpe_optimizer, risk_parity: numeric strategies

    Returns:
        OptimizationResult with weights and ex-ante diagnostics
    """
    if objective not in OBJECTIVES:
        raise ConfigurationError(f"Unknown objective {objective!r}; expected one of {OBJECTIVES}")

    symbols = list(symbols)
    mu = np.asarray(expected_returns, dtype=float)
    cov = np.atleast_2d(np.asarray(cov_matrix, dtype=float))
    _validate_inputs(symbols, mu, cov)

    constraints = constraints or OptimizationConstraints()
    priors = priors or Priors()
    max_weight = constraints.max_weight_per_asset
    sharpe_optimizer = sharpe_optimizer or GradientAscentSharpe()
    risk_parity = risk_parity or RiskParitySolver()
    if constraints.solver == "qp" and inverter is None:
        inverter = PseudoInverseInverter()

    if priors.kelly_cap is not None:
        logger.warning("kelly_cap=%s accepted but not enforced by any objective", priors.kelly_cap)

    iterations = 0
    if objective == "maxSharpe":
        weights, iterations = sharpe_optimizer.optimize(mu, cov, max_weight)
    elif objective == "minVol":
        if constraints.solver == "qp":
            weights = minimize_volatility_qp(cov, max_weight)
        else:
            weights = minimize_volatility(cov, max_weight, inverter)
    elif objective == "maxReturn":
        weights = maximize_return(mu, max_weight)
    elif objective == "minCVaR":
        weights = minimize_cvar(mu, cov, max_weight, inverter)
    elif objective == "riskParity":
        weights, iterations = risk_parity.solve(cov, max_weight)
    else:
        views = priors.black_litterman.views
        if views:
            blended = black_litterman_returns(cov, symbols, views)
            weights, iterations = sharpe_optimizer.optimize(blended, cov, max_weight)
        else:
            weights = apply_constraints(np.full(len(symbols), 1.0 / len(symbols)), max_weight)

    current = np.array([priors.current_weights.get(s, 0.0) for s in symbols])
    diagnostics = Diagnostics(
        expected_return=portfolio_return(weights, mu),
        expected_vol=portfolio_volatility(weights, cov),
        sharpe_ratio=portfolio_sharpe(weights, mu, cov),
        max_weight=float(np.max(weights)),
        turnover=turnover(weights, current),
        iterations=iterations,
        kelly_cap=priors.kelly_cap,
    )
    logger.info("Optimized %s over %d assets (sharpe=%.4f)", objective, len(symbols), diagnostics.sharpe_ratio)

    return OptimizationResult(
        objective=objective,
        weights=weights_by_symbol(symbols, weights),
        diagnostics=diagnostics,
    )


def optimize_from_estimate(objective: str,
                           estimate: ParameterEstimate,
                           constraints: Optional[OptimizationConstraints] = None,
                           priors: Optional[Priors] = None,
                           **strategies) -> OptimizationResult:
    result = optimize_weights(
        objective, estimate.symbols, estimate.expected_returns, estimate.covariance,
        constraints, priors, **strategies,
    )
    result.diagnostics.synthetic_inputs = estimate.synthetic
    result.diagnostics.skipped_scenarios = estimate.skipped_scenarios
    return result


def optimize_portfolio(request: OptimizationRequest,
                       reference: Optional[ReferenceData] = None) -> OptimizationResult:
    """Estimate parameters from the request's scenario data, then optimize."""
    if request.objective not in OBJECTIVES:
        raise ConfigurationError(
            f"Unknown objective {request.objective!r}; expected one of {OBJECTIVES}"
        )
    symbols = [a.symbol for a in request.assets]
    estimate = estimate_parameters(
        symbols,
        request.scenario_data.scenarios,
        shrinkage=request.priors.shrinkage,
        reference=reference,
        seed=request.seed,
    )
    return optimize_from_estimate(request.objective, estimate, request.constraints, request.priors)
