import logging
import os
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from numba import jit

from portfolio_engine.costs import cost_rates
from portfolio_engine.exceptions import ConfigurationError, ScenarioDataError, SimulationError
from portfolio_engine.metrics import (
    annualized_volatility,
    capped_ratio,
    conditional_value_at_risk,
    distribution,
    max_drawdown,
    pass_rate,
    sharpe_ratio,
    sortino_ratio,
    time_under_water,
    value_at_risk,
)
from portfolio_engine.models import (
    AggregateStats,
    Asset,
    CostModel,
    Scenario,
    ScenarioResult,
    SimulationDiagnostics,
    SimulationRequest,
    SimulationResult,
    SkippedScenario,
    SummaryMetrics,
)
from portfolio_engine.reference import DEFAULT_REFERENCE, ReferenceData

logger = logging.getLogger(__name__)

# Constants
REBALANCE_EVERY = 20       # trading days
TRADE_THRESHOLD = 0.001    # minimum weight gap that triggers a trade
BPS = 10_000.0
INITIAL_VALUE = 1.0
SUM_TOLERANCE = 1e-4


@jit(nopython=True)
def walk_path_numba(asset_returns: np.ndarray,
                    target: np.ndarray,
                    fixed_bps: np.ndarray,
                    slippage_bps: float,
                    rebalance_every: int) -> Tuple[np.ndarray, np.ndarray, float]:
    """
    Day-by-day portfolio walk with drifting holdings - Numba optimized

    Args:
        asset_returns: (n_days, n_assets) daily asset returns
        target: (n_assets,) target weights
        fixed_bps: (n_assets,) commission + bid/ask per asset
        slippage_bps: slippage per unit of traded fraction
        rebalance_every: rebalance period in days

    Returns:
        (values[n_days + 1], net daily returns[n_days], cumulative cost)
    """
    n_days, n_assets = asset_returns.shape
    values = np.empty(n_days + 1)
    daily = np.empty(n_days)
    holdings = target.copy()
    value = INITIAL_VALUE
    values[0] = value
    total_cost = 0.0

    for d in range(n_days):
        day = d + 1
        day_return = 0.0
        for i in range(n_assets):
            day_return += holdings[i] * asset_returns[d, i]

        growth = 1.0 + day_return
        if growth > 0.0:
            for i in range(n_assets):
                holdings[i] = holdings[i] * (1.0 + asset_returns[d, i]) / growth

        previous = value
        value = value * growth

        if day % rebalance_every == 0 and value > 0.0:
            cost = 0.0
            for i in range(n_assets):
                gap = abs(target[i] - holdings[i])
                if gap > TRADE_THRESHOLD:
                    cost += gap * value * (fixed_bps[i] + slippage_bps * gap) / BPS
                holdings[i] = target[i]
            value -= cost
            total_cost += cost

        values[day] = value
        daily[d] = value / previous - 1.0 if previous > 0.0 else 0.0

    return values, daily, total_cost


def _validate_weights(weights: Dict[str, float]) -> None:
    if not weights:
        raise ConfigurationError("Allocation weights are empty")
    values = np.array(list(weights.values()), dtype=float)
    if not np.all(np.isfinite(values)) or np.any(values < 0):
        raise ConfigurationError("Allocation weights must be finite and non-negative")
    if abs(values.sum() - 1.0) > SUM_TOLERANCE:
        raise ConfigurationError(f"Allocation weights must sum to 1, got {values.sum():.6f}")


def scenario_price_matrix(scenario: Scenario,
                          symbols: Sequence[str],
                          weights: np.ndarray,
                          horizon_days: int) -> np.ndarray:
    """
    (horizon_days + 1, n_assets) prices for the weighted assets.

    Assets with zero weight and no path are held flat.

    Raises:
        ScenarioDataError: missing, short or unusable path for a weighted asset
    """
    prices = np.full((horizon_days + 1, len(symbols)), 1.0)
    for i, symbol in enumerate(symbols):
        path = scenario.paths.get(symbol)
        if path is None:
            if weights[i] > 0:
                raise ScenarioDataError(scenario.id, f"no path for {symbol}")
            continue
        if len(path) < horizon_days + 1:
            raise ScenarioDataError(
                scenario.id, f"path for {symbol} has {len(path)} points, need {horizon_days + 1}"
            )
        column = np.asarray(path[:horizon_days + 1], dtype=float)
        if not np.all(np.isfinite(column)) or np.any(column <= 0):
            raise ScenarioDataError(scenario.id, f"non-finite or non-positive price for {symbol}")
        prices[:, i] = column
    return prices


def simulate_scenario(weights: Dict[str, float],
                      scenario: Scenario,
                      cost_model: CostModel,
                      horizon_days: int,
                      assets: Optional[Sequence[Asset]] = None,
                      reference: Optional[ReferenceData] = None) -> ScenarioResult:
    """Replay one weight set through one scenario with periodic rebalancing."""
    reference = reference or DEFAULT_REFERENCE
    symbols = list(weights)
    target = np.array([weights[s] for s in symbols], dtype=float)

    prices = scenario_price_matrix(scenario, symbols, target, horizon_days)
    asset_returns = prices[1:] / prices[:-1] - 1.0

    classes = [a.asset_class for a in reference.resolve_all(symbols, assets)]
    fixed_bps, slippage_bps = cost_rates(classes, cost_model)

    values, daily, total_cost = walk_path_numba(
        asset_returns, target, fixed_bps, slippage_bps, REBALANCE_EVERY,
    )

    return ScenarioResult(
        scenario_id=scenario.id,
        scenario_name=scenario.name,
        portfolio_values=values.tolist(),
        daily_returns=daily.tolist(),
        total_return=float(values[-1] - INITIAL_VALUE),
        volatility=annualized_volatility(daily),
        max_drawdown=max_drawdown(values),
        sharpe_ratio=sharpe_ratio(daily),
        sortino=sortino_ratio(daily),
        time_under_water=time_under_water(values),
        total_costs=float(total_cost),
        final_value=float(values[-1]),
    )


def aggregate_results(results: Sequence[ScenarioResult]) -> AggregateStats:
    """Cross-scenario statistics of per-scenario outcomes"""
    if not results:
        raise SimulationError("No scenario results to aggregate")
    returns = np.array([r.total_return for r in results])
    vols = np.array([r.volatility for r in results])

    mean_return = float(np.mean(returns))
    mean_vol = float(np.mean(vols))
    return AggregateStats(
        mean_return=mean_return,
        median_return=float(np.median(returns)),
        volatility=mean_vol,
        sharpe_ratio=capped_ratio(mean_return, mean_vol),
        max_drawdown=float(max(r.max_drawdown for r in results)),
        worst_return=float(returns.min()),
        best_return=float(returns.max()),
        var95=value_at_risk(returns, 0.95),
        cvar95=conditional_value_at_risk(returns, 0.95),
        pass_rate=pass_rate(returns),
        sortino=float(np.mean([r.sortino for r in results])),
    )


def summary_from_aggregate(stats: AggregateStats) -> SummaryMetrics:
    return SummaryMetrics(
        expected_return=stats.mean_return,
        expected_volatility=stats.volatility,
        sharpe_ratio=stats.sharpe_ratio,
        max_drawdown=stats.max_drawdown,
        cvar95=stats.cvar95,
        pass_rate=stats.pass_rate,
    )


def _simulate_task(args: Tuple[int, Dict[str, float], Scenario, CostModel, int,
                               List[Asset], ReferenceData]) -> Tuple[int, Optional[ScenarioResult], Optional[str]]:
    """Worker: one scenario; malformed data is reported, not raised."""
    index, weights, scenario, cost_model, horizon_days, assets, reference = args
    try:
        return index, simulate_scenario(weights, scenario, cost_model, horizon_days, assets, reference), None
    except ScenarioDataError as e:
        return index, None, e.reason


def run_portfolio_simulation(request: SimulationRequest,
                             reference: Optional[ReferenceData] = None) -> SimulationResult:
    """
    Simulate the allocation across every scenario and aggregate.

    Malformed scenarios are skipped and listed in the diagnostics; if
    none survive a SimulationError is raised.
    """
    reference = reference or DEFAULT_REFERENCE
    _validate_weights(request.allocation_weights)

    tasks = [
        (i, request.allocation_weights, scenario, request.cost_model,
         request.horizon_days, request.assets, reference)
        for i, scenario in enumerate(request.scenarios)
    ]
    n_workers = request.n_workers or 1

    t0 = time.perf_counter()
    outcomes: Dict[int, Tuple[Optional[ScenarioResult], Optional[str]]] = {}

    if n_workers <= 1 or len(tasks) <= 1:
        for task in tasks:
            index, result, reason = _simulate_task(task)
            outcomes[index] = (result, reason)
    else:
        with ProcessPoolExecutor(max_workers=min(n_workers, len(tasks), os.cpu_count() or 1)) as executor:
            futures = {executor.submit(_simulate_task, task): task[0] for task in tasks}
            for fut in as_completed(futures):
                index, result, reason = fut.result()
                outcomes[index] = (result, reason)

    runtime = time.perf_counter() - t0

    results: List[ScenarioResult] = []
    skipped: List[SkippedScenario] = []
    for i, scenario in enumerate(request.scenarios):
        result, reason = outcomes[i]
        if result is None:
            logger.warning("Skipping scenario %s: %s", scenario.id, reason)
            skipped.append(SkippedScenario(scenario_id=scenario.id, reason=reason or "unknown"))
        else:
            results.append(result)

    if not results:
        raise SimulationError(
            f"All {len(request.scenarios)} scenarios failed or none were supplied"
        )

    stats = aggregate_results(results)
    logger.info(
        "Simulated %d/%d scenarios in %.2fs (mean return %.4f, pass rate %.2f)",
        len(results), len(request.scenarios), runtime, stats.mean_return, stats.pass_rate,
    )

    return SimulationResult(
        scenario_results=results,
        summary_metrics=summary_from_aggregate(stats),
        aggregate_stats=stats,
        return_distribution=distribution(np.array([r.total_return for r in results])),
        diagnostics=SimulationDiagnostics(
            n_scenarios=len(request.scenarios),
            n_completed=len(results),
            skipped=skipped,
            runtime_seconds=round(runtime, 4),
        ),
    )
