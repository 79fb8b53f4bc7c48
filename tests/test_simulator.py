import numpy as np
import pytest

from factories import flat_scenario, trending_scenario
from portfolio_engine.exceptions import ConfigurationError, SimulationError
from portfolio_engine.metrics import (
    RATIO_CAP,
    capped_ratio,
    conditional_value_at_risk,
    max_drawdown,
    pass_rate,
    sortino_ratio,
    time_under_water,
    value_at_risk,
)
from portfolio_engine.models import CostModel, Scenario, ScenarioType, SimulationRequest
from portfolio_engine.simulator import run_portfolio_simulation, simulate_scenario

FREE = CostModel(commission_bps=0, bid_ask_bps={"Equity": 0}, slippage_bps_per_turnover=0)


def test_flat_scenario_has_no_return_risk_or_cost():
    result = simulate_scenario({"A": 0.6, "B": 0.4}, flat_scenario(["A", "B"], 30), CostModel(), 30)

    assert result.total_return == 0.0
    assert result.volatility == 0.0
    assert result.max_drawdown == 0.0
    assert result.sharpe_ratio == 0.0
    assert result.sortino == 0.0
    assert result.total_costs == 0.0
    assert result.time_under_water == 0.0
    assert result.portfolio_values == [1.0] * 31
    assert result.final_value == 1.0


def test_flat_scenarios_end_to_end():
    request = SimulationRequest(
        allocation_weights={"A": 0.6, "B": 0.4},
        scenarios=[flat_scenario(["A", "B"], 10, f"s{i}") for i in range(3)],
        horizon_days=10,
    )
    result = run_portfolio_simulation(request)

    assert len(result.scenario_results) == 3
    for scenario_result in result.scenario_results:
        assert scenario_result.total_return == 0.0
        assert scenario_result.max_drawdown == 0.0
    assert result.aggregate_stats.mean_return == 0.0
    assert result.aggregate_stats.pass_rate == 1.0
    assert result.summary_metrics.pass_rate == 1.0
    assert result.diagnostics.n_completed == 3
    assert result.diagnostics.skipped == []


def test_single_asset_compounds_without_rebalancing():
    result = simulate_scenario({"A": 1.0}, trending_scenario({"A": 0.01}, 10), CostModel(), 10)

    assert result.total_return == pytest.approx(1.01 ** 10 - 1)
    np.testing.assert_allclose(result.daily_returns, 0.01)
    assert result.max_drawdown == 0.0
    assert result.sortino == RATIO_CAP


def test_rebalancing_drifted_weights_costs_money():
    scenario = trending_scenario({"A": 0.01, "B": 0.0}, 30)
    weights = {"A": 0.5, "B": 0.5}

    charged = simulate_scenario(weights, scenario, CostModel(), 30)
    free = simulate_scenario(weights, scenario, FREE, 30)

    assert charged.total_costs > 0
    assert free.total_costs == 0.0
    assert charged.final_value < free.final_value
    # identical until the first rebalance on day 20
    assert charged.portfolio_values[:20] == pytest.approx(free.portfolio_values[:20])


def test_no_rebalance_before_period_ends():
    result = simulate_scenario(
        {"A": 0.5, "B": 0.5}, trending_scenario({"A": 0.01, "B": 0.0}, 10), CostModel(), 10,
    )
    assert result.total_costs == 0.0


def test_zero_weight_asset_may_lack_a_path():
    result = simulate_scenario({"A": 1.0, "B": 0.0}, flat_scenario(["A"], 5), CostModel(), 5)
    assert result.total_return == 0.0


def test_malformed_scenarios_are_skipped():
    short = Scenario(
        id="short", name="short", type=ScenarioType.MONTE_CARLO,
        paths={"A": [100.0] * 3, "B": [100.0] * 3},
    )
    missing = flat_scenario(["A"], 10, "missing")
    request = SimulationRequest(
        allocation_weights={"A": 0.5, "B": 0.5},
        scenarios=[flat_scenario(["A", "B"], 10), short, missing],
        horizon_days=10,
    )
    result = run_portfolio_simulation(request)

    assert result.diagnostics.n_scenarios == 3
    assert result.diagnostics.n_completed == 1
    assert [s.scenario_id for s in result.diagnostics.skipped] == ["short", "missing"]


def test_all_scenarios_skipped_raises():
    request = SimulationRequest(
        allocation_weights={"A": 1.0},
        scenarios=[flat_scenario(["B"], 10)],
        horizon_days=10,
    )
    with pytest.raises(SimulationError):
        run_portfolio_simulation(request)


def test_no_scenarios_raises():
    request = SimulationRequest(allocation_weights={"A": 1.0}, scenarios=[], horizon_days=10)
    with pytest.raises(SimulationError):
        run_portfolio_simulation(request)


@pytest.mark.parametrize("weights", [
    {"A": 0.6, "B": 0.6},
    {"A": 1.2, "B": -0.2},
    {},
])
def test_invalid_weights_are_rejected(weights):
    request = SimulationRequest(
        allocation_weights=weights,
        scenarios=[flat_scenario(["A", "B"], 5)],
        horizon_days=5,
    )
    with pytest.raises(ConfigurationError):
        run_portfolio_simulation(request)


def test_process_pool_matches_inline_run():
    scenarios = [
        trending_scenario({"A": 0.002 * i, "B": -0.001 * i}, 25, f"t{i}") for i in range(4)
    ]
    inline = run_portfolio_simulation(SimulationRequest(
        allocation_weights={"A": 0.7, "B": 0.3}, scenarios=scenarios, horizon_days=25,
    ))
    pooled = run_portfolio_simulation(SimulationRequest(
        allocation_weights={"A": 0.7, "B": 0.3}, scenarios=scenarios, horizon_days=25, n_workers=2,
    ))

    assert [r.scenario_id for r in pooled.scenario_results] == ["t0", "t1", "t2", "t3"]
    assert [r.final_value for r in pooled.scenario_results] == \
        [r.final_value for r in inline.scenario_results]


def test_aggregate_stats_over_losing_scenarios():
    scenarios = [
        trending_scenario({"A": -0.02}, 10, "crash"),
        trending_scenario({"A": 0.0}, 10, "flat"),
        trending_scenario({"A": 0.01}, 10, "rally"),
    ]
    result = run_portfolio_simulation(SimulationRequest(
        allocation_weights={"A": 1.0}, scenarios=scenarios, horizon_days=10,
    ))
    stats = result.aggregate_stats

    crash = 0.98 ** 10 - 1
    assert stats.worst_return == pytest.approx(crash)
    assert stats.best_return == pytest.approx(1.01 ** 10 - 1)
    assert stats.cvar95 == pytest.approx(crash)
    assert stats.pass_rate == pytest.approx(2 / 3)
    assert stats.max_drawdown == pytest.approx(1 - 0.98 ** 10)
    assert result.return_distribution.min == pytest.approx(crash)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

def test_max_drawdown_is_positive_fraction_of_peak():
    assert max_drawdown(np.array([1.0, 1.2, 0.9, 1.1])) == pytest.approx(0.25)


def test_time_under_water():
    assert time_under_water(np.array([1.0, 1.2, 0.9, 1.1, 1.3])) == pytest.approx(0.4)


def test_capped_ratio_handles_zero_denominator():
    assert capped_ratio(0.0, 0.0) == 0.0
    assert capped_ratio(0.5, 0.0) == RATIO_CAP
    assert capped_ratio(-0.5, 0.0) == -RATIO_CAP
    assert capped_ratio(1.0, 2.0) == 0.5


def test_sortino_without_losses():
    assert sortino_ratio(np.array([0.01, 0.02])) == RATIO_CAP
    assert sortino_ratio(np.array([0.0, 0.0])) == 0.0


def test_tail_statistics():
    returns = np.linspace(-0.19, 0.0, 20)
    assert value_at_risk(returns) == pytest.approx(-0.18)
    assert conditional_value_at_risk(returns) == pytest.approx(-0.19)


def test_pass_rate_counts_returns_above_loss_threshold():
    assert pass_rate([-0.2, 0.0, 0.1, -0.05]) == 0.75
