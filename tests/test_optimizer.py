import numpy as np
import pytest

from portfolio_engine.exceptions import ConfigurationError
from portfolio_engine.models import (
    Asset,
    BlackLittermanParams,
    BlackLittermanView,
    OptimizationConstraints,
    OptimizationRequest,
    Priors,
)
from portfolio_engine.optimizer import (
    OBJECTIVES,
    PseudoInverseInverter,
    ReferenceInverter,
    apply_constraints,
    maximize_return,
    minimize_volatility,
    minimize_volatility_qp,
    optimize_portfolio,
    optimize_weights,
    risk_contributions,
)

SYMBOLS = ["A", "B", "C"]
MU = np.array([0.0004, 0.0003, 0.0001])
COV = np.array([
    [0.0004, 0.0001, 0.0000],
    [0.0001, 0.0002, 0.0000],
    [0.0000, 0.0000, 0.0001],
])


def test_min_vol_two_asset_closed_form():
    result = optimize_weights(
        "minVol", ["A", "B"], [0.001, 0.001], [[0.04, 0.0], [0.0, 0.01]],
    )
    assert result.weights["A"] == pytest.approx(0.2, abs=1e-6)
    assert result.weights["B"] == pytest.approx(0.8, abs=1e-6)


def test_min_vol_qp_matches_closed_form():
    weights = minimize_volatility_qp(np.array([[0.04, 0.0], [0.0, 0.01]]))
    np.testing.assert_allclose(weights, [0.2, 0.8], atol=1e-4)


@pytest.mark.parametrize("objective", OBJECTIVES)
def test_weights_are_valid_for_every_objective(objective):
    constraints = OptimizationConstraints(max_weight_per_asset=0.5)
    result = optimize_weights(objective, SYMBOLS, MU, COV, constraints)

    weights = np.array(list(result.weights.values()))
    assert list(result.weights) == SYMBOLS
    assert weights.sum() == pytest.approx(1.0, abs=1e-6)
    assert np.all(weights >= 0)
    assert np.all(weights <= 0.5 + 1e-6)
    assert result.diagnostics.max_weight == pytest.approx(weights.max())


@pytest.mark.parametrize("solver", ["reference", "qp"])
def test_min_vol_is_no_riskier_than_equal_weight(solver):
    constraints = OptimizationConstraints(solver=solver)
    result = optimize_weights("minVol", SYMBOLS, MU, COV, constraints)

    weights = np.array(list(result.weights.values()))
    equal = np.full(3, 1 / 3)
    assert weights @ COV @ weights <= equal @ COV @ equal + 1e-12


def test_pseudo_inverse_min_vol_on_three_assets():
    weights = minimize_volatility(COV, inverter=PseudoInverseInverter())
    qp = minimize_volatility_qp(COV)
    np.testing.assert_allclose(weights, qp, atol=1e-4)


def test_reference_inverter_is_identity_beyond_two_assets():
    np.testing.assert_array_equal(ReferenceInverter().invert(COV), np.eye(3))


def test_reference_inverter_singular_matrix():
    np.testing.assert_array_equal(ReferenceInverter().invert(np.ones((2, 2))), np.eye(2))


def test_risk_parity_equalizes_contributions():
    cov = np.diag([0.04, 0.01, 0.0025])
    result = optimize_weights("riskParity", SYMBOLS, MU, cov)

    weights = np.array(list(result.weights.values()))
    contributions = risk_contributions(weights, cov)
    np.testing.assert_allclose(contributions, 1 / 3, atol=0.05 / 3)
    assert weights[0] < weights[1] < weights[2]


def test_max_return_fills_best_assets_first():
    weights = maximize_return(np.array([0.01, 0.03, 0.02]), max_weight=0.5)
    np.testing.assert_allclose(weights, [0.0, 0.5, 0.5])


def test_max_sharpe_prefers_better_reward_to_risk():
    cov = np.diag([1e-4, 1e-4])
    result = optimize_weights("maxSharpe", ["A", "B"], [0.002, 0.0001], cov)
    assert result.weights["A"] > result.weights["B"]
    assert result.diagnostics.iterations == 1000


def test_black_litterman_view_tilts_toward_viewed_asset():
    cov = np.diag([1e-4, 1e-4, 1e-4])
    priors = Priors(black_litterman=BlackLittermanParams(
        views=[BlackLittermanView(symbol="A", expected_return=0.002, confidence=1.0)],
    ))
    result = optimize_weights("blackLitterman", SYMBOLS, MU, cov, priors=priors)

    assert result.weights["A"] > result.weights["B"]
    assert result.weights["A"] > 1 / 3


def test_black_litterman_without_views_is_equal_weight():
    result = optimize_weights("blackLitterman", SYMBOLS, MU, COV)
    for weight in result.weights.values():
        assert weight == pytest.approx(1 / 3)


def test_black_litterman_view_on_unknown_symbol():
    priors = Priors(black_litterman=BlackLittermanParams(
        views=[BlackLittermanView(symbol="ZZZ", expected_return=0.01)],
    ))
    with pytest.raises(ConfigurationError):
        optimize_weights("blackLitterman", SYMBOLS, MU, COV, priors=priors)


def test_unknown_objective_is_rejected():
    with pytest.raises(ConfigurationError):
        optimize_weights("maxUtility", SYMBOLS, MU, COV)


def test_infeasible_cap_is_rejected():
    constraints = OptimizationConstraints(max_weight_per_asset=0.2)
    with pytest.raises(ConfigurationError):
        optimize_weights("minVol", SYMBOLS, MU, COV, constraints)


def test_mismatched_shapes_are_rejected():
    with pytest.raises(ConfigurationError):
        optimize_weights("minVol", SYMBOLS, MU[:2], COV)


def test_apply_constraints_redistributes_excess():
    weights = apply_constraints(np.array([0.7, 0.2, 0.1]), max_weight=0.5)
    np.testing.assert_allclose(weights, [0.5, 0.2 + 0.2 * 2 / 3, 0.1 + 0.2 / 3])


def test_apply_constraints_clips_negative_weights():
    weights = apply_constraints(np.array([-0.5, 1.0, 0.5]))
    np.testing.assert_allclose(weights, [0.0, 2 / 3, 1 / 3])


def test_diagnostics_report_turnover_and_kelly_cap():
    priors = Priors(current_weights={"A": 1.0}, kelly_cap=0.25)
    result = optimize_weights(
        "minVol", ["A", "B"], [0.001, 0.001], [[0.04, 0.0], [0.0, 0.01]], priors=priors,
    )
    assert result.diagnostics.turnover == pytest.approx(0.8)
    assert result.diagnostics.kelly_cap == 0.25


def test_optimize_portfolio_without_scenarios_uses_synthetic_inputs():
    request = OptimizationRequest(
        objective="minVol",
        assets=[Asset(symbol="SPY"), Asset(symbol="IEF")],
        seed=1,
    )
    result = optimize_portfolio(request)

    assert result.diagnostics.synthetic_inputs is True
    assert sum(result.weights.values()) == pytest.approx(1.0)
    # IEF is the low-volatility asset in the reference tables
    assert result.weights["IEF"] > result.weights["SPY"]


def test_optimize_portfolio_rejects_unknown_objective():
    request = OptimizationRequest(objective="bogus", assets=[Asset(symbol="SPY")])
    with pytest.raises(ConfigurationError):
        optimize_portfolio(request)


def test_duplicate_symbols_are_rejected():
    with pytest.raises(ConfigurationError):
        optimize_weights("minVol", ["A", "A", "B"], MU, COV)


def test_optimize_portfolio_rejects_duplicate_assets():
    request = OptimizationRequest(
        objective="minVol",
        assets=[Asset(symbol="SPY"), Asset(symbol="SPY"), Asset(symbol="IEF")],
        seed=1,
    )
    with pytest.raises(ConfigurationError):
        optimize_portfolio(request)
