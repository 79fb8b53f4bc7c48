import pytest

from portfolio_engine.config import EngineSettings, get_settings
from portfolio_engine.exceptions import BudgetExceededError
from portfolio_engine.models import PipelineRequest
from portfolio_engine.pipeline import StageClock, run_pipeline


def test_pipeline_end_to_end(mixed_config, equity_bond_assets, inline_settings):
    request = PipelineRequest(
        scenario_config=mixed_config,
        assets=equity_bond_assets,
        objective="minVol",
        current_holdings={"SPY": 1.0},
    )
    result = run_pipeline(request, settings=inline_settings)

    assert result.n_scenarios == 2 + mixed_config.paths
    weights = result.optimization.weights
    assert set(weights) == {"SPY", "IEF"}
    assert sum(weights.values()) == pytest.approx(1.0)
    assert result.optimization.diagnostics.synthetic_inputs is False
    assert result.simulation.diagnostics.n_completed == result.n_scenarios
    assert result.advice.target_weights == weights
    assert result.advice.risk_summary.synthetic is False
    assert {t.symbol for t in result.advice.trades} == {"SPY", "IEF"}
    assert result.runtime_seconds >= 0


def test_pipeline_is_deterministic(mixed_config, equity_bond_assets, inline_settings):
    request = PipelineRequest(scenario_config=mixed_config, assets=equity_bond_assets)
    first = run_pipeline(request, settings=inline_settings)
    second = run_pipeline(request, settings=inline_settings)

    assert first.optimization.weights == second.optimization.weights
    assert first.simulation.aggregate_stats == second.simulation.aggregate_stats


def test_pipeline_budget_exceeded(mixed_config, equity_bond_assets, inline_settings):
    request = PipelineRequest(
        scenario_config=mixed_config,
        assets=equity_bond_assets,
        time_budget_seconds=1e-9,
    )
    with pytest.raises(BudgetExceededError) as exc:
        run_pipeline(request, settings=inline_settings)
    assert exc.value.stage == "scenarios"


def test_settings_budget_applies_when_request_has_none(mixed_config, equity_bond_assets):
    request = PipelineRequest(scenario_config=mixed_config, assets=equity_bond_assets)
    with pytest.raises(BudgetExceededError):
        run_pipeline(request, settings=EngineSettings(time_budget_seconds=1e-9))


def test_stage_clock_without_budget_never_raises():
    clock = StageClock(None)
    clock.checkpoint("anything")
    assert clock.elapsed >= 0


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("PORTFOLIO_ENGINE_WORKERS", "4")
    monkeypatch.setenv("PORTFOLIO_ENGINE_TIME_BUDGET_SECONDS", "2.5")
    monkeypatch.setenv("PORTFOLIO_ENGINE_TRADE_NOTIONAL", "250000")
    monkeypatch.setenv("PORTFOLIO_ENGINE_LOG_LEVEL", "DEBUG")

    settings = get_settings()

    assert settings.workers == 4
    assert settings.time_budget_seconds == 2.5
    assert settings.trade_notional == 250_000.0
    assert settings.log_level == "DEBUG"
