"""
Shared fixtures for engine tests.
"""

import pytest

from portfolio_engine.config import EngineSettings
from portfolio_engine.models import (
    Asset,
    AssetClass,
    MonteCarloParams,
    Regime,
    ScenarioConfig,
    ScenarioKind,
)


@pytest.fixture
def equity_bond_assets():
    return [
        Asset(symbol="SPY", asset_class=AssetClass.EQUITY),
        Asset(symbol="IEF", asset_class=AssetClass.FIXED_INCOME, duration=7.0),
    ]


@pytest.fixture
def regimes():
    return MonteCarloParams(regimes=[
        Regime(name="calm", vol_mult=0.8, prob=0.7),
        Regime(name="stress", vol_mult=2.0, prob=0.3),
    ])


@pytest.fixture
def mixed_config(regimes):
    return ScenarioConfig(
        horizon_days=15,
        paths=6,
        seed=7,
        include=[ScenarioKind.HISTORICAL_REPLAY, ScenarioKind.MONTE_CARLO],
        historical_replay=["GFC2008", "COVID2020"],
        monte_carlo=regimes,
    )


@pytest.fixture
def inline_settings():
    return EngineSettings(workers=1, time_budget_seconds=None, trade_notional=100_000.0)
