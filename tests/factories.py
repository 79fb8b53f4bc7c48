"""
Scenario builders for engine tests.
"""

from portfolio_engine.models import Scenario, ScenarioType


def flat_scenario(symbols, horizon_days, scenario_id="flat", price=100.0):
    return Scenario(
        id=scenario_id,
        name=f"Flat {scenario_id}",
        type=ScenarioType.HISTORICAL,
        paths={s: [price] * (horizon_days + 1) for s in symbols},
    )


def trending_scenario(daily_moves, horizon_days, scenario_id="trend"):
    """Each symbol compounds at its own constant daily return from 100."""
    return Scenario(
        id=scenario_id,
        name=f"Trend {scenario_id}",
        type=ScenarioType.MONTE_CARLO,
        paths={
            s: [100.0 * (1 + r) ** d for d in range(horizon_days + 1)]
            for s, r in daily_moves.items()
        },
    )
