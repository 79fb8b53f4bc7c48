import logging
import time
from typing import Optional

from portfolio_engine.advice import generate_advice
from portfolio_engine.config import EngineSettings, get_settings
from portfolio_engine.exceptions import BudgetExceededError
from portfolio_engine.models import (
    AdviceRequest,
    PipelineRequest,
    PipelineResult,
    SimulationRequest,
)
from portfolio_engine.optimizer import optimize_from_estimate
from portfolio_engine.reference import DEFAULT_REFERENCE, ReferenceData
from portfolio_engine.risk import estimate_parameters
from portfolio_engine.scenarios import generate_scenarios
from portfolio_engine.simulator import run_portfolio_simulation

logger = logging.getLogger(__name__)


class StageClock:
    """Wall-clock checkpoints against an optional budget"""

    def __init__(self, budget: Optional[float]):
        self.budget = budget
        self.start = time.perf_counter()

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.start

    def checkpoint(self, stage: str) -> None:
        elapsed = self.elapsed
        logger.info("Stage %s finished at %.3fs", stage, elapsed)
        if self.budget is not None and elapsed > self.budget:
            raise BudgetExceededError(stage, elapsed, self.budget)


def run_pipeline(request: PipelineRequest,
                 reference: Optional[ReferenceData] = None,
                 settings: Optional[EngineSettings] = None) -> PipelineResult:
    """
    Scenarios -> estimate -> optimize -> simulate -> advise.

    The budget is checked after each stage; a stage already running is
    never interrupted.
    """
    reference = reference or DEFAULT_REFERENCE
    settings = settings or get_settings()
    budget = request.time_budget_seconds or settings.time_budget_seconds
    clock = StageClock(budget)

    symbols = [a.symbol for a in request.assets]
    scenarios = generate_scenarios(request.scenario_config, request.assets, reference, settings.workers)
    clock.checkpoint("scenarios")

    estimate = estimate_parameters(
        symbols, scenarios,
        shrinkage=request.priors.shrinkage,
        reference=reference,
        seed=request.scenario_config.seed,
    )
    clock.checkpoint("estimation")

    optimization = optimize_from_estimate(
        request.objective, estimate, request.constraints, request.priors,
    )
    clock.checkpoint("optimization")

    simulation = run_portfolio_simulation(
        SimulationRequest(
            allocation_weights=optimization.weights,
            scenarios=scenarios,
            cost_model=request.cost_model,
            horizon_days=request.scenario_config.horizon_days,
            assets=request.assets,
            n_workers=settings.workers,
        ),
        reference,
    )
    clock.checkpoint("simulation")

    advice = generate_advice(
        AdviceRequest(
            allocation_weights=optimization.weights,
            scenario_results=simulation,
            current_holdings=request.current_holdings,
            cost_model=request.cost_model,
            constraints=request.constraints,
            diagnostics=optimization.diagnostics,
            assets=request.assets,
            notional=settings.trade_notional,
        ),
        reference,
    )
    clock.checkpoint("advice")

    return PipelineResult(
        n_scenarios=len(scenarios),
        optimization=optimization,
        simulation=simulation,
        advice=advice,
        runtime_seconds=round(clock.elapsed, 4),
    )
