class PortfolioEngineError(Exception):
    """Base class for every error raised by the engine"""

    def __init__(self, message: str = "Portfolio engine error"):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(PortfolioEngineError):
    """Request configuration is invalid (unknown objective, bad regimes, infeasible caps, ...)"""


class EstimationError(PortfolioEngineError):
    """Parameter estimation could not produce usable inputs"""


class ScenarioDataError(PortfolioEngineError):
    """A single scenario is malformed; callers skip it and keep going"""

    def __init__(self, scenario_id: str, reason: str):
        self.scenario_id = scenario_id
        self.reason = reason
        super().__init__(f"Scenario {scenario_id}: {reason}")


class SimulationError(PortfolioEngineError):
    """Simulation produced no usable result"""


class BudgetExceededError(PortfolioEngineError):
    """A pipeline request ran past its wall-clock budget"""

    def __init__(self, stage: str, elapsed: float, budget: float):
        self.stage = stage
        self.elapsed = elapsed
        self.budget = budget
        super().__init__(
            f"Time budget of {budget:.2f}s exceeded after {stage} ({elapsed:.2f}s elapsed)"
        )
