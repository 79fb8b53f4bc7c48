from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List, Literal
from pydantic import BaseModel, Field


class AssetClass(str, Enum):
    """Asset classes used for cost-model and shock-sensitivity lookups"""
    EQUITY = "Equity"
    FIXED_INCOME = "FixedIncome"
    COMMODITIES = "Commodities"
    CASH = "Cash"


class Asset(BaseModel):
    """A tradable symbol and the metadata the shock models need"""
    symbol: str
    asset_class: Optional[AssetClass] = None  # looked up from reference data when omitted
    duration: Optional[float] = Field(default=None, ge=0)  # years, bond-like assets
    tags: List[str] = []  # INTERNATIONAL, EM, ENERGY, CREDIT, region/sector names


# ---------------------------------------------------------------------------
# Scenario generation
# ---------------------------------------------------------------------------

class ScenarioKind(str, Enum):
    """Generator kinds that can be enabled in a ScenarioConfig"""
    HISTORICAL_REPLAY = "historicalReplay"
    MACRO_SHOCKS = "macroShocks"
    MONTE_CARLO = "monteCarlo"


class ScenarioType(str, Enum):
    HISTORICAL = "historical"
    MACRO_SHOCK = "macroShock"
    MONTE_CARLO = "monteCarlo"


class Regime(BaseModel):
    """One Monte Carlo volatility regime"""
    name: str
    vol_mult: float = Field(default=1.0, gt=0)
    prob: float = Field(ge=0, le=1)


class MonteCarloParams(BaseModel):
    """Regime mixture sampled once per Monte Carlo path"""
    regimes: List[Regime] = []


class MacroShock(BaseModel):
    """Instantaneous macro shock spread evenly over the horizon"""
    name: str
    rates_bps: float = 0.0
    usd_pct: float = 0.0
    equity_region: Dict[str, float] = {}  # tag -> total return shock
    credit_spread_bps: float = 0.0


class ScenarioConfig(BaseModel):
    """Caller-supplied configuration for one scenario set"""
    horizon_days: int = Field(default=60, ge=1)
    paths: int = Field(default=100, ge=0, le=10000)
    seed: int = 42
    include: List[ScenarioKind] = [ScenarioKind.MONTE_CARLO]
    historical_replay: List[str] = []
    macro_shocks: List[MacroShock] = []
    monte_carlo: MonteCarloParams = MonteCarloParams()


class Scenario(BaseModel):
    """Price path per asset; every path starts at 100 and has horizon_days + 1 points"""
    id: str
    name: str
    type: ScenarioType
    paths: Dict[str, List[float]]
    episode: Optional[str] = None
    regime: Optional[str] = None
    fallback: bool = False  # unknown episode replaced by the default episode


class ScenarioRequest(BaseModel):
    config: ScenarioConfig
    assets: List[Asset]


class ScenarioSet(BaseModel):
    scenarios: List[Scenario]
    horizon_days: int
    seed: int
    n_fallback: int = 0


# ---------------------------------------------------------------------------
# Costs and optimization
# ---------------------------------------------------------------------------

class CostModel(BaseModel):
    """Transaction cost parameters in basis points"""
    commission_bps: float = Field(default=5.0, ge=0)
    bid_ask_bps: Dict[str, float] = {}  # asset class -> bps, missing classes use 5bps
    slippage_bps_per_turnover: float = Field(default=10.0, ge=0)


class OptimizationConstraints(BaseModel):
    max_weight_per_asset: float = Field(default=1.0, gt=0, le=1)
    solver: Literal["reference", "qp"] = "reference"


class BlackLittermanView(BaseModel):
    """Absolute view on one asset, in the same (daily) units as expected returns"""
    symbol: str
    expected_return: float
    confidence: float = Field(default=0.5, ge=0, le=1)


class BlackLittermanParams(BaseModel):
    tau: float = Field(default=0.05, gt=0)
    views: List[BlackLittermanView] = []


class Priors(BaseModel):
    shrinkage: str = "LedoitWolf"
    kelly_cap: Optional[float] = None  # accepted, not enforced
    black_litterman: BlackLittermanParams = BlackLittermanParams()
    current_weights: Dict[str, float] = {}


class ScenarioData(BaseModel):
    scenarios: List[Scenario] = []


class OptimizationRequest(BaseModel):
    objective: str
    assets: List[Asset]
    constraints: OptimizationConstraints = OptimizationConstraints()
    priors: Priors = Priors()
    scenario_data: ScenarioData = ScenarioData()
    seed: int = 0  # only used by the synthetic fallback


class Diagnostics(BaseModel):
    """Ex-ante statistics of an optimized weight set (daily units)"""
    expected_return: float
    expected_vol: float
    sharpe_ratio: float
    max_weight: float
    turnover: float
    synthetic_inputs: bool = False
    skipped_scenarios: int = 0
    iterations: int = 0
    kelly_cap: Optional[float] = None


class OptimizationResult(BaseModel):
    objective: str
    weights: Dict[str, float]
    diagnostics: Diagnostics


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------

class SimulationRequest(BaseModel):
    allocation_weights: Dict[str, float]
    scenarios: List[Scenario]
    cost_model: CostModel = CostModel()
    horizon_days: int = Field(ge=1)
    assets: List[Asset] = []  # optional overrides for class lookups
    n_workers: Optional[int] = Field(default=None, ge=1)


class ScenarioResult(BaseModel):
    """Outcome of replaying one weight set through one scenario"""
    scenario_id: str
    scenario_name: str
    portfolio_values: List[float]
    daily_returns: List[float]
    total_return: float
    volatility: float            # annualized
    max_drawdown: float          # positive fraction of the running peak
    sharpe_ratio: float          # annualized
    sortino: float
    time_under_water: float
    total_costs: float
    final_value: float


class AggregateStats(BaseModel):
    mean_return: float
    median_return: float
    volatility: float
    sharpe_ratio: float
    max_drawdown: float
    worst_return: float
    best_return: float
    var95: float
    cvar95: float
    pass_rate: float
    sortino: float


class SummaryMetrics(BaseModel):
    expected_return: float
    expected_volatility: float
    sharpe_ratio: float
    max_drawdown: float
    cvar95: float
    pass_rate: float


class Distribution(BaseModel):
    """Summary statistics for one metric across all scenarios."""
    mean: float
    median: float
    std: float
    p5: float
    p25: float
    p75: float
    p95: float
    min: float
    max: float


class SkippedScenario(BaseModel):
    scenario_id: str
    reason: str


class SimulationDiagnostics(BaseModel):
    n_scenarios: int
    n_completed: int
    skipped: List[SkippedScenario] = []
    runtime_seconds: float = 0.0


class SimulationResult(BaseModel):
    scenario_results: List[ScenarioResult]
    summary_metrics: SummaryMetrics
    aggregate_stats: AggregateStats
    return_distribution: Distribution
    diagnostics: SimulationDiagnostics


# ---------------------------------------------------------------------------
# Advice
# ---------------------------------------------------------------------------

class Trade(BaseModel):
    symbol: str
    side: Literal["buy", "sell"]
    qty: float
    est_cost: float
    adv_pct: float  # fraction of average daily volume
    current_weight: float
    target_weight: float
    difference: float


class RiskSummary(BaseModel):
    expected_return: float
    expected_vol: float
    max_drawdown: float
    cvar95: float
    pass_rate: float
    sharpe_ratio: float = 0.0
    sortino: float = 0.0
    constraints: Optional[OptimizationConstraints] = None
    synthetic: bool = False


class Sensitivity(BaseModel):
    shock: str
    description: str
    expected_return: float
    expected_vol: float
    max_drawdown: float


class FactorShift(BaseModel):
    equity_beta: float     # equity weight vs 60% benchmark
    duration: float        # duration-years vs 2 year benchmark
    commodity_beta: float  # commodity weight vs 5% benchmark
    cash_weight: float


class Rationale(BaseModel):
    top_scenarios: List[str]
    factor_shift: FactorShift
    explanation: str
    key_insights: List[str]


class AdviceRequest(BaseModel):
    allocation_weights: Dict[str, float]
    scenario_results: Optional[SimulationResult] = None
    current_holdings: Dict[str, float] = {}
    cost_model: CostModel = CostModel()
    constraints: Optional[OptimizationConstraints] = None
    diagnostics: Optional[Diagnostics] = None
    assets: List[Asset] = []
    notional: Optional[float] = Field(default=None, gt=0)


class Advice(BaseModel):
    target_weights: Dict[str, float]
    trades: List[Trade]
    risk_summary: RiskSummary
    sensitivities: List[Sensitivity]
    rationale: Rationale
    generated_at: datetime
    pass_rate: float
    expected_return: float
    expected_vol: float


# ---------------------------------------------------------------------------
# End-to-end pipeline
# ---------------------------------------------------------------------------

class PipelineRequest(BaseModel):
    """Generation -> estimation -> optimization -> simulation -> advice in one call"""
    scenario_config: ScenarioConfig
    assets: List[Asset]
    objective: str = "maxSharpe"
    constraints: OptimizationConstraints = OptimizationConstraints()
    priors: Priors = Priors()
    cost_model: CostModel = CostModel()
    current_holdings: Dict[str, float] = {}
    time_budget_seconds: Optional[float] = Field(default=None, gt=0)


class PipelineResult(BaseModel):
    n_scenarios: int
    optimization: OptimizationResult
    simulation: SimulationResult
    advice: Advice
    runtime_seconds: float
