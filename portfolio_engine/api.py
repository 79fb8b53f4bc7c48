from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portfolio_engine.advice import generate_advice
from portfolio_engine.config import configure_logging, get_settings
from portfolio_engine.exceptions import (
    BudgetExceededError,
    ConfigurationError,
    EstimationError,
    SimulationError,
)
from portfolio_engine.models import (
    Advice,
    AdviceRequest,
    OptimizationRequest,
    OptimizationResult,
    PipelineRequest,
    PipelineResult,
    ScenarioRequest,
    ScenarioSet,
    SimulationRequest,
    SimulationResult,
)
from portfolio_engine.optimizer import optimize_portfolio
from portfolio_engine.pipeline import run_pipeline
from portfolio_engine.scenarios import build_scenario_set
from portfolio_engine.simulator import run_portfolio_simulation

settings = get_settings()
configure_logging(settings.log_level)

app = FastAPI(title="Portfolio Engine API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ConfigurationError)
def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=422, content={"detail": exc.message})


@app.exception_handler(EstimationError)
def estimation_error_handler(request: Request, exc: EstimationError):
    return JSONResponse(status_code=422, content={"detail": exc.message})


@app.exception_handler(SimulationError)
def simulation_error_handler(request: Request, exc: SimulationError):
    return JSONResponse(status_code=422, content={"detail": exc.message})


@app.exception_handler(BudgetExceededError)
def budget_exceeded_handler(request: Request, exc: BudgetExceededError):
    return JSONResponse(status_code=504, content={"detail": exc.message, "stage": exc.stage})


@app.get("/health")
def health_check():
    return {"status": "healthy"}


@app.post("/scenarios")
def scenarios(params: ScenarioRequest) -> ScenarioSet:
    return build_scenario_set(params.config, params.assets, n_workers=settings.workers)


@app.post("/optimize")
def optimize(params: OptimizationRequest) -> OptimizationResult:
    return optimize_portfolio(params)


@app.post("/simulate")
def simulate(params: SimulationRequest) -> SimulationResult:
    if params.n_workers is None:
        params = params.model_copy(update={"n_workers": settings.workers})
    return run_portfolio_simulation(params)


@app.post("/advice")
def advice(params: AdviceRequest) -> Advice:
    return generate_advice(params)


@app.post("/pipeline")
def pipeline(params: PipelineRequest) -> PipelineResult:
    return run_pipeline(params, settings=settings)
