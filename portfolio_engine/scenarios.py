import logging
import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from portfolio_engine.exceptions import ConfigurationError
from portfolio_engine.models import (
    Asset,
    AssetClass,
    MacroShock,
    Regime,
    Scenario,
    ScenarioConfig,
    ScenarioKind,
    ScenarioSet,
    ScenarioType,
)
from portfolio_engine.reference import DEFAULT_REFERENCE, ReferenceData

logger = logging.getLogger(__name__)

# Constants
BASE_PRICE = 100.0
TRADING_DAYS = 252
HISTORICAL_NOISE = 0.01   # uniform half-width
MACRO_NOISE = 0.005       # uniform half-width
BPS = 10_000.0
PROB_TOLERANCE = 1e-3
CURRENCY_TAGS = ("INTERNATIONAL", "EM")
CREDIT_TAG = "CREDIT"


def validate_config(config: ScenarioConfig, assets: Sequence[Asset]) -> None:
    """Reject malformed configurations before any path is generated."""
    if not assets:
        raise ConfigurationError("Asset universe is empty")
    symbols = [a.symbol for a in assets]
    if len(set(symbols)) != len(symbols):
        raise ConfigurationError(f"Duplicate symbols in asset universe: {symbols}")
    if not config.include:
        raise ConfigurationError("No scenario generator kinds enabled")

    enabled = set(config.include)
    if ScenarioKind.HISTORICAL_REPLAY in enabled and \
            len(set(config.historical_replay)) != len(config.historical_replay):
        raise ConfigurationError(f"Duplicate historical episodes: {config.historical_replay}")
    shock_names = [s.name for s in config.macro_shocks]
    if ScenarioKind.MACRO_SHOCKS in enabled and len(set(shock_names)) != len(shock_names):
        raise ConfigurationError(f"Duplicate macro shock names: {shock_names}")

    if ScenarioKind.MONTE_CARLO in config.include and config.paths > 0:
        regimes = config.monte_carlo.regimes
        if not regimes:
            raise ConfigurationError("Monte Carlo enabled but no regimes configured")
        total = sum(r.prob for r in regimes)
        if abs(total - 1.0) > PROB_TOLERANCE:
            raise ConfigurationError(
                f"Monte Carlo regime probabilities must sum to 1, got {total:.6f}"
            )


def generate_prices(returns: np.ndarray, initial_price: float = BASE_PRICE) -> np.ndarray:
    """
    Vectorized price generation from returns

    Args:
        returns: (n_periods, n_assets) returns
        initial_price: common starting value

    Returns:
        (n_periods + 1, n_assets) prices including the starting row
    """
    prices = np.empty((len(returns) + 1, returns.shape[1]))
    prices[0] = initial_price
    prices[1:] = initial_price * np.cumprod(1 + returns, axis=0)
    return prices


def _to_paths(assets: Sequence[Asset], returns: np.ndarray) -> Dict[str, List[float]]:
    prices = generate_prices(returns)
    return {asset.symbol: prices[:, i].tolist() for i, asset in enumerate(assets)}


def uniform_noise(rng: np.random.Generator, half_width: float, size: Tuple[int, ...]) -> np.ndarray:
    return (rng.random(size) - 0.5) * 2.0 * half_width


def box_muller(rng: np.random.Generator, size) -> np.ndarray:
    """Standard normal draws from pairs of uniforms (Box-Muller transform)"""
    u1 = 1.0 - rng.random(size)  # (0, 1], keeps log finite
    u2 = rng.random(size)
    return np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)


def historical_scenario(episode_id: str,
                        assets: Sequence[Asset],
                        horizon_days: int,
                        rng: np.random.Generator,
                        reference: ReferenceData = DEFAULT_REFERENCE) -> Scenario:
    """
    Replay a named episode: each asset earns its class shock spread evenly
    over the horizon plus uniform daily noise. Fixed income takes the bond
    shock; every other class falls back to the equity shock.
    """
    fallback = episode_id not in reference.episodes
    if fallback:
        logger.warning(
            "Unknown historical episode %r, replaying %s instead",
            episode_id, reference.default_episode,
        )
    episode = reference.episodes.get(episode_id) or reference.episodes[reference.default_episode]

    shocks = np.array([
        episode.bonds if a.asset_class == AssetClass.FIXED_INCOME else episode.equity
        for a in assets
    ])
    noise = uniform_noise(rng, HISTORICAL_NOISE, (horizon_days, len(assets)))
    returns = shocks / horizon_days + noise

    return Scenario(
        id=f"hist_{episode_id}",
        name=f"Historical: {episode.name}",
        type=ScenarioType.HISTORICAL,
        paths=_to_paths(assets, returns),
        episode=episode_id,
        fallback=fallback,
    )


def shock_drifts(shock: MacroShock,
                 assets: Sequence[Asset],
                 horizon_days: int,
                 reference: ReferenceData = DEFAULT_REFERENCE) -> np.ndarray:
    """Deterministic daily drift per asset implied by one macro shock"""
    drifts = np.zeros(len(assets))
    rate_move = shock.rates_bps / BPS
    spread_move = shock.credit_spread_bps / BPS
    regions = {k.upper(): v for k, v in shock.equity_region.items()}

    for i, asset in enumerate(assets):
        tags = reference.tags(asset)
        bond_like = asset.asset_class == AssetClass.FIXED_INCOME
        total = 0.0

        if bond_like and rate_move:
            # Duration approximation
            total += -reference.duration(asset) * rate_move
        if bond_like and spread_move and CREDIT_TAG in tags:
            total += -reference.duration(asset) * spread_move
        if shock.usd_pct and any(t in tags for t in CURRENCY_TAGS):
            total += shock.usd_pct / 100.0
        for region, region_shock in regions.items():
            if region in tags:
                total += region_shock
                break

        drifts[i] = total / horizon_days

    return drifts


def macro_shock_scenario(shock: MacroShock,
                         assets: Sequence[Asset],
                         horizon_days: int,
                         rng: np.random.Generator,
                         reference: ReferenceData = DEFAULT_REFERENCE) -> Scenario:
    drifts = shock_drifts(shock, assets, horizon_days, reference)
    returns = drifts + uniform_noise(rng, MACRO_NOISE, (horizon_days, len(assets)))

    return Scenario(
        id=f"shock_{shock.name}",
        name=f"Shock: {shock.name}",
        type=ScenarioType.MACRO_SHOCK,
        paths=_to_paths(assets, returns),
    )


def sample_regime(regimes: Sequence[Regime], rng: np.random.Generator) -> Regime:
    """Cumulative-probability draw; rounding slack falls to the last regime"""
    draw = rng.random()
    cumulative = 0.0
    for regime in regimes:
        cumulative += regime.prob
        if draw <= cumulative:
            return regime
    return regimes[-1]


def monte_carlo_scenario(index: int,
                         regimes: Sequence[Regime],
                         assets: Sequence[Asset],
                         horizon_days: int,
                         rng: np.random.Generator,
                         reference: ReferenceData = DEFAULT_REFERENCE) -> Scenario:
    regime = sample_regime(regimes, rng)

    base_vols = np.array([reference.volatility(a.symbol) for a in assets]) / np.sqrt(TRADING_DAYS)
    returns = box_muller(rng, (horizon_days, len(assets))) * base_vols * regime.vol_mult

    return Scenario(
        id=f"mc_{regime.name}_{index}",
        name=f"Monte Carlo: {regime.name} {index + 1}",
        type=ScenarioType.MONTE_CARLO,
        paths=_to_paths(assets, returns),
        regime=regime.name,
    )


def _monte_carlo_task(args: Tuple[int, List[Regime], List[Asset], int,
                                  np.random.SeedSequence, ReferenceData]) -> Tuple[int, Scenario]:
    """Worker: one Monte Carlo path with its own generator."""
    index, regimes, assets, horizon_days, seed_seq, reference = args
    rng = np.random.default_rng(seed_seq)
    return index, monte_carlo_scenario(index, regimes, assets, horizon_days, rng, reference)


def _run_monte_carlo(config: ScenarioConfig,
                     assets: List[Asset],
                     seed_seq: np.random.SeedSequence,
                     reference: ReferenceData,
                     n_workers: int) -> List[Scenario]:
    children = seed_seq.spawn(config.paths)
    tasks = [
        (i, config.monte_carlo.regimes, assets, config.horizon_days, child, reference)
        for i, child in enumerate(children)
    ]

    if n_workers <= 1 or len(tasks) <= 1:
        return [_monte_carlo_task(task)[1] for task in tasks]

    results: Dict[int, Scenario] = {}
    with ProcessPoolExecutor(max_workers=min(n_workers, len(tasks))) as executor:
        futures = {executor.submit(_monte_carlo_task, task): task[0] for task in tasks}
        for fut in as_completed(futures):
            index, scenario = fut.result()
            results[index] = scenario
    return [results[i] for i in range(len(tasks))]


def generate_scenarios(config: ScenarioConfig,
                       assets: Sequence[Asset],
                       reference: Optional[ReferenceData] = None,
                       n_workers: Optional[int] = 1) -> List[Scenario]:
    """
    Generate the scenario set for one request.

    Randomness comes from a SeedSequence rooted at ``config.seed``: one
    child per generator kind, one grandchild per scenario. The same seed
    and configuration therefore reproduce identical paths whatever the
    worker count or the set of other enabled kinds.
    """
    reference = reference or DEFAULT_REFERENCE
    validate_config(config, assets)
    assets = reference.resolve_all([a.symbol for a in assets], assets)

    hist_seq, macro_seq, mc_seq = np.random.SeedSequence(config.seed).spawn(3)
    scenarios: List[Scenario] = []

    if ScenarioKind.HISTORICAL_REPLAY in config.include:
        for episode_id, child in zip(config.historical_replay,
                                     hist_seq.spawn(len(config.historical_replay))):
            scenarios.append(historical_scenario(
                episode_id, assets, config.horizon_days, np.random.default_rng(child), reference,
            ))

    if ScenarioKind.MACRO_SHOCKS in config.include:
        for shock, child in zip(config.macro_shocks, macro_seq.spawn(len(config.macro_shocks))):
            scenarios.append(macro_shock_scenario(
                shock, assets, config.horizon_days, np.random.default_rng(child), reference,
            ))

    if ScenarioKind.MONTE_CARLO in config.include and config.paths > 0:
        workers = n_workers if n_workers is not None else (os.cpu_count() or 1)
        scenarios.extend(_run_monte_carlo(config, assets, mc_seq, reference, workers))

    logger.info(
        "Generated %d scenarios (horizon=%d, seed=%d, kinds=%s)",
        len(scenarios), config.horizon_days, config.seed,
        [k.value for k in config.include],
    )
    return scenarios


def build_scenario_set(config: ScenarioConfig,
                       assets: Sequence[Asset],
                       reference: Optional[ReferenceData] = None,
                       n_workers: Optional[int] = 1) -> ScenarioSet:
    scenarios = generate_scenarios(config, assets, reference, n_workers)
    return ScenarioSet(
        scenarios=scenarios,
        horizon_days=config.horizon_days,
        seed=config.seed,
        n_fallback=sum(1 for s in scenarios if s.fallback),
    )
