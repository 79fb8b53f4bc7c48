"""
Turn target weights, current holdings and simulation output into an
executable trade list with risk summary, sensitivities and rationale.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from portfolio_engine.config import get_settings
from portfolio_engine.costs import trading_cost
from portfolio_engine.models import (
    Advice,
    AdviceRequest,
    Asset,
    AssetClass,
    CostModel,
    FactorShift,
    OptimizationConstraints,
    Rationale,
    RiskSummary,
    Sensitivity,
    SimulationResult,
    Trade,
)
from portfolio_engine.reference import DEFAULT_REFERENCE, ReferenceData

logger = logging.getLogger(__name__)

TRADE_THRESHOLD = 0.001

# Benchmarks for the factor shift
EQUITY_BENCHMARK = 0.60
DURATION_BENCHMARK = 2.0
COMMODITY_BENCHMARK = 0.05

# Baseline used when no simulation is supplied
DEFAULT_RISK = {
    "expected_return": 0.08,
    "expected_vol": 0.12,
    "max_drawdown": 0.15,
    "cvar95": 0.12,
    "pass_rate": 0.85,
}

MAX_TOP_SCENARIOS = 3
MAX_INSIGHTS = 4
DEFAULT_INSIGHTS = [
    "Balanced allocation provides diversification across asset classes",
    "Risk metrics indicate suitable exposure for long-term growth",
    "Portfolio positioning aligns with stress test scenarios",
]


def _asset_map(symbols: Sequence[str], assets: Sequence[Asset],
               reference: ReferenceData) -> Dict[str, Asset]:
    return {a.symbol: a for a in reference.resolve_all(symbols, assets)}


def generate_trades(target_weights: Dict[str, float],
                    current_holdings: Dict[str, float],
                    cost_model: CostModel,
                    assets: Dict[str, Asset],
                    reference: ReferenceData = DEFAULT_REFERENCE,
                    notional: float = 100_000.0) -> List[Trade]:
    """Trades for every material weight gap, largest gap first"""
    trades = []
    symbols = list(dict.fromkeys([*target_weights, *current_holdings]))

    for symbol in symbols:
        current_weight = current_holdings.get(symbol, 0.0)
        target_weight = target_weights.get(symbol, 0.0)
        difference = target_weight - current_weight
        if abs(difference) <= TRADE_THRESHOLD:
            continue

        quantity = abs(difference) * notional
        asset = assets.get(symbol) or reference.resolve(symbol)
        trades.append(Trade(
            symbol=symbol,
            side="buy" if difference > 0 else "sell",
            qty=quantity,
            est_cost=trading_cost(quantity, abs(difference), asset.asset_class, cost_model),
            adv_pct=quantity / reference.average_daily_volume(symbol),
            current_weight=current_weight,
            target_weight=target_weight,
            difference=difference,
        ))

    return sorted(trades, key=lambda t: abs(t.difference), reverse=True)


def risk_summary(simulation: Optional[SimulationResult],
                 constraints: Optional[OptimizationConstraints] = None) -> RiskSummary:
    if simulation is None:
        return RiskSummary(**DEFAULT_RISK, constraints=constraints, synthetic=True)

    stats = simulation.aggregate_stats
    return RiskSummary(
        expected_return=stats.mean_return,
        expected_vol=stats.volatility,
        max_drawdown=stats.max_drawdown,
        cvar95=stats.cvar95,
        pass_rate=stats.pass_rate,
        sharpe_ratio=stats.sharpe_ratio,
        sortino=stats.sortino,
        constraints=constraints,
    )


# ---------------------------------------------------------------------------
# Exposures
# ---------------------------------------------------------------------------

def class_weight(weights: Dict[str, float], assets: Dict[str, Asset], asset_class: AssetClass) -> float:
    return sum(w for s, w in weights.items() if assets[s].asset_class == asset_class)


def tagged_weight(weights: Dict[str, float], assets: Dict[str, Asset],
                  tags: Sequence[str], reference: ReferenceData) -> float:
    return sum(
        w for s, w in weights.items()
        if any(t in reference.tags(assets[s]) for t in tags)
    )


def duration_exposure(weights: Dict[str, float], assets: Dict[str, Asset],
                      reference: ReferenceData) -> float:
    """Weighted duration-years of the fixed income sleeve"""
    return sum(
        w * reference.duration(assets[s]) for s, w in weights.items()
        if assets[s].asset_class == AssetClass.FIXED_INCOME
    )


def sensitivity_table(weights: Dict[str, float],
                      assets: Dict[str, Asset],
                      base: RiskSummary,
                      reference: ReferenceData = DEFAULT_REFERENCE) -> List[Sensitivity]:
    """Closed-form response of the baseline to a fixed battery of shocks"""
    bond_weight = class_weight(weights, assets, AssetClass.FIXED_INCOME)
    duration = duration_exposure(weights, assets, reference)
    intl_weight = tagged_weight(weights, assets, ("INTERNATIONAL", "EM"), reference)
    energy_weight = tagged_weight(weights, assets, ("ENERGY",), reference)
    equity_like = 1.0 - bond_weight - class_weight(weights, assets, AssetClass.CASH)

    def rates(change: float, label: str, description: str) -> Sensitivity:
        return Sensitivity(
            shock=label,
            description=description,
            expected_return=base.expected_return - duration * change,
            expected_vol=base.expected_vol + bond_weight * abs(change) * 0.5,
            max_drawdown=base.max_drawdown + bond_weight * abs(change) * 0.3,
        )

    usd_change = -0.05
    oil_change = 0.10
    vol_mult = 1.5

    return [
        rates(0.01, "Rates +100bps", "Interest rates increase by 1%"),
        rates(-0.01, "Rates -100bps", "Interest rates decrease by 1%"),
        Sensitivity(
            shock="USD -5%",
            description="US Dollar weakens by 5%",
            expected_return=base.expected_return + intl_weight * usd_change,
            expected_vol=base.expected_vol + intl_weight * 0.02,
            max_drawdown=base.max_drawdown + intl_weight * 0.03,
        ),
        Sensitivity(
            shock="Oil +10%",
            description="Oil prices increase by 10%",
            expected_return=base.expected_return + energy_weight * oil_change,
            expected_vol=base.expected_vol,
            max_drawdown=base.max_drawdown,
        ),
        Sensitivity(
            shock="Equity Vol +50%",
            description="Equity volatility increases by 50%",
            expected_return=base.expected_return,
            expected_vol=base.expected_vol + equity_like * base.expected_vol * (vol_mult - 1),
            max_drawdown=base.max_drawdown + equity_like * base.max_drawdown * (vol_mult - 1) * 0.5,
        ),
    ]


# ---------------------------------------------------------------------------
# Rationale
# ---------------------------------------------------------------------------

def factor_shift(weights: Dict[str, float], assets: Dict[str, Asset],
                 reference: ReferenceData = DEFAULT_REFERENCE) -> FactorShift:
    return FactorShift(
        equity_beta=round(class_weight(weights, assets, AssetClass.EQUITY) - EQUITY_BENCHMARK, 2),
        duration=round(duration_exposure(weights, assets, reference) - DURATION_BENCHMARK, 1),
        commodity_beta=round(class_weight(weights, assets, AssetClass.COMMODITIES) - COMMODITY_BENCHMARK, 2),
        cash_weight=class_weight(weights, assets, AssetClass.CASH),
    )


def top_scenarios(simulation: Optional[SimulationResult]) -> List[str]:
    """Worst simulated outcomes, the ones that shaped the allocation most"""
    if simulation is None:
        return []
    worst = sorted(simulation.scenario_results, key=lambda r: r.total_return)[:MAX_TOP_SCENARIOS]
    return [
        f"{r.scenario_name}: total return {r.total_return:+.1%}, max drawdown {r.max_drawdown:.1%}"
        for r in worst
    ]


def explanation(scenarios: Sequence[str], shift: FactorShift, trades: Sequence[Trade]) -> str:
    parts = [f"Portfolio optimization was driven by {len(scenarios)} key scenarios."]
    if shift.equity_beta > 0.1:
        parts.append(f"Increased equity exposure by {shift.equity_beta:.0%} to capture growth opportunities.")
    elif shift.equity_beta < -0.1:
        parts.append(f"Reduced equity exposure by {abs(shift.equity_beta):.0%} for defensive positioning.")
    if shift.duration > 1:
        parts.append(f"Extended duration by {shift.duration} years to benefit from the rate environment.")
    if len(trades) > 5:
        parts.append(f"Significant rebalancing across {len(trades)} positions to improve risk-adjusted returns.")
    return " ".join(parts)


def key_insights(simulation: Optional[SimulationResult], trades: Sequence[Trade]) -> List[str]:
    insights = []
    if simulation is not None:
        summary = simulation.summary_metrics
        if summary.sharpe_ratio > 1.0:
            insights.append("Portfolio achieves attractive risk-adjusted returns with Sharpe ratio above 1.0")
        if summary.max_drawdown < 0.15:
            insights.append("Downside protection is strong with maximum drawdown under 15%")
        if summary.pass_rate > 0.8:
            insights.append(f"High scenario pass rate of {summary.pass_rate:.0%} indicates robust performance")

    total_turnover = sum(abs(t.difference) for t in trades)
    if total_turnover < 0.25:
        insights.append("Low turnover implementation minimizes transaction costs")

    if not insights:
        insights = list(DEFAULT_INSIGHTS)
    return insights[:MAX_INSIGHTS]


def generate_advice(request: AdviceRequest,
                    reference: Optional[ReferenceData] = None) -> Advice:
    reference = reference or DEFAULT_REFERENCE
    notional = request.notional or get_settings().trade_notional
    weights = request.allocation_weights
    assets = _asset_map(list(dict.fromkeys([*weights, *request.current_holdings])),
                        request.assets, reference)

    trades = generate_trades(weights, request.current_holdings, request.cost_model,
                             assets, reference, notional)
    summary = risk_summary(request.scenario_results, request.constraints)
    if summary.synthetic:
        logger.warning("No simulation supplied; risk summary uses default assumptions")

    scenarios = top_scenarios(request.scenario_results)
    shift = factor_shift(weights, assets, reference)
    narrative = explanation(scenarios, shift, trades)
    if request.diagnostics is not None:
        narrative += (
            f" Ex-ante Sharpe {request.diagnostics.sharpe_ratio:.2f} with largest position"
            f" {request.diagnostics.max_weight:.0%}."
        )

    logger.info("Generated advice with %d trades", len(trades))
    return Advice(
        target_weights=weights,
        trades=trades,
        risk_summary=summary,
        sensitivities=sensitivity_table(weights, assets, summary, reference),
        rationale=Rationale(
            top_scenarios=scenarios,
            factor_shift=shift,
            explanation=narrative,
            key_insights=key_insights(request.scenario_results, trades),
        ),
        generated_at=datetime.now(timezone.utc),
        pass_rate=summary.pass_rate,
        expected_return=summary.expected_return,
        expected_vol=summary.expected_vol,
    )
