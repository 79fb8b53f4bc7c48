from typing import Sequence, Tuple

import numpy as np

from portfolio_engine.models import AssetClass, CostModel

BPS = 10_000.0
DEFAULT_BID_ASK_BPS = 5.0


def bid_ask_bps(cost_model: CostModel, asset_class: AssetClass) -> float:
    return cost_model.bid_ask_bps.get(asset_class.value, DEFAULT_BID_ASK_BPS)


def trading_cost(trade_value: float,
                 trade_fraction: float,
                 asset_class: AssetClass,
                 cost_model: CostModel) -> float:
    """
    Cost of one trade: commission and bid/ask on the traded value, plus
    slippage that grows with the traded fraction of the portfolio.

    Args:
        trade_value: absolute traded value
        trade_fraction: traded value as a fraction of portfolio value
        asset_class: class used for the bid/ask lookup
        cost_model: cost parameters in bps
    """
    rate_bps = (
        cost_model.commission_bps
        + bid_ask_bps(cost_model, asset_class)
        + cost_model.slippage_bps_per_turnover * trade_fraction
    )
    return trade_value * rate_bps / BPS


def cost_rates(asset_classes: Sequence[AssetClass], cost_model: CostModel) -> Tuple[np.ndarray, float]:
    """Per-asset fixed bps (commission + bid/ask) and the slippage bps, for vectorized kernels"""
    fixed = np.array(
        [cost_model.commission_bps + bid_ask_bps(cost_model, c) for c in asset_classes],
        dtype=float,
    )
    return fixed, float(cost_model.slippage_bps_per_turnover)
