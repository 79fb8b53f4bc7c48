"""
Static lookup tables used when a request does not carry its own data.

Every table is a field of ``ReferenceData`` so tests and callers can
substitute fixtures; ``DEFAULT_REFERENCE`` holds the shipped values.
"""
from typing import Dict, List, Optional, Sequence, Set
from pydantic import BaseModel

from portfolio_engine.models import Asset, AssetClass


class HistoricalEpisode(BaseModel):
    """Aggregate shock parameters of a replayed market episode"""
    name: str
    start_date: str
    end_date: str
    equity: float  # total equity return over the episode
    bonds: float   # total bond return over the episode
    vol: float     # volatility multiplier


class ReferenceData(BaseModel):
    episodes: Dict[str, HistoricalEpisode] = {
        "GFC2008": HistoricalEpisode(
            name="2008-2009 GFC", start_date="2008-09-01", end_date="2009-03-31",
            equity=-0.45, bonds=0.12, vol=2.5,
        ),
        "COVID2020": HistoricalEpisode(
            name="2020 Q1 COVID", start_date="2020-02-20", end_date="2020-04-30",
            equity=-0.35, bonds=0.08, vol=3.0,
        ),
        "Rates2022": HistoricalEpisode(
            name="2022 Rate Shock", start_date="2022-01-01", end_date="2022-12-31",
            equity=-0.20, bonds=-0.15, vol=1.8,
        ),
    }
    default_episode: str = "GFC2008"

    # Annualized volatilities and expected returns
    volatilities: Dict[str, float] = {
        "AAPL": 0.25, "MSFT": 0.22, "GOOGL": 0.24, "AMZN": 0.28, "TSLA": 0.45,
        "IEF": 0.05, "GLD": 0.18, "SPY": 0.16, "CASH": 0.001,
    }
    default_volatility: float = 0.15
    expected_returns: Dict[str, float] = {
        "AAPL": 0.12, "MSFT": 0.11, "GOOGL": 0.10, "AMZN": 0.13,
        "IEF": 0.03, "GLD": 0.05, "SPY": 0.09, "CASH": 0.02,
    }
    default_expected_return: float = 0.08

    # Average daily volume in USD
    adv: Dict[str, float] = {
        "AAPL": 50_000_000, "MSFT": 30_000_000, "GOOGL": 25_000_000,
        "AMZN": 35_000_000, "TSLA": 40_000_000, "SPY": 100_000_000,
        "IEF": 5_000_000, "TLT": 8_000_000, "GLD": 15_000_000,
        "CASH": 1_000_000_000,
    }
    default_adv: float = 10_000_000

    asset_classes: Dict[str, AssetClass] = {
        "IEF": AssetClass.FIXED_INCOME, "TLT": AssetClass.FIXED_INCOME,
        "BOND": AssetClass.FIXED_INCOME, "GLD": AssetClass.COMMODITIES,
        "GOLD": AssetClass.COMMODITIES, "OIL": AssetClass.COMMODITIES,
        "CASH": AssetClass.CASH, "USD": AssetClass.CASH,
    }
    symbol_tags: Dict[str, List[str]] = {
        "EFA": ["INTERNATIONAL"], "VEA": ["INTERNATIONAL"],
        "EEM": ["EM", "INTERNATIONAL"], "VWO": ["EM", "INTERNATIONAL"],
        "XLE": ["ENERGY"], "OIL": ["ENERGY"],
        "LQD": ["CREDIT"], "HYG": ["CREDIT"],
    }
    durations: Dict[str, float] = {}
    default_duration: float = 7.0

    def classify(self, symbol: str) -> AssetClass:
        if symbol in self.asset_classes:
            return self.asset_classes[symbol]
        if "BOND" in symbol.upper():
            return AssetClass.FIXED_INCOME
        return AssetClass.EQUITY

    def volatility(self, symbol: str) -> float:
        return self.volatilities.get(symbol, self.default_volatility)

    def expected_return(self, symbol: str) -> float:
        return self.expected_returns.get(symbol, self.default_expected_return)

    def average_daily_volume(self, symbol: str) -> float:
        return self.adv.get(symbol, self.default_adv)

    def duration(self, asset: Asset) -> float:
        if asset.duration is not None:
            return asset.duration
        return self.durations.get(asset.symbol, self.default_duration)

    def tags(self, asset: Asset) -> Set[str]:
        """Explicit tags, table tags and the symbol itself, upper-cased."""
        tags = {t.upper() for t in asset.tags}
        tags.update(t.upper() for t in self.symbol_tags.get(asset.symbol, []))
        tags.add(asset.symbol.upper())
        return tags

    def resolve(self, symbol: str, assets: Optional[Dict[str, Asset]] = None) -> Asset:
        """Caller-supplied asset if present, otherwise one built from the tables."""
        if assets and symbol in assets:
            asset = assets[symbol]
            if asset.asset_class is None:
                return asset.model_copy(update={"asset_class": self.classify(symbol)})
            return asset
        return Asset(
            symbol=symbol,
            asset_class=self.classify(symbol),
            tags=list(self.symbol_tags.get(symbol, [])),
        )

    def resolve_all(self, symbols: Sequence[str],
                    assets: Optional[Sequence[Asset]] = None) -> List[Asset]:
        by_symbol = {a.symbol: a for a in assets or []}
        return [self.resolve(s, by_symbol) for s in symbols]


DEFAULT_REFERENCE = ReferenceData()
