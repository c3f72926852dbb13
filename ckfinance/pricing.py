"""
USD valuation of deposited assets.

Prices come from an injected PriceOracle. StaticPriceOracle carries fixed
reference prices and is the default until a live feed is wired in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from ckfinance.assets import get_asset, to_display_units
from ckfinance.rpc.models import UserContribution


class PriceOracle(Protocol):
    def usd_price(self, asset_id: str) -> Optional[float]:
        """USD price of one whole unit, or None when unknown."""
        ...


class StaticPriceOracle:
    def __init__(self, prices: Optional[Dict[str, float]] = None) -> None:
        self._prices = {"BTC": 68500.0, "ETH": 3200.0, "USDC-ETH": 1.0}
        if prices:
            self._prices.update(prices)

    def usd_price(self, asset_id: str) -> Optional[float]:
        return self._prices.get(asset_id)


@dataclass
class Holding:
    asset_id: str
    amount: int  # base units
    usd_value: float
    share_pct: float = 0.0


@dataclass
class Portfolio:
    holdings: List[Holding]
    total_usd: float


def usd_value(amount: int, asset_id: str, oracle: PriceOracle) -> float:
    asset = get_asset(asset_id)
    price = oracle.usd_price(asset_id)
    if asset is None or price is None or not amount:
        return 0.0
    return float(to_display_units(amount, asset)) * price


def value_contribution(contribution: Optional[UserContribution], oracle: PriceOracle) -> Portfolio:
    if contribution is None or not contribution.deposits:
        return Portfolio(holdings=[], total_usd=0.0)

    holdings = [
        Holding(asset_id=asset_id, amount=amount, usd_value=usd_value(amount, asset_id, oracle))
        for asset_id, amount in contribution.deposits
    ]
    total = sum(h.usd_value for h in holdings)
    if total > 0:
        for h in holdings:
            h.share_pct = h.usd_value / total * 100.0
    return Portfolio(holdings=holdings, total_usd=total)
