"""
Static asset descriptors and amount formatting.

Amounts travel through the system as integers in the asset's base unit
(satoshi, wei, micro-USDC). Display precision is 8 places for BTC, 6 for
ETH and 2 for the stablecoin.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Dict, List, Optional, Union


@dataclass(frozen=True)
class Asset:
    id: str
    display_name: str
    symbol: str
    decimals: int
    color_hint: str
    icon: str = ""
    token: str = ""  # synthetic token minted for this asset

    @property
    def display_decimals(self) -> int:
        if self.decimals == 8:
            return 8
        if self.decimals == 18:
            return 6
        return 2


BTC = Asset("BTC", "Bitcoin", "BTC", 8, "#F7931A", icon="₿", token="ckBTC")
ETH = Asset("ETH", "Ethereum", "ETH", 18, "#627EEA", icon="Ξ", token="ckETH")
USDC_ETH = Asset("USDC-ETH", "USDC (Ethereum)", "USDC", 6, "#2775CA", icon="$", token="ckUSDC")

AVAILABLE_ASSETS: List[Asset] = [BTC, ETH, USDC_ETH]
_BY_ID: Dict[str, Asset] = {a.id: a for a in AVAILABLE_ASSETS}


def get_asset(asset_id: str) -> Optional[Asset]:
    return _BY_ID.get(asset_id)


def to_display_units(amount: Union[int, float, str], asset: Asset) -> Decimal:
    """Base units -> whole units, truncated to the asset's display precision."""
    value = Decimal(str(amount)) / (Decimal(10) ** asset.decimals)
    return value.quantize(Decimal(10) ** -asset.display_decimals, rounding=ROUND_DOWN)


def format_amount(amount: Union[int, float, str, None], asset_id: str, with_symbol: bool = True) -> str:
    """
    Format a base-unit amount for display.

    >>> format_amount(100000000, "BTC")
    '1.00000000 BTC'
    """
    if amount is None:
        amount = 0
    asset = get_asset(asset_id)
    if asset is None:
        return str(amount)
    text = f"{to_display_units(amount, asset):.{asset.display_decimals}f}"
    return f"{text} {asset.symbol}" if with_symbol else text
