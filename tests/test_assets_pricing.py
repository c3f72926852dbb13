"""
Tests for asset descriptors, amount formatting and portfolio valuation.
"""
from decimal import Decimal

import pytest

from ckfinance.assets import AVAILABLE_ASSETS, BTC, ETH, USDC_ETH, format_amount, get_asset, to_display_units
from ckfinance.pricing import StaticPriceOracle, usd_value, value_contribution
from ckfinance.rpc.models import UserContribution


class TestAssets:

    def test_catalogue(self):
        assert [a.id for a in AVAILABLE_ASSETS] == ["BTC", "ETH", "USDC-ETH"]
        assert (BTC.decimals, ETH.decimals, USDC_ETH.decimals) == (8, 18, 6)
        assert get_asset("DOGE") is None

    @pytest.mark.parametrize("amount,asset_id,expected", [
        (100000000, "BTC", "1.00000000 BTC"),
        (123456789, "BTC", "1.23456789 BTC"),
        (1500000000000000000, "ETH", "1.500000 ETH"),
        (1234567, "USDC-ETH", "1.23 USDC"),
        (None, "BTC", "0.00000000 BTC"),
    ])
    def test_format_amount(self, amount, asset_id, expected):
        assert format_amount(amount, asset_id) == expected

    def test_format_without_symbol(self):
        assert format_amount(50000000, "BTC", with_symbol=False) == "0.50000000"

    def test_display_units_truncate(self):
        assert to_display_units(1999999, USDC_ETH) == Decimal("1.99")


class TestPricing:

    def test_static_oracle_defaults_and_overrides(self):
        oracle = StaticPriceOracle({"BTC": 70000.0})
        assert oracle.usd_price("BTC") == 70000.0
        assert oracle.usd_price("ETH") == 3200.0
        assert oracle.usd_price("DOGE") is None

    def test_usd_value(self):
        assert usd_value(50000000, "BTC", StaticPriceOracle()) == pytest.approx(34250.0)
        assert usd_value(10, "DOGE", StaticPriceOracle()) == 0.0

    def test_value_contribution_shares(self):
        contribution = UserContribution(deposits=[("BTC", 100000000), ("ETH", 10**18)])

        portfolio = value_contribution(contribution, StaticPriceOracle({"BTC": 3000.0, "ETH": 1000.0}))

        assert portfolio.total_usd == pytest.approx(4000.0)
        assert [h.share_pct for h in portfolio.holdings] == pytest.approx([75.0, 25.0])

    def test_empty_contribution(self):
        assert value_contribution(None, StaticPriceOracle()).holdings == []
