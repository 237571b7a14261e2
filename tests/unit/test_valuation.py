"""
test_valuation.py - Unit tests for USD valuation

Tests:
- usd_value and token_amount_from_usd at the default 8/18 decimals
- Non-default token and feed decimals
- Freshness checks on every valuation
"""

import pytest
from datetime import datetime, timedelta

from stableledger import (
    CollateralRegistry, Ledger, LedgerToken, StaticPriceFeed, ValuationEngine,
    token_unit, AssetNotApproved, StalePrice, InvalidPrice, PRECISION,
)
from tests.engine_factory import ONE


class TestDefaultDecimals:

    def test_usd_value(self, engine):
        """15 WETH at $2000 is worth $30,000."""
        assert engine.get_usd_value("WETH", 15 * ONE) == 30_000 * ONE

    def test_token_amount_from_usd(self, engine):
        """$100 buys 0.05 WETH at $2000."""
        assert engine.get_token_amount_from_usd("WETH", 100 * ONE) == 5 * 10 ** 16

    def test_token_amount_rounds_down(self, engine):
        """$1 at $1000/BTC: 10**15 exactly; 1 wei of USD buys nothing."""
        assert engine.get_token_amount_from_usd("WBTC", ONE) == 10 ** 15
        assert engine.get_token_amount_from_usd("WBTC", 1) == 0

    def test_zero_amount(self, engine):
        assert engine.get_usd_value("WETH", 0) == 0

    def test_unapproved_asset(self, engine):
        with pytest.raises(AssetNotApproved):
            engine.get_usd_value("DOGE", ONE)


class TestOtherDecimals:

    @pytest.fixture
    def valuation(self):
        t = datetime(2025, 1, 1)
        ledger = Ledger("chain", t)
        ledger.register_unit(token_unit("USDC", "USD Coin", decimals=6))
        ledger.register_unit(token_unit("WBTC", "Wrapped Bitcoin", decimals=8))
        registry = CollateralRegistry(
            [LedgerToken(ledger, "USDC"), LedgerToken(ledger, "WBTC")],
            [StaticPriceFeed(10 ** 8, t), StaticPriceFeed(60_000 * 10 ** 18, t, decimals=18)],
        )
        return ValuationEngine(registry, clock=lambda: ledger.current_time)

    def test_six_decimal_token(self, valuation):
        assert valuation.usd_value("USDC", 10 ** 6) == PRECISION
        assert valuation.token_amount_from_usd("USDC", 250 * PRECISION) == 250 * 10 ** 6

    def test_eighteen_decimal_feed(self, valuation):
        """Half a BTC (8 decimals) priced by an 18-decimal feed."""
        assert valuation.usd_value("WBTC", 5 * 10 ** 7) == 30_000 * PRECISION
        assert valuation.token_amount_from_usd("WBTC", 30_000 * PRECISION) == 5 * 10 ** 7


class TestFreshness:

    def test_stale_feed_fails_valuation(self, env):
        env.ledger.advance_time(env.ledger.current_time + timedelta(hours=3, seconds=1))
        with pytest.raises(StalePrice):
            env.engine.get_usd_value("WETH", ONE)

    def test_zero_amount_still_checks_price(self, env):
        env.ledger.advance_time(env.ledger.current_time + timedelta(hours=4))
        with pytest.raises(StalePrice):
            env.engine.get_usd_value("WETH", 0)

    def test_refreshed_feed(self, env):
        env.ledger.advance_time(env.ledger.current_time + timedelta(hours=4))
        env.set_price("WETH", 2500)
        assert env.engine.get_usd_value("WETH", ONE) == 2500 * ONE

    def test_zero_price(self, env):
        env.set_price("WETH", 0)
        with pytest.raises(InvalidPrice):
            env.engine.get_token_amount_from_usd("WETH", ONE)
