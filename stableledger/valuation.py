"""
valuation.py - USD valuation of collateral amounts

Converts between native asset amounts and PRECISION-scaled USD using live,
freshness-checked feed prices.

Key Formulas (p = feed price, f = feed decimals, d = asset decimals):
    usd_value(amount)     = p * amount * PRECISION // (10**f * 10**d)
    token_amount(usd)     = usd * 10**d * 10**f // (p * PRECISION)

With the usual f = 8 and d = 18 these reduce to
    p * ADDITIONAL_FEED_PRECISION * amount // PRECISION
    usd * PRECISION // (p * ADDITIONAL_FEED_PRECISION)

Both multiply fully before the single division, and both round down.
Rounding token_amount down means a USD-denominated claim never buys more
collateral than it is worth.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Callable
import logging

from .core import PRECISION, ORACLE_TIMEOUT
from .pricing_source import checked_latest_price
from .registry import CollateralRegistry

logger = logging.getLogger(__name__)


class ValuationEngine:
    """
    Prices collateral through the registry's feeds.

    Args:
        registry: Approved assets and their feeds
        clock: Returns "now" for staleness checks (usually the ledger's time)
        oracle_timeout: Maximum quote age
    """

    def __init__(
        self,
        registry: CollateralRegistry,
        clock: Callable[[], datetime],
        oracle_timeout: timedelta = ORACLE_TIMEOUT,
    ):
        self.registry = registry
        self.clock = clock
        self.oracle_timeout = oracle_timeout

    def price_of(self, asset: str) -> int:
        """
        Fresh feed price of `asset`, in the feed's native precision.

        Raises:
            AssetNotApproved, StalePrice, InvalidPrice
        """
        feed = self.registry.price_feed_of(asset)
        return checked_latest_price(feed, self.clock(), self.oracle_timeout)

    def usd_value(self, asset: str, amount: int) -> int:
        """
        PRECISION-scaled USD value of `amount` native units of `asset`.

        The price is fetched (and checked) even when amount is zero.
        """
        collateral = self.registry.get(asset)
        price = self.price_of(asset)
        scale = 10 ** collateral.price_feed.decimals * 10 ** collateral.decimals
        value = price * amount * PRECISION // scale
        logger.debug("usd_value(%s, %d) = %d at price %d", asset, amount, value, price)
        return value

    def token_amount_from_usd(self, asset: str, usd_amount: int) -> int:
        """Native units of `asset` worth `usd_amount` (PRECISION-scaled), rounded down."""
        collateral = self.registry.get(asset)
        price = self.price_of(asset)
        scale = 10 ** collateral.price_feed.decimals * 10 ** collateral.decimals
        amount = usd_amount * scale // (price * PRECISION)
        logger.debug("token_amount_from_usd(%s, %d) = %d at price %d", asset, usd_amount, amount, price)
        return amount
