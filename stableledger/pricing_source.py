"""
pricing_source.py - Price feeds for collateral valuation

Provides the price-oracle side of the engine:

Classes:
- PriceFeed: Protocol every oracle adapter implements
- PriceQuote: A price with the time it was last updated
- StaticPriceFeed: A single settable price (mock aggregator)
- TimeSeriesPriceFeed: Historical prices, answering with the latest update
  at or before the ledger's logical time

Functions:
- checked_latest_price: Fetch a quote and reject it if stale or non-positive

Prices are integers in the feed's native precision (8 decimals by default),
denominated in USD.
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Protocol, Tuple, runtime_checkable
import logging

from .core import FEED_DECIMALS, ORACLE_TIMEOUT, InvalidPrice, StalePrice

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """A feed answer: `price` in 10**decimals USD, last updated at `updated_at`."""
    price: int
    updated_at: datetime


@runtime_checkable
class PriceFeed(Protocol):
    """
    Protocol for price feeds.

    One feed prices exactly one collateral asset in USD.
    """
    decimals: int

    def latest_price(self) -> PriceQuote:
        """Return the most recent answer and its update time."""
        ...


class StaticPriceFeed:
    """
    A feed holding one price until it is updated.

    Mirrors a mock aggregator: tests and scenarios move the price with
    update_price().
    """

    def __init__(self, price: int, updated_at: datetime, decimals: int = FEED_DECIMALS):
        self.decimals = decimals
        self._quote = PriceQuote(price=price, updated_at=updated_at)

    def latest_price(self) -> PriceQuote:
        return self._quote

    def update_price(self, price: int, updated_at: datetime) -> None:
        self._quote = PriceQuote(price=price, updated_at=updated_at)

    def __repr__(self):
        return f"StaticPriceFeed(price={self._quote.price}, decimals={self.decimals})"


class TimeSeriesPriceFeed:
    """
    Feed with time-varying prices.

    Answers with the latest observation at or before `clock()`; observations
    in the future of the clock are invisible. Usually the clock is the
    ledger's logical time: TimeSeriesPriceFeed(path, clock=lambda: ledger.current_time).
    """

    def __init__(
        self,
        clock: Callable[[], datetime],
        price_path: Optional[List[Tuple[datetime, int]]] = None,
        decimals: int = FEED_DECIMALS,
    ):
        self.decimals = decimals
        self._clock = clock
        self.price_history: List[Tuple[datetime, int]] = sorted(price_path or [], key=lambda x: x[0])

    def add_price(self, timestamp: datetime, price: int) -> None:
        """Add an observation, keeping history in chronological order."""
        self.price_history.append((timestamp, price))
        self.price_history.sort(key=lambda x: x[0])

    def latest_price(self) -> PriceQuote:
        """
        Raises:
            StalePrice: if there is no observation at or before the clock
        """
        now = self._clock()
        timestamps = [ts for ts, _ in self.price_history]
        idx = bisect_right(timestamps, now)
        if idx == 0:
            raise StalePrice(f"no price observed at or before {now}")
        updated_at, price = self.price_history[idx - 1]
        return PriceQuote(price=price, updated_at=updated_at)

    def __repr__(self):
        return f"TimeSeriesPriceFeed({len(self.price_history)} observations, decimals={self.decimals})"


def checked_latest_price(
    feed: PriceFeed,
    now: datetime,
    timeout: timedelta = ORACLE_TIMEOUT,
) -> int:
    """
    Fetch the feed's latest price and enforce freshness.

    A quote is stale when more than `timeout` has passed since it was updated,
    or when it claims to have been updated in the future.

    Raises:
        StalePrice: quote is stale
        InvalidPrice: price <= 0
    """
    quote = feed.latest_price()
    age = now - quote.updated_at
    if age > timeout or age < timedelta(0):
        logger.warning("Stale price from %r: updated_at=%s now=%s", feed, quote.updated_at, now)
        raise StalePrice(f"price updated at {quote.updated_at} is stale at {now} (timeout {timeout})")
    if quote.price <= 0:
        raise InvalidPrice(f"feed returned non-positive price {quote.price}")
    return quote.price
