"""
registry.py - Approved collateral assets

The registry is fixed at construction: an ordered list of collateral tokens
paired one-to-one with their price feeds. Nothing can be added or removed
afterwards; approving a new asset means building a new engine.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Sequence, Tuple

from .core import AssetNotApproved, LengthMismatch
from .pricing_source import PriceFeed
from .tokens import FungibleToken


@dataclass(frozen=True, slots=True)
class CollateralAsset:
    """An approved asset: its token and the feed that prices it."""
    symbol: str
    token: FungibleToken
    price_feed: PriceFeed

    @property
    def decimals(self) -> int:
        return self.token.decimals


class CollateralRegistry:
    """
    Closed mapping of asset symbol -> CollateralAsset.

    Iteration order is insertion order, which makes account valuation
    deterministic.
    """

    def __init__(self, tokens: Sequence[FungibleToken], price_feeds: Sequence[PriceFeed]):
        """
        Args:
            tokens: Collateral tokens, in registry order
            price_feeds: One feed per token, same order

        Raises:
            LengthMismatch: if the two sequences differ in length
            ValueError: if a token symbol appears twice
        """
        if len(tokens) != len(price_feeds):
            raise LengthMismatch(
                f"{len(tokens)} collateral tokens but {len(price_feeds)} price feeds"
            )
        assets: Dict[str, CollateralAsset] = {}
        for token, feed in zip(tokens, price_feeds):
            if token.symbol in assets:
                raise ValueError(f"Collateral {token.symbol} listed twice")
            assets[token.symbol] = CollateralAsset(token.symbol, token, feed)
        self._assets = assets

    def is_approved(self, asset: str) -> bool:
        return asset in self._assets

    def get(self, asset: str) -> CollateralAsset:
        """
        Raises:
            AssetNotApproved: if `asset` is not registered
        """
        try:
            return self._assets[asset]
        except KeyError:
            raise AssetNotApproved(f"{asset} is not an approved collateral asset") from None

    def price_feed_of(self, asset: str) -> PriceFeed:
        return self.get(asset).price_feed

    def token_of(self, asset: str) -> FungibleToken:
        return self.get(asset).token

    def assets(self) -> Tuple[str, ...]:
        """Approved asset symbols in registry order."""
        return tuple(self._assets)

    def __iter__(self):
        return iter(self._assets.values())

    def __len__(self) -> int:
        return len(self._assets)

    def __contains__(self, asset: str) -> bool:
        return asset in self._assets

    def __repr__(self):
        return f"CollateralRegistry({', '.join(self._assets)})"
