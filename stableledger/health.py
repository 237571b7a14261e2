"""
health.py - Health factor of a position

    health_factor = (collateral_usd * LIQUIDATION_THRESHOLD / LIQUIDATION_PRECISION)
                    * PRECISION / minted_debt

A health factor of PRECISION (1.0) means risk-adjusted collateral exactly
covers the debt. With LIQUIDATION_THRESHOLD = 50 an actor must hold twice
their debt in collateral to stay at or above MIN_HEALTH_FACTOR.

A position without debt cannot be unhealthy; its health factor is
MAX_HEALTH_FACTOR rather than a division by zero.
"""

from __future__ import annotations
import logging

from .core import (
    AccountInfo, PRECISION, LIQUIDATION_THRESHOLD, LIQUIDATION_PRECISION,
    MAX_HEALTH_FACTOR,
)
from .positions import PositionLedger
from .registry import CollateralRegistry
from .valuation import ValuationEngine

logger = logging.getLogger(__name__)


def calculate_health_factor(minted_debt: int, collateral_value_usd: int) -> int:
    """
    Health factor for explicit inputs.

    Pure function: usable for what-if analysis ("what if I minted X more?").

    Returns:
        PRECISION-scaled ratio, or MAX_HEALTH_FACTOR when minted_debt is zero
    """
    if minted_debt == 0:
        return MAX_HEALTH_FACTOR
    adjusted = collateral_value_usd * LIQUIDATION_THRESHOLD // LIQUIDATION_PRECISION
    return adjusted * PRECISION // minted_debt


class HealthFactorCalculator:
    """Reads positions and live prices to value accounts."""

    def __init__(self, registry: CollateralRegistry, positions: PositionLedger, valuation: ValuationEngine):
        self.registry = registry
        self.positions = positions
        self.valuation = valuation

    def total_collateral_value(self, actor: str) -> int:
        """Sum of usd_value over every approved asset, in registry order."""
        total = 0
        for asset in self.registry.assets():
            total += self.valuation.usd_value(asset, self.positions.collateral_of(actor, asset))
        return total

    def account_info(self, actor: str) -> AccountInfo:
        return AccountInfo(
            minted_debt=self.positions.minted_debt_of(actor),
            collateral_value_usd=self.total_collateral_value(actor),
        )

    def health_factor(self, actor: str) -> int:
        info = self.account_info(actor)
        hf = calculate_health_factor(info.minted_debt, info.collateral_value_usd)
        logger.debug("health_factor(%s) = %d (debt=%d, collateral_usd=%d)",
                     actor, hf, info.minted_debt, info.collateral_value_usd)
        return hf
