"""
liquidation.py - Liquidation arithmetic

Pure calculations behind CollateralEngine.liquidate():

1. calculate_bonus / LiquidationQuote - how much collateral a liquidator
   receives for repaying `debt_to_cover`:
       token_amount  = token_amount_from_usd(asset, debt_to_cover)
       bonus         = token_amount * LIQUIDATION_BONUS // LIQUIDATION_PRECISION
       total_seized  = token_amount + bonus

2. max_debt_to_cover - a repayment size the target's deposit of one asset
   can always back, bonus included.

The debt token is pegged 1:1 to USD, so debt_to_cover is used directly as
a PRECISION-scaled USD amount.
"""

from __future__ import annotations
from dataclasses import dataclass

from .core import LIQUIDATION_BONUS, LIQUIDATION_PRECISION
from .valuation import ValuationEngine


@dataclass(frozen=True, slots=True)
class LiquidationQuote:
    """Collateral paid out for repaying `debt_to_cover` of a target's debt."""
    asset: str
    debt_to_cover: int
    token_amount: int
    bonus_collateral: int

    @property
    def total_seized(self) -> int:
        return self.token_amount + self.bonus_collateral


def calculate_bonus(token_amount: int) -> int:
    return token_amount * LIQUIDATION_BONUS // LIQUIDATION_PRECISION


def quote_liquidation(valuation: ValuationEngine, asset: str, debt_to_cover: int) -> LiquidationQuote:
    """
    Price a liquidation at current feed prices.

    Raises:
        AssetNotApproved, StalePrice, InvalidPrice
    """
    token_amount = valuation.token_amount_from_usd(asset, debt_to_cover)
    return LiquidationQuote(
        asset=asset,
        debt_to_cover=debt_to_cover,
        token_amount=token_amount,
        bonus_collateral=calculate_bonus(token_amount),
    )


def max_debt_to_cover(valuation: ValuationEngine, asset: str, deposited: int) -> int:
    """
    Largest repayment (up to rounding) whose quote fits in `deposited`.

    The seizable base is deposited * P / (P + BONUS); its USD value is a
    debt_to_cover for which quote_liquidation(...).total_seized <= deposited.
    """
    base = deposited * LIQUIDATION_PRECISION // (LIQUIDATION_PRECISION + LIQUIDATION_BONUS)
    return valuation.usd_value(asset, base)
