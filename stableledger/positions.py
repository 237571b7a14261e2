"""
positions.py - Per-actor collateral and debt balances

The PositionLedger is the engine's book of record: how much of each asset
every actor has deposited and how much debt every actor has minted. A
position exists implicitly; an actor with no entries holds zero of
everything.

Decrements never clamp. Taking more than a balance holds raises, leaving
the balance untouched.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Mapping, Tuple

from .core import CollateralMap, InsufficientCollateral, InsufficientDebt


@dataclass(frozen=True, slots=True)
class PositionSnapshot:
    """Immutable copy of a PositionLedger's balances, for restore()."""
    collateral: Tuple[Tuple[str, Tuple[Tuple[str, int], ...]], ...]
    minted_debt: Tuple[Tuple[str, int], ...]


class PositionLedger:
    """Mutable collateral and debt balances, keyed by actor."""

    def __init__(self):
        self._collateral: Dict[str, Dict[str, int]] = {}
        self._minted_debt: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def collateral_of(self, actor: str, asset: str) -> int:
        return self._collateral.get(actor, {}).get(asset, 0)

    def collateral_map(self, actor: str) -> CollateralMap:
        return dict(self._collateral.get(actor, {}))

    def minted_debt_of(self, actor: str) -> int:
        return self._minted_debt.get(actor, 0)

    def actors(self) -> Tuple[str, ...]:
        """Every actor that has ever held collateral or debt, sorted."""
        return tuple(sorted(set(self._collateral) | set(self._minted_debt)))

    def total_collateral(self, asset: str) -> int:
        return sum(balances.get(asset, 0) for balances in self._collateral.values())

    def total_minted_debt(self) -> int:
        return sum(self._minted_debt.values())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_collateral(self, actor: str, asset: str, amount: int) -> int:
        if amount < 0:
            raise ValueError(f"amount must be non-negative, got {amount}")
        balances = self._collateral.setdefault(actor, {})
        balances[asset] = balances.get(asset, 0) + amount
        return balances[asset]

    def remove_collateral(self, actor: str, asset: str, amount: int) -> int:
        """
        Raises:
            InsufficientCollateral: if amount exceeds the deposited balance
        """
        if amount < 0:
            raise ValueError(f"amount must be non-negative, got {amount}")
        current = self.collateral_of(actor, asset)
        if amount > current:
            raise InsufficientCollateral(
                f"{actor} has {current} {asset} deposited, cannot remove {amount}"
            )
        self._collateral.setdefault(actor, {})[asset] = current - amount
        return current - amount

    def add_debt(self, actor: str, amount: int) -> int:
        if amount < 0:
            raise ValueError(f"amount must be non-negative, got {amount}")
        self._minted_debt[actor] = self.minted_debt_of(actor) + amount
        return self._minted_debt[actor]

    def remove_debt(self, actor: str, amount: int) -> int:
        """
        Raises:
            InsufficientDebt: if amount exceeds the minted debt
        """
        if amount < 0:
            raise ValueError(f"amount must be non-negative, got {amount}")
        current = self.minted_debt_of(actor)
        if amount > current:
            raise InsufficientDebt(f"{actor} has minted {current}, cannot burn {amount}")
        self._minted_debt[actor] = current - amount
        return current - amount

    # ------------------------------------------------------------------
    # Snapshot / restore
    # ------------------------------------------------------------------

    def snapshot(self) -> PositionSnapshot:
        return PositionSnapshot(
            collateral=tuple(
                (actor, tuple(balances.items())) for actor, balances in self._collateral.items()
            ),
            minted_debt=tuple(self._minted_debt.items()),
        )

    def restore(self, snapshot: PositionSnapshot) -> None:
        self._collateral = {actor: dict(balances) for actor, balances in snapshot.collateral}
        self._minted_debt = dict(snapshot.minted_debt)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PositionLedger):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    def as_dict(self) -> Dict[str, Mapping]:
        return {
            'collateral': {a: dict(b) for a, b in self._collateral.items()},
            'minted_debt': dict(self._minted_debt),
        }
