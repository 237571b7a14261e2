"""
tokens.py - Fungible token adapters over the token Ledger

The engine talks to tokens only through the FungibleToken and DebtToken
protocols. LedgerToken and LedgerDebtToken implement them on top of a shared
Ledger, so collateral and debt balances live in one double-entry book and a
failed engine operation can roll all of them back together.

Every transfer is a single-move transaction. A transfer "reports failure"
(returns False) when the ledger rejects it, e.g. for insufficient balance or
an unregistered wallet.
"""

from __future__ import annotations
from typing import Optional, Protocol, runtime_checkable

from .core import (
    Move, Unit, ExecuteResult, TransferRule,
    SYSTEM_WALLET, UNIT_TYPE_COLLATERAL, UNIT_TYPE_DEBT,
    build_transaction,
)
from .ledger import Ledger


@runtime_checkable
class FungibleToken(Protocol):
    """
    Interface of a collateral token as seen by the engine.

    `transfer` takes the sender explicitly; `transfer_from` moves tokens
    between two arbitrary accounts on the engine's behalf.
    """
    symbol: str
    decimals: int

    def balance_of(self, account: str) -> int:
        ...

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        ...

    def transfer_from(self, source: str, to: str, amount: int) -> bool:
        ...


@runtime_checkable
class DebtToken(FungibleToken, Protocol):
    """The synthetic debt token. Only its minter may mint and burn."""
    minter: str

    def mint(self, to: str, amount: int) -> bool:
        ...

    def burn(self, amount: int) -> bool:
        ...

    def total_supply(self) -> int:
        ...


def token_unit(
    symbol: str,
    name: str,
    decimals: int = 18,
    unit_type: str = UNIT_TYPE_COLLATERAL,
    transfer_rule: Optional[TransferRule] = None,
) -> Unit:
    """
    Create a token unit with a zero minimum balance.

    Args:
        symbol: Token symbol (e.g., "WETH").
        name: Human-readable name.
        decimals: Native precision (default 18).
        unit_type: UNIT_TYPE_COLLATERAL or UNIT_TYPE_DEBT.
        transfer_rule: Optional hook run for every move of this token.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=unit_type,
        decimals=decimals,
        min_balance=0,
        transfer_rule=transfer_rule,
    )


class LedgerToken:
    """A FungibleToken backed by a unit registered on a Ledger."""

    def __init__(self, ledger: Ledger, symbol: str):
        unit = ledger.get_unit(symbol)
        self.ledger = ledger
        self.symbol = symbol
        self.name = unit.name
        self.decimals = unit.decimals

    def balance_of(self, account: str) -> int:
        if not self.ledger.is_registered(account):
            return 0
        return self.ledger.get_balance(account, self.symbol)

    def total_supply(self) -> int:
        return self.ledger.total_supply(self.symbol)

    def _move(self, source: str, dest: str, amount: int, kind: str) -> bool:
        if amount < 0:
            return False
        if amount == 0:
            return True
        if source == dest:
            return self.balance_of(source) >= amount
        contract_id = f"{self.symbol}.{kind}#{self.ledger.next_sequence}"
        pending = build_transaction(
            self.ledger,
            [Move(amount, self.symbol, source, dest, contract_id)],
            origin=f"token:{self.symbol}",
        )
        return self.ledger.execute(pending) == ExecuteResult.APPLIED

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        return self._move(sender, to, amount, "transfer")

    def transfer_from(self, source: str, to: str, amount: int) -> bool:
        return self._move(source, to, amount, "transfer_from")

    def mint(self, to: str, amount: int) -> bool:
        """Issue new tokens from the system wallet (test faucet for collateral)."""
        return self._move(SYSTEM_WALLET, to, amount, "mint")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.symbol}, decimals={self.decimals})"


class LedgerDebtToken(LedgerToken):
    """
    The debt token. Minting issues from the system wallet; burning returns
    tokens held by the minter (the engine) to the system wallet.
    """

    def __init__(self, ledger: Ledger, symbol: str, minter: str):
        super().__init__(ledger, symbol)
        if ledger.get_unit(symbol).unit_type != UNIT_TYPE_DEBT:
            raise ValueError(f"Unit {symbol} is not a debt unit")
        self.minter = minter

    def burn(self, amount: int) -> bool:
        if amount <= 0:
            return False
        return self._move(self.minter, SYSTEM_WALLET, amount, "burn")
