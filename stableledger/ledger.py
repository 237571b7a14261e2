"""
ledger.py - Double-Entry Token Ledger

The Ledger holds the balances of every token the engine interacts with: the
approved collateral tokens and the debt token. It stands in for the external
token contracts and is the only place token balances change.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by transfer rules
    - Executes transactions atomically (all moves succeed or all fail)
    - Maintains wallet balances and token (unit) definitions
    - Tracks logical time (used by the engine for oracle staleness checks)
    - Checkpoints and rolls back executed transactions, so an engine operation
      that fails after moving tokens leaves no trace
"""

from __future__ import annotations
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Set, Optional, Tuple, Any
import logging

from .core import (
    Move, Transaction, Unit, PendingTransaction,
    ExecuteResult, Positions,
    SYSTEM_WALLET,
    LedgerError, TransferRuleViolation, UnitNotRegistered, WalletNotRegistered,
)

logger = logging.getLogger(__name__)


class Ledger:
    """
    Double-entry token ledger with full validation and audit trail.

    Design Principles:
        - Always validates: every transaction is checked against registration,
          transfer rules, minimum balances and timestamps.
        - Always logs: every applied transaction is recorded, which is what
          makes rollback() possible.

    The system wallet is the issuer: minting moves tokens out of it and
    burning moves them back, so every unit sums to zero across all wallets.

    Thread Safety:
        Not thread-safe. The engine serializes all mutating calls.

    Example:
        ledger = Ledger("chain")
        ledger.register_unit(token_unit("WETH", "Wrapped Ether"))
        ledger.register_wallet("alice")
        ledger.execute(build_transaction(ledger, [
            Move(10 ** 18, "WETH", SYSTEM_WALLET, "alice", "faucet")
        ]))
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = False,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Log every applied/rejected transaction at INFO
        """
        self.name = name
        self.balances: Dict[str, Dict[str, int]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._next_sequence: int = 0
        # Inverted index unit -> {wallet -> quantity} for position lookups
        self._positions_by_unit: Dict[str, Dict[str, int]] = defaultdict(dict)

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    @property
    def next_sequence(self) -> int:
        """Sequence number the next applied transaction will receive."""
        return self._next_sequence

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        """
        Get the balance of a token in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, 0)

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    def total_supply(self, unit_symbol: str) -> int:
        """
        Circulating supply of a unit: the sum of all balances outside the
        system wallet.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            self.balances[w].get(unit_symbol, 0)
            for w in sorted(self.registered_wallets)
            if w != SYSTEM_WALLET
        )

    def verify_double_entry(self) -> Dict[str, Any]:
        """
        Verify that every unit sums to zero across all wallets, the system
        wallet included.

        Returns:
            Dict with keys:
            - 'valid': bool - True if conservation holds for every unit
            - 'supplies': Dict[str, int] - circulating supply per unit
            - 'discrepancies': List[Dict] - units whose total is not zero
        """
        supplies: Dict[str, int] = {}
        discrepancies = []
        for symbol in sorted(self.units):
            total = sum(self.balances[w].get(symbol, 0) for w in sorted(self.registered_wallets))
            supplies[symbol] = self.total_supply(symbol)
            if total != 0:
                discrepancies.append({'unit': symbol, 'total': total})
        return {'valid': not discrepancies, 'supplies': supplies, 'discrepancies': discrepancies}

    # ========================================================================
    # TIME
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical time.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If wallet is already registered
        """
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(int)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new token.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        logger.debug("Registered unit %s (%s) [%s, %d decimals]",
                     unit.symbol, unit.name, unit.unit_type, unit.decimals)

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}"""
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves succeed together or all fail together. A pending transaction
        with an intent_id that was already applied is not applied twice.

        Transfer rules run during validation. Any exception other than
        TransferRuleViolation raised by a rule propagates to the caller
        without anything having been applied.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if transaction was already executed
            ExecuteResult.REJECTED if validation failed
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                logger.info("ALREADY_APPLIED: intent_id=%s", pending.intent_id)
            return ExecuteResult.ALREADY_APPLIED

        valid, reason = self._validate_pending(pending)
        if not valid:
            if self.verbose:
                logger.info("REJECTED: %s", reason)
            else:
                logger.debug("REJECTED: %s", reason)
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
        )

        self._execute_moves(tx.moves)

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            logger.info("APPLIED %s: %s", tx.exec_id, ", ".join(repr(m) for m in tx.moves))
        return ExecuteResult.APPLIED

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate a pending transaction against all constraints.

        Checks performed:
        1. Timestamp validation (transaction must not be from the future)
        2. Unit and wallet registration
        3. Transfer rule enforcement
        4. Minimum balance validation on net per-wallet changes

        Returns:
            Tuple of (success, reason); reason is empty on success
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return False, f"unit not registered: {move.unit_symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"

            unit = self.units[move.unit_symbol]
            if unit.transfer_rule:
                try:
                    unit.transfer_rule(self, move)
                except TransferRuleViolation as e:
                    return False, str(e)

        net: Dict[Tuple[str, str], int] = defaultdict(int)
        for move in pending.moves:
            net[(move.source, move.unit_symbol)] -= move.quantity
            net[(move.dest, move.unit_symbol)] += move.quantity

        # SYSTEM_WALLET is the issuer and may go negative
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            proposed = self.balances[wallet][unit_sym] + delta
            unit = self.units[unit_sym]
            if proposed < unit.min_balance:
                return False, f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}"

        return True, ""

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: int) -> None:
        if quantity != 0:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _apply_move(self, move: Move, sign: int) -> None:
        new_src = self.balances[move.source][move.unit_symbol] - sign * move.quantity
        new_dst = self.balances[move.dest][move.unit_symbol] + sign * move.quantity
        self.balances[move.source][move.unit_symbol] = new_src
        self.balances[move.dest][move.unit_symbol] = new_dst
        self._update_position_index(move.source, move.unit_symbol, new_src)
        self._update_position_index(move.dest, move.unit_symbol, new_dst)

    def _execute_moves(self, moves) -> None:
        for move in moves:
            self._apply_move(move, 1)

    # ========================================================================
    # CHECKPOINT / ROLLBACK
    # ========================================================================

    def checkpoint(self) -> int:
        """
        Mark the current position in the transaction log.

        Returns:
            A token to pass to rollback()
        """
        return len(self.transaction_log)

    def rollback(self, checkpoint: int) -> int:
        """
        Undo every transaction applied after `checkpoint`.

        Walks the log backwards, reversing each transaction's moves, then
        truncates the log and forgets the undone intent_ids so the same
        intent can be submitted again.

        Returns:
            Number of transactions undone

        Raises:
            LedgerError: If the checkpoint is ahead of the log
        """
        if checkpoint > len(self.transaction_log):
            raise LedgerError(
                f"Checkpoint {checkpoint} is ahead of the log ({len(self.transaction_log)})"
            )
        undone = self.transaction_log[checkpoint:]
        for tx in reversed(undone):
            for move in reversed(tx.moves):
                self._apply_move(move, -1)
            self.seen_intent_ids.discard(tx.intent_id)

        del self.transaction_log[checkpoint:]
        self._next_sequence = checkpoint
        if undone:
            logger.debug("Rolled back %d transaction(s) to checkpoint %d", len(undone), checkpoint)
        return len(undone)
