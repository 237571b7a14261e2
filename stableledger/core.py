"""
Core types, constants and exceptions for the collateral engine.

This module provides the foundational pieces shared by every other module:
1. Fixed-point constants: PRECISION, feed scaling, liquidation parameters
2. Exceptions: EngineError and the taxonomy of rejection reasons (ErrorCode)
3. Token-ledger data structures: Move, PendingTransaction, Transaction, Unit
4. Engine records: CollateralDeposited, CollateralRedeemed, AccountInfo, OperationResult
5. Protocols: LedgerView for read-only access to token balances

All amounts are integers in the native precision of the asset they measure.
USD values and health factors are integers scaled by PRECISION (1e18).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN, localcontext
from enum import Enum
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Protocol, Union,
    Tuple, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point scale for USD values and health factors.
PRECISION = 10 ** 18

# Native precision of price feeds (8 decimals) and the factor that lifts a
# feed price to PRECISION.
FEED_DECIMALS = 8
FEED_PRECISION = 10 ** FEED_DECIMALS
ADDITIONAL_FEED_PRECISION = PRECISION // FEED_PRECISION

# Risk parameters. A threshold of 50/100 requires 200% overcollateralization.
LIQUIDATION_THRESHOLD = 50
LIQUIDATION_PRECISION = 100
LIQUIDATION_BONUS = 10

MIN_HEALTH_FACTOR = 1 * PRECISION

# Health factor reported for positions without debt.
MAX_HEALTH_FACTOR = 2 ** 256 - 1

# A price quote older than this is unusable.
ORACLE_TIMEOUT = timedelta(hours=3)

# Reserved wallet for token issuance and burning.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

UNIT_TYPE_COLLATERAL = "COLLATERAL"
UNIT_TYPE_DEBT = "DEBT"


# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, int]

# Mapping from asset symbol to deposited amount for a single actor.
CollateralMap = Dict[str, int]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class ErrorCode(Enum):
    """
    Stable reason codes for every rejected engine operation.

    Each EngineError subclass carries exactly one code, so callers can
    distinguish failures without matching on exception types or messages.
    """
    NEEDS_MORE_THAN_ZERO = "needs_more_than_zero"
    ASSET_NOT_APPROVED = "asset_not_approved"
    LENGTH_MISMATCH = "length_mismatch"
    INVALID_ACTOR = "invalid_actor"
    BREAKS_HEALTH_FACTOR = "breaks_health_factor"
    STALE_PRICE = "stale_price"
    INVALID_PRICE = "invalid_price"
    TRANSFER_FAILED = "transfer_failed"
    MINT_FAILED = "mint_failed"
    HEALTH_FACTOR_OK = "health_factor_ok"
    HEALTH_FACTOR_NOT_IMPROVED = "health_factor_not_improved"
    INSUFFICIENT_COLLATERAL = "insufficient_collateral"
    INSUFFICIENT_DEBT = "insufficient_debt"
    REENTRANT_CALL = "reentrant_call"


class EngineError(Exception):
    """Base exception for all engine rejections."""
    code: ErrorCode = None


# -- input validation --------------------------------------------------------

class NeedsMoreThanZero(EngineError):
    """Raised when an amount argument is zero or negative."""
    code = ErrorCode.NEEDS_MORE_THAN_ZERO


class AssetNotApproved(EngineError):
    """Raised when an asset is not in the collateral registry."""
    code = ErrorCode.ASSET_NOT_APPROVED


class LengthMismatch(EngineError):
    """Raised when asset and price feed lists differ in length."""
    code = ErrorCode.LENGTH_MISMATCH


class InvalidActor(EngineError):
    """Raised when the engine wallet or the system wallet is named as an actor."""
    code = ErrorCode.INVALID_ACTOR


# -- invariant ---------------------------------------------------------------

class HealthFactorBroken(EngineError):
    """Raised when an operation would leave an actor below MIN_HEALTH_FACTOR."""
    code = ErrorCode.BREAKS_HEALTH_FACTOR

    def __init__(self, actor: str, health_factor: int) -> None:
        self.actor = actor
        self.health_factor = health_factor
        super().__init__(f"health factor of {actor} would be {health_factor} < {MIN_HEALTH_FACTOR}")


# -- external dependencies ---------------------------------------------------

class StalePrice(EngineError):
    """Raised when a price feed has not been updated within the timeout."""
    code = ErrorCode.STALE_PRICE


class InvalidPrice(EngineError):
    """Raised when a price feed reports a non-positive price."""
    code = ErrorCode.INVALID_PRICE


class TransferFailed(EngineError):
    """Raised when a token transfer reports failure."""
    code = ErrorCode.TRANSFER_FAILED


class MintFailed(EngineError):
    """Raised when the debt token refuses to mint."""
    code = ErrorCode.MINT_FAILED


# -- liquidation -------------------------------------------------------------

class HealthFactorOk(EngineError):
    """Raised when liquidation targets a healthy position."""
    code = ErrorCode.HEALTH_FACTOR_OK


class HealthFactorNotImproved(EngineError):
    """Raised when a liquidation would not strictly improve the target."""
    code = ErrorCode.HEALTH_FACTOR_NOT_IMPROVED


# -- arithmetic --------------------------------------------------------------

class BalanceUnderflow(EngineError):
    """Raised when a decrement would take a ledger balance below zero."""


class InsufficientCollateral(BalanceUnderflow):
    code = ErrorCode.INSUFFICIENT_COLLATERAL


class InsufficientDebt(BalanceUnderflow):
    code = ErrorCode.INSUFFICIENT_DEBT


# -- concurrency -------------------------------------------------------------

class ReentrantCall(EngineError):
    """Raised when a mutating call starts while another one is in flight."""
    code = ErrorCode.REENTRANT_CALL


# Token-ledger errors (registration problems, not business rejections).

class LedgerError(Exception):
    """Base exception for token-ledger errors."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised by a transfer rule to veto a move."""
    pass


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction or engine operation attempt.

    APPLIED: Validated and applied.
    ALREADY_APPLIED: Transaction ID was previously processed (idempotent behavior).
    REJECTED: Failed validation; nothing was applied.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


# ============================================================================
# ENGINE RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class CollateralDeposited:
    """Audit record: `amount` of `asset` credited to `actor`."""
    actor: str
    asset: str
    amount: int


@dataclass(frozen=True, slots=True)
class CollateralRedeemed:
    """Audit record: `amount` of `asset` debited from `source` and paid to `dest`."""
    source: str
    dest: str
    asset: str
    amount: int


EngineEvent = Union[CollateralDeposited, CollateralRedeemed]


@dataclass(frozen=True, slots=True)
class AccountInfo:
    """Minted debt and total collateral value (USD, PRECISION-scaled) of an actor."""
    minted_debt: int
    collateral_value_usd: int


@dataclass(frozen=True, slots=True)
class OperationResult:
    """
    Result-typed outcome of an engine operation.

    Returned by CollateralEngine.attempt() for callers that prefer inspecting
    a status over catching EngineError.
    """
    status: ExecuteResult
    error: Optional[ErrorCode] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status == ExecuteResult.APPLIED


# ============================================================================
# TOKEN LEDGER DATA STRUCTURES
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to token-ledger state.

    Transfer rules receive a LedgerView so they can inspect balances without
    the ability to modify them.
    """

    @property
    def current_time(self) -> datetime:
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        ...

    def list_wallets(self) -> Set[str]:
        ...


@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of a token between two wallets.

    Attributes:
        quantity: Amount in the token's native units (positive integer).
        unit_symbol: Token symbol (e.g., "WETH", "DSC").
        source: Wallet debited.
        dest: Wallet credited.
        contract_id: Identifier of the operation generating this move.
    """
    quantity: int
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, int) or isinstance(self.quantity, bool):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _compute_intent_id(moves: Tuple[Move, ...], origin: str) -> str:
    """
    Deterministic content hash of a transaction's moves and origin.

    Same inputs always produce the same intent_id; used for idempotency.
    """
    content_parts = [f"origin:{origin}"]
    for m in sorted(moves, key=lambda m: (m.quantity, m.unit_symbol, m.source, m.dest, m.contract_id)):
        content_parts.append(f"move:{m.quantity}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")
    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A set of moves submitted to the token ledger for atomic execution.

    Attributes:
        moves: Tuple of transfers, applied all together or not at all
        origin: Who/what created this transaction
        timestamp: When it was built
        intent_id: Content-addressable hash (auto-computed)
    """
    moves: Tuple[Move, ...]
    origin: str
    timestamp: datetime
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(self, 'intent_id', _compute_intent_id(self.moves, self.origin))

    def is_empty(self) -> bool:
        return not self.moves


def build_transaction(view: LedgerView, moves: List[Move], origin: str = "contract") -> PendingTransaction:
    """Build a PendingTransaction stamped with the view's current time."""
    return PendingTransaction(moves=tuple(moves), origin=origin, timestamp=view.current_time)


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of token movements.

    Attributes:
        moves: Tuple of value transfers between wallets
        origin: Who/what created this transaction
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger (for ordering)
    """
    moves: Tuple[Move, ...]
    origin: str
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int

    def __post_init__(self):
        if not self.moves:
            raise ValueError("Transaction must have moves")


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a token in the ledger.

    Attributes:
        symbol: Short identifier (e.g., "WETH").
        name: Human-readable name.
        unit_type: UNIT_TYPE_COLLATERAL or UNIT_TYPE_DEBT.
        decimals: Native precision; one whole token is 10**decimals units.
        min_balance: Minimum allowed balance in any non-system wallet.
        transfer_rule: Optional hook invoked for every move of this unit.
    """
    symbol: str
    name: str
    unit_type: str
    decimals: int = 18
    min_balance: int = 0
    transfer_rule: Optional[TransferRule] = None

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Unit symbol cannot be empty")
        if self.decimals < 0:
            raise ValueError(f"decimals must be non-negative, got {self.decimals}")

    @property
    def one(self) -> int:
        """Native units in one whole token."""
        return 10 ** self.decimals


# ============================================================================
# DECIMAL CONVERSION
# ============================================================================

# Enough digits for 256-bit integers.
_DECIMAL_PREC = 80


def to_units(amount, decimals: int = 18) -> int:
    """
    Convert a human amount ("1.5", Decimal, int) to native integer units.

    Truncates digits beyond `decimals`. Floats are converted through str()
    to avoid binary artefacts.
    """
    if isinstance(amount, float):
        amount = str(amount)
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PREC
        value = Decimal(amount).scaleb(decimals).to_integral_value(rounding=ROUND_DOWN)
    return int(value)


def to_decimal(units: int, decimals: int = 18) -> Decimal:
    """Convert native integer units (or a PRECISION-scaled value) to a Decimal."""
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PREC
        return Decimal(units).scaleb(-decimals)
