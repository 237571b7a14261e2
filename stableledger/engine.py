"""
engine.py - Collateral-backed debt engine

The CollateralEngine is the only writer of the PositionLedger. Actors
deposit approved collateral, mint the debt token against it, repay (burn)
and redeem; any actor may liquidate a position whose health factor has
fallen below MIN_HEALTH_FACTOR.

Invariant:
    for every actor with minted debt > 0,
        health_factor(actor) >= MIN_HEALTH_FACTOR
    holds after every successful mutating call.

Execution model:
    Every mutating entry point runs as one unit of work:
    1. acquire the non-reentrant guard (a nested mutating call raises ReentrantCall)
    2. snapshot positions and checkpoint the token ledger
    3. mutate positions, buffer events, call tokens, check health factors
    4. on any exception: restore positions, roll the token ledger back,
       drop buffered events, re-raise
    5. on success: publish buffered events
    So either the whole operation commits or nothing it did is observable.

Read-only queries do not take the guard and are pure functions of the
current positions and feed prices.
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple
import logging

from .core import (
    AccountInfo, CollateralDeposited, CollateralRedeemed, EngineEvent,
    ExecuteResult, OperationResult,
    EngineError, NeedsMoreThanZero, InvalidActor, HealthFactorBroken, HealthFactorOk,
    HealthFactorNotImproved, MintFailed, ReentrantCall, TransferFailed,
    PRECISION, ADDITIONAL_FEED_PRECISION, LIQUIDATION_THRESHOLD,
    LIQUIDATION_PRECISION, LIQUIDATION_BONUS, MIN_HEALTH_FACTOR, ORACLE_TIMEOUT, SYSTEM_WALLET,
)
from .health import HealthFactorCalculator
from .ledger import Ledger
from .liquidation import LiquidationQuote, quote_liquidation
from .positions import PositionLedger
from .pricing_source import PriceFeed
from .registry import CollateralRegistry
from .tokens import DebtToken, FungibleToken
from .valuation import ValuationEngine

logger = logging.getLogger(__name__)

EventHandler = Callable[[EngineEvent], None]


class CollateralEngine:
    """
    Accounting, health factor and liquidation engine for one debt token.

    Args:
        ledger: Token ledger holding collateral and debt token balances;
            its logical time is the clock for oracle staleness
        collateral_tokens: Approved collateral tokens, in registry order
        price_feeds: One USD price feed per collateral token, same order
        debt_token: The debt token; the engine must be its minter
        address: Wallet the engine holds collateral in
        oracle_timeout: Maximum accepted price age

    Raises:
        LengthMismatch: collateral_tokens and price_feeds differ in length
        ValueError: the engine address is not the debt token's minter

    Example:
        engine = CollateralEngine(ledger, [weth, wbtc], [eth_usd, btc_usd], dsc)
        engine.deposit_and_mint("alice", "WETH", 10 * 10**18, 100 * 10**18)
        engine.health_factor("alice")   # 100 * 10**18 at $2000/ETH
    """

    def __init__(
        self,
        ledger: Ledger,
        collateral_tokens: Sequence[FungibleToken],
        price_feeds: Sequence[PriceFeed],
        debt_token: DebtToken,
        address: str = "engine",
        oracle_timeout: timedelta = ORACLE_TIMEOUT,
    ):
        self.registry = CollateralRegistry(collateral_tokens, price_feeds)
        if debt_token.minter != address:
            raise ValueError(f"Debt token minter is {debt_token.minter!r}, engine address is {address!r}")
        self.ledger = ledger
        self.debt_token = debt_token
        self.address = address
        self.positions = PositionLedger()
        self.valuation = ValuationEngine(self.registry, clock=lambda: ledger.current_time,
                                         oracle_timeout=oracle_timeout)
        self.health = HealthFactorCalculator(self.registry, self.positions, self.valuation)

        self.events: List[EngineEvent] = []
        self._subscribers: List[EventHandler] = []
        self._pending_events: Optional[List[EngineEvent]] = None
        self._locked = False

        if not ledger.is_registered(address):
            ledger.register_wallet(address)

    # ========================================================================
    # UNIT OF WORK
    # ========================================================================

    @contextmanager
    def _non_reentrant(self, operation: str) -> Iterator[None]:
        if self._locked:
            raise ReentrantCall(f"{operation} called while another operation is in progress")
        self._locked = True
        snapshot = self.positions.snapshot()
        checkpoint = self.ledger.checkpoint()
        events: List[EngineEvent] = []
        self._pending_events = events
        try:
            yield
        except Exception as exc:
            self.positions.restore(snapshot)
            self.ledger.rollback(checkpoint)
            logger.warning("%s rolled back: %s: %s", operation, type(exc).__name__, exc)
            raise
        finally:
            self._pending_events = None
            self._locked = False
        self._publish(events)

    def _emit(self, event: EngineEvent) -> None:
        self._pending_events.append(event)

    def _publish(self, events: List[EngineEvent]) -> None:
        for event in events:
            self.events.append(event)
            for handler in self._subscribers:
                handler(event)

    def subscribe(self, handler: EventHandler) -> None:
        """Call `handler` with every event of every committed operation."""
        self._subscribers.append(handler)

    # ========================================================================
    # GUARDS
    # ========================================================================

    @staticmethod
    def _require_positive(amount: int, what: str = "amount") -> None:
        if amount <= 0:
            raise NeedsMoreThanZero(f"{what} must be more than zero, got {amount}")

    def _require_approved(self, asset: str) -> None:
        self.registry.get(asset)

    def _require_external_actor(self, *actors: str) -> None:
        # The engine wallet moves tokens to itself for free and the system
        # wallet may go negative; neither can back a position.
        for actor in actors:
            if actor in (self.address, SYSTEM_WALLET):
                raise InvalidActor(f"{actor!r} cannot hold collateral or debt")

    def _revert_if_health_factor_is_broken(self, actor: str) -> None:
        hf = self.health.health_factor(actor)
        if hf < MIN_HEALTH_FACTOR:
            raise HealthFactorBroken(actor, hf)

    # ========================================================================
    # PRIMITIVES (guard must be held)
    # ========================================================================

    def _deposit(self, actor: str, asset: str, amount: int) -> None:
        self._require_external_actor(actor)
        self._require_positive(amount)
        self._require_approved(asset)
        self.positions.add_collateral(actor, asset, amount)
        self._emit(CollateralDeposited(actor, asset, amount))
        if not self.registry.token_of(asset).transfer_from(actor, self.address, amount):
            raise TransferFailed(f"transfer of {amount} {asset} from {actor} failed")

    def _redeem(self, asset: str, amount: int, source: str, dest: str) -> None:
        self._require_external_actor(source, dest)
        self.positions.remove_collateral(source, asset, amount)
        self._emit(CollateralRedeemed(source, dest, asset, amount))
        if not self.registry.token_of(asset).transfer(self.address, dest, amount):
            raise TransferFailed(f"transfer of {amount} {asset} to {dest} failed")

    def _mint(self, actor: str, amount: int) -> None:
        self._require_external_actor(actor)
        self._require_positive(amount)
        self.positions.add_debt(actor, amount)
        self._revert_if_health_factor_is_broken(actor)
        if not self.debt_token.mint(actor, amount):
            raise MintFailed(f"mint of {amount} {self.debt_token.symbol} to {actor} failed")

    def _burn(self, amount: int, on_behalf_of: str, payer: str) -> None:
        self._require_external_actor(on_behalf_of, payer)
        self.positions.remove_debt(on_behalf_of, amount)
        if not self.debt_token.transfer_from(payer, self.address, amount):
            raise TransferFailed(f"transfer of {amount} {self.debt_token.symbol} from {payer} failed")
        if not self.debt_token.burn(amount):
            raise TransferFailed(f"burn of {amount} {self.debt_token.symbol} failed")

    # ========================================================================
    # COLLATERAL & DEBT OPERATIONS
    # ========================================================================

    def deposit_collateral(self, actor: str, asset: str, amount: int) -> None:
        """
        Lock `amount` of `asset` from `actor` as collateral.

        Raises:
            InvalidActor, NeedsMoreThanZero, AssetNotApproved, TransferFailed, ReentrantCall
        """
        with self._non_reentrant("deposit_collateral"):
            self._deposit(actor, asset, amount)
        logger.info("%s deposited %d %s", actor, amount, asset)

    def redeem_collateral(self, actor: str, asset: str, amount: int) -> None:
        """
        Withdraw `amount` of `actor`'s own collateral.

        Raises:
            InvalidActor, NeedsMoreThanZero, AssetNotApproved, InsufficientCollateral,
            HealthFactorBroken, TransferFailed, StalePrice, ReentrantCall
        """
        with self._non_reentrant("redeem_collateral"):
            self._require_positive(amount)
            self._require_approved(asset)
            self._redeem(asset, amount, actor, actor)
            self._revert_if_health_factor_is_broken(actor)
        logger.info("%s redeemed %d %s", actor, amount, asset)

    def mint_debt(self, actor: str, amount: int) -> None:
        """
        Mint `amount` of debt token to `actor` against their collateral.

        The health factor is checked before the token is minted.

        Raises:
            InvalidActor, NeedsMoreThanZero, HealthFactorBroken, MintFailed, StalePrice, ReentrantCall
        """
        with self._non_reentrant("mint_debt"):
            self._mint(actor, amount)
        logger.info("%s minted %d %s", actor, amount, self.debt_token.symbol)

    def burn_debt(self, actor: str, amount: int) -> None:
        """
        Repay `amount` of `actor`'s own debt with their debt tokens.

        The closing health-factor check can only fail if the position was
        already unhealthy; burning never lowers a health factor.

        Raises:
            InvalidActor, NeedsMoreThanZero, InsufficientDebt, TransferFailed, HealthFactorBroken, StalePrice,
            ReentrantCall
        """
        with self._non_reentrant("burn_debt"):
            self._require_positive(amount)
            self._burn(amount, actor, actor)
            self._revert_if_health_factor_is_broken(actor)
        logger.info("%s burned %d %s", actor, amount, self.debt_token.symbol)

    def deposit_and_mint(self, actor: str, asset: str, collateral_amount: int, debt_amount: int) -> None:
        """Deposit collateral then mint debt, as one operation."""
        with self._non_reentrant("deposit_and_mint"):
            self._deposit(actor, asset, collateral_amount)
            self._mint(actor, debt_amount)
        logger.info("%s deposited %d %s and minted %d %s", actor, collateral_amount, asset,
                    debt_amount, self.debt_token.symbol)

    def redeem_and_burn(self, actor: str, asset: str, collateral_amount: int, debt_amount: int) -> None:
        """Burn debt then redeem collateral, as one operation."""
        with self._non_reentrant("redeem_and_burn"):
            self._require_positive(collateral_amount, "collateral_amount")
            self._require_positive(debt_amount, "debt_amount")
            self._require_approved(asset)
            self._burn(debt_amount, actor, actor)
            self._redeem(asset, collateral_amount, actor, actor)
            self._revert_if_health_factor_is_broken(actor)
        logger.info("%s burned %d %s and redeemed %d %s", actor, debt_amount,
                    self.debt_token.symbol, collateral_amount, asset)

    # ========================================================================
    # LIQUIDATION
    # ========================================================================

    def liquidate(self, liquidator: str, asset: str, target: str, debt_to_cover: int) -> LiquidationQuote:
        """
        Repay `debt_to_cover` of `target`'s debt with the liquidator's debt
        tokens and take the equivalent `asset` collateral plus a
        LIQUIDATION_BONUS percent bonus.

        Steps:
        1. target must be below MIN_HEALTH_FACTOR
        2. quote the collateral (token amount + bonus) at current price
        3. move the seized collateral from target's position to the liquidator
        4. burn debt_to_cover from target's debt, paid by the liquidator
        5. target's health factor must have strictly improved
        6. liquidator must still be healthy

        Returns:
            The LiquidationQuote that was executed

        Raises:
            InvalidActor, NeedsMoreThanZero, AssetNotApproved, HealthFactorOk,
            InsufficientCollateral (target holds too little of `asset`),
            InsufficientDebt, TransferFailed, HealthFactorNotImproved,
            HealthFactorBroken (liquidator), StalePrice, ReentrantCall
        """
        with self._non_reentrant("liquidate"):
            self._require_external_actor(liquidator, target)
            self._require_positive(debt_to_cover, "debt_to_cover")
            self._require_approved(asset)

            starting_health_factor = self.health.health_factor(target)
            if starting_health_factor >= MIN_HEALTH_FACTOR:
                raise HealthFactorOk(f"{target} health factor {starting_health_factor} is not below minimum")

            quote = quote_liquidation(self.valuation, asset, debt_to_cover)
            self._redeem(asset, quote.total_seized, target, liquidator)
            self._burn(debt_to_cover, target, liquidator)

            ending_health_factor = self.health.health_factor(target)
            if ending_health_factor <= starting_health_factor:
                raise HealthFactorNotImproved(
                    f"{target} health factor {starting_health_factor} -> {ending_health_factor}"
                )
            self._revert_if_health_factor_is_broken(liquidator)

        logger.info(
            "%s liquidated %s: covered %d debt, seized %d %s (bonus %d), health factor %d -> %d",
            liquidator, target, debt_to_cover, quote.total_seized, asset,
            quote.bonus_collateral, starting_health_factor, ending_health_factor,
        )
        return quote

    # ========================================================================
    # RESULT-TYPED ENTRY POINT
    # ========================================================================

    def attempt(self, operation: Callable[..., Any], *args, **kwargs) -> OperationResult:
        """
        Run a bound engine operation and report the outcome as a value.

        Example:
            result = engine.attempt(engine.mint_debt, "alice", 10**30)
            if not result.ok:
                print(result.error)   # ErrorCode.BREAKS_HEALTH_FACTOR
        """
        try:
            operation(*args, **kwargs)
        except EngineError as exc:
            return OperationResult(status=ExecuteResult.REJECTED, error=exc.code, detail=str(exc))
        return OperationResult(status=ExecuteResult.APPLIED)

    # ========================================================================
    # QUERIES (read-only)
    # ========================================================================

    def get_usd_value(self, asset: str, amount: int) -> int:
        return self.valuation.usd_value(asset, amount)

    def get_token_amount_from_usd(self, asset: str, usd_amount: int) -> int:
        return self.valuation.token_amount_from_usd(asset, usd_amount)

    def health_factor(self, actor: str) -> int:
        return self.health.health_factor(actor)

    def account_information(self, actor: str) -> AccountInfo:
        return self.health.account_info(actor)

    def total_collateral_value(self, actor: str) -> int:
        return self.health.total_collateral_value(actor)

    def collateral_balance_of(self, actor: str, asset: str) -> int:
        return self.positions.collateral_of(actor, asset)

    def minted_debt_of(self, actor: str) -> int:
        return self.positions.minted_debt_of(actor)

    def collateral_assets(self) -> Tuple[str, ...]:
        return self.registry.assets()

    def price_feed_of(self, asset: str) -> PriceFeed:
        return self.registry.price_feed_of(asset)

    def protocol_solvency(self) -> Tuple[int, int]:
        """
        Returns:
            (USD value of all collateral held for actors, debt token supply)
        """
        total_collateral = sum(self.total_collateral_value(actor) for actor in self.positions.actors())
        return total_collateral, self.debt_token.total_supply()

    def account_summary(self) -> Dict[str, Dict[str, int]]:
        """Minted debt, collateral value and health factor of every known actor."""
        summary = {}
        for actor in self.positions.actors():
            info = self.account_information(actor)
            summary[actor] = {
                'minted_debt': info.minted_debt,
                'collateral_value_usd': info.collateral_value_usd,
                'health_factor': self.health_factor(actor),
            }
        return summary

    # Constant getters

    precision = PRECISION
    additional_feed_precision = ADDITIONAL_FEED_PRECISION
    liquidation_threshold = LIQUIDATION_THRESHOLD
    liquidation_precision = LIQUIDATION_PRECISION
    liquidation_bonus = LIQUIDATION_BONUS
    min_health_factor = MIN_HEALTH_FACTOR

    def __repr__(self):
        return f"CollateralEngine({self.address}, collateral={list(self.registry.assets())}, debt={self.debt_token.symbol})"
