"""
test_engine_operations.py - Unit tests for CollateralEngine operations

Tests:
- Construction
- deposit_collateral / redeem_collateral
- mint_debt / burn_debt
- deposit_and_mint / redeem_and_burn
- Events and subscribers
- Engine and system wallets rejected as actors
- attempt() result values
- Read-only queries
"""

import pytest
from datetime import datetime

from stableledger import (
    CollateralEngine, Ledger, LedgerToken, LedgerDebtToken, StaticPriceFeed,
    CollateralDeposited, CollateralRedeemed, ErrorCode, ExecuteResult,
    NeedsMoreThanZero, AssetNotApproved, LengthMismatch, HealthFactorBroken,
    InsufficientCollateral, InsufficientDebt, TransferFailed, InvalidActor,
    MAX_HEALTH_FACTOR, MIN_HEALTH_FACTOR, PRECISION, ADDITIONAL_FEED_PRECISION,
    LIQUIDATION_BONUS, LIQUIDATION_PRECISION, LIQUIDATION_THRESHOLD,
    SYSTEM_WALLET, UNIT_TYPE_DEBT, token_unit,
)
from tests.engine_factory import ONE, STARTING_WETH, engine_state as _state


# =============================================================================
# CONSTRUCTION
# =============================================================================

class TestConstruction:

    def _parts(self):
        t = datetime(2025, 1, 1)
        ledger = Ledger("chain", t)
        ledger.register_unit(token_unit("WETH", "Wrapped Ether"))
        ledger.register_unit(token_unit("DSC", "Stablecoin", unit_type=UNIT_TYPE_DEBT))
        return ledger, LedgerToken(ledger, "WETH"), StaticPriceFeed(2000 * 10 ** 8, t)

    def test_registers_engine_wallet(self):
        ledger, weth, feed = self._parts()
        dsc = LedgerDebtToken(ledger, "DSC", minter="vault")
        engine = CollateralEngine(ledger, [weth], [feed], dsc, address="vault")
        assert ledger.is_registered("vault")
        assert engine.collateral_assets() == ("WETH",)

    def test_engine_must_be_minter(self):
        ledger, weth, feed = self._parts()
        dsc = LedgerDebtToken(ledger, "DSC", minter="someone_else")
        with pytest.raises(ValueError, match="minter"):
            CollateralEngine(ledger, [weth], [feed], dsc)

    def test_length_mismatch(self):
        ledger, weth, feed = self._parts()
        dsc = LedgerDebtToken(ledger, "DSC", minter="engine")
        with pytest.raises(LengthMismatch):
            CollateralEngine(ledger, [weth], [feed, feed], dsc)

    def test_constant_getters(self, engine):
        assert engine.precision == PRECISION
        assert engine.additional_feed_precision == ADDITIONAL_FEED_PRECISION
        assert engine.liquidation_threshold == LIQUIDATION_THRESHOLD
        assert engine.liquidation_precision == LIQUIDATION_PRECISION
        assert engine.liquidation_bonus == LIQUIDATION_BONUS
        assert engine.min_health_factor == MIN_HEALTH_FACTOR


# =============================================================================
# DEPOSIT / REDEEM
# =============================================================================

class TestDepositCollateral:

    def test_deposit(self, env):
        env.engine.deposit_collateral("alice", "WETH", 10 * ONE)
        assert env.engine.collateral_balance_of("alice", "WETH") == 10 * ONE
        assert env.weth.balance_of("alice") == STARTING_WETH - 10 * ONE
        assert env.weth.balance_of("engine") == 10 * ONE
        assert env.engine.events == [CollateralDeposited("alice", "WETH", 10 * ONE)]

    def test_deposit_without_debt_keeps_max_health(self, deposited):
        assert deposited.engine.health_factor("alice") == MAX_HEALTH_FACTOR
        assert deposited.engine.account_information("alice").collateral_value_usd == 20_000 * ONE

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_amount(self, env, amount):
        before = _state(env)
        with pytest.raises(NeedsMoreThanZero):
            env.engine.deposit_collateral("alice", "WETH", amount)
        assert _state(env) == before

    def test_unapproved_asset(self, env):
        before = _state(env)
        with pytest.raises(AssetNotApproved):
            env.engine.deposit_collateral("alice", "DSC", ONE)
        assert _state(env) == before

    def test_insufficient_token_balance(self, env):
        """The position credit and the event are undone when the transfer fails."""
        before = _state(env)
        with pytest.raises(TransferFailed):
            env.engine.deposit_collateral("alice", "WETH", STARTING_WETH + 1)
        assert _state(env) == before
        assert env.engine.collateral_balance_of("alice", "WETH") == 0

    def test_unknown_actor(self, env):
        with pytest.raises(TransferFailed):
            env.engine.deposit_collateral("mallory", "WETH", ONE)


class TestRedeemCollateral:

    def test_redeem_all_without_debt(self, deposited):
        deposited.engine.redeem_collateral("alice", "WETH", 10 * ONE)
        assert deposited.engine.collateral_balance_of("alice", "WETH") == 0
        assert deposited.weth.balance_of("alice") == STARTING_WETH
        assert deposited.engine.events[-1] == CollateralRedeemed("alice", "alice", "WETH", 10 * ONE)

    def test_more_than_deposited(self, deposited):
        with pytest.raises(InsufficientCollateral):
            deposited.engine.redeem_collateral("alice", "WETH", 10 * ONE + 1)

    def test_other_asset_not_deposited(self, deposited):
        with pytest.raises(InsufficientCollateral):
            deposited.engine.redeem_collateral("alice", "WBTC", 1)

    def test_redeem_breaking_health_factor(self, minted):
        before = _state(minted)
        with pytest.raises(HealthFactorBroken) as exc_info:
            minted.engine.redeem_collateral("alice", "WETH", 10 * ONE)
        assert exc_info.value.actor == "alice"
        assert exc_info.value.health_factor == 0
        assert _state(minted) == before

    def test_redeem_keeping_health_factor(self, minted):
        """1 WETH left ($2000) still backs 100 debt at health factor 10."""
        minted.engine.redeem_collateral("alice", "WETH", 9 * ONE)
        assert minted.engine.health_factor("alice") == 10 * PRECISION

    def test_zero(self, deposited):
        with pytest.raises(NeedsMoreThanZero):
            deposited.engine.redeem_collateral("alice", "WETH", 0)

    def test_unapproved(self, deposited):
        with pytest.raises(AssetNotApproved):
            deposited.engine.redeem_collateral("alice", "DOGE", 1)


# =============================================================================
# MINT / BURN
# =============================================================================

class TestMintDebt:

    def test_mint(self, deposited):
        deposited.engine.mint_debt("alice", 100 * ONE)
        assert deposited.engine.minted_debt_of("alice") == 100 * ONE
        assert deposited.dsc.balance_of("alice") == 100 * ONE
        assert deposited.dsc.total_supply() == 100 * ONE

    def test_mint_up_to_threshold(self, deposited):
        """$20,000 of collateral backs exactly 10,000 debt."""
        deposited.engine.mint_debt("alice", 10_000 * ONE)
        assert deposited.engine.health_factor("alice") == MIN_HEALTH_FACTOR

    def test_mint_past_threshold(self, deposited):
        before = _state(deposited)
        with pytest.raises(HealthFactorBroken):
            deposited.engine.mint_debt("alice", 10_000 * ONE + 1)
        assert _state(deposited) == before
        assert deposited.dsc.total_supply() == 0

    def test_mint_without_collateral(self, env):
        with pytest.raises(HealthFactorBroken):
            env.engine.mint_debt("bob", 1)

    def test_zero(self, deposited):
        with pytest.raises(NeedsMoreThanZero):
            deposited.engine.mint_debt("alice", 0)


class TestBurnDebt:

    def test_burn_all(self, minted):
        minted.engine.burn_debt("alice", 100 * ONE)
        assert minted.engine.minted_debt_of("alice") == 0
        assert minted.dsc.total_supply() == 0
        assert minted.dsc.balance_of("engine") == 0
        assert minted.engine.health_factor("alice") == MAX_HEALTH_FACTOR

    def test_partial_burn_improves_health(self, minted):
        minted.engine.burn_debt("alice", 50 * ONE)
        assert minted.engine.health_factor("alice") == 200 * PRECISION

    def test_more_than_minted(self, minted):
        with pytest.raises(InsufficientDebt):
            minted.engine.burn_debt("alice", 100 * ONE + 1)

    def test_tokens_moved_away(self, minted):
        """Debt stays on the books when the burner no longer holds the tokens."""
        minted.dsc.transfer("alice", "bob", 60 * ONE)
        before = _state(minted)
        with pytest.raises(TransferFailed):
            minted.engine.burn_debt("alice", 100 * ONE)
        assert _state(minted) == before
        assert minted.engine.minted_debt_of("alice") == 100 * ONE

    def test_zero(self, minted):
        with pytest.raises(NeedsMoreThanZero):
            minted.engine.burn_debt("alice", 0)


# =============================================================================
# COMBINED OPERATIONS
# =============================================================================

class TestDepositAndMint:

    def test_deposit_and_mint(self, env):
        env.engine.deposit_and_mint("alice", "WETH", 10 * ONE, 100 * ONE)
        assert env.engine.collateral_balance_of("alice", "WETH") == 10 * ONE
        assert env.engine.minted_debt_of("alice") == 100 * ONE
        assert env.engine.health_factor("alice") == 100 * PRECISION

    def test_failed_mint_undoes_deposit(self, env):
        before = _state(env)
        with pytest.raises(HealthFactorBroken):
            env.engine.deposit_and_mint("alice", "WETH", 10 * ONE, 10_001 * ONE)
        assert _state(env) == before
        assert env.weth.balance_of("alice") == STARTING_WETH
        assert env.weth.balance_of("engine") == 0

    def test_zero_debt(self, env):
        with pytest.raises(NeedsMoreThanZero):
            env.engine.deposit_and_mint("alice", "WETH", 10 * ONE, 0)
        assert env.engine.collateral_balance_of("alice", "WETH") == 0


class TestRedeemAndBurn:

    def test_close_position(self, minted):
        minted.engine.redeem_and_burn("alice", "WETH", 10 * ONE, 100 * ONE)
        assert minted.engine.collateral_balance_of("alice", "WETH") == 0
        assert minted.engine.minted_debt_of("alice") == 0
        assert minted.weth.balance_of("alice") == STARTING_WETH
        assert minted.dsc.total_supply() == 0

    def test_burn_is_applied_before_redeem(self, minted):
        """Redeeming 9.95 WETH is only healthy once 100 debt is gone."""
        minted.engine.redeem_and_burn("alice", "WETH", 995 * ONE // 100, 99 * ONE)
        assert minted.engine.minted_debt_of("alice") == ONE
        assert minted.engine.health_factor("alice") == 50 * PRECISION

    def test_redeem_too_much_for_remaining_debt(self, minted):
        before = _state(minted)
        with pytest.raises(HealthFactorBroken):
            minted.engine.redeem_and_burn("alice", "WETH", 10 * ONE, 50 * ONE)
        assert _state(minted) == before

    @pytest.mark.parametrize("collateral, debt", [(0, ONE), (ONE, 0)])
    def test_zero_amounts(self, minted, collateral, debt):
        with pytest.raises(NeedsMoreThanZero):
            minted.engine.redeem_and_burn("alice", "WETH", collateral, debt)


# =============================================================================
# EVENTS
# =============================================================================

class TestEvents:

    def test_subscriber_sees_committed_events(self, env):
        seen = []
        env.engine.subscribe(seen.append)
        env.engine.deposit_and_mint("alice", "WETH", 10 * ONE, 100 * ONE)
        env.engine.redeem_collateral("alice", "WETH", ONE)
        assert seen == [
            CollateralDeposited("alice", "WETH", 10 * ONE),
            CollateralRedeemed("alice", "alice", "WETH", ONE),
        ]

    def test_failed_operation_publishes_nothing(self, env):
        seen = []
        env.engine.subscribe(seen.append)
        with pytest.raises(HealthFactorBroken):
            env.engine.deposit_and_mint("alice", "WETH", ONE, 10 ** 30)
        assert seen == []
        assert env.engine.events == []


# =============================================================================
# RESERVED WALLETS
# =============================================================================

class TestReservedWallets:
    """The engine wallet and the system wallet cannot open positions."""

    @pytest.mark.parametrize("wallet", ["engine", SYSTEM_WALLET])
    def test_deposit_rejected(self, deposited, wallet):
        before = _state(deposited)
        with pytest.raises(InvalidActor):
            deposited.engine.deposit_collateral(wallet, "WETH", 10 * ONE)
        assert _state(deposited) == before

    def test_engine_wallet_cannot_borrow_against_other_deposits(self, deposited):
        engine = deposited.engine
        with pytest.raises(InvalidActor):
            engine.deposit_and_mint("engine", "WETH", 10 * ONE, 5000 * ONE)
        with pytest.raises(InvalidActor):
            engine.mint_debt("engine", 5000 * ONE)

        assert deposited.weth.balance_of("engine") == engine.positions.total_collateral("WETH") == 10 * ONE
        assert deposited.dsc.total_supply() == 0

    @pytest.mark.parametrize("wallet", ["engine", SYSTEM_WALLET])
    def test_withdrawals_rejected(self, minted, wallet):
        engine = minted.engine
        with pytest.raises(InvalidActor):
            engine.redeem_collateral(wallet, "WETH", ONE)
        with pytest.raises(InvalidActor):
            engine.burn_debt(wallet, ONE)
        with pytest.raises(InvalidActor):
            engine.redeem_and_burn(wallet, "WETH", ONE, ONE)

    def test_system_wallet_cannot_liquidate(self, liquidatable):
        """The system wallet may go negative, so it could repay with tokens it does not hold."""
        before = _state(liquidatable)
        with pytest.raises(InvalidActor):
            liquidatable.engine.liquidate(SYSTEM_WALLET, "WETH", "alice", 100 * ONE)
        assert _state(liquidatable) == before
        assert liquidatable.engine.minted_debt_of("alice") == 100 * ONE

    @pytest.mark.parametrize("wallet", ["engine", SYSTEM_WALLET])
    def test_reserved_wallet_is_not_a_target(self, liquidatable, wallet):
        with pytest.raises(InvalidActor):
            liquidatable.engine.liquidate("liquidator", "WETH", wallet, 100 * ONE)

    def test_attempt_reports_code(self, env):
        result = env.engine.attempt(env.engine.deposit_collateral, "engine", "WETH", ONE)
        assert result.error is ErrorCode.INVALID_ACTOR


# =============================================================================
# RESULT-TYPED ENTRY POINT
# =============================================================================

class TestAttempt:

    def test_applied(self, env):
        result = env.engine.attempt(env.engine.deposit_collateral, "alice", "WETH", ONE)
        assert result.ok
        assert result.status == ExecuteResult.APPLIED
        assert result.error is None

    def test_rejected_with_code(self, deposited):
        result = deposited.engine.attempt(deposited.engine.mint_debt, "alice", 10 ** 30)
        assert not result.ok
        assert result.status == ExecuteResult.REJECTED
        assert result.error == ErrorCode.BREAKS_HEALTH_FACTOR
        assert "alice" in result.detail

    def test_keyword_arguments(self, env):
        result = env.engine.attempt(env.engine.deposit_collateral, actor="alice", asset="DOGE", amount=1)
        assert result.error == ErrorCode.ASSET_NOT_APPROVED


# =============================================================================
# QUERIES
# =============================================================================

class TestQueries:

    def test_collateral_assets_in_order(self, engine):
        assert engine.collateral_assets() == ("WETH", "WBTC")

    def test_price_feed_of(self, env):
        assert env.engine.price_feed_of("WBTC") is env.feeds["WBTC"]
        with pytest.raises(AssetNotApproved):
            env.engine.price_feed_of("DOGE")

    def test_protocol_solvency(self, minted):
        minted.engine.deposit_and_mint("bob", "WBTC", 2 * ONE, 300 * ONE)
        collateral_usd, supply = minted.engine.protocol_solvency()
        assert collateral_usd == 22_000 * ONE
        assert supply == 400 * ONE

    def test_account_summary(self, minted):
        summary = minted.engine.account_summary()
        assert summary == {
            "alice": {
                "minted_debt": 100 * ONE,
                "collateral_value_usd": 20_000 * ONE,
                "health_factor": 100 * PRECISION,
            }
        }
