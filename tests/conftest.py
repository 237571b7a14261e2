"""
conftest.py - Shared pytest fixtures for engine tests

Provides common fixtures used across unit, conformance and functional tests:
- A wired engine over WETH, WBTC and the DSC debt token
- Funded actors (alice, bob, liquidator) with 100 WETH and 10 WBTC each
- Positions at the usual scenario points (deposited, minted, liquidatable)
"""

import pytest

from tests.engine_factory import EngineEnv, ONE, build_test_engine


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def env() -> EngineEnv:
    """Engine at $2000/ETH and $1000/BTC with funded actors."""
    return build_test_engine()


@pytest.fixture
def engine(env):
    return env.engine


@pytest.fixture
def ledger(env):
    return env.ledger


# =============================================================================
# POSITION FIXTURES
# =============================================================================

@pytest.fixture
def deposited(env) -> EngineEnv:
    """alice has 10 WETH deposited and no debt."""
    env.engine.deposit_collateral("alice", "WETH", 10 * ONE)
    return env


@pytest.fixture
def minted(env) -> EngineEnv:
    """alice has 10 WETH deposited and 100 DSC minted (health factor 100)."""
    env.engine.deposit_and_mint("alice", "WETH", 10 * ONE, 100 * ONE)
    return env


@pytest.fixture
def liquidatable(minted) -> EngineEnv:
    """
    ETH crashed to $18: alice's health factor is 0.9.

    The liquidator has 20 WETH deposited and 100 DSC minted to repay with
    (health factor 1.8 at $18).
    """
    minted.engine.deposit_and_mint("liquidator", "WETH", 20 * ONE, 100 * ONE)
    minted.set_price("WETH", 18)
    return minted
