"""
stableledger - Collateral-Backed Stablecoin Engine

Overcollateralized debt positions on a double-entry token ledger: actors
deposit approved collateral, mint a USD-pegged debt token against it, and
anyone can liquidate positions whose health factor drops below 1.

Usage:
    from datetime import datetime
    from stableledger import (
        Ledger, LedgerToken, LedgerDebtToken, StaticPriceFeed, CollateralEngine,
        token_unit, UNIT_TYPE_DEBT,
    )

    ledger = Ledger("chain", datetime(2025, 1, 1))
    ledger.register_unit(token_unit("WETH", "Wrapped Ether"))
    ledger.register_unit(token_unit("DSC", "Stablecoin", unit_type=UNIT_TYPE_DEBT))
    ledger.register_wallet("alice")

    weth = LedgerToken(ledger, "WETH")
    dsc = LedgerDebtToken(ledger, "DSC", minter="engine")
    eth_usd = StaticPriceFeed(2000 * 10**8, ledger.current_time)

    engine = CollateralEngine(ledger, [weth], [eth_usd], dsc)
    weth.mint("alice", 10 * 10**18)
    engine.deposit_and_mint("alice", "WETH", 10 * 10**18, 100 * 10**18)
    engine.health_factor("alice")   # 100 * 10**18
"""

# Core types
from .core import (
    PRECISION,
    FEED_DECIMALS,
    FEED_PRECISION,
    ADDITIONAL_FEED_PRECISION,
    LIQUIDATION_THRESHOLD,
    LIQUIDATION_PRECISION,
    LIQUIDATION_BONUS,
    MIN_HEALTH_FACTOR,
    MAX_HEALTH_FACTOR,
    ORACLE_TIMEOUT,
    SYSTEM_WALLET,
    UNIT_TYPE_COLLATERAL,
    UNIT_TYPE_DEBT,
    ErrorCode,
    EngineError,
    NeedsMoreThanZero,
    AssetNotApproved,
    LengthMismatch,
    InvalidActor,
    HealthFactorBroken,
    StalePrice,
    InvalidPrice,
    TransferFailed,
    MintFailed,
    HealthFactorOk,
    HealthFactorNotImproved,
    BalanceUnderflow,
    InsufficientCollateral,
    InsufficientDebt,
    ReentrantCall,
    LedgerError,
    UnitNotRegistered,
    WalletNotRegistered,
    TransferRuleViolation,
    ExecuteResult,
    CollateralDeposited,
    CollateralRedeemed,
    AccountInfo,
    OperationResult,
    LedgerView,
    Move,
    PendingTransaction,
    Transaction,
    Unit,
    build_transaction,
    to_units,
    to_decimal,
)

# Token ledger
from .ledger import Ledger
from .tokens import FungibleToken, DebtToken, LedgerToken, LedgerDebtToken, token_unit

# Pricing
from .pricing_source import (
    PriceFeed, PriceQuote, StaticPriceFeed, TimeSeriesPriceFeed, checked_latest_price,
)

# Engine components
from .registry import CollateralAsset, CollateralRegistry
from .positions import PositionLedger, PositionSnapshot
from .valuation import ValuationEngine
from .health import HealthFactorCalculator, calculate_health_factor
from .liquidation import LiquidationQuote, calculate_bonus, quote_liquidation, max_debt_to_cover
from .engine import CollateralEngine

# Configuration
from .config import EngineConfig, load_config, config_from_dict, build_engine
from .logging_setup import configure_logging

__all__ = [
    # Constants
    'PRECISION', 'FEED_DECIMALS', 'FEED_PRECISION', 'ADDITIONAL_FEED_PRECISION',
    'LIQUIDATION_THRESHOLD', 'LIQUIDATION_PRECISION', 'LIQUIDATION_BONUS',
    'MIN_HEALTH_FACTOR', 'MAX_HEALTH_FACTOR', 'ORACLE_TIMEOUT',
    'SYSTEM_WALLET', 'UNIT_TYPE_COLLATERAL', 'UNIT_TYPE_DEBT',
    # Errors
    'ErrorCode', 'EngineError', 'NeedsMoreThanZero', 'AssetNotApproved', 'LengthMismatch',
    'InvalidActor',
    'HealthFactorBroken', 'StalePrice', 'InvalidPrice', 'TransferFailed', 'MintFailed',
    'HealthFactorOk', 'HealthFactorNotImproved', 'BalanceUnderflow',
    'InsufficientCollateral', 'InsufficientDebt', 'ReentrantCall',
    'LedgerError', 'UnitNotRegistered', 'WalletNotRegistered', 'TransferRuleViolation',
    # Records
    'ExecuteResult', 'CollateralDeposited', 'CollateralRedeemed', 'AccountInfo',
    'OperationResult',
    # Token ledger
    'LedgerView', 'Move', 'PendingTransaction', 'Transaction', 'Unit',
    'build_transaction', 'to_units', 'to_decimal',
    'Ledger', 'FungibleToken', 'DebtToken', 'LedgerToken', 'LedgerDebtToken', 'token_unit',
    # Pricing
    'PriceFeed', 'PriceQuote', 'StaticPriceFeed', 'TimeSeriesPriceFeed', 'checked_latest_price',
    # Engine
    'CollateralAsset', 'CollateralRegistry', 'PositionLedger', 'PositionSnapshot',
    'ValuationEngine', 'HealthFactorCalculator', 'calculate_health_factor',
    'LiquidationQuote', 'calculate_bonus', 'quote_liquidation', 'max_debt_to_cover',
    'CollateralEngine',
    # Configuration
    'EngineConfig', 'load_config', 'config_from_dict', 'build_engine', 'configure_logging',
]

__version__ = '1.0.0'
