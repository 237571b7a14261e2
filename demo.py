#!/usr/bin/env python3
"""
demo.py - Walkthrough: Collateral, Debt and Liquidation Step by Step

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL SEE:
  1-3: Setup        - Ledger, tokens, price feeds, the engine
  4-6: Borrowing    - Deposit, mint, health factor, a rejected mint
  7-9: Liquidation  - Price crash, liquidation with bonus, solvency check

Run:
    python demo.py                          # Interactive mode
    python demo.py --quick                  # Run all steps without pausing
    python demo.py --config config/engine.example.yaml
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import argparse

from stableledger import (
    Ledger, LedgerToken, LedgerDebtToken, StaticPriceFeed, CollateralEngine,
    CollateralDeposited, CollateralRedeemed,
    token_unit, to_decimal, to_units, load_config, build_engine, configure_logging,
    UNIT_TYPE_DEBT, PRECISION, MAX_HEALTH_FACTOR,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Scenario parameters. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    eth_price: str = "2000"
    btc_price: str = "1000"
    crash_price: str = "18"
    user_weth: str = "10"
    user_debt: str = "100"
    liquidator_weth: str = "20"
    liquidator_debt: str = "100"


CONFIG = DemoConfig()
QUICK_MODE = False


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def fmt(value: int) -> str:
    """Format a PRECISION-scaled value."""
    if value == MAX_HEALTH_FACTOR:
        return "max"
    return f"{to_decimal(value):,.4f}"


def print_accounts(engine: CollateralEngine):
    for actor, info in engine.account_summary().items():
        print(f"  {actor:<12} debt={fmt(info['minted_debt']):>14}  "
              f"collateral=${fmt(info['collateral_value_usd']):>16}  "
              f"hf={fmt(info['health_factor'])}")


# ============================================================================
# SETUP
# ============================================================================

def build_default_engine() -> CollateralEngine:
    step_header(1, "The Token Ledger",
        "Collateral and debt tokens live on one double-entry ledger.")
    ledger = Ledger("demo", initial_time=CONFIG.start_time)
    ledger.register_unit(token_unit("WETH", "Wrapped Ether"))
    ledger.register_unit(token_unit("WBTC", "Wrapped Bitcoin"))
    ledger.register_unit(token_unit("DSC", "Decentralized Stable Coin", unit_type=UNIT_TYPE_DEBT))
    print(f"Units:   {ledger.list_units()}")
    print(f"Wallets: {sorted(ledger.registered_wallets)}")
    wait_for_enter()

    step_header(2, "Price Feeds",
        "Every collateral asset has a USD feed with 8 decimals.")
    eth_usd = StaticPriceFeed(to_units(CONFIG.eth_price, 8), ledger.current_time)
    btc_usd = StaticPriceFeed(to_units(CONFIG.btc_price, 8), ledger.current_time)
    print(f"ETH/USD: {eth_usd}")
    print(f"BTC/USD: {btc_usd}")
    wait_for_enter()

    step_header(3, "The Engine",
        "The engine is the only minter of the debt token.")
    weth = LedgerToken(ledger, "WETH")
    wbtc = LedgerToken(ledger, "WBTC")
    dsc = LedgerDebtToken(ledger, "DSC", minter="engine")
    engine = CollateralEngine(ledger, [weth, wbtc], [eth_usd, btc_usd], dsc)
    print(engine)
    wait_for_enter()
    return engine


# ============================================================================
# SCENARIO
# ============================================================================

def run_scenario(engine: CollateralEngine):
    ledger = engine.ledger
    weth = engine.registry.token_of("WETH")
    engine.subscribe(lambda event: print(f"  event: {event}"))

    for wallet in ("user", "liquidator"):
        if not ledger.is_registered(wallet):
            ledger.register_wallet(wallet)
    weth.mint("user", to_units(CONFIG.user_weth))
    weth.mint("liquidator", to_units(CONFIG.liquidator_weth))

    step_header(4, "Deposit and Mint",
        "Lock collateral and borrow against it in one operation.")
    engine.deposit_and_mint("user", "WETH", to_units(CONFIG.user_weth), to_units(CONFIG.user_debt))
    print_accounts(engine)
    wait_for_enter()

    step_header(5, "Health Factor",
        "Half of the collateral value must cover the debt.")
    info = engine.account_information("user")
    print(f"  collateral ${fmt(info.collateral_value_usd)} * 50% / debt {fmt(info.minted_debt)}"
          f" = {fmt(engine.health_factor('user'))}")
    wait_for_enter()

    step_header(6, "A Rejected Mint",
        "Minting past the threshold is rejected and leaves no trace.")
    too_much = info.collateral_value_usd
    result = engine.attempt(engine.mint_debt, "user", too_much)
    print(f"  mint {fmt(too_much)} -> {result.status.value}: {result.error.value}")
    print_accounts(engine)
    wait_for_enter()

    step_header(7, "Price Crash",
        f"ETH falls to ${CONFIG.crash_price}; the position becomes liquidatable.")
    engine.deposit_and_mint("liquidator", "WETH", to_units(CONFIG.liquidator_weth),
                            to_units(CONFIG.liquidator_debt))
    ledger.advance_time(ledger.current_time + timedelta(hours=1))
    engine.price_feed_of("WETH").update_price(to_units(CONFIG.crash_price, 8), ledger.current_time)
    print_accounts(engine)
    wait_for_enter()

    step_header(8, "Liquidation",
        "The liquidator repays the user's debt and takes collateral plus a 10% bonus.")
    before = weth.balance_of("liquidator")
    quote = engine.liquidate("liquidator", "WETH", "user", to_units(CONFIG.user_debt))
    print(f"  debt covered:  {fmt(quote.debt_to_cover)}")
    print(f"  WETH seized:   {fmt(quote.total_seized)} (bonus {fmt(quote.bonus_collateral)})")
    print(f"  liquidator WETH {fmt(before)} -> {fmt(weth.balance_of('liquidator'))}")
    print_accounts(engine)
    wait_for_enter()

    step_header(9, "Solvency",
        "Collateral held for actors against the outstanding debt token supply.")
    collateral_usd, supply = engine.protocol_solvency()
    print(f"  collateral ${fmt(collateral_usd)} vs supply {fmt(supply)}")
    print(f"  ledger conserved: {ledger.verify_double_entry()['valid']}")
    deposits = sum(1 for e in engine.events if isinstance(e, CollateralDeposited))
    redemptions = sum(1 for e in engine.events if isinstance(e, CollateralRedeemed))
    print(f"  events: {deposits} deposits, {redemptions} redemptions")


def main():
    global QUICK_MODE
    parser = argparse.ArgumentParser(description="Collateral engine walkthrough")
    parser.add_argument("--quick", action="store_true", help="run without pausing")
    parser.add_argument("--config", help="build the engine from a YAML file")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    QUICK_MODE = args.quick
    configure_logging(args.log_level)

    if args.config:
        engine = build_engine(load_config(args.config))
        print(engine)
    else:
        engine = build_default_engine()
    run_scenario(engine)
    print(f"\nDone. One unit of health factor = {PRECISION}.")


if __name__ == "__main__":
    main()
