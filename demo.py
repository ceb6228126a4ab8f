#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the CDP Ledger Step by Step

This is a pedagogical walk through one collateralized debt position, from
opening to liquidation. Each step builds on the previous one. Press Enter to
advance.

WHAT YOU'LL LEARN:
  1-3:   Foundation   - The wired system, a collateral pool, a first position
  4-5:   Safety       - Guards that reject unsafe or dusty adjustments
  6-7:   Fees         - Accumulated rate, stability fee collection
  8-10:  Liquidation  - Partial liquidation, bad debt, conservation proof

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import sys

from cdp_ledger import (
    CdpSystem, LedgerError, create_system, get_settings,
    from_rad, from_ray, from_wad, to_rad, to_wad,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    pool_id: str = "WBNB"
    initial_price: str = "2"
    crash_price: str = "0.5"

    collateral: str = "1"
    debt: str = "1"

    # Roughly 5% APY, compounded per second
    stability_fee_rate: int = 1000000001547125957863212448


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def show_position(system: CdpSystem, owner: str):
    snapshot = system.book_keeper.position_snapshot(CONFIG.pool_id, owner)
    print(f"{owner:>8}: collateral {from_wad(snapshot.locked_collateral)}, "
          f"debt share {from_wad(snapshot.debt_share)}, "
          f"debt value {from_rad(snapshot.debt_value)}, "
          f"safe={snapshot.safe}")


# ============================================================================
# PHASE 1: FOUNDATION
# ============================================================================

def step_01_system() -> CdpSystem:
    step_header(1, "The Wired System",
        "See the components that share one ledger and one role registry.")

    print(">>> system = create_system(initial_time=datetime(2025, 1, 1, 9, 0))")
    system = create_system(get_settings(), initial_time=CONFIG.start_time)

    section_header("Components")
    print(f"Book keeper:           {system.book_keeper.address}")
    print(f"Liquidation engine:    {system.liquidation_engine.address}")
    print(f"Liquidation strategy:  {system.strategy.address}")
    print(f"System debt engine:    {system.system_debt_engine.address}")
    print(f"Fee collector:         {system.stability_fee_collector.address}")
    print(f"Price oracle:          {system.price_oracle.address}")
    return system


def step_02_pool(system: CdpSystem):
    step_header(2, "A Collateral Pool",
        "Pools carry the risk parameters and the accumulated rate.")

    system.add_collateral_pool(
        CONFIG.pool_id,
        debt_ceiling=to_rad("1000000"),
        debt_floor=to_rad("0.5"),
        price=to_wad(CONFIG.initial_price),
        stability_fee_rate=CONFIG.stability_fee_rate,
        close_factor_bps=5000,
        liquidator_incentive_bps=10250,
        treasury_fees_bps=5000,
    )
    pool = system.book_keeper.pool(CONFIG.pool_id)

    section_header("Pool Parameters")
    print(f"Price with safety margin: {from_ray(pool.price_with_safety_margin)}")
    print(f"Debt floor:               {from_rad(pool.debt_floor)}")
    print(f"Accumulated rate:         {from_ray(pool.debt_accumulated_rate)}")
    print(f"Close factor / incentive: {pool.close_factor_bps} / {pool.liquidator_incentive_bps} bps")


def step_03_open_position(system: CdpSystem):
    step_header(3, "Opening a Position",
        "Deposit collateral through the adapter, lock it and draw stablecoin.")

    adapter = system.adapters[CONFIG.pool_id]
    adapter.mint_external("alice", to_wad("5"))
    adapter.deposit("alice", "alice", to_wad("5"))
    system.book_keeper.adjust_position(
        "alice", CONFIG.pool_id, "alice", "alice", "alice",
        to_wad(CONFIG.collateral), to_wad(CONFIG.debt),
    )
    show_position(system, "alice")
    print(f"\nalice stablecoin: {from_rad(system.book_keeper.stablecoin('alice'))}")


# ============================================================================
# PHASE 2: SAFETY
# ============================================================================

def step_04_unsafe_draw(system: CdpSystem):
    step_header(4, "Rejected Draws",
        "A draw that would exceed the collateral's safe value is rejected whole.")

    try:
        system.book_keeper.adjust_position("alice", CONFIG.pool_id, "alice", "alice", "alice", 0, to_wad("5"))
    except LedgerError as exc:
        print(f"Rejected: {type(exc).__name__}: {exc}")
    show_position(system, "alice")


def step_05_dust(system: CdpSystem):
    step_header(5, "Dust",
        "Non-zero debt must clear the pool's debt floor.")

    try:
        system.book_keeper.adjust_position("alice", CONFIG.pool_id, "alice", "alice", "alice", 0, -to_wad("0.8"))
    except LedgerError as exc:
        print(f"Rejected: {type(exc).__name__}: {exc}")


# ============================================================================
# PHASE 3: FEES
# ============================================================================

def step_06_time(system: CdpSystem):
    step_header(6, "A Year Passes",
        "Debt grows through the pool's accumulated rate, not per position.")

    system.book_keeper.advance_time(CONFIG.start_time + timedelta(days=365))
    system.update_price(CONFIG.pool_id, to_wad(CONFIG.initial_price))
    rate = system.stability_fee_collector.collect(CONFIG.pool_id)
    print(f"Accumulated rate:   {from_ray(rate)}")
    show_position(system, "alice")


def step_07_surplus(system: CdpSystem):
    step_header(7, "Protocol Surplus",
        "Collected fees are minted to the system debt engine.")

    print(f"Surplus: {from_rad(system.system_debt_engine.surplus())}")


# ============================================================================
# PHASE 4: LIQUIDATION
# ============================================================================

def step_08_crash(system: CdpSystem):
    step_header(8, "The Price Crashes",
        "A falling price makes the position unsafe.")

    system.update_price(CONFIG.pool_id, to_wad(CONFIG.crash_price))
    show_position(system, "alice")


def step_09_liquidate(system: CdpSystem):
    step_header(9, "Liquidation",
        "bob repays debt and takes collateral at a discount; shortfall becomes bad debt.")

    adapter = system.adapters[CONFIG.pool_id]
    adapter.mint_external("bob", to_wad("10"))
    adapter.deposit("bob", "bob", to_wad("10"))
    system.book_keeper.adjust_position("bob", CONFIG.pool_id, "bob", "bob", "bob", to_wad("10"), to_wad("2"))
    system.book_keeper.whitelist("bob", system.strategy.address)

    result = system.liquidation_engine.liquidate("bob", CONFIG.pool_id, "alice", to_wad("1"))
    print(f"Debt share repaid:   {from_wad(result.debt_share_repaid)}")
    print(f"Collateral seized:   {from_wad(result.collateral_seized)}")
    print(f"Treasury fee:        {from_wad(result.treasury_fee)}")
    print(f"Bad debt written off:{from_rad(result.bad_debt_written_off)}")
    print(f"Full liquidation:    {result.full_liquidation}")
    show_position(system, "alice")

    settled = system.system_debt_engine.settle_all()
    print(f"\nSettled from surplus: {from_rad(settled)}")
    print(f"Remaining bad debt:   {from_rad(system.system_debt_engine.bad_debt())}")


def step_10_conservation(system: CdpSystem):
    step_header(10, "Conservation",
        "Issued stablecoin always equals debt plus unbacked stablecoin.")

    bk = system.book_keeper
    print(f"Issued:   {from_rad(bk.total_stablecoin_issued)}")
    print(f"Debt:     {from_rad(bk.total_debt_value)}")
    print(f"Unbacked: {from_rad(bk.total_unbacked_stablecoin)}")
    result = bk.verify_invariants()
    print(f"\nverify_invariants(): valid={result['valid']}")
    for item in result['discrepancies']:
        print(f"  {item}")
    print(f"Journal entries: {len(bk.journal)}")


def main():
    print("=" * 70)
    print("       CDP LEDGER TUTORIAL")
    print("=" * 70)

    system = step_01_system()
    wait_for_enter()
    step_02_pool(system)
    wait_for_enter()
    step_03_open_position(system)
    wait_for_enter()
    step_04_unsafe_draw(system)
    wait_for_enter()
    step_05_dust(system)
    wait_for_enter()
    step_06_time(system)
    wait_for_enter()
    step_07_surplus(system)
    wait_for_enter()
    step_08_crash(system)
    wait_for_enter()
    step_09_liquidate(system)
    wait_for_enter()
    step_10_conservation(system)

    print("\nNext steps:\n  - Run tests: pytest tests/")


if __name__ == "__main__":
    main()
