"""
conftest.py - Shared pytest fixtures for CDP ledger tests

Provides common fixtures used across unit, conformance and functional tests:
- Bare components (role registry, book keeper) for ledger-level tests
- Wired systems (empty, with a scenario pool, with an open position)
- The reference liquidation setups

Builders live in tests/builders.py so hypothesis tests can call them directly.
"""

import pytest

from cdp_ledger import (
    AccessControlConfig, BookKeeper, SimplePriceFeed, TokenAdapter,
    PRICE_ORACLE_ROLE, RAY, to_rad, to_wad,
)

from tests.builders import (
    START, POOL, OWNER, LIQUIDATOR,
    build_system, add_scenario_pool, open_position, prepare_liquidator,
    scenario_system,
)


# =============================================================================
# BARE LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def access_control():
    """Role registry owned by the deployer."""
    return AccessControlConfig(owner="deployer")


@pytest.fixture
def book_keeper(access_control):
    """Empty ledger at the standard start time."""
    return BookKeeper(access_control, name="test", initial_time=START, verbose=False)


@pytest.fixture
def pooled_book_keeper(book_keeper):
    """
    Ledger with one pool priced at 1.0 and alice holding 10 free collateral.

    The test account 'oracle' holds PRICE_ORACLE_ROLE and 'adapter' holds
    ADAPTER_ROLE, so tests can drive prices and balances by hand.
    """
    feed = SimplePriceFeed(book_keeper, price=to_wad("1"))
    adapter = TokenAdapter(book_keeper, POOL, address="adapter")
    book_keeper.pool_config.init_collateral_pool(
        pool_id=POOL,
        debt_ceiling=to_rad("1000"),
        debt_floor=to_rad("0"),
        price_feed=feed,
        liquidation_ratio=RAY,
        stability_fee_rate=RAY,
        adapter=adapter,
    )
    book_keeper.access_control.grant_role(PRICE_ORACLE_ROLE, "oracle")
    book_keeper.pool_config.set_price_with_safety_margin("oracle", POOL, RAY)
    book_keeper.add_collateral("adapter", POOL, OWNER, to_wad("10"))
    return book_keeper


# =============================================================================
# SYSTEM FIXTURES
# =============================================================================

@pytest.fixture
def system():
    """Wired system with no pools."""
    return build_system()


@pytest.fixture
def pool_system(system):
    """System with the scenario pool at price 2."""
    add_scenario_pool(system)
    return system


@pytest.fixture
def position_system(pool_system):
    """Scenario pool with alice at 1.0 collateral / 1.0 debt and a funded liquidator."""
    open_position(pool_system, POOL, OWNER, to_wad("1"), to_wad("1"))
    prepare_liquidator(pool_system, LIQUIDATOR, to_wad("1"))
    return pool_system


# =============================================================================
# LIQUIDATION SCENARIO FIXTURES
# =============================================================================

@pytest.fixture
def just_under_par_system():
    """Price drops to 0.999999999999999999: slightly unsafe, fully covered."""
    return scenario_system("0.999999999999999999")


@pytest.fixture
def half_price_system():
    """Price halves: seizure cannot cover the debt plus incentive."""
    return scenario_system("0.5")
