"""
Invariant Preservation Conformance Tests

INVARIANT: Every position that is not being liquidated is safe.

    ∀ sequence of adjust_position calls at a fixed price, after each call:
        ∀ positions p:
            p.locked_collateral * pool.price_with_safety_margin
                ≥ p.debt_share * pool.debt_accumulated_rate

    and every non-zero debt clears the debt floor.

Calls that would break the invariant are rejected by the ledger's guards;
rejected calls leave no trace.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from cdp_ledger import (
    LedgerError, DebtFloorViolated, is_position_safe, clears_debt_floor, to_rad, to_wad,
)
from tests.builders import POOL, build_system, add_scenario_pool, ledger_state


OWNERS = ["alice", "carol", "dave"]
UNIT = 10 ** 16  # 0.01 collateral / debt share


# =============================================================================
# STRATEGIES FOR PROPERTY-BASED TESTING
# =============================================================================

@st.composite
def adjustment(draw):
    """A signed (owner, delta_collateral, delta_debt_share) triple."""
    owner = draw(st.sampled_from(OWNERS))
    delta_collateral = draw(st.integers(min_value=-300, max_value=300)) * UNIT
    delta_debt_share = draw(st.integers(min_value=-300, max_value=300)) * UNIT
    return owner, delta_collateral, delta_debt_share


def _system_with_balances(debt_floor: str):
    system = build_system()
    add_scenario_pool(system, price="1.5", debt_floor=debt_floor)
    adapter = system.adapters[POOL]
    for owner in OWNERS:
        adapter.mint_external(owner, to_wad("10"))
        adapter.deposit(owner, owner, to_wad("10"))
    return system


class TestInvariantPreservationProperties:
    """Property-based safety tests over random adjustments."""

    @given(
        st.lists(adjustment(), min_size=1, max_size=25),
        st.sampled_from(["0", "0.5", "1"]),
    )
    @settings(max_examples=60, deadline=None)
    def test_positions_stay_safe(self, adjustments, debt_floor):
        """
        PROPERTY: After every call, accepted or rejected, all positions are safe
        and clear the debt floor.
        """
        system = _system_with_balances(debt_floor)
        bk = system.book_keeper

        for owner, delta_collateral, delta_debt_share in adjustments:
            before = ledger_state(bk, system.adapters)
            try:
                bk.adjust_position(owner, POOL, owner, owner, owner, delta_collateral, delta_debt_share)
            except LedgerError:
                assert ledger_state(bk, system.adapters) == before

            pool = bk.pool(POOL)
            for position in bk.positions(POOL).values():
                assert is_position_safe(position, pool)
                assert clears_debt_floor(position, pool)
            result = bk.verify_invariants()
            assert result['valid'], result['discrepancies']


class TestInvariantPreservationExamples:
    """Explicit guard examples."""

    def test_draw_to_exact_limit_accepted(self):
        system = _system_with_balances("0")
        bk = system.book_keeper
        bk.adjust_position("alice", POOL, "alice", "alice", "alice", to_wad("10"), to_wad("15"))
        assert bk.position_snapshot(POOL, "alice").collateral_value == to_rad("15")

    def test_dust_draw_rejected(self):
        system = _system_with_balances("1")
        bk = system.book_keeper
        before = ledger_state(bk)
        with pytest.raises(DebtFloorViolated):
            bk.adjust_position("alice", POOL, "alice", "alice", "alice", to_wad("10"), to_wad("0.5"))
        assert ledger_state(bk) == before
