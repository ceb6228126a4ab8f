"""
Rate Monotonicity Conformance Tests

INVARIANT: A pool's debt accumulated rate never decreases.

    ∀ pools p, ∀ t1 ≤ t2:
        rate(p, t1) ≤ rate(p, t2)

Accrual multiplies the rate by rpow(stability_fee_rate, elapsed) with
stability_fee_rate ≥ 1.0 RAY, so each collection can only raise it, and the
fee minted equals total_debt_share times the increase.
"""

from datetime import timedelta

from hypothesis import given, settings
from hypothesis import strategies as st

from cdp_ledger import RAY, calculate_accumulated_rate, rpow, to_rad, to_wad
from tests.builders import START, POOL, OWNER, build_system, open_position
from tests.fake_view import make_pool


MAX_RATE = 1_000_000_005_781_378_656_804_591_712


class TestRateMonotonicityProperties:
    """Property-based rate tests."""

    @given(
        st.integers(min_value=RAY, max_value=MAX_RATE),
        st.integers(min_value=RAY, max_value=10 * RAY),
        st.integers(min_value=0, max_value=10 * 365 * 24 * 3600),
    )
    @settings(max_examples=200)
    def test_accumulated_rate_never_decreases(self, fee_rate, current_rate, elapsed):
        """
        PROPERTY: calculate_accumulated_rate(pool, elapsed) ≥ current rate.
        """
        pool = make_pool(stability_fee_rate=fee_rate, debt_accumulated_rate=current_rate)
        assert calculate_accumulated_rate(pool, elapsed) >= current_rate

    @given(
        st.integers(min_value=RAY, max_value=MAX_RATE),
        st.integers(min_value=0, max_value=10 ** 8),
        st.integers(min_value=0, max_value=10 ** 8),
    )
    @settings(max_examples=200)
    def test_rpow_monotone_in_exponent(self, rate, n1, n2):
        """
        PROPERTY: For rate ≥ 1.0, rpow(rate, n) is non-decreasing in n.
        """
        low, high = sorted((n1, n2))
        assert rpow(rate, low) <= rpow(rate, high)

    @given(
        st.integers(min_value=RAY, max_value=MAX_RATE),
        st.lists(st.integers(min_value=0, max_value=30 * 24 * 3600), min_size=1, max_size=10),
    )
    @settings(max_examples=40, deadline=None)
    def test_collections_raise_rate_and_mint_fee(self, fee_rate, steps):
        """
        PROPERTY: Every collection leaves the rate at least where it was and
        mints exactly total_debt_share * increase to the system debt engine.
        """
        system = build_system()
        system.add_collateral_pool(
            POOL, debt_ceiling=to_rad("1000000"), price=to_wad("10"), stability_fee_rate=fee_rate
        )
        open_position(system, POOL, OWNER, to_wad("10"), to_wad("50"))
        bk = system.book_keeper
        now = START

        for seconds in steps:
            before = bk.pool(POOL)
            surplus_before = system.system_debt_engine.surplus()
            now += timedelta(seconds=seconds)
            bk.advance_time(now)
            rate = system.stability_fee_collector.collect(POOL)
            assert rate >= before.debt_accumulated_rate
            minted = system.system_debt_engine.surplus() - surplus_before
            assert minted == before.total_debt_share * (rate - before.debt_accumulated_rate)
            assert bk.verify_invariants()['valid']


class TestRateMonotonicityExamples:
    """Explicit examples."""

    def test_unit_fee_keeps_rate_constant(self):
        pool = make_pool(stability_fee_rate=RAY, debt_accumulated_rate=RAY)
        assert calculate_accumulated_rate(pool, 10 ** 9) == RAY

    def test_smallest_fee_visible_after_one_second(self):
        """A fee of 1 wei per second per RAY moves the rate by exactly 1 wei."""
        pool = make_pool(stability_fee_rate=RAY + 1, debt_accumulated_rate=RAY)
        assert calculate_accumulated_rate(pool, 1) == RAY + 1
