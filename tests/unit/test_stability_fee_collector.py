"""
test_stability_fee_collector.py - Unit tests for stability fee accrual

Tests:
- calculate_accumulated_rate (pure)
- collect(): rate, fee income, accumulation time
- Idempotency within one timestamp
- Global rate component and collect_many
"""

import pytest
from datetime import timedelta

from cdp_ledger import (
    calculate_accumulated_rate, StabilityFeeCollector,
    MissingRole, NotLive, STABILITY_FEE_COLLECTOR_ROLE,
    RAY, to_rad, to_ray, to_wad,
)
from tests.builders import START, POOL, OWNER, open_position
from tests.fake_view import make_pool


ONE_PERCENT_APY = 1000000000315522921573372069
YEAR = timedelta(seconds=31_536_000)


@pytest.fixture
def fee_system(system):
    system.add_collateral_pool(
        POOL, debt_ceiling=to_rad("1000000"), price=to_wad("2"), stability_fee_rate=ONE_PERCENT_APY
    )
    open_position(system, POOL, OWNER, to_wad("200"), to_wad("100"))
    return system


class TestCalculateAccumulatedRate:
    """PURE FUNCTION tests."""

    def test_zero_elapsed(self):
        pool = make_pool(stability_fee_rate=ONE_PERCENT_APY, debt_accumulated_rate=to_ray("1.2"))
        assert calculate_accumulated_rate(pool, 0) == to_ray("1.2")

    def test_compounds_on_current_rate(self):
        pool = make_pool(stability_fee_rate=2 * RAY, debt_accumulated_rate=to_ray("1.5"))
        assert calculate_accumulated_rate(pool, 3) == to_ray("12")

    def test_global_rate_is_additive(self):
        pool = make_pool(stability_fee_rate=RAY)
        assert calculate_accumulated_rate(pool, 2, global_stability_fee_rate=RAY) == 4 * RAY

    def test_one_year(self):
        pool = make_pool(stability_fee_rate=ONE_PERCENT_APY)
        rate = calculate_accumulated_rate(pool, 31_536_000)
        assert abs(rate - to_ray("1.01")) < 10 ** 12


class TestCollect:
    """Accrual through the ledger."""

    def test_collect_one_year(self, fee_system):
        bk = fee_system.book_keeper
        bk.advance_time(START + YEAR)
        rate = fee_system.stability_fee_collector.collect(POOL)
        pool = bk.pool(POOL)
        assert pool.debt_accumulated_rate == rate
        assert abs(rate - to_ray("1.01")) < 10 ** 12
        assert pool.last_accumulation_time == START + YEAR
        assert bk.stablecoin(fee_system.system_debt_engine.address) == to_wad("100") * (rate - RAY)
        assert bk.position(POOL, OWNER).debt_share == to_wad("100")
        assert bk.verify_invariants()['valid']

    def test_idempotent_within_timestamp(self, fee_system):
        bk = fee_system.book_keeper
        bk.advance_time(START + YEAR)
        collector = fee_system.stability_fee_collector
        first = collector.collect(POOL)
        journal_length = len(bk.journal)
        assert collector.collect(POOL) == first
        assert len(bk.journal) == journal_length

    def test_no_time_no_fee(self, fee_system):
        assert fee_system.stability_fee_collector.collect(POOL) == RAY
        assert fee_system.system_debt_engine.surplus() == 0

    def test_split_collection_matches_single(self, system):
        """Collecting twice over two periods compounds like one collection (within rounding)."""
        system.add_collateral_pool(
            POOL, debt_ceiling=to_rad("1000000"), price=to_wad("2"), stability_fee_rate=ONE_PERCENT_APY
        )
        single = system.book_keeper.clone()
        bk = system.book_keeper
        collector = system.stability_fee_collector
        bk.advance_time(START + YEAR / 2)
        collector.collect(POOL)
        bk.advance_time(START + YEAR)
        split_rate = collector.collect(POOL)

        other = StabilityFeeCollector(single, address="collector_2")
        single.advance_time(START + YEAR)
        single_rate = other.collect(POOL)
        assert abs(split_rate - single_rate) < 10 ** 9

    def test_global_rate(self, fee_system):
        collector = fee_system.stability_fee_collector
        collector.set_global_stability_fee_rate(1)
        fee_system.book_keeper.advance_time(START + timedelta(seconds=1))
        assert collector.collect(POOL) == ONE_PERCENT_APY + 1

    def test_negative_global_rate(self, fee_system):
        with pytest.raises(ValueError):
            fee_system.stability_fee_collector.set_global_stability_fee_rate(-1)

    def test_collect_many(self, fee_system):
        fee_system.add_collateral_pool("ETH", debt_ceiling=to_rad("1000"), stability_fee_rate=RAY)
        fee_system.book_keeper.advance_time(START + timedelta(seconds=10))
        rates = fee_system.stability_fee_collector.collect_many([POOL, "ETH"])
        assert rates["ETH"] == RAY
        assert rates[POOL] > RAY

    def test_redirect_income(self, fee_system):
        collector = fee_system.stability_fee_collector
        collector.set_system_debt_engine("treasury")
        fee_system.book_keeper.advance_time(START + timedelta(days=1))
        collector.collect(POOL)
        assert fee_system.book_keeper.stablecoin("treasury") > 0

    def test_caged_ledger(self, fee_system):
        bk = fee_system.book_keeper
        bk.cage("deployer")
        bk.advance_time(START + timedelta(days=1))
        with pytest.raises(NotLive):
            fee_system.stability_fee_collector.collect(POOL)
        assert bk.pool(POOL).last_accumulation_time == START

    def test_role_revoked(self, fee_system):
        collector = fee_system.stability_fee_collector
        fee_system.access_control.revoke_role(STABILITY_FEE_COLLECTOR_ROLE, collector.address)
        fee_system.book_keeper.advance_time(START + timedelta(days=1))
        with pytest.raises(MissingRole):
            collector.collect(POOL)
