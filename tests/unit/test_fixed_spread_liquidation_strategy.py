"""
test_fixed_spread_liquidation_strategy.py - Unit tests for the fixed-spread strategy

Tests:
- clamp_debt_share (pure)
- calculate_liquidation_info (pure): plain, capped and dust-override paths
- Strategy executor: role gate, preview, slippage, flash lending switch
"""

import pytest

from cdp_ledger import (
    clamp_debt_share, calculate_liquidation_info, LiquidationInfo,
    InvalidLiquidationAmount, InvalidPrice, MissingRole, SlippageExceeded,
    RAY, to_rad, to_ray, to_wad,
)
from tests.builders import POOL, OWNER, LIQUIDATOR, DexSwapCallback


JUST_UNDER_PAR = 999999999999999999 * 10 ** 9


def _info(**overrides):
    params = dict(
        position_debt_share=to_wad("1"),
        position_collateral=to_wad("1"),
        debt_accumulated_rate=RAY,
        debt_share_to_repay=to_wad("0.5"),
        collateral_price=JUST_UNDER_PAR,
        liquidator_incentive_bps=10250,
        treasury_fees_bps=5000,
        debt_floor=0,
    )
    params.update(overrides)
    return calculate_liquidation_info(**params)


class TestClampDebtShare:
    """Close-factor cap."""

    def test_oversized_request_is_clamped(self):
        assert clamp_debt_share(to_wad("1"), 2 ** 256 - 1, 5000) == to_wad("0.5")

    def test_small_request_unchanged(self):
        assert clamp_debt_share(to_wad("1"), to_wad("0.1"), 5000) == to_wad("0.1")

    def test_full_close_factor(self):
        assert clamp_debt_share(to_wad("1"), to_wad("2"), 10000) == to_wad("1")

    def test_zero_request(self):
        with pytest.raises(InvalidLiquidationAmount):
            clamp_debt_share(to_wad("1"), 0, 5000)

    def test_cap_rounding_to_zero_allows_whole_share(self):
        assert clamp_debt_share(1, 1, 5000) == 1
        assert clamp_debt_share(1, 2 ** 256 - 1, 5000) == 1

    def test_no_debt(self):
        with pytest.raises(InvalidLiquidationAmount):
            clamp_debt_share(0, 1, 5000)


class TestCalculateLiquidationInfo:
    """PURE FUNCTION tests."""

    def test_just_under_par(self):
        info = _info()
        assert info == LiquidationInfo(
            debt_share_to_repay=to_wad("0.5"),
            debt_value_to_repay=to_rad("0.5"),
            collateral_to_seize=512500000000000000,
            liquidator_incentive=to_wad("0.0125"),
            treasury_fee=to_wad("0.00625"),
            collateral_to_liquidator=to_wad("0.50625"),
            full_liquidation=False,
        )

    def test_half_price_caps_at_locked_collateral(self):
        info = _info(collateral_price=to_ray("0.5"))
        assert info.full_liquidation
        assert info.collateral_to_seize == to_wad("1")
        assert info.debt_share_to_repay == 487804878048780487
        assert info.debt_value_to_repay == 487804878048780487 * RAY
        assert info.liquidator_incentive == 24390243902439025
        assert info.treasury_fee == 12195121951219512
        assert info.collateral_to_liquidator == 987804878048780488

    def test_fee_split_adds_up(self):
        info = _info(collateral_price=to_ray("0.7"), treasury_fees_bps=3000)
        assert info.collateral_to_liquidator + info.treasury_fee == info.collateral_to_seize
        assert info.treasury_fee == info.liquidator_incentive * 3000 // 10000

    def test_rate_scales_debt_value(self):
        info = _info(debt_accumulated_rate=to_ray("1.1"), collateral_price=to_ray("0.5"),
                     position_collateral=to_wad("10"))
        assert info.debt_value_to_repay == to_wad("0.5") * to_ray("1.1")
        assert not info.full_liquidation

    def test_remaining_debt_below_floor_repays_everything(self):
        info = _info(position_collateral=to_wad("10"), collateral_price=RAY, debt_floor=to_rad("0.6"))
        assert info.full_liquidation
        assert info.debt_share_to_repay == to_wad("1")
        assert info.collateral_to_seize == to_wad("1.025")

    def test_remaining_collateral_below_floor_takes_everything(self):
        info = _info(debt_floor=to_rad("0.6"))
        assert info.full_liquidation
        assert info.collateral_to_seize == to_wad("1")
        assert info.debt_share_to_repay < to_wad("1")

    def test_full_take_never_repays_more_than_owed(self):
        info = _info(
            position_debt_share=to_wad("0.1"),
            debt_share_to_repay=to_wad("0.05"),
            collateral_price=to_ray("10"),
            debt_floor=to_rad("10"),
        )
        assert info.full_liquidation
        assert info.debt_share_to_repay == to_wad("0.1")
        assert info.collateral_to_seize == to_wad("0.01025")

    def test_dust_collateral_seized_with_nothing_to_repay(self):
        info = _info(position_collateral=1, debt_share_to_repay=to_wad("1"), collateral_price=RAY)
        assert info.full_liquidation
        assert info.collateral_to_seize == 1
        assert info.debt_share_to_repay == 0
        assert info.debt_value_to_repay == 0
        assert info.collateral_to_liquidator == 1

    def test_zero_repay_needs_full_seizure(self):
        """A partial seizure always repays at least one share."""
        info = _info(debt_share_to_repay=1, collateral_price=RAY, position_collateral=to_wad("10"))
        assert not info.full_liquidation
        assert info.debt_share_to_repay == 1
        assert info.collateral_to_seize == 1

    def test_no_incentive(self):
        info = _info(liquidator_incentive_bps=10000, collateral_price=RAY, position_collateral=to_wad("2"))
        assert info.collateral_to_seize == to_wad("0.5")
        assert info.liquidator_incentive == 0
        assert info.treasury_fee == 0


class TestStrategyExecutor:
    """The stateful half of the strategy."""

    def test_preview_matches_pure_function(self, just_under_par_system):
        info = just_under_par_system.strategy.preview(POOL, OWNER, to_wad("0.5"))
        assert info == _info()

    def test_preview_clamps(self, just_under_par_system):
        info = just_under_par_system.strategy.preview(POOL, OWNER, 2 ** 256 - 1)
        assert info.debt_share_to_repay == to_wad("0.5")

    def test_preview_empty_position(self, just_under_par_system):
        with pytest.raises(InvalidLiquidationAmount):
            just_under_par_system.strategy.preview(POOL, "nobody", to_wad("1"))

    def test_preview_stale_feed(self, just_under_par_system):
        just_under_par_system.price_feeds[POOL].pause()
        with pytest.raises(InvalidPrice):
            just_under_par_system.strategy.preview(POOL, OWNER, to_wad("0.5"))

    def test_execute_requires_engine_role(self, just_under_par_system):
        strategy = just_under_par_system.strategy
        with pytest.raises(MissingRole):
            strategy.execute(LIQUIDATOR, POOL, OWNER, to_wad("0.5"), LIQUIDATOR, LIQUIDATOR)

    def test_execute_directly_books_bad_debt_until_netted(self, just_under_par_system):
        """Without the engine's netting step the repaid debt sits as bad debt next to the payment."""
        system = just_under_par_system
        engine = system.system_debt_engine
        system.strategy.execute(
            system.liquidation_engine.address, POOL, OWNER, to_wad("0.5"), LIQUIDATOR, LIQUIDATOR
        )
        assert engine.bad_debt() == to_rad("0.5")
        assert engine.surplus() == to_rad("0.5")
        assert system.book_keeper.collateral_token(POOL, engine.address) == to_wad("0.00625")
        assert system.book_keeper.verify_invariants()['valid']

    def test_slippage(self, just_under_par_system):
        system = just_under_par_system
        with pytest.raises(SlippageExceeded):
            system.strategy.execute(
                system.liquidation_engine.address, POOL, OWNER, to_wad("0.5"), LIQUIDATOR, LIQUIDATOR,
                min_collateral_expected=to_wad("0.50625") + 1,
            )

    def test_flash_disabled_skips_callback(self, just_under_par_system):
        system = just_under_par_system
        system.strategy.set_flash_lending_enabled(False)
        callback = DexSwapCallback(system.book_keeper, POOL, to_wad("1"))
        system.strategy.execute(
            system.liquidation_engine.address, POOL, OWNER, to_wad("0.5"), LIQUIDATOR, LIQUIDATOR,
            flash_callback=callback, data=b"swap",
        )
        assert callback.calls == []

    def test_empty_data_skips_callback(self, just_under_par_system):
        system = just_under_par_system
        callback = DexSwapCallback(system.book_keeper, POOL, to_wad("1"))
        system.strategy.execute(
            system.liquidation_engine.address, POOL, OWNER, to_wad("0.5"), LIQUIDATOR, LIQUIDATOR,
            flash_callback=callback,
        )
        assert callback.calls == []
