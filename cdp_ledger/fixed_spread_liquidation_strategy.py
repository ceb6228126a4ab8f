"""
fixed_spread_liquidation_strategy.py - Fixed-spread partial liquidation

Liquidators repay part of an unsafe position's debt and receive its collateral
at a fixed discount (the liquidator incentive), part of which is routed to the
protocol treasury.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASS (explicit result):
   - LiquidationInfo: every amount one liquidation call moves

2. PURE CALCULATION FUNCTIONS:
   - clamp_debt_share(): close-factor cap on the requested repay amount
   - calculate_liquidation_info(): seizure, dust override and fee split
   - Take all inputs explicitly as parameters, no ledger access

3. EXECUTOR (FixedSpreadLiquidationStrategy.execute):
   - Reads pool, position and price once
   - Calls the pure functions
   - Applies the result through the BookKeeper inside one atomic block

Key Formulas:
    debt_value           = debt_share * rate                          (RAD)
    collateral_to_seize  = debt_value * incentive_bps / 10000 / price (WAD)
    liquidator_incentive = seize - seize * 10000 / incentive_bps
    treasury_fee         = liquidator_incentive * treasury_bps / 10000
    to_liquidator        = seize - treasury_fee

Dust override: when the seizure would exceed the locked collateral, or leave
collateral worth less than the debt floor, the whole collateral is taken and
the repay amount recomputed from it; when the repayment would leave debt under
the debt floor, the whole debt is repaid. Both overrides may exceed the close
factor. Collateral worth less than one debt share is seized with nothing to
repay, leaving the whole debt to the bad-debt write-off.
"""

from __future__ import annotations
from dataclasses import dataclass
import logging
from typing import Optional

from .book_keeper import BookKeeper
from .config import get_settings
from .core import (
    LIQUIDATION_ENGINE_ROLE, Address, FlashLiquidationCallback, PoolId,
    FlashLiquidationFailed, InsufficientFunds, InvalidLiquidationAmount, SlippageExceeded,
)
from .fixed_point import (
    BPS, Rad, Ray, Wad, debt_share_for_value, debt_value, rad_to_wad_down, rdiv, rmul, wad_to_rad,
)
from .price_oracle import PriceOracle, feed_collateral_price

logger = logging.getLogger(__name__)


# ============================================================================
# FROZEN DATACLASS
# ============================================================================

@dataclass(frozen=True, slots=True)
class LiquidationInfo:
    """
    Amounts moved by one liquidation call.

    Attributes:
        debt_share_to_repay: Debt share removed from the position (WAD)
        debt_value_to_repay: Stablecoin the liquidator pays (RAD)
        collateral_to_seize: Collateral removed from the position (WAD)
        liquidator_incentive: Portion of the seizure above par (WAD)
        treasury_fee: Portion of the incentive paid to the treasury (WAD)
        collateral_to_liquidator: Collateral the liquidator receives (WAD)
        full_liquidation: True when a dust override applied
    """
    debt_share_to_repay: Wad
    debt_value_to_repay: Rad
    collateral_to_seize: Wad
    liquidator_incentive: Wad
    treasury_fee: Wad
    collateral_to_liquidator: Wad
    full_liquidation: bool = False


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def clamp_debt_share(position_debt_share: Wad, requested: Wad, close_factor_bps: int) -> Wad:
    """
    PURE FUNCTION - cap a requested repay amount at the close factor.

    Oversized requests are clamped, not rejected. When the close-factor share of a
    position rounds to zero the whole debt share may be repaid.

    Raises:
        InvalidLiquidationAmount: If the request is zero or the position has no debt
    """
    if requested <= 0:
        raise InvalidLiquidationAmount(f"Debt share to repay must be positive, got {requested}")
    if position_debt_share <= 0:
        raise InvalidLiquidationAmount(f"Nothing to repay on a debt share of {position_debt_share}")
    max_debt_share = position_debt_share * close_factor_bps // BPS
    if max_debt_share == 0:
        max_debt_share = position_debt_share
    return Wad(min(requested, max_debt_share))


def _collateral_for(value: Rad, incentive_bps: int, price: Ray) -> Wad:
    # Seized collateral rounds down: the position keeps the remainder
    with_incentive = Rad(value * incentive_bps // BPS)
    return rad_to_wad_down(Rad(rdiv(with_incentive, price)))


def _debt_value_for(collateral: Wad, incentive_bps: int, price: Ray) -> Rad:
    # Exact collateral value, then the incentive discount rounds down
    return Rad(rmul(wad_to_rad(collateral), price) * BPS // incentive_bps)


def calculate_liquidation_info(
    position_debt_share: Wad,
    position_collateral: Wad,
    debt_accumulated_rate: Ray,
    debt_share_to_repay: Wad,
    collateral_price: Ray,
    liquidator_incentive_bps: int,
    treasury_fees_bps: int,
    debt_floor: Rad,
) -> LiquidationInfo:
    """
    PURE FUNCTION - All inputs explicit.

    Args:
        position_debt_share: Debt share of the position before liquidation (WAD)
        position_collateral: Locked collateral before liquidation (WAD)
        debt_accumulated_rate: Pool rate (RAY)
        debt_share_to_repay: Close-factor-clamped repay request (WAD)
        collateral_price: Collateral price in stablecoin, no safety margin (RAY)
        liquidator_incentive_bps: Incentive, >= 10000
        treasury_fees_bps: Treasury share of the incentive
        debt_floor: Pool debt floor (RAD)

    Returns:
        LiquidationInfo with all amounts
    """
    rate = debt_accumulated_rate
    price = collateral_price
    position_value = debt_value(position_debt_share, rate)
    repay_value = debt_value(debt_share_to_repay, rate)
    collateral = _collateral_for(repay_value, liquidator_incentive_bps, price)
    full_liquidation = False

    remaining_value = rmul(wad_to_rad(position_collateral - collateral), price)
    if collateral > position_collateral or remaining_value < debt_floor:
        # Take everything; repay what the collateral covers
        full_liquidation = True
        collateral = position_collateral
        repay_value = _debt_value_for(collateral, liquidator_incentive_bps, price)
        if repay_value > position_value:
            repay_value = position_value
            collateral = _collateral_for(repay_value, liquidator_incentive_bps, price)
    elif 0 < position_value - repay_value < debt_floor:
        # Repay everything rather than leave dust
        full_liquidation = True
        repay_value = position_value
        collateral = _collateral_for(repay_value, liquidator_incentive_bps, price)
        if collateral > position_collateral:
            collateral = position_collateral
            repay_value = _debt_value_for(collateral, liquidator_incentive_bps, price)

    # Shares leaving the debtor round down; the rest is written off as bad debt
    debt_share = debt_share_for_value(repay_value, rate)
    if debt_share == 0 and collateral < position_collateral:
        raise InvalidLiquidationAmount(
            f"Collateral {collateral} covers less than one debt share at rate {rate}"
        )
    repay_value = debt_value(debt_share, rate)

    liquidator_incentive = collateral - collateral * BPS // liquidator_incentive_bps
    treasury_fee = liquidator_incentive * treasury_fees_bps // BPS

    return LiquidationInfo(
        debt_share_to_repay=Wad(debt_share),
        debt_value_to_repay=repay_value,
        collateral_to_seize=Wad(collateral),
        liquidator_incentive=Wad(liquidator_incentive),
        treasury_fee=Wad(treasury_fee),
        collateral_to_liquidator=Wad(collateral - treasury_fee),
        full_liquidation=full_liquidation,
    )


# ============================================================================
# EXECUTOR
# ============================================================================

class FixedSpreadLiquidationStrategy:
    """
    Liquidation strategy paying liquidators a fixed spread in collateral.

    Holds LIQUIDATION_ENGINE_ROLE on the ledger so it can confiscate; only
    holders of the same role (the liquidation engine) may call execute().
    """

    def __init__(
        self,
        book_keeper: BookKeeper,
        price_oracle: PriceOracle,
        system_debt_engine: Optional[Address] = None,
        address: Optional[Address] = None,
        flash_lending_enabled: Optional[bool] = None,
    ):
        settings = get_settings()
        self.book_keeper = book_keeper
        self.price_oracle = price_oracle
        self.system_debt_engine = system_debt_engine or settings.SYSTEM_DEBT_ENGINE_ADDRESS
        self.address = address or settings.FIXED_SPREAD_STRATEGY_ADDRESS
        self.flash_lending_enabled = (
            settings.FLASH_LENDING_ENABLED if flash_lending_enabled is None else flash_lending_enabled
        )
        book_keeper.access_control.grant_role(LIQUIDATION_ENGINE_ROLE, self.address)

    def set_flash_lending_enabled(self, enabled: bool) -> None:
        self.flash_lending_enabled = enabled

    def preview(self, pool_id: PoolId, position_address: Address, debt_share_to_repay: Wad) -> LiquidationInfo:
        """Compute what execute() would move without touching the ledger."""
        pool = self.book_keeper.pool(pool_id)
        position = self.book_keeper.position(pool_id, position_address)
        if position.debt_share == 0:
            raise InvalidLiquidationAmount(f"Position {position_address} in {pool_id} has no debt")
        if position.locked_collateral == 0:
            raise InvalidLiquidationAmount(f"Position {position_address} in {pool_id} has no collateral")

        debt_share = clamp_debt_share(position.debt_share, debt_share_to_repay, pool.close_factor_bps)
        price = feed_collateral_price(
            pool.price_feed, self.price_oracle.stablecoin_reference_price, pool_id
        )
        return calculate_liquidation_info(
            position_debt_share=position.debt_share,
            position_collateral=position.locked_collateral,
            debt_accumulated_rate=pool.debt_accumulated_rate,
            debt_share_to_repay=debt_share,
            collateral_price=price,
            liquidator_incentive_bps=pool.liquidator_incentive_bps,
            treasury_fees_bps=pool.treasury_fees_bps,
            debt_floor=pool.debt_floor,
        )

    def execute(
        self,
        caller: Address,
        pool_id: PoolId,
        position_address: Address,
        debt_share_to_repay: Wad,
        liquidator: Address,
        collateral_recipient: Address,
        min_collateral_expected: Wad = Wad(0),
        flash_callback: Optional[FlashLiquidationCallback] = None,
        data: bytes = b"",
    ) -> LiquidationInfo:
        """
        Seize collateral from an unsafe position and collect repayment.

        Sequence:
            1. Confiscate collateral and debt; collateral to this strategy,
               debt recorded as bad debt of the system debt engine
            2. Pay the liquidator's collateral to `collateral_recipient`
            3. Flash callback (if enabled, supplied and `data` non-empty)
            4. Pull the debt value in stablecoin from `liquidator`
            5. Pay the treasury fee in collateral to the system debt engine

        Raises:
            MissingRole: If the caller is not a liquidation engine
            InvalidLiquidationAmount: Nothing to repay after clamping
            InvalidPrice: Feed stale, paused or zero
            SlippageExceeded: Liquidator would receive less than min_collateral_expected
            FlashLiquidationFailed: Callback reported failure or did not fund repayment
            InsufficientFunds: Liquidator cannot pay
        """
        self.book_keeper.access_control.require_role(LIQUIDATION_ENGINE_ROLE, caller)
        info = self.preview(pool_id, position_address, debt_share_to_repay)
        if info.collateral_to_liquidator < min_collateral_expected:
            raise SlippageExceeded(
                f"Liquidator would receive {info.collateral_to_liquidator}, "
                f"expected at least {min_collateral_expected}"
            )

        book_keeper = self.book_keeper
        with book_keeper.atomic():
            book_keeper.confiscate_position(
                self.address, pool_id, position_address,
                self.address, self.system_debt_engine,
                Wad(-info.collateral_to_seize), Wad(-info.debt_share_to_repay),
            )
            book_keeper.move_collateral(
                self.address, pool_id, self.address, collateral_recipient,
                info.collateral_to_liquidator,
            )

            flash = self.flash_lending_enabled and bool(data) and flash_callback is not None
            if flash:
                ok = flash_callback.on_flash_liquidate(
                    liquidator, info.debt_value_to_repay, info.collateral_to_liquidator, data
                )
                if not ok:
                    raise FlashLiquidationFailed(f"Flash liquidation callback of {liquidator} failed")

            try:
                book_keeper.move_stablecoin(
                    self.address, liquidator, self.system_debt_engine, info.debt_value_to_repay
                )
            except InsufficientFunds as exc:
                if flash:
                    raise FlashLiquidationFailed(
                        f"Flash liquidation callback left {liquidator} unable to repay "
                        f"{info.debt_value_to_repay}"
                    ) from exc
                raise

            if info.treasury_fee:
                book_keeper.move_collateral(
                    self.address, pool_id, self.address, self.system_debt_engine, info.treasury_fee
                )

        logger.info(
            "liquidated %s in %s: repaid share %d, seized %d, treasury fee %d",
            position_address, pool_id, info.debt_share_to_repay,
            info.collateral_to_seize, info.treasury_fee,
        )
        return info
