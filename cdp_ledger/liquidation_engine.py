"""
liquidation_engine.py - Liquidation entry point

Detects unsafe positions and resolves them through the pool's liquidation
strategy, one position per call. Every call is a single atomic unit of work:
the fee collection, the strategy's seizure and payment, the flash callback and
the bad-debt bookkeeping all persist together or not at all.

State machine of one call:
    1. live check, positive request
    2. collect the pool's stability fee (optional, on by default)
    3. refuse stale prices (optional, on by default)        InvalidPrice
    4. safety check                                          PositionIsSafe
    5. strategy.execute()
    6. postconditions: debt share fell (or all collateral    StrategyMisbehaved
       was seized), payment arrived
    7. net the payment against the confiscated debt
    8. write off remaining debt of a position left without collateral

A position that stays unsafe after one call is liquidated gradually: every
further call re-runs the whole machine from step 1.
"""

from __future__ import annotations
from dataclasses import dataclass
import logging
from typing import Optional

from .book_keeper import BookKeeper
from .config import get_settings
from .core import (
    LIQUIDATION_ENGINE_ROLE, Address, FlashLiquidationCallback, PoolId,
    InvalidLiquidationAmount, InvalidPoolParameter, InvalidPrice, NotLive,
    PositionIsSafe, StrategyMisbehaved,
    is_position_safe,
)
from .fixed_point import Rad, Wad
from .price_oracle import PriceOracle
from .stability_fee_collector import StabilityFeeCollector
from .system_debt_engine import SystemDebtEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LiquidationResult:
    """
    Outcome of one liquidation call.

    Attributes:
        debt_share_repaid: Debt share the liquidator repaid (WAD)
        debt_value_repaid: Stablecoin the liquidator paid (RAD)
        collateral_seized: Collateral removed from the position (WAD)
        liquidator_incentive: Seized collateral above par (WAD)
        treasury_fee: Collateral paid to the system debt engine (WAD)
        collateral_to_liquidator: Collateral paid to the recipient (WAD)
        bad_debt_written_off: Remaining debt moved to system bad debt (RAD)
        position_closed: True when the position holds nothing afterwards
        full_liquidation: True when a dust override applied
    """
    pool_id: PoolId
    position_address: Address
    liquidator: Address
    debt_share_repaid: Wad
    debt_value_repaid: Rad
    collateral_seized: Wad
    liquidator_incentive: Wad
    treasury_fee: Wad
    collateral_to_liquidator: Wad
    bad_debt_written_off: Rad
    position_closed: bool
    full_liquidation: bool


class LiquidationEngine:
    """
    Liquidation entry point for all pools.

    Example:
        engine = LiquidationEngine(book_keeper, system_debt_engine, price_oracle, collector)
        book_keeper.whitelist("bob", strategy.address)   # let the strategy pull bob's stablecoin
        result = engine.liquidate("bob", "WBNB", "alice", to_wad("0.5"))
    """

    def __init__(
        self,
        book_keeper: BookKeeper,
        system_debt_engine: SystemDebtEngine,
        price_oracle: Optional[PriceOracle] = None,
        stability_fee_collector: Optional[StabilityFeeCollector] = None,
        address: Optional[Address] = None,
        collect_fees: Optional[bool] = None,
        check_price: Optional[bool] = None,
    ):
        settings = get_settings()
        self.book_keeper = book_keeper
        self.system_debt_engine = system_debt_engine
        self.price_oracle = price_oracle
        self.stability_fee_collector = stability_fee_collector
        self.address = address or settings.LIQUIDATION_ENGINE_ADDRESS
        self.collect_fees = settings.COLLECT_FEES_BEFORE_LIQUIDATION if collect_fees is None else collect_fees
        self.check_price = settings.CHECK_PRICE_BEFORE_LIQUIDATION if check_price is None else check_price
        self.live = True
        book_keeper.access_control.grant_role(LIQUIDATION_ENGINE_ROLE, self.address)

    def cage(self) -> None:
        self.live = False
        logger.info("liquidation engine %s caged", self.address)

    def uncage(self) -> None:
        self.live = True

    def liquidate(
        self,
        caller: Address,
        pool_id: PoolId,
        position_address: Address,
        debt_share_to_repay: Wad,
        min_collateral_expected: Wad = Wad(0),
        collateral_recipient: Optional[Address] = None,
        flash_callback: Optional[FlashLiquidationCallback] = None,
        data: bytes = b"",
    ) -> LiquidationResult:
        """
        Liquidate part (or all) of an unsafe position.

        Args:
            caller: The liquidator; pays the debt value in stablecoin
            pool_id: Pool of the position
            position_address: Owner of the position
            debt_share_to_repay: Requested repay amount; clamped, never rejected for size
            min_collateral_expected: Least collateral the liquidator accepts
            collateral_recipient: Receives the liquidator's collateral (default: caller)
            flash_callback: Invoked with the collateral before payment is pulled
            data: Opaque payload for the callback; empty disables the callback

        Returns:
            LiquidationResult

        Raises:
            NotLive, InvalidLiquidationAmount, InvalidPrice, PositionIsSafe,
            SlippageExceeded, FlashLiquidationFailed, InsufficientFunds,
            StrategyMisbehaved
        """
        if not self.live:
            raise NotLive(f"Liquidation engine {self.address} is caged")
        if debt_share_to_repay <= 0:
            raise InvalidLiquidationAmount(f"Debt share to repay must be positive, got {debt_share_to_repay}")
        recipient = collateral_recipient or caller
        book_keeper = self.book_keeper

        with book_keeper.atomic():
            if self.collect_fees and self.stability_fee_collector is not None:
                self.stability_fee_collector.collect(pool_id)
            if self.check_price and self.price_oracle is not None:
                _, stale = self.price_oracle.get_price_with_safety_margin(pool_id)
                if stale:
                    raise InvalidPrice(f"Price for {pool_id} is stale")

            pool = book_keeper.pool(pool_id)
            if pool.strategy is None:
                raise InvalidPoolParameter(f"Pool {pool_id} has no liquidation strategy")
            before = book_keeper.position(pool_id, position_address)
            if is_position_safe(before, pool):
                raise PositionIsSafe(f"Position {position_address} in {pool_id} is safe")

            surplus_before = self.system_debt_engine.surplus()
            info = pool.strategy.execute(
                self.address, pool_id, position_address, debt_share_to_repay,
                caller, recipient, min_collateral_expected, flash_callback, data,
            )

            after = book_keeper.position(pool_id, position_address)
            seized_all = after.locked_collateral == 0 < before.locked_collateral
            if after.debt_share >= before.debt_share and not seized_all:
                raise StrategyMisbehaved(f"Strategy left debt of {position_address} at {after.debt_share}")
            received = self.system_debt_engine.surplus() - surplus_before
            if received < info.debt_value_to_repay:
                raise StrategyMisbehaved(
                    f"System debt engine received {received}, expected {info.debt_value_to_repay}"
                )

            # The confiscation booked the repaid debt as bad debt; the payment covers it
            if info.debt_value_to_repay:
                self.system_debt_engine.settle_system_bad_debt(info.debt_value_to_repay)

            bad_debt = Rad(0)
            if after.locked_collateral == 0 and after.debt_share > 0:
                bad_debt = book_keeper.confiscate_position(
                    self.address, pool_id, position_address,
                    self.address, self.system_debt_engine.address,
                    Wad(0), Wad(-after.debt_share),
                )
                logger.info(
                    "wrote off %d bad debt of %s in %s", bad_debt, position_address, pool_id
                )

        result = LiquidationResult(
            pool_id=pool_id,
            position_address=position_address,
            liquidator=caller,
            debt_share_repaid=info.debt_share_to_repay,
            debt_value_repaid=info.debt_value_to_repay,
            collateral_seized=info.collateral_to_seize,
            liquidator_incentive=info.liquidator_incentive,
            treasury_fee=info.treasury_fee,
            collateral_to_liquidator=info.collateral_to_liquidator,
            bad_debt_written_off=bad_debt,
            position_closed=book_keeper.position(pool_id, position_address).is_empty(),
            full_liquidation=info.full_liquidation,
        )
        logger.info(
            "liquidation of %s in %s by %s: repaid %d, bad debt %d",
            position_address, pool_id, caller, result.debt_value_repaid, bad_debt,
        )
        return result
