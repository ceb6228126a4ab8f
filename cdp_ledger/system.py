"""
system.py - Wiring of a complete CDP system

create_system() builds every component around one ledger, grants each the
roles it needs, and returns them together. Pools are added afterwards with
CdpSystem.add_collateral_pool(), which also creates the pool's price feed and
custody adapter.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from .access_control import AccessControlConfig
from .book_keeper import BookKeeper
from .config import Settings, get_settings
from .core import CollateralPool, PoolId
from .fixed_point import BPS, RAY, Rad, Ray, Wad
from .fixed_spread_liquidation_strategy import FixedSpreadLiquidationStrategy
from .liquidation_engine import LiquidationEngine
from .price_oracle import PriceOracle, SimplePriceFeed
from .stability_fee_collector import StabilityFeeCollector
from .system_debt_engine import SystemDebtEngine
from .token_adapter import TokenAdapter


@dataclass
class CdpSystem:
    """All components of one deployment, sharing a ledger and a role registry."""
    access_control: AccessControlConfig
    book_keeper: BookKeeper
    system_debt_engine: SystemDebtEngine
    stability_fee_collector: StabilityFeeCollector
    price_oracle: PriceOracle
    strategy: FixedSpreadLiquidationStrategy
    liquidation_engine: LiquidationEngine
    price_feeds: Dict[PoolId, SimplePriceFeed] = field(default_factory=dict)
    adapters: Dict[PoolId, TokenAdapter] = field(default_factory=dict)

    def add_collateral_pool(
        self,
        pool_id: PoolId,
        debt_ceiling: Rad,
        debt_floor: Rad = Rad(0),
        price: Wad = Wad(0),
        liquidation_ratio: Ray = Ray(RAY),
        stability_fee_rate: Ray = Ray(RAY),
        close_factor_bps: int = BPS,
        liquidator_incentive_bps: int = BPS,
        treasury_fees_bps: int = 0,
        price_life: Optional[int] = None,
    ) -> CollateralPool:
        """
        Initialise a pool with its own feed, adapter and the shared strategy.

        When `price` is given it is posted and pushed through the oracle, so the
        pool is usable immediately.
        """
        book_keeper = self.book_keeper
        feed = SimplePriceFeed(book_keeper, price=price, price_life=price_life)
        adapter = TokenAdapter(book_keeper, pool_id)
        book_keeper.pool_config.init_collateral_pool(
            pool_id=pool_id,
            debt_ceiling=debt_ceiling,
            debt_floor=debt_floor,
            price_feed=feed,
            liquidation_ratio=liquidation_ratio,
            stability_fee_rate=stability_fee_rate,
            adapter=adapter,
            close_factor_bps=close_factor_bps,
            liquidator_incentive_bps=liquidator_incentive_bps,
            treasury_fees_bps=treasury_fees_bps,
            strategy=self.strategy,
        )
        self.price_feeds[pool_id] = feed
        self.adapters[pool_id] = adapter
        if price:
            self.price_oracle.set_price(pool_id)
        return book_keeper.pool(pool_id)

    def update_price(self, pool_id: PoolId, price: Wad) -> Ray:
        """Post a feed price and refresh the pool's price with safety margin."""
        self.price_feeds[pool_id].set_price(price)
        return self.price_oracle.set_price(pool_id)


def create_system(
    settings: Optional[Settings] = None,
    initial_time: Optional[datetime] = None,
    verbose: Optional[bool] = None,
) -> CdpSystem:
    """
    Build a wired CDP system.

    Args:
        settings: Settings to take account names and defaults from (default: get_settings())
        initial_time: Ledger start time
        verbose: Print every journal entry

    Returns:
        CdpSystem with no pools
    """
    settings = settings or get_settings()
    access_control = AccessControlConfig(owner=settings.DEPLOYER_ADDRESS)
    book_keeper = BookKeeper(
        access_control,
        name=settings.LEDGER_NAME,
        address=settings.BOOK_KEEPER_ADDRESS,
        initial_time=initial_time,
        total_debt_ceiling=settings.TOTAL_DEBT_CEILING,
        verbose=settings.VERBOSE if verbose is None else verbose,
    )
    system_debt_engine = SystemDebtEngine(book_keeper, address=settings.SYSTEM_DEBT_ENGINE_ADDRESS)
    stability_fee_collector = StabilityFeeCollector(
        book_keeper,
        system_debt_engine=system_debt_engine.address,
        global_stability_fee_rate=settings.GLOBAL_STABILITY_FEE_RATE,
        address=settings.STABILITY_FEE_COLLECTOR_ADDRESS,
    )
    price_oracle = PriceOracle(
        book_keeper,
        address=settings.PRICE_ORACLE_ADDRESS,
        stablecoin_reference_price=settings.STABLECOIN_REFERENCE_PRICE,
    )
    strategy = FixedSpreadLiquidationStrategy(
        book_keeper,
        price_oracle,
        system_debt_engine=system_debt_engine.address,
        address=settings.FIXED_SPREAD_STRATEGY_ADDRESS,
        flash_lending_enabled=settings.FLASH_LENDING_ENABLED,
    )
    liquidation_engine = LiquidationEngine(
        book_keeper,
        system_debt_engine,
        price_oracle=price_oracle,
        stability_fee_collector=stability_fee_collector,
        address=settings.LIQUIDATION_ENGINE_ADDRESS,
        collect_fees=settings.COLLECT_FEES_BEFORE_LIQUIDATION,
        check_price=settings.CHECK_PRICE_BEFORE_LIQUIDATION,
    )
    return CdpSystem(
        access_control=access_control,
        book_keeper=book_keeper,
        system_debt_engine=system_debt_engine,
        stability_fee_collector=stability_fee_collector,
        price_oracle=price_oracle,
        strategy=strategy,
        liquidation_engine=liquidation_engine,
    )
