"""
cdp_ledger - Collateralized Debt Position Ledger and Liquidation Engine

Bookkeeping for an over-collateralized stablecoin: positions lock collateral and
draw debt shares per pool, stability fees compound into each pool's rate, and
unsafe positions are liquidated in partial, incentive-bearing, optionally
flash-financed steps while system bad debt is tracked explicitly.

Usage:
    from cdp_ledger import create_system, to_wad, to_rad

    system = create_system()
    system.add_collateral_pool(
        "WBNB", debt_ceiling=to_rad("1000000"), price=to_wad("300"),
        close_factor_bps=5000, liquidator_incentive_bps=10500,
    )

    adapter = system.adapters["WBNB"]
    adapter.mint_external("alice", to_wad("10"))
    adapter.deposit("alice", "alice", to_wad("10"))

    system.book_keeper.adjust_position(
        "alice", "WBNB", "alice", "alice", "alice", to_wad("10"), to_wad("1000")
    )
"""

# Fixed-point numeric layer
from .fixed_point import (
    WAD, RAY, RAD, BPS,
    Wad, Ray, Rad,
    rmul, rdiv, rpow,
    wad_to_rad, rad_to_wad_down,
    debt_value, debt_share_for_value,
    to_wad, to_ray, to_rad, from_wad, from_ray, from_rad,
)

# Core types
from .core import (
    BookKeeperView,
    PriceFeed,
    FlashLiquidationCallback,
    LiquidationStrategy,
    Journaled,
    Position,
    CollateralPool,
    PositionSnapshot,
    LedgerEntry,
    LedgerError,
    NotLive,
    PoolNotInitialized,
    PoolAlreadyInitialized,
    InvalidPoolParameter,
    NotAuthorized,
    MissingRole,
    InsufficientFunds,
    PositionUnderflow,
    PositionUnsafe,
    DebtCeilingExceeded,
    DebtFloorViolated,
    LiquidationError,
    PositionIsSafe,
    InvalidPrice,
    InvalidLiquidationAmount,
    SlippageExceeded,
    StrategyMisbehaved,
    FlashLiquidationFailed,
    is_position_safe,
    clears_debt_floor,
    position_debt_value,
    position_collateral_value,
    snapshot_position,
    unsafe_positions,
    OWNER_ROLE,
    GOV_ROLE,
    PRICE_ORACLE_ROLE,
    ADAPTER_ROLE,
    LIQUIDATION_ENGINE_ROLE,
    STABILITY_FEE_COLLECTOR_ROLE,
    SHOW_STOPPER_ROLE,
    MINTABLE_ROLE,
    BOOK_KEEPER_ROLE,
    OP_ADJUST_POSITION,
    OP_MOVE_POSITION,
    OP_MOVE_COLLATERAL,
    OP_MOVE_STABLECOIN,
    OP_ADD_COLLATERAL,
    OP_CONFISCATE_POSITION,
    OP_ACCRUE_STABILITY_FEE,
    OP_SETTLE_SYSTEM_BAD_DEBT,
    OP_MINT_UNBACKED_STABLECOIN,
)

# Configuration
from .config import Settings, get_settings

# Components
from .access_control import AccessControlConfig
from .collateral_pool_config import CollateralPoolConfig
from .book_keeper import BookKeeper
from .token_adapter import TokenAdapter
from .price_oracle import SimplePriceFeed, PriceOracle, feed_collateral_price
from .stability_fee_collector import StabilityFeeCollector, calculate_accumulated_rate
from .system_debt_engine import SystemDebtEngine
from .fixed_spread_liquidation_strategy import (
    FixedSpreadLiquidationStrategy,
    LiquidationInfo,
    calculate_liquidation_info,
    clamp_debt_share,
)
from .liquidation_engine import LiquidationEngine, LiquidationResult
from .system import CdpSystem, create_system
