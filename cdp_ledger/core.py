"""
Core types and pure functions for the CDP ledger.

This module provides the foundational data structures and protocols shared by
every component:
1. Protocols: BookKeeperView for read-only ledger access, plus the narrow
   collaborator interfaces (price feed, liquidation strategy, flash callback)
2. Immutable data structures: Position, CollateralPool, PositionSnapshot, LedgerEntry
3. Exceptions: LedgerError and the domain-specific error types
4. Role names used by the access-control registry
5. Pure safety predicates over positions and pools

All functions in this module are pure and operate on immutable values or
read-only views. No function here can mutate ledger state.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import (
    Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable
)

from .fixed_point import Rad, Ray, Wad, debt_value, rmul, wad_to_rad


# ============================================================================
# CONSTANTS
# ============================================================================

# Role names (strings, not enum, so deployments can add their own).
OWNER_ROLE = "OWNER_ROLE"
GOV_ROLE = "GOV_ROLE"
PRICE_ORACLE_ROLE = "PRICE_ORACLE_ROLE"
ADAPTER_ROLE = "ADAPTER_ROLE"
LIQUIDATION_ENGINE_ROLE = "LIQUIDATION_ENGINE_ROLE"
STABILITY_FEE_COLLECTOR_ROLE = "STABILITY_FEE_COLLECTOR_ROLE"
SHOW_STOPPER_ROLE = "SHOW_STOPPER_ROLE"
MINTABLE_ROLE = "MINTABLE_ROLE"
BOOK_KEEPER_ROLE = "BOOK_KEEPER_ROLE"

ALL_ROLES = (
    OWNER_ROLE, GOV_ROLE, PRICE_ORACLE_ROLE, ADAPTER_ROLE,
    LIQUIDATION_ENGINE_ROLE, STABILITY_FEE_COLLECTOR_ROLE,
    SHOW_STOPPER_ROLE, MINTABLE_ROLE, BOOK_KEEPER_ROLE,
)

# Ledger journal operation names.
OP_ADJUST_POSITION = "ADJUST_POSITION"
OP_MOVE_POSITION = "MOVE_POSITION"
OP_MOVE_COLLATERAL = "MOVE_COLLATERAL"
OP_MOVE_STABLECOIN = "MOVE_STABLECOIN"
OP_ADD_COLLATERAL = "ADD_COLLATERAL"
OP_CONFISCATE_POSITION = "CONFISCATE_POSITION"
OP_ACCRUE_STABILITY_FEE = "ACCRUE_STABILITY_FEE"
OP_SETTLE_SYSTEM_BAD_DEBT = "SETTLE_SYSTEM_BAD_DEBT"
OP_MINT_UNBACKED_STABLECOIN = "MINT_UNBACKED_STABLECOIN"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Accounts are opaque string identifiers (wallet addresses, component names).
Address = str

# Collateral pools are keyed by an opaque string id such as "WBNB" or "ibBUSD".
PoolId = str

# Key of a position in the ledger.
PositionKey = Tuple[PoolId, Address]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class NotLive(LedgerError):
    """Raised when a component has been caged and refuses state changes."""
    pass


class PoolNotInitialized(LedgerError):
    """Raised when an operation names a collateral pool that was never initialised."""
    pass


class PoolAlreadyInitialized(LedgerError):
    """Raised when a collateral pool id is initialised twice."""
    pass


class InvalidPoolParameter(LedgerError):
    """Raised when a pool parameter is outside its permitted range."""
    pass


class NotAuthorized(LedgerError):
    """Raised when the caller may not act on behalf of the named account."""
    pass


class MissingRole(NotAuthorized):
    """Raised when the caller does not hold the role a privileged operation requires."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a free balance would go negative."""
    pass


class PositionUnderflow(LedgerError):
    """Raised when locked collateral or debt share of a position would go negative."""
    pass


class PositionUnsafe(LedgerError):
    """Raised when a risk-increasing change leaves debt above the collateral's safe value."""
    pass


class DebtCeilingExceeded(LedgerError):
    """Raised when a draw would push pool or global debt over its ceiling."""
    pass


class DebtFloorViolated(LedgerError):
    """Raised when a position would be left with non-zero debt below the pool's debt floor."""
    pass


class LiquidationError(LedgerError):
    """Base exception for expected, recoverable liquidation outcomes."""
    pass


class PositionIsSafe(LiquidationError):
    """Raised when liquidation is attempted on a position that is not undercollateralized."""
    pass


class InvalidPrice(LiquidationError):
    """Raised when the price feed is stale, paused or reports a zero price."""
    pass


class InvalidLiquidationAmount(LiquidationError):
    """Raised when the requested or clamped repay amount is zero."""
    pass


class SlippageExceeded(LiquidationError):
    """Raised when the liquidator would receive less collateral than they asked for."""
    pass


class StrategyMisbehaved(LiquidationError):
    """Raised when a liquidation strategy returns without reducing debt or delivering payment."""
    pass


class FlashLiquidationFailed(InsufficientFunds):
    """Raised when a flash-liquidation callback reports failure."""
    pass


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Position:
    """
    Locked collateral and debt share of one owner in one pool.

    Attributes:
        locked_collateral: Collateral locked against the debt (WAD)
        debt_share: Share of the pool's debt (WAD); value = debt_share * rate (RAD)

    Positions are values: every change produces a new instance.
    """
    locked_collateral: Wad = Wad(0)
    debt_share: Wad = Wad(0)

    def is_empty(self) -> bool:
        """True when both collateral and debt are zero."""
        return self.locked_collateral == 0 and self.debt_share == 0

    def __repr__(self) -> str:
        return f"Position(collateral={self.locked_collateral}, debt_share={self.debt_share})"


@dataclass(frozen=True, slots=True)
class CollateralPool:
    """
    Immutable snapshot of one collateral pool's configuration and aggregates.

    Static configuration is written by the owner through the registry setters.
    Dynamic fields (total_debt_share, debt_accumulated_rate,
    price_with_safety_margin, last_accumulation_time) are written only by the
    ledger, the price oracle and the stability fee collector.

    Attributes:
        pool_id: Stable pool identifier
        debt_ceiling: Maximum total debt value for the pool (RAD)
        debt_floor: Minimum non-zero debt value per position (RAD)
        price_feed: PriceFeed collaborator for the collateral token
        liquidation_ratio: Collateralization ratio applied by the oracle (RAY, >= 1.0)
        stability_fee_rate: Per-second compounding factor (RAY, >= 1.0)
        adapter: Custody adapter collaborator (or None)
        close_factor_bps: Max share of debt repayable per liquidation call
        liquidator_incentive_bps: Collateral paid per unit of debt value (>= 10000)
        treasury_fees_bps: Share of the incentive routed to the treasury
        strategy: LiquidationStrategy collaborator (or None)
        total_debt_share: Sum of all positions' debt shares (WAD)
        debt_accumulated_rate: Cumulative interest multiplier (RAY)
        price_with_safety_margin: Oracle price divided by liquidation ratio (RAY)
        last_accumulation_time: When the stability fee was last collected
    """
    pool_id: PoolId
    debt_ceiling: Rad
    debt_floor: Rad
    price_feed: Optional[Any]
    liquidation_ratio: Ray
    stability_fee_rate: Ray
    adapter: Optional[Any]
    close_factor_bps: int
    liquidator_incentive_bps: int
    treasury_fees_bps: int
    strategy: Optional[Any]
    total_debt_share: Wad
    debt_accumulated_rate: Ray
    price_with_safety_margin: Ray
    last_accumulation_time: datetime

    def total_debt_value(self) -> Rad:
        """Debt value of the whole pool (RAD)."""
        return debt_value(self.total_debt_share, self.debt_accumulated_rate)


@dataclass(frozen=True, slots=True)
class PositionSnapshot:
    """Read model of a position with its values at the pool's current rate and price."""
    pool_id: PoolId
    owner: Address
    locked_collateral: Wad
    debt_share: Wad
    debt_value: Rad
    collateral_value: Rad
    safe: bool

    @property
    def collateralization_ratio(self) -> Optional[Decimal]:
        """Safe collateral value over debt value, or None for a debt-free position."""
        if self.debt_value == 0:
            return None
        return Decimal(self.collateral_value) / Decimal(self.debt_value)


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """
    Immutable journal record of one applied ledger mutation.

    Attributes:
        sequence: Monotonic sequence number within the ledger
        timestamp: Ledger time at which the mutation was applied
        operation: One of the OP_* constants
        caller: Account that invoked the mutation
        pool_id: Pool touched (None for pool-independent operations)
        fields: Operation parameters as sorted (name, value) pairs
    """
    sequence: int
    timestamp: datetime
    operation: str
    caller: Address
    pool_id: Optional[PoolId]
    fields: Tuple[Tuple[str, Any], ...]

    def field(self, name: str) -> Any:
        """Return a recorded parameter by name."""
        for key, value in self.fields:
            if key == name:
                return value
        raise KeyError(name)

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Entry #' + str(self.sequence) + ': ' + self.operation)}│",
            f"├{bar}┤",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   caller         : ' + self.caller)}│",
            f"│{pad('   pool           : ' + str(self.pool_id))}│",
            f"├{bar}┤",
        ]
        for name, value in self.fields:
            lines.append(f"│{pad(f'   {name}: {value!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class BookKeeperView(Protocol):
    """
    Read-only interface to ledger state.

    Pricing, strategy and reporting functions accept a BookKeeperView to declare
    that they only read. The BookKeeper class implements this protocol but also
    provides mutation methods. For testing, FakeBookKeeperView provides a truly
    immutable implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def pool(self, pool_id: PoolId) -> CollateralPool:
        """Return the current snapshot of a collateral pool."""
        ...

    def position(self, pool_id: PoolId, owner: Address) -> Position:
        """Return a position; an untouched position is empty, not missing."""
        ...

    def collateral_token(self, pool_id: PoolId, owner: Address) -> Wad:
        """Return the free (unlocked) collateral of an account in a pool."""
        ...

    def stablecoin(self, owner: Address) -> Rad:
        """Return the internal stablecoin balance of an account."""
        ...

    def system_bad_debt(self, owner: Address) -> Rad:
        """Return the bad debt recorded against an account."""
        ...


@runtime_checkable
class PriceFeed(Protocol):
    """Source of a collateral token's price in stablecoin (WAD)."""

    def peek_price(self) -> Tuple[int, bool]:
        """Return (price, ok). ok is False when the price is stale or paused."""
        ...

    def read_price(self) -> int:
        """Return the last price regardless of freshness."""
        ...

    def is_price_ok(self) -> bool:
        """True when the price may be used for liquidation."""
        ...


class FlashLiquidationCallback(Protocol):
    """
    Liquidator-side hook invoked after collateral is delivered and before
    stablecoin is pulled.

    The callback receives the seized collateral up front and must leave at least
    `debt_value_to_repay` stablecoin in the liquidator's ledger balance before it
    returns. Returning False aborts the whole liquidation.
    """

    def on_flash_liquidate(
        self,
        liquidator: Address,
        debt_value_to_repay: Rad,
        collateral_amount: Wad,
        data: bytes,
    ) -> bool:
        ...


class LiquidationStrategy(Protocol):
    """Pool-specific liquidation executor called by the liquidation engine."""

    address: Address

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
    ) -> Any:
        ...


class Journaled(Protocol):
    """Collaborator whose mutable state participates in ledger rollbacks."""

    def snapshot_state(self) -> Any:
        ...

    def restore_state(self, state: Any) -> None:
        ...


# ============================================================================
# PURE FUNCTIONS
# ============================================================================

def position_debt_value(position: Position, pool: CollateralPool) -> Rad:
    """Debt value of a position at the pool's accumulated rate (RAD)."""
    return debt_value(position.debt_share, pool.debt_accumulated_rate)


def position_collateral_value(position: Position, pool: CollateralPool) -> Rad:
    """Safe value of the locked collateral at the price with safety margin (RAD)."""
    return Rad(rmul(wad_to_rad(position.locked_collateral), pool.price_with_safety_margin))


def is_position_safe(position: Position, pool: CollateralPool) -> bool:
    """
    The "safe" check.

    A position is safe when locked_collateral * price_with_safety_margin covers
    debt_share * debt_accumulated_rate. A debt-free position is always safe.
    """
    return position_debt_value(position, pool) <= position_collateral_value(position, pool)


def clears_debt_floor(position: Position, pool: CollateralPool) -> bool:
    """True when the position has no debt or its debt value reaches the floor."""
    return position.debt_share == 0 or position_debt_value(position, pool) >= pool.debt_floor


def snapshot_position(
    pool: CollateralPool, owner: Address, position: Position
) -> PositionSnapshot:
    """Build a PositionSnapshot from a pool snapshot and a position."""
    return PositionSnapshot(
        pool_id=pool.pool_id,
        owner=owner,
        locked_collateral=position.locked_collateral,
        debt_share=position.debt_share,
        debt_value=position_debt_value(position, pool),
        collateral_value=position_collateral_value(position, pool),
        safe=is_position_safe(position, pool),
    )


def freeze_fields(fields: Dict[str, Any]) -> Tuple[Tuple[str, Any], ...]:
    """Convert journal parameters to a sorted tuple for immutable storage."""
    return tuple(sorted(fields.items()))


def unsafe_positions(
    view: BookKeeperView, pool_id: PoolId, owners: List[Address]
) -> List[Address]:
    """Return the owners among `owners` whose positions in `pool_id` fail the safe check."""
    pool = view.pool(pool_id)
    return [
        owner for owner in owners
        if not is_position_safe(view.position(pool_id, owner), pool)
    ]
