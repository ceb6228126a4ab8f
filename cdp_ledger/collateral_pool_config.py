"""
collateral_pool_config.py - Collateral Pool Registry

Holds the configuration and the per-pool aggregates of every collateral pool.

Static configuration (ceilings, floor, ratios, liquidation parameters,
collaborators) is set by whoever owns the registry through plain setters that
validate their input. Dynamic state is written only by the components that own
it, each gated by a role:

    price_with_safety_margin   PRICE_ORACLE_ROLE
    total_debt_share           BOOK_KEEPER_ROLE
    debt_accumulated_rate      BOOK_KEEPER_ROLE
    last_accumulation_time     STABILITY_FEE_COLLECTOR_ROLE

Pools are stored as frozen CollateralPool snapshots and replaced on every
write, so a snapshot handed to a pure function can never change underneath it.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
import logging
from typing import Any, Callable, Dict, List, Optional

from .access_control import AccessControlConfig
from .config import get_settings
from .core import (
    BOOK_KEEPER_ROLE, PRICE_ORACLE_ROLE, STABILITY_FEE_COLLECTOR_ROLE,
    Address, CollateralPool, PoolId,
    InvalidPoolParameter, PoolAlreadyInitialized, PoolNotInitialized,
)
from .fixed_point import BPS, RAY, Rad, Ray, Wad

logger = logging.getLogger(__name__)

# Liquidation parameter bounds.
MAX_LIQUIDATOR_INCENTIVE_BPS = 19_000
MAX_TREASURY_FEES_BPS = 9_000


class CollateralPoolConfig:
    """
    Registry of collateral pools.

    Implements the Journaled protocol so the ledger can roll pool aggregates
    back together with balances.
    """

    def __init__(
        self,
        access_control: AccessControlConfig,
        clock: Callable[[], datetime],
        max_stability_fee_rate: Optional[int] = None,
    ):
        """
        Create an empty registry.

        Args:
            access_control: Role registry for the dynamic writers
            clock: Returns the ledger's current time
            max_stability_fee_rate: Upper bound for stability fee rates (RAY)
        """
        self.access_control = access_control
        self.clock = clock
        if max_stability_fee_rate is None:
            max_stability_fee_rate = get_settings().MAX_STABILITY_FEE_RATE
        self.max_stability_fee_rate = max_stability_fee_rate
        self._pools: Dict[PoolId, CollateralPool] = {}

    # ========================================================================
    # READS
    # ========================================================================

    def pool(self, pool_id: PoolId) -> CollateralPool:
        """
        Return the current snapshot of a pool.

        Raises:
            PoolNotInitialized: If the pool id is unknown
        """
        try:
            return self._pools[pool_id]
        except KeyError:
            raise PoolNotInitialized(f"Collateral pool {pool_id!r} not initialized") from None

    def is_initialized(self, pool_id: PoolId) -> bool:
        return pool_id in self._pools

    def pool_ids(self) -> List[PoolId]:
        """Return pool ids in initialisation order."""
        return list(self._pools)

    # ========================================================================
    # INITIALISATION
    # ========================================================================

    def init_collateral_pool(
        self,
        pool_id: PoolId,
        debt_ceiling: Rad,
        debt_floor: Rad,
        price_feed: Any,
        liquidation_ratio: Ray,
        stability_fee_rate: Ray,
        adapter: Any = None,
        close_factor_bps: int = BPS,
        liquidator_incentive_bps: int = BPS,
        treasury_fees_bps: int = 0,
        strategy: Any = None,
    ) -> CollateralPool:
        """
        Register a new collateral pool.

        The accumulated rate starts at 1.0 RAY, the price with safety margin at 0
        (nothing can be drawn until the oracle posts a price) and the last
        accumulation time at the current ledger time.

        Raises:
            PoolAlreadyInitialized: If the id is taken
            InvalidPoolParameter: If any parameter is out of range
        """
        if not pool_id or not pool_id.strip():
            raise InvalidPoolParameter("Collateral pool id cannot be empty")
        if pool_id in self._pools:
            raise PoolAlreadyInitialized(f"Collateral pool {pool_id!r} already initialized")

        _check_non_negative("debt_ceiling", debt_ceiling)
        _check_non_negative("debt_floor", debt_floor)
        self._check_stability_fee_rate(stability_fee_rate)
        _check_liquidation_ratio(liquidation_ratio)
        _check_close_factor(close_factor_bps)
        _check_liquidator_incentive(liquidator_incentive_bps)
        _check_treasury_fees(treasury_fees_bps)

        pool = CollateralPool(
            pool_id=pool_id,
            debt_ceiling=debt_ceiling,
            debt_floor=debt_floor,
            price_feed=price_feed,
            liquidation_ratio=liquidation_ratio,
            stability_fee_rate=stability_fee_rate,
            adapter=adapter,
            close_factor_bps=close_factor_bps,
            liquidator_incentive_bps=liquidator_incentive_bps,
            treasury_fees_bps=treasury_fees_bps,
            strategy=strategy,
            total_debt_share=Wad(0),
            debt_accumulated_rate=Ray(RAY),
            price_with_safety_margin=Ray(0),
            last_accumulation_time=self.clock(),
        )
        self._pools[pool_id] = pool
        logger.info("initialized collateral pool %s", pool_id)
        return pool

    # ========================================================================
    # STATIC CONFIGURATION (owner)
    # ========================================================================

    def set_debt_ceiling(self, pool_id: PoolId, debt_ceiling: Rad) -> None:
        _check_non_negative("debt_ceiling", debt_ceiling)
        self._update(pool_id, debt_ceiling=debt_ceiling)

    def set_debt_floor(self, pool_id: PoolId, debt_floor: Rad) -> None:
        _check_non_negative("debt_floor", debt_floor)
        self._update(pool_id, debt_floor=debt_floor)

    def set_price_feed(self, pool_id: PoolId, price_feed: Any) -> None:
        self._update(pool_id, price_feed=price_feed)

    def set_liquidation_ratio(self, pool_id: PoolId, liquidation_ratio: Ray) -> None:
        _check_liquidation_ratio(liquidation_ratio)
        self._update(pool_id, liquidation_ratio=liquidation_ratio)

    def set_stability_fee_rate(self, pool_id: PoolId, stability_fee_rate: Ray) -> None:
        """
        Change the per-second stability fee.

        Does not collect fees accrued under the old rate; callers that care run
        the stability fee collector first.
        """
        self._check_stability_fee_rate(stability_fee_rate)
        self._update(pool_id, stability_fee_rate=stability_fee_rate)

    def set_adapter(self, pool_id: PoolId, adapter: Any) -> None:
        self._update(pool_id, adapter=adapter)

    def set_close_factor_bps(self, pool_id: PoolId, close_factor_bps: int) -> None:
        _check_close_factor(close_factor_bps)
        self._update(pool_id, close_factor_bps=close_factor_bps)

    def set_liquidator_incentive_bps(self, pool_id: PoolId, liquidator_incentive_bps: int) -> None:
        _check_liquidator_incentive(liquidator_incentive_bps)
        self._update(pool_id, liquidator_incentive_bps=liquidator_incentive_bps)

    def set_treasury_fees_bps(self, pool_id: PoolId, treasury_fees_bps: int) -> None:
        _check_treasury_fees(treasury_fees_bps)
        self._update(pool_id, treasury_fees_bps=treasury_fees_bps)

    def set_strategy(self, pool_id: PoolId, strategy: Any) -> None:
        self._update(pool_id, strategy=strategy)

    # ========================================================================
    # DYNAMIC STATE (role-gated)
    # ========================================================================

    def set_price_with_safety_margin(self, caller: Address, pool_id: PoolId, price: Ray) -> None:
        self.access_control.require_role(PRICE_ORACLE_ROLE, caller)
        _check_non_negative("price_with_safety_margin", price)
        self._update(pool_id, price_with_safety_margin=price)

    def set_total_debt_share(self, caller: Address, pool_id: PoolId, total_debt_share: Wad) -> None:
        self.access_control.require_role(BOOK_KEEPER_ROLE, caller)
        _check_non_negative("total_debt_share", total_debt_share)
        self._update(pool_id, total_debt_share=total_debt_share)

    def set_debt_accumulated_rate(self, caller: Address, pool_id: PoolId, rate: Ray) -> None:
        self.access_control.require_role(BOOK_KEEPER_ROLE, caller)
        if rate <= 0:
            raise InvalidPoolParameter(f"debt_accumulated_rate must be positive, got {rate}")
        self._update(pool_id, debt_accumulated_rate=rate)

    def update_last_accumulation_time(self, caller: Address, pool_id: PoolId) -> None:
        self.access_control.require_role(STABILITY_FEE_COLLECTOR_ROLE, caller)
        self._update(pool_id, last_accumulation_time=self.clock())

    # ========================================================================
    # SNAPSHOTS
    # ========================================================================

    def snapshot_state(self) -> Dict[PoolId, CollateralPool]:
        # CollateralPool is frozen, a shallow copy is a full snapshot
        return dict(self._pools)

    def restore_state(self, state: Dict[PoolId, CollateralPool]) -> None:
        self._pools = dict(state)

    def clone(self, clock: Callable[[], datetime]) -> CollateralPoolConfig:
        """Independent copy sharing collaborators, bound to another clock."""
        cloned = CollateralPoolConfig(
            self.access_control, clock, max_stability_fee_rate=self.max_stability_fee_rate
        )
        cloned._pools = dict(self._pools)
        return cloned

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _update(self, pool_id: PoolId, **changes: Any) -> None:
        self._pools[pool_id] = replace(self.pool(pool_id), **changes)
        logger.debug("pool %s updated: %s", pool_id, ", ".join(changes))

    def _check_stability_fee_rate(self, rate: int) -> None:
        if rate < RAY or rate > self.max_stability_fee_rate:
            raise InvalidPoolParameter(
                f"stability_fee_rate must be within [{RAY}, {self.max_stability_fee_rate}], got {rate}"
            )


def _check_non_negative(name: str, value: int) -> None:
    if value < 0:
        raise InvalidPoolParameter(f"{name} cannot be negative, got {value}")


def _check_liquidation_ratio(ratio: int) -> None:
    if ratio < RAY:
        raise InvalidPoolParameter(f"liquidation_ratio must be at least 1.0 RAY, got {ratio}")


def _check_close_factor(bps: int) -> None:
    if bps <= 0 or bps > BPS:
        raise InvalidPoolParameter(f"close_factor_bps must be within (0, {BPS}], got {bps}")


def _check_liquidator_incentive(bps: int) -> None:
    if bps < BPS or bps > MAX_LIQUIDATOR_INCENTIVE_BPS:
        raise InvalidPoolParameter(
            f"liquidator_incentive_bps must be within [{BPS}, {MAX_LIQUIDATOR_INCENTIVE_BPS}], got {bps}"
        )


def _check_treasury_fees(bps: int) -> None:
    if bps < 0 or bps > MAX_TREASURY_FEES_BPS:
        raise InvalidPoolParameter(
            f"treasury_fees_bps must be within [0, {MAX_TREASURY_FEES_BPS}], got {bps}"
        )
