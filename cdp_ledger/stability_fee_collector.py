"""
stability_fee_collector.py - Stability fee accrual

Compounds each pool's per-second stability fee into its accumulated rate and
mints the resulting income to the system debt engine.

Key Formulas:
    elapsed   = now - last_accumulation_time            (whole seconds)
    new_rate  = rpow(global_rate + pool_rate, elapsed) * rate / RAY
    fee_value = total_debt_share * (new_rate - rate)    (RAD)

No position's debt share changes: every share is simply worth more stablecoin
afterwards. collect() is permissionless and idempotent within one timestamp.
Callers that skip it see a slightly understated debt value until the next
collection.
"""

from __future__ import annotations
import logging
from typing import Dict, Iterable, Optional

from .book_keeper import BookKeeper
from .config import get_settings
from .core import STABILITY_FEE_COLLECTOR_ROLE, Address, CollateralPool, PoolId
from .fixed_point import RAY, Ray, rmul, rpow

logger = logging.getLogger(__name__)


def calculate_accumulated_rate(
    pool: CollateralPool, elapsed_seconds: int, global_stability_fee_rate: Ray = Ray(0)
) -> Ray:
    """
    PURE FUNCTION - the pool's accumulated rate after `elapsed_seconds`.

    Args:
        pool: Pool snapshot (stability_fee_rate, debt_accumulated_rate)
        elapsed_seconds: Whole seconds since the last accumulation
        global_stability_fee_rate: Additive per-second component shared by all pools

    Returns:
        New accumulated rate (RAY); equal to the current rate when elapsed is 0
    """
    if elapsed_seconds <= 0:
        return pool.debt_accumulated_rate
    multiplier = rpow(global_stability_fee_rate + pool.stability_fee_rate, elapsed_seconds, RAY)
    return Ray(rmul(multiplier, pool.debt_accumulated_rate))


class StabilityFeeCollector:
    """
    Permissionless fee accrual for every pool.

    Example:
        collector = StabilityFeeCollector(book_keeper, "system_debt_engine")
        book_keeper.advance_time(later)
        collector.collect("WBNB")
    """

    def __init__(
        self,
        book_keeper: BookKeeper,
        system_debt_engine: Optional[Address] = None,
        global_stability_fee_rate: Optional[Ray] = None,
        address: Optional[Address] = None,
    ):
        settings = get_settings()
        self.book_keeper = book_keeper
        self.system_debt_engine = system_debt_engine or settings.SYSTEM_DEBT_ENGINE_ADDRESS
        self.global_stability_fee_rate: Ray = (
            settings.GLOBAL_STABILITY_FEE_RATE
            if global_stability_fee_rate is None else global_stability_fee_rate
        )
        self.address = address or settings.STABILITY_FEE_COLLECTOR_ADDRESS
        book_keeper.access_control.grant_role(STABILITY_FEE_COLLECTOR_ROLE, self.address)

    def set_global_stability_fee_rate(self, rate: Ray) -> None:
        if rate < 0:
            raise ValueError(f"Global stability fee rate cannot be negative, got {rate}")
        self.global_stability_fee_rate = rate

    def set_system_debt_engine(self, address: Address) -> None:
        self.system_debt_engine = address

    def elapsed_seconds(self, pool_id: PoolId) -> int:
        """Whole seconds since the pool last accrued."""
        pool = self.book_keeper.pool(pool_id)
        return int((self.book_keeper.current_time - pool.last_accumulation_time).total_seconds())

    def collect(self, pool_id: PoolId) -> Ray:
        """
        Accrue the stability fee of one pool up to the current ledger time.

        Returns:
            The pool's accumulated rate after collection
        """
        elapsed = self.elapsed_seconds(pool_id)
        pool = self.book_keeper.pool(pool_id)
        if elapsed <= 0:
            return pool.debt_accumulated_rate

        new_rate = calculate_accumulated_rate(pool, elapsed, self.global_stability_fee_rate)
        with self.book_keeper.atomic():
            fee = self.book_keeper.accrue_stability_fee(
                self.address, pool_id, self.system_debt_engine,
                Ray(new_rate - pool.debt_accumulated_rate),
            )
            self.book_keeper.pool_config.update_last_accumulation_time(self.address, pool_id)
        logger.debug("collected %d fee on %s over %ds, rate now %d", fee, pool_id, elapsed, new_rate)
        return new_rate

    def collect_many(self, pool_ids: Iterable[PoolId]) -> Dict[PoolId, Ray]:
        """Collect several pools; each pool is its own atomic unit."""
        return {pool_id: self.collect(pool_id) for pool_id in pool_ids}
