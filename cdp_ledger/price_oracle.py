"""
price_oracle.py - Price feeds and the safety-margin oracle

Provides the pricing collaborators the ledger consumes.

Classes:
- SimplePriceFeed: Manually posted price with a freshness window ("price life")
- PriceOracle: Converts a pool's feed price into the price with safety margin
  stored on the pool

Price scales:
    feed price                 WAD  (stablecoin per collateral token)
    stablecoin reference price RAY  (stablecoin's own target, 1.0 by default)
    price with safety margin   RAY  = feed * 1e9 / reference / liquidation ratio

A feed that is stale or paused makes the oracle post a zero price with safety
margin: nothing can be drawn against the pool until a fresh price arrives, and
liquidations fail with InvalidPrice instead of running on an old price.
"""

from __future__ import annotations
from datetime import datetime
import logging
from typing import Optional, Tuple

from .book_keeper import BookKeeper
from .config import get_settings
from .core import (
    PRICE_ORACLE_ROLE, Address, BookKeeperView, InvalidPrice, NotLive, PoolId, PriceFeed,
)
from .fixed_point import Ray, Wad, rdiv

logger = logging.getLogger(__name__)

# Scales a WAD feed price up to RAY.
WAD_TO_RAY = 10 ** 9


class SimplePriceFeed:
    """
    Price feed with a manually posted price that expires after `price_life` seconds.

    The feed reads time from a BookKeeperView so feed freshness and stability
    fee accrual share one clock.
    """

    def __init__(self, view: BookKeeperView, price: Wad = Wad(0), price_life: Optional[int] = None):
        """
        Args:
            view: Ledger view providing current_time
            price: Initial price (WAD); posted immediately when non-zero
            price_life: Seconds a posted price stays valid (default: settings)
        """
        self.view = view
        self.price_life = get_settings().PRICE_LIFE_SECONDS if price_life is None else price_life
        self.price: Wad = Wad(0)
        self.last_update: Optional[datetime] = None
        self.paused = False
        if price:
            self.set_price(price)

    def set_price(self, price: Wad) -> None:
        """Post a new price and restart the freshness window."""
        if price < 0:
            raise ValueError(f"Price cannot be negative, got {price}")
        self.price = price
        self.last_update = self.view.current_time

    def set_price_life(self, seconds: int) -> None:
        if seconds <= 0:
            raise ValueError(f"Price life must be positive, got {seconds}")
        self.price_life = seconds

    def pause(self) -> None:
        self.paused = True

    def unpause(self) -> None:
        self.paused = False

    def read_price(self) -> Wad:
        return self.price

    def is_price_ok(self) -> bool:
        """True when the feed is unpaused and the last price is within its life."""
        if self.paused or self.last_update is None:
            return False
        age = (self.view.current_time - self.last_update).total_seconds()
        return age <= self.price_life

    def peek_price(self) -> Tuple[Wad, bool]:
        return self.price, self.is_price_ok()

    def __repr__(self) -> str:
        return f"SimplePriceFeed(price={self.price}, life={self.price_life}s, ok={self.is_price_ok()})"


class PriceOracle:
    """
    Writes each pool's price with safety margin from its price feed.

    Example:
        oracle = PriceOracle(book_keeper)
        feed.set_price(to_wad("2"))
        oracle.set_price("WBNB")   # pool.price_with_safety_margin = 2 RAY / liquidation ratio
    """

    def __init__(
        self,
        book_keeper: BookKeeper,
        address: Optional[Address] = None,
        stablecoin_reference_price: Optional[Ray] = None,
    ):
        settings = get_settings()
        self.book_keeper = book_keeper
        self.address = address or settings.PRICE_ORACLE_ADDRESS
        self.stablecoin_reference_price: Ray = (
            settings.STABLECOIN_REFERENCE_PRICE
            if stablecoin_reference_price is None else stablecoin_reference_price
        )
        self.live = True
        book_keeper.access_control.grant_role(PRICE_ORACLE_ROLE, self.address)

    def set_stablecoin_reference_price(self, price: Ray) -> None:
        if price <= 0:
            raise ValueError(f"Stablecoin reference price must be positive, got {price}")
        self.stablecoin_reference_price = price

    def cage(self) -> None:
        self.live = False

    def set_price(self, pool_id: PoolId) -> Ray:
        """
        Refresh a pool's price with safety margin from its feed.

        Returns:
            The posted price with safety margin (0 when the feed is not ok)

        Raises:
            NotLive: If the oracle is caged
        """
        if not self.live:
            raise NotLive(f"Price oracle {self.address} is caged")
        pool = self.book_keeper.pool(pool_id)
        if pool.price_feed is None:
            raise InvalidPrice(f"Pool {pool_id} has no price feed")
        price, ok = pool.price_feed.peek_price()
        if ok:
            price_with_safety_margin = Ray(rdiv(
                rdiv(price * WAD_TO_RAY, self.stablecoin_reference_price),
                pool.liquidation_ratio,
            ))
        else:
            logger.warning("price feed for %s not ok, posting zero price", pool_id)
            price_with_safety_margin = Ray(0)
        self.book_keeper.pool_config.set_price_with_safety_margin(
            self.address, pool_id, price_with_safety_margin
        )
        logger.debug("pool %s price with safety margin %d", pool_id, price_with_safety_margin)
        return price_with_safety_margin

    def get_price_with_safety_margin(self, pool_id: PoolId) -> Tuple[Ray, bool]:
        """Return (stored price with safety margin, stale) for a pool."""
        pool = self.book_keeper.pool(pool_id)
        feed: Optional[PriceFeed] = pool.price_feed
        stale = feed is None or not feed.is_price_ok()
        return pool.price_with_safety_margin, stale

    def collateral_price(self, pool_id: PoolId) -> Ray:
        """
        Fresh collateral price in stablecoin terms (RAY), without safety margin.

        Raises:
            InvalidPrice: If the feed is stale, paused or reports zero
        """
        pool = self.book_keeper.pool(pool_id)
        return feed_collateral_price(pool.price_feed, self.stablecoin_reference_price, pool_id)


def feed_collateral_price(feed: Optional[PriceFeed], stablecoin_reference_price: Ray, pool_id: PoolId) -> Ray:
    """
    PURE FUNCTION - feed price scaled to RAY and divided by the reference price.

    Raises:
        InvalidPrice: If the feed is missing, not ok, or the price is zero
    """
    if feed is None:
        raise InvalidPrice(f"Pool {pool_id} has no price feed")
    price, ok = feed.peek_price()
    if not ok:
        raise InvalidPrice(f"Price feed for {pool_id} is stale or paused")
    collateral_price = rdiv(price * WAD_TO_RAY, stablecoin_reference_price)
    if collateral_price <= 0:
        raise InvalidPrice(f"Price feed for {pool_id} reports a zero price")
    return Ray(collateral_price)
