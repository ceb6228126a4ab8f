"""
system_debt_engine.py - Surplus and bad-debt sink

The system debt engine is the account that:
    - receives stability fee income (its stablecoin balance is the surplus)
    - carries bad debt from confiscated positions
    - receives the treasury share of liquidation incentives, in collateral

Surplus and bad debt are netted with settle_system_bad_debt(); surplus can
only leave the engine once no bad debt remains and the buffer is kept.
"""

from __future__ import annotations
import logging
from typing import Optional

from .book_keeper import BookKeeper
from .config import get_settings
from .core import Address, InsufficientFunds, PoolId
from .fixed_point import Rad, Wad

logger = logging.getLogger(__name__)


class SystemDebtEngine:
    """Account holder for protocol surplus and system bad debt."""

    def __init__(
        self,
        book_keeper: BookKeeper,
        address: Optional[Address] = None,
        surplus_buffer: Rad = Rad(0),
    ):
        self.book_keeper = book_keeper
        self.address = address or get_settings().SYSTEM_DEBT_ENGINE_ADDRESS
        self.surplus_buffer = surplus_buffer

    def surplus(self) -> Rad:
        """Stablecoin held by the engine (RAD)."""
        return self.book_keeper.stablecoin(self.address)

    def bad_debt(self) -> Rad:
        """Bad debt recorded against the engine (RAD)."""
        return self.book_keeper.system_bad_debt(self.address)

    def net_surplus(self) -> int:
        """Surplus minus bad debt; negative when the system is short."""
        return self.surplus() - self.bad_debt()

    def set_surplus_buffer(self, value: Rad) -> None:
        if value < 0:
            raise ValueError(f"Surplus buffer cannot be negative, got {value}")
        self.surplus_buffer = value

    def settle_system_bad_debt(self, value: Rad) -> None:
        """
        Burn `value` of surplus against the same amount of bad debt.

        Raises:
            InsufficientFunds: If surplus or bad debt is smaller than value
        """
        if value > self.surplus():
            raise InsufficientFunds(f"Surplus {self.surplus()} cannot settle {value}")
        if value > self.bad_debt():
            raise InsufficientFunds(f"Bad debt {self.bad_debt()} is less than {value}")
        self.book_keeper.settle_system_bad_debt(self.address, value)

    def settle_all(self) -> Rad:
        """Settle as much bad debt as the surplus covers. Returns the amount settled."""
        value = Rad(min(self.surplus(), self.bad_debt()))
        if value:
            self.settle_system_bad_debt(value)
            logger.info("settled %d bad debt", value)
        return value

    def withdraw_collateral_surplus(self, pool_id: PoolId, to: Address, amount: Wad) -> None:
        """Send collected treasury collateral to `to`."""
        self.book_keeper.move_collateral(self.address, pool_id, self.address, to, amount)

    def withdraw_stablecoin_surplus(self, to: Address, value: Rad) -> None:
        """
        Send surplus stablecoin to `to`.

        Raises:
            InsufficientFunds: If bad debt is outstanding or the buffer would be breached
        """
        if self.bad_debt() != 0:
            raise InsufficientFunds(f"Bad debt {self.bad_debt()} must be settled first")
        if self.surplus() - value < self.surplus_buffer:
            raise InsufficientFunds(
                f"Withdrawing {value} would leave {self.surplus() - value}, "
                f"below buffer {self.surplus_buffer}"
            )
        self.book_keeper.move_stablecoin(self.address, self.address, to, value)
