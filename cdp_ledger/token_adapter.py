"""
token_adapter.py - Collateral custody adapter

Bridges a collateral token held outside the ledger and the ledger's free
collateral balance for one pool. Deposits take external tokens into custody
and credit free collateral; withdrawals debit free collateral and release
tokens. The adapter's external balances take part in the ledger's atomic
snapshots, so a rolled-back liquidation also un-does any withdrawal a flash
callback made.
"""

from __future__ import annotations
import logging
from typing import Dict, Optional, Tuple

from .book_keeper import BookKeeper
from .core import ADAPTER_ROLE, Address, InsufficientFunds, NotLive, PoolId
from .fixed_point import Wad

logger = logging.getLogger(__name__)


class TokenAdapter:
    """
    Custody adapter for one pool's collateral token.

    Attributes:
        pool_id: Pool whose free collateral this adapter credits
        address: Account of the adapter (holds ADAPTER_ROLE)
        token_balances: External token holdings per account
        total_deposited: Tokens currently held in custody
    """

    def __init__(self, book_keeper: BookKeeper, pool_id: PoolId, address: Optional[Address] = None):
        self.book_keeper = book_keeper
        self.pool_id = pool_id
        self.address = address or f"{pool_id}_adapter"
        self.token_balances: Dict[Address, int] = {}
        self.total_deposited: int = 0
        self.live = True
        book_keeper.access_control.grant_role(ADAPTER_ROLE, self.address)
        book_keeper.enlist(self)

    def balance_of(self, account: Address) -> Wad:
        """External token balance of `account`."""
        return Wad(self.token_balances.get(account, 0))

    def mint_external(self, account: Address, amount: Wad) -> None:
        """Seed external token holdings (tests, demos, bridges)."""
        if amount < 0:
            raise ValueError(f"Mint amount cannot be negative, got {amount}")
        self.token_balances[account] = self.balance_of(account) + amount

    def deposit(self, caller: Address, owner: Address, amount: Wad) -> None:
        """
        Take `amount` external tokens from `caller` and credit `owner`'s free collateral.

        Raises:
            NotLive: If the adapter is caged
            InsufficientFunds: If the caller's external balance is too small
        """
        if not self.live:
            raise NotLive(f"Adapter {self.address} is caged")
        if amount < 0:
            raise ValueError(f"Deposit amount cannot be negative, got {amount}")
        with self.book_keeper.atomic():
            self._debit_external(caller, amount)
            self.total_deposited += amount
            self.book_keeper.add_collateral(self.address, self.pool_id, owner, amount)
        logger.debug("%s deposited %d into %s for %s", caller, amount, self.pool_id, owner)

    def withdraw(self, caller: Address, recipient: Address, amount: Wad) -> None:
        """Debit `caller`'s free collateral and release `amount` tokens to `recipient`."""
        if amount < 0:
            raise ValueError(f"Withdraw amount cannot be negative, got {amount}")
        with self.book_keeper.atomic():
            self.book_keeper.add_collateral(self.address, self.pool_id, caller, Wad(-amount))
            self.total_deposited -= amount
            self.token_balances[recipient] = self.balance_of(recipient) + amount
        logger.debug("%s withdrew %d from %s to %s", caller, amount, self.pool_id, recipient)

    def transfer_external(self, src: Address, dst: Address, amount: Wad) -> None:
        """Move external tokens between accounts (outside the ledger)."""
        if amount < 0:
            raise ValueError(f"Transfer amount cannot be negative, got {amount}")
        self._debit_external(src, amount)
        self.token_balances[dst] = self.balance_of(dst) + amount

    def cage(self) -> None:
        """Stop accepting deposits. Withdrawals stay open."""
        self.live = False

    def snapshot_state(self) -> Tuple[Dict[Address, int], int, bool]:
        return dict(self.token_balances), self.total_deposited, self.live

    def restore_state(self, state: Tuple[Dict[Address, int], int, bool]) -> None:
        balances, self.total_deposited, self.live = state
        self.token_balances = dict(balances)

    def _debit_external(self, account: Address, amount: int) -> None:
        balance = self.balance_of(account)
        if balance < amount:
            raise InsufficientFunds(f"{account} holds {balance} tokens, needs {amount}")
        self.token_balances[account] = balance - amount
