"""
test_token_adapter.py - Unit tests for the collateral custody adapter

Tests:
- External balances
- Deposit / withdraw against free collateral
- Cage
- Participation in ledger rollbacks
"""

import pytest

from cdp_ledger import (
    TokenAdapter, ADAPTER_ROLE, InsufficientFunds, NotLive, PoolNotInitialized, to_wad,
)
from tests.builders import POOL, OWNER


@pytest.fixture
def adapter(pool_system):
    return pool_system.adapters[POOL]


class TestExternalBalances:
    """Token holdings outside the ledger."""

    def test_default_address_and_role(self, pool_system, adapter):
        assert adapter.address == f"{POOL}_adapter"
        assert pool_system.access_control.has_role(ADAPTER_ROLE, adapter.address)

    def test_mint_and_transfer(self, adapter):
        adapter.mint_external(OWNER, to_wad("3"))
        adapter.transfer_external(OWNER, "carol", to_wad("1"))
        assert adapter.balance_of(OWNER) == to_wad("2")
        assert adapter.balance_of("carol") == to_wad("1")

    def test_transfer_overdraw(self, adapter):
        with pytest.raises(InsufficientFunds):
            adapter.transfer_external(OWNER, "carol", 1)

    def test_negative_mint(self, adapter):
        with pytest.raises(ValueError):
            adapter.mint_external(OWNER, -1)


class TestDepositWithdraw:
    """Moving tokens in and out of custody."""

    def test_deposit_credits_free_collateral(self, pool_system, adapter):
        adapter.mint_external(OWNER, to_wad("3"))
        adapter.deposit(OWNER, "carol", to_wad("2"))
        assert adapter.balance_of(OWNER) == to_wad("1")
        assert adapter.total_deposited == to_wad("2")
        assert pool_system.book_keeper.collateral_token(POOL, "carol") == to_wad("2")

    def test_deposit_without_tokens(self, pool_system, adapter):
        with pytest.raises(InsufficientFunds):
            adapter.deposit(OWNER, OWNER, 1)
        assert pool_system.book_keeper.collateral_token(POOL, OWNER) == 0

    def test_withdraw(self, pool_system, adapter):
        adapter.mint_external(OWNER, to_wad("3"))
        adapter.deposit(OWNER, OWNER, to_wad("3"))
        adapter.withdraw(OWNER, "carol", to_wad("1"))
        assert adapter.balance_of("carol") == to_wad("1")
        assert adapter.total_deposited == to_wad("2")
        assert pool_system.book_keeper.collateral_token(POOL, OWNER) == to_wad("2")

    def test_withdraw_more_than_free(self, pool_system, adapter):
        adapter.mint_external(OWNER, to_wad("1"))
        adapter.deposit(OWNER, OWNER, to_wad("1"))
        with pytest.raises(InsufficientFunds):
            adapter.withdraw(OWNER, OWNER, to_wad("2"))
        assert adapter.balance_of(OWNER) == 0
        assert adapter.total_deposited == to_wad("1")

    def test_deposit_into_unknown_pool_rolls_back(self, pool_system):
        orphan = TokenAdapter(pool_system.book_keeper, "ETH")
        orphan.mint_external(OWNER, to_wad("1"))
        with pytest.raises(PoolNotInitialized):
            orphan.deposit(OWNER, OWNER, to_wad("1"))
        assert orphan.balance_of(OWNER) == to_wad("1")
        assert orphan.total_deposited == 0


class TestCage:
    """Caged adapters refuse deposits."""

    def test_cage_blocks_deposit_not_withdraw(self, adapter):
        adapter.mint_external(OWNER, to_wad("2"))
        adapter.deposit(OWNER, OWNER, to_wad("1"))
        adapter.cage()
        with pytest.raises(NotLive):
            adapter.deposit(OWNER, OWNER, to_wad("1"))
        adapter.withdraw(OWNER, OWNER, to_wad("1"))
        assert adapter.balance_of(OWNER) == to_wad("2")

    def test_snapshot_roundtrip(self, adapter):
        adapter.mint_external(OWNER, 5)
        state = adapter.snapshot_state()
        adapter.mint_external(OWNER, 5)
        adapter.cage()
        adapter.restore_state(state)
        assert adapter.balance_of(OWNER) == 5
        assert adapter.live
