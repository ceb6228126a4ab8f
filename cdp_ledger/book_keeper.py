"""
book_keeper.py - Stateful CDP Ledger

The BookKeeper is the central state manager of the system. It is the only
module that mutates positions, free balances and the global counters, which
keeps every change controlled and auditable.

Key responsibilities:
    - Implements BookKeeperView for safe read-only access by pure functions
    - Adjusts positions under the safe / ceiling / floor / authorization guards
    - Moves free collateral and internal stablecoin between accounts
    - Confiscates positions for the liquidation engine, recording bad debt
    - Folds stability-fee accrual into pool rates and stablecoin supply
    - Runs every mutation atomically (all effects or none) and journals it

Conservation law maintained by every operation:

    total_stablecoin_issued == total_debt_value + total_unbacked_stablecoin

where total_debt_value == Σ_pools total_debt_share * debt_accumulated_rate and
total_unbacked_stablecoin == Σ_accounts system_bad_debt.
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from .access_control import AccessControlConfig
from .collateral_pool_config import CollateralPoolConfig
from .config import get_settings
from .core import (
    # Types
    Address, CollateralPool, LedgerEntry, PoolId, Position, PositionKey,
    PositionSnapshot, Journaled,
    # Roles
    ADAPTER_ROLE, BOOK_KEEPER_ROLE, LIQUIDATION_ENGINE_ROLE, MINTABLE_ROLE,
    OWNER_ROLE, SHOW_STOPPER_ROLE, STABILITY_FEE_COLLECTOR_ROLE,
    # Operations
    OP_ACCRUE_STABILITY_FEE, OP_ADD_COLLATERAL, OP_ADJUST_POSITION,
    OP_CONFISCATE_POSITION, OP_MINT_UNBACKED_STABLECOIN, OP_MOVE_COLLATERAL,
    OP_MOVE_POSITION, OP_MOVE_STABLECOIN, OP_SETTLE_SYSTEM_BAD_DEBT,
    # Exceptions
    DebtCeilingExceeded, DebtFloorViolated, InsufficientFunds, NotAuthorized,
    NotLive, PositionUnderflow, PositionUnsafe,
    # Helper functions
    clears_debt_floor, freeze_fields, is_position_safe, position_collateral_value, snapshot_position,
)
from .fixed_point import Rad, Ray, Wad, debt_value

logger = logging.getLogger(__name__)


class BookKeeper:
    """
    Collateralized-debt-position ledger with full validation and audit trail.

    Implements the BookKeeperView protocol, allowing the book keeper to be passed
    to pure functions that access only read-only methods.

    Design Principles:
        - Always validates: guards run before the first write, so a rejected
          call leaves no trace.
        - Always atomic: every public mutator runs inside atomic(); composite
          callers (liquidation, fee collection) wrap their own sequence in it too.
        - Always logs: every applied mutation is appended to the journal.

    Thread Safety:
        Not thread-safe. A service hosting the ledger must serialize all
        mutating calls behind a single writer.

    Example:
        book_keeper = BookKeeper(access_control=acl)
        book_keeper.pool_config.init_collateral_pool("WBNB", ...)
        book_keeper.add_collateral("adapter", "WBNB", "alice", to_wad("10"))
        book_keeper.adjust_position(
            "alice", "WBNB", "alice", "alice", "alice", to_wad("10"), to_wad("5")
        )
    """

    def __init__(
        self,
        access_control: AccessControlConfig,
        name: Optional[str] = None,
        address: Optional[Address] = None,
        initial_time: Optional[datetime] = None,
        total_debt_ceiling: Optional[Rad] = None,
        verbose: Optional[bool] = None,
    ):
        """
        Create a ledger.

        Args:
            access_control: Role registry shared with the other components
            name: Ledger identifier (default: settings)
            address: Account of the ledger itself (default: settings)
            initial_time: Starting time for the ledger (default: 1970-01-01)
            total_debt_ceiling: Global debt ceiling in RAD (default: settings)
            verbose: Print each journal entry (default: settings)
        """
        settings = get_settings()
        self.name = name or settings.LEDGER_NAME
        self.address = address or settings.BOOK_KEEPER_ADDRESS
        self.access_control = access_control
        self.verbose = settings.VERBOSE if verbose is None else verbose
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)

        self.pool_config = CollateralPoolConfig(access_control, clock=lambda: self._current_time)

        self._positions: Dict[PositionKey, Position] = {}
        self._collateral_token: Dict[PositionKey, int] = {}
        self._stablecoin: Dict[Address, int] = {}
        self._system_bad_debt: Dict[Address, int] = {}
        # (owner, delegate) pairs
        self._whitelist: Set[Tuple[Address, Address]] = set()

        self.total_stablecoin_issued: Rad = Rad(0)
        self.total_unbacked_stablecoin: Rad = Rad(0)
        self.total_debt_value: Rad = Rad(0)
        self.total_debt_ceiling: Rad = (
            settings.TOTAL_DEBT_CEILING if total_debt_ceiling is None else total_debt_ceiling
        )
        self.live = True

        self.journal: List[LedgerEntry] = []
        self._next_sequence = 0
        self._enlisted: List[Journaled] = []
        self._atomic_depth = 0

        # The ledger writes pool aggregates through the registry
        self.access_control.grant_role(BOOK_KEEPER_ROLE, self.address)

    # ========================================================================
    # BookKeeperView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def pool(self, pool_id: PoolId) -> CollateralPool:
        """
        Current snapshot of a collateral pool.

        Raises:
            PoolNotInitialized: If the pool id is unknown
        """
        return self.pool_config.pool(pool_id)

    def position(self, pool_id: PoolId, owner: Address) -> Position:
        """Position of `owner` in `pool_id` (empty if never touched)."""
        return self._positions.get((pool_id, owner), Position())

    def collateral_token(self, pool_id: PoolId, owner: Address) -> Wad:
        """Free collateral of `owner` in `pool_id` (WAD)."""
        return Wad(self._collateral_token.get((pool_id, owner), 0))

    def stablecoin(self, owner: Address) -> Rad:
        """Internal stablecoin balance of `owner` (RAD)."""
        return Rad(self._stablecoin.get(owner, 0))

    def system_bad_debt(self, owner: Address) -> Rad:
        """Bad debt recorded against `owner` (RAD)."""
        return Rad(self._system_bad_debt.get(owner, 0))

    # ========================================================================
    # ADDITIONAL READ VIEWS
    # ========================================================================

    def position_snapshot(self, pool_id: PoolId, owner: Address) -> PositionSnapshot:
        """Position with its debt value, safe collateral value and safety flag."""
        return snapshot_position(self.pool(pool_id), owner, self.position(pool_id, owner))

    def positions(self, pool_id: PoolId) -> Dict[Address, Position]:
        """All non-empty positions of a pool, keyed by owner."""
        return {
            owner: position
            for (pid, owner), position in sorted(self._positions.items())
            if pid == pool_id
        }

    def total_system_bad_debt(self) -> Rad:
        """Sum of bad debt across all accounts (equals total_unbacked_stablecoin)."""
        return Rad(sum(self._system_bad_debt.values()))

    def is_authorized(self, owner: Address, caller: Address) -> bool:
        """True when `caller` is `owner` or a delegate whitelisted by `owner`."""
        return owner == caller or (owner, caller) in self._whitelist

    def verify_invariants(self) -> Dict[str, Any]:
        """
        Verify the ledger's accounting identities.

        Checks:
            - Σ position debt shares per pool == pool total_debt_share
            - Σ_pools total_debt_share * rate == total_debt_value
            - Σ stablecoin balances == total_stablecoin_issued
            - Σ bad debt == total_unbacked_stablecoin
            - total_stablecoin_issued == total_debt_value + total_unbacked_stablecoin

        Returns:
            Dict with keys:
            - 'valid': bool - True if every identity holds
            - 'totals': Dict[str, int] - The recomputed totals
            - 'discrepancies': List[Dict] - One entry per failed identity

        Example:
            result = book_keeper.verify_invariants()
            assert result['valid'], result['discrepancies']
        """
        discrepancies = []

        def check(name: str, expected: int, actual: int) -> None:
            if expected != actual:
                discrepancies.append({
                    'check': name,
                    'expected': expected,
                    'actual': actual,
                    'difference': actual - expected,
                })

        pool_debt_value = 0
        for pool_id in self.pool_config.pool_ids():
            pool = self.pool(pool_id)
            shares = sum(p.debt_share for p in self.positions(pool_id).values())
            check(f"debt_share[{pool_id}]", pool.total_debt_share, shares)
            pool_debt_value += pool.total_debt_value()

        stablecoin_sum = sum(self._stablecoin.values())
        bad_debt_sum = sum(self._system_bad_debt.values())
        check("total_debt_value", self.total_debt_value, pool_debt_value)
        check("total_stablecoin_issued", self.total_stablecoin_issued, stablecoin_sum)
        check("total_unbacked_stablecoin", self.total_unbacked_stablecoin, bad_debt_sum)
        check(
            "conservation",
            self.total_stablecoin_issued,
            self.total_debt_value + self.total_unbacked_stablecoin,
        )

        return {
            'valid': not discrepancies,
            'totals': {
                'debt_value': pool_debt_value,
                'stablecoin': stablecoin_sum,
                'bad_debt': bad_debt_sum,
            },
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock to a new time.

        Time can only move forward, never backward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # ATOMICITY
    # ========================================================================

    def enlist(self, participant: Journaled) -> None:
        """Include a collaborator's state in every atomic snapshot."""
        self._enlisted.append(participant)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Run a block as one unit of work.

        If the block raises, every map, counter, the journal, the pool registry
        and all enlisted collaborators are restored to their state at entry and
        the exception propagates. Blocks nest.
        """
        snapshot = self._snapshot()
        self._atomic_depth += 1
        try:
            yield
        except BaseException as exc:
            self._restore(snapshot)
            if self._atomic_depth == 1:
                logger.warning("rolled back: %s: %s", type(exc).__name__, exc)
            raise
        finally:
            self._atomic_depth -= 1

    def _snapshot(self) -> Dict[str, Any]:
        return {
            'positions': dict(self._positions),
            'collateral_token': dict(self._collateral_token),
            'stablecoin': dict(self._stablecoin),
            'system_bad_debt': dict(self._system_bad_debt),
            'whitelist': set(self._whitelist),
            'totals': (
                self.total_stablecoin_issued,
                self.total_unbacked_stablecoin,
                self.total_debt_value,
                self.total_debt_ceiling,
            ),
            'live': self.live,
            'journal_length': len(self.journal),
            'next_sequence': self._next_sequence,
            'pools': self.pool_config.snapshot_state(),
            'enlisted': [p.snapshot_state() for p in self._enlisted],
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        self._positions = snapshot['positions']
        self._collateral_token = snapshot['collateral_token']
        self._stablecoin = snapshot['stablecoin']
        self._system_bad_debt = snapshot['system_bad_debt']
        self._whitelist = snapshot['whitelist']
        (
            self.total_stablecoin_issued,
            self.total_unbacked_stablecoin,
            self.total_debt_value,
            self.total_debt_ceiling,
        ) = snapshot['totals']
        self.live = snapshot['live']
        del self.journal[snapshot['journal_length']:]
        self._next_sequence = snapshot['next_sequence']
        self.pool_config.restore_state(snapshot['pools'])
        for participant, state in zip(self._enlisted, snapshot['enlisted']):
            participant.restore_state(state)

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def set_total_debt_ceiling(self, total_debt_ceiling: Rad) -> None:
        if total_debt_ceiling < 0:
            raise ValueError(f"Total debt ceiling cannot be negative, got {total_debt_ceiling}")
        self.total_debt_ceiling = total_debt_ceiling

    def cage(self, caller: Address) -> None:
        """Stop all position adjustments and fee accrual."""
        self.access_control.require_any_role((OWNER_ROLE, SHOW_STOPPER_ROLE), caller)
        if self.live:
            self.live = False
            logger.info("book keeper %s caged by %s", self.name, caller)

    def uncage(self, caller: Address) -> None:
        self.access_control.require_any_role((OWNER_ROLE, SHOW_STOPPER_ROLE), caller)
        if not self.live:
            self.live = True
            logger.info("book keeper %s uncaged by %s", self.name, caller)

    def whitelist(self, caller: Address, delegate: Address) -> None:
        """Allow `delegate` to act on the caller's positions and balances."""
        self._whitelist.add((caller, delegate))

    def blacklist(self, caller: Address, delegate: Address) -> None:
        """Revoke a delegation granted with whitelist()."""
        self._whitelist.discard((caller, delegate))

    # ========================================================================
    # POSITION ADJUSTMENT
    # ========================================================================

    def adjust_position(
        self,
        caller: Address,
        pool_id: PoolId,
        position_address: Address,
        collateral_owner: Address,
        stablecoin_owner: Address,
        delta_collateral: Wad,
        delta_debt_share: Wad,
    ) -> Position:
        """
        Lock/unlock collateral and draw/repay debt on a position.

        Effects:
            position.locked_collateral += delta_collateral
            position.debt_share        += delta_debt_share
            pool.total_debt_share      += delta_debt_share
            collateral_token[collateral_owner] -= delta_collateral
            stablecoin[stablecoin_owner]       += delta_debt_share * rate

        Guards, in order:
            (a) ledger live, pool initialised         NotLive / PoolNotInitialized
            (b) risk-increasing change stays safe     PositionUnsafe
            (c) draws stay under pool/global ceiling  DebtCeilingExceeded
            (d) non-zero debt clears the debt floor   DebtFloorViolated
            (e) caller authorized for every account   NotAuthorized
        followed by the balance checks (InsufficientFunds, PositionUnderflow).

        Returns:
            The position after the adjustment
        """
        with self.atomic():
            if not self.live:
                raise NotLive(f"Book keeper {self.name} is caged")
            pool = self.pool(pool_id)

            current = self.position(pool_id, position_address)
            updated = Position(
                locked_collateral=Wad(current.locked_collateral + delta_collateral),
                debt_share=Wad(current.debt_share + delta_debt_share),
            )
            if updated.locked_collateral < 0 or updated.debt_share < 0:
                raise PositionUnderflow(
                    f"Position {position_address} in {pool_id} would go negative: {updated}"
                )

            rate = pool.debt_accumulated_rate
            delta_debt_value = debt_value(delta_debt_share, rate)
            new_total_debt_share = pool.total_debt_share + delta_debt_share
            risk_increasing = delta_debt_share > 0 or delta_collateral < 0

            # (b)
            if risk_increasing and not is_position_safe(updated, pool):
                raise PositionUnsafe(
                    f"Position {position_address} in {pool_id} not safe: debt "
                    f"{debt_value(updated.debt_share, rate)} > collateral value "
                    f"{position_collateral_value(updated, pool)}"
                )
            # (c)
            if delta_debt_share > 0:
                if debt_value(new_total_debt_share, rate) > pool.debt_ceiling:
                    raise DebtCeilingExceeded(
                        f"Pool {pool_id} debt {debt_value(new_total_debt_share, rate)} "
                        f"exceeds ceiling {pool.debt_ceiling}"
                    )
                if self.total_debt_value + delta_debt_value > self.total_debt_ceiling:
                    raise DebtCeilingExceeded(
                        f"Total debt {self.total_debt_value + delta_debt_value} "
                        f"exceeds ceiling {self.total_debt_ceiling}"
                    )
            # (d)
            if not clears_debt_floor(updated, pool):
                raise DebtFloorViolated(
                    f"Position {position_address} in {pool_id} debt "
                    f"{debt_value(updated.debt_share, rate)} below floor {pool.debt_floor}"
                )
            # (e)
            if risk_increasing and not self.is_authorized(position_address, caller):
                raise NotAuthorized(f"{caller} may not adjust position {position_address}")
            if delta_collateral > 0 and not self.is_authorized(collateral_owner, caller):
                raise NotAuthorized(f"{caller} may not spend collateral of {collateral_owner}")
            if delta_debt_share < 0 and not self.is_authorized(stablecoin_owner, caller):
                raise NotAuthorized(f"{caller} may not spend stablecoin of {stablecoin_owner}")

            self._add_collateral_token(pool_id, collateral_owner, -delta_collateral)
            self._add_stablecoin(stablecoin_owner, delta_debt_value)
            self._set_position(pool_id, position_address, updated)
            self.pool_config.set_total_debt_share(self.address, pool_id, Wad(new_total_debt_share))
            self.total_stablecoin_issued = Rad(self.total_stablecoin_issued + delta_debt_value)
            self.total_debt_value = Rad(self.total_debt_value + delta_debt_value)

            self._record(
                OP_ADJUST_POSITION, caller, pool_id,
                position=position_address,
                collateral_owner=collateral_owner,
                stablecoin_owner=stablecoin_owner,
                delta_collateral=delta_collateral,
                delta_debt_share=delta_debt_share,
                delta_debt_value=delta_debt_value,
            )
            return updated

    def move_position(
        self,
        caller: Address,
        pool_id: PoolId,
        src: Address,
        dst: Address,
        delta_collateral: Wad,
        delta_debt_share: Wad,
    ) -> None:
        """
        Move collateral and debt from one position to another in the same pool.

        Both owners must authorize the caller; both resulting positions must be
        safe and clear the debt floor.
        """
        with self.atomic():
            pool = self.pool(pool_id)
            source = self.position(pool_id, src)
            target = self.position(pool_id, dst)
            new_source = Position(
                Wad(source.locked_collateral - delta_collateral),
                Wad(source.debt_share - delta_debt_share),
            )
            new_target = Position(
                Wad(target.locked_collateral + delta_collateral),
                Wad(target.debt_share + delta_debt_share),
            )
            for owner, updated in ((src, new_source), (dst, new_target)):
                if updated.locked_collateral < 0 or updated.debt_share < 0:
                    raise PositionUnderflow(f"Position {owner} in {pool_id} would go negative")
            for owner in (src, dst):
                if not self.is_authorized(owner, caller):
                    raise NotAuthorized(f"{caller} may not move position {owner}")
            for owner, updated in ((src, new_source), (dst, new_target)):
                if not is_position_safe(updated, pool):
                    raise PositionUnsafe(f"Position {owner} in {pool_id} not safe after move")
                if not clears_debt_floor(updated, pool):
                    raise DebtFloorViolated(f"Position {owner} in {pool_id} below debt floor after move")

            self._set_position(pool_id, src, new_source)
            self._set_position(pool_id, dst, new_target)
            self._record(
                OP_MOVE_POSITION, caller, pool_id,
                src=src, dst=dst,
                delta_collateral=delta_collateral,
                delta_debt_share=delta_debt_share,
            )

    # ========================================================================
    # FREE BALANCE MOVEMENTS
    # ========================================================================

    def move_collateral(
        self, caller: Address, pool_id: PoolId, src: Address, dst: Address, amount: Wad
    ) -> None:
        """Transfer free collateral between accounts within one pool."""
        if amount < 0:
            raise ValueError(f"Collateral amount cannot be negative, got {amount}")
        with self.atomic():
            self.pool(pool_id)
            if not self.is_authorized(src, caller):
                raise NotAuthorized(f"{caller} may not move collateral of {src}")
            self._add_collateral_token(pool_id, src, -amount)
            self._add_collateral_token(pool_id, dst, amount)
            self._record(OP_MOVE_COLLATERAL, caller, pool_id, src=src, dst=dst, amount=amount)

    def move_stablecoin(self, caller: Address, src: Address, dst: Address, value: Rad) -> None:
        """Transfer internal stablecoin between accounts."""
        if value < 0:
            raise ValueError(f"Stablecoin value cannot be negative, got {value}")
        with self.atomic():
            if not self.is_authorized(src, caller):
                raise NotAuthorized(f"{caller} may not move stablecoin of {src}")
            self._add_stablecoin(src, -value)
            self._add_stablecoin(dst, value)
            self._record(OP_MOVE_STABLECOIN, caller, None, src=src, dst=dst, value=value)

    def add_collateral(self, caller: Address, pool_id: PoolId, owner: Address, amount: Wad) -> None:
        """Credit (or, negative, debit) free collateral on behalf of a custody adapter."""
        self.access_control.require_role(ADAPTER_ROLE, caller)
        with self.atomic():
            self.pool(pool_id)
            self._add_collateral_token(pool_id, owner, amount)
            self._record(OP_ADD_COLLATERAL, caller, pool_id, owner=owner, amount=amount)

    # ========================================================================
    # PRIVILEGED OPERATIONS
    # ========================================================================

    def confiscate_position(
        self,
        caller: Address,
        pool_id: PoolId,
        position_address: Address,
        collateral_creditor: Address,
        stablecoin_debtor: Address,
        delta_collateral: Wad,
        delta_debt_share: Wad,
    ) -> Rad:
        """
        Forcibly change a position without the safe check.

        Reserved for LIQUIDATION_ENGINE_ROLE holders. The collateral removed from
        the position is credited to `collateral_creditor`; the debt value removed
        is recorded as bad debt against `stablecoin_debtor` until somebody pays
        it off with settle_system_bad_debt().

        Returns:
            Bad debt recorded by this call (RAD)
        """
        self.access_control.require_role(LIQUIDATION_ENGINE_ROLE, caller)
        with self.atomic():
            pool = self.pool(pool_id)
            current = self.position(pool_id, position_address)
            updated = Position(
                locked_collateral=Wad(current.locked_collateral + delta_collateral),
                debt_share=Wad(current.debt_share + delta_debt_share),
            )
            if updated.locked_collateral < 0:
                raise PositionUnderflow(
                    f"Cannot remove {-delta_collateral} collateral from {position_address}: "
                    f"only {current.locked_collateral} locked"
                )
            if updated.debt_share < 0:
                raise PositionUnderflow(
                    f"Cannot remove {-delta_debt_share} debt share from {position_address}: "
                    f"only {current.debt_share} owed"
                )

            delta_debt_value = debt_value(delta_debt_share, pool.debt_accumulated_rate)
            bad_debt = Rad(-delta_debt_value)

            self._add_collateral_token(pool_id, collateral_creditor, -delta_collateral)
            self._add_bad_debt(stablecoin_debtor, bad_debt)
            self._set_position(pool_id, position_address, updated)
            self.pool_config.set_total_debt_share(
                self.address, pool_id, Wad(pool.total_debt_share + delta_debt_share)
            )
            self.total_unbacked_stablecoin = Rad(self.total_unbacked_stablecoin + bad_debt)
            self.total_debt_value = Rad(self.total_debt_value + delta_debt_value)

            self._record(
                OP_CONFISCATE_POSITION, caller, pool_id,
                position=position_address,
                collateral_creditor=collateral_creditor,
                stablecoin_debtor=stablecoin_debtor,
                delta_collateral=delta_collateral,
                delta_debt_share=delta_debt_share,
                bad_debt=bad_debt,
            )
            return bad_debt

    def accrue_stability_fee(
        self, caller: Address, pool_id: PoolId, recipient: Address, delta_rate: Ray
    ) -> Rad:
        """
        Raise a pool's accumulated rate and mint the resulting fee to `recipient`.

        Returns:
            Fee value minted (RAD): total_debt_share * delta_rate
        """
        self.access_control.require_role(STABILITY_FEE_COLLECTOR_ROLE, caller)
        with self.atomic():
            if not self.live:
                raise NotLive(f"Book keeper {self.name} is caged")
            pool = self.pool(pool_id)
            new_rate = pool.debt_accumulated_rate + delta_rate
            value = debt_value(pool.total_debt_share, delta_rate)

            self.pool_config.set_debt_accumulated_rate(self.address, pool_id, Ray(new_rate))
            self._add_stablecoin(recipient, value)
            self.total_stablecoin_issued = Rad(self.total_stablecoin_issued + value)
            self.total_debt_value = Rad(self.total_debt_value + value)

            self._record(
                OP_ACCRUE_STABILITY_FEE, caller, pool_id,
                recipient=recipient, delta_rate=delta_rate, value=value,
            )
            return value

    def settle_system_bad_debt(self, caller: Address, value: Rad) -> None:
        """Burn `value` of the caller's stablecoin against the caller's bad debt."""
        if value < 0:
            raise ValueError(f"Settlement value cannot be negative, got {value}")
        with self.atomic():
            if self.system_bad_debt(caller) < value:
                raise InsufficientFunds(
                    f"{caller} has bad debt {self.system_bad_debt(caller)}, cannot settle {value}"
                )
            self._add_stablecoin(caller, -value)
            self._add_bad_debt(caller, Rad(-value))
            self.total_unbacked_stablecoin = Rad(self.total_unbacked_stablecoin - value)
            self.total_stablecoin_issued = Rad(self.total_stablecoin_issued - value)
            self._record(OP_SETTLE_SYSTEM_BAD_DEBT, caller, None, value=value)

    def mint_unbacked_stablecoin(
        self, caller: Address, debtor: Address, recipient: Address, value: Rad
    ) -> None:
        """Create stablecoin for `recipient` backed only by bad debt of `debtor`."""
        self.access_control.require_role(MINTABLE_ROLE, caller)
        if value < 0:
            raise ValueError(f"Mint value cannot be negative, got {value}")
        with self.atomic():
            self._add_bad_debt(debtor, value)
            self._add_stablecoin(recipient, value)
            self.total_unbacked_stablecoin = Rad(self.total_unbacked_stablecoin + value)
            self.total_stablecoin_issued = Rad(self.total_stablecoin_issued + value)
            self._record(
                OP_MINT_UNBACKED_STABLECOIN, caller, None,
                debtor=debtor, recipient=recipient, value=value,
            )

    # ========================================================================
    # CLONING
    # ========================================================================

    def clone(self) -> BookKeeper:
        """
        Create a deep copy of this ledger.

        Positions, balances, pool snapshots and the journal are independent;
        collaborators referenced by pools (feeds, adapters, strategies) and the
        role registry are shared. Enlisted collaborators are not carried over.

        Returns:
            A new BookKeeper instance with identical state
        """
        cloned = BookKeeper.__new__(BookKeeper)
        cloned.name = self.name
        cloned.address = self.address
        cloned.access_control = self.access_control
        cloned.verbose = self.verbose
        cloned._current_time = self._current_time
        cloned.pool_config = self.pool_config.clone(clock=lambda: cloned._current_time)

        cloned._positions = dict(self._positions)
        cloned._collateral_token = dict(self._collateral_token)
        cloned._stablecoin = dict(self._stablecoin)
        cloned._system_bad_debt = dict(self._system_bad_debt)
        cloned._whitelist = set(self._whitelist)

        cloned.total_stablecoin_issued = self.total_stablecoin_issued
        cloned.total_unbacked_stablecoin = self.total_unbacked_stablecoin
        cloned.total_debt_value = self.total_debt_value
        cloned.total_debt_ceiling = self.total_debt_ceiling
        cloned.live = self.live

        cloned.journal = list(self.journal)
        cloned._next_sequence = self._next_sequence
        cloned._enlisted = []
        cloned._atomic_depth = 0
        return cloned

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _set_position(self, pool_id: PoolId, owner: Address, position: Position) -> None:
        if position.is_empty():
            self._positions.pop((pool_id, owner), None)
        else:
            self._positions[(pool_id, owner)] = position

    def _add_collateral_token(self, pool_id: PoolId, owner: Address, amount: int) -> None:
        balance = self._collateral_token.get((pool_id, owner), 0) + amount
        if balance < 0:
            raise InsufficientFunds(
                f"{owner} has {balance - amount} free collateral in {pool_id}, needs {-amount}"
            )
        self._collateral_token[(pool_id, owner)] = balance

    def _add_stablecoin(self, owner: Address, value: int) -> None:
        balance = self._stablecoin.get(owner, 0) + value
        if balance < 0:
            raise InsufficientFunds(f"{owner} has {balance - value} stablecoin, needs {-value}")
        self._stablecoin[owner] = balance

    def _add_bad_debt(self, owner: Address, value: int) -> None:
        balance = self._system_bad_debt.get(owner, 0) + value
        if balance < 0:
            raise InsufficientFunds(f"{owner} has {balance - value} bad debt, cannot reduce by {-value}")
        self._system_bad_debt[owner] = balance

    def _record(self, operation: str, caller: Address, pool_id: Optional[PoolId], **fields: Any) -> None:
        entry = LedgerEntry(
            sequence=self._next_sequence,
            timestamp=self._current_time,
            operation=operation,
            caller=caller,
            pool_id=pool_id,
            fields=freeze_fields(fields),
        )
        self._next_sequence += 1
        self.journal.append(entry)
        logger.debug("%s #%d by %s on %s", operation, entry.sequence, caller, pool_id)
        if self.verbose:
            print(repr(entry))
