"""
access_control.py - Role registry for privileged ledger operations

Components never trust each other implicitly: every privileged entry point names
its caller and the registry decides whether that account holds the role. Role
names live in core.py.
"""

from __future__ import annotations
import logging
from typing import Dict, Iterable, Set

from .core import ALL_ROLES, OWNER_ROLE, Address, MissingRole

logger = logging.getLogger(__name__)


class AccessControlConfig:
    """
    Mapping of role name to the set of accounts holding it.

    Example:
        acl = AccessControlConfig(owner="deployer")
        acl.grant_role(LIQUIDATION_ENGINE_ROLE, "liquidation_engine")
        acl.require_role(LIQUIDATION_ENGINE_ROLE, "liquidation_engine")
    """

    def __init__(self, owner: Address):
        self.owner = owner
        self._members: Dict[str, Set[Address]] = {role: set() for role in ALL_ROLES}
        self._members[OWNER_ROLE].add(owner)

    def grant_role(self, role: str, account: Address) -> None:
        """Give `account` the role. Granting twice is a no-op."""
        self._members.setdefault(role, set()).add(account)
        logger.debug("granted %s to %s", role, account)

    def grant_roles(self, roles: Iterable[str], account: Address) -> None:
        """Give `account` several roles at once."""
        for role in roles:
            self.grant_role(role, account)

    def revoke_role(self, role: str, account: Address) -> None:
        """Take the role away from `account`. Revoking a missing role is a no-op."""
        self._members.get(role, set()).discard(account)
        logger.debug("revoked %s from %s", role, account)

    def has_role(self, role: str, account: Address) -> bool:
        """True when `account` holds `role`."""
        return account in self._members.get(role, ())

    def require_role(self, role: str, account: Address) -> None:
        """
        Raise MissingRole unless `account` holds `role`.

        Raises:
            MissingRole: If the account lacks the role
        """
        if not self.has_role(role, account):
            raise MissingRole(f"{account} lacks {role}")

    def require_any_role(self, roles: Iterable[str], account: Address) -> None:
        """Raise MissingRole unless `account` holds at least one of `roles`."""
        roles = tuple(roles)
        if not any(self.has_role(role, account) for role in roles):
            raise MissingRole(f"{account} lacks any of {', '.join(roles)}")

    def members(self, role: str) -> Set[Address]:
        """Return a copy of the accounts holding `role`."""
        return set(self._members.get(role, ()))
