"""
Effective permission resolution for server members.

Combines the permission bitmasks of every role assigned to a member and
applies server-owner and ADMINISTRATOR bypass semantics. Role and ownership
data is read by the caller from the persistence layer and passed in; nothing
here performs I/O.
"""

import logging
from typing import Optional, Sequence
from dataclasses import dataclass

from .permissions import ALL_PERMISSIONS, Permission, compute_permissions, has_permission

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class Role:
    """A server role as read at decision time."""
    role_id: str
    server_id: str
    permissions: int = 0
    position: int = 0
    name: str = ""
    mentionable: bool = False
    color: Optional[str] = None
    hoisted: bool = False

    def __post_init__(self):
        if self.permissions < 0:
            raise ValueError(f"permissions must be non-negative, got {self.permissions}")


@dataclass(frozen=True)
class PermissionSnapshot:
    """Resolved permissions for one actor on one server."""
    is_owner: bool
    effective: int
    is_admin: bool

    def has(self, permission: Permission) -> bool:
        """Check a flag, honouring owner and ADMINISTRATOR bypass."""
        if self.is_admin:
            return True
        return has_permission(self.effective, permission)

    @property
    def permissions(self) -> Permission:
        """Effective bitmask restricted to named flags."""
        return Permission(self.effective & ALL_PERMISSIONS)


EMPTY_SNAPSHOT = PermissionSnapshot(is_owner=False, effective=0, is_admin=False)


# ============================================================================
# Permission Resolver
# ============================================================================

class PermissionResolver:
    """
    Resolves a member's effective permissions.

    Pure and reentrant: holds no mutable state, safe to share across
    request-handling threads.
    """

    def resolve(
        self,
        owner_id: Optional[str],
        actor_id: Optional[str],
        assigned_roles: Optional[Sequence[Role]],
    ) -> PermissionSnapshot:
        """
        Resolve effective permissions for an actor.

        Args:
            owner_id: Owner of the server
            actor_id: Actor being resolved
            assigned_roles: Roles assigned to the actor; None when the actor
                is not a member of the server

        Returns:
            PermissionSnapshot with is_owner, effective bitmask and is_admin
        """
        is_owner = actor_id is not None and actor_id == owner_id

        if assigned_roles is None:
            # Not a member: no role grants, ownership still counts
            if not is_owner:
                logger.debug(f"No membership for actor={actor_id}, resolving to empty permissions")
                return EMPTY_SNAPSHOT
            assigned_roles = ()

        effective = compute_permissions(role.permissions for role in assigned_roles)
        is_admin = is_owner or bool(effective & Permission.ADMINISTRATOR)

        return PermissionSnapshot(is_owner=is_owner, effective=effective, is_admin=is_admin)


_default_resolver = PermissionResolver()


def resolve_permissions(
    owner_id: Optional[str],
    actor_id: Optional[str],
    assigned_roles: Optional[Sequence[Role]],
) -> PermissionSnapshot:
    """Resolve with the shared stateless resolver."""
    return _default_resolver.resolve(owner_id, actor_id, assigned_roles)
