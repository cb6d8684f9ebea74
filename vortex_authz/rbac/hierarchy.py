"""
Role hierarchy comparison for peer moderation.

A member's effective position is the highest position among their roles.
An actor may act on a target only when the actor's effective position is
strictly greater; ties fail.
"""

import logging
from typing import Optional, Sequence

from .resolve import Role

logger = logging.getLogger(__name__)

# Effective position of a member with no roles
DEFAULT_POSITION = 0


# ============================================================================
# Position Functions
# ============================================================================

def get_max_position(roles: Optional[Sequence[Role]]) -> int:
    """
    Get a member's effective position.

    Args:
        roles: Roles assigned to the member

    Returns:
        Highest role position, or 0 when there are no roles

    Examples:
        >>> get_max_position([])
        0
    """
    if not roles:
        return DEFAULT_POSITION

    return max(DEFAULT_POSITION, max(role.position for role in roles))


def outranks(actor_max_position: int, target_max_position: int) -> bool:
    """
    Check whether an actor's position is strictly above a target's.

    Examples:
        >>> outranks(3, 2)
        True
        >>> outranks(2, 2)
        False
    """
    return actor_max_position > target_max_position


# ============================================================================
# Guard
# ============================================================================

class RoleHierarchyGuard:
    """
    Decides whether an actor stands above a target in the role hierarchy.

    The server owner and self-targeting bypass the comparison entirely.
    """

    def can_act_on(
        self,
        actor_id: str,
        target_id: str,
        owner_id: Optional[str],
        actor_roles: Optional[Sequence[Role]],
        target_roles: Optional[Sequence[Role]],
    ) -> bool:
        if actor_id == owner_id:
            return True
        if actor_id == target_id:
            return True

        actor_position = get_max_position(actor_roles)
        target_position = get_max_position(target_roles)
        allowed = outranks(actor_position, target_position)

        if not allowed:
            logger.debug(
                f"Hierarchy check failed: actor={actor_id} position={actor_position}, "
                f"target={target_id} position={target_position}"
            )
        return allowed
