"""
Permission bit flags and bitmask helpers.

Defines the single enumeration of server permissions shared by every
component. Each flag is one bit; a role's permission set is the integer OR
of its flags. The bit positions are stored on role rows and must never be
renumbered.
"""

from enum import IntFlag
from typing import Iterable, Set
import logging

logger = logging.getLogger(__name__)


# ============================================================================
# Permission Flags
# ============================================================================

class Permission(IntFlag):
    """Named server capabilities, one bit each."""

    # General
    VIEW_CHANNELS = 1 << 0
    SEND_MESSAGES = 1 << 1
    MANAGE_MESSAGES = 1 << 2
    KICK_MEMBERS = 1 << 3
    BAN_MEMBERS = 1 << 4
    MANAGE_ROLES = 1 << 5
    MANAGE_CHANNELS = 1 << 6
    ADMINISTRATOR = 1 << 7
    # Voice
    CONNECT_VOICE = 1 << 8
    SPEAK = 1 << 9
    MUTE_MEMBERS = 1 << 10
    STREAM = 1 << 11
    # Extended
    MANAGE_WEBHOOKS = 1 << 12
    MANAGE_EVENTS = 1 << 13
    MODERATE_MEMBERS = 1 << 14
    CREATE_PUBLIC_THREADS = 1 << 15
    CREATE_PRIVATE_THREADS = 1 << 16
    SEND_MESSAGES_IN_THREADS = 1 << 17
    USE_APPLICATION_COMMANDS = 1 << 18
    MENTION_EVERYONE = 1 << 19


NO_PERMISSIONS = Permission(0)

# Every named flag OR'd together
ALL_PERMISSIONS = Permission(0)
for _flag in Permission:
    ALL_PERMISSIONS |= _flag
del _flag


# ============================================================================
# Bitmask Functions
# ============================================================================

def compute_permissions(bitmasks: Iterable[int]) -> int:
    """
    Combine role bitmasks into one effective bitmask.

    Args:
        bitmasks: Permission integers, one per role

    Returns:
        Bitwise OR of every input, 0 for an empty input

    Examples:
        >>> compute_permissions([])
        0
        >>> compute_permissions([Permission.KICK_MEMBERS, Permission.MANAGE_ROLES])
        40
    """
    combined = 0
    for mask in bitmasks:
        if mask < 0:
            raise ValueError(f"Permission bitmask must be non-negative, got {mask}")
        combined |= int(mask)
    return combined


def has_permission(permissions: int, permission: Permission) -> bool:
    """
    Check a bitmask for one flag.

    ADMINISTRATOR grants every flag, so it short-circuits the bit test.

    Examples:
        >>> has_permission(Permission.ADMINISTRATOR, Permission.KICK_MEMBERS)
        True
        >>> has_permission(Permission.SEND_MESSAGES, Permission.KICK_MEMBERS)
        False
    """
    if permissions & Permission.ADMINISTRATOR:
        return True
    return bool(permissions & permission)


def add_permission(permissions: int, permission: Permission) -> int:
    """Return the bitmask with the flag set."""
    return int(permissions) | int(permission)


def remove_permission(permissions: int, permission: Permission) -> int:
    """Return the bitmask with the flag cleared."""
    return int(permissions) & ~int(permission)


def get_missing_permissions(permissions: int, required: Iterable[Permission]) -> Set[Permission]:
    """
    Get flags from a required set that the bitmask does not grant.

    Examples:
        >>> get_missing_permissions(Permission.KICK_MEMBERS, [Permission.KICK_MEMBERS])
        set()
    """
    return {flag for flag in required if not has_permission(permissions, flag)}


def permission_names(permissions: int) -> list:
    """
    List the named flags set in a bitmask, lowest bit first.

    Bits outside the enumeration are ignored.
    """
    return [flag.name for flag in Permission if permissions & flag]
