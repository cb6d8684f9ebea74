"""
Permission bit flags, effective-permission resolution and role hierarchy.
"""

from .permissions import (
    Permission,
    NO_PERMISSIONS,
    ALL_PERMISSIONS,
    compute_permissions,
    has_permission,
    add_permission,
    remove_permission,
    get_missing_permissions,
    permission_names,
)

from .resolve import (
    Role,
    PermissionSnapshot,
    PermissionResolver,
    EMPTY_SNAPSHOT,
    resolve_permissions,
)

from .hierarchy import (
    DEFAULT_POSITION,
    RoleHierarchyGuard,
    get_max_position,
    outranks,
)

__all__ = [
    # Permissions
    "Permission",
    "NO_PERMISSIONS",
    "ALL_PERMISSIONS",
    "compute_permissions",
    "has_permission",
    "add_permission",
    "remove_permission",
    "get_missing_permissions",
    "permission_names",
    # Resolver
    "Role",
    "PermissionSnapshot",
    "PermissionResolver",
    "EMPTY_SNAPSHOT",
    "resolve_permissions",
    # Hierarchy
    "DEFAULT_POSITION",
    "RoleHierarchyGuard",
    "get_max_position",
    "outranks",
]
