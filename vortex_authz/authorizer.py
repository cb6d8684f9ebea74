"""
Authorization decisions for privileged moderation actions.

Each action kind has its own guarded check composed from the permission
resolver, the role hierarchy guard and timeout state. Decisions are values
(Allowed, Forbidden, NotFound), never exceptions, and are computed from a
snapshot of server, member, role and timeout data supplied by the caller.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, ClassVar, Dict, Optional, Sequence, Union

from vortex_authz.errors import ForbiddenError, NotFoundError
from vortex_authz.metrics import audit_authz_denial, record_authorization
from vortex_authz.rbac.hierarchy import RoleHierarchyGuard
from vortex_authz.rbac.permissions import Permission
from vortex_authz.rbac.resolve import PermissionResolver, PermissionSnapshot, Role
from vortex_authz.timeouts import TimeoutLedger, TimeoutRecord, utcnow

logger = logging.getLogger(__name__)


# ============================================================================
# Action Kinds
# ============================================================================

class ActionKind(str, Enum):
    """Privileged actions gated by the authorizer."""

    KICK_MEMBER = "kick_member"
    TIMEOUT_APPLY = "timeout_apply"
    TIMEOUT_REMOVE = "timeout_remove"
    MEMBER_BAN = "member_ban"
    MEMBER_UNBAN = "member_unban"
    ROLE_ASSIGN = "role_assign"
    ROLE_REMOVE = "role_remove"
    MESSAGE_PIN = "message_pin"
    MESSAGE_UNPIN = "message_unpin"
    MESSAGE_SEND = "message_send"
    WEBHOOK_MANAGE = "webhook_manage"
    AUTOMOD_MANAGE = "automod_manage"
    AUTOMOD_READ = "automod_read"
    SCREENING_MANAGE = "screening_manage"
    SCREENING_READ = "screening_read"

    def __str__(self) -> str:
        return self.value


# Actions whose target must currently be a member of the server
TARGET_MEMBER_ACTIONS = frozenset({
    ActionKind.KICK_MEMBER,
    ActionKind.TIMEOUT_APPLY,
    ActionKind.ROLE_ASSIGN,
    ActionKind.ROLE_REMOVE,
})


# Actions that name a target who need not be a current member
TARGET_ID_ACTIONS = frozenset({
    ActionKind.TIMEOUT_REMOVE,
    ActionKind.MEMBER_BAN,
    ActionKind.MEMBER_UNBAN,
})


# Forbidden reason codes
REASON_TARGET_IS_OWNER = "target_is_owner"
REASON_MISSING_PERMISSION = "missing_permission"
REASON_INSUFFICIENT_POSITION = "insufficient_role_position"
REASON_OWNER_ONLY = "owner_only"
REASON_NOT_A_MEMBER = "not_a_member"
REASON_TIMED_OUT = "timed_out"


# ============================================================================
# Decision Values
# ============================================================================

@dataclass(frozen=True)
class Allowed:
    """The action may proceed."""
    allowed: ClassVar[bool] = True
    snapshot: Optional[PermissionSnapshot] = None


@dataclass(frozen=True)
class Forbidden:
    """The actor lacks a capability or hierarchy standing."""
    allowed: ClassVar[bool] = False
    reason: str
    message: str
    missing_permission: Optional[Permission] = None

    def to_error(self) -> ForbiddenError:
        missing = self.missing_permission.name if self.missing_permission else None
        return ForbiddenError(self.reason, self.message, missing_permission=missing)


@dataclass(frozen=True)
class NotFound:
    """A referenced server or member does not exist."""
    allowed: ClassVar[bool] = False
    entity: str
    message: str = ""

    def to_error(self) -> NotFoundError:
        return NotFoundError(self.entity, self.message or None)


AuthorizationResult = Union[Allowed, Forbidden, NotFound]


# ============================================================================
# Context
# ============================================================================

@dataclass(frozen=True)
class ServerRef:
    """Ownership lookup result for a server."""
    server_id: str
    owner_id: str


@dataclass(frozen=True)
class AuthorizationContext:
    """
    Snapshot of everything a decision may read.

    actor_roles / target_roles are None when that user is not a current
    member of the server, and an empty sequence for a member with no roles.
    """
    server: Optional[ServerRef]
    actor_id: str
    actor_roles: Optional[Sequence[Role]] = None
    target_id: Optional[str] = None
    target_roles: Optional[Sequence[Role]] = None
    actor_timeout: Optional[TimeoutRecord] = None
    now: Optional[datetime] = None

    @property
    def actor_is_member(self) -> bool:
        return self.actor_roles is not None

    @property
    def target_is_member(self) -> bool:
        return self.target_roles is not None


# ============================================================================
# Authorizer
# ============================================================================

class ModerationActionAuthorizer:
    """
    Gates privileged actions.

    Stateless apart from its collaborators, which are themselves pure; one
    instance may be shared by every request-handling thread.
    """

    def __init__(
        self,
        resolver: Optional[PermissionResolver] = None,
        hierarchy: Optional[RoleHierarchyGuard] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.resolver = resolver if resolver is not None else PermissionResolver()
        self.hierarchy = hierarchy if hierarchy is not None else RoleHierarchyGuard()
        self._clock = clock if clock is not None else utcnow
        self._checks: Dict[ActionKind, Callable[[AuthorizationContext, PermissionSnapshot], AuthorizationResult]] = {
            ActionKind.KICK_MEMBER: self._check_kick,
            ActionKind.TIMEOUT_APPLY: self._check_timeout,
            ActionKind.TIMEOUT_REMOVE: self._check_timeout,
            ActionKind.MEMBER_BAN: self._check_ban,
            ActionKind.MEMBER_UNBAN: self._check_ban,
            ActionKind.ROLE_ASSIGN: self._check_manage_roles,
            ActionKind.ROLE_REMOVE: self._check_manage_roles,
            ActionKind.MESSAGE_PIN: self._check_manage_messages,
            ActionKind.MESSAGE_UNPIN: self._check_manage_messages,
            ActionKind.MESSAGE_SEND: self._check_send_message,
            ActionKind.WEBHOOK_MANAGE: self._check_manage_webhooks,
            ActionKind.AUTOMOD_MANAGE: self._check_owner_only,
            ActionKind.AUTOMOD_READ: self._check_member,
            ActionKind.SCREENING_MANAGE: self._check_owner_only,
            ActionKind.SCREENING_READ: self._check_member,
        }

    def resolve(self, context: AuthorizationContext) -> PermissionSnapshot:
        """Resolve the actor's effective permissions for this context."""
        owner_id = context.server.owner_id if context.server else None
        return self.resolver.resolve(owner_id, context.actor_id, context.actor_roles)

    def authorize(self, action: ActionKind, context: AuthorizationContext) -> AuthorizationResult:
        """
        Decide whether the actor may perform an action.

        Args:
            action: Action kind to gate
            context: Snapshot of server, actor, target and timeout data

        Returns:
            Allowed, Forbidden(reason) or NotFound(entity)
        """
        action = ActionKind(action)

        not_found = self._check_existence(action, context)
        if not_found is not None:
            record_authorization(action.value, False, "not_found")
            return not_found

        snapshot = self.resolve(context)
        result = self._checks[action](context, snapshot)

        if isinstance(result, Forbidden):
            record_authorization(action.value, False, result.reason)
            audit_authz_denial(
                action=action.value,
                server_id=context.server.server_id,
                actor_id=context.actor_id,
                target_id=context.target_id,
                reason=result.reason,
                metadata={"missing_permission": result.missing_permission.name}
                if result.missing_permission else None,
            )
        else:
            record_authorization(action.value, True)
            logger.debug(
                f"Authorized {action.value}: server={context.server.server_id} "
                f"actor={context.actor_id} target={context.target_id}"
            )
        return result

    # ------------------------------------------------------------------
    # Existence
    # ------------------------------------------------------------------

    def _check_existence(self, action: ActionKind, context: AuthorizationContext) -> Optional[NotFound]:
        if context.server is None:
            return NotFound("server", "Server not found")
        if action in TARGET_MEMBER_ACTIONS:
            if context.target_id is None or not context.target_is_member:
                return NotFound("member", "Member not found")
        if action in TARGET_ID_ACTIONS and context.target_id is None:
            return NotFound("member", "Member not found")
        return None

    # ------------------------------------------------------------------
    # Per-action checks
    # ------------------------------------------------------------------

    def _check_kick(self, context: AuthorizationContext, snapshot: PermissionSnapshot) -> AuthorizationResult:
        if context.target_id == context.server.owner_id:
            return Forbidden(REASON_TARGET_IS_OWNER, "Cannot kick the server owner")
        if snapshot.is_owner:
            return Allowed(snapshot)
        if not snapshot.has(Permission.KICK_MEMBERS):
            return _missing(Permission.KICK_MEMBERS)
        if not self.hierarchy.can_act_on(
            context.actor_id,
            context.target_id,
            context.server.owner_id,
            context.actor_roles,
            context.target_roles,
        ):
            return Forbidden(
                REASON_INSUFFICIENT_POSITION,
                "Cannot kick a member with equal or higher role",
            )
        return Allowed(snapshot)

    def _check_timeout(self, context: AuthorizationContext, snapshot: PermissionSnapshot) -> AuthorizationResult:
        # No hierarchy comparison for timeouts; only kicks compare positions.
        if context.target_id == context.server.owner_id:
            return Forbidden(REASON_TARGET_IS_OWNER, "Cannot timeout the server owner")
        if snapshot.is_owner:
            return Allowed(snapshot)
        if not snapshot.has(Permission.MODERATE_MEMBERS):
            return _missing(Permission.MODERATE_MEMBERS)
        return Allowed(snapshot)

    def _check_ban(self, context: AuthorizationContext, snapshot: PermissionSnapshot) -> AuthorizationResult:
        # Bans may target users who already left; no hierarchy comparison.
        if context.target_id == context.server.owner_id:
            return Forbidden(REASON_TARGET_IS_OWNER, "Cannot ban the server owner")
        if snapshot.is_owner:
            return Allowed(snapshot)
        if not snapshot.has(Permission.BAN_MEMBERS):
            return _missing(Permission.BAN_MEMBERS)
        return Allowed(snapshot)

    def _check_manage_roles(self, context: AuthorizationContext, snapshot: PermissionSnapshot) -> AuthorizationResult:
        if snapshot.is_owner or snapshot.has(Permission.MANAGE_ROLES):
            return Allowed(snapshot)
        return _missing(Permission.MANAGE_ROLES)

    def _check_manage_messages(self, context: AuthorizationContext, snapshot: PermissionSnapshot) -> AuthorizationResult:
        if snapshot.is_admin or snapshot.has(Permission.MANAGE_MESSAGES):
            return Allowed(snapshot)
        return _missing(Permission.MANAGE_MESSAGES)

    def _check_manage_webhooks(self, context: AuthorizationContext, snapshot: PermissionSnapshot) -> AuthorizationResult:
        if snapshot.is_admin or snapshot.has(Permission.MANAGE_WEBHOOKS):
            return Allowed(snapshot)
        return _missing(Permission.MANAGE_WEBHOOKS)

    def _check_owner_only(self, context: AuthorizationContext, snapshot: PermissionSnapshot) -> AuthorizationResult:
        if snapshot.is_owner:
            return Allowed(snapshot)
        return Forbidden(REASON_OWNER_ONLY, "Only the server owner may do this")

    def _check_member(self, context: AuthorizationContext, snapshot: PermissionSnapshot) -> AuthorizationResult:
        if snapshot.is_owner or context.actor_is_member:
            return Allowed(snapshot)
        return Forbidden(REASON_NOT_A_MEMBER, "Not a member")

    def _check_send_message(self, context: AuthorizationContext, snapshot: PermissionSnapshot) -> AuthorizationResult:
        if not (snapshot.is_owner or context.actor_is_member):
            return Forbidden(REASON_NOT_A_MEMBER, "Not a member")
        now = context.now or self._clock()
        if TimeoutLedger.is_active(context.actor_timeout, now):
            until = context.actor_timeout.until.isoformat()
            return Forbidden(REASON_TIMED_OUT, f"You are timed out until {until}")
        return Allowed(snapshot)


def _missing(permission: Permission) -> Forbidden:
    return Forbidden(
        REASON_MISSING_PERMISSION,
        f"Permission '{permission.name}' required",
        missing_permission=permission,
    )
