"""
Moderation service: authorize, mutate, then audit.

Every mutating operation follows the same order. The authorizer decides
first and a negative decision is raised as its matching error before any
state changes. The mutation runs next. The audit record goes out last and
a failing audit sink never undoes the mutation.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from vortex_authz import audit as audit_actions
from vortex_authz.audit import AuditEmitter
from vortex_authz.authorizer import (
    ActionKind,
    Allowed,
    AuthorizationContext,
    ModerationActionAuthorizer,
)
from vortex_authz.automod.evaluate import (
    RuleViolation,
    evaluate_all_rules,
    get_alert_channels,
    get_timeout_duration,
    should_block_message,
)
from vortex_authz.automod.rules import AutomodRule, AutomodRuleStore, build_rule, merge_rule_patch
from vortex_authz.bans import BanList, BanRecord
from vortex_authz.config import load_config, load_rate_limit_policies
from vortex_authz.errors import NotFoundError
from vortex_authz.limits import RateLimiter, RateLimitPolicy, RateLimitResult
from vortex_authz.timeouts import TimeoutLedger, TimeoutRecord

logger = logging.getLogger(__name__)

# Actor id recorded for timeouts applied by automod rather than a person
AUTOMOD_ACTOR_ID = "automod"

MESSAGE_POST_POLICY = "message_post"


@dataclass(frozen=True)
class MessageCheck:
    """Outcome of screening an outgoing message."""
    violations: List[RuleViolation] = field(default_factory=list)
    blocked: bool = False
    timeout: Optional[TimeoutRecord] = None
    alert_channels: List[str] = field(default_factory=list)
    rate_limit: Optional[RateLimitResult] = None


class ModerationService:
    """
    Orchestrates the engine components for moderation endpoints.

    All collaborators are injected; omitted ones get in-memory defaults.
    """

    def __init__(
        self,
        authorizer: Optional[ModerationActionAuthorizer] = None,
        ledger: Optional[TimeoutLedger] = None,
        rules: Optional[AutomodRuleStore] = None,
        audit: Optional[AuditEmitter] = None,
        limiter: Optional[RateLimiter] = None,
        policies: Optional[Dict[str, RateLimitPolicy]] = None,
        config: Optional[Dict[str, Any]] = None,
        bans: Optional[BanList] = None,
    ):
        # Stores define __len__, so an empty injected one is falsy; test for None.
        self.config = config if config is not None else load_config()
        self.ledger = ledger if ledger is not None else TimeoutLedger()
        self.authorizer = authorizer if authorizer is not None else ModerationActionAuthorizer(clock=self.ledger.now)
        self.rules = rules if rules is not None else AutomodRuleStore()
        self.bans = bans if bans is not None else BanList()
        self.audit = audit if audit is not None else AuditEmitter(enabled=self.config["AUDIT_ENABLED"])
        self.limiter = limiter if limiter is not None else RateLimiter(
            cleanup_interval_seconds=self.config["RATE_LIMIT_CLEANUP_INTERVAL_SECONDS"],
            stale_after_seconds=self.config["RATE_LIMIT_STALE_AFTER_SECONDS"],
        )
        self.policies = policies if policies is not None else load_rate_limit_policies(
            self.config["RATE_LIMIT_POLICIES_PATH"]
        )

    def require(self, action: ActionKind, context: AuthorizationContext) -> Allowed:
        """Authorize or raise the decision's ForbiddenError / NotFoundError."""
        decision = self.authorizer.authorize(action, context)
        if not decision.allowed:
            raise decision.to_error()
        return decision

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    def kick_member(
        self,
        context: AuthorizationContext,
        remove_member: Callable[[str, str], None],
        reason: Optional[str] = None,
    ) -> None:
        """
        Kick context.target_id from the server.

        remove_member(server_id, user_id) performs the membership delete; the
        service only gates and audits it.
        """
        self.require(ActionKind.KICK_MEMBER, context)
        server_id = context.server.server_id

        remove_member(server_id, context.target_id)

        self.audit.emit(
            server_id=server_id,
            actor_id=context.actor_id,
            action=audit_actions.MEMBER_KICK,
            target_id=context.target_id,
            target_type=audit_actions.TARGET_USER,
            changes={"reason": reason},
        )

    def apply_timeout(
        self,
        context: AuthorizationContext,
        duration_seconds: float,
        reason: Optional[str] = None,
    ) -> TimeoutRecord:
        """Time out context.target_id, replacing any existing timeout."""
        self.require(ActionKind.TIMEOUT_APPLY, context)

        record = self.ledger.apply(
            server_id=context.server.server_id,
            user_id=context.target_id,
            duration_seconds=duration_seconds,
            moderator_id=context.actor_id,
            reason=reason,
        )

        self.audit.emit(
            server_id=record.server_id,
            actor_id=context.actor_id,
            action=audit_actions.MEMBER_TIMEOUT,
            target_id=record.user_id,
            target_type=audit_actions.TARGET_USER,
            changes={
                "duration_seconds": duration_seconds,
                "reason": reason,
                "until": record.until.isoformat(),
            },
        )
        return record

    def remove_timeout(self, context: AuthorizationContext) -> None:
        """Lift a timeout. Lifting one that does not exist still succeeds."""
        self.require(ActionKind.TIMEOUT_REMOVE, context)
        server_id = context.server.server_id

        self.ledger.remove(server_id, context.target_id)

        self.audit.emit(
            server_id=server_id,
            actor_id=context.actor_id,
            action=audit_actions.MEMBER_TIMEOUT_REMOVE,
            target_id=context.target_id,
            target_type=audit_actions.TARGET_USER,
        )

    def ban_member(
        self,
        context: AuthorizationContext,
        reason: Optional[str] = None,
        remove_member: Optional[Callable[[str, str], None]] = None,
    ) -> BanRecord:
        """
        Ban context.target_id. The target need not be a current member.

        When the target is a member, pass remove_member(server_id, user_id)
        to drop the membership alongside the ban.
        """
        self.require(ActionKind.MEMBER_BAN, context)
        server_id = context.server.server_id

        if remove_member is not None and context.target_roles is not None:
            remove_member(server_id, context.target_id)

        record = self.bans.add(
            BanRecord(
                server_id=server_id,
                user_id=context.target_id,
                banned_by=context.actor_id,
                reason=reason,
                created_at=self.ledger.now(),
            )
        )

        self.audit.emit(
            server_id=server_id,
            actor_id=context.actor_id,
            action=audit_actions.MEMBER_BAN,
            target_id=context.target_id,
            target_type=audit_actions.TARGET_USER,
            changes={"reason": reason},
        )
        return record

    def unban_member(self, context: AuthorizationContext) -> None:
        """Lift a ban. Raises NotFoundError when the user is not banned."""
        self.require(ActionKind.MEMBER_UNBAN, context)
        server_id = context.server.server_id

        if self.bans.remove(server_id, context.target_id) is None:
            raise NotFoundError("ban", "Ban not found")

        self.audit.emit(
            server_id=server_id,
            actor_id=context.actor_id,
            action=audit_actions.MEMBER_UNBAN,
            target_id=context.target_id,
            target_type=audit_actions.TARGET_USER,
        )

    # ------------------------------------------------------------------
    # Automod rules
    # ------------------------------------------------------------------

    def list_rules(self, context: AuthorizationContext) -> List[AutomodRule]:
        self.require(ActionKind.AUTOMOD_READ, context)
        return self.rules.list(context.server.server_id)

    def get_rule(self, context: AuthorizationContext, rule_id: str) -> AutomodRule:
        self.require(ActionKind.AUTOMOD_MANAGE, context)
        return self._get_rule_or_raise(context.server.server_id, rule_id)

    def create_rule(self, context: AuthorizationContext, payload: Mapping[str, Any]) -> AutomodRule:
        """
        Create an automod rule.

        Raises:
            ForbiddenError: If the actor is not the server owner
            InvalidInputError: If the payload does not validate
        """
        self.require(ActionKind.AUTOMOD_MANAGE, context)
        rule = self.rules.add(build_rule(context.server.server_id, payload))

        self.audit.emit(
            server_id=rule.server_id,
            actor_id=context.actor_id,
            action=audit_actions.AUTOMOD_RULE_CREATED,
            target_id=rule.rule_id,
            target_type=audit_actions.TARGET_AUTOMOD_RULE,
            changes={"name": rule.name, "trigger_type": rule.trigger_type},
        )
        return rule

    def update_rule(self, context: AuthorizationContext, rule_id: str, patch: Mapping[str, Any]) -> AutomodRule:
        """Apply a partial update; config/actions are validated merged with the stored rule."""
        self.require(ActionKind.AUTOMOD_MANAGE, context)
        existing = self._get_rule_or_raise(context.server.server_id, rule_id)

        updated, changes = merge_rule_patch(existing, patch)
        self.rules.replace(updated)

        self.audit.emit(
            server_id=updated.server_id,
            actor_id=context.actor_id,
            action=audit_actions.AUTOMOD_RULE_UPDATED,
            target_id=rule_id,
            target_type=audit_actions.TARGET_AUTOMOD_RULE,
            changes=changes,
        )
        return updated

    def delete_rule(self, context: AuthorizationContext, rule_id: str) -> AutomodRule:
        self.require(ActionKind.AUTOMOD_MANAGE, context)
        server_id = context.server.server_id

        removed = self.rules.delete(server_id, rule_id)
        if removed is None:
            raise NotFoundError("rule", "Rule not found")

        self.audit.emit(
            server_id=server_id,
            actor_id=context.actor_id,
            action=audit_actions.AUTOMOD_RULE_DELETED,
            target_id=rule_id,
            target_type=audit_actions.TARGET_AUTOMOD_RULE,
            changes={"name": removed.name},
        )
        return removed

    def _get_rule_or_raise(self, server_id: str, rule_id: str) -> AutomodRule:
        rule = self.rules.get(server_id, rule_id)
        if rule is None:
            raise NotFoundError("rule", "Rule not found")
        return rule

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def check_message(
        self,
        context: AuthorizationContext,
        content: str,
        mentions: Sequence[str] = (),
    ) -> MessageCheck:
        """
        Screen a message before it is stored.

        Order: membership and timeout gate, then the message_post rate
        limit, then the server's enabled automod rules. A rule asking for a
        timeout is applied to the author here; blocking and alerting are
        left to the caller via the returned MessageCheck.

        Raises:
            ForbiddenError: Not a member, or currently timed out
            RateLimitedError: Over the message_post policy
        """
        server_id = context.server.server_id if context.server else None
        if context.server is not None:
            # The ledger's clock judges the ledger's records.
            context = replace(
                context,
                actor_timeout=(
                    context.actor_timeout
                    if context.actor_timeout is not None
                    else self.ledger.get(server_id, context.actor_id)
                ),
                now=context.now if context.now is not None else self.ledger.now(),
            )

        self.require(ActionKind.MESSAGE_SEND, context)

        rate_limit = None
        policy = self.policies.get(MESSAGE_POST_POLICY)
        if self.config["RATE_LIMIT_ENABLED"] and policy is not None:
            rate_limit = self.limiter.check_policy(policy, context.actor_id)
            rate_limit.raise_for_limit(self.limiter.now())

        violations = evaluate_all_rules(
            self.rules.list_enabled(server_id),
            content,
            mentions,
            regex_max_length=self.config["AUTOMOD_REGEX_MAX_LENGTH"],
            regex_budget_ms=self.config["AUTOMOD_REGEX_BUDGET_MS"],
        )

        timeout = None
        duration = get_timeout_duration(violations, self.config["AUTOMOD_DEFAULT_TIMEOUT_SECONDS"])
        if duration is not None and context.actor_id != context.server.owner_id:
            reason = "; ".join(v.reason for v in violations)
            timeout = self.ledger.apply(
                server_id=server_id,
                user_id=context.actor_id,
                duration_seconds=duration,
                moderator_id=AUTOMOD_ACTOR_ID,
                reason=reason,
            )
            self.audit.emit(
                server_id=server_id,
                actor_id=AUTOMOD_ACTOR_ID,
                action=audit_actions.MEMBER_TIMEOUT,
                target_id=context.actor_id,
                target_type=audit_actions.TARGET_USER,
                changes={
                    "duration_seconds": duration,
                    "reason": reason,
                    "until": timeout.until.isoformat(),
                    "rules": [v.rule_id for v in violations],
                },
            )

        return MessageCheck(
            violations=violations,
            blocked=should_block_message(violations),
            timeout=timeout,
            alert_channels=get_alert_channels(violations),
            rate_limit=rate_limit,
        )
