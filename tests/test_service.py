"""
Tests for ModerationService: authorize, mutate, audit.
"""

from datetime import datetime, timedelta, timezone

import pytest

from vortex_authz.audit import (
    AUTOMOD_RULE_CREATED,
    AUTOMOD_RULE_DELETED,
    AUTOMOD_RULE_UPDATED,
    MEMBER_BAN,
    MEMBER_KICK,
    MEMBER_TIMEOUT,
    MEMBER_TIMEOUT_REMOVE,
    MEMBER_UNBAN,
    AuditEmitter,
    InMemoryAuditSink,
)
from vortex_authz.authorizer import (
    AuthorizationContext,
    ModerationActionAuthorizer,
    REASON_MISSING_PERMISSION,
    REASON_OWNER_ONLY,
    REASON_TARGET_IS_OWNER,
    REASON_TIMED_OUT,
    ServerRef,
)
from vortex_authz.config import DEFAULTS
from vortex_authz.errors import ForbiddenError, InvalidInputError, NotFoundError, RateLimitedError
from vortex_authz.limits import RateLimiter, RateLimitPolicy
from vortex_authz.rbac.permissions import Permission
from vortex_authz.rbac.resolve import Role
from vortex_authz.automod.rules import AutomodRuleStore
from vortex_authz.service import AUTOMOD_ACTOR_ID, ModerationService
from vortex_authz.timeouts import TimeoutLedger

T0 = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
SERVER = ServerRef(server_id="srv-1", owner_id="owner")

MOD_ROLE = Role("r-mod", "srv-1", permissions=Permission.MODERATE_MEMBERS | Permission.KICK_MEMBERS, position=5)
MEMBER_ROLE = Role("r-member", "srv-1", permissions=Permission.SEND_MESSAGES, position=1)
BAN_ROLE = Role("r-ban", "srv-1", permissions=Permission.BAN_MEMBERS, position=4)

KEYWORD_RULE = {
    "name": "No spam",
    "trigger_type": "keyword_filter",
    "config": {"keywords": ["spam"]},
    "actions": [{"type": "block_message"}],
}


class FakeClock:

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return InMemoryAuditSink()


def make_service(clock, sink, policies=None, **config):
    cfg = dict(DEFAULTS)
    cfg.update(config)
    return ModerationService(
        authorizer=ModerationActionAuthorizer(clock=clock),
        ledger=TimeoutLedger(clock=clock),
        audit=AuditEmitter(sink),
        limiter=RateLimiter(clock=lambda: clock().timestamp()),
        policies=policies if policies is not None else {},
        config=cfg,
    )


@pytest.fixture
def service(clock, sink):
    return make_service(clock, sink)


def ctx(actor_id, actor_roles=(), target_id=None, target_roles=None):
    return AuthorizationContext(
        server=SERVER,
        actor_id=actor_id,
        actor_roles=list(actor_roles) if actor_roles is not None else None,
        target_id=target_id,
        target_roles=target_roles,
    )


# ============================================================================
# Members
# ============================================================================

class TestMemberActions:

    def test_kick_removes_and_audits(self, service, sink):
        removed = []
        service.kick_member(
            ctx("mod", [MOD_ROLE], "bob", [MEMBER_ROLE]),
            reason="rude",
            remove_member=lambda server_id, user_id: removed.append((server_id, user_id)),
        )

        assert removed == [("srv-1", "bob")]
        assert sink.actions() == [MEMBER_KICK]
        assert sink.records[0].changes == {"reason": "rude"}

    def test_kick_denied_leaves_no_trace(self, service, sink):
        removed = []
        with pytest.raises(ForbiddenError) as exc_info:
            service.kick_member(
                ctx("bob", [MEMBER_ROLE], "mod", [MOD_ROLE]),
                remove_member=lambda *args: removed.append(args),
            )

        assert exc_info.value.reason == REASON_MISSING_PERMISSION
        assert exc_info.value.missing_permission == "KICK_MEMBERS"
        assert removed == []
        assert sink.records == []

    def test_apply_timeout(self, service, sink):
        record = service.apply_timeout(ctx("mod", [MOD_ROLE], "bob", [MEMBER_ROLE]), 600, reason="cool off")

        assert record.until == T0 + timedelta(seconds=600)
        assert record.moderator_id == "mod"
        assert service.ledger.is_timed_out("srv-1", "bob")

        audit = sink.records[0]
        assert audit.action == MEMBER_TIMEOUT
        assert audit.changes == {
            "duration_seconds": 600,
            "reason": "cool off",
            "until": (T0 + timedelta(seconds=600)).isoformat(),
        }

    def test_timeout_on_owner_forbidden(self, service):
        with pytest.raises(ForbiddenError) as exc_info:
            service.apply_timeout(ctx("mod", [MOD_ROLE], "owner", []), 60)
        assert exc_info.value.reason == REASON_TARGET_IS_OWNER

    def test_timeout_on_non_member_not_found(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            service.apply_timeout(ctx("mod", [MOD_ROLE], "ghost", None), 60)
        assert exc_info.value.entity == "member"

    def test_invalid_duration_rejected(self, service, sink):
        with pytest.raises(InvalidInputError):
            service.apply_timeout(ctx("mod", [MOD_ROLE], "bob", [MEMBER_ROLE]), 0)
        assert sink.records == []

    def test_remove_timeout(self, service, sink):
        service.apply_timeout(ctx("mod", [MOD_ROLE], "bob", [MEMBER_ROLE]), 600)
        service.remove_timeout(ctx("mod", [MOD_ROLE], "bob", None))

        assert service.ledger.get("srv-1", "bob") is None
        assert sink.actions() == [MEMBER_TIMEOUT, MEMBER_TIMEOUT_REMOVE]

    def test_remove_missing_timeout_succeeds(self, service, sink):
        service.remove_timeout(ctx("owner", None, "bob", [MEMBER_ROLE]))
        assert sink.actions() == [MEMBER_TIMEOUT_REMOVE]

    def test_audit_failure_does_not_undo_timeout(self, clock):
        def broken_sink(record):
            raise RuntimeError("down")

        service = make_service(clock, broken_sink)
        service.apply_timeout(ctx("mod", [MOD_ROLE], "bob", [MEMBER_ROLE]), 60)
        assert service.ledger.is_timed_out("srv-1", "bob")

    def test_ban_removes_member_and_audits(self, service, sink):
        removed = []
        record = service.ban_member(
            ctx("banner", [BAN_ROLE], "bob", [MEMBER_ROLE]),
            reason="raid",
            remove_member=lambda server_id, user_id: removed.append((server_id, user_id)),
        )

        assert removed == [("srv-1", "bob")]
        assert record.banned_by == "banner"
        assert record.created_at == T0
        assert service.bans.is_banned("srv-1", "bob")
        assert sink.actions() == [MEMBER_BAN]
        assert sink.records[0].changes == {"reason": "raid"}

    def test_ban_user_who_already_left(self, service):
        removed = []
        service.ban_member(
            ctx("owner", None, "ghost", None),
            remove_member=lambda *args: removed.append(args),
        )

        assert removed == []
        assert [b.user_id for b in service.bans.list("srv-1")] == ["ghost"]

    def test_ban_owner_forbidden(self, service, sink):
        with pytest.raises(ForbiddenError) as exc_info:
            service.ban_member(ctx("banner", [BAN_ROLE], "owner", []))

        assert exc_info.value.reason == REASON_TARGET_IS_OWNER
        assert not service.bans.is_banned("srv-1", "owner")
        assert sink.records == []

    def test_ban_requires_ban_members(self, service, sink):
        with pytest.raises(ForbiddenError) as exc_info:
            service.ban_member(ctx("mod", [MOD_ROLE], "bob", [MEMBER_ROLE]))

        assert exc_info.value.missing_permission == "BAN_MEMBERS"
        assert len(service.bans) == 0
        assert sink.records == []

    def test_unban(self, service, sink):
        service.ban_member(ctx("banner", [BAN_ROLE], "bob", None))
        service.unban_member(ctx("banner", [BAN_ROLE], "bob", None))

        assert not service.bans.is_banned("srv-1", "bob")
        assert sink.actions() == [MEMBER_BAN, MEMBER_UNBAN]

    def test_unban_unknown_user_not_found(self, service, sink):
        with pytest.raises(NotFoundError) as exc_info:
            service.unban_member(ctx("owner", None, "bob", None))

        assert exc_info.value.entity == "ban"
        assert sink.records == []


# ============================================================================
# Automod rules
# ============================================================================

class TestRuleLifecycle:

    def test_owner_creates_updates_deletes(self, service, sink):
        owner = ctx("owner", None)
        rule = service.create_rule(owner, KEYWORD_RULE)

        assert service.list_rules(owner) == [rule]
        assert service.get_rule(owner, rule.rule_id) == rule

        updated = service.update_rule(owner, rule.rule_id, {"enabled": False})
        assert updated.enabled is False

        removed = service.delete_rule(owner, rule.rule_id)
        assert removed.rule_id == rule.rule_id
        assert service.list_rules(owner) == []

        assert sink.actions() == [AUTOMOD_RULE_CREATED, AUTOMOD_RULE_UPDATED, AUTOMOD_RULE_DELETED]
        assert sink.records[0].changes == {"name": "No spam", "trigger_type": "keyword_filter"}
        assert sink.records[1].changes == {"enabled": False}
        assert sink.records[2].changes == {"name": "No spam"}

    def test_member_can_list_but_not_manage(self, service):
        rule = service.create_rule(ctx("owner", None), KEYWORD_RULE)
        member = ctx("bob", [MEMBER_ROLE])

        assert [r.rule_id for r in service.list_rules(member)] == [rule.rule_id]

        with pytest.raises(ForbiddenError) as exc_info:
            service.create_rule(member, KEYWORD_RULE)
        assert exc_info.value.reason == REASON_OWNER_ONLY

        with pytest.raises(ForbiddenError):
            service.get_rule(member, rule.rule_id)

    def test_admin_cannot_manage_rules(self, service):
        admin_role = Role("r-admin", "srv-1", permissions=Permission.ADMINISTRATOR, position=10)
        with pytest.raises(ForbiddenError):
            service.create_rule(ctx("admin", [admin_role]), KEYWORD_RULE)

    def test_non_member_cannot_list(self, service):
        with pytest.raises(ForbiddenError):
            service.list_rules(ctx("stranger", None))

    def test_missing_rule(self, service, sink):
        owner = ctx("owner", None)
        for call in (
            lambda: service.get_rule(owner, "nope"),
            lambda: service.update_rule(owner, "nope", {"enabled": False}),
            lambda: service.delete_rule(owner, "nope"),
        ):
            with pytest.raises(NotFoundError):
                call()
        assert sink.records == []

    def test_invalid_rule_not_stored(self, service, sink):
        owner = ctx("owner", None)
        with pytest.raises(InvalidInputError):
            service.create_rule(owner, {**KEYWORD_RULE, "config": {"keywords": []}})
        assert service.list_rules(owner) == []
        assert sink.records == []

    def test_unknown_server(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            service.list_rules(AuthorizationContext(server=None, actor_id="owner"))
        assert exc_info.value.entity == "server"


# ============================================================================
# Message screening
# ============================================================================

class TestCheckMessage:

    def test_clean_message(self, service):
        check = service.check_message(ctx("bob", [MEMBER_ROLE]), "hello there")

        assert check.violations == []
        assert check.blocked is False
        assert check.timeout is None

    def test_blocked_by_keyword(self, service):
        service.create_rule(ctx("owner", None), KEYWORD_RULE)
        check = service.check_message(ctx("bob", [MEMBER_ROLE]), "buy SPAM now")

        assert check.blocked is True
        assert check.violations[0].reason == 'Blocked keyword: "spam"'

    def test_disabled_rules_ignored(self, service):
        service.create_rule(ctx("owner", None), {**KEYWORD_RULE, "enabled": False})
        assert service.check_message(ctx("bob", [MEMBER_ROLE]), "spam").violations == []

    def test_automod_timeout_applied_and_audited(self, service, sink):
        service.create_rule(ctx("owner", None), {
            "name": "Links",
            "trigger_type": "link_spam",
            "config": {"link_threshold": 2},
            "actions": [
                {"type": "timeout_member", "duration_seconds": 300},
                {"type": "alert_channel", "channel_id": "mod-log"},
            ],
        })

        check = service.check_message(ctx("bob", [MEMBER_ROLE]), "a.com b.com")

        assert check.blocked is False
        assert check.alert_channels == ["mod-log"]
        assert check.timeout.until == T0 + timedelta(seconds=300)
        assert check.timeout.moderator_id == AUTOMOD_ACTOR_ID
        assert service.ledger.is_timed_out("srv-1", "bob")

        audit = sink.records[-1]
        assert audit.action == MEMBER_TIMEOUT
        assert audit.actor_id == AUTOMOD_ACTOR_ID
        assert audit.target_id == "bob"

    def test_owner_never_auto_timed_out(self, service):
        service.create_rule(ctx("owner", None), {
            "name": "Timeout spam",
            "trigger_type": "keyword_filter",
            "config": {"keywords": ["spam"]},
            "actions": [{"type": "timeout_member"}],
        })

        check = service.check_message(ctx("owner", None), "spam")
        assert len(check.violations) == 1
        assert check.timeout is None

    def test_timed_out_actor_cannot_send(self, service, clock):
        service.apply_timeout(ctx("mod", [MOD_ROLE], "bob", [MEMBER_ROLE]), 600)

        with pytest.raises(ForbiddenError) as exc_info:
            service.check_message(ctx("bob", [MEMBER_ROLE]), "hello")
        assert exc_info.value.reason == REASON_TIMED_OUT

        clock.advance(600)
        assert service.check_message(ctx("bob", [MEMBER_ROLE]), "hello").blocked is False

    def test_non_member_cannot_send(self, service):
        with pytest.raises(ForbiddenError):
            service.check_message(ctx("stranger", None), "hello")

    def test_rate_limited(self, clock, sink):
        policy = RateLimitPolicy(name="message_post", limit=2, window_ms=10_000)
        service = make_service(clock, sink, policies={"message_post": policy})
        bob = ctx("bob", [MEMBER_ROLE])

        assert service.check_message(bob, "one").rate_limit.remaining == 1
        service.check_message(bob, "two")

        with pytest.raises(RateLimitedError) as exc_info:
            service.check_message(bob, "three")
        assert exc_info.value.retry_after == 10

    def test_rate_limit_disabled(self, clock, sink):
        policy = RateLimitPolicy(name="message_post", limit=1, window_ms=10_000)
        service = make_service(clock, sink, policies={"message_post": policy}, RATE_LIMIT_ENABLED=False)
        bob = ctx("bob", [MEMBER_ROLE])

        for _ in range(3):
            assert service.check_message(bob, "hi").rate_limit is None


# ============================================================================
# Collaborator wiring
# ============================================================================

class TestInjectedCollaborators:

    def test_empty_rule_store_is_kept(self, sink):
        store = AutomodRuleStore()
        service = ModerationService(rules=store, audit=AuditEmitter(sink), policies={}, config=dict(DEFAULTS))

        assert service.rules is store

        service.create_rule(ctx("owner", None), KEYWORD_RULE)
        assert len(store) == 1
        assert service.check_message(ctx("bob", [MEMBER_ROLE]), "spam").blocked is True

    def test_ledger_clock_drives_default_authorizer(self, sink):
        fixed = datetime(2020, 1, 1, tzinfo=timezone.utc)
        service = ModerationService(
            ledger=TimeoutLedger(clock=lambda: fixed),
            audit=AuditEmitter(sink),
            policies={},
            config=dict(DEFAULTS),
        )
        service.apply_timeout(ctx("mod", [MOD_ROLE], "bob", [MEMBER_ROLE]), 600)

        with pytest.raises(ForbiddenError) as exc_info:
            service.check_message(ctx("bob", [MEMBER_ROLE]), "hello")
        assert exc_info.value.reason == REASON_TIMED_OUT

    def test_ledger_clock_judges_timeouts_for_injected_authorizer(self, sink):
        fixed = datetime(2020, 1, 1, tzinfo=timezone.utc)
        service = ModerationService(
            authorizer=ModerationActionAuthorizer(),
            ledger=TimeoutLedger(clock=lambda: fixed),
            audit=AuditEmitter(sink),
            policies={},
            config=dict(DEFAULTS),
        )
        service.apply_timeout(ctx("mod", [MOD_ROLE], "bob", [MEMBER_ROLE]), 600)

        with pytest.raises(ForbiddenError) as exc_info:
            service.check_message(ctx("bob", [MEMBER_ROLE]), "hello")
        assert exc_info.value.reason == REASON_TIMED_OUT
