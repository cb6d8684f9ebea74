"""
Audit trail for moderation actions.

Emission is fire-and-forget: a failing sink is logged and counted but never
undoes or fails the action being audited.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from vortex_authz.metrics import record_audit_failure
from vortex_authz.timeouts import utcnow

logger = logging.getLogger(__name__)

# Audit action names
MEMBER_KICK = "member_kick"
MEMBER_TIMEOUT = "member_timeout"
MEMBER_TIMEOUT_REMOVE = "member_timeout_remove"
MEMBER_BAN = "member_ban"
MEMBER_UNBAN = "member_unban"
AUTOMOD_RULE_CREATED = "automod_rule_created"
AUTOMOD_RULE_UPDATED = "automod_rule_updated"
AUTOMOD_RULE_DELETED = "automod_rule_deleted"

TARGET_USER = "user"
TARGET_AUTOMOD_RULE = "automod_rule"


@dataclass(frozen=True)
class AuditRecord:
    """One audit-log row."""
    server_id: str
    actor_id: str
    action: str
    target_id: Optional[str] = None
    target_type: Optional[str] = None
    changes: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


AuditSink = Callable[[AuditRecord], None]


class InMemoryAuditSink:
    """Collects records in a list; for tests and local runs."""

    def __init__(self):
        self.records: List[AuditRecord] = []

    def __call__(self, record: AuditRecord) -> None:
        self.records.append(record)

    def actions(self) -> List[str]:
        return [r.action for r in self.records]


class AuditEmitter:
    """
    Hands audit records to a sink.

    Args:
        sink: Callable receiving each AuditRecord (defaults to log-only)
        enabled: When False, records are dropped silently
    """

    def __init__(self, sink: Optional[AuditSink] = None, enabled: bool = True):
        self.sink = sink
        self.enabled = enabled

    def emit(
        self,
        server_id: str,
        actor_id: str,
        action: str,
        target_id: Optional[str] = None,
        target_type: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditRecord]:
        """
        Build and emit an audit record.

        Returns:
            The record, or None if auditing is disabled
        """
        if not self.enabled:
            return None

        record = AuditRecord(
            server_id=server_id,
            actor_id=actor_id,
            action=action,
            target_id=target_id,
            target_type=target_type,
            changes=dict(changes or {}),
        )

        logger.info(
            f"Audit: action={action} server={server_id} actor={actor_id} target={target_id}"
        )

        if self.sink is None:
            return record

        try:
            self.sink(record)
        except Exception:
            # The audited action has already happened; never fail it here
            logger.exception(f"Audit sink failed for action={action} server={server_id}")
            record_audit_failure(action)

        return record
