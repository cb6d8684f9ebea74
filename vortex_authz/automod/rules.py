"""
Automod rule records, storage, and the create/patch lifecycle.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from vortex_authz.automod.schema import parse_rule
from vortex_authz.errors import InvalidInputError
from vortex_authz.timeouts import utcnow

logger = logging.getLogger(__name__)

# Fields a patch may change; everything else is ignored
UPDATABLE_FIELDS = ("name", "config", "actions", "enabled")


@dataclass(frozen=True)
class AutomodRule:
    """A stored automod rule for one server."""
    rule_id: str
    server_id: str
    name: str
    trigger_type: str
    config: Dict[str, Any]
    actions: List[Dict[str, Any]]
    enabled: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.rule_id,
            "server_id": self.server_id,
            "name": self.name,
            "trigger_type": self.trigger_type,
            "config": self.config,
            "actions": self.actions,
            "enabled": self.enabled,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidInputError("name is required")
    return name.strip()


def _clean_enabled(enabled: Any) -> bool:
    if not isinstance(enabled, bool):
        raise InvalidInputError("enabled must be a boolean")
    return enabled


def build_rule(
    server_id: str,
    payload: Mapping[str, Any],
    now: Optional[datetime] = None,
    rule_id: Optional[str] = None,
) -> AutomodRule:
    """
    Validate a creation payload and build the rule record.

    Args:
        server_id: Owning server
        payload: Mapping with name, trigger_type, config, actions and optional enabled
        now: Creation timestamp (defaults to current UTC time)
        rule_id: Explicit id (defaults to a fresh UUID)

    Returns:
        AutomodRule with normalized config and actions

    Raises:
        InvalidInputError: On a blank name or an invalid trigger, config or action
    """
    name = _clean_name(payload.get("name"))
    definition = parse_rule(
        payload.get("trigger_type"),
        payload.get("config", {}),
        payload.get("actions", []),
    )
    enabled = _clean_enabled(payload.get("enabled", True))
    now = now or utcnow()

    return AutomodRule(
        rule_id=rule_id or str(uuid.uuid4()),
        server_id=server_id,
        name=name,
        trigger_type=definition.trigger_type,
        config=definition.config_dict(),
        actions=definition.actions_list(),
        enabled=enabled,
        created_at=now,
        updated_at=now,
    )


def merge_rule_patch(
    rule: AutomodRule,
    patch: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> Tuple[AutomodRule, Dict[str, Any]]:
    """
    Apply a partial update to a rule.

    Only UPDATABLE_FIELDS are read from the patch. trigger_type may be
    repeated unchanged but never changed. When config or actions change, the
    merged config and actions are validated together against the rule's
    trigger type.

    Returns:
        (updated rule, dict of the fields that were applied)

    Raises:
        InvalidInputError: On an invalid field or a trigger_type change
    """
    if "trigger_type" in patch and patch["trigger_type"] != rule.trigger_type:
        raise InvalidInputError("trigger_type cannot be changed after creation")

    updates: Dict[str, Any] = {}
    for key in UPDATABLE_FIELDS:
        if key in patch:
            updates[key] = patch[key]

    if "name" in updates:
        updates["name"] = _clean_name(updates["name"])
    if "enabled" in updates:
        updates["enabled"] = _clean_enabled(updates["enabled"])

    if "config" in updates or "actions" in updates:
        definition = parse_rule(
            rule.trigger_type,
            updates.get("config", rule.config),
            updates.get("actions", rule.actions),
        )
        if "config" in updates:
            updates["config"] = definition.config_dict()
        if "actions" in updates:
            updates["actions"] = definition.actions_list()

    updated = replace(rule, updated_at=now or utcnow(), **updates)
    return updated, updates


# ============================================================================
# Storage
# ============================================================================

class AutomodRuleStore:
    """
    Lock-guarded in-memory rule storage keyed by (server_id, rule_id).

    Rules are listed in creation order.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._rules: Dict[Tuple[str, str], AutomodRule] = {}

    def add(self, rule: AutomodRule) -> AutomodRule:
        with self._lock:
            self._rules[(rule.server_id, rule.rule_id)] = rule
        logger.info(f"Automod rule stored: server={rule.server_id} rule={rule.rule_id} name={rule.name!r}")
        return rule

    def get(self, server_id: str, rule_id: str) -> Optional[AutomodRule]:
        with self._lock:
            return self._rules.get((server_id, rule_id))

    def list(self, server_id: str, predicate: Optional[Callable[[AutomodRule], bool]] = None) -> List[AutomodRule]:
        with self._lock:
            rules = [r for (sid, _), r in self._rules.items() if sid == server_id]
        if predicate is not None:
            rules = [r for r in rules if predicate(r)]
        return sorted(rules, key=lambda r: r.created_at)

    def list_enabled(self, server_id: str) -> List[AutomodRule]:
        return self.list(server_id, lambda r: r.enabled)

    def replace(self, rule: AutomodRule) -> AutomodRule:
        with self._lock:
            self._rules[(rule.server_id, rule.rule_id)] = rule
        return rule

    def delete(self, server_id: str, rule_id: str) -> Optional[AutomodRule]:
        """Remove a rule; returns the removed rule or None if absent."""
        with self._lock:
            return self._rules.pop((server_id, rule_id), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)
