# vortex_authz/metrics.py - in-process counters for authorization, rate limiting and audit

import time
import threading
import logging
from typing import Dict, Any, Optional, Tuple

CounterKey = Tuple[str, Tuple[Tuple[str, str], ...]]


class MetricsCollector:
    """Thread-safe labelled counters. Each (name, labels) pair is its own series."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[CounterKey, int] = {}

    @staticmethod
    def _key(name: str, labels: Optional[Dict[str, str]]) -> CounterKey:
        return name, tuple(sorted((labels or {}).items()))

    def increment(self, name: str, value: int = 1, labels: Optional[Dict[str, str]] = None):
        key = self._key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def get(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        with self._lock:
            return self._counters.get(self._key(name, labels), 0)

    def reset(self):
        with self._lock:
            self._counters.clear()


# Global metrics collector instance
_metrics = MetricsCollector()

audit_logger = logging.getLogger("vortex_authz.audit")


def increment_counter(name: str, value: int = 1, labels: Dict[str, str] = None):
    """Increment a counter metric."""
    _metrics.increment(name, value, labels)


def get_counter(name: str, labels: Dict[str, str] = None) -> int:
    """Get the current value of a counter."""
    return _metrics.get(name, labels)


def reset_metrics():
    """Reset all metrics."""
    _metrics.reset()


# ============================================================================
# Domain recorders
# ============================================================================

def record_authorization(action: str, allowed: bool, reason: Optional[str] = None):
    """
    Record the outcome of an authorization decision.

    Args:
        action: Action kind value (e.g. "kick_member")
        allowed: Whether the action was allowed
        reason: Denial reason code, when denied
    """
    if allowed:
        increment_counter("authz.allowed")
        increment_counter("authz.allowed.by_action", labels={"action": action})
    else:
        increment_counter("authz.denied")
        increment_counter("authz.denied.by_action", labels={"action": action})
        if reason:
            increment_counter("authz.denied.by_reason", labels={"reason": reason})


def record_rate_limit(policy: str, allowed: bool):
    """
    Record a rate limiter decision.

    Args:
        policy: Policy name or key prefix
        allowed: Whether the event was admitted
    """
    if allowed:
        increment_counter("ratelimit.allowed", labels={"policy": policy})
    else:
        increment_counter("ratelimit.rejected", labels={"policy": policy})


def record_audit_failure(action: str):
    """Record an audit record that the sink failed to accept."""
    increment_counter("audit.sink_failures")
    increment_counter("audit.sink_failures.by_action", labels={"action": action})


def audit_authz_denial(
    action: str,
    server_id: Optional[str],
    actor_id: Optional[str],
    target_id: Optional[str],
    reason: str,
    metadata: Optional[Dict[str, Any]] = None
):
    """
    Emit audit log entry for an authorization denial.

    Creates structured log entry for security monitoring.

    Args:
        action: Action kind that was denied
        server_id: Server the action targeted
        actor_id: Actor who was denied
        target_id: Target of the action, if any
        reason: Denial reason code
        metadata: Additional context
    """
    audit_entry = {
        "event": "authz_denial",
        "action": action,
        "server_id": server_id,
        "actor_id": actor_id,
        "target_id": target_id,
        "reason": reason,
        "timestamp": time.time(),
    }

    if metadata:
        audit_entry["metadata"] = metadata

    audit_logger.warning(
        f"AUTHZ_DENIAL action={action} server={server_id} actor={actor_id} "
        f"target={target_id} reason={reason}",
        extra={"audit": audit_entry}
    )

    increment_counter("authz.audit.denials")
    increment_counter("authz.audit.denials.by_reason", labels={"reason": reason})
