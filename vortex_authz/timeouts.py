"""
Timeout ledger: temporary mutes keyed by (server, member).

At most one timeout exists per (server, member); applying a new one
replaces the old record rather than extending it. Expiry is evaluated lazily
against the current time. Nothing sweeps expired records; they stay inert
until the next apply or remove.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from vortex_authz.errors import InvalidInputError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TimeoutRecord:
    """A stored timeout for one member of one server."""
    server_id: str
    user_id: str
    until: datetime
    moderator_id: str
    reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return TimeoutLedger.is_active(self, now or utcnow())

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "server_id": self.server_id,
            "user_id": self.user_id,
            "timed_out_until": self.until.isoformat(),
            "moderator_id": self.moderator_id,
            "reason": self.reason,
            "created_at": self.created_at.isoformat(),
        }


# ============================================================================
# Storage
# ============================================================================

class TimeoutStore:
    """
    Storage interface for timeout records.

    Production deployments back this with the relational store; the
    in-memory implementation below serves tests and single-process use.
    """

    def get(self, server_id: str, user_id: str) -> Optional[TimeoutRecord]:
        raise NotImplementedError

    def upsert(self, record: TimeoutRecord) -> None:
        raise NotImplementedError

    def delete(self, server_id: str, user_id: str) -> None:
        raise NotImplementedError


class InMemoryTimeoutStore(TimeoutStore):
    """Lock-guarded dict keyed by (server_id, user_id)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[Tuple[str, str], TimeoutRecord] = {}

    def get(self, server_id: str, user_id: str) -> Optional[TimeoutRecord]:
        with self._lock:
            return self._records.get((server_id, user_id))

    def upsert(self, record: TimeoutRecord) -> None:
        with self._lock:
            self._records[(record.server_id, record.user_id)] = record

    def delete(self, server_id: str, user_id: str) -> None:
        with self._lock:
            self._records.pop((server_id, user_id), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


# ============================================================================
# Ledger
# ============================================================================

class TimeoutLedger:
    """
    Applies, evaluates and removes member timeouts.

    Args:
        store: Backing store (in-memory by default)
        clock: Callable returning the current timezone-aware UTC datetime
    """

    def __init__(
        self,
        store: Optional[TimeoutStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store if store is not None else InMemoryTimeoutStore()
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return self._clock()

    def apply(
        self,
        server_id: str,
        user_id: str,
        duration_seconds: float,
        moderator_id: str,
        reason: Optional[str] = None,
    ) -> TimeoutRecord:
        """
        Time out a member, replacing any existing timeout.

        Args:
            server_id: Server the member belongs to
            user_id: Member being timed out
            duration_seconds: Positive duration from now
            moderator_id: Actor applying the timeout
            reason: Optional free-text reason

        Returns:
            The stored TimeoutRecord

        Raises:
            InvalidInputError: If duration_seconds is not a positive number
        """
        validate_duration(duration_seconds)

        now = self.now()
        try:
            until = now + timedelta(seconds=duration_seconds)
        except OverflowError:
            raise InvalidInputError(f"duration_seconds is out of range: {duration_seconds}")

        record = TimeoutRecord(
            server_id=server_id,
            user_id=user_id,
            until=until,
            moderator_id=moderator_id,
            reason=reason,
            created_at=now,
        )
        self.store.upsert(record)

        logger.info(
            f"Timeout applied: server={server_id} user={user_id} "
            f"until={record.until.isoformat()} moderator={moderator_id}"
        )
        return record

    def remove(self, server_id: str, user_id: str) -> None:
        """Delete the timeout record. Removing a missing timeout is not an error."""
        self.store.delete(server_id, user_id)
        logger.info(f"Timeout removed: server={server_id} user={user_id}")

    def get(self, server_id: str, user_id: str) -> Optional[TimeoutRecord]:
        """Return the stored record, active or not."""
        return self.store.get(server_id, user_id)

    def get_active(self, server_id: str, user_id: str) -> Optional[TimeoutRecord]:
        """Return the record only while it is still in force."""
        record = self.store.get(server_id, user_id)
        if self.is_active(record, self.now()):
            return record
        return None

    def is_timed_out(self, server_id: str, user_id: str) -> bool:
        return self.get_active(server_id, user_id) is not None

    @staticmethod
    def is_active(record: Optional[TimeoutRecord], now: datetime) -> bool:
        """A timeout is active iff it exists and now < until."""
        return record is not None and now < record.until


def validate_duration(duration_seconds) -> None:
    """Reject anything but a positive int or float (bools included)."""
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, (int, float)):
        raise InvalidInputError("duration_seconds must be a positive number")
    if not math.isfinite(duration_seconds) or duration_seconds <= 0:
        raise InvalidInputError("duration_seconds must be a positive number")
