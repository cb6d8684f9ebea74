"""
Server ban list keyed by (server, user).

A ban outlives membership: banning a member removes them and the record
stays until an unban. Banning an already-banned user replaces the record.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from vortex_authz.timeouts import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BanRecord:
    server_id: str
    user_id: str
    banned_by: str
    reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "server_id": self.server_id,
            "user_id": self.user_id,
            "banned_by": self.banned_by,
            "reason": self.reason,
            "created_at": self.created_at.isoformat(),
        }


class BanList:
    """Lock-guarded in-memory bans."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[Tuple[str, str], BanRecord] = {}

    def add(self, record: BanRecord) -> BanRecord:
        with self._lock:
            self._records[(record.server_id, record.user_id)] = record
        logger.info(f"Ban stored: server={record.server_id} user={record.user_id} by={record.banned_by}")
        return record

    def remove(self, server_id: str, user_id: str) -> Optional[BanRecord]:
        """Lift a ban; returns the removed record, or None if there was none."""
        with self._lock:
            return self._records.pop((server_id, user_id), None)

    def get(self, server_id: str, user_id: str) -> Optional[BanRecord]:
        with self._lock:
            return self._records.get((server_id, user_id))

    def is_banned(self, server_id: str, user_id: str) -> bool:
        return self.get(server_id, user_id) is not None

    def list(self, server_id: str) -> List[BanRecord]:
        with self._lock:
            bans = [r for (sid, _), r in self._records.items() if sid == server_id]
        return sorted(bans, key=lambda r: r.created_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
