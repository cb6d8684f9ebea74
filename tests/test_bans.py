"""
Tests for the ban list.
"""

from datetime import datetime, timedelta, timezone

import pytest

from vortex_authz.bans import BanList, BanRecord

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def bans():
    return BanList()


class TestBanList:

    def test_add_and_lookup(self, bans):
        record = bans.add(BanRecord("srv-1", "bob", banned_by="mod", reason="raid", created_at=T0))

        assert bans.get("srv-1", "bob") == record
        assert bans.is_banned("srv-1", "bob")
        assert not bans.is_banned("srv-2", "bob")

    def test_rebanning_replaces_record(self, bans):
        bans.add(BanRecord("srv-1", "bob", banned_by="mod", created_at=T0))
        bans.add(BanRecord("srv-1", "bob", banned_by="owner", reason="again", created_at=T0))

        assert len(bans) == 1
        assert bans.get("srv-1", "bob").banned_by == "owner"

    def test_remove(self, bans):
        record = bans.add(BanRecord("srv-1", "bob", banned_by="mod"))

        assert bans.remove("srv-1", "bob") == record
        assert bans.remove("srv-1", "bob") is None
        assert not bans.is_banned("srv-1", "bob")

    def test_list_is_scoped_and_ordered(self, bans):
        bans.add(BanRecord("srv-1", "late", banned_by="mod", created_at=T0 + timedelta(minutes=5)))
        bans.add(BanRecord("srv-1", "early", banned_by="mod", created_at=T0))
        bans.add(BanRecord("srv-2", "other", banned_by="mod", created_at=T0))

        assert [b.user_id for b in bans.list("srv-1")] == ["early", "late"]

    def test_to_dict(self):
        record = BanRecord("srv-1", "bob", banned_by="mod", created_at=T0)
        assert record.to_dict() == {
            "server_id": "srv-1",
            "user_id": "bob",
            "banned_by": "mod",
            "reason": None,
            "created_at": T0.isoformat(),
        }
