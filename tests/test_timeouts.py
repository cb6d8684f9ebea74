"""
Tests for the timeout ledger.
"""

from datetime import datetime, timedelta, timezone

import pytest

from vortex_authz.errors import InvalidInputError
from vortex_authz.timeouts import InMemoryTimeoutStore, TimeoutLedger, TimeoutRecord

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    return TimeoutLedger(store=InMemoryTimeoutStore(), clock=clock)


class TestApply:

    def test_until_is_now_plus_duration(self, ledger):
        record = ledger.apply("srv", "bob", 600, moderator_id="mod", reason="spam")

        assert record.until == T0 + timedelta(seconds=600)
        assert record.moderator_id == "mod"
        assert record.reason == "spam"
        assert ledger.get("srv", "bob") == record

    def test_active_boundary(self, ledger, clock):
        ledger.apply("srv", "bob", 600, moderator_id="mod")

        clock.advance(599)
        assert ledger.is_timed_out("srv", "bob") is True

        clock.advance(1)  # exactly T+600
        assert ledger.is_timed_out("srv", "bob") is False

        clock.advance(1)
        assert ledger.is_timed_out("srv", "bob") is False
        assert ledger.get_active("srv", "bob") is None

    def test_second_apply_replaces(self, ledger, clock):
        ledger.apply("srv", "bob", 3600, moderator_id="mod")
        clock.advance(10)
        second = ledger.apply("srv", "bob", 60, moderator_id="mod2")

        stored = ledger.get("srv", "bob")
        assert stored == second
        assert stored.until == T0 + timedelta(seconds=70)
        assert len(ledger.store) == 1

    def test_timeouts_are_per_server(self, ledger):
        ledger.apply("srv-a", "bob", 60, moderator_id="mod")
        assert ledger.is_timed_out("srv-a", "bob")
        assert not ledger.is_timed_out("srv-b", "bob")

    @pytest.mark.parametrize("duration", [0, -5, True, "60", None, float("nan"), float("inf")])
    def test_invalid_duration_rejected_before_store(self, ledger, duration):
        with pytest.raises(InvalidInputError):
            ledger.apply("srv", "bob", duration, moderator_id="mod")
        assert ledger.get("srv", "bob") is None

    def test_fractional_duration(self, ledger):
        record = ledger.apply("srv", "bob", 1.5, moderator_id="mod")
        assert record.until == T0 + timedelta(seconds=1.5)


class TestRemove:

    def test_remove_clears_record(self, ledger):
        ledger.apply("srv", "bob", 60, moderator_id="mod")
        ledger.remove("srv", "bob")
        assert ledger.get("srv", "bob") is None

    def test_remove_missing_is_not_an_error(self, ledger):
        ledger.remove("srv", "nobody")
        ledger.remove("srv", "nobody")


def test_is_active_none_record():
    assert TimeoutLedger.is_active(None, T0) is False


def test_record_to_dict():
    record = TimeoutRecord(
        server_id="srv",
        user_id="bob",
        until=T0 + timedelta(seconds=60),
        moderator_id="mod",
        created_at=T0,
    )
    data = record.to_dict()
    assert data["timed_out_until"] == "2026-01-01T12:01:00+00:00"
    assert data["reason"] is None
    assert record.is_active(T0) is True
