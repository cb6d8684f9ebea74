"""
Tests for role hierarchy comparison.
"""

import pytest

from vortex_authz.rbac import Role, RoleHierarchyGuard, get_max_position, outranks


def role(position):
    return Role(role_id=f"r{position}", server_id="srv-1", position=position)


@pytest.mark.parametrize("p", [0, 1, 5, 100])
def test_ties_never_outrank(p):
    assert outranks(p, p) is False


@pytest.mark.parametrize("p", [0, 1, 5, 100])
def test_one_above_outranks(p):
    assert outranks(p + 1, p) is True


def test_lower_does_not_outrank():
    assert outranks(1, 2) is False


class TestGetMaxPosition:

    def test_no_roles(self):
        assert get_max_position([]) == 0
        assert get_max_position(None) == 0

    def test_highest_wins(self):
        assert get_max_position([role(2), role(7), role(3)]) == 7


class TestRoleHierarchyGuard:

    @pytest.fixture
    def guard(self):
        return RoleHierarchyGuard()

    def test_higher_actor_may_act(self, guard):
        assert guard.can_act_on("mod", "member", "owner", [role(5)], [role(2)])

    def test_peer_may_not_act(self, guard):
        assert not guard.can_act_on("mod", "peer", "owner", [role(3)], [role(3)])

    def test_owner_bypasses(self, guard):
        assert guard.can_act_on("owner", "member", "owner", [], [role(99)])

    def test_self_bypasses(self, guard):
        assert guard.can_act_on("mod", "mod", "owner", [role(1)], [role(1)])

    def test_roleless_members_tie(self, guard):
        assert not guard.can_act_on("a", "b", "owner", [], [])
