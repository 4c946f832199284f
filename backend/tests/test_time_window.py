"""
One-hour client mutation window
"""
from datetime import datetime, timedelta

import pytest

from core.clock import FixedClock
from core.errors import ForbiddenError
from core.roles import Principal, Role
from core.time_window import CLIENT_MUTATION_WINDOW, MutableRecord, TimeWindowPolicy

CREATED = datetime(2025, 1, 1, 12, 0, 0)
CLIENT = Principal(3, Role.CLIENT)
AGENT = Principal(2, Role.AGENT)
ADMIN = Principal(1, Role.ADMIN)


@pytest.fixture
def clock():
    return FixedClock(CREATED)


@pytest.fixture
def policy(clock):
    return TimeWindowPolicy(clock)


@pytest.fixture
def record():
    return MutableRecord(owner_id=CLIENT.user_id, created_at=CREATED, assignee_id=AGENT.user_id)


class TestClientWindow:
    """Owner may mutate for exactly 3,600,000 ms"""

    def test_window_is_one_hour(self):
        assert CLIENT_MUTATION_WINDOW == timedelta(milliseconds=3_600_000)

    def test_owner_inside_window(self, policy, clock, record):
        clock.advance(minutes=30)
        assert policy.can_mutate(record, CLIENT)

    def test_boundary_is_inclusive(self, policy, clock, record):
        clock.advance(minutes=60)
        assert policy.can_mutate(record, CLIENT)

    def test_closed_after_one_hour_and_stays_closed(self, policy, clock, record):
        clock.advance(seconds=3600.001)
        assert not policy.can_mutate(record, CLIENT)
        for _ in range(3):
            clock.advance(minutes=45)
            assert not policy.can_mutate(record, CLIENT)

    def test_non_owner_client_never(self, policy, record):
        assert not policy.can_mutate(record, Principal(4, Role.CLIENT))

    def test_missing_created_at_is_closed(self, policy):
        assert not policy.can_mutate(MutableRecord(owner_id=3, created_at=None), CLIENT)

    def test_remaining_never_negative(self, policy, clock):
        assert policy.remaining(CREATED) == timedelta(hours=1)
        clock.advance(minutes=20)
        assert policy.remaining(CREATED) == timedelta(minutes=40)
        clock.advance(minutes=90)
        assert policy.remaining(CREATED) == timedelta(0)


class TestOtherRoles:
    """Admins always, agents only when assigned"""

    def test_admin_any_time(self, policy, clock, record):
        clock.advance(minutes=600)
        assert policy.can_mutate(record, ADMIN)

    def test_assigned_agent_has_no_time_limit(self, policy, clock, record):
        clock.advance(minutes=600)
        assert policy.can_mutate(record, AGENT)

    def test_unassigned_agent_denied(self, policy, record):
        assert not policy.can_mutate(record, Principal(5, Role.AGENT))


class TestEnsure:
    """Denials raise ForbiddenError"""

    def test_expired_owner_gets_window_message(self, policy, clock, record):
        clock.advance(minutes=90)
        with pytest.raises(ForbiddenError) as exc:
            policy.ensure_can_mutate(record, CLIENT, "project")
        assert "one hour" in exc.value.message
        assert exc.value.details == {"window_seconds": 3600}

    def test_stranger_gets_generic_message(self, policy, record):
        with pytest.raises(ForbiddenError) as exc:
            policy.ensure_can_mutate(record, Principal(5, Role.AGENT), "project")
        assert exc.value.code == "FORBIDDEN"
        assert "one hour" not in exc.value.message
