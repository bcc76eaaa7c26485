from datetime import datetime, timezone

import pytest

from effort_distribution.engine import AutoDistribution
from effort_distribution.models import AllocationEntry, Assignment, TeamMember
from effort_distribution.providers import InMemoryMemberDirectory

MEMBER_ID = "tm-001"
FIXED_NOW = datetime(2024, 2, 1, 9, 0, tzinfo=timezone.utc)


class RecordingCapacity:
    """Capacity stub: a default per month, overrides by month key, or a failure."""

    def __init__(self, default=20, by_month=None, error=None):
        self.default = default
        self.by_month = dict(by_month or {})
        self.error = error
        self.calls = []
        self.windows = {}

    def capacity(self, member, month, start=None, end=None):
        self.calls.append((member.id, month))
        if start is not None or end is not None:
            self.windows[month] = (start, end)
        if self.error is not None:
            raise self.error
        return self.by_month.get(month, self.default)


def make_member(member_id=MEMBER_ID, **kwargs):
    return TeamMember(id=member_id, name="Test Member", **kwargs)


@pytest.fixture
def make_engine():
    def _make(capacity=20, by_month=None, config=None, error=None, members=None, policy=None):
        provider = RecordingCapacity(capacity, by_month, error)
        directory = InMemoryMemberDirectory([make_member()] if members is None else members)
        engine = AutoDistribution(provider, directory, config, policy=policy, clock=lambda: FIXED_NOW)
        return engine, provider

    return _make


@pytest.fixture
def make_assignment():
    def _make(values, locked=(), last_modified=None, member_id=MEMBER_ID, assignment_id="pa-001"):
        allocations = {
            month: AllocationEntry(planned=value, actual=value, locked=month in locked)
            for month, value in values.items()
        }
        return Assignment(
            id=assignment_id,
            team_member_id=member_id,
            allocations=allocations,
            last_modified=last_modified,
        )

    return _make
