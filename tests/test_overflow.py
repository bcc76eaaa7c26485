import math

import pytest

from effort_distribution.engine import InvalidArgumentError, TeamMemberNotFoundError

MEMBER_ID = "tm-001"


class TestCheckCapacityOverflow:
    def test_allocation_above_capacity(self, make_engine):
        engine, _ = make_engine(capacity=20)
        result = engine.check_capacity_overflow(MEMBER_ID, "2024-03", 25)
        assert result.has_overflow
        assert result.overflow_amount == 5
        assert result.max_capacity == 20
        assert result.utilization == 125.0

    def test_allocation_within_capacity(self, make_engine):
        engine, _ = make_engine(capacity=20)
        result = engine.check_capacity_overflow(MEMBER_ID, "2024-03", 18)
        assert not result.has_overflow
        assert result.overflow_amount == 0
        assert result.utilization == 90.0

    def test_allocation_equal_to_capacity(self, make_engine):
        engine, _ = make_engine(capacity=20)
        result = engine.check_capacity_overflow(MEMBER_ID, "2024-03", 20)
        assert not result.has_overflow
        assert result.utilization == 100.0

    def test_checks_raw_capacity_not_buffered(self, make_engine):
        engine, _ = make_engine(capacity=22)
        result = engine.check_capacity_overflow(MEMBER_ID, "2024-03", 21)
        assert not result.has_overflow
        assert result.max_capacity == 22

    def test_zero_capacity_is_infinitely_utilized(self, make_engine):
        engine, _ = make_engine(capacity=0)
        result = engine.check_capacity_overflow(MEMBER_ID, "2024-03", 5)
        assert result.has_overflow
        assert result.overflow_amount == 5
        assert math.isinf(result.utilization)
        assert result.to_dict()["utilization"] == "Infinity"

    def test_zero_allocation_on_zero_capacity(self, make_engine):
        engine, _ = make_engine(capacity=0)
        result = engine.check_capacity_overflow(MEMBER_ID, "2024-03", 0)
        assert not result.has_overflow
        assert result.utilization == 0.0

    def test_committed_allocations_reduce_capacity(self, make_engine):
        engine, _ = make_engine(capacity=20)
        result = engine.check_capacity_overflow(MEMBER_ID, "2024-03", 18, committed={"2024-03": 5})
        assert result.max_capacity == 15
        assert result.overflow_amount == 3

    def test_committed_beyond_capacity_floors_at_zero(self, make_engine):
        engine, _ = make_engine(capacity=20)
        result = engine.check_capacity_overflow(MEMBER_ID, "2024-03", 1, committed={"2024-03": 30})
        assert result.max_capacity == 0
        assert result.has_overflow

    def test_to_dict_keys(self, make_engine):
        engine, _ = make_engine(capacity=20)
        payload = engine.check_capacity_overflow(MEMBER_ID, "2024-03", 25).to_dict()
        assert payload == {"hasOverflow": True, "overflowAmount": 5, "maxCapacity": 20, "utilization": 125.0}

    def test_unknown_member(self, make_engine):
        engine, _ = make_engine()
        with pytest.raises(TeamMemberNotFoundError):
            engine.check_capacity_overflow("tm-404", "2024-03", 5)

    def test_negative_allocation(self, make_engine):
        engine, _ = make_engine()
        with pytest.raises(InvalidArgumentError):
            engine.check_capacity_overflow(MEMBER_ID, "2024-03", -1)

    def test_malformed_month(self, make_engine):
        engine, _ = make_engine()
        with pytest.raises(ValueError):
            engine.check_capacity_overflow(MEMBER_ID, "March 2024", 5)
