import json
from datetime import date

import pandas as pd
import pytest

from effort_distribution.io_utils import (
    load_assignment,
    load_capacity_table,
    load_config,
    load_team_members,
    write_csv,
    write_json,
)
from effort_distribution.models import DistributionConfig


def write(path, payload):
    path.write_text(json.dumps(payload))
    return path


class TestLoadConfig:
    def test_defaults_without_file(self):
        assert load_config(None) == DistributionConfig()

    def test_full_file(self, tmp_path):
        path = write(
            tmp_path / "config.json",
            {
                "safety_buffer": 0.8,
                "policy": "Even",
                "use_capacity_headroom": False,
                "redistribution_cap": "absolute",
                "max_projection_months": 24,
                "default_country": "RO",
                "holidays": {"RO": ["2024-12-25", "2024-12-01"]},
                "logging_level": "DEBUG",
            },
        )
        cfg = load_config(path)
        assert cfg.safety_buffer == 0.8
        assert cfg.policy == "even"
        assert cfg.use_capacity_headroom is False
        assert cfg.redistribution_cap == "absolute"
        assert cfg.max_projection_months == 24
        assert cfg.holidays["RO"] == (date(2024, 12, 1), date(2024, 12, 25))
        assert cfg.logging_level == "DEBUG"

    @pytest.mark.parametrize(
        "payload",
        [
            {"safety_buffer": 1.5},
            {"safety_buffer": 0},
            {"safety_buffer": "high"},
            {"policy": "random"},
            {"redistribution_cap": "none"},
            {"max_projection_months": 0},
            {"use_capacity_headroom": "yes"},
            {"holidays": ["2024-12-25"]},
            {"holidays": {"IT": ["not-a-date"]}},
        ],
    )
    def test_rejects_invalid_values(self, tmp_path, payload):
        with pytest.raises(ValueError):
            load_config(write(tmp_path / "config.json", payload))


class TestLoadTeamMembers:
    def test_parses_members_and_skips_inactive(self, tmp_path):
        path = write(
            tmp_path / "members.json",
            [
                {"id": "tm-001", "name": "Ada", "country": "IT", "vacation_days": ["2024-08-12", "2024-08-13"]},
                {"id": "tm-002", "name": "Bo", "monthly_capacity": 10},
                {"id": "tm-003", "name": "Cy", "active": "false"},
            ],
        )
        members = load_team_members(path)
        assert [member.id for member in members] == ["tm-001", "tm-002"]
        assert members[0].vacation_days == (date(2024, 8, 12), date(2024, 8, 13))
        assert members[1].monthly_capacity == 10
        assert members[1].country == "IT"

    @pytest.mark.parametrize(
        "payload",
        [
            {"id": "tm-001"},
            [{"name": "nobody"}],
            [{"id": "tm-001"}, {"id": "tm-001"}],
            [{"id": "tm-001", "monthly_capacity": -1}],
            [{"id": "tm-001", "active": False}],
        ],
    )
    def test_rejects_invalid_files(self, tmp_path, payload):
        with pytest.raises(ValueError):
            load_team_members(write(tmp_path / "members.json", payload))


class TestLoadCapacityTable:
    def test_reads_rows(self, tmp_path):
        path = tmp_path / "capacity.csv"
        path.write_text("member_id,month,capacity\ntm-001,2024-02,18\ntm-001,2024-03,20.5\n")
        df = load_capacity_table(path)
        assert list(df["month"]) == ["2024-02", "2024-03"]
        assert list(df["capacity"]) == [18, 20.5]

    def test_missing_column(self, tmp_path):
        path = tmp_path / "capacity.csv"
        path.write_text("member_id,month\ntm-001,2024-02\n")
        with pytest.raises(ValueError, match="capacity"):
            load_capacity_table(path)

    def test_negative_capacity(self, tmp_path):
        path = tmp_path / "capacity.csv"
        path.write_text("member_id,month,capacity\ntm-001,2024-02,-3\n")
        with pytest.raises(ValueError, match="negative"):
            load_capacity_table(path)

    def test_malformed_month(self, tmp_path):
        path = tmp_path / "capacity.csv"
        path.write_text("member_id,month,capacity\ntm-001,Feb 2024,10\n")
        with pytest.raises(ValueError, match="YYYY-MM"):
            load_capacity_table(path)


class TestAssignmentFiles:
    def test_load_ignores_metadata_keys_in_allocations(self, tmp_path):
        path = write(
            tmp_path / "assignment.json",
            {
                "id": "pa-001",
                "teamMemberId": "tm-001",
                "allocations": {
                    "2024-03": {"planned": 10, "actual": 10, "locked": True},
                    "2024-02": {"planned": 20, "actual": 18},
                    "hasOverflow": False,
                    "overflowAmount": 0,
                },
                "lastModified": "2024-01-31T10:00:00+00:00",
            },
        )
        assignment = load_assignment(path)
        assert list(assignment.allocations) == ["2024-02", "2024-03"]
        assert assignment.allocations["2024-03"].locked
        assert assignment.allocations["2024-02"].actual == 18
        assert assignment.last_modified.year == 2024

    def test_rejects_negative_planned(self, tmp_path):
        path = write(
            tmp_path / "assignment.json",
            {"id": "pa-001", "teamMemberId": "tm-001", "allocations": {"2024-02": {"planned": -1}}},
        )
        with pytest.raises(ValueError):
            load_assignment(path)

    def test_writers_create_parent_directories(self, tmp_path):
        write_json({"ok": True}, tmp_path / "out" / "result.json")
        write_csv(pd.DataFrame({"month": ["2024-02"]}), tmp_path / "out" / "plan.csv")
        assert json.loads((tmp_path / "out" / "result.json").read_text()) == {"ok": True}
        assert (tmp_path / "out" / "plan.csv").read_text().splitlines() == ["month", "2024-02"]
