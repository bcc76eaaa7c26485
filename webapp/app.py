from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from dateutil import parser as dateparser
from flask import Flask, jsonify, request

from effort_distribution.engine import (
    AutoDistribution,
    CapacityExhaustedError,
    CapacityLookupError,
    TeamMemberNotFoundError,
    committed_allocations,
)
from effort_distribution.io_utils import load_capacity_table, load_config, load_team_members
from effort_distribution.models import Assignment
from effort_distribution.months import MonthKey
from effort_distribution.providers import InMemoryMemberDirectory, TableCapacityProvider, WorkingDaysCalendar


def _env_path(name: str) -> Optional[Path]:
    value = os.getenv(name)
    return Path(value).expanduser().resolve() if value else None


def _engine_from_env() -> Tuple[AutoDistribution, InMemoryMemberDirectory]:
    members_path = _env_path("MEMBERS_PATH")
    if members_path is None:
        raise ValueError("MEMBERS_PATH must point to a team members JSON file")
    cfg = load_config(_env_path("CONFIG_PATH"))
    directory = InMemoryMemberDirectory(load_team_members(members_path))
    capacity_path = _env_path("CAPACITY_PATH")
    if capacity_path:
        provider = TableCapacityProvider(load_capacity_table(capacity_path))
    else:
        provider = WorkingDaysCalendar(cfg.holidays, default_country=cfg.default_country)
    return AutoDistribution(provider, directory, cfg), directory


def _require(data: Mapping[str, object], *names: str) -> None:
    missing = [name for name in names if data.get(name) is None]
    if missing:
        raise ValueError(f"missing required fields: {', '.join(missing)}")


def _number(data: Mapping[str, object], name: str) -> float:
    value = data.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number")
    return value


def _committed(
    data: Mapping[str, object], member_id: str, exclude: Optional[str] = None
) -> Optional[Dict[str, float]]:
    """Committed ledger from an explicit mapping or from sibling assignments."""
    raw = data.get("committed")
    if raw is not None:
        if not isinstance(raw, dict):
            raise ValueError("committed must be an object mapping YYYY-MM to MDs")
        ledger: Dict[str, float] = {}
        for key in raw:
            month = str(MonthKey.parse(key))
            ledger[month] = ledger.get(month, 0) + _number(raw, key)
        return ledger
    others = data.get("otherAssignments")
    if others is None:
        return None
    if not isinstance(others, list):
        raise ValueError("otherAssignments must be an array")
    return committed_allocations((Assignment.from_dict(item) for item in others), member_id, exclude=exclude)


def create_app(
    engine: Optional[AutoDistribution] = None,
    directory: Optional[InMemoryMemberDirectory] = None,
) -> Flask:
    app = Flask(__name__)
    if engine is None:
        engine, directory = _engine_from_env()
    app.config["ENGINE"] = engine

    @app.errorhandler(ValueError)
    def invalid_argument(exc: ValueError):
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(TeamMemberNotFoundError)
    def member_not_found(exc: TeamMemberNotFoundError):
        return jsonify({"error": str(exc), "teamMemberId": exc.member_id}), 404

    @app.errorhandler(CapacityLookupError)
    @app.errorhandler(CapacityExhaustedError)
    def capacity_failure(exc: RuntimeError):
        return jsonify({"error": str(exc)}), 422

    @app.get("/members")
    def list_members():
        if directory is None:
            return jsonify({"members": []})
        members = [
            {"id": member.id, "name": member.name, "country": member.country}
            for member in directory.list_members()
        ]
        return jsonify({"members": members})

    @app.post("/end-date")
    def end_date():
        data = request.get_json(silent=True) or {}
        _require(data, "startDate", "totalMDs", "teamMemberId")
        member_id = str(data["teamMemberId"])
        end = engine.calculate_project_end_date(
            data["startDate"], _number(data, "totalMDs"), member_id, committed=_committed(data, member_id)
        )
        return jsonify({"endDate": end.isoformat()})

    @app.post("/distribute")
    def distribute():
        data = request.get_json(silent=True) or {}
        _require(data, "totalMDs", "startDate", "endDate", "teamMemberId")
        member_id = str(data["teamMemberId"])
        result = engine.auto_distribute_mds(
            _number(data, "totalMDs"),
            data["startDate"],
            data["endDate"],
            member_id,
            committed=_committed(data, member_id),
        )
        return jsonify(result.to_dict())

    @app.post("/check-overflow")
    def check_overflow():
        data = request.get_json(silent=True) or {}
        _require(data, "teamMemberId", "month", "newAllocation")
        member_id = str(data["teamMemberId"])
        result = engine.check_capacity_overflow(
            member_id,
            str(data["month"]),
            _number(data, "newAllocation"),
            committed=_committed(data, member_id),
        )
        return jsonify(result.to_dict())

    @app.post("/redistribute")
    def redistribute():
        data = request.get_json(silent=True) or {}
        _require(data, "assignment", "changedMonth", "newValue")
        if not isinstance(data["assignment"], dict):
            raise ValueError("assignment must be an object")
        assignment = Assignment.from_dict(data["assignment"])
        now = None
        if data.get("now"):
            try:
                now = dateparser.isoparse(str(data["now"]))
            except (ValueError, TypeError) as exc:
                raise ValueError(f"invalid now: {data['now']}") from exc
        updated = engine.redistribute_after_user_change(
            assignment,
            str(data["changedMonth"]),
            _number(data, "newValue"),
            now=now,
            committed=_committed(data, assignment.team_member_id, exclude=assignment.id),
        )
        return jsonify(updated.to_dict())

    return app


if __name__ == "__main__":
    create_app().run(debug=False)
