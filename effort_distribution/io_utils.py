from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .policies import CURVE_PRESETS
from .models import POLICY_NAMES, REDISTRIBUTION_CAPS, Assignment, DistributionConfig, TeamMember
from .months import MonthKey

_CAPACITY_REQUIRED_COLUMNS = {"member_id", "month", "capacity"}


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = [col for col in sorted(required) if col not in df.columns]
    if missing:
        raise ValueError(f"{source} missing required columns: {', '.join(missing)}")


def _parse_bool(value: object, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "t", "1", "yes", "y"}:
            return True
        if lowered in {"false", "f", "0", "no", "n"}:
            return False
    raise ValueError(f"cannot interpret boolean value '{value}' in '{field_name}'")


def _parse_date(value: object, field_name: str) -> date:
    try:
        return dateparser.isoparse(str(value)).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def _parse_dates(values: object, field_name: str) -> Tuple[date, ...]:
    if values is None:
        return ()
    if not isinstance(values, list):
        raise ValueError(f"{field_name} must be an array of ISO dates")
    return tuple(sorted({_parse_date(value, field_name) for value in values}))


def load_capacity_table(path: str | Path) -> pd.DataFrame:
    df = pd.read_csv(path, dtype={"member_id": str, "month": str})
    if df.empty:
        raise ValueError("capacity file is empty")
    _require_columns(df, _CAPACITY_REQUIRED_COLUMNS, "capacity.csv")
    try:
        df["capacity"] = pd.to_numeric(df["capacity"])
    except ValueError as exc:
        raise ValueError("invalid numeric value in column 'capacity'") from exc
    if (df["capacity"] < 0).any():
        raise ValueError("column 'capacity' contains negative values")
    df["month"] = df["month"].map(lambda value: str(MonthKey.parse(value)))
    return df


def load_team_members(path: str | Path) -> List[TeamMember]:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, list):
        raise ValueError("members file must be a JSON array")
    members: List[TeamMember] = []
    seen = set()
    for entry in data:
        if not isinstance(entry, dict):
            raise ValueError("member entries must be objects")
        member_id = entry.get("id")
        if not member_id or not isinstance(member_id, str):
            raise ValueError("member id is required")
        if member_id in seen:
            raise ValueError(f"duplicate member id '{member_id}'")
        seen.add(member_id)
        monthly_capacity = entry.get("monthly_capacity")
        if monthly_capacity is not None:
            if not isinstance(monthly_capacity, (int, float)) or monthly_capacity < 0:
                raise ValueError(f"monthly_capacity must be a non-negative number for {member_id}")
        active = _parse_bool(entry.get("active", True), "active")
        if not active:
            continue
        members.append(
            TeamMember(
                id=member_id,
                name=str(entry.get("name") or member_id),
                country=str(entry.get("country") or "IT"),
                monthly_capacity=monthly_capacity,
                vacation_days=_parse_dates(entry.get("vacation_days"), "vacation_days"),
                active=active,
            )
        )
    if not members:
        raise ValueError("members file has no active members")
    return members


def _parse_holidays(raw: object) -> Dict[str, Tuple[date, ...]]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError("holidays must be an object mapping country codes to date arrays")
    return {str(country): _parse_dates(days, f"holidays.{country}") for country, days in raw.items()}


def load_config(path: Optional[str | Path]) -> DistributionConfig:
    if path is None:
        return DistributionConfig()
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("config must be a JSON object")
    defaults = DistributionConfig()

    safety_buffer = data.get("safety_buffer", defaults.safety_buffer)
    if not isinstance(safety_buffer, (int, float)) or isinstance(safety_buffer, bool):
        raise ValueError("safety_buffer must be a number")
    safety_buffer = float(safety_buffer)
    if not (0 < safety_buffer <= 1):
        raise ValueError("safety_buffer must be in (0, 1]")

    policy = data.get("policy", defaults.policy)
    if not isinstance(policy, str) or policy.lower() not in set(POLICY_NAMES) | set(CURVE_PRESETS):
        choices = ", ".join(sorted(set(POLICY_NAMES) | set(CURVE_PRESETS)))
        raise ValueError(f"policy must be one of: {choices}")

    use_headroom = data.get("use_capacity_headroom", defaults.use_capacity_headroom)
    if not isinstance(use_headroom, bool):
        raise ValueError("use_capacity_headroom must be a boolean")

    redistribution_cap = data.get("redistribution_cap", defaults.redistribution_cap)
    if redistribution_cap not in REDISTRIBUTION_CAPS:
        raise ValueError(f"redistribution_cap must be one of: {', '.join(REDISTRIBUTION_CAPS)}")

    max_months = data.get("max_projection_months", defaults.max_projection_months)
    if not isinstance(max_months, int) or max_months <= 0:
        raise ValueError("max_projection_months must be a positive integer")

    default_country = data.get("default_country", defaults.default_country)
    if not isinstance(default_country, str) or not default_country:
        raise ValueError("default_country must be a non-empty string")

    return DistributionConfig(
        safety_buffer=safety_buffer,
        policy=policy.lower(),
        use_capacity_headroom=use_headroom,
        redistribution_cap=redistribution_cap,
        max_projection_months=max_months,
        default_country=default_country,
        holidays=_parse_holidays(data.get("holidays")),
        logging_level=data.get("logging_level", defaults.logging_level),
    )


def load_assignment(path: str | Path) -> Assignment:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("assignment file must be a JSON object")
    return Assignment.from_dict(data)


def write_json(payload: object, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    Path(path).write_text(json.dumps(payload, indent=2) + "\n")


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
