from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Dict, Mapping, Optional, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .months import MonthKey, ensure_contiguous, sorted_month_keys

MemberId = str

# Keys that share the flat allocation mapping in the wire format.
METADATA_KEYS = frozenset(
    {"hasOverflow", "overflowAmount", "hasUnallocatedMDs", "unallocatedAmount", "error"}
)

POLICY_NAMES = ("frontload", "backload", "even")
REDISTRIBUTION_CAPS = ("additive", "absolute")


@dataclass(frozen=True)
class TeamMember:
    """Directory entry for a person whose effort is being planned."""

    id: MemberId
    name: str
    country: str = "IT"
    monthly_capacity: Optional[float] = None
    vacation_days: Tuple[date, ...] = ()
    active: bool = True

    def vacation_in_month(self, month: MonthKey) -> Tuple[date, ...]:
        return tuple(day for day in self.vacation_days if MonthKey.from_date(day) == month)


@dataclass(frozen=True)
class AllocationEntry:
    planned: float
    actual: float
    locked: bool = False

    @classmethod
    def fresh(cls, planned: float) -> "AllocationEntry":
        return cls(planned=planned, actual=planned, locked=False)

    def with_planned(self, value: float) -> "AllocationEntry":
        return replace(self, planned=value, actual=value)

    def to_dict(self) -> Dict[str, object]:
        return {"planned": self.planned, "actual": self.actual, "locked": self.locked}

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "AllocationEntry":
        planned = _as_number(data.get("planned", 0), "planned")
        if planned < 0:
            raise ValueError("planned must not be negative")
        actual = _as_number(data.get("actual", planned), "actual")
        return cls(planned=planned, actual=actual, locked=bool(data.get("locked", False)))


def _as_number(value: object, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{field_name} must be a number")
    return value


def _allocations_from_dict(data: Mapping[str, object]) -> Dict[str, AllocationEntry]:
    entries: Dict[str, AllocationEntry] = {}
    month_keys = [key for key in data if key not in METADATA_KEYS]
    ordered = sorted_month_keys(month_keys)
    ensure_contiguous(ordered)
    for key in ordered:
        raw = data[key]
        if not isinstance(raw, Mapping):
            raise ValueError(f"allocation for {key} must be an object")
        entries[key] = AllocationEntry.from_dict(raw)
    return entries


@dataclass(frozen=True)
class Assignment:
    """One member's effort on one project, keyed by ``YYYY-MM``."""

    id: str
    team_member_id: MemberId
    allocations: Dict[str, AllocationEntry] = field(default_factory=dict)
    last_modified: Optional[datetime] = None
    error: Optional[str] = None
    has_unallocated_mds: bool = False
    unallocated_amount: float = 0
    excess_amount: float = 0

    @property
    def total_planned(self) -> float:
        return sum(entry.planned for entry in self.allocations.values())

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "id": self.id,
            "teamMemberId": self.team_member_id,
            "allocations": {key: entry.to_dict() for key, entry in self.allocations.items()},
            "lastModified": self.last_modified.isoformat() if self.last_modified else None,
        }
        if self.error:
            payload["error"] = self.error
        if self.has_unallocated_mds:
            payload["hasUnallocatedMDs"] = True
            payload["unallocatedAmount"] = self.unallocated_amount
        if self.excess_amount:
            payload["excessAmount"] = self.excess_amount
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "Assignment":
        assignment_id = data.get("id")
        if not assignment_id:
            raise ValueError("assignment id is required")
        member_id = data.get("teamMemberId")
        if not member_id:
            raise ValueError("teamMemberId is required")
        allocations = data.get("allocations") or {}
        if not isinstance(allocations, Mapping):
            raise ValueError("allocations must be an object")
        last_modified_raw = data.get("lastModified")
        last_modified: Optional[datetime] = None
        if last_modified_raw:
            try:
                last_modified = dateparser.isoparse(str(last_modified_raw))
            except (ValueError, TypeError) as exc:
                raise ValueError(f"invalid lastModified: {last_modified_raw}") from exc
        return cls(
            id=str(assignment_id),
            team_member_id=str(member_id),
            allocations=_allocations_from_dict(allocations),
            last_modified=last_modified,
            error=data.get("error") or None,
            has_unallocated_mds=bool(data.get("hasUnallocatedMDs", False)),
            unallocated_amount=data.get("unallocatedAmount", 0) or 0,
            excess_amount=data.get("excessAmount", 0) or 0,
        )


@dataclass(frozen=True)
class DistributionResult:
    allocations: Dict[str, AllocationEntry] = field(default_factory=dict)
    has_overflow: bool = False
    overflow_amount: float = 0

    @property
    def total_planned(self) -> float:
        return sum(entry.planned for entry in self.allocations.values())

    def __getitem__(self, month: str) -> AllocationEntry:
        return self.allocations[str(MonthKey.parse(month))]

    def __contains__(self, month: object) -> bool:
        return month in self.allocations

    def __len__(self) -> int:
        return len(self.allocations)

    def to_dict(self) -> Dict[str, object]:
        if not self.allocations and not self.has_overflow:
            return {}
        payload: Dict[str, object] = {key: entry.to_dict() for key, entry in self.allocations.items()}
        payload["hasOverflow"] = self.has_overflow
        payload["overflowAmount"] = self.overflow_amount
        return payload

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {"month": key, "planned": entry.planned, "actual": entry.actual, "locked": entry.locked}
            for key, entry in self.allocations.items()
        ]
        return pd.DataFrame(rows, columns=["month", "planned", "actual", "locked"])


@dataclass(frozen=True)
class OverflowResult:
    has_overflow: bool
    overflow_amount: float
    max_capacity: float
    utilization: float

    def to_dict(self) -> Dict[str, object]:
        # JSON has no infinity literal
        utilization: object = self.utilization
        if math.isinf(self.utilization):
            utilization = "Infinity"
        return {
            "hasOverflow": self.has_overflow,
            "overflowAmount": self.overflow_amount,
            "maxCapacity": self.max_capacity,
            "utilization": utilization,
        }


@dataclass(frozen=True)
class DistributionConfig:
    safety_buffer: float = 0.9
    policy: str = "frontload"
    use_capacity_headroom: bool = True
    redistribution_cap: str = "additive"
    max_projection_months: int = 120
    default_country: str = "IT"
    holidays: Dict[str, Tuple[date, ...]] = field(default_factory=dict)
    logging_level: str = "INFO"
