from __future__ import annotations

from datetime import date, timedelta
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

import pandas as pd

from .models import MemberId, TeamMember
from .months import MonthKey

_CAPACITY_COLUMNS = ("member_id", "month", "capacity")


class CapacityProvider(Protocol):
    def capacity(
        self, member: TeamMember, month: str, start: Optional[date] = None, end: Optional[date] = None
    ) -> float:
        """MDs ``member`` can absorb in ``month`` (``YYYY-MM``), net of holidays and vacation.

        ``start``/``end`` narrow the month to the days in ``[start, end)``.
        """


class MemberDirectory(Protocol):
    def get_member(self, member_id: MemberId) -> Optional[TeamMember]:
        ...


class InMemoryMemberDirectory:
    def __init__(self, members: Iterable[TeamMember] = ()) -> None:
        self._members: Dict[MemberId, TeamMember] = {member.id: member for member in members}

    def get_member(self, member_id: MemberId) -> Optional[TeamMember]:
        return self._members.get(member_id)

    def list_members(self) -> List[TeamMember]:
        return sorted(self._members.values(), key=lambda member: member.id)


def _business_days(
    month: MonthKey,
    holidays: Sequence[date] = (),
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> FrozenSet[date]:
    """Weekdays of ``month`` minus ``holidays``, clipped to ``[start, end)`` when given."""
    first_day = month.first_day()
    last_day = month.next().first_day() - timedelta(days=1)
    lower = max(start, first_day) if start else first_day
    upper = min(end - timedelta(days=1), last_day) if end else last_day
    if upper < lower:
        return frozenset()
    index = pd.bdate_range(start=lower, end=upper, freq="C", holidays=list(holidays))
    return frozenset(index.date)


class TableCapacityProvider:
    """Capacity looked up from a ``member_id, month, capacity`` table."""

    def __init__(self, frame: pd.DataFrame, default: Optional[float] = None) -> None:
        missing = [col for col in _CAPACITY_COLUMNS if col not in frame.columns]
        if missing:
            raise ValueError(f"capacity table missing required columns: {', '.join(missing)}")
        self._lookup: Dict[Tuple[str, str], float] = {}
        for row in frame.itertuples(index=False):
            key = (str(row.member_id), str(MonthKey.parse(str(row.month))))
            self._lookup[key] = float(row.capacity)
        self.default = default

    @classmethod
    def from_mapping(
        cls, capacities: Mapping[str, Mapping[str, float]], default: Optional[float] = None
    ) -> "TableCapacityProvider":
        rows = [
            {"member_id": member_id, "month": month, "capacity": value}
            for member_id, months in capacities.items()
            for month, value in months.items()
        ]
        return cls(pd.DataFrame(rows, columns=list(_CAPACITY_COLUMNS)), default=default)

    def capacity(
        self, member: TeamMember, month: str, start: Optional[date] = None, end: Optional[date] = None
    ) -> float:
        key = MonthKey.parse(month)
        lookup_key = (member.id, str(key))
        if lookup_key in self._lookup:
            value = self._lookup[lookup_key]
        elif self.default is not None:
            value = self.default
        else:
            raise KeyError(f"no capacity recorded for {member.id} in {key}")
        if start is None and end is None:
            return value
        # rows hold whole months; a partial month gets its share of weekdays
        whole = len(_business_days(key))
        if whole == 0:
            return 0
        return value * len(_business_days(key, start=start, end=end)) / whole


class WorkingDaysCalendar:
    """Weekdays minus national holidays and vacation, capped by the member's monthly capacity."""

    def __init__(self, holidays: Optional[Mapping[str, Sequence]] = None, default_country: str = "IT") -> None:
        self.holidays: Dict[str, Tuple[date, ...]] = {
            country: tuple(pd.Timestamp(day).date() for day in days)
            for country, days in (holidays or {}).items()
        }
        self.default_country = default_country
        self._cache: Dict[Tuple[str, MonthKey], FrozenSet[date]] = {}

    def _month_days(self, month: MonthKey, country: str) -> FrozenSet[date]:
        cache_key = (country, month)
        if cache_key not in self._cache:
            self._cache[cache_key] = _business_days(month, self.holidays.get(country, ()))
        return self._cache[cache_key]

    def working_days(self, month: str, country: Optional[str] = None) -> int:
        return len(self._month_days(MonthKey.parse(month), country or self.default_country))

    def capacity(
        self, member: TeamMember, month: str, start: Optional[date] = None, end: Optional[date] = None
    ) -> float:
        key = MonthKey.parse(month)
        business_days = self._month_days(key, member.country or self.default_country)
        if start is not None or end is not None:
            business_days = frozenset(
                day
                for day in business_days
                if (start is None or day >= start) and (end is None or day < end)
            )
        vacation = len(set(member.vacation_in_month(key)) & business_days)
        available = len(business_days) - vacation
        if member.monthly_capacity is not None:
            available = min(available, member.monthly_capacity)
        return max(0, available)
