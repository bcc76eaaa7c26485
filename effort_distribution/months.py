from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Union

from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")

DateLike = Union[date, datetime, str]


@dataclass(frozen=True, order=True)
class MonthKey:
    """Calendar month; serialised as zero-padded ``YYYY-MM``."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be in 1..12, got {self.month}")
        if not 1 <= self.year <= 9999:
            raise ValueError(f"year out of range: {self.year}")

    @classmethod
    def parse(cls, value: Union["MonthKey", str]) -> "MonthKey":
        if isinstance(value, MonthKey):
            return value
        match = _MONTH_KEY_RE.match(str(value).strip())
        if not match:
            raise ValueError(f"invalid month key '{value}', expected YYYY-MM")
        return cls(int(match.group(1)), int(match.group(2)))

    @classmethod
    def from_date(cls, value: date) -> "MonthKey":
        return cls(value.year, value.month)

    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    def shift(self, months: int) -> "MonthKey":
        return MonthKey.from_date(self.first_day() + relativedelta(months=months))

    def next(self) -> "MonthKey":
        return self.shift(1)

    def is_before(self, moment: date) -> bool:
        """True when this whole month lies before the month containing ``moment``."""
        return self < MonthKey.from_date(moment)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def coerce_date(value: DateLike, field_name: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return dateparser.isoparse(str(value)).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def month_range(start: date, end: date) -> List[MonthKey]:
    """Months touched by the half-open date range ``[start, end)``."""
    months: List[MonthKey] = []
    current = MonthKey.from_date(start)
    while current.first_day() < end:
        months.append(current)
        current = current.next()
    return months


def sorted_month_keys(keys: Iterable[str]) -> List[str]:
    return [str(key) for key in sorted(MonthKey.parse(key) for key in keys)]


def ensure_contiguous(keys: Iterable[str]) -> None:
    parsed = [MonthKey.parse(key) for key in keys]
    for previous, current in zip(parsed, parsed[1:]):
        if current != previous.next():
            raise ValueError(f"month keys must be contiguous: {previous} is followed by {current}")
