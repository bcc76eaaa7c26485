from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .models import (
    AllocationEntry,
    Assignment,
    DistributionConfig,
    DistributionResult,
    MemberId,
    OverflowResult,
    TeamMember,
)
from .months import DateLike, MonthKey, coerce_date, month_range
from .policies import AllocationPolicy, resolve_policy
from .providers import CapacityProvider, MemberDirectory

logger = logging.getLogger(__name__)

EPSILON = 1e-9

# month key -> MDs already committed for the member elsewhere
CommittedAllocations = Mapping[str, float]


class InvalidArgumentError(ValueError):
    pass


class TeamMemberNotFoundError(LookupError):
    def __init__(self, member_id: MemberId) -> None:
        super().__init__("Team member not found")
        self.member_id = member_id


class CapacityLookupError(RuntimeError):
    def __init__(self, member_id: MemberId, month: str, cause: BaseException) -> None:
        super().__init__(f"Capacity lookup failed for {member_id} in {month}: {cause}")
        self.member_id = member_id
        self.month = month


class CapacityExhaustedError(RuntimeError):
    def __init__(self, total_mds: float, months: int) -> None:
        super().__init__(f"{total_mds} MDs cannot be absorbed within {months} months")
        self.total_mds = total_mds
        self.months = months


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AutoDistribution:
    """Spreads a member's man-days over calendar months within their capacity.

    The engine is stateless: capacity comes from ``capacity_provider``, members
    from ``member_directory``, allocations already committed elsewhere are passed
    per call, and "now" comes from the injected ``clock``.
    """

    def __init__(
        self,
        capacity_provider: CapacityProvider,
        member_directory: MemberDirectory,
        config: Optional[DistributionConfig] = None,
        *,
        policy: Optional[AllocationPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.capacity_provider = capacity_provider
        self.member_directory = member_directory
        self.config = config or DistributionConfig()
        if not 0 < self.config.safety_buffer <= 1:
            raise InvalidArgumentError("safety_buffer must be in (0, 1]")
        self.policy = policy or resolve_policy(self.config.policy)
        self.clock = clock or _utc_now

    @property
    def safety_buffer(self) -> float:
        return self.config.safety_buffer

    def calculate_project_end_date(
        self,
        start_date: DateLike,
        total_mds: float,
        team_member_id: MemberId,
        *,
        committed: Optional[CommittedAllocations] = None,
    ) -> date:
        if total_mds <= 0:
            raise InvalidArgumentError("Total MDs must be positive")
        member = self._resolve_member(team_member_id)
        month = MonthKey.from_date(coerce_date(start_date, "start_date"))
        accumulated = 0.0
        for _ in range(self.config.max_projection_months):
            accumulated += self._net_capacity(member, month, committed)
            if accumulated >= total_mds - EPSILON:
                return month.next().first_day()
            month = month.next()
        raise CapacityExhaustedError(total_mds, self.config.max_projection_months)

    def auto_distribute_mds(
        self,
        total_mds: float,
        start_date: DateLike,
        end_date: DateLike,
        team_member_id: MemberId,
        *,
        committed: Optional[CommittedAllocations] = None,
    ) -> DistributionResult:
        start = coerce_date(start_date, "start_date")
        end = coerce_date(end_date, "end_date")
        if end <= start:
            raise InvalidArgumentError("Invalid date range: end date must be after start date")
        if total_mds < 0:
            raise InvalidArgumentError("Total MDs must be positive")
        if total_mds == 0:
            return DistributionResult()
        member = self._resolve_member(team_member_id)
        months = month_range(start, end)
        capacities = [
            self._net_capacity(member, month, committed, window=_partial_window(month, start, end))
            for month in months
        ]
        ceilings = [self.buffered_ceiling(value) for value in capacities]

        planned = self.policy.allocate(total_mds, ceilings)
        remaining = total_mds - sum(planned)
        if remaining > EPSILON and self.config.use_capacity_headroom:
            headroom = [max(0, capacity - amount) for capacity, amount in zip(capacities, planned)]
            extra = self.policy.allocate(remaining, headroom)
            planned = [amount + added for amount, added in zip(planned, extra)]
            remaining = total_mds - sum(planned)
            logger.debug("used %s MDs of safety headroom for %s", sum(extra), member.id)

        has_overflow = remaining > EPSILON
        if has_overflow:
            # the terminal month carries what no month could hold
            planned[-1] += remaining
            logger.warning(
                "Unable to fit %s of %s MDs for %s between %s and %s",
                remaining,
                total_mds,
                member.id,
                months[0],
                months[-1],
            )
        allocations = {str(month): AllocationEntry.fresh(amount) for month, amount in zip(months, planned)}
        return DistributionResult(
            allocations=allocations,
            has_overflow=has_overflow,
            overflow_amount=remaining if has_overflow else 0,
        )

    def check_capacity_overflow(
        self,
        team_member_id: MemberId,
        month: str,
        new_allocation: float,
        *,
        committed: Optional[CommittedAllocations] = None,
    ) -> OverflowResult:
        if new_allocation < 0:
            raise InvalidArgumentError("Allocation must not be negative")
        member = self._resolve_member(team_member_id)
        key = MonthKey.parse(month)
        max_capacity = self._net_capacity(member, key, committed)
        overflow_amount = max(0, new_allocation - max_capacity)
        if max_capacity == 0:
            utilization = math.inf if new_allocation > 0 else 0.0
        else:
            utilization = new_allocation / max_capacity * 100
        return OverflowResult(
            has_overflow=new_allocation > max_capacity,
            overflow_amount=overflow_amount,
            max_capacity=max_capacity,
            utilization=utilization,
        )

    def redistribute_after_user_change(
        self,
        assignment: Assignment,
        changed_month: str,
        new_value: float,
        *,
        now: Optional[datetime] = None,
        committed: Optional[CommittedAllocations] = None,
    ) -> Assignment:
        """Apply a user edit to one month and rebalance the later months.

        Locked months and months before ``now`` are left alone. Collaborator
        failures never raise: the original assignment comes back with ``error``
        set instead.
        """
        if new_value < 0:
            raise InvalidArgumentError("Allocation must not be negative")
        key = str(MonthKey.parse(changed_month))
        current = assignment.allocations.get(key)
        if current is None:
            raise InvalidArgumentError(f"Month {key} is not part of assignment {assignment.id}")
        if current.locked:
            raise InvalidArgumentError(f"Month {key} is locked")
        moment = now or self.clock()
        try:
            return self._redistribute(assignment, key, new_value, moment, committed)
        except (CapacityLookupError, TeamMemberNotFoundError) as exc:
            logger.warning("Redistribution of %s failed, keeping original allocations: %s", assignment.id, exc)
            return replace(assignment, allocations=dict(assignment.allocations), error=str(exc))

    def buffered_ceiling(self, capacity: float) -> float:
        """Capacity reduced by the safety buffer, rounded half up to whole MDs (22 -> 20)."""
        if capacity <= 0:
            return 0
        ceiling = math.floor(capacity * self.safety_buffer + 0.5)
        return min(capacity, ceiling)

    def _redistribute(
        self,
        assignment: Assignment,
        key: str,
        new_value: float,
        moment: datetime,
        committed: Optional[CommittedAllocations],
    ) -> Assignment:
        allocations: Dict[str, AllocationEntry] = dict(assignment.allocations)
        changed = MonthKey.parse(key)
        member = self._resolve_member(assignment.team_member_id)
        if new_value > self._net_capacity(member, changed, committed) + EPSILON:
            logger.warning("%s MDs in %s exceed the capacity of %s", new_value, key, member.id)
        delta = new_value - allocations[key].planned
        allocations[key] = allocations[key].with_planned(new_value)
        candidates = self._candidate_months(allocations, changed, moment)

        unallocated = 0
        excess = 0
        if delta > EPSILON:
            remaining = delta
            for month in candidates:
                if remaining <= EPSILON:
                    break
                entry = allocations[month]
                take = min(remaining, entry.planned)
                if take > 0:
                    allocations[month] = entry.with_planned(entry.planned - take)
                    remaining -= take
            if remaining > EPSILON:
                excess = remaining
                logger.warning(
                    "Increase in %s for %s exceeds later allocations by %s MDs", key, assignment.id, remaining
                )
        elif delta < -EPSILON:
            remaining = -delta
            for month in candidates:
                if remaining <= EPSILON:
                    break
                entry = allocations[month]
                ceiling = self.buffered_ceiling(self._net_capacity(member, MonthKey.parse(month), committed))
                if self.config.redistribution_cap == "absolute":
                    room = ceiling - entry.planned
                else:
                    room = ceiling
                give = min(remaining, max(0, room))
                if give > 0:
                    allocations[month] = entry.with_planned(entry.planned + give)
                    remaining -= give
            if remaining > EPSILON:
                unallocated = remaining
                logger.warning("Could not place %s freed MDs of %s in later months", remaining, assignment.id)

        return replace(
            assignment,
            allocations=allocations,
            last_modified=moment,
            error=None,
            has_unallocated_mds=unallocated > 0,
            unallocated_amount=unallocated,
            excess_amount=excess,
        )

    def _candidate_months(
        self, allocations: Mapping[str, AllocationEntry], changed: MonthKey, moment: datetime
    ) -> List[str]:
        today = coerce_date(moment, "now")
        months = sorted(MonthKey.parse(key) for key in allocations)
        return [
            str(month)
            for month in months
            if month > changed and not allocations[str(month)].locked and not month.is_before(today)
        ]

    def _resolve_member(self, member_id: MemberId) -> TeamMember:
        member = self.member_directory.get_member(member_id)
        if member is None:
            raise TeamMemberNotFoundError(member_id)
        return member

    def _net_capacity(
        self,
        member: TeamMember,
        month: MonthKey,
        committed: Optional[CommittedAllocations],
        window: Optional[Tuple[date, date]] = None,
    ) -> float:
        key = str(month)
        try:
            if window is None:
                capacity = self.capacity_provider.capacity(member, key)
            else:
                capacity = self.capacity_provider.capacity(member, key, start=window[0], end=window[1])
        except Exception as exc:
            raise CapacityLookupError(member.id, key, exc) from exc
        already = committed.get(key, 0) if committed else 0
        return max(0, capacity - already)


def _partial_window(month: MonthKey, start: date, end: date) -> Optional[Tuple[date, date]]:
    """Clip ``[start, end)`` to ``month``; None when the range covers the whole month."""
    month_start = month.first_day()
    month_end = month.next().first_day()
    if start <= month_start and end >= month_end:
        return None
    return max(start, month_start), min(end, month_end)


def committed_allocations(
    assignments: Iterable[Assignment],
    team_member_id: MemberId,
    exclude: Optional[str] = None,
) -> Dict[str, float]:
    """Sum the planned MDs of a member's other assignments per month."""
    ledger: Dict[str, float] = {}
    for assignment in assignments:
        if assignment.team_member_id != team_member_id or assignment.id == exclude:
            continue
        for key, entry in assignment.allocations.items():
            ledger[key] = ledger.get(key, 0) + entry.planned
    return ledger
