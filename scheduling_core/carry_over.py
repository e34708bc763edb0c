"""Carry-over of unmet hours and deferred assignments.

Shortfalls are flagged for intervention after repeated weeks but never
resolved automatically.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Iterable

from .models import CarryOverRecord, DeferredAssignment
from .state import Assignment, SchedulingState
from .time_utils import SLOTS_PER_HOUR, minutes_to_hhmm, to_date

CARRY_OVER_THRESHOLD_WEEKS = 2
CARRY_OVER_WINDOW_DAYS = 14


@dataclass(frozen=True)
class CarryOverEntry:
    member_id: str
    needed_hours: float
    consecutive_weeks_carried: int
    needs_intervention: bool
    priority: int | None = None
    week: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "member_id": self.member_id,
            "needed_hours": self.needed_hours,
            "consecutive_weeks_carried": self.consecutive_weeks_carried,
            "needs_intervention": self.needs_intervention,
            "priority": self.priority,
            "week": self.week,
        }


def required_slot_count(min_hours_per_week: float, num_weeks: int, carry_over_hours: float = 0.0) -> int:
    """Slots a member needs: (weekly minimum x weeks + carried hours) x slots per hour."""
    hours = max(0.0, float(min_hours_per_week)) * max(1, int(num_weeks)) + max(0.0, float(carry_over_hours))
    return int(round(hours * SLOTS_PER_HOUR))


def carry_over_hours(assigned: int, required: int) -> float:
    if assigned >= required:
        return 0.0
    return (required - assigned) / SLOTS_PER_HOUR


def recent_carry_overs(history: Iterable[CarryOverRecord], as_of: date) -> int:
    """History records that fall inside the rolling window ending at ``as_of``."""
    window_start = as_of - timedelta(days=CARRY_OVER_WINDOW_DAYS)
    count = 0
    for record in history:
        week = to_date(record.week)
        if window_start <= week <= as_of and record.hours > 0:
            count += 1
    return count


def compute_carry_over(
    assignments: dict[str, Assignment],
    *,
    history: dict[str, list[CarryOverRecord]] | None = None,
    as_of: date,
    priorities: dict[str, int] | None = None,
) -> list[CarryOverEntry]:
    """One entry per member whose assigned slots fall short of the requirement."""
    history = history or {}
    priorities = priorities or {}
    entries: list[CarryOverEntry] = []
    for member_id, assignment in assignments.items():
        needed = carry_over_hours(assignment.assigned_slot_count, assignment.required_slot_count)
        if needed <= 0:
            continue
        consecutive = recent_carry_overs(history.get(member_id, []), as_of)
        entries.append(
            CarryOverEntry(
                member_id=member_id,
                needed_hours=round(needed, 2),
                consecutive_weeks_carried=consecutive,
                needs_intervention=consecutive >= CARRY_OVER_THRESHOLD_WEEKS,
                priority=priorities.get(member_id),
                week=as_of.isoformat(),
            )
        )
    return entries


def apply_deferred_assignments(state: SchedulingState, deferred: Iterable[DeferredAssignment]) -> SchedulingState:
    """Place hours deferred from an earlier run before the main strategy.

    Slots are taken least-contended first (fewest members listed), then in
    time order, and never beyond the member's remaining need.
    """
    threshold = state.options.preferred_priority_threshold
    for item in deferred:
        assignment = state.assignments.get(item.member_id)
        if assignment is None:
            state.warn(
                "deferred_member_unknown",
                f"deferred assignment for unknown member {item.member_id} ignored",
                member_id=item.member_id,
            )
            continue
        wanted = min(int(round(item.needed_hours * SLOTS_PER_HOUR)), assignment.remaining)
        if wanted <= 0:
            continue
        keys = state.grid.available_keys(item.member_id, min_priority=threshold)
        keys.sort(key=lambda k: (len(state.grid[k].competitors()), k))
        taken = keys[:wanted]
        for key in taken:
            state.assign_slot(key, item.member_id)
        state.record(
            "deferred_assignment",
            member_id=item.member_id,
            requested_slots=wanted,
            assigned_slots=len(taken),
            slots=[f"{k.date} {minutes_to_hhmm(k.start)}" for k in sorted(taken)],
        )
    return state
