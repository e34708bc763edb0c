"""Week-by-week orchestration for runs spanning more than one week.

Before each week every member's preferred time for that week is checked
against the weekly minimum; members who cannot reach it sit that week out
(with a warning) while everyone else is scheduled normally.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Iterable

from .carry_over import compute_carry_over, required_slot_count
from .engine import (
    ScheduleResult,
    finalize_result,
    initial_state,
    run_pipeline,
    single_week_pipeline,
    unassigned_info,
)
from .models import DeferredAssignment, ExistingSlot, Member, Owner, RoomSettings, ScheduleOptions
from .state import Assignment
from .time_utils import MINUTES_PER_SLOT, iter_dates
from .timetable import preferred_minutes
from .travel_time import TravelTimeProvider

logger = logging.getLogger(__name__)


def run_multi_week(
    members: list[Member],
    owner: Owner,
    options: ScheduleOptions,
    room_settings: RoomSettings,
    *,
    travel_time_provider: TravelTimeProvider | None = None,
    existing_slots: Iterable[ExistingSlot] = (),
    deferred: Iterable[DeferredAssignment] = (),
) -> ScheduleResult:
    """Schedule ``options.num_weeks`` weeks one at a time and merge the results."""
    existing_slots = list(existing_slots)
    deferred = list(deferred)
    threshold = options.preferred_priority_threshold
    weekly_required_minutes = int(round(options.min_hours_per_week * 60))
    participants = [m for m in members if m.id != owner.id]

    totals: dict[str, Assignment] = {
        m.id: Assignment(
            member_id=m.id,
            required_slot_count=required_slot_count(options.min_hours_per_week, options.num_weeks, m.carry_over_hours),
        )
        for m in participants
    }
    aggregate = ScheduleResult(options=options, assignments=totals)
    first_scheduled = True

    for week_index in range(options.num_weeks):
        week_number = week_index + 1
        week_start = options.start_date + timedelta(days=7 * week_index)
        week_end = week_start + timedelta(days=7)
        week_dates = list(iter_dates(week_start, week_end))

        included: list[Member] = []
        excluded: list[str] = []
        for member in participants:
            available = preferred_minutes(member, week_dates, threshold)
            if available < weekly_required_minutes:
                excluded.append(member.id)
                aggregate.warnings.append({
                    "type": "insufficient_preferred_time",
                    "message": (
                        f"member {member.id} has {available} preferred minutes in week {week_number} "
                        f"({week_start.isoformat()} to {week_end.isoformat()}), needs {weekly_required_minutes}"
                    ),
                    "member_id": member.id,
                    "week_number": week_number,
                    "week_start": week_start.isoformat(),
                    "week_end": week_end.isoformat(),
                    "available_minutes": available,
                    "required_minutes": weekly_required_minutes,
                })
            else:
                included.append(member)

        week_row = {
            "week_number": week_number,
            "week_start": week_start.isoformat(),
            "week_end": week_end.isoformat(),
            "excluded_member_ids": excluded,
            "skipped": not included,
        }
        aggregate.weeks.append(week_row)
        if not included:
            logger.info("week %d skipped: every member lacks preferred time", week_number)
            aggregate.events.append({"event": "week_skipped", "week_number": week_number})
            continue

        if not first_scheduled:
            included = [replace(m, carry_over_hours=0.0) for m in included]
        week_options = replace(options, num_weeks=1, range_start=week_start, range_end=week_end)
        state = initial_state(included, owner, week_options, room_settings)
        stages = single_week_pipeline(
            existing_slots=existing_slots,
            deferred=deferred if first_scheduled else (),
            travel_time_provider=travel_time_provider,
            precheck=False,
        )
        state = run_pipeline(state, stages)
        first_scheduled = False

        for member_id, week_assignment in state.assignments.items():
            total = totals[member_id]
            total.assigned_slot_count += week_assignment.assigned_slot_count
            total.slots.extend(week_assignment.slots)
            total.keys.extend(week_assignment.keys)
        week_row["assigned_slots"] = sum(a.assigned_slot_count for a in state.assignments.values())

        aggregate.warnings.extend({**w, "week_number": week_number} for w in state.warnings)
        aggregate.conflicts.extend(state.conflicts)
        aggregate.events.extend({**e, "week_number": week_number} for e in state.events)
        for member_id, count in state.member_available_slot_counts.items():
            aggregate.member_available_slot_counts[member_id] = (
                aggregate.member_available_slot_counts.get(member_id, 0) + count
            )

    aggregate.carry_over_entries = compute_carry_over(
        totals,
        history={m.id: m.carry_over_history for m in participants},
        as_of=options.start_date,
        priorities={m.id: m.priority for m in participants},
    )
    run_dates = list(iter_dates(options.start_date, options.start_date + timedelta(days=7 * options.num_weeks)))
    usable = {m.id: preferred_minutes(m, run_dates, threshold) // MINUTES_PER_SLOT for m in participants}
    aggregate.unassigned_member_info = unassigned_info(totals, aggregate.carry_over_entries, usable)
    return finalize_result(aggregate, room_settings)
