"""Scheduling engine entry point.

``run_schedule`` validates the inputs, then either runs the single-week
pipeline (a tuple of ``SchedulingState -> SchedulingState`` stages) or hands
over to the multi-week orchestrator. The engine only proposes assignments;
persisting them is the caller's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from functools import partial
from typing import Any, Callable, Iterable
from uuid import uuid4

from .carry_over import CarryOverEntry, apply_deferred_assignments, compute_carry_over, required_slot_count
from .conflicts import identify_conflicts
from .constraints import validate_schedule
from .errors import InvalidInputError
from .models import (
    AssignmentMode,
    DeferredAssignment,
    ExistingSlot,
    Member,
    Owner,
    RoomSettings,
    ScheduleOptions,
)
from .state import Assignment, ConflictRecord, SchedulingState
from .strategies import run_strategy
from .time_utils import MINUTES_PER_SLOT, SLOTS_PER_HOUR, SlotKey, overlapping_slot_starts
from .timetable import build_timetable, preferred_minutes, schedule_dates
from .travel_time import TravelTimeProvider

logger = logging.getLogger(__name__)

UTC = timezone.utc

Stage = Callable[[SchedulingState], SchedulingState]


def now_utc_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass
class ScheduleResult:
    options: ScheduleOptions
    assignments: dict[str, Assignment]
    carry_over_entries: list[CarryOverEntry] = field(default_factory=list)
    unassigned_member_info: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)
    conflicts: list[ConflictRecord] = field(default_factory=list)
    member_available_slot_counts: dict[str, int] = field(default_factory=dict)
    events: list[dict[str, Any]] = field(default_factory=list)
    violations: list[dict[str, Any]] = field(default_factory=list)
    weeks: list[dict[str, Any]] = field(default_factory=list)
    run_id: str = field(default_factory=lambda: f"run-{uuid4().hex[:12]}")
    generated_at: str = field(default_factory=now_utc_iso)

    @classmethod
    def from_state(cls, state: SchedulingState) -> "ScheduleResult":
        return cls(
            options=state.options,
            assignments=state.assignments,
            carry_over_entries=list(state.carry_over_entries),
            unassigned_member_info=list(state.unassigned_member_info),
            warnings=list(state.warnings),
            conflicts=list(state.conflicts),
            member_available_slot_counts=dict(state.member_available_slot_counts),
            events=list(state.events),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "generated_at": self.generated_at,
            "options": self.options.to_dict(),
            "assignments": {mid: a.to_dict() for mid, a in self.assignments.items()},
            "carry_over_entries": [e.to_dict() for e in self.carry_over_entries],
            "unassigned_member_info": list(self.unassigned_member_info),
            "warnings": list(self.warnings),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "member_available_slot_counts": dict(self.member_available_slot_counts),
            "events": list(self.events),
            "violations": list(self.violations),
            "weeks": list(self.weeks),
        }


# ---- Input validation ------------------------------------------------------

def _coerce_members(members: Any) -> list[Member]:
    if members is None or not isinstance(members, (list, tuple)):
        raise InvalidInputError("members must be a list")
    if not members:
        raise InvalidInputError("members list is empty")
    result = [m if isinstance(m, Member) else Member.from_dict(m) for m in members]
    seen: set[str] = set()
    for member in result:
        if not member.id or not str(member.id).strip():
            raise InvalidInputError("member is missing an id")
        if member.id in seen:
            raise InvalidInputError(f"duplicate member id {member.id!r}")
        seen.add(member.id)
    return result


def _coerce_owner(owner: Any) -> Owner:
    if owner is None:
        raise InvalidInputError("owner is required")
    result = owner if isinstance(owner, Owner) else Owner.from_dict(owner)
    if not result.id or not str(result.id).strip():
        raise InvalidInputError("owner is missing an id")
    return result


def _coerce_options(options: Any) -> ScheduleOptions:
    result = options if isinstance(options, ScheduleOptions) else ScheduleOptions.from_dict(options)
    if result.num_weeks < 1:
        raise InvalidInputError(f"num_weeks must be >= 1, got {result.num_weeks}")
    if result.min_hours_per_week < 0:
        raise InvalidInputError(f"min_hours_per_week must be >= 0, got {result.min_hours_per_week}")
    if result.min_class_duration_minutes <= 0:
        raise InvalidInputError("min_class_duration_minutes must be positive")
    if (result.range_start is None) != (result.range_end is None):
        raise InvalidInputError("range_start and range_end must be given together")
    if result.range_start is not None and result.range_end <= result.range_start:
        raise InvalidInputError("range_end must be after range_start")
    return result


def validate_inputs(members: Any, owner: Any, options: Any) -> tuple[list[Member], Owner, ScheduleOptions]:
    """Coerce and check the run inputs. Raises InvalidInputError before any computation."""
    return _coerce_members(members), _coerce_owner(owner), _coerce_options(options)


# ---- Pipeline stages -------------------------------------------------------

def initial_state(
    members: list[Member],
    owner: Owner,
    options: ScheduleOptions,
    room_settings: RoomSettings,
) -> SchedulingState:
    state = SchedulingState(options=options, members=members, owner=owner, room_settings=room_settings)
    for member in members:
        if member.id == owner.id:
            continue
        state.assignments[member.id] = Assignment(
            member_id=member.id,
            required_slot_count=required_slot_count(
                options.min_hours_per_week, options.num_weeks, member.carry_over_hours
            ),
        )
    return state


def stage_build_grid(state: SchedulingState) -> SchedulingState:
    options = state.options
    state.grid = build_timetable(
        state.members,
        state.owner,
        options.start_date,
        options.num_weeks,
        state.room_settings,
        options.range_start,
        options.range_end,
    )
    state.record("grid_built", cells=len(state.grid), dates=state.grid.dates())
    return state


def stage_from_today(state: SchedulingState) -> SchedulingState:
    if state.options.assignment_mode is not AssignmentMode.FROM_TODAY:
        return state
    today = state.options.today or date.today()
    dropped = state.grid.drop_dates_before(today)
    state.record("past_dates_dropped", today=today.isoformat(), cells=dropped)
    return state


def stage_reserve_existing(state: SchedulingState, *, existing_slots: Iterable[ExistingSlot] = ()) -> SchedulingState:
    """Keep previously confirmed bookings: their cells are taken and count toward the quota."""
    for booking in existing_slots:
        if booking.member_id not in state.assignments:
            continue
        for start in overlapping_slot_starts(booking.start, booking.end):
            key = SlotKey(booking.date, start)
            cell = state.grid.get(key)
            if cell is None:
                continue
            if cell.assigned_to is not None:
                if cell.assigned_to != booking.member_id:
                    state.warn(
                        "existing_slot_conflict",
                        f"existing booking of {booking.member_id} at {key.label} collides with {cell.assigned_to}",
                        member_id=booking.member_id,
                        slot_key=key.label,
                    )
                continue
            state.assign_slot(key, booking.member_id, existing=True)
    reserved = sum(1 for a in state.assignments.values() for s in a.slots if s.existing)
    if reserved:
        state.record("existing_slots_reserved", slots=reserved)
    return state


def stage_deferred(state: SchedulingState, *, deferred: Iterable[DeferredAssignment] = ()) -> SchedulingState:
    return apply_deferred_assignments(state, deferred)


def stage_conflicts(state: SchedulingState) -> SchedulingState:
    report = identify_conflicts(state.grid, state.owner.id)
    state.conflicts = report.conflicts
    state.member_available_slot_counts = report.member_available_slot_counts
    if report.conflicts:
        state.record("conflicts_identified", count=len(report.conflicts))
    return state


def stage_precheck(state: SchedulingState) -> SchedulingState:
    """Warn about members whose preferred time cannot cover their requirement.

    Scheduling still goes ahead for them; the shortfall ends up in carry-over.
    """
    options = state.options
    dates = schedule_dates(options.start_date, options.num_weeks, options.range_start, options.range_end)
    for member in state.members:
        assignment = state.assignments.get(member.id)
        if assignment is None:
            continue
        available = preferred_minutes(member, dates, options.preferred_priority_threshold)
        required = assignment.required_slot_count * MINUTES_PER_SLOT
        if available < required:
            state.warn(
                "insufficient_preferred_time",
                f"member {member.id} has {available} preferred minutes but needs {required}",
                member_id=member.id,
                available_minutes=available,
                required_minutes=required,
            )
    return state


def stage_strategy(state: SchedulingState, *, travel_time_provider: TravelTimeProvider | None = None) -> SchedulingState:
    return run_strategy(state, travel_time_provider=travel_time_provider)


def stage_carry_over(state: SchedulingState) -> SchedulingState:
    state.carry_over_entries = compute_carry_over(
        state.assignments,
        history={m.id: m.carry_over_history for m in state.members},
        as_of=state.options.range_start or state.options.start_date,
        priorities={m.id: m.priority for m in state.members},
    )
    return state


def unassigned_info(
    assignments: dict[str, Assignment],
    carry_over_entries: list[CarryOverEntry],
    usable_slot_counts: dict[str, int],
) -> list[dict[str, Any]]:
    entries = {e.member_id: e for e in carry_over_entries}
    rows = []
    for member_id, assignment in assignments.items():
        if assignment.satisfied:
            continue
        entry = entries.get(member_id)
        rows.append({
            "member_id": member_id,
            "assigned_slot_count": assignment.assigned_slot_count,
            "required_slot_count": assignment.required_slot_count,
            "needed_hours": round(assignment.remaining / SLOTS_PER_HOUR, 2),
            "needs_intervention": bool(entry and entry.needs_intervention),
            "reason": "no_preferred_time" if not usable_slot_counts.get(member_id) else "insufficient_availability",
        })
    return rows


def stage_unassigned_info(state: SchedulingState) -> SchedulingState:
    threshold = state.options.preferred_priority_threshold
    usable: dict[str, int] = {}
    for _, cell in state.grid.items():
        for entry in cell.competitors():
            if entry.priority >= threshold:
                usable[entry.member_id] = usable.get(entry.member_id, 0) + 1
    state.unassigned_member_info = unassigned_info(state.assignments, state.carry_over_entries, usable)
    return state


def single_week_pipeline(
    *,
    existing_slots: Iterable[ExistingSlot] = (),
    deferred: Iterable[DeferredAssignment] = (),
    travel_time_provider: TravelTimeProvider | None = None,
    precheck: bool = True,
) -> tuple[Stage, ...]:
    stages: list[Stage] = [
        stage_build_grid,
        stage_from_today,
        partial(stage_reserve_existing, existing_slots=list(existing_slots)),
        partial(stage_deferred, deferred=list(deferred)),
        stage_conflicts,
    ]
    if precheck:
        stages.append(stage_precheck)
    stages.extend([
        partial(stage_strategy, travel_time_provider=travel_time_provider),
        stage_carry_over,
        stage_unassigned_info,
    ])
    return tuple(stages)


def run_pipeline(state: SchedulingState, stages: Iterable[Stage]) -> SchedulingState:
    for stage in stages:
        state = stage(state)
    return state


# ---- Entry point -----------------------------------------------------------

def run_schedule(
    members: Any,
    owner: Any,
    options: Any,
    room_settings: RoomSettings | dict[str, Any] | None = None,
    *,
    travel_time_provider: TravelTimeProvider | None = None,
    existing_slots: Iterable[ExistingSlot] = (),
    deferred: Iterable[DeferredAssignment] = (),
) -> ScheduleResult:
    """Compute slot assignments for all members.

    Parameters
    ----------
    members, owner, options:
        Model instances or snake_case dicts. Structurally invalid input raises
        InvalidInputError before anything is computed.
    room_settings:
        Schedule window, daily blocked times and room exceptions.
    travel_time_provider:
        Used by the transit strategy only. Defaults to a provider without a
        backend, which answers every lookup with the fallback duration.
    existing_slots, deferred:
        Confirmed bookings to keep and hours carried in from an earlier run.

    Infeasibility never raises: it is reported through ``warnings``,
    ``unassigned_member_info`` and ``carry_over_entries``.
    """
    members, owner, options = validate_inputs(members, owner, options)
    if not isinstance(room_settings, RoomSettings):
        room_settings = RoomSettings.from_dict(room_settings)

    if options.num_weeks > 1 and options.range_start is None:
        from .multi_week import run_multi_week

        return run_multi_week(
            members,
            owner,
            options,
            room_settings,
            travel_time_provider=travel_time_provider,
            existing_slots=existing_slots,
            deferred=deferred,
        )

    state = initial_state(members, owner, options, room_settings)
    stages = single_week_pipeline(
        existing_slots=existing_slots,
        deferred=deferred,
        travel_time_provider=travel_time_provider,
    )
    state = run_pipeline(state, stages)
    return finalize_result(ScheduleResult.from_state(state), room_settings)


def finalize_result(result: ScheduleResult, room_settings: RoomSettings) -> ScheduleResult:
    result.violations = validate_schedule(result.to_dict(), room_settings)
    for violation in result.violations:
        logger.error("schedule violation %s: %s", violation["violation"], violation.get("detail"))
    assigned = sum(a.assigned_slot_count for a in result.assignments.values())
    logger.info(
        "schedule %s: %d members, %d slots assigned, %d carry-over entries, %d warnings",
        result.run_id,
        len(result.assignments),
        assigned,
        len(result.carry_over_entries),
        len(result.warnings),
    )
    return result
