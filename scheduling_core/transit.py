"""Transit strategy: one travelling resource visits members in a nearest-first chain.

Each day the chain starts at the owner's location. The nearest member that
can fit travel plus class inside one of its preferred intervals (without
touching a blocked window) is booked, the chain moves to that member and
continues. Greedy by construction: no backtracking across members or days.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from .models import Member
from .state import Grid, PlacementContext, PlacementResult, SchedulingState
from .time_utils import (
    MINUTES_PER_SLOT,
    SlotKey,
    intervals_overlap,
    minutes_to_hhmm,
    next_slot_boundary,
    slot_starts,
    to_date,
)
from .timetable import preferred_intervals
from .travel_time import TravelTimeProvider

logger = logging.getLogger(__name__)

DEFAULT_DAY_START = 9 * 60
PARTIAL_STEP_MINUTES = 30
MIN_PARTIAL_MINUTES = 30

# Failure kinds, strongest first when a member fails for several reasons.
FAILURE_PRECEDENCE = (
    "no_preference",
    "blocked_time_conflict",
    "no_available_slots",
    "insufficient_preference",
)

FAILURE_MESSAGES = {
    "no_preference": "no preferred time on this day",
    "insufficient_preference": "preferred window too short for travel plus class",
    "blocked_time_conflict": "travel or class window collides with a blocked time",
    "no_available_slots": "no open grid slots inside the travel-feasible window",
}


@dataclass(frozen=True)
class TravelCheck:
    ok: bool
    reason: str | None
    travel_start: int
    travel_end: int
    class_start: int
    class_end: int
    required_minutes: int
    available_minutes: int


def check_travel_window(
    *,
    current_end: int,
    travel_minutes: int,
    class_minutes: int,
    window: tuple[int, int],
    blocked: list[tuple[int, int]],
) -> TravelCheck:
    """Validate travel + class inside one preferred window.

    ``travel_start = max(current_end, window start)``. The class starts on the
    first slot boundary at or after arrival, so it covers whole grid slots.
    The travel leg and the class must both end by the window end and must
    not overlap any blocked window.
    """
    pref_start, pref_end = window
    travel_start = max(current_end, pref_start)
    travel_end = travel_start + travel_minutes
    class_start = next_slot_boundary(travel_end)
    class_end = class_start + class_minutes
    required = travel_minutes + class_minutes
    available = pref_end - pref_start

    def result(reason: str | None) -> TravelCheck:
        return TravelCheck(
            reason is None, reason, travel_start, travel_end, class_start, class_end, required, available
        )

    if travel_end > pref_end or class_end > pref_end:
        return result("insufficient_preference")
    for span in ((travel_start, travel_end), (class_start, class_end)):
        if span[1] <= span[0]:
            continue
        if any(intervals_overlap(span, b) for b in blocked):
            return result("blocked_time_conflict")
    return result(None)


def class_durations(full_minutes: int, remaining_minutes: int) -> list[int]:
    """Full duration first, then 30-minute shorter attempts down to 30, capped at the remaining need."""
    durations = [full_minutes]
    d = full_minutes - PARTIAL_STEP_MINUTES
    while d >= MIN_PARTIAL_MINUTES:
        durations.append(d)
        d -= PARTIAL_STEP_MINUTES
    capped: list[int] = []
    for d in durations:
        d = min(d, remaining_minutes)
        if d > 0 and d not in capped:
            capped.append(d)
    return capped


def blocked_windows(state: SchedulingState, member: Member, day: date) -> list[tuple[int, int]]:
    windows = list(state.room_settings.blocked_windows_for(day))
    windows.extend((b.start, b.end) for b in member.blockouts if b.applies_to(day))
    windows.extend((b.start, b.end) for b in state.owner.blockouts if b.applies_to(day))
    return windows


def _pick_failure(reasons: set[str]) -> str:
    for reason in FAILURE_PRECEDENCE:
        if reason in reasons:
            return reason
    return "insufficient_preference"


class TransitStrategy:
    name = "transit"

    def __init__(self, travel_time_provider: TravelTimeProvider | None = None):
        self.travel_time_provider = travel_time_provider or TravelTimeProvider()

    def _committable(self, grid: Grid, member_id: str, day: date, start: int, end: int, limit: int) -> list[SlotKey]:
        keys: list[SlotKey] = []
        for slot_start in slot_starts(start, end):
            if len(keys) >= limit:
                break
            key = SlotKey(day.isoformat(), slot_start)
            cell = grid.get(key)
            if cell is None or cell.assigned_to is not None or cell.entry_for(member_id) is None:
                continue
            keys.append(key)
        return keys

    def assign(self, grid: Grid, member: Member, context: PlacementContext) -> PlacementResult:
        state = context.state
        options = state.options
        day = context.day
        if day is None:
            raise ValueError("transit placement needs a day")

        windows = preferred_intervals(member, day, options.preferred_priority_threshold)
        if not windows:
            return PlacementResult(member.id, failure="no_preference", detail={"date": day.isoformat()})

        remaining = state.assignments[member.id].remaining
        blocked = blocked_windows(state, member, day)
        reasons: set[str] = set()
        shortest: TravelCheck | None = None
        for duration in class_durations(options.min_class_duration_minutes, remaining * MINUTES_PER_SLOT):
            for window in windows:
                check = check_travel_window(
                    current_end=context.current_end,
                    travel_minutes=context.travel_minutes,
                    class_minutes=duration,
                    window=window,
                    blocked=blocked,
                )
                if not check.ok:
                    reasons.add(check.reason or "insufficient_preference")
                    shortest = check
                    continue
                keys = self._committable(grid, member.id, day, check.class_start, check.class_end, remaining)
                if not keys:
                    reasons.add("no_available_slots")
                    continue
                return PlacementResult(
                    member.id,
                    slot_keys=keys,
                    detail={
                        "date": day.isoformat(),
                        "travel_start": minutes_to_hhmm(check.travel_start),
                        "travel_end": minutes_to_hhmm(check.travel_end),
                        "class_start": minutes_to_hhmm(check.class_start),
                        "class_end": check.class_end,
                        "travel_minutes": context.travel_minutes,
                        "class_minutes": duration,
                        "partial": duration < options.min_class_duration_minutes,
                    },
                )

        detail: dict = {"date": day.isoformat(), "travel_minutes": context.travel_minutes}
        if shortest is not None:
            detail["required_minutes"] = shortest.required_minutes
            detail["available_minutes"] = shortest.available_minutes
        return PlacementResult(member.id, failure=_pick_failure(reasons), detail=detail)

    def run(self, state: SchedulingState) -> SchedulingState:
        owner_location = state.owner.location
        if owner_location is None:
            state.warn(
                "owner_location_missing",
                "owner has no location; transit scheduling needs a starting point",
                member_id=state.owner.id,
            )
            return state

        located: list[Member] = []
        for member in state.members:
            if member.id not in state.assignments:
                continue
            if member.location is None:
                state.warn(
                    "missing_location",
                    f"member {member.id} has no location and is skipped in transit mode",
                    member_id=member.id,
                )
                continue
            located.append(member)

        window = state.room_settings.schedule_window
        day_start = window.start if window is not None else DEFAULT_DAY_START
        mode = state.options.transport_mode
        order = {m.id: i for i, m in enumerate(located)}

        for iso in state.grid.dates():
            day = to_date(iso)
            candidates = [m for m in located if not state.assignments[m.id].satisfied]
            if not candidates:
                continue
            location = owner_location
            current_end = day_start
            failures: dict[str, PlacementResult] = {}
            placed_today: set[str] = set()

            while candidates:
                travel = self.travel_time_provider.batch_lookup(
                    location, {m.id: m.location for m in candidates}, mode
                )
                ranked = sorted(candidates, key=lambda m: (travel[m.id], order[m.id]))
                placement: PlacementResult | None = None
                chosen: Member | None = None
                for member in ranked:
                    context = PlacementContext(
                        state=state,
                        day=day,
                        current_end=current_end,
                        travel_minutes=travel[member.id],
                    )
                    result = self.assign(state.grid, member, context)
                    if result.placed:
                        placement, chosen = result, member
                        break
                    failures.setdefault(member.id, result)

                if placement is None or chosen is None:
                    state.record("transit_chain_stopped", date=iso, current_end=minutes_to_hhmm(current_end))
                    break

                for key in placement.slot_keys:
                    state.assign_slot(key, chosen.id)
                placed_today.add(chosen.id)
                state.record(
                    "transit_block_assigned",
                    member_id=chosen.id,
                    date=iso,
                    travel_start=placement.detail["travel_start"],
                    travel_end=placement.detail["travel_end"],
                    class_start=placement.detail["class_start"],
                    class_end=minutes_to_hhmm(placement.detail["class_end"]),
                    travel_minutes=placement.detail["travel_minutes"],
                    slot_count=len(placement.slot_keys),
                    partial=placement.detail["partial"],
                )
                location = chosen.location or location
                current_end = placement.detail["class_end"]
                if state.assignments[chosen.id].satisfied:
                    candidates.remove(chosen)

            for member_id, failure in failures.items():
                if member_id in placed_today:
                    continue
                reason = failure.failure or "insufficient_preference"
                state.warn(
                    reason,
                    f"member {member_id} could not be placed on {iso}: {FAILURE_MESSAGES.get(reason, reason)}",
                    member_id=member_id,
                    **failure.detail,
                )
        return state
