"""Time-order strategy: greedy, fragmentation-avoiding contiguous blocks per member.

Members pick in a fixed order (highest priority first, then the least
flexible). Each member repeatedly takes its best remaining block until its
quota is met or nothing usable is left.
"""

from __future__ import annotations

import logging
import math
from datetime import date

from .models import AssignmentMode, Member
from .state import Grid, PlacementContext, PlacementResult, SchedulingState
from .time_utils import MINUTES_PER_SLOT, SlotKey, intervals_overlap, minutes_to_hhmm, to_date

logger = logging.getLogger(__name__)


def find_candidate_blocks(grid: Grid, member_id: str, max_slots: int, threshold: int) -> list[list[SlotKey]]:
    """Maximal runs of consecutive usable slots for a member, each capped at ``max_slots``.

    A slot is usable while it is unassigned and the member is listed on it
    with priority >= ``threshold``.
    """
    if max_slots <= 0:
        return []
    runs: list[list[SlotKey]] = []
    current: list[SlotKey] = []
    for key, cell in grid.items():
        entry = cell.entry_for(member_id)
        usable = cell.assigned_to is None and entry is not None and entry.priority >= threshold
        if usable and current and key.follows(current[-1]):
            current.append(key)
            continue
        if current:
            runs.append(current)
        current = [key] if usable else []
    if current:
        runs.append(current)
    return [run[:max_slots] for run in runs]


def block_sort_key(block: list[SlotKey], min_block_slots: int) -> tuple[bool, int, SlotKey]:
    """Full-length blocks before scrap blocks, then longer first, then earliest."""
    return (len(block) < min_block_slots, -len(block), block[0])


def member_order(state: SchedulingState) -> list[Member]:
    """Members still under quota in picking order.

    Priority is the best priority the member holds on any unassigned slot
    (falling back to the member priority). Ties go to the member who joined
    first in first-come-first-served mode, otherwise to the member with the
    fewest available slots. Input order breaks any remaining tie.
    """
    rows = []
    for index, member in enumerate(state.members):
        assignment = state.assignments.get(member.id)
        if assignment is None or assignment.satisfied:
            continue
        priorities = []
        for _, cell in state.grid.items():
            if cell.assigned_to is not None:
                continue
            entry = cell.entry_for(member.id)
            if entry is not None:
                priorities.append(entry.priority)
        priority = max(priorities) if priorities else member.priority
        if state.options.assignment_mode is AssignmentMode.FIRST_COME_FIRST_SERVED:
            tie = (member.joined_at is None, member.joined_at or "")
        else:
            tie = (False, len(priorities))
        rows.append(((-priority, tie, index), member))
    rows.sort(key=lambda row: row[0])
    return [member for _, member in rows]


class TimeOrderStrategy:
    name = "time_order"

    def assign(self, grid: Grid, member: Member, context: PlacementContext) -> PlacementResult:
        state = context.state
        options = state.options
        remaining = state.assignments[member.id].remaining
        blocks = find_candidate_blocks(grid, member.id, remaining, options.preferred_priority_threshold)
        if not blocks:
            return PlacementResult(member.id, failure="no_block")

        min_block_slots = math.ceil(options.min_class_duration_minutes / MINUTES_PER_SLOT)
        best = min(blocks, key=lambda b: block_sort_key(b, min_block_slots))
        span = (best[0].start, best[-1].end)
        day: date = to_date(best[0].date)
        for window in state.room_settings.blocked_windows_for(day):
            if intervals_overlap(span, window):
                return PlacementResult(
                    member.id,
                    failure="blocked_window",
                    detail={
                        "date": best[0].date,
                        "start_time": minutes_to_hhmm(span[0]),
                        "end_time": minutes_to_hhmm(span[1]),
                    },
                )
        return PlacementResult(member.id, slot_keys=best[:remaining])

    def run(self, state: SchedulingState) -> SchedulingState:
        for member in member_order(state):
            context = PlacementContext(state=state)
            assignment = state.assignments[member.id]
            while not assignment.satisfied:
                result = self.assign(state.grid, member, context)
                if not result.placed:
                    if result.failure == "blocked_window":
                        state.record("blocked_window_abort", member_id=member.id, **result.detail)
                    else:
                        state.record("member_turn_ended", member_id=member.id, reason=result.failure)
                    break
                for key in result.slot_keys:
                    state.assign_slot(key, member.id)
                first, last = result.slot_keys[0], result.slot_keys[-1]
                state.record(
                    "block_assigned",
                    member_id=member.id,
                    date=first.date,
                    start_time=minutes_to_hhmm(first.start),
                    end_time=minutes_to_hhmm(last.end),
                    slot_count=len(result.slot_keys),
                )
        return state
