"""Expand owner and member availability into the slot grid.

The owner's open time (recurring rules, specific-date overrides and ad-hoc
exceptions, minus personal time and room blocked windows) is the ceiling:
member availability outside it is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, timedelta
from typing import Iterable

from .models import AvailabilityRule, Member, Owner, RoomSettings
from .state import Grid
from .time_utils import (
    SlotKey,
    is_weekend,
    iter_dates,
    merge_availability,
    merge_intervals,
    overlapping_slot_starts,
    slot_starts,
    subtract_intervals,
)

logger = logging.getLogger(__name__)


def schedule_dates(
    start_date: date,
    num_weeks: int,
    range_start: date | None = None,
    range_end: date | None = None,
) -> list[date]:
    """Weekdays covered by a run. An explicit range wins over start_date/num_weeks."""
    if range_start is not None and range_end is not None:
        first, last = range_start, range_end
    else:
        first, last = start_date, start_date + timedelta(days=7 * max(1, num_weeks))
    return [d for d in iter_dates(first, last) if not is_weekend(d)]


def rules_for_date(rules: Iterable[AvailabilityRule], day: date) -> list[AvailabilityRule]:
    """Rules in effect on ``day``. Specific-date rules replace the recurring ones for that date."""
    rules = list(rules)
    specific = [r for r in rules if r.specific_date == day.isoformat()]
    if specific:
        return specific
    return [r for r in rules if not r.specific_date and r.day_of_week == day.weekday()]


def _resolved_rules(member: Member) -> list[AvailabilityRule]:
    resolved = [replace(r, priority=member.rule_priority(r)) for r in member.availability]
    return merge_availability(resolved)


def preferred_intervals(member: Member, day: date, threshold: int) -> list[tuple[int, int]]:
    """Merged intervals on ``day`` where the member's priority reaches ``threshold``."""
    intervals = [
        (r.start, r.end)
        for r in rules_for_date(_resolved_rules(member), day)
        if r.priority is not None and r.priority >= threshold
    ]
    intervals.extend(
        (e.start, e.end)
        for e in member.exceptions
        if e.date == day.isoformat() and member.rule_priority(e) >= threshold
    )
    return merge_intervals(intervals)


def preferred_minutes(member: Member, dates: Iterable[date], threshold: int) -> int:
    """Total preferred minutes over weekday ``dates``."""
    total = 0
    for day in dates:
        if is_weekend(day):
            continue
        total += sum(end - start for start, end in preferred_intervals(member, day, threshold))
    return total


def owner_ceiling(owner: Owner, dates: Iterable[date], room_settings: RoomSettings) -> dict[str, list[tuple[int, int]]]:
    """Open intervals of the owner per ISO date, after all subtractions."""
    ceiling: dict[str, list[tuple[int, int]]] = {}
    window = room_settings.schedule_window
    for day in dates:
        if is_weekend(day):
            continue
        intervals = [(r.start, r.end) for r in rules_for_date(owner.availability, day)]
        intervals.extend((e.start, e.end) for e in owner.exceptions if e.date == day.isoformat())
        if window is not None:
            intervals = [(max(s, window.start), min(e, window.end)) for s, e in intervals]
        cuts = [(b.start, b.end) for b in owner.blockouts if b.applies_to(day)]
        cuts.extend(room_settings.blocked_windows_for(day))
        open_intervals = subtract_intervals(intervals, cuts)
        if open_intervals:
            ceiling[day.isoformat()] = open_intervals
    return ceiling


def build_timetable(
    members: list[Member],
    owner: Owner,
    start_date: date,
    num_weeks: int,
    room_settings: RoomSettings,
    range_start: date | None = None,
    range_end: date | None = None,
) -> Grid:
    """Build the grid of schedulable slots with per-member availability entries."""
    dates = schedule_dates(start_date, num_weeks, range_start, range_end)
    ceiling = owner_ceiling(owner, dates, room_settings)
    open_slots: set[SlotKey] = {
        SlotKey(iso, start)
        for iso, intervals in ceiling.items()
        for s, e in intervals
        for start in slot_starts(s, e)
    }

    grid = Grid()
    dropped = 0
    for member in members:
        if member.id == owner.id:
            continue
        rules = _resolved_rules(member)
        for day in dates:
            iso = day.isoformat()
            entries = [(r.start, r.end, r.priority) for r in rules_for_date(rules, day)]
            entries.extend(
                (e.start, e.end, member.rule_priority(e))
                for e in member.exceptions
                if e.date == iso
            )
            entries.sort(key=lambda row: -row[2])
            for start, end, priority in entries:
                for slot_start in slot_starts(start, end):
                    key = SlotKey(iso, slot_start)
                    if key not in open_slots:
                        dropped += 1
                        continue
                    grid.cell(day, slot_start).add(member.id, priority)

        for day in dates:
            for blockout in member.blockouts:
                if not blockout.applies_to(day):
                    continue
                for slot_start in overlapping_slot_starts(blockout.start, blockout.end):
                    key = SlotKey(day.isoformat(), slot_start)
                    cell = grid.get(key)
                    if cell is None:
                        continue
                    cell.remove(member.id)
                    if not cell.available:
                        grid.discard(key)

    logger.debug(
        "timetable built: %d dates, %d open owner slots, %d grid cells, %d member slots outside ceiling",
        len(dates),
        len(open_slots),
        len(grid),
        dropped,
    )
    return grid
