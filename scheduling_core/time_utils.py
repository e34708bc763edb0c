"""Time grid utilities: slot keys, 10-minute enumeration and interval merging."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import replace
from datetime import date, timedelta
from typing import Iterable, Iterator, NamedTuple

MINUTES_PER_SLOT = 10
SLOTS_PER_HOUR = 60 // MINUTES_PER_SLOT
DAY_MINUTES = 24 * 60

# Python weekday numbering: Monday == 0.
WEEKEND_DAYS = (5, 6)
WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def parse_hhmm_to_minutes(value: str | None) -> int | None:
    """Parse HH:MM into minutes after midnight. ``24:00`` is accepted as end of day."""
    if not value or ":" not in str(value):
        return None
    try:
        hh, mm = str(value).split(":", 1)
        h = int(hh)
        m = int(mm[:2])
    except (TypeError, ValueError):
        return None
    if h == 24 and m == 0:
        return DAY_MINUTES
    if h < 0 or h > 23 or m < 0 or m > 59:
        return None
    return h * 60 + m


def minutes_to_hhmm(minutes: int) -> str:
    h, m = divmod(int(minutes), 60)
    return f"{h:02d}:{m:02d}"


def to_date(value: date | str) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def is_weekend(d: date | str) -> bool:
    return to_date(d).weekday() in WEEKEND_DAYS


def weekday_name(d: date | str) -> str:
    return WEEKDAY_NAMES[to_date(d).weekday()]


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date in the half-open range [start, end)."""
    current = start
    while current < end:
        yield current
        current += timedelta(days=1)


# ---- Slot keys -------------------------------------------------------------

class SlotKey(NamedTuple):
    """Atomic schedulable unit. Sorts chronologically (ISO date, then start minute)."""

    date: str
    start: int

    @property
    def end(self) -> int:
        return self.start + MINUTES_PER_SLOT

    @property
    def label(self) -> str:
        return encode_slot_key(self.date, self.start)

    def follows(self, other: "SlotKey") -> bool:
        """True if this slot starts exactly where ``other`` ends on the same date."""
        return self.date == other.date and self.start == other.end


def encode_slot_key(day: date | str, start: int) -> str:
    return f"{to_date(day).isoformat()}-{minutes_to_hhmm(start)}"


def decode_slot_key(label: str) -> SlotKey:
    """Parse ``YYYY-MM-DD-HH:MM`` back into a SlotKey."""
    if not label or len(label) != 16 or label[10] != "-":
        raise ValueError(f"Malformed slot key: {label!r}")
    start = parse_hhmm_to_minutes(label[11:])
    if start is None:
        raise ValueError(f"Malformed slot key: {label!r}")
    day = date.fromisoformat(label[:10])
    return SlotKey(day.isoformat(), start)


def slot_starts(start: int, end: int) -> list[int]:
    """Start of every whole 10-minute slot inside [start, end)."""
    if end <= start:
        return []
    first = start - (start % MINUTES_PER_SLOT)
    if first < start:
        first += MINUTES_PER_SLOT
    return list(range(first, end - MINUTES_PER_SLOT + 1, MINUTES_PER_SLOT))


def overlapping_slot_starts(start: int, end: int) -> list[int]:
    """Start of every 10-minute slot touching [start, end), partial overlap included."""
    if end <= start:
        return []
    first = start - (start % MINUTES_PER_SLOT)
    return list(range(first, end, MINUTES_PER_SLOT))


def next_slot_boundary(minutes: int) -> int:
    """Round up to the next slot start (unchanged when already aligned)."""
    return -(-minutes // MINUTES_PER_SLOT) * MINUTES_PER_SLOT


def slot_runs(keys: Iterable[SlotKey]) -> list[list[SlotKey]]:
    """Group slot keys into contiguous same-date runs (input order is ignored)."""
    runs: list[list[SlotKey]] = []
    for key in sorted(keys):
        if runs and key.follows(runs[-1][-1]):
            runs[-1].append(key)
        else:
            runs.append([key])
    return runs


# ---- Intervals -------------------------------------------------------------

def intervals_overlap(a: tuple[int, int], b: tuple[int, int]) -> bool:
    """Half-open overlap test for minute intervals."""
    return max(a[0], b[0]) < min(a[1], b[1])


def merge_intervals(intervals: Iterable[tuple[int, int]]) -> list[tuple[int, int]]:
    """Merge overlapping or touching intervals. Empty intervals are dropped."""
    merged: list[tuple[int, int]] = []
    for start, end in sorted(i for i in intervals if i[1] > i[0]):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def subtract_intervals(
    base: Iterable[tuple[int, int]],
    cuts: Iterable[tuple[int, int]],
) -> list[tuple[int, int]]:
    result = merge_intervals(base)
    for c0, c1 in merge_intervals(cuts):
        next_result: list[tuple[int, int]] = []
        for s, e in result:
            if not intervals_overlap((s, e), (c0, c1)):
                next_result.append((s, e))
                continue
            if s < c0:
                next_result.append((s, c0))
            if c1 < e:
                next_result.append((c1, e))
        result = next_result
    return result


def merge_availability(rules: Iterable) -> list:
    """Merge consecutive same-priority availability rules of the same day.

    Rules are grouped by ``specific_date`` (or ``day_of_week`` for recurring
    rules) and priority, sorted by start and merged while the next rule starts
    at or before the current end. Merging an already merged list returns it
    unchanged.
    """
    groups: dict[tuple[str, object, int], list] = defaultdict(list)
    order: list[tuple[str, object, int]] = []
    for rule in rules:
        if rule.specific_date:
            group = ("date", rule.specific_date, rule.priority)
        else:
            group = ("dow", rule.day_of_week, rule.priority)
        if group not in groups:
            order.append(group)
        groups[group].append(rule)

    merged: list = []
    for group in order:
        current = None
        for rule in sorted(groups[group], key=lambda r: (r.start, r.end)):
            if current is None:
                current = rule
            elif rule.start <= current.end:
                if rule.end > current.end:
                    current = replace(current, end=rule.end)
            else:
                merged.append(current)
                current = rule
        if current is not None:
            merged.append(current)
    return merged
