"""Grid and scheduling state passed between pipeline stages."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterator

from .errors import SchedulingError
from .models import Member, Owner, RoomSettings, ScheduleOptions
from .time_utils import SLOTS_PER_HOUR, SlotKey, minutes_to_hhmm, slot_runs, to_date, weekday_name

logger = logging.getLogger(__name__)


# ---- Grid ------------------------------------------------------------------

@dataclass
class Availability:
    member_id: str
    priority: int
    is_owner: bool = False


@dataclass
class GridCell:
    date: str
    day_of_week: int
    start: int
    assigned_to: str | None = None
    available: list[Availability] = field(default_factory=list)

    def entry_for(self, member_id: str) -> Availability | None:
        for entry in self.available:
            if entry.member_id == member_id:
                return entry
        return None

    def add(self, member_id: str, priority: int, *, is_owner: bool = False) -> bool:
        if self.entry_for(member_id) is not None:
            return False
        self.available.append(Availability(member_id, priority, is_owner))
        return True

    def remove(self, member_id: str) -> None:
        self.available = [e for e in self.available if e.member_id != member_id]

    def competitors(self) -> list[Availability]:
        return [e for e in self.available if not e.is_owner]


class Grid:
    """Slot grid for one scheduling run. Cells are keyed by SlotKey."""

    def __init__(self) -> None:
        self.cells: dict[SlotKey, GridCell] = {}
        self._sorted: list[SlotKey] | None = None

    def __len__(self) -> int:
        return len(self.cells)

    def __contains__(self, key: object) -> bool:
        return key in self.cells

    def __getitem__(self, key: SlotKey) -> GridCell:
        return self.cells[key]

    def get(self, key: SlotKey) -> GridCell | None:
        return self.cells.get(key)

    def cell(self, day: date, start: int) -> GridCell:
        key = SlotKey(day.isoformat(), start)
        existing = self.cells.get(key)
        if existing is None:
            existing = GridCell(date=key.date, day_of_week=day.weekday(), start=start)
            self.cells[key] = existing
            self._sorted = None
        return existing

    def discard(self, key: SlotKey) -> None:
        if self.cells.pop(key, None) is not None:
            self._sorted = None

    def sorted_keys(self) -> list[SlotKey]:
        if self._sorted is None:
            self._sorted = sorted(self.cells)
        return self._sorted

    def items(self) -> Iterator[tuple[SlotKey, GridCell]]:
        for key in self.sorted_keys():
            yield key, self.cells[key]

    def dates(self) -> list[str]:
        return sorted({key.date for key in self.cells})

    def drop_dates_before(self, day: date) -> int:
        cutoff = day.isoformat()
        stale = [key for key in self.cells if key.date < cutoff]
        for key in stale:
            self.discard(key)
        return len(stale)

    def available_keys(self, member_id: str, *, min_priority: int = 0, unassigned_only: bool = True) -> list[SlotKey]:
        keys = []
        for key, cell in self.items():
            if unassigned_only and cell.assigned_to is not None:
                continue
            entry = cell.entry_for(member_id)
            if entry is not None and entry.priority >= min_priority:
                keys.append(key)
        return keys


# ---- Assignments -----------------------------------------------------------

@dataclass
class AssignedSlot:
    date: str
    day: str
    start_time: str
    end_time: str
    subject: str
    status: str = "confirmed"
    existing: bool = False

    def to_dict(self) -> dict[str, Any]:
        row = {
            "date": self.date,
            "day": self.day,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "subject": self.subject,
            "status": self.status,
        }
        if self.existing:
            row["existing"] = True
        return row


@dataclass
class Assignment:
    member_id: str
    required_slot_count: int
    assigned_slot_count: int = 0
    slots: list[AssignedSlot] = field(default_factory=list)
    keys: list[SlotKey] = field(default_factory=list)

    @property
    def remaining(self) -> int:
        return max(0, self.required_slot_count - self.assigned_slot_count)

    @property
    def satisfied(self) -> bool:
        return self.assigned_slot_count >= self.required_slot_count

    @property
    def assigned_hours(self) -> float:
        return self.assigned_slot_count / SLOTS_PER_HOUR

    def blocks(self) -> list[dict[str, str]]:
        return [
            {
                "date": run[0].date,
                "start_time": minutes_to_hhmm(run[0].start),
                "end_time": minutes_to_hhmm(run[-1].end),
            }
            for run in slot_runs(self.keys)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "member_id": self.member_id,
            "assigned_slot_count": self.assigned_slot_count,
            "required_slot_count": self.required_slot_count,
            "slots": [s.to_dict() for s in self.slots],
            "blocks": self.blocks(),
        }


@dataclass(frozen=True)
class ConflictRecord:
    slot_key: SlotKey
    competing_member_ids: tuple[str, ...]
    priority_level: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot_key": self.slot_key.label,
            "competing_member_ids": list(self.competing_member_ids),
            "priority_level": self.priority_level,
        }


@dataclass
class PlacementResult:
    """Outcome of one strategy placement attempt for a single member."""

    member_id: str
    slot_keys: list[SlotKey] = field(default_factory=list)
    failure: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def placed(self) -> bool:
        return self.failure is None and bool(self.slot_keys)


# ---- State -----------------------------------------------------------------

@dataclass
class SchedulingState:
    """Everything one single-week run reads and produces.

    Stages take the state and return it; the grid and the assignment map are
    only mutated through ``assign_slot``.
    """

    options: ScheduleOptions
    members: list[Member]
    owner: Owner
    room_settings: RoomSettings
    grid: Grid = field(default_factory=Grid)
    assignments: dict[str, Assignment] = field(default_factory=dict)
    conflicts: list[ConflictRecord] = field(default_factory=list)
    member_available_slot_counts: dict[str, int] = field(default_factory=dict)
    warnings: list[dict[str, Any]] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)
    carry_over_entries: list[Any] = field(default_factory=list)
    unassigned_member_info: list[dict[str, Any]] = field(default_factory=list)

    def record(self, event: str, **fields: Any) -> None:
        payload = {"event": event, **fields}
        self.events.append(payload)
        logger.debug("scheduling event %s %s", event, fields)

    def warn(self, warning_type: str, message: str, **fields: Any) -> None:
        self.warnings.append({"type": warning_type, "message": message, **fields})

    def assign_slot(self, key: SlotKey, member_id: str, *, existing: bool = False) -> None:
        cell = self.grid.get(key)
        if cell is None:
            raise SchedulingError(f"slot {key.label} is not in the grid")
        if cell.assigned_to is not None:
            raise SchedulingError(f"slot {key.label} already assigned to {cell.assigned_to}")
        assignment = self.assignments[member_id]
        if not existing and assignment.remaining <= 0:
            raise SchedulingError(f"member {member_id} already has {assignment.assigned_slot_count} slots")
        cell.assigned_to = member_id
        assignment.assigned_slot_count += 1
        assignment.keys.append(key)
        assignment.slots.append(
            AssignedSlot(
                date=key.date,
                day=weekday_name(to_date(key.date)),
                start_time=minutes_to_hhmm(key.start),
                end_time=minutes_to_hhmm(key.end),
                subject=self.options.subject,
                existing=existing,
            )
        )


@dataclass
class PlacementContext:
    """What a strategy needs besides the grid and the member.

    ``day``, ``current_end`` and ``travel_minutes`` are only set by the
    transit chain.
    """

    state: SchedulingState
    day: date | None = None
    current_end: int = 0
    travel_minutes: int = 0
