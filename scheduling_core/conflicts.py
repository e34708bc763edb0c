"""Tied-priority conflict detection. Diagnostic only: nothing here assigns slots."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from .models import DEFAULT_PRIORITY
from .state import ConflictRecord, Grid


@dataclass
class ConflictReport:
    conflicts: list[ConflictRecord] = field(default_factory=list)
    member_available_slot_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conflicts": [c.to_dict() for c in self.conflicts],
            "member_available_slot_counts": dict(self.member_available_slot_counts),
        }


def identify_conflicts(grid: Grid, owner_id: str) -> ConflictReport:
    """Flag unassigned slots where two or more members share the top priority.

    Ties below the top priority are not conflicts: the lower-priority member
    simply loses precedence.
    """
    counts: Counter[str] = Counter()
    conflicts: list[ConflictRecord] = []

    for key, cell in grid.items():
        if cell.assigned_to is not None:
            continue
        competing = [e for e in cell.competitors() if e.member_id != owner_id]
        for entry in competing:
            counts[entry.member_id] += 1
        if len(competing) < 2:
            continue
        top = max((e.priority for e in competing), default=DEFAULT_PRIORITY)
        tied = tuple(e.member_id for e in competing if e.priority == top)
        if len(tied) >= 2:
            conflicts.append(ConflictRecord(slot_key=key, competing_member_ids=tied, priority_level=top))

    return ConflictReport(conflicts=conflicts, member_available_slot_counts=dict(counts))
