"""Post-hoc validation of schedule results.

Audits a result dict (``ScheduleResult.to_dict()`` shape) against the hard
guarantees of the engine. An empty list means the schedule is sound.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any

from .models import RoomSettings
from .time_utils import intervals_overlap, parse_hhmm_to_minutes, to_date

# ---- Violation kinds -------------------------------------------------------

HARD_VIOLATIONS = frozenset({
    "double_assignment",
    "over_quota",
    "blocked_window_overlap",
    "count_mismatch",
})


# ---- Validation ------------------------------------------------------------

def validate_schedule(
    result: dict[str, Any],
    room_settings: RoomSettings | None = None,
) -> list[dict[str, Any]]:
    """Return one violation dict per broken guarantee.

    Each violation is ``{violation, member_id, detail}`` plus the slot date
    and start time where one applies. Existing bookings are exempt from the
    quota and blocked-window checks because the run did not create them.
    """
    violations: list[dict[str, Any]] = []
    owners_by_slot: dict[tuple[str, str], list[str]] = defaultdict(list)

    for member_id, assignment in (result.get("assignments") or {}).items():
        slots = assignment.get("slots") or []
        new_slots = [s for s in slots if not s.get("existing")]
        required = int(assignment.get("required_slot_count") or 0)
        assigned = int(assignment.get("assigned_slot_count") or 0)

        if assigned != len(slots):
            violations.append({
                "violation": "count_mismatch",
                "member_id": member_id,
                "detail": f"assigned_slot_count {assigned} but {len(slots)} slots listed",
            })
        if len(new_slots) > required:
            violations.append({
                "violation": "over_quota",
                "member_id": member_id,
                "detail": f"{len(new_slots)} new slots exceed required {required}",
            })

        for slot in slots:
            owners_by_slot[(slot.get("date", ""), slot.get("start_time", ""))].append(member_id)
            if slot.get("existing") or room_settings is None:
                continue
            start = parse_hhmm_to_minutes(slot.get("start_time"))
            end = parse_hhmm_to_minutes(slot.get("end_time"))
            if start is None or end is None:
                continue
            for window in room_settings.blocked_windows_for(to_date(slot["date"])):
                if intervals_overlap((start, end), window):
                    violations.append({
                        "violation": "blocked_window_overlap",
                        "member_id": member_id,
                        "date": slot["date"],
                        "start_time": slot.get("start_time"),
                        "detail": f"slot overlaps blocked window {window[0]}-{window[1]}",
                    })
                    break

    for (day, start_time), member_ids in sorted(owners_by_slot.items()):
        if len(member_ids) > 1:
            violations.append({
                "violation": "double_assignment",
                "member_id": member_ids[0],
                "date": day,
                "start_time": start_time,
                "detail": f"slot held by {sorted(member_ids)}",
            })
    return violations
