"""Writing schedule results back onto rooms under optimistic concurrency.

A room is loaded with its version, a deep copy is mutated and the save only
succeeds if nobody wrote in between. On conflict the room is reloaded and
the mutation is re-applied, up to ``MAX_RETRIES`` attempts.
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Callable

from scheduling_core.time_utils import intervals_overlap, parse_hhmm_to_minutes

from .ingest import user_id
from .storage import VersionConflictError, load_room, save_room
from .utils import iso_date_part, now_utc_iso

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
SHORTFALL_REASON = "auto_schedule_shortfall"


class PersistenceError(RuntimeError):
    pass


def run_with_retry(
    load: Callable[[], dict[str, Any]],
    save: Callable[[dict[str, Any], int], dict[str, Any]],
    mutate: Callable[[dict[str, Any]], dict[str, Any]],
    *,
    retries: int = MAX_RETRIES,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Load, mutate a copy, save against the loaded version. Returns (saved, report)."""
    last_exc: VersionConflictError | None = None
    for attempt in range(max(1, retries)):
        current = load()
        version = int(current.get("version") or 0)
        doc = copy.deepcopy(current)
        report = mutate(doc)
        try:
            return save(doc, version), report
        except VersionConflictError as exc:
            last_exc = exc
            logger.warning("version conflict on attempt %d/%d: %s", attempt + 1, retries, exc)
    raise PersistenceError(f"giving up after {retries} attempts: {last_exc}")


# ---- Result to room diff ---------------------------------------------------

def build_assignment_diff(result: dict[str, Any]) -> dict[str, Any]:
    """New time slots and carry-over updates from a result dict.

    Slots the run only reserved (already on the room) are left out.
    """
    time_slots: list[dict[str, Any]] = []
    for member_id, assignment in sorted((result.get("assignments") or {}).items()):
        for slot in assignment.get("slots") or []:
            if slot.get("existing"):
                continue
            time_slots.append(
                {
                    "user": member_id,
                    "date": slot["date"],
                    "day": slot.get("day"),
                    "startTime": slot["start_time"],
                    "endTime": slot["end_time"],
                    "subject": slot.get("subject"),
                    "status": slot.get("status", "confirmed"),
                    "isTravel": False,
                    "assignedBy": "auto",
                }
            )
    carry_over = [
        {
            "member_id": entry["member_id"],
            "needed_hours": float(entry["needed_hours"]),
            "week": entry.get("week"),
            "needs_intervention": bool(entry.get("needs_intervention")),
        }
        for entry in result.get("carry_over_entries") or []
    ]
    return {
        "run_id": result.get("run_id"),
        "members": sorted((result.get("assignments") or {}).keys()),
        "time_slots": time_slots,
        "carry_over": carry_over,
    }


def _slot_span(row: dict[str, Any]) -> tuple[str, int, int] | None:
    day = iso_date_part(row.get("date"))
    start = parse_hhmm_to_minutes(row.get("startTime"))
    end = parse_hhmm_to_minutes(row.get("endTime"))
    if day is None or start is None or end is None:
        return None
    return day, start, end


def apply_assignment_diff(room: dict[str, Any], diff: dict[str, Any]) -> dict[str, Any]:
    """Apply ``diff`` to ``room`` in place and report what changed.

    Applying the same run twice is a no-op. A slot overlapping a booking of
    another user is skipped and reported; one the user already holds is
    counted as already present.
    """
    run_id = diff.get("run_id")
    applied_runs = room.setdefault("appliedRuns", [])
    if run_id and run_id in applied_runs:
        return {"run_id": run_id, "already_applied": True, "added": 0, "skipped": [], "carry_over_updated": []}

    slots = room.setdefault("timeSlots", [])
    booked: list[tuple[str, str, int, int]] = []
    for row in slots:
        span = _slot_span(row)
        if span and not row.get("isTravel"):
            booked.append((user_id(row.get("user")), *span))

    added = 0
    present = 0
    skipped: list[dict[str, Any]] = []
    for row in diff.get("time_slots") or []:
        span = _slot_span(row)
        if span is None:
            skipped.append({**row, "reason": "invalid_slot"})
            continue
        day, start, end = span
        holders = {who for who, d, s, e in booked if d == day and intervals_overlap((s, e), (start, end))}
        if row["user"] in holders:
            present += 1
            continue
        if holders:
            skipped.append(
                {"user": row["user"], "date": day, "startTime": row["startTime"], "reason": "taken", "holders": sorted(holders)}
            )
            continue
        slots.append(dict(row))
        booked.append((row["user"], day, start, end))
        added += 1

    carried = {entry["member_id"]: entry for entry in diff.get("carry_over") or []}
    scheduled = set(diff.get("members") or [])
    updated: list[str] = []
    for member in room.get("members") or []:
        mid = user_id(member.get("user"))
        if mid in carried:
            entry = carried[mid]
            member["carryOver"] = entry["needed_hours"]
            member.setdefault("carryOverHistory", []).append(
                {"week": entry.get("week") or now_utc_iso(), "amount": entry["needed_hours"], "reason": SHORTFALL_REASON}
            )
            updated.append(mid)
        elif mid in scheduled and member.get("carryOver"):
            member["carryOver"] = 0
            updated.append(mid)

    if run_id:
        applied_runs.append(run_id)
    if skipped:
        logger.warning("run %s: %d slot(s) skipped while applying", run_id, len(skipped))
    return {
        "run_id": run_id,
        "already_applied": False,
        "added": added,
        "already_present": present,
        "skipped": skipped,
        "carry_over_updated": updated,
    }


def apply_result_to_room(
    artifact_root: Path,
    room_id: str,
    result: dict[str, Any],
    *,
    retries: int = MAX_RETRIES,
) -> dict[str, Any]:
    diff = build_assignment_diff(result)
    saved, report = run_with_retry(
        lambda: load_room(artifact_root, room_id),
        lambda doc, version: save_room(artifact_root, doc, expected_version=version),
        lambda doc: apply_assignment_diff(doc, diff),
        retries=retries,
    )
    return {**report, "room_id": room_id, "version": saved["version"]}
