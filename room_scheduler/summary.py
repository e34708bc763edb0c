"""Schedule result evaluation, self-contained in the service layer.

All functions are pure dict-in / dict-out over ``ScheduleResult.to_dict()``.
"""

from __future__ import annotations

import statistics
from collections import Counter
from typing import Any

from scheduling_core.time_utils import SLOTS_PER_HOUR


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _gini(values: list[float]) -> float:
    """Gini coefficient for a list of non-negative values."""
    if not values or all(v == 0 for v in values):
        return 0.0
    ordered = sorted(values)
    n = len(ordered)
    cumulative = sum((i + 1) * v for i, v in enumerate(ordered))
    total = sum(ordered)
    return (2 * cumulative) / (n * total) - (n + 1) / n


def _stats(values: list[float]) -> dict[str, float]:
    if not values:
        return {"mean": 0, "median": 0, "std": 0, "min": 0, "max": 0}
    return {
        "mean": round(statistics.mean(values), 2),
        "median": round(statistics.median(values), 2),
        "std": round(statistics.stdev(values), 2) if len(values) > 1 else 0.0,
        "min": round(min(values), 2),
        "max": round(max(values), 2),
    }


# ---------------------------------------------------------------------------
# Metric functions
# ---------------------------------------------------------------------------


def _fill_rate(assignments: dict[str, dict[str, Any]]) -> dict[str, Any]:
    required = sum(int(a.get("required_slot_count") or 0) for a in assignments.values())
    assigned = sum(min(int(a.get("assigned_slot_count") or 0), int(a.get("required_slot_count") or 0)) for a in assignments.values())
    satisfied = sum(
        1 for a in assignments.values()
        if int(a.get("assigned_slot_count") or 0) >= int(a.get("required_slot_count") or 0)
    )
    return {
        "required_slots": required,
        "assigned_slots": assigned,
        "fill_rate_pct": round(assigned / max(1, required) * 100, 1),
        "members_satisfied": satisfied,
        "members_total": len(assignments),
    }


def _fairness(assignments: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """Gini of assigned hours plus per-member hours against the requirement."""
    per_member: list[dict[str, Any]] = []
    hours: list[float] = []
    for member_id, a in sorted(assignments.items()):
        assigned = int(a.get("assigned_slot_count") or 0) / SLOTS_PER_HOUR
        required = int(a.get("required_slot_count") or 0) / SLOTS_PER_HOUR
        hours.append(assigned)
        per_member.append(
            {
                "member_id": member_id,
                "assigned_hours": round(assigned, 2),
                "required_hours": round(required, 2),
                "delta": round(assigned - required, 2),
                "blocks": len(a.get("blocks") or []),
            }
        )
    per_member.sort(key=lambda row: row["delta"])
    return {
        "gini": round(_gini(hours), 4),
        "hours": _stats(hours),
        "per_member": per_member,
    }


def _carry_over(entries: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "members": len({e.get("member_id") for e in entries}),
        "total_hours": round(sum(float(e.get("needed_hours") or 0) for e in entries), 2),
        "interventions": sorted({e["member_id"] for e in entries if e.get("needs_intervention")}),
    }


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def evaluate_result(result: dict[str, Any]) -> dict[str, Any]:
    """Quality metrics for a stored schedule result."""
    assignments = result.get("assignments") or {}
    warnings = result.get("warnings") or []
    options = result.get("options") or {}

    return {
        "meta": {
            "run_id": result.get("run_id"),
            "room_id": result.get("room_id"),
            "generated_at": result.get("generated_at"),
            "start_date": options.get("start_date"),
            "num_weeks": options.get("num_weeks"),
            "transport_mode": options.get("transport_mode"),
        },
        "fill_rate": _fill_rate(assignments),
        "fairness": _fairness(assignments),
        "warnings_by_type": dict(Counter(w.get("type", "unknown") for w in warnings).most_common()),
        "carry_over": _carry_over(result.get("carry_over_entries") or []),
        "conflicts": len(result.get("conflicts") or []),
        "violations": len(result.get("violations") or []),
        "unassigned_members": [row.get("member_id") for row in result.get("unassigned_member_info") or []],
        "weeks": result.get("weeks") or [],
    }


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(str(v) for v in value) + "]"
    return str(value)


def format_decision_log(events: list[dict[str, Any]]) -> list[str]:
    """One readable line per engine event, e.g. ``[week 2] slot_assigned member_id=a``."""
    lines: list[str] = []
    for event in events:
        name = event.get("event", "event")
        week = event.get("week_number")
        fields = " ".join(
            f"{key}={_format_value(value)}"
            for key, value in event.items()
            if key not in ("event", "week_number")
        )
        prefix = f"[week {week}] " if week else ""
        lines.append(f"{prefix}{name} {fields}".rstrip())
    return lines
