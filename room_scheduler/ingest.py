"""Room documents (camelCase, as stored by the app) to engine inputs.

A room carries its owner and members with their user profiles inlined:
``defaultSchedule`` (weekly preferred time, JS weekdays), ``scheduleExceptions``
(ISO timestamps), ``personalTimes`` (days 1..7 = Monday..Sunday) and
``addressLat``/``addressLng``. Room settings and already confirmed
``timeSlots`` come along with it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from scheduling_core.errors import InvalidInputError
from scheduling_core.models import (
    DEFAULT_PRIORITY,
    AssignmentMode,
    AvailabilityRule,
    Blockout,
    BlockedTime,
    CarryOverRecord,
    DeferredAssignment,
    ExceptionWindow,
    ExistingSlot,
    Location,
    Member,
    Owner,
    RoomException,
    RoomSettings,
    ScheduleOptions,
    TimeWindow,
    TransportMode,
)
from scheduling_core.time_utils import DAY_MINUTES, parse_hhmm_to_minutes, to_date

from .config import SchedulingDefaults
from .utils import iso_date_part, js_weekday_to_python, parse_iso_datetime

logger = logging.getLogger(__name__)

TRANSPORT_ALIASES = {"public": "transit"}


@dataclass(frozen=True)
class ScheduleInputs:
    room_id: str
    members: list[Member]
    owner: Owner
    options: ScheduleOptions
    room_settings: RoomSettings
    existing_slots: list[ExistingSlot] = field(default_factory=list)
    deferred: list[DeferredAssignment] = field(default_factory=list)


def user_id(value: Any) -> str:
    """Id of a user reference: an inlined profile (``id``/``_id``) or a bare id."""
    if isinstance(value, dict):
        return str(value.get("id") or value.get("_id") or "").strip()
    return str(value or "").strip()


def _minutes(value: Any, *, owner: str) -> int:
    minutes = parse_hhmm_to_minutes(value)
    if minutes is None:
        raise InvalidInputError(f"{owner}: invalid time {value!r}, expected HH:MM")
    return minutes


def _span(row: dict[str, Any], *, owner: str) -> tuple[int, int]:
    return _minutes(row.get("startTime"), owner=owner), _minutes(row.get("endTime"), owner=owner)


def _location(profile: dict[str, Any]) -> Location | None:
    lat, lng = profile.get("addressLat"), profile.get("addressLng")
    if lat is None or lng is None:
        return None
    return Location.from_dict({"lat": lat, "lng": lng}, owner=f"user {user_id(profile)}")


# ---- Profile parts ---------------------------------------------------------

def default_schedule_rules(rows: list[dict[str, Any]], *, owner: str) -> list[AvailabilityRule]:
    rules: list[AvailabilityRule] = []
    for row in rows or []:
        start, end = _span(row, owner=owner)
        if end <= start:
            logger.warning("%s: skipping empty preferred time %s-%s", owner, row.get("startTime"), row.get("endTime"))
            continue
        specific = row.get("specificDate") or None
        if specific is None and row.get("dayOfWeek") is None:
            raise InvalidInputError(f"{owner}: defaultSchedule entry needs dayOfWeek or specificDate")
        rules.append(
            AvailabilityRule(
                start=start,
                end=end,
                priority=row.get("priority"),
                day_of_week=None if specific else js_weekday_to_python(row["dayOfWeek"]),
                specific_date=iso_date_part(specific) if specific else None,
            )
        )
    return rules


def _split_by_date(start: datetime, end: datetime) -> list[tuple[str, int, int]]:
    """Per-date minute spans of a timestamp range that may cross midnight."""
    spans: list[tuple[str, int, int]] = []
    day = start.date()
    while day <= end.date():
        first = start.hour * 60 + start.minute if day == start.date() else 0
        last = end.hour * 60 + end.minute if day == end.date() else DAY_MINUTES
        if last > first:
            spans.append((day.isoformat(), first, last))
        day += timedelta(days=1)
    return spans


def schedule_exceptions(
    rows: list[dict[str, Any]], *, owner: str
) -> tuple[list[ExceptionWindow], list[Blockout]]:
    """Ad-hoc preferred time, plus holidays which block the whole date."""
    windows: list[ExceptionWindow] = []
    blockouts: list[Blockout] = []
    for row in rows or []:
        start = parse_iso_datetime(row.get("startTime"))
        end = parse_iso_datetime(row.get("endTime"))
        if start is None or end is None:
            raise InvalidInputError(f"{owner}: scheduleException needs ISO startTime and endTime")
        if row.get("isHoliday"):
            first, last = start.date(), end.date()
            day = first
            while day <= last:
                blockouts.append(Blockout(start=0, end=DAY_MINUTES, specific_date=day.isoformat()))
                day += timedelta(days=1)
            continue
        if row.get("isAllDay"):
            spans = [(iso_date_part(row.get("specificDate")) or start.date().isoformat(), 0, DAY_MINUTES)]
        else:
            spans = _split_by_date(start, end)
        for iso, first, last in spans:
            windows.append(ExceptionWindow(date=iso, start=first, end=last, priority=row.get("priority")))
    return windows, blockouts


def personal_time_blockouts(rows: list[dict[str, Any]], *, owner: str) -> list[Blockout]:
    """Personal time (sleep, meals, commute). Spans past midnight continue on the next day."""
    blockouts: list[Blockout] = []
    for row in rows or []:
        start, end = _span(row, owner=owner)
        specific = row.get("specificDate") if row.get("isRecurring") is False else None
        if specific:
            iso = iso_date_part(specific)
            if iso is None:
                raise InvalidInputError(f"{owner}: invalid personal time date {specific!r}")
            if end > start:
                blockouts.append(Blockout(start=start, end=end, specific_date=iso))
            else:
                next_day = (to_date(iso) + timedelta(days=1)).isoformat()
                blockouts.append(Blockout(start=start, end=DAY_MINUTES, specific_date=iso))
                if end > 0:
                    blockouts.append(Blockout(start=0, end=end, specific_date=next_day))
            continue

        days = tuple(sorted({js_weekday_to_python(d) for d in row.get("days") or []}))
        if not days:
            continue
        if end > start:
            blockouts.append(Blockout(start=start, end=end, days=days))
        else:
            blockouts.append(Blockout(start=start, end=DAY_MINUTES, days=days))
            if end > 0:
                blockouts.append(Blockout(start=0, end=end, days=tuple(sorted({(d + 1) % 7 for d in days}))))
    return blockouts


def _profile_parts(profile: dict[str, Any], *, owner: str) -> dict[str, Any]:
    exceptions, holidays = schedule_exceptions(profile.get("scheduleExceptions") or [], owner=owner)
    return {
        "availability": default_schedule_rules(profile.get("defaultSchedule") or [], owner=owner),
        "exceptions": exceptions,
        "blockouts": personal_time_blockouts(profile.get("personalTimes") or [], owner=owner) + holidays,
        "location": _location(profile),
    }


# ---- Participants ----------------------------------------------------------

def owner_from_room(room: dict[str, Any]) -> Owner:
    profile = room.get("owner")
    owner_id = user_id(profile)
    if not owner_id:
        raise InvalidInputError("room has no owner")
    profile = profile if isinstance(profile, dict) else {}
    return Owner(id=owner_id, **_profile_parts(profile, owner=f"owner {owner_id}"))


def members_from_room(room: dict[str, Any]) -> list[Member]:
    members: list[Member] = []
    for row in room.get("members") or []:
        profile = row.get("user")
        member_id = user_id(profile)
        if not member_id:
            raise InvalidInputError("room member without a user id")
        profile = profile if isinstance(profile, dict) else {}
        label = f"member {member_id}"
        history = [
            CarryOverRecord.from_dict({"week": iso_date_part(h.get("week")), "hours": h.get("amount")}, owner=label)
            for h in row.get("carryOverHistory") or []
            if h.get("week")
        ]
        members.append(
            Member(
                id=member_id,
                priority=DEFAULT_PRIORITY if row.get("priority") is None else int(row["priority"]),
                carry_over_hours=max(0.0, float(row.get("carryOver") or 0)),
                carry_over_history=history,
                joined_at=row.get("joinedAt") or None,
                name=str(profile.get("name") or ""),
                **_profile_parts(profile, owner=label),
            )
        )
    return members


# ---- Room settings ---------------------------------------------------------

def room_settings_from_room(room: dict[str, Any]) -> RoomSettings:
    settings = room.get("settings") or {}
    window = None
    if settings.get("startHour") is not None or settings.get("endHour") is not None:
        window = TimeWindow(
            start=int(settings.get("startHour", 9)) * 60,
            end=int(settings.get("endHour", 18)) * 60,
        )

    blocked = [
        BlockedTime(*_span(row, owner="blockedTimes"), name=str(row.get("name") or ""))
        for row in settings.get("blockedTimes") or []
    ]
    lunch = settings.get("lunchBreak") or {}
    if lunch.get("enabled"):
        blocked.append(
            BlockedTime(
                start=_minutes(lunch.get("startTime", "12:00"), owner="lunchBreak"),
                end=_minutes(lunch.get("endTime", "13:00"), owner="lunchBreak"),
                name="lunch",
            )
        )

    exceptions: list[RoomException] = []
    for row in settings.get("roomExceptions") or []:
        name = str(row.get("name") or "")
        if row.get("type") == "daily_recurring":
            start, end = _span(row, owner="roomExceptions")
            exceptions.append(
                RoomException(start=start, end=end, day_of_week=js_weekday_to_python(row.get("dayOfWeek", 0)), name=name)
            )
            continue
        first = parse_iso_datetime(row.get("startDate"))
        last = parse_iso_datetime(row.get("endDate")) or first
        if first is None:
            raise InvalidInputError(f"room exception {name!r} needs a startDate")
        for iso, start, end in _split_by_date(first, last):
            exceptions.append(RoomException(start=start, end=end, specific_date=iso, name=name))
    return RoomSettings(schedule_window=window, blocked_times=blocked, exceptions=exceptions)


def existing_slots_from_room(room: dict[str, Any]) -> list[ExistingSlot]:
    """Confirmed class slots already on the room. Travel slots are not bookings."""
    slots: list[ExistingSlot] = []
    for row in room.get("timeSlots") or []:
        if row.get("isTravel") or row.get("status", "confirmed") != "confirmed":
            continue
        member_id = user_id(row.get("user"))
        iso = iso_date_part(row.get("date"))
        if not member_id or iso is None:
            continue
        start, end = _span(row, owner=f"timeSlot of {member_id}")
        if end > start:
            slots.append(ExistingSlot(member_id=member_id, date=iso, start=start, end=end))
    return slots


# ---- Options ---------------------------------------------------------------

def _transport_mode(value: Any) -> TransportMode:
    if isinstance(value, str):
        value = TRANSPORT_ALIASES.get(value.strip().lower(), value)
    return TransportMode.parse(value)


def _monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def options_from_room(
    room: dict[str, Any],
    overrides: dict[str, Any] | None = None,
    *,
    defaults: SchedulingDefaults | None = None,
    today: date | None = None,
) -> ScheduleOptions:
    """Room settings, then env defaults, then explicit overrides (snake_case)."""
    overrides = dict(overrides or {})
    settings = room.get("settings") or {}
    today = today or date.today()

    payload: dict[str, Any] = {
        "start_date": _monday_of(today).isoformat(),
        "assignment_mode": settings.get("assignmentMode") or AssignmentMode.NORMAL.value,
        "transport_mode": _transport_mode(room.get("currentTravelMode")).value,
        "today": today.isoformat(),
    }
    if defaults is not None:
        payload.update(
            num_weeks=defaults.num_weeks,
            min_hours_per_week=defaults.min_hours_per_week,
            min_class_duration_minutes=defaults.min_class_duration_minutes,
        )
    if settings.get("minHoursPerWeek") is not None:
        payload["min_hours_per_week"] = settings["minHoursPerWeek"]
    if "transport_mode" in overrides and overrides["transport_mode"] is not None:
        overrides["transport_mode"] = _transport_mode(overrides["transport_mode"]).value
    payload.update({k: v for k, v in overrides.items() if v is not None})
    return ScheduleOptions.from_dict(payload)


def build_schedule_inputs(
    room: dict[str, Any],
    options_overrides: dict[str, Any] | None = None,
    *,
    defaults: SchedulingDefaults | None = None,
    today: date | None = None,
) -> ScheduleInputs:
    """Everything ``run_schedule`` needs, from one room document.

    ``options_overrides`` may also carry ``deferred``: a list of
    ``{member_id, needed_hours}`` rows placed before the main strategy.
    """
    if not isinstance(room, dict):
        raise InvalidInputError("room must be an object")
    room_id = str(room.get("id") or "").strip()
    if not room_id:
        raise InvalidInputError("room is missing an id")

    overrides = dict(options_overrides or {})
    deferred = [
        DeferredAssignment(member_id=str(row["member_id"]), needed_hours=float(row.get("needed_hours") or 0))
        for row in overrides.pop("deferred", None) or []
    ]
    owner = owner_from_room(room)
    members = [m for m in members_from_room(room) if m.id != owner.id]
    inputs = ScheduleInputs(
        room_id=room_id,
        members=members,
        owner=owner,
        options=options_from_room(room, overrides, defaults=defaults, today=today),
        room_settings=room_settings_from_room(room),
        existing_slots=existing_slots_from_room(room),
        deferred=deferred,
    )
    logger.info(
        "room %s: %d members, %d existing slots, transport=%s",
        room_id,
        len(inputs.members),
        len(inputs.existing_slots),
        inputs.options.transport_mode.value,
    )
    return inputs
