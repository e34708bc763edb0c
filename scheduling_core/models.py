"""Input model for the scheduling engine.

All times are minutes after midnight, all dates ISO ``YYYY-MM-DD`` strings,
weekdays use Python numbering (Monday == 0). ``from_dict`` constructors take
snake_case keys and raise InvalidInputError on malformed input.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from .errors import InvalidInputError
from .time_utils import parse_hhmm_to_minutes, to_date

DEFAULT_PRIORITY = 2
PREFERRED_PRIORITY_THRESHOLD = 2
DEFAULT_MIN_HOURS_PER_WEEK = 3.0
DEFAULT_NUM_WEEKS = 2
DEFAULT_MIN_CLASS_DURATION_MINUTES = 60
DEFAULT_SUBJECT = "Auto assignment"


class AssignmentMode(str, Enum):
    NORMAL = "normal"
    FROM_TODAY = "from_today"
    FIRST_COME_FIRST_SERVED = "first_come_first_served"

    @classmethod
    def parse(cls, value: "AssignmentMode | str | None") -> "AssignmentMode":
        return _parse_enum(cls, value, cls.NORMAL)


class TransportMode(str, Enum):
    NORMAL = "normal"
    TRANSIT = "transit"
    DRIVING = "driving"
    WALKING = "walking"
    BICYCLING = "bicycling"

    @classmethod
    def parse(cls, value: "TransportMode | str | None") -> "TransportMode":
        return _parse_enum(cls, value, cls.NORMAL)

    @property
    def uses_travel(self) -> bool:
        return self is not TransportMode.NORMAL


def _parse_enum(cls, value, default):
    if value is None or value == "":
        return default
    if isinstance(value, cls):
        return value
    try:
        return cls(str(value).strip().lower())
    except ValueError:
        choices = tuple(m.value for m in cls)
        raise InvalidInputError(f"Unknown {cls.__name__}: {value!r}. Choose from {choices}") from None


# ---- Coercion helpers ------------------------------------------------------

def _minutes(row: dict[str, Any], key: str, *, owner: str) -> int:
    raw = row.get(key)
    if isinstance(raw, int) and not isinstance(raw, bool):
        value: int | None = raw
    else:
        value = parse_hhmm_to_minutes(raw)
    if value is None or value < 0 or value > 24 * 60:
        raise InvalidInputError(f"{owner}: invalid {key} {raw!r}, expected HH:MM")
    return value


def _interval(row: dict[str, Any], *, owner: str) -> tuple[int, int]:
    start = _minutes(row, "start", owner=owner)
    end = _minutes(row, "end", owner=owner)
    if end <= start:
        raise InvalidInputError(f"{owner}: end {row.get('end')!r} is not after start {row.get('start')!r}")
    return start, end


def _iso_date(value: Any, *, owner: str) -> str:
    try:
        return to_date(value).isoformat()
    except (TypeError, ValueError):
        raise InvalidInputError(f"{owner}: invalid date {value!r}") from None


def _optional_date(value: Any, *, owner: str) -> str | None:
    if value in (None, ""):
        return None
    return _iso_date(value, owner=owner)


def _weekday(value: Any, *, owner: str) -> int:
    try:
        day = int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{owner}: invalid day_of_week {value!r}") from None
    if day < 0 or day > 6:
        raise InvalidInputError(f"{owner}: day_of_week must be 0..6 (Monday == 0), got {day}")
    return day


def _priority(value: Any, *, owner: str) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{owner}: invalid priority {value!r}") from None


def _rows(payload: dict[str, Any], key: str, *, owner: str) -> list[dict[str, Any]]:
    rows = payload.get(key) or []
    if not isinstance(rows, list):
        raise InvalidInputError(f"{owner}: {key} must be a list")
    for row in rows:
        if not isinstance(row, dict):
            raise InvalidInputError(f"{owner}: {key} entries must be objects")
    return rows


def _require_id(payload: Any, *, kind: str) -> str:
    if not isinstance(payload, dict):
        raise InvalidInputError(f"{kind} must be an object, got {type(payload).__name__}")
    value = str(payload.get("id") or "").strip()
    if not value:
        raise InvalidInputError(f"{kind} is missing an id")
    return value


# ---- Availability ----------------------------------------------------------

@dataclass(frozen=True)
class AvailabilityRule:
    start: int
    end: int
    priority: int | None = None
    day_of_week: int | None = None
    specific_date: str | None = None

    def applies_to(self, day: date) -> bool:
        if self.specific_date:
            return self.specific_date == day.isoformat()
        return self.day_of_week == day.weekday()

    @classmethod
    def from_dict(cls, row: dict[str, Any], *, owner: str = "rule") -> "AvailabilityRule":
        start, end = _interval(row, owner=owner)
        specific = _optional_date(row.get("specific_date"), owner=owner)
        dow = None
        if not specific:
            if row.get("day_of_week") is None:
                raise InvalidInputError(f"{owner}: availability needs day_of_week or specific_date")
            dow = _weekday(row.get("day_of_week"), owner=owner)
        return cls(
            start=start,
            end=end,
            priority=_priority(row.get("priority"), owner=owner),
            day_of_week=dow,
            specific_date=specific,
        )


@dataclass(frozen=True)
class Blockout:
    """Personal time that removes availability. Recurring by weekday list or on one date."""

    start: int
    end: int
    days: tuple[int, ...] = ()
    specific_date: str | None = None

    def applies_to(self, day: date) -> bool:
        if self.specific_date:
            return self.specific_date == day.isoformat()
        return day.weekday() in self.days

    @classmethod
    def from_dict(cls, row: dict[str, Any], *, owner: str = "blockout") -> "Blockout":
        start, end = _interval(row, owner=owner)
        specific = _optional_date(row.get("specific_date"), owner=owner)
        days = tuple(sorted({_weekday(d, owner=owner) for d in row.get("days") or []}))
        if not specific and not days:
            raise InvalidInputError(f"{owner}: blockout needs days or specific_date")
        return cls(start=start, end=end, days=days, specific_date=specific)


@dataclass(frozen=True)
class ExceptionWindow:
    """Ad-hoc availability added on one date on top of the recurring rules."""

    date: str
    start: int
    end: int
    priority: int | None = None

    @classmethod
    def from_dict(cls, row: dict[str, Any], *, owner: str = "exception") -> "ExceptionWindow":
        start, end = _interval(row, owner=owner)
        return cls(
            date=_iso_date(row.get("date"), owner=owner),
            start=start,
            end=end,
            priority=_priority(row.get("priority"), owner=owner),
        )


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float

    @property
    def key(self) -> str:
        return f"{self.lat},{self.lng}"

    @classmethod
    def from_dict(cls, row: Any, *, owner: str = "location") -> "Location | None":
        if row in (None, {}):
            return None
        if not isinstance(row, dict):
            raise InvalidInputError(f"{owner}: location must be an object with lat/lng")
        try:
            lat = float(row["lat"])
            lng = float(row["lng"])
        except (KeyError, TypeError, ValueError):
            raise InvalidInputError(f"{owner}: location needs numeric lat and lng") from None
        if not (math.isfinite(lat) and math.isfinite(lng)):
            raise InvalidInputError(f"{owner}: location coordinates must be finite")
        return cls(lat=lat, lng=lng)


@dataclass(frozen=True)
class CarryOverRecord:
    week: str
    hours: float

    @classmethod
    def from_dict(cls, row: dict[str, Any], *, owner: str = "carry_over") -> "CarryOverRecord":
        try:
            hours = float(row.get("hours") or 0)
        except (TypeError, ValueError):
            raise InvalidInputError(f"{owner}: invalid carry-over hours {row.get('hours')!r}") from None
        return cls(week=_iso_date(row.get("week"), owner=owner), hours=hours)


# ---- Participants ----------------------------------------------------------

@dataclass
class Member:
    id: str
    availability: list[AvailabilityRule] = field(default_factory=list)
    blockouts: list[Blockout] = field(default_factory=list)
    exceptions: list[ExceptionWindow] = field(default_factory=list)
    priority: int = DEFAULT_PRIORITY
    carry_over_hours: float = 0.0
    carry_over_history: list[CarryOverRecord] = field(default_factory=list)
    location: Location | None = None
    joined_at: str | None = None
    name: str = ""

    def rule_priority(self, rule: AvailabilityRule | ExceptionWindow) -> int:
        return rule.priority if rule.priority is not None else self.priority

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Member":
        member_id = _require_id(payload, kind="member")
        owner = f"member {member_id}"
        try:
            carry_over = float(payload.get("carry_over_hours") or 0)
        except (TypeError, ValueError):
            raise InvalidInputError(f"{owner}: invalid carry_over_hours") from None
        priority = _priority(payload.get("priority"), owner=owner)
        return cls(
            id=member_id,
            availability=[AvailabilityRule.from_dict(r, owner=owner) for r in _rows(payload, "availability", owner=owner)],
            blockouts=[Blockout.from_dict(r, owner=owner) for r in _rows(payload, "blockouts", owner=owner)],
            exceptions=[ExceptionWindow.from_dict(r, owner=owner) for r in _rows(payload, "exceptions", owner=owner)],
            priority=DEFAULT_PRIORITY if priority is None else priority,
            carry_over_hours=max(0.0, carry_over),
            carry_over_history=[
                CarryOverRecord.from_dict(r, owner=owner)
                for r in _rows(payload, "carry_over_history", owner=owner)
            ],
            location=Location.from_dict(payload.get("location"), owner=owner),
            joined_at=payload.get("joined_at") or None,
            name=str(payload.get("name") or ""),
        )


@dataclass
class Owner:
    id: str
    availability: list[AvailabilityRule] = field(default_factory=list)
    blockouts: list[Blockout] = field(default_factory=list)
    exceptions: list[ExceptionWindow] = field(default_factory=list)
    location: Location | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Owner":
        owner_id = _require_id(payload, kind="owner")
        owner = f"owner {owner_id}"
        return cls(
            id=owner_id,
            availability=[AvailabilityRule.from_dict(r, owner=owner) for r in _rows(payload, "availability", owner=owner)],
            blockouts=[Blockout.from_dict(r, owner=owner) for r in _rows(payload, "blockouts", owner=owner)],
            exceptions=[ExceptionWindow.from_dict(r, owner=owner) for r in _rows(payload, "exceptions", owner=owner)],
            location=Location.from_dict(payload.get("location"), owner=owner),
        )


# ---- Room settings ---------------------------------------------------------

@dataclass(frozen=True)
class TimeWindow:
    start: int
    end: int


@dataclass(frozen=True)
class BlockedTime:
    """Daily recurring room exclusion, e.g. lunch."""

    start: int
    end: int
    name: str = ""


@dataclass(frozen=True)
class RoomException:
    start: int
    end: int
    day_of_week: int | None = None
    specific_date: str | None = None
    name: str = ""

    def applies_to(self, day: date) -> bool:
        if self.specific_date:
            return self.specific_date == day.isoformat()
        if self.day_of_week is None:
            return True
        return self.day_of_week == day.weekday()


@dataclass
class RoomSettings:
    schedule_window: TimeWindow | None = None
    blocked_times: list[BlockedTime] = field(default_factory=list)
    exceptions: list[RoomException] = field(default_factory=list)

    def blocked_windows_for(self, day: date) -> list[tuple[int, int]]:
        windows = [(b.start, b.end) for b in self.blocked_times]
        windows.extend((e.start, e.end) for e in self.exceptions if e.applies_to(day))
        return windows

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "RoomSettings":
        payload = payload or {}
        window = None
        if payload.get("schedule_window"):
            start, end = _interval(payload["schedule_window"], owner="schedule_window")
            window = TimeWindow(start=start, end=end)
        blocked = []
        for row in _rows(payload, "blocked_times", owner="room"):
            start, end = _interval(row, owner="blocked_time")
            blocked.append(BlockedTime(start=start, end=end, name=str(row.get("name") or "")))
        exceptions = []
        for row in _rows(payload, "exceptions", owner="room"):
            start, end = _interval(row, owner="room_exception")
            dow = row.get("day_of_week")
            exceptions.append(
                RoomException(
                    start=start,
                    end=end,
                    day_of_week=_weekday(dow, owner="room_exception") if dow is not None else None,
                    specific_date=_optional_date(row.get("specific_date"), owner="room_exception"),
                    name=str(row.get("name") or ""),
                )
            )
        return cls(schedule_window=window, blocked_times=blocked, exceptions=exceptions)


# ---- Run inputs ------------------------------------------------------------

@dataclass(frozen=True)
class ExistingSlot:
    """A previously confirmed booking that the run must keep."""

    member_id: str
    date: str
    start: int
    end: int

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> "ExistingSlot":
        member_id = str(row.get("member_id") or "").strip()
        if not member_id:
            raise InvalidInputError("existing slot is missing member_id")
        start, end = _interval(row, owner=f"existing slot of {member_id}")
        return cls(member_id=member_id, date=_iso_date(row.get("date"), owner="existing slot"), start=start, end=end)


@dataclass(frozen=True)
class DeferredAssignment:
    member_id: str
    needed_hours: float


@dataclass(frozen=True)
class ScheduleOptions:
    start_date: date
    num_weeks: int = DEFAULT_NUM_WEEKS
    min_hours_per_week: float = DEFAULT_MIN_HOURS_PER_WEEK
    assignment_mode: AssignmentMode = AssignmentMode.NORMAL
    transport_mode: TransportMode = TransportMode.NORMAL
    min_class_duration_minutes: int = DEFAULT_MIN_CLASS_DURATION_MINUTES
    range_start: date | None = None
    range_end: date | None = None
    today: date | None = None
    preferred_priority_threshold: int = PREFERRED_PRIORITY_THRESHOLD
    subject: str = DEFAULT_SUBJECT

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ScheduleOptions":
        if not isinstance(payload, dict) or not payload.get("start_date"):
            raise InvalidInputError("options need a start_date")

        def _d(key: str) -> date | None:
            value = payload.get(key)
            if value in (None, ""):
                return None
            try:
                return to_date(value)
            except (TypeError, ValueError):
                raise InvalidInputError(f"options: invalid {key} {value!r}") from None

        # Only missing or blank values fall back; an explicit 0 is kept for validation.
        def _n(key: str, default: Any) -> Any:
            value = payload.get(key)
            return default if value is None or value == "" else value

        try:
            num_weeks = int(_n("num_weeks", DEFAULT_NUM_WEEKS))
            min_hours = float(_n("min_hours_per_week", DEFAULT_MIN_HOURS_PER_WEEK))
            min_class = int(_n("min_class_duration_minutes", DEFAULT_MIN_CLASS_DURATION_MINUTES))
            threshold = int(_n("preferred_priority_threshold", PREFERRED_PRIORITY_THRESHOLD))
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"options: {exc}") from None

        return cls(
            start_date=_d("start_date"),
            num_weeks=num_weeks,
            min_hours_per_week=min_hours,
            assignment_mode=AssignmentMode.parse(payload.get("assignment_mode")),
            transport_mode=TransportMode.parse(payload.get("transport_mode")),
            min_class_duration_minutes=min_class,
            range_start=_d("range_start"),
            range_end=_d("range_end"),
            today=_d("today"),
            preferred_priority_threshold=threshold,
            subject=str(payload.get("subject") or DEFAULT_SUBJECT),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat(),
            "num_weeks": self.num_weeks,
            "min_hours_per_week": self.min_hours_per_week,
            "assignment_mode": self.assignment_mode.value,
            "transport_mode": self.transport_mode.value,
            "min_class_duration_minutes": self.min_class_duration_minutes,
            "range_start": self.range_start.isoformat() if self.range_start else None,
            "range_end": self.range_end.isoformat() if self.range_end else None,
        }
