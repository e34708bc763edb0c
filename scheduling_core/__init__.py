"""Slot scheduling engine shared by the room scheduler service and its tools."""

from .carry_over import CarryOverEntry, carry_over_hours, compute_carry_over, required_slot_count
from .conflicts import identify_conflicts
from .constraints import validate_schedule
from .engine import ScheduleResult, run_schedule
from .errors import InvalidInputError, SchedulingError, TravelTimeLookupError
from .models import (
    AssignmentMode,
    AvailabilityRule,
    Blockout,
    DeferredAssignment,
    ExistingSlot,
    Location,
    Member,
    Owner,
    RoomSettings,
    ScheduleOptions,
    TransportMode,
)
from .timetable import build_timetable
from .travel_time import InMemoryTravelTimeCache, TravelTimeProvider

__all__ = [
    "AssignmentMode",
    "AvailabilityRule",
    "Blockout",
    "CarryOverEntry",
    "DeferredAssignment",
    "ExistingSlot",
    "InMemoryTravelTimeCache",
    "InvalidInputError",
    "Location",
    "Member",
    "Owner",
    "RoomSettings",
    "ScheduleOptions",
    "ScheduleResult",
    "SchedulingError",
    "TransportMode",
    "TravelTimeLookupError",
    "TravelTimeProvider",
    "build_timetable",
    "carry_over_hours",
    "compute_carry_over",
    "identify_conflicts",
    "required_slot_count",
    "run_schedule",
    "validate_schedule",
]
