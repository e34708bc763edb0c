"""Shared builders for scheduling_core tests.

All dates are anchored on Monday 2025-09-15 so weekday arithmetic stays readable.
"""

from __future__ import annotations

from datetime import date

import pytest

from scheduling_core.models import (
    AvailabilityRule,
    Location,
    Member,
    Owner,
    RoomSettings,
    ScheduleOptions,
)

MONDAY = date(2025, 9, 15)


def hm(value: str) -> int:
    h, m = value.split(":")
    return int(h) * 60 + int(m)


@pytest.fixture
def monday() -> date:
    return MONDAY


@pytest.fixture
def make_rule():
    def _make(day_of_week: int | None, start: str, end: str, priority: int | None = 2, specific_date: str | None = None):
        return AvailabilityRule(
            start=hm(start),
            end=hm(end),
            priority=priority,
            day_of_week=None if specific_date else day_of_week,
            specific_date=specific_date,
        )

    return _make


@pytest.fixture
def make_member(make_rule):
    def _make(member_id: str, rules=(), **kwargs) -> Member:
        availability = [r if isinstance(r, AvailabilityRule) else make_rule(*r) for r in rules]
        return Member(id=member_id, availability=availability, **kwargs)

    return _make


@pytest.fixture
def owner(make_rule) -> Owner:
    """Owner open 09:00-18:00 on every weekday."""
    return Owner(
        id="owner",
        availability=[make_rule(d, "09:00", "18:00") for d in range(5)],
        location=Location(37.50, 127.00),
    )


@pytest.fixture
def room() -> RoomSettings:
    return RoomSettings()


@pytest.fixture
def make_options():
    def _make(**kwargs) -> ScheduleOptions:
        values = {
            "start_date": MONDAY,
            "num_weeks": 1,
            "min_hours_per_week": 1,
        }
        values.update(kwargs)
        return ScheduleOptions(**values)

    return _make
