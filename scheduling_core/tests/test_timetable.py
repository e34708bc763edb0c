"""Tests for grid construction from owner and member availability."""

from datetime import date

from scheduling_core.models import (
    Blockout,
    BlockedTime,
    ExceptionWindow,
    Owner,
    RoomException,
    RoomSettings,
    TimeWindow,
)
from scheduling_core.time_utils import SlotKey, parse_hhmm_to_minutes as hm
from scheduling_core.timetable import build_timetable, preferred_minutes, rules_for_date, schedule_dates


class TestScheduleDates:
    def test_weekends_excluded(self, monday):
        dates = schedule_dates(monday, 1)
        assert len(dates) == 5
        assert all(d.weekday() < 5 for d in dates)

    def test_explicit_range_wins(self, monday):
        dates = schedule_dates(monday, 4, date(2025, 9, 17), date(2025, 9, 19))
        assert dates == [date(2025, 9, 17), date(2025, 9, 18)]


class TestRulesForDate:
    def test_specific_date_overrides_recurring(self, make_rule, monday):
        rules = [
            make_rule(0, "09:00", "12:00"),
            make_rule(None, "14:00", "15:00", specific_date=monday.isoformat()),
        ]
        active = rules_for_date(rules, monday)
        assert len(active) == 1
        assert active[0].start == hm("14:00")

    def test_recurring_used_on_other_dates(self, make_rule, monday):
        rules = [
            make_rule(0, "09:00", "12:00"),
            make_rule(None, "14:00", "15:00", specific_date="2025-09-22"),
        ]
        assert [r.start for r in rules_for_date(rules, monday)] == [hm("09:00")]


class TestBuildTimetable:
    def test_member_slots_inside_ceiling(self, owner, room, make_member, monday):
        member = make_member("m1", [(0, "10:00", "11:00")])
        grid = build_timetable([member], owner, monday, 1, room)
        assert len(grid) == 6
        cell = grid[SlotKey("2025-09-15", hm("10:00"))]
        assert cell.entry_for("m1").priority == 2
        assert cell.assigned_to is None
        assert cell.day_of_week == 0

    def test_member_slots_outside_ceiling_dropped(self, owner, room, make_member, monday):
        member = make_member("m1", [(0, "17:00", "19:00")])
        grid = build_timetable([member], owner, monday, 1, room)
        assert len(grid) == 6
        assert SlotKey("2025-09-15", hm("18:00")) not in grid

    def test_weekend_rules_ignored(self, make_rule, room, make_member, monday):
        owner = Owner(id="owner", availability=[make_rule(d, "09:00", "18:00") for d in range(7)])
        member = make_member("m1", [(5, "10:00", "12:00"), (6, "10:00", "12:00")])
        grid = build_timetable([member], owner, monday, 1, room)
        assert len(grid) == 0

    def test_owner_specific_date_suppresses_recurring(self, make_rule, room, make_member, monday):
        owner = Owner(
            id="owner",
            availability=[
                make_rule(0, "09:00", "18:00"),
                make_rule(None, "13:00", "14:00", specific_date=monday.isoformat()),
            ],
        )
        member = make_member("m1", [(0, "09:00", "18:00")])
        grid = build_timetable([member], owner, monday, 1, room)
        assert len(grid) == 6
        assert min(grid.sorted_keys()).start == hm("13:00")

    def test_owner_exception_adds_time(self, make_rule, room, make_member, monday):
        owner = Owner(
            id="owner",
            availability=[],
            exceptions=[ExceptionWindow(date="2025-09-16", start=hm("10:00"), end=hm("10:30"))],
        )
        member = make_member("m1", [(1, "09:00", "12:00")])
        grid = build_timetable([member], owner, monday, 1, room)
        assert grid.sorted_keys() == [
            SlotKey("2025-09-16", hm("10:00")),
            SlotKey("2025-09-16", hm("10:10")),
            SlotKey("2025-09-16", hm("10:20")),
        ]

    def test_room_blocked_time_removed_every_day(self, owner, make_member, monday):
        room = RoomSettings(blocked_times=[BlockedTime(start=hm("12:00"), end=hm("13:00"), name="lunch")])
        member = make_member("m1", [(d, "11:00", "14:00") for d in range(5)])
        grid = build_timetable([member], owner, monday, 1, room)
        assert len(grid) == 5 * 12
        assert not any(hm("12:00") <= k.start < hm("13:00") for k in grid.sorted_keys())

    def test_room_exception_on_one_date(self, owner, make_member, monday):
        room = RoomSettings(exceptions=[RoomException(start=hm("09:00"), end=hm("18:00"), specific_date="2025-09-17")])
        member = make_member("m1", [(d, "10:00", "11:00") for d in range(5)])
        grid = build_timetable([member], owner, monday, 1, room)
        assert "2025-09-17" not in grid.dates()
        assert len(grid.dates()) == 4

    def test_schedule_window_clips_owner(self, make_rule, make_member, monday):
        owner = Owner(id="owner", availability=[make_rule(0, "07:00", "22:00")])
        room = RoomSettings(schedule_window=TimeWindow(start=hm("09:00"), end=hm("10:00")))
        member = make_member("m1", [(0, "07:00", "22:00")])
        grid = build_timetable([member], owner, monday, 1, room)
        assert len(grid) == 6

    def test_owner_blockout_removed(self, make_rule, room, make_member, monday):
        owner = Owner(
            id="owner",
            availability=[make_rule(0, "09:00", "12:00")],
            blockouts=[Blockout(start=hm("10:00"), end=hm("11:00"), days=(0,))],
        )
        member = make_member("m1", [(0, "09:00", "12:00")])
        grid = build_timetable([member], owner, monday, 1, room)
        assert len(grid) == 12

    def test_member_blockout_removes_member_and_empty_cells(self, owner, room, make_member, monday):
        a = make_member("a", [(0, "10:00", "11:00")], blockouts=[Blockout(start=hm("10:00"), end=hm("10:30"), days=(0,))])
        b = make_member("b", [(0, "10:20", "10:40")])
        grid = build_timetable([a, b], owner, monday, 1, room)
        assert SlotKey("2025-09-15", hm("10:00")) not in grid
        shared = grid[SlotKey("2025-09-15", hm("10:20"))]
        assert [e.member_id for e in shared.available] == ["b"]
        assert grid[SlotKey("2025-09-15", hm("10:30"))].entry_for("a") is not None

    def test_off_grid_blocked_time_drops_partial_slots(self, owner, make_member, monday):
        room = RoomSettings(blocked_times=[BlockedTime(start=hm("14:55"), end=hm("15:35"))])
        member = make_member("m1", [(0, "14:00", "16:00")])
        grid = build_timetable([member], owner, monday, 1, room)
        starts = [k.start for k in grid.sorted_keys()]
        assert hm("14:40") in starts
        assert hm("14:50") not in starts
        assert hm("15:30") not in starts
        assert starts[-2:] == [hm("15:40"), hm("15:50")]

    def test_off_grid_member_blockout_removes_touched_slot(self, owner, room, make_member, monday):
        member = make_member("m1", [(0, "10:00", "11:00")], blockouts=[Blockout(start=hm("10:05"), end=hm("10:25"), days=(0,))])
        grid = build_timetable([member], owner, monday, 1, room)
        assert [k.start for k in grid.sorted_keys()] == [hm("10:30"), hm("10:40"), hm("10:50")]

    def test_member_specific_blockout(self, owner, room, make_member, monday):
        member = make_member(
            "m1",
            [(0, "10:00", "11:00"), (1, "10:00", "11:00")],
            blockouts=[Blockout(start=hm("10:00"), end=hm("11:00"), specific_date="2025-09-16")],
        )
        grid = build_timetable([member], owner, monday, 1, room)
        assert grid.dates() == ["2025-09-15"]

    def test_owner_never_listed_as_member(self, owner, room, make_member, monday):
        as_member = make_member("owner", [(0, "10:00", "11:00")])
        other = make_member("m1", [(0, "10:00", "11:00")])
        grid = build_timetable([as_member, other], owner, monday, 1, room)
        for _, cell in grid.items():
            assert [e.member_id for e in cell.available] == ["m1"]

    def test_member_priority_defaults_and_highest_wins(self, owner, room, make_member, make_rule, monday):
        member = make_member(
            "m1",
            [make_rule(0, "10:00", "11:00", priority=None), make_rule(0, "10:30", "11:30", priority=3)],
            priority=1,
        )
        grid = build_timetable([member], owner, monday, 1, room)
        assert grid[SlotKey("2025-09-15", hm("10:00"))].entry_for("m1").priority == 1
        assert grid[SlotKey("2025-09-15", hm("10:40"))].entry_for("m1").priority == 3
        assert len(grid[SlotKey("2025-09-15", hm("10:40"))].available) == 1

    def test_member_exception_added_inside_ceiling(self, owner, room, make_member, monday):
        member = make_member("m1", exceptions=[ExceptionWindow(date="2025-09-18", start=hm("15:00"), end=hm("15:20"))])
        grid = build_timetable([member], owner, monday, 1, room)
        assert grid.sorted_keys() == [SlotKey("2025-09-18", hm("15:00")), SlotKey("2025-09-18", hm("15:10"))]


class TestPreferredMinutes:
    def test_counts_only_usable_priority(self, make_member, make_rule, monday):
        member = make_member(
            "m1",
            [make_rule(0, "10:00", "11:00", priority=2), make_rule(1, "10:00", "12:00", priority=1)],
        )
        assert preferred_minutes(member, schedule_dates(monday, 1), threshold=2) == 60

    def test_specific_date_override_applies(self, make_member, make_rule, monday):
        member = make_member(
            "m1",
            [make_rule(0, "09:00", "12:00"), make_rule(None, "09:00", "09:30", specific_date=monday.isoformat())],
        )
        assert preferred_minutes(member, [monday], threshold=2) == 30
