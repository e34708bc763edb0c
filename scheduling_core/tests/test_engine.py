"""Tests for input validation and the single-week pipeline."""

from datetime import date

import pytest

from scheduling_core import InvalidInputError, run_schedule
from scheduling_core.models import AssignmentMode, BlockedTime, ExistingSlot, Member, RoomSettings, ScheduleOptions
from scheduling_core.time_utils import parse_hhmm_to_minutes as hm

OWNER = {"id": "owner", "availability": [{"day_of_week": d, "start": "09:00", "end": "18:00"} for d in range(5)]}
OPTIONS = {"start_date": "2025-09-15", "num_weeks": 1, "min_hours_per_week": 1}


def _member(member_id, day=0, start="10:00", end="11:00", **extra):
    return {"id": member_id, "availability": [{"day_of_week": day, "start": start, "end": end}], **extra}


class TestInputValidation:
    @pytest.mark.parametrize("members", [None, [], "m1"])
    def test_members_must_be_non_empty_list(self, members):
        with pytest.raises(InvalidInputError):
            run_schedule(members, OWNER, OPTIONS)

    def test_duplicate_member_ids(self):
        with pytest.raises(InvalidInputError, match="duplicate"):
            run_schedule([_member("m1"), _member("m1")], OWNER, OPTIONS)

    def test_member_without_id(self):
        with pytest.raises(InvalidInputError):
            run_schedule([{"availability": []}], OWNER, OPTIONS)

    def test_owner_required(self):
        with pytest.raises(InvalidInputError, match="owner"):
            run_schedule([_member("m1")], None, OPTIONS)

    @pytest.mark.parametrize(
        "override",
        [
            {"num_weeks": -1},
            {"num_weeks": 0},
            {"num_weeks": "0"},
            {"min_class_duration_minutes": 0},
            {"min_hours_per_week": -1},
            {"range_start": "2025-09-15"},
            {"range_start": "2025-09-19", "range_end": "2025-09-15"},
            {"transport_mode": "teleport"},
            {"assignment_mode": "lottery"},
        ],
    )
    def test_bad_options(self, override):
        with pytest.raises(InvalidInputError):
            run_schedule([_member("m1")], OWNER, {**OPTIONS, **override})

    def test_missing_start_date(self):
        with pytest.raises(InvalidInputError, match="start_date"):
            run_schedule([_member("m1")], OWNER, {"num_weeks": 1})

    def test_malformed_time(self):
        with pytest.raises(InvalidInputError, match="HH:MM"):
            run_schedule([_member("m1", start="10h")], OWNER, OPTIONS)

    def test_end_before_start(self):
        with pytest.raises(InvalidInputError):
            run_schedule([_member("m1", start="11:00", end="10:00")], OWNER, OPTIONS)

    def test_unknown_mode_message_lists_choices(self):
        with pytest.raises(InvalidInputError, match="Choose from"):
            run_schedule([_member("m1")], OWNER, {**OPTIONS, "transport_mode": "teleport"})

    def test_invalid_input_is_value_error(self):
        with pytest.raises(ValueError):
            run_schedule([], OWNER, OPTIONS)

    def test_zero_num_weeks_is_not_replaced_by_default(self):
        assert ScheduleOptions.from_dict({"start_date": "2025-09-15", "num_weeks": 0}).num_weeks == 0
        with pytest.raises(InvalidInputError, match="num_weeks"):
            run_schedule([_member("m1")], OWNER, {"start_date": "2025-09-15", "num_weeks": 0})

    def test_missing_or_blank_settings_use_defaults(self):
        options = ScheduleOptions.from_dict({"start_date": "2025-09-15", "num_weeks": "", "min_class_duration_minutes": None})
        assert options.num_weeks == 2
        assert options.min_class_duration_minutes == 60

    def test_explicit_zero_member_priority_kept(self):
        assert Member.from_dict({"id": "m1", "priority": 0}).priority == 0
        assert Member.from_dict({"id": "m1"}).priority == 2


class TestPipeline:
    def test_dict_inputs(self):
        result = run_schedule([_member("m1")], OWNER, OPTIONS)
        assert result.assignments["m1"].assigned_slot_count == 6
        assert result.violations == []

    def test_owner_listed_as_member_is_not_scheduled(self):
        result = run_schedule([_member("owner"), _member("m1")], OWNER, OPTIONS)
        assert list(result.assignments) == ["m1"]

    def test_strategy_event_recorded(self):
        result = run_schedule([_member("m1")], OWNER, OPTIONS)
        selected = next(e for e in result.events if e["event"] == "strategy_selected")
        assert selected["strategy"] == "time_order"

    def test_precheck_warns_but_still_schedules(self):
        result = run_schedule([_member("m1", start="10:00", end="10:30")], OWNER, OPTIONS)
        warning = next(w for w in result.warnings if w["type"] == "insufficient_preferred_time")
        assert warning["available_minutes"] == 30
        assert warning["required_minutes"] == 60
        assert result.assignments["m1"].assigned_slot_count == 3

    def test_from_today_drops_past_dates(self, owner, room, make_member, make_options):
        member = make_member("m1", [(0, "10:00", "11:00"), (2, "10:00", "11:00")])
        options = make_options(assignment_mode=AssignmentMode.FROM_TODAY, today=date(2025, 9, 17))
        result = run_schedule([member], owner, options, room)
        assert {k.date for k in result.assignments["m1"].keys} == {"2025-09-17"}
        dropped = next(e for e in result.events if e["event"] == "past_dates_dropped")
        assert dropped["cells"] == 6

    def test_existing_slots_count_toward_quota(self, owner, room, make_member, make_options):
        member = make_member("m1", [(0, "10:00", "12:00")])
        existing = [ExistingSlot(member_id="m1", date="2025-09-15", start=hm("11:00"), end=hm("12:00"))]
        result = run_schedule([member], owner, make_options(), room, existing_slots=existing)
        assignment = result.assignments["m1"]
        assert assignment.assigned_slot_count == 6
        assert all(s.existing for s in assignment.slots)
        assert result.violations == []

    def test_off_grid_existing_booking_holds_every_touched_slot(self, owner, room, make_member, make_options):
        member = make_member("m1", [(0, "10:00", "12:00")])
        existing = [ExistingSlot(member_id="m1", date="2025-09-15", start=hm("10:05"), end=hm("10:15"))]
        result = run_schedule([member], owner, make_options(), room, existing_slots=existing)
        held = sorted(s.start_time for s in result.assignments["m1"].slots if s.existing)
        assert held == ["10:00", "10:10"]
        assert result.violations == []

    def test_existing_slot_collision_warns(self, owner, room, make_member, make_options):
        a = make_member("a", [(0, "10:00", "11:00")])
        b = make_member("b", [(0, "10:00", "11:00")])
        existing = [
            ExistingSlot(member_id="a", date="2025-09-15", start=hm("10:00"), end=hm("10:30")),
            ExistingSlot(member_id="b", date="2025-09-15", start=hm("10:20"), end=hm("10:40")),
        ]
        result = run_schedule([a, b], owner, make_options(), room, existing_slots=existing)
        collisions = [w for w in result.warnings if w["type"] == "existing_slot_conflict"]
        assert [w["slot_key"] for w in collisions] == ["2025-09-15-10:20"]
        assert result.violations == []

    def test_result_dict_shape(self):
        payload = run_schedule([_member("m1"), _member("m2", day=1)], OWNER, OPTIONS).to_dict()
        assert payload["run_id"].startswith("run-")
        assert set(payload) >= {
            "assignments",
            "carry_over_entries",
            "unassigned_member_info",
            "warnings",
            "conflicts",
            "member_available_slot_counts",
            "events",
            "violations",
            "options",
        }
        slot = payload["assignments"]["m1"]["slots"][0]
        assert slot == {
            "date": "2025-09-15",
            "day": "monday",
            "start_time": "10:00",
            "end_time": "10:10",
            "subject": "Auto assignment",
            "status": "confirmed",
        }
        assert payload["options"]["start_date"] == "2025-09-15"

    def test_conflicts_reported_without_changing_assignment(self):
        result = run_schedule([_member("a"), _member("b")], OWNER, OPTIONS)
        assert len(result.conflicts) == 6
        assert result.assignments["a"].assigned_slot_count == 6
        assert result.assignments["b"].assigned_slot_count == 0
        info = result.unassigned_member_info[0]
        assert info["member_id"] == "b"
        assert info["needed_hours"] == 1.0

    def test_blocked_times_never_assigned(self, owner, make_member, make_options):
        room = RoomSettings(blocked_times=[BlockedTime(start=hm("12:00"), end=hm("13:00"))])
        members = [make_member(f"m{i}", [(d, "11:00", "15:00") for d in range(5)]) for i in range(3)]
        result = run_schedule(members, owner, make_options(min_hours_per_week=4), room)
        for assignment in result.assignments.values():
            assert not any(hm("12:00") <= k.start < hm("13:00") for k in assignment.keys)
        assert result.violations == []
