"""Tests for carry-over computation and deferred assignments."""

from datetime import date

import pytest

from scheduling_core.carry_over import (
    apply_deferred_assignments,
    carry_over_hours,
    compute_carry_over,
    recent_carry_overs,
    required_slot_count,
)
from scheduling_core.engine import initial_state, run_schedule, stage_build_grid
from scheduling_core.models import CarryOverRecord, DeferredAssignment
from scheduling_core.state import Assignment

AS_OF = date(2025, 9, 15)


class TestRequiredSlots:
    def test_weekly_minimum_times_weeks(self):
        assert required_slot_count(1, 1) == 6
        assert required_slot_count(3, 2) == 36

    def test_carried_hours_added(self):
        assert required_slot_count(3, 2, 1.5) == 45

    def test_negative_inputs_clamped(self):
        assert required_slot_count(-1, 1, -2) == 0


class TestCarryOverHours:
    def test_shortfall_in_hours(self):
        assert carry_over_hours(3, 6) == 0.5

    def test_no_shortfall(self):
        assert carry_over_hours(6, 6) == 0
        assert carry_over_hours(7, 6) == 0


class TestRecentCarryOvers:
    def test_counts_records_inside_window(self):
        history = [
            CarryOverRecord(week="2025-09-08", hours=1.0),
            CarryOverRecord(week="2025-09-01", hours=2.0),
            CarryOverRecord(week="2025-08-25", hours=2.0),
        ]
        assert recent_carry_overs(history, AS_OF) == 2

    def test_zero_hour_records_ignored(self):
        assert recent_carry_overs([CarryOverRecord(week="2025-09-08", hours=0)], AS_OF) == 0


class TestComputeCarryOver:
    def _assignments(self):
        return {
            "done": Assignment(member_id="done", required_slot_count=6, assigned_slot_count=6),
            "short": Assignment(member_id="short", required_slot_count=18, assigned_slot_count=6),
        }

    def test_only_short_members_listed(self):
        entries = compute_carry_over(self._assignments(), as_of=AS_OF)
        assert [e.member_id for e in entries] == ["short"]
        assert entries[0].needed_hours == 2.0
        assert entries[0].needs_intervention is False
        assert entries[0].week == "2025-09-15"

    def test_intervention_after_two_recent_weeks(self):
        history = {
            "short": [CarryOverRecord(week="2025-09-08", hours=1.0), CarryOverRecord(week="2025-09-01", hours=1.0)]
        }
        entries = compute_carry_over(self._assignments(), history=history, as_of=AS_OF, priorities={"short": 3})
        assert entries[0].consecutive_weeks_carried == 2
        assert entries[0].needs_intervention is True
        assert entries[0].priority == 3

    def test_single_recent_week_is_not_intervention(self):
        history = {"short": [CarryOverRecord(week="2025-09-08", hours=1.0)]}
        entries = compute_carry_over(self._assignments(), history=history, as_of=AS_OF)
        assert entries[0].needs_intervention is False


class TestDeferredAssignments:
    @pytest.fixture
    def state(self, owner, room, make_member, make_options):
        a = make_member("a", [(0, "10:00", "11:00"), (1, "10:00", "10:30")])
        b = make_member("b", [(0, "10:00", "11:00")])
        return stage_build_grid(initial_state([a, b], owner, make_options(), room))

    def test_least_contended_slots_first(self, state):
        apply_deferred_assignments(state, [DeferredAssignment(member_id="a", needed_hours=0.5)])
        assert [k.date for k in state.assignments["a"].keys] == ["2025-09-16"] * 3
        event = state.events[-1]
        assert event["event"] == "deferred_assignment"
        assert event["assigned_slots"] == 3

    def test_capped_at_remaining_need(self, state):
        apply_deferred_assignments(state, [DeferredAssignment(member_id="b", needed_hours=5)])
        assert state.assignments["b"].assigned_slot_count == 6

    def test_unknown_member_warns(self, state):
        apply_deferred_assignments(state, [DeferredAssignment(member_id="ghost", needed_hours=1)])
        assert state.warnings[0]["type"] == "deferred_member_unknown"

    def test_deferred_slots_count_toward_quota(self, owner, room, make_member, make_options):
        a = make_member("a", [(0, "10:00", "11:00"), (2, "14:00", "14:30")])
        b = make_member("b", [(0, "10:00", "11:00")])
        result = run_schedule(
            [a, b], owner, make_options(), room, deferred=[DeferredAssignment(member_id="a", needed_hours=0.5)]
        )
        assignment = result.assignments["a"]
        assert assignment.assigned_slot_count == 6
        assert sum(1 for k in assignment.keys if k.date == "2025-09-17") == 3
