"""Tests for tied-priority conflict detection."""

from datetime import date

from scheduling_core.conflicts import identify_conflicts
from scheduling_core.state import Grid
from scheduling_core.time_utils import SlotKey

DAY = date(2025, 9, 16)


def _grid(*cells):
    grid = Grid()
    for start, entries in cells:
        cell = grid.cell(DAY, start)
        for member_id, priority in entries:
            cell.add(member_id, priority)
    return grid


class TestIdentifyConflicts:
    def test_tie_at_top_priority_is_conflict(self):
        grid = _grid((600, [("a", 2), ("b", 2)]))
        report = identify_conflicts(grid, "owner")
        assert len(report.conflicts) == 1
        record = report.conflicts[0]
        assert record.slot_key == SlotKey("2025-09-16", 600)
        assert set(record.competing_member_ids) == {"a", "b"}
        assert record.priority_level == 2

    def test_clear_winner_is_not_conflict(self):
        grid = _grid((600, [("a", 3), ("b", 2)]))
        assert identify_conflicts(grid, "owner").conflicts == []

    def test_tie_below_top_is_not_conflict(self):
        grid = _grid((600, [("a", 2), ("b", 2), ("c", 3)]))
        assert identify_conflicts(grid, "owner").conflicts == []

    def test_single_member_never_conflicts(self):
        grid = _grid((600, [("a", 2)]))
        assert identify_conflicts(grid, "owner").conflicts == []

    def test_assigned_cells_skipped(self):
        grid = _grid((600, [("a", 2), ("b", 2)]), (610, [("a", 2), ("b", 2)]))
        grid[SlotKey("2025-09-16", 600)].assigned_to = "a"
        report = identify_conflicts(grid, "owner")
        assert [c.slot_key.start for c in report.conflicts] == [610]

    def test_owner_entries_ignored(self):
        grid = Grid()
        cell = grid.cell(DAY, 600)
        cell.add("owner", 3, is_owner=True)
        cell.add("a", 2)
        assert identify_conflicts(grid, "owner").conflicts == []

    def test_available_slot_counts(self):
        grid = _grid((600, [("a", 2), ("b", 1)]), (610, [("a", 2)]))
        report = identify_conflicts(grid, "owner")
        assert report.member_available_slot_counts == {"a": 2, "b": 1}

    def test_report_never_assigns(self):
        grid = _grid((600, [("a", 2), ("b", 2)]))
        identify_conflicts(grid, "owner")
        assert grid[SlotKey("2025-09-16", 600)].assigned_to is None

    def test_to_dict(self):
        grid = _grid((600, [("a", 2), ("b", 2)]))
        payload = identify_conflicts(grid, "owner").to_dict()
        assert payload["conflicts"][0]["slot_key"] == "2025-09-16-10:00"
