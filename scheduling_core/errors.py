"""Exception types raised by the scheduling engine."""

from __future__ import annotations


class SchedulingCoreError(Exception):
    """Base class for engine errors."""


class InvalidInputError(SchedulingCoreError, ValueError):
    """Members, owner or options are structurally invalid. Raised before any computation."""


class SchedulingError(SchedulingCoreError, RuntimeError):
    """An internal invariant was about to be broken (double assignment, over quota)."""


class TravelTimeLookupError(SchedulingCoreError):
    """A distance-matrix backend could not answer. Callers fall back to defaults."""
