"""Strategy dispatcher for slot assignment.

Routes the transport mode to an assignment strategy:
  - normal:                              time-order contiguous blocks
  - transit, driving, walking, bicycling: travel-aware nearest-first chain
"""

from __future__ import annotations

from typing import Protocol

from .models import Member, TransportMode
from .state import Grid, PlacementContext, PlacementResult, SchedulingState
from .time_order import TimeOrderStrategy
from .transit import TransitStrategy
from .travel_time import TravelTimeProvider


class AssignmentStrategy(Protocol):
    name: str

    def assign(self, grid: Grid, member: Member, context: PlacementContext) -> PlacementResult: ...

    def run(self, state: SchedulingState) -> SchedulingState: ...


def select_strategy(
    transport_mode: TransportMode | str,
    *,
    travel_time_provider: TravelTimeProvider | None = None,
) -> AssignmentStrategy:
    mode = TransportMode.parse(transport_mode)
    if mode is TransportMode.NORMAL:
        return TimeOrderStrategy()
    return TransitStrategy(travel_time_provider)


def run_strategy(state: SchedulingState, *, travel_time_provider: TravelTimeProvider | None = None) -> SchedulingState:
    """Run the strategy matching the state's transport mode."""
    strategy = select_strategy(state.options.transport_mode, travel_time_provider=travel_time_provider)
    state.record("strategy_selected", strategy=strategy.name, transport_mode=state.options.transport_mode.value)
    return strategy.run(state)
