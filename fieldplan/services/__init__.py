"""Services for schedule indexing, move validation, distances and route scoring."""

from .constraints import Decision, DecisionKind, MoveWarning, RejectKind, WarningKind, validate_move
from .distance import (
    DistanceMatrix,
    DistanceProvider,
    FallbackDistanceProvider,
    HaversineProvider,
    OsrmDistanceProvider,
    TravelEstimate,
    build_provider,
)
from .schedule_index import ScheduleIndex, ScheduleStore, Workload
from .scoring import RouteProblem, compare_routes
from .timeplan import SlotGrid

__all__ = [
    "Decision",
    "DecisionKind",
    "MoveWarning",
    "RejectKind",
    "WarningKind",
    "validate_move",
    "DistanceMatrix",
    "DistanceProvider",
    "FallbackDistanceProvider",
    "HaversineProvider",
    "OsrmDistanceProvider",
    "TravelEstimate",
    "build_provider",
    "ScheduleIndex",
    "ScheduleStore",
    "Workload",
    "RouteProblem",
    "compare_routes",
    "SlotGrid",
]
