"""Domain models and errors."""

from .errors import (
    InvalidTask,
    OptimizationCancelled,
    PlanningError,
    ProviderUnavailable,
    StaleSuggestion,
    UnassignableTask,
    UnknownEntity,
)
from .models import (
    DEFAULT_WORKING_HOURS,
    Coordinate,
    Employee,
    Improvements,
    OptimizationSuggestion,
    Priority,
    Route,
    RouteStop,
    Task,
    TaskStatus,
    TaskTransfer,
    UnscheduledTask,
    WorkingHours,
)

__all__ = [
    "Coordinate",
    "DEFAULT_WORKING_HOURS",
    "Employee",
    "Improvements",
    "InvalidTask",
    "OptimizationCancelled",
    "OptimizationSuggestion",
    "PlanningError",
    "Priority",
    "ProviderUnavailable",
    "Route",
    "RouteStop",
    "StaleSuggestion",
    "Task",
    "TaskStatus",
    "TaskTransfer",
    "UnassignableTask",
    "UnknownEntity",
    "UnscheduledTask",
    "WorkingHours",
]
