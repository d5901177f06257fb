"""Domain models for field-service planning."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from enum import Enum, IntEnum
from typing import Dict, FrozenSet, Optional, Tuple


class Priority(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    URGENT = 4

    @classmethod
    def parse(cls, value) -> "Priority":
        if isinstance(value, Priority):
            return value
        if isinstance(value, int):
            return cls(value)
        return cls[str(value).strip().upper()]


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Coordinate:
    """WGS84 point."""

    lat: float
    lng: float


@dataclass(frozen=True)
class WorkingHours:
    """Daily availability interval (time of day)."""

    start: time
    end: time

    def __post_init__(self):
        if not self.start < self.end:
            raise ValueError(f"Working hours start {self.start} must be before end {self.end}")

    @property
    def minutes(self) -> int:
        return (self.end.hour * 60 + self.end.minute) - (self.start.hour * 60 + self.start.minute)

    def bounds(self, day: date) -> Tuple[datetime, datetime]:
        return datetime.combine(day, self.start), datetime.combine(day, self.end)


DEFAULT_WORKING_HOURS = WorkingHours(time(8, 0), time(16, 0))


@dataclass(frozen=True)
class Employee:
    """Employee with ordered skill tags and a home/start location."""

    employee_id: str
    name: str
    skills: Tuple[str, ...]
    start_location: Coordinate
    working_hours: WorkingHours = DEFAULT_WORKING_HOURS
    current_location: Optional[Coordinate] = None
    is_active: bool = True

    def has_skills(self, required) -> bool:
        return set(required) <= set(self.skills)

    def missing_skills(self, required) -> Tuple[str, ...]:
        have = set(self.skills)
        return tuple(sorted(s for s in required if s not in have))


@dataclass(frozen=True)
class Task:
    """A field-service task with a fixed window on the planning day.

    ``estimated_duration`` is in minutes and may exceed the window length.
    ``assigned_employees`` normally holds one id but multi-employee tasks are
    supported.
    """

    task_id: str
    title: str
    required_skills: FrozenSet[str]
    location: Coordinate
    address: str
    start_time: datetime
    end_time: datetime
    estimated_duration: int
    priority: Priority = Priority.MEDIUM
    assigned_employees: Tuple[str, ...] = ()
    status: TaskStatus = TaskStatus.PENDING
    documentation_required: bool = False

    @property
    def day(self) -> date:
        return self.start_time.date()

    def is_assigned_to(self, employee_id: str) -> bool:
        return employee_id in self.assigned_employees

    @property
    def is_routable(self) -> bool:
        """Cancelled and completed tasks take no place in a route."""
        return self.status not in (TaskStatus.CANCELLED, TaskStatus.COMPLETED)

    def with_assignment(self, from_employee_id: Optional[str], to_employee_id: str) -> "Task":
        """Swap ``from_employee_id`` for ``to_employee_id``, keeping order and co-workers."""
        assigned = [e for e in self.assigned_employees if e != from_employee_id]
        if to_employee_id not in assigned:
            if from_employee_id in self.assigned_employees:
                assigned.insert(self.assigned_employees.index(from_employee_id), to_employee_id)
            else:
                assigned.append(to_employee_id)
        return replace(self, assigned_employees=tuple(assigned))

    def moved_to(self, new_start: datetime) -> "Task":
        """Shift the whole window so it starts at ``new_start``."""
        return replace(self, start_time=new_start, end_time=new_start + (self.end_time - self.start_time))

    def retimed(self, service_start: datetime) -> "Task":
        """Pin the task to a planned service start."""
        return replace(
            self,
            start_time=service_start,
            end_time=service_start + timedelta(minutes=self.estimated_duration),
        )


@dataclass(frozen=True)
class RouteStop:
    task: Task
    arrival: datetime
    service_start: datetime
    service_end: datetime
    travel_meters: float
    travel_minutes: float
    wait_minutes: float = 0.0
    late_minutes: float = 0.0


@dataclass(frozen=True)
class UnscheduledTask:
    """A task the route could not serve, with the constraint that blocked it."""

    task: Task
    reason: str


@dataclass(frozen=True)
class Route:
    """Ordered tasks of one employee on one day with derived metrics."""

    employee_id: str
    day: date
    stops: Tuple[RouteStop, ...]
    unscheduled: Tuple[UnscheduledTask, ...] = ()
    total_distance_m: float = 0.0
    total_duration_min: float = 0.0
    travel_min: float = 0.0
    service_min: float = 0.0
    elapsed_min: float = 0.0
    late_min: float = 0.0
    efficiency: float = 0.0
    cost: float = 0.0

    @property
    def task_ids(self) -> Tuple[str, ...]:
        return tuple(stop.task.task_id for stop in self.stops)

    @property
    def tasks(self) -> Tuple[Task, ...]:
        return tuple(stop.task for stop in self.stops)

    @property
    def unscheduled_ids(self) -> Tuple[str, ...]:
        return tuple(u.task.task_id for u in self.unscheduled)

    @property
    def total_distance_km(self) -> float:
        return self.total_distance_m / 1000.0


@dataclass(frozen=True)
class Improvements:
    """Savings of a proposed route; ``tasks_recovered`` counts extra tasks it serves."""

    distance_saved_m: float = 0.0
    time_saved_min: float = 0.0
    efficiency_gain: float = 0.0
    cost_saved: float = 0.0
    tasks_recovered: int = 0

    def __add__(self, other: "Improvements") -> "Improvements":
        return Improvements(
            distance_saved_m=self.distance_saved_m + other.distance_saved_m,
            time_saved_min=self.time_saved_min + other.time_saved_min,
            efficiency_gain=self.efficiency_gain + other.efficiency_gain,
            cost_saved=self.cost_saved + other.cost_saved,
            tasks_recovered=self.tasks_recovered + other.tasks_recovered,
        )


@dataclass(frozen=True)
class TaskTransfer:
    task_id: str
    from_employee_id: str
    to_employee_id: str


@dataclass(frozen=True)
class OptimizationSuggestion:
    """Current vs proposed route for one employee, pending human approval.

    ``basis`` holds, per touched employee, the tasks the suggestion was computed
    from; the suggestion is stale as soon as the schedule no longer matches it.
    ``receiver_routes`` carries (current, proposed) routes of employees that
    receive tasks through ``transfers``.
    """

    suggestion_id: str
    employee_id: str
    employee_name: str
    current_route: Route
    optimized_route: Route
    improvements: Improvements
    transfers: Tuple[TaskTransfer, ...] = ()
    receiver_routes: Tuple[Tuple[Route, Route], ...] = ()
    basis: Dict[str, Tuple[Task, ...]] = field(default_factory=dict, compare=False)

    @property
    def employee_ids(self) -> Tuple[str, ...]:
        return (self.employee_id,) + tuple(current.employee_id for current, _ in self.receiver_routes)
