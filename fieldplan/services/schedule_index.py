"""Schedule index: who is doing what, when, on one planning day."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from fieldplan.domain.errors import UnknownEntity
from fieldplan.domain.models import Employee, Task, WorkingHours

from .timeplan import SlotGrid, overlaps

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Workload:
    total_minutes: int
    percent_of_workday: float
    is_overloaded: bool
    capped_efficiency: float


def compute_workload(total_minutes: int, workday_minutes: int) -> Workload:
    percent = (total_minutes / workday_minutes) * 100 if workday_minutes > 0 else 0.0
    return Workload(
        total_minutes=total_minutes,
        percent_of_workday=percent,
        is_overloaded=total_minutes > workday_minutes,
        capped_efficiency=min(percent, 100.0),
    )


class ScheduleIndex:
    """
    Immutable projection of one day's tasks onto the slot grid.

    Built in one pass over the tasks; never mutated afterwards, so readers can
    share it freely while a writer prepares the next snapshot.
    """

    def __init__(
        self,
        day: date,
        employees: Mapping[str, Employee],
        tasks: Mapping[str, Task],
        grid: SlotGrid,
        version: int = 0,
        working_hours_override: Optional[WorkingHours] = None,
    ):
        self.day = day
        self.grid = grid
        self.version = version
        self._employees = dict(employees)
        self._tasks = dict(tasks)
        self._working_hours_override = working_hours_override

        by_employee: Dict[str, List[Task]] = defaultdict(list)
        slots: Dict[Tuple[str, int], List[Task]] = defaultdict(list)
        for task in sorted(self._tasks.values(), key=lambda t: (t.start_time, t.task_id)):
            touched = grid.slots_touching(task.start_time, task.end_time)
            for emp_id in task.assigned_employees:
                by_employee[emp_id].append(task)
                for idx in touched:
                    slots[(emp_id, idx)].append(task)

        self._by_employee = {k: tuple(v) for k, v in by_employee.items()}
        self._slots = {k: tuple(v) for k, v in slots.items()}

    @classmethod
    def build(
        cls,
        tasks: Iterable[Task],
        employees: Iterable[Employee],
        day: date,
        grid: SlotGrid | None = None,
        version: int = 0,
        working_hours_override: Optional[WorkingHours] = None,
    ) -> "ScheduleIndex":
        """Index every task whose window starts on ``day``."""
        day_tasks = {t.task_id: t for t in tasks if t.start_time.date() == day}
        return cls(
            day,
            {e.employee_id: e for e in employees},
            day_tasks,
            grid or SlotGrid(),
            version=version,
            working_hours_override=working_hours_override,
        )

    # ------------------------------------------------------------------ lookups

    @property
    def employees(self) -> Tuple[Employee, ...]:
        return tuple(self._employees.values())

    @property
    def tasks(self) -> Tuple[Task, ...]:
        return tuple(self._tasks.values())

    def employee(self, employee_id: str) -> Employee:
        try:
            return self._employees[employee_id]
        except KeyError:
            raise UnknownEntity("employee", employee_id) from None

    def task(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise UnknownEntity("task", task_id) from None

    def has_task(self, task_id: str) -> bool:
        return task_id in self._tasks

    def tasks_for(self, employee_id: str) -> Tuple[Task, ...]:
        """Tasks assigned to the employee, chronological."""
        return self._by_employee.get(employee_id, ())

    def tasks_at(self, employee_id: str, when: datetime) -> Tuple[Task, ...]:
        """Tasks of the employee whose interval intersects the slot starting at ``when``."""
        idx = self.grid.slot_index(when) if when.date() == self.day else None
        if idx is not None:
            return self._slots.get((employee_id, idx), ())
        return self.tasks_overlapping(employee_id, when, when + self.grid.slot_length)

    def tasks_overlapping(
        self,
        employee_id: str,
        start: datetime,
        end: datetime,
        exclude: Optional[str] = None,
    ) -> Tuple[Task, ...]:
        return tuple(
            t
            for t in self.tasks_for(employee_id)
            if t.task_id != exclude and overlaps(t.start_time, t.end_time, start, end)
        )

    def has_conflict(self, employee_id: str, when: datetime) -> bool:
        return len(self.tasks_at(employee_id, when)) > 1

    def conflicts(self, employee_id: str) -> List[Tuple[datetime, Tuple[Task, ...]]]:
        """Every grid slot where the employee has more than one task."""
        out = []
        for idx, slot in enumerate(self.grid.slots(self.day)):
            tasks = self._slots.get((employee_id, idx), ())
            if len(tasks) > 1:
                out.append((slot, tasks))
        return out

    # ------------------------------------------------------------------ workload

    def workday_minutes(self, employee_id: str) -> int:
        hours = self._working_hours_override or self.employee(employee_id).working_hours
        return hours.minutes

    def workload(self, employee_id: str, extra_minutes: int = 0) -> Workload:
        """
        Aggregate estimated minutes assigned to the employee that day.

        Overlapping tasks double-count: this is load, not wall-clock occupancy.
        ``extra_minutes`` evaluates a hypothetical change without rebuilding.
        """
        total = sum(t.estimated_duration for t in self.tasks_for(employee_id)) + extra_minutes
        return compute_workload(total, self.workday_minutes(employee_id))


class ScheduleStore:
    """
    Owner of the authoritative task list for the planning day.

    Single writer, many readers: ``snapshot`` is swapped atomically after each
    commit so in-flight readers keep a consistent view.
    """

    def __init__(
        self,
        employees: Iterable[Employee],
        tasks: Iterable[Task],
        day: date,
        grid: SlotGrid | None = None,
        working_hours_override: Optional[WorkingHours] = None,
        validate: Optional[Callable[[Task], None]] = None,
    ):
        self.day = day
        self.grid = grid or SlotGrid()
        self._employees = {e.employee_id: e for e in employees}
        self._working_hours_override = working_hours_override
        self._validate = validate
        self._lock = threading.Lock()
        self._tasks: Dict[str, Task] = {}
        self._snapshot: Optional[ScheduleIndex] = None
        self.replace_tasks(tasks)

    @property
    def snapshot(self) -> ScheduleIndex:
        return self._snapshot

    @property
    def employees(self) -> Tuple[Employee, ...]:
        return tuple(self._employees.values())

    def all_tasks(self) -> Tuple[Task, ...]:
        return tuple(self._tasks.values())

    def index_for(self, day: date) -> ScheduleIndex:
        """Snapshot for the store's day, or a fresh read-only index for another day."""
        current = self._snapshot
        if day == current.day:
            return current
        return ScheduleIndex.build(
            self._tasks.values(),
            self._employees.values(),
            day,
            self.grid,
            version=current.version,
            working_hours_override=self._working_hours_override,
        )

    def _check_tasks(self, tasks: Iterable[Task]) -> None:
        if self._validate is None:
            return
        for task in tasks:
            self._validate(task)

    def _rebuild(self, tasks: Dict[str, Task], version: int) -> ScheduleIndex:
        return ScheduleIndex.build(
            tasks.values(),
            self._employees.values(),
            self.day,
            self.grid,
            version=version,
            working_hours_override=self._working_hours_override,
        )

    def replace_tasks(self, tasks: Iterable[Task]) -> ScheduleIndex:
        """Rebuild from a new authoritative task list."""
        new_tasks = {t.task_id: t for t in tasks}
        self._check_tasks(new_tasks.values())
        with self._lock:
            version = self._snapshot.version + 1 if self._snapshot else 0
            snapshot = self._rebuild(new_tasks, version)
            self._tasks = new_tasks
            self._snapshot = snapshot
        logger.debug("Schedule rebuilt: %d tasks, version %d", len(new_tasks), version)
        return snapshot

    def commit(
        self,
        updated: Iterable[Task],
        check: Optional[Callable[[ScheduleIndex], None]] = None,
    ) -> ScheduleIndex:
        """
        Replace the given tasks (by id) in one atomic step.

        Args:
            updated: New versions of existing tasks
            check: Optional guard run against the live snapshot under the writer
                lock; raising aborts the commit with nothing changed

        Returns:
            The new snapshot
        """
        updated = list(updated)
        self._check_tasks(updated)
        with self._lock:
            for task in updated:
                if task.task_id not in self._tasks:
                    raise UnknownEntity("task", task.task_id)
            if check is not None:
                check(self._snapshot)
            new_tasks = dict(self._tasks)
            for task in updated:
                new_tasks[task.task_id] = task
            snapshot = self._rebuild(new_tasks, self._snapshot.version + 1)
            self._tasks = new_tasks
            self._snapshot = snapshot
        logger.debug("Committed %d task updates, version %d", len(updated), snapshot.version)
        return snapshot
