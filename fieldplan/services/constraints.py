"""Move validation: hard skill constraint, soft conflict and overload constraints."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from fieldplan.domain.models import Employee, Task
from fieldplan.validator import validate_task

from .schedule_index import ScheduleIndex


class DecisionKind(str, Enum):
    ALLOWED = "allowed"
    ALLOWED_WITH_WARNING = "allowed_with_warning"
    REJECTED = "rejected"


class WarningKind(str, Enum):
    TIME_CONFLICT = "time_conflict"
    OVERLOAD = "overload"


class RejectKind(str, Enum):
    MISSING_SKILLS = "missing_skills"


@dataclass(frozen=True)
class MoveWarning:
    kind: WarningKind
    message: str
    conflicting_task_ids: Tuple[str, ...] = ()
    percent_of_workday: Optional[float] = None


@dataclass(frozen=True)
class Decision:
    """Outcome of validating a move. Warnings never block; the caller confirms."""

    kind: DecisionKind
    warnings: Tuple[MoveWarning, ...] = ()
    reason: Optional[RejectKind] = None
    missing_skills: Tuple[str, ...] = ()

    @classmethod
    def allowed(cls) -> "Decision":
        return cls(DecisionKind.ALLOWED)

    @classmethod
    def with_warnings(cls, warnings) -> "Decision":
        warnings = tuple(warnings)
        if not warnings:
            return cls.allowed()
        return cls(DecisionKind.ALLOWED_WITH_WARNING, warnings=warnings)

    @classmethod
    def rejected(cls, reason: RejectKind, missing_skills=()) -> "Decision":
        return cls(DecisionKind.REJECTED, reason=reason, missing_skills=tuple(missing_skills))

    @property
    def is_allowed(self) -> bool:
        return self.kind is not DecisionKind.REJECTED

    @property
    def requires_confirmation(self) -> bool:
        return self.kind is DecisionKind.ALLOWED_WITH_WARNING

    @property
    def warning_kinds(self) -> frozenset:
        return frozenset(w.kind for w in self.warnings)


def validate_move(
    index: ScheduleIndex,
    task: Task,
    from_employee_id: Optional[str],
    to_employee: Employee,
    new_start: datetime,
) -> Decision:
    """
    Decide whether moving ``task`` to ``to_employee`` starting at ``new_start`` is permitted.

    Rules in order:
    1. Required skills missing -> rejected (hard)
    2. Other tasks of the target occupy the slot at ``new_start`` -> TIME_CONFLICT warning
    3. Target's workload after the move exceeds the workday -> OVERLOAD warning

    Raises:
        InvalidTask: If the task data is malformed
    """
    validate_task(task)
    to_id = to_employee.employee_id

    # 1. Skills
    missing = to_employee.missing_skills(task.required_skills)
    if missing:
        return Decision.rejected(RejectKind.MISSING_SKILLS, missing)

    warnings = []

    # 2. Conflicts in the slot at new_start
    conflicting = tuple(t for t in index.tasks_at(to_id, new_start) if t.task_id != task.task_id)
    relocating = to_id != from_employee_id or new_start != task.start_time
    if conflicting and relocating:
        ids = tuple(t.task_id for t in conflicting)
        warnings.append(
            MoveWarning(
                WarningKind.TIME_CONFLICT,
                f"{to_employee.name} already has {', '.join(ids)} at {new_start:%H:%M}",
                conflicting_task_ids=ids,
            )
        )

    # 3. Overload assuming the move is applied
    already_there = any(t.task_id == task.task_id for t in index.tasks_for(to_id))
    extra = 0 if already_there else task.estimated_duration
    load = index.workload(to_id, extra_minutes=extra)
    if load.is_overloaded:
        warnings.append(
            MoveWarning(
                WarningKind.OVERLOAD,
                f"{to_employee.name} would be at {load.percent_of_workday:.0f}% of the workday",
                percent_of_workday=load.percent_of_workday,
            )
        )

    return Decision.with_warnings(warnings)
