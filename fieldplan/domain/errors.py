"""Error taxonomy for planning operations."""

from __future__ import annotations

from typing import Dict, Iterable, List


class PlanningError(Exception):
    """Base class for all planning errors."""


class InvalidTask(PlanningError, ValueError):
    """Task data is malformed (non-positive duration, end before start, ...)."""

    def __init__(self, task_id: str, reason: str):
        self.task_id = task_id
        self.reason = reason
        super().__init__(f"Invalid task {task_id}: {reason}")


class UnassignableTask(PlanningError):
    """The optimizer was given tasks the employee cannot perform at all."""

    def __init__(self, employee_id: str, missing: Dict[str, List[str]]):
        self.employee_id = employee_id
        self.missing = missing
        details = "; ".join(f"{tid} needs {', '.join(skills)}" for tid, skills in sorted(missing.items()))
        super().__init__(f"Employee {employee_id} cannot perform tasks: {details}")

    @property
    def task_ids(self) -> List[str]:
        return sorted(self.missing)


class ProviderUnavailable(PlanningError):
    """Distance provider could not be reached or returned an unusable answer."""


class StaleSuggestion(PlanningError):
    """A suggestion no longer matches the current schedule."""

    def __init__(self, suggestion_id: str, employee_ids: Iterable[str]):
        self.suggestion_id = suggestion_id
        self.employee_ids = tuple(sorted(employee_ids))
        super().__init__(
            f"Suggestion {suggestion_id} is stale: schedule changed for {', '.join(self.employee_ids)}"
        )


class MoveInvalidated(PlanningError):
    """The schedule changed between validating a move and committing it."""

    def __init__(self, task_id: str, decision):
        self.task_id = task_id
        self.decision = decision
        super().__init__(f"Move of {task_id} no longer holds: {decision.kind.value}")


class OptimizationCancelled(PlanningError):
    """Raised inside an optimization job once its cancel event is set."""


class UnknownEntity(PlanningError, KeyError):
    """Unknown task or employee id."""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"Unknown {kind}: {entity_id}")

    def __str__(self) -> str:
        return self.args[0]
