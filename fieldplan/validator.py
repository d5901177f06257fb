from __future__ import annotations

from typing import Iterable, List, Sequence

import pandas as pd

from fieldplan.domain.errors import InvalidTask
from fieldplan.domain.models import Employee, OptimizationSuggestion, Route, Task


def validate_task(task: Task) -> None:
    """Reject malformed task data before it reaches the index or optimizer."""
    if not task.task_id:
        raise InvalidTask(str(task.task_id), "missing task id")
    if task.estimated_duration is None or not task.estimated_duration > 0:
        raise InvalidTask(task.task_id, f"estimated duration must be positive, got {task.estimated_duration}")
    if task.end_time <= task.start_time:
        raise InvalidTask(
            task.task_id,
            f"end time {task.end_time.isoformat()} is not after start time {task.start_time.isoformat()}",
        )
    for label, value in (("lat", task.location.lat), ("lng", task.location.lng)):
        if value != value:  # NaN
            raise InvalidTask(task.task_id, f"location {label} is NaN")
    if not -90.0 <= task.location.lat <= 90.0 or not -180.0 <= task.location.lng <= 180.0:
        raise InvalidTask(task.task_id, f"location out of range: {task.location}")


def validate_tasks(tasks: Iterable[Task]) -> None:
    seen = set()
    for task in tasks:
        validate_task(task)
        if task.task_id in seen:
            raise InvalidTask(task.task_id, "duplicate task id")
        seen.add(task.task_id)


def validate_route(route: Route, employee: Employee, settings) -> List[str]:
    """
    Check a computed route against hard constraints.

    Returns:
        List of violation messages (empty when the route is valid)
    """
    errors: List[str] = []
    hours = settings.working_hours_for(employee)
    day_start, day_end = hours.bounds(route.day)

    prev_end = None
    for stop in route.stops:
        task = stop.task
        if not employee.has_skills(task.required_skills):
            errors.append(f"{task.task_id}: employee {employee.employee_id} lacks required skills")
        if stop.service_start < day_start or stop.service_end > day_end:
            errors.append(f"{task.task_id}: service outside working hours")
        if prev_end is not None and stop.service_start < prev_end:
            errors.append(f"{task.task_id}: overlaps previous stop")
        if settings.respect_time_windows and not (task.start_time <= stop.service_start < task.end_time):
            errors.append(f"{task.task_id}: service start outside time window")
        if settings.max_travel_time is not None and stop.travel_minutes > settings.max_travel_time + 1e-9:
            errors.append(f"{task.task_id}: travel leg exceeds {settings.max_travel_time} minutes")
        prev_end = stop.service_end
    return errors


def suggestions_frame(suggestions: Sequence[OptimizationSuggestion]) -> pd.DataFrame:
    rows = []
    for s in suggestions:
        rows.append(
            {
                "suggestion_id": s.suggestion_id,
                "employee_id": s.employee_id,
                "employee_name": s.employee_name,
                "stops": len(s.optimized_route.stops),
                "current_order": " > ".join(s.current_route.task_ids),
                "optimized_order": " > ".join(s.optimized_route.task_ids),
                "current_km": round(s.current_route.total_distance_km, 2),
                "optimized_km": round(s.optimized_route.total_distance_km, 2),
                "km_saved": round(s.improvements.distance_saved_m / 1000.0, 2),
                "minutes_saved": round(s.improvements.time_saved_min, 1),
                "efficiency_gain": round(s.improvements.efficiency_gain, 1),
                "tasks_recovered": s.improvements.tasks_recovered,
                "transfers": ";".join(
                    f"{t.task_id}:{t.from_employee_id}->{t.to_employee_id}" for t in s.transfers
                ),
                "unscheduled": ";".join(s.optimized_route.unscheduled_ids),
            }
        )
    return pd.DataFrame(rows)


def summarize_suggestions(suggestions: Sequence[OptimizationSuggestion]) -> str:
    if not suggestions:
        return "No suggestions."
    df = suggestions_frame(suggestions)
    lines = ["Suggestions per employee:"]
    lines.append(
        df[["employee_id", "stops", "current_km", "optimized_km", "km_saved", "minutes_saved", "efficiency_gain"]]
        .set_index("employee_id")
        .to_string()
    )
    lines.append("")
    lines.append(
        "Total: {:.2f} km saved, {:.1f} min saved, {:.1f} efficiency points".format(
            df["km_saved"].sum(), df["minutes_saved"].sum(), df["efficiency_gain"].sum()
        )
    )
    recovered = int(df["tasks_recovered"].sum())
    if recovered:
        lines.append(f"{recovered} previously unscheduled task(s) fit into the proposed routes")
    unscheduled = df[df["unscheduled"] != ""]
    if not unscheduled.empty:
        lines.append("")
        lines.append("Unscheduled tasks:")
        lines.append(unscheduled[["employee_id", "unscheduled"]].set_index("employee_id").to_string())
    return "\n".join(lines)
