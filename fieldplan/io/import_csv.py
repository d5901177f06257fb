"""CSV import utilities for employees and tasks."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Tuple

import pandas as pd

from fieldplan.domain.models import (
    DEFAULT_WORKING_HOURS,
    Coordinate,
    Employee,
    Priority,
    Task,
    TaskStatus,
    WorkingHours,
)
from fieldplan.services.timeplan import parse_time_string
from fieldplan.validator import validate_tasks

logger = logging.getLogger(__name__)

LIST_SEPARATOR = ";"

EMPLOYEE_COLUMNS = ["employee_id", "name", "skills", "start_lat", "start_lng"]
TASK_COLUMNS = [
    "task_id",
    "title",
    "required_skills",
    "lat",
    "lng",
    "start_time",
    "end_time",
    "estimated_duration",
]


def _split(value) -> Tuple[str, ...]:
    """Split a ``;``-separated cell; empty/NaN cells give an empty tuple."""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ()
    return tuple(part.strip() for part in str(value).split(LIST_SEPARATOR) if part.strip())


def _flag(value, default: bool) -> bool:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return default
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)


def _present(row, column: str) -> bool:
    return column in row and pd.notna(row[column]) and str(row[column]).strip() != ""


def _read(csv_path: str | Path, required: List[str]) -> pd.DataFrame:
    df = pd.read_csv(csv_path, dtype=str, keep_default_na=True)
    # Normalize column names
    df.columns = df.columns.str.lower().str.strip()
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"{csv_path}: missing columns {', '.join(missing)}")
    return df


def read_employees(csv_path: str | Path, default_hours: WorkingHours = DEFAULT_WORKING_HOURS) -> List[Employee]:
    """
    Load employees from CSV.

    Required columns: employee_id, name, skills, start_lat, start_lng.
    Optional: work_start, work_end (HH:MM, else ``default_hours``), current_lat,
    current_lng, is_active.
    """
    df = _read(csv_path, EMPLOYEE_COLUMNS)
    employees = []
    for _, row in df.iterrows():
        hours = default_hours
        if _present(row, "work_start") and _present(row, "work_end"):
            hours = WorkingHours(parse_time_string(row["work_start"]), parse_time_string(row["work_end"]))
        current = None
        if _present(row, "current_lat") and _present(row, "current_lng"):
            current = Coordinate(float(row["current_lat"]), float(row["current_lng"]))
        employees.append(
            Employee(
                employee_id=str(row["employee_id"]).strip(),
                name=str(row["name"]).strip(),
                skills=_split(row["skills"]),
                start_location=Coordinate(float(row["start_lat"]), float(row["start_lng"])),
                working_hours=hours,
                current_location=current,
                is_active=_flag(row.get("is_active"), True),
            )
        )
    logger.info("Read %d employees from %s", len(employees), csv_path)
    return employees


def read_tasks(csv_path: str | Path) -> List[Task]:
    """
    Load tasks from CSV; times are ISO-8601, lists are ``;``-separated.

    Required columns: task_id, title, required_skills, lat, lng, start_time,
    end_time, estimated_duration. Optional: address, priority,
    assigned_employees, status, documentation_required.

    Raises:
        InvalidTask: If a row describes a malformed task
    """
    df = _read(csv_path, TASK_COLUMNS)
    tasks = []
    for _, row in df.iterrows():
        tasks.append(
            Task(
                task_id=str(row["task_id"]).strip(),
                title=str(row["title"]).strip(),
                required_skills=frozenset(_split(row["required_skills"])),
                location=Coordinate(float(row["lat"]), float(row["lng"])),
                address=str(row["address"]).strip() if _present(row, "address") else "",
                start_time=pd.Timestamp(row["start_time"]).to_pydatetime(),
                end_time=pd.Timestamp(row["end_time"]).to_pydatetime(),
                estimated_duration=int(float(row["estimated_duration"])),
                priority=Priority.parse(row["priority"]) if _present(row, "priority") else Priority.MEDIUM,
                assigned_employees=_split(row.get("assigned_employees")),
                status=TaskStatus(str(row["status"]).strip().lower()) if _present(row, "status") else TaskStatus.PENDING,
                documentation_required=_flag(row.get("documentation_required"), False),
            )
        )
    validate_tasks(tasks)
    logger.info("Read %d tasks from %s", len(tasks), csv_path)
    return tasks
