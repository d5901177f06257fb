"""CSV export utilities for tasks and optimization suggestions."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

import pandas as pd

from fieldplan.domain.models import OptimizationSuggestion, Task
from fieldplan.validator import suggestions_frame

from .import_csv import LIST_SEPARATOR

logger = logging.getLogger(__name__)


def export_tasks_csv(csv_path: str | Path, tasks: Iterable[Task]) -> int:
    """
    Write tasks in the layout ``read_tasks`` accepts.

    Returns:
        Number of tasks written
    """
    rows = [
        {
            "task_id": t.task_id,
            "title": t.title,
            "required_skills": LIST_SEPARATOR.join(sorted(t.required_skills)),
            "lat": t.location.lat,
            "lng": t.location.lng,
            "address": t.address,
            "start_time": t.start_time.isoformat(),
            "end_time": t.end_time.isoformat(),
            "estimated_duration": t.estimated_duration,
            "priority": t.priority.name.lower(),
            "assigned_employees": LIST_SEPARATOR.join(t.assigned_employees),
            "status": t.status.value,
            "documentation_required": t.documentation_required,
        }
        for t in sorted(tasks, key=lambda t: (t.start_time, t.task_id))
    ]
    pd.DataFrame(rows).to_csv(csv_path, index=False)
    logger.info("Exported %d tasks to %s", len(rows), csv_path)
    return len(rows)


def export_suggestions_csv(csv_path: str | Path, suggestions: Sequence[OptimizationSuggestion]) -> int:
    """
    Write one row per suggestion with before/after metrics and proposed order.

    Returns:
        Number of suggestions written
    """
    df = suggestions_frame(suggestions)
    df.to_csv(csv_path, index=False)
    logger.info("Exported %d suggestions to %s", len(df), csv_path)
    return len(df)
