"""I/O utilities for CSV import/export."""

from .import_csv import read_employees, read_tasks
from .export_csv import export_suggestions_csv, export_tasks_csv

__all__ = [
    "read_employees",
    "read_tasks",
    "export_suggestions_csv",
    "export_tasks_csv",
]
