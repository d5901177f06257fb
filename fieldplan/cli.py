"""Command-line interface for the field-service planner."""

from __future__ import annotations

import argparse
from datetime import date, datetime

from fieldplan.config import load_config
from fieldplan.io.export_csv import export_suggestions_csv, export_tasks_csv
from fieldplan.io.import_csv import read_employees, read_tasks
from fieldplan.planner import Planner
from fieldplan.runtime import configure_logging
from fieldplan.services.timeplan import parse_time_string
from fieldplan.validator import summarize_suggestions, validate_route


def _build_planner(args: argparse.Namespace) -> Planner:
    cfg = load_config(args.config)
    employees = read_employees(args.employees, default_hours=cfg.default_working_hours)
    tasks = read_tasks(args.tasks)
    day = date.fromisoformat(args.day)
    print(f"[INFO] Loaded {len(employees)} employees and {len(tasks)} tasks for {day.isoformat()}")
    return Planner(employees, tasks, day, config=cfg)


def _cmd_optimize(args: argparse.Namespace) -> None:
    """Optimize routes for the day and optionally apply every suggestion."""
    try:
        planner = _build_planner(args)
        overrides = {"allow_reassignment": True} if args.reassign else None
        suggestions = planner.run_optimization(args.employee or None, settings=overrides)

        for emp_id, failure in planner.orchestrator.failures.items():
            print(f"[ERROR] {emp_id}: {failure}")
        print(summarize_suggestions(suggestions))

        if args.out:
            count = export_suggestions_csv(args.out, suggestions)
            print(f"[OK] Exported {count} suggestions to {args.out}")

        if args.apply:
            settings = planner.config.optimization
            # applying one suggestion can refresh or drop others that share its tasks
            while planner.pending_suggestions:
                suggestion = planner.pending_suggestions[0]
                employee = planner.snapshot.employee(suggestion.employee_id)
                for problem in validate_route(suggestion.optimized_route, employee, settings):
                    print(f"[ERROR] {suggestion.suggestion_id}: {problem}")
                outcome = planner.apply_suggestion(suggestion)
                print(f"[OK] Applied {suggestion.suggestion_id} (schedule version {outcome.snapshot.version})")
                for dropped in outcome.dropped:
                    print(f"[INFO] Dropped {dropped}: no worthwhile change left")
            if args.tasks_out:
                count = export_tasks_csv(args.tasks_out, planner.store.all_tasks())
                print(f"[OK] Exported {count} tasks to {args.tasks_out}")
    except Exception as e:
        print(f"[ERROR] Optimization failed: {e}")
        raise


def _cmd_workload(args: argparse.Namespace) -> None:
    """Print workload and conflicts per employee."""
    try:
        planner = _build_planner(args)
        for emp in planner.snapshot.employees:
            load = planner.workload(emp.employee_id)
            flag = " OVERLOADED" if load.is_overloaded else ""
            print(
                f"{emp.employee_id:<10} {emp.name:<24} {load.total_minutes:>5} min "
                f"{load.percent_of_workday:6.1f}%{flag}"
            )
            for slot, tasks in planner.conflicts(emp.employee_id):
                print(f"    conflict at {slot:%H:%M}: {', '.join(t.task_id for t in tasks)}")
    except Exception as e:
        print(f"[ERROR] Workload report failed: {e}")
        raise


def _cmd_check_move(args: argparse.Namespace) -> None:
    """Validate a move and commit it when allowed (warnings need --confirm)."""
    try:
        planner = _build_planner(args)
        at = datetime.combine(planner.day, parse_time_string(args.at))
        outcome = planner.move_task(args.task, args.to, at, confirm=args.confirm)
        decision = outcome.decision
        print(f"[INFO] Decision: {decision.kind.value}")
        if decision.missing_skills:
            print(f"[INFO] Missing skills: {', '.join(decision.missing_skills)}")
        for warning in decision.warnings:
            print(f"[INFO] {warning.kind.value}: {warning.message}")
        if outcome.committed:
            print(f"[OK] Moved {args.task} to {args.to} at {args.at}")
            if args.tasks_out:
                count = export_tasks_csv(args.tasks_out, planner.store.all_tasks())
                print(f"[OK] Exported {count} tasks to {args.tasks_out}")
        elif decision.requires_confirmation:
            print("[INFO] Not moved: re-run with --confirm to accept the warnings")
    except Exception as e:
        print(f"[ERROR] Move check failed: {e}")
        raise


def _add_inputs(p: argparse.ArgumentParser) -> None:
    p.add_argument("--employees", required=True, help="Path to employees CSV")
    p.add_argument("--tasks", required=True, help="Path to tasks CSV")
    p.add_argument("--day", required=True, help="Planning day (YYYY-MM-DD)")
    p.add_argument("--config", help="Path to config YAML/JSON (optional)")


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    configure_logging("fieldplan")
    parser = argparse.ArgumentParser(
        prog="fieldplan",
        description="Field-service task scheduling and route optimization",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # optimize command
    opt = sub.add_parser("optimize", help="Suggest optimized routes for a day")
    _add_inputs(opt)
    opt.add_argument("--employee", action="append", help="Employee id to optimize (repeatable)")
    opt.add_argument("--reassign", action="store_true", help="Allow moving tasks between employees")
    opt.add_argument("--apply", action="store_true", help="Apply every suggestion")
    opt.add_argument("--out", help="Optional: export suggestions to CSV")
    opt.add_argument("--tasks-out", help="Optional: export the updated tasks to CSV")
    opt.set_defaults(func=_cmd_optimize)

    # workload command
    wl = sub.add_parser("workload", help="Show workload and conflicts per employee")
    _add_inputs(wl)
    wl.set_defaults(func=_cmd_workload)

    # check-move command
    mv = sub.add_parser("check-move", help="Validate moving a task to an employee and time")
    _add_inputs(mv)
    mv.add_argument("--task", required=True, help="Task id")
    mv.add_argument("--to", required=True, help="Target employee id")
    mv.add_argument("--at", required=True, help="New start time (HH:MM)")
    mv.add_argument("--confirm", action="store_true", help="Accept warnings and commit")
    mv.add_argument("--tasks-out", help="Optional: export the updated tasks to CSV")
    mv.set_defaults(func=_cmd_check_move)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
