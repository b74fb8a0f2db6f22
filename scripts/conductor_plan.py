"""Conductor plan CLI: list, inspect and run YAML task plans."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from conductor_mcp.config import ConductorSettings
from conductor_mcp.errors import ConductorError
from conductor_mcp.plans import PlanLoadError, PlanLoader
from conductor_mcp.tasks import TaskManager, TaskPlanner, tool_runner
from conductor_mcp.tools import build_executor


def load_plans(args: argparse.Namespace) -> PlanLoader:
    paths = [Path(path) for path in args.path] if args.path else ConductorSettings().plan_paths
    return PlanLoader(paths)


def cmd_plans(args: argparse.Namespace) -> None:
    loader = load_plans(args)
    try:
        sources = loader.discover()
    except PlanLoadError as exc:
        print(f"Plan load failed: {exc}")
        raise SystemExit(1)
    if args.json:
        payload = [{**source.plan.model_dump(), **source.to_dict()} for source in sources.values()]
        print(json.dumps(payload, indent=2))
    else:
        for source in sources.values():
            plan = source.plan
            print(f"{plan.id} [{len(plan.tasks)} tasks] {plan.title}")


def cmd_show(args: argparse.Namespace) -> None:
    loader = load_plans(args)
    try:
        source = loader.locate(args.plan_id)
    except PlanLoadError as exc:
        print(f"Plan load failed: {exc}")
        raise SystemExit(1)

    plan = source.plan
    print(f"{plan.id}: {plan.title} ({source.path})")
    for path in source.shadowed:
        print(f"  overrides {path}")
    for task in plan.tasks:
        depends = f" <- {', '.join(task.dependencies)}" if task.dependencies else ""
        tool = f" ({task.tool.name})" if task.tool else ""
        print(f"{task.id}{tool}: {task.description}{depends}")


def cmd_run(args: argparse.Namespace) -> None:
    loader = load_plans(args)
    try:
        plan = loader.get(args.plan_id)
    except PlanLoadError as exc:
        print(f"Plan load failed: {exc}")
        raise SystemExit(1)

    settings = ConductorSettings()
    executor = build_executor(settings)
    planner = TaskPlanner(TaskManager())
    planner.create_plan(plan)
    run = tool_runner(executor)

    failure: str | None = None
    try:
        if args.sequential:
            progress = asyncio.run(planner.execute_sequentially(run))
        else:
            max_concurrent = args.max_concurrent or settings.max_concurrent
            progress = asyncio.run(planner.execute_parallel(run, max_concurrent=max_concurrent))
    except ConductorError as exc:
        failure = str(exc)
        progress = planner.task_manager.get_progress()

    tasks = planner.task_manager.get_all_tasks()
    if args.json:
        payload = {
            "plan_id": plan.id,
            "progress": progress.to_dict(),
            "tasks": [task.to_dict() for task in tasks],
            "error": failure,
        }
        print(json.dumps(payload, indent=2, default=str))
    else:
        for task in tasks:
            suffix = f" - {task.error}" if task.error else ""
            print(f"{task.id} [{task.status.value}]{suffix}")
        print(f"{progress.completed}/{progress.total} completed ({progress.percentage}%)")
        if failure:
            print(f"Run stopped: {failure}")

    if failure or progress.failed:
        raise SystemExit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Conductor plan runner")
    parser.add_argument(
        "--path",
        action="append",
        default=[],
        help="Plan directory to search (repeatable); defaults to CONDUCTOR_PLAN_PATHS",
    )
    sub = parser.add_subparsers(dest="cmd")

    p_plans = sub.add_parser("plans", help="List available plans")
    p_plans.add_argument("--json", action="store_true", help="Output JSON")
    p_plans.set_defaults(func=cmd_plans)

    p_show = sub.add_parser("show", help="Show the tasks of a plan")
    p_show.add_argument("plan_id")
    p_show.set_defaults(func=cmd_show)

    p_run = sub.add_parser("run", help="Execute the tool calls of a plan")
    p_run.add_argument("plan_id")
    p_run.add_argument("--sequential", action="store_true", help="Run tasks one at a time, stopping on failure")
    p_run.add_argument(
        "--max-concurrent",
        type=int,
        default=None,
        help="Worker count for parallel runs; defaults to CONDUCTOR_MAX_CONCURRENT",
    )
    p_run.add_argument("--json", action="store_true", help="Output JSON")
    p_run.set_defaults(func=cmd_run)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
