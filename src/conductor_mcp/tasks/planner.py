"""Drive a task manager sequentially or with a bounded worker pool."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from ..errors import TaskExecutionError
from ..execution.parallel import ToolCapability
from .manager import TaskManager
from .models import Task, TaskProgress, TaskStatus

if TYPE_CHECKING:
    from ..plans import PlanDefinition

logger = logging.getLogger(__name__)

TaskRunner = Callable[[Task], Awaitable[Any]]


class TaskPlanner:
    """Runs the tasks held by a :class:`TaskManager`."""

    def __init__(self, task_manager: TaskManager | None = None) -> None:
        self.task_manager = task_manager if task_manager is not None else TaskManager()

    def create_plan(self, plan: "PlanDefinition") -> list[Task]:
        """Add every task of ``plan`` to the task manager."""

        tasks = []
        for spec in plan.tasks:
            metadata = {**spec.metadata, "plan_id": plan.id}
            if spec.tool is not None:
                metadata["tool"] = {"name": spec.tool.name, "args": dict(spec.tool.args)}
            tasks.append(
                self.task_manager.add_task(
                    spec.description,
                    id=spec.id,
                    active_form=spec.active_form,
                    dependencies=spec.dependencies,
                    metadata=metadata,
                )
            )
        logger.info("Plan loaded", extra={"plan_id": plan.id, "tasks": len(tasks)})
        return tasks

    async def execute_sequentially(self, run: TaskRunner) -> TaskProgress:
        """Run tasks in insertion order, stopping at the first failure.

        The failing task is marked failed and its exception re-raised.
        """

        manager = self.task_manager
        manager.ensure_resolvable()
        for task in manager.get_all_tasks():
            if task.status is not TaskStatus.PENDING:
                continue
            manager.start_task(task.id)
            try:
                result = await run(task)
            except Exception as exc:
                manager.fail_task(task.id, str(exc))
                logger.warning("Task failed", extra={"task_id": task.id, "error": str(exc)})
                raise
            manager.complete_task(task.id, result)
        return manager.get_progress()

    async def execute_parallel(self, run: TaskRunner, *, max_concurrent: int = 3) -> TaskProgress:
        """Run executable tasks with ``max_concurrent`` workers.

        A failed task is recorded and its dependents stay pending. Workers stop
        once nothing is running and nothing is ready.
        """

        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")

        manager = self.task_manager
        manager.ensure_resolvable()
        changed = asyncio.Condition()
        running = 0

        async def worker() -> None:
            nonlocal running
            while True:
                async with changed:
                    while True:
                        task = manager.get_next_executable_task()
                        if task is not None:
                            break
                        if running == 0:
                            changed.notify_all()
                            return
                        await changed.wait()
                    manager.start_task(task.id)
                    running += 1

                try:
                    result = await run(task)
                except Exception as exc:
                    manager.fail_task(task.id, str(exc))
                    logger.warning("Task failed", extra={"task_id": task.id, "error": str(exc)})
                else:
                    manager.complete_task(task.id, result)

                async with changed:
                    running -= 1
                    changed.notify_all()

        await asyncio.gather(*(worker() for _ in range(max_concurrent)))
        return manager.get_progress()


def tool_runner(executor: ToolCapability) -> TaskRunner:
    """Build a runner that executes the tool call stored in ``task.metadata["tool"]``."""

    async def run(task: Task) -> Any:
        call = task.metadata.get("tool")
        if not call:
            return None
        result = await executor.execute(call["name"], dict(call.get("args") or {}))
        if isinstance(result, dict):
            if result.get("error"):
                raise TaskExecutionError(str(result["error"]))
            if result.get("cancelled"):
                raise TaskExecutionError(f"Tool call '{call['name']}' was not approved")
        return result

    return run


__all__ = ["TaskPlanner", "TaskRunner", "tool_runner"]
