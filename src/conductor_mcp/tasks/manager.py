"""Ordered task bookkeeping with dependency queries and progress aggregation."""

from __future__ import annotations

import itertools
import logging
from typing import Any, Callable, Iterable, Mapping

from ..errors import DuplicateTaskIdError, UnresolvableDependencyError
from .models import Task, TaskEvent, TaskProgress, TaskStatus

logger = logging.getLogger(__name__)

TaskListener = Callable[[TaskEvent], None]


class TaskManager:
    """Owns an insertion-ordered collection of tasks.

    Dependency cycles are not detected here: a task in a cycle simply never
    becomes executable.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._ids = itertools.count(1)
        self._listeners: list[TaskListener] = []

    def __len__(self) -> int:
        return len(self._tasks)

    def subscribe(self, listener: TaskListener) -> Callable[[], None]:
        """Register ``listener`` for task events and return its unsubscribe function."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: TaskEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def _next_id(self) -> str:
        while True:
            candidate = f"task_{next(self._ids)}"
            if candidate not in self._tasks:
                return candidate

    def add_task(
        self,
        description: str,
        *,
        id: str | None = None,
        active_form: str | None = None,
        dependencies: Iterable[str] = (),
        metadata: Mapping[str, Any] | None = None,
    ) -> Task:
        task_id = id or self._next_id()
        if task_id in self._tasks:
            raise DuplicateTaskIdError(task_id)

        task = Task(
            id=task_id,
            description=description,
            active_form=active_form or "",
            dependencies=list(dependencies),
            metadata=dict(metadata or {}),
        )
        self._tasks[task_id] = task
        logger.debug("Task added", extra={"task_id": task_id, "dependencies": task.dependencies})
        self._emit(TaskEvent(kind="added", task=task, new_status=task.status))
        return task

    def add_tasks(self, entries: Iterable[str | Mapping[str, Any]]) -> list[Task]:
        """Add several tasks; each entry is a description or a mapping of add_task arguments."""

        tasks: list[Task] = []
        for entry in entries:
            if isinstance(entry, str):
                tasks.append(self.add_task(entry))
                continue
            options = dict(entry)
            description = options.pop("description")
            tasks.append(self.add_task(description, **options))
        return tasks

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def get_all_tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def get_tasks_by_status(self, status: TaskStatus | str) -> list[Task]:
        wanted = TaskStatus(status)
        return [task for task in self._tasks.values() if task.status is wanted]

    def _transition(self, task_id: str, apply: Callable[[Task], None]) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            return False
        old_status = task.status
        apply(task)
        logger.debug(
            "Task updated",
            extra={"task_id": task_id, "old_status": old_status.value, "new_status": task.status.value},
        )
        self._emit(TaskEvent(kind="updated", task=task, old_status=old_status, new_status=task.status))
        return True

    def start_task(self, task_id: str) -> bool:
        return self._transition(task_id, lambda task: task.start())

    def complete_task(self, task_id: str, result: Any = None) -> bool:
        return self._transition(task_id, lambda task: task.complete(result))

    def fail_task(self, task_id: str, error: str | None) -> bool:
        return self._transition(task_id, lambda task: task.fail(error))

    def block_task(self, task_id: str, reason: str | None = None) -> bool:
        return self._transition(task_id, lambda task: task.block(reason))

    def unblock_task(self, task_id: str) -> bool:
        return self._transition(task_id, lambda task: task.unblock())

    def update_task_status(self, task_id: str, status: TaskStatus | str, **data: Any) -> bool:
        """Dispatch to the transition matching ``status``."""

        target = TaskStatus(status)
        if target is TaskStatus.IN_PROGRESS:
            return self.start_task(task_id)
        if target is TaskStatus.COMPLETED:
            return self.complete_task(task_id, data.get("result"))
        if target is TaskStatus.FAILED:
            return self.fail_task(task_id, data.get("error"))
        if target is TaskStatus.BLOCKED:
            return self.block_task(task_id, data.get("reason"))
        return self.unblock_task(task_id)

    def can_execute(self, task: Task) -> bool:
        if task.status is not TaskStatus.PENDING:
            return False
        for dependency_id in task.dependencies:
            dependency = self._tasks.get(dependency_id)
            if dependency is None or dependency.status is not TaskStatus.COMPLETED:
                return False
        return True

    def get_next_executable_task(self) -> Task | None:
        for task in self._tasks.values():
            if self.can_execute(task):
                return task
        return None

    def find_unresolvable_dependencies(self) -> dict[str, list[str]]:
        """Map task ids to dependency ids that no known task carries."""

        missing: dict[str, list[str]] = {}
        for task in self._tasks.values():
            unknown = [dep for dep in task.dependencies if dep not in self._tasks]
            if unknown:
                missing[task.id] = unknown
        return missing

    def ensure_resolvable(self) -> None:
        missing = self.find_unresolvable_dependencies()
        if missing:
            raise UnresolvableDependencyError(missing)

    def get_progress(self) -> TaskProgress:
        counts = {status: 0 for status in TaskStatus}
        for task in self._tasks.values():
            counts[task.status] += 1
        total = len(self._tasks)
        completed = counts[TaskStatus.COMPLETED]
        # Halves round up.
        percentage = (completed * 200 + total) // (2 * total) if total else 0
        return TaskProgress(
            total=total,
            completed=completed,
            in_progress=counts[TaskStatus.IN_PROGRESS],
            failed=counts[TaskStatus.FAILED],
            blocked=counts[TaskStatus.BLOCKED],
            pending=counts[TaskStatus.PENDING],
            percentage=percentage,
        )

    def clear(self) -> None:
        self._tasks.clear()
        self._emit(TaskEvent(kind="cleared"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [task.to_dict() for task in self._tasks.values()],
            "progress": self.get_progress().to_dict(),
        }

    def from_dict(self, data: Mapping[str, Any]) -> "TaskManager":
        """Replace the current tasks with an exported snapshot."""

        self.clear()
        for entry in data.get("tasks", []):
            task = self.add_task(
                entry["description"],
                id=entry.get("id"),
                active_form=entry.get("active_form"),
                dependencies=entry.get("dependencies") or (),
                metadata=entry.get("metadata"),
            )
            task.status = TaskStatus(entry.get("status", TaskStatus.PENDING))
            task.result = entry.get("result")
            task.error = entry.get("error")
        return self


__all__ = ["TaskListener", "TaskManager"]
