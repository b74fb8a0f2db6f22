"""Task models for planned agent work."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from ..errors import InvalidOperationError


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class Task:
    """A trackable unit of planned work."""

    id: str
    description: str
    active_form: str = ""
    status: TaskStatus = TaskStatus.PENDING
    dependencies: list[str] = field(default_factory=list)
    result: Any = None
    error: str | None = None
    start_time: int | None = None
    end_time: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.active_form:
            self.active_form = f"{self.description}..."
        self.status = TaskStatus(self.status)

    def _require(self, action: str, *allowed: TaskStatus) -> None:
        if self.status not in allowed:
            raise InvalidOperationError(
                f"Cannot {action} task '{self.id}' from status {self.status.value}"
            )

    def start(self) -> None:
        self._require("start", TaskStatus.PENDING)
        self.status = TaskStatus.IN_PROGRESS
        self.start_time = _now_ms()

    def complete(self, result: Any = None) -> None:
        self._require("complete", TaskStatus.IN_PROGRESS)
        self.status = TaskStatus.COMPLETED
        self.result = result
        self.end_time = _now_ms()

    def fail(self, error: str | None) -> None:
        self._require("fail", TaskStatus.IN_PROGRESS)
        self.status = TaskStatus.FAILED
        self.error = error
        self.end_time = _now_ms()

    def block(self, reason: str | None) -> None:
        self._require("block", TaskStatus.PENDING)
        self.status = TaskStatus.BLOCKED
        self.error = reason

    def unblock(self) -> None:
        self._require("unblock", TaskStatus.BLOCKED)
        self.status = TaskStatus.PENDING
        self.error = None

    @property
    def duration_ms(self) -> int:
        if self.start_time is None:
            return 0
        end = self.end_time if self.end_time is not None else _now_ms()
        return end - self.start_time

    @property
    def label(self) -> str:
        """Display text: the active form while running, the description otherwise."""

        return self.active_form if self.status is TaskStatus.IN_PROGRESS else self.description

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "active_form": self.active_form,
            "status": self.status.value,
            "dependencies": list(self.dependencies),
            "result": self.result,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "metadata": dict(self.metadata),
        }


@dataclass(slots=True)
class TaskProgress:
    total: int
    completed: int
    in_progress: int
    failed: int
    blocked: int
    pending: int
    percentage: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "in_progress": self.in_progress,
            "failed": self.failed,
            "blocked": self.blocked,
            "pending": self.pending,
            "percentage": self.percentage,
        }


@dataclass(slots=True)
class TaskEvent:
    """Notification delivered to task manager subscribers."""

    kind: Literal["added", "updated", "cleared"]
    task: Task | None = None
    old_status: TaskStatus | None = None
    new_status: TaskStatus | None = None


__all__ = ["Task", "TaskEvent", "TaskProgress", "TaskStatus"]
