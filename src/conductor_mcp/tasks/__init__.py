"""Task tracking and planning."""

from .manager import TaskManager
from .models import Task, TaskEvent, TaskProgress, TaskStatus
from .planner import TaskPlanner, tool_runner

__all__ = [
    "Task",
    "TaskEvent",
    "TaskManager",
    "TaskPlanner",
    "TaskProgress",
    "TaskStatus",
    "tool_runner",
]
