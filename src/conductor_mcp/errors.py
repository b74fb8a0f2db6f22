"""Exception hierarchy shared across Conductor components."""

from __future__ import annotations

from typing import Any, Sequence


class ConductorError(RuntimeError):
    """Base class for Conductor errors."""


class InvalidDirectoryError(ConductorError):
    """Raised when a ``cd`` target is missing or not a directory."""


class CommandTimeoutError(ConductorError):
    """Raised when a subprocess outlives its timeout and is terminated."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Command timed out after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class BufferOverflowError(ConductorError):
    """Raised when a subprocess produces more output than the buffer cap."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Command output exceeded {limit} bytes")
        self.limit = limit


class UnknownToolError(ConductorError):
    """Raised when a tool name has no registered handler."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ProcessNotFoundError(ConductorError):
    """Raised for operations on an unknown background process id."""

    def __init__(self, process_id: str) -> None:
        super().__init__(f"Process not found: {process_id}")
        self.process_id = process_id


class DuplicateTaskIdError(ConductorError):
    """Raised when a task is added with an id that already exists."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task '{task_id}' already exists")
        self.task_id = task_id


class UnresolvableDependencyError(ConductorError):
    """Raised when tasks depend on ids the task manager does not know."""

    def __init__(self, missing: dict[str, list[str]]) -> None:
        details = ", ".join(f"{task_id} -> {', '.join(deps)}" for task_id, deps in missing.items())
        super().__init__(f"Tasks reference unknown dependencies: {details}")
        self.missing = missing


class CircularOrMissingDependencyError(ConductorError):
    """Raised when a dependency-gated batch can no longer make progress."""

    def __init__(self, pending: Sequence[int], results: Sequence[Any]) -> None:
        super().__init__(
            "Cannot execute tools: circular or missing dependencies "
            f"(stuck calls: {', '.join(str(index) for index in pending)})"
        )
        self.pending = list(pending)
        self.results = list(results)


class ChainFailureError(ConductorError):
    """Raised when a chain step produces a failure result."""

    def __init__(self, step: int, message: str) -> None:
        super().__init__(f"Chain failed at step {step + 1}: {message}")
        self.step = step
        self.reason = message


class InvalidOperationError(ConductorError):
    """Raised for operations that are never allowed, such as deleting the default session."""


class TaskExecutionError(ConductorError):
    """Raised by task runners when a task's tool call reports a failure."""


__all__ = [
    "BufferOverflowError",
    "ChainFailureError",
    "CircularOrMissingDependencyError",
    "CommandTimeoutError",
    "ConductorError",
    "DuplicateTaskIdError",
    "InvalidDirectoryError",
    "InvalidOperationError",
    "ProcessNotFoundError",
    "TaskExecutionError",
    "UnknownToolError",
    "UnresolvableDependencyError",
]
