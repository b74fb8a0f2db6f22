"""Batch execution of tool calls: bounded parallel, dependency-gated, sequential."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Mapping, Protocol, Sequence

from ..errors import CircularOrMissingDependencyError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 5

Outcome = Literal["success", "failure", "cancelled"]


class ToolCapability(Protocol):
    """Anything that can execute a named tool with a mapping of arguments."""

    async def execute(self, name: str, args: dict[str, Any]) -> Any:
        ...


@dataclass(slots=True)
class ToolCall:
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    dependencies: tuple[int, ...] = ()

    @classmethod
    def coerce(cls, call: "ToolCall | Mapping[str, Any]") -> "ToolCall":
        if isinstance(call, ToolCall):
            return call
        return cls(
            name=call["name"],
            args=dict(call.get("args") or {}),
            dependencies=tuple(call.get("dependencies") or ()),
        )


@dataclass(slots=True)
class ExecutionResult:
    """Tagged outcome of a single tool call."""

    tool: str
    outcome: Outcome
    result: Any = None
    error: str | None = None

    @classmethod
    def success(cls, tool: str, result: Any) -> "ExecutionResult":
        return cls(tool=tool, outcome="success", result=result)

    @classmethod
    def failure(cls, tool: str, message: str) -> "ExecutionResult":
        return cls(tool=tool, outcome="failure", error=message)

    @classmethod
    def cancelled(cls, tool: str) -> "ExecutionResult":
        return cls(tool=tool, outcome="cancelled")

    @property
    def ok(self) -> bool:
        return self.outcome == "success"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"tool": self.tool, "outcome": self.outcome, "success": self.ok}
        if self.outcome == "success":
            payload["result"] = self.result
        elif self.outcome == "failure":
            payload["error"] = self.error
        else:
            payload["cancelled"] = True
        return payload


def classify(tool: str, result: Any) -> ExecutionResult:
    """Map a raw tool result onto an :class:`ExecutionResult`."""

    if isinstance(result, Mapping):
        if result.get("error"):
            return ExecutionResult.failure(tool, str(result["error"]))
        if result.get("cancelled") is True:
            return ExecutionResult.cancelled(tool)
    return ExecutionResult.success(tool, result)


class ParallelToolExecutor:
    """Schedules batches of tool calls against a tool capability."""

    def __init__(self, executor: ToolCapability, *, max_concurrent: int = DEFAULT_MAX_CONCURRENT) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.executor = executor
        self.max_concurrent = max_concurrent

    async def run_call(self, call: ToolCall) -> ExecutionResult:
        """Execute one call, capturing any exception as a failure."""

        try:
            result = await self.executor.execute(call.name, dict(call.args))
        except Exception as exc:
            logger.warning("Tool call raised", extra={"tool": call.name, "error": str(exc)})
            return ExecutionResult.failure(call.name, str(exc))
        return classify(call.name, result)

    async def execute_parallel(
        self, calls: Iterable[ToolCall | Mapping[str, Any]]
    ) -> list[ExecutionResult]:
        """Run independent calls with at most ``max_concurrent`` in flight.

        Results line up with the input order regardless of completion order.
        """

        batch = [ToolCall.coerce(call) for call in calls]
        results: list[ExecutionResult | None] = [None] * len(batch)
        queue: asyncio.Queue[tuple[int, ToolCall]] = asyncio.Queue()
        for index, call in enumerate(batch):
            queue.put_nowait((index, call))

        async def worker() -> None:
            while True:
                try:
                    index, call = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                results[index] = await self.run_call(call)

        workers = min(self.max_concurrent, len(batch))
        await asyncio.gather(*(worker() for _ in range(workers)))
        logger.debug("Parallel batch finished", extra={"calls": len(batch), "workers": workers})
        return [result for result in results if result is not None]

    async def execute_with_dependencies(
        self, calls: Iterable[ToolCall | Mapping[str, Any]]
    ) -> list[ExecutionResult]:
        """Run calls in rounds, each round launching every call whose dependencies ran.

        A round is not capped by ``max_concurrent``; a wide ready set starts all
        of its calls at once. Failed calls still count as executed.
        """

        batch = [ToolCall.coerce(call) for call in calls]
        results: list[ExecutionResult | None] = [None] * len(batch)
        executed: set[int] = set()

        while len(executed) < len(batch):
            ready = [
                index
                for index, call in enumerate(batch)
                if index not in executed and all(dep in executed for dep in call.dependencies)
            ]
            if not ready:
                pending = [index for index in range(len(batch)) if index not in executed]
                logger.warning("Dependency batch is stuck", extra={"pending": pending})
                raise CircularOrMissingDependencyError(pending, results)

            outcomes = await asyncio.gather(*(self.run_call(batch[index]) for index in ready))
            for index, outcome in zip(ready, outcomes):
                results[index] = outcome
                executed.add(index)

        return [result for result in results if result is not None]

    async def execute_sequential(
        self, calls: Iterable[ToolCall | Mapping[str, Any]]
    ) -> list[ExecutionResult]:
        """Run calls in order, stopping after the first failure."""

        results: list[ExecutionResult] = []
        for call in (ToolCall.coerce(item) for item in calls):
            outcome = await self.run_call(call)
            results.append(outcome)
            if outcome.outcome == "failure":
                logger.info("Sequential batch stopped", extra={"tool": call.name, "error": outcome.error})
                break
        return results


def summarize(results: Sequence[ExecutionResult | None]) -> list[dict[str, Any] | None]:
    return [result.to_dict() if result is not None else None for result in results]


__all__ = [
    "DEFAULT_MAX_CONCURRENT",
    "ExecutionResult",
    "ParallelToolExecutor",
    "ToolCall",
    "ToolCapability",
    "classify",
    "summarize",
]
