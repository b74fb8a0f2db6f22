"""Sequential tool chains with per-step conditions and callbacks."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from ..errors import ChainFailureError
from .parallel import ToolCapability, classify

logger = logging.getLogger(__name__)

ChainResults = dict[int, Any]
StepCondition = Callable[[ChainResults], bool]
StepCallback = Callable[[Any, ChainResults], Awaitable[None] | None]


@dataclass(slots=True)
class ChainStep:
    name: str
    args: dict[str, Any]
    dependencies: list[int] = field(default_factory=list)
    condition: StepCondition | None = None
    on_result: StepCallback | None = None


class ToolChain:
    """Fixed, ordered composition of tool calls that aborts on the first failure.

    Step ``dependencies`` are informational; steps always run in the order added.
    """

    def __init__(self, executor: ToolCapability) -> None:
        self.executor = executor
        self.steps: list[ChainStep] = []

    def add(
        self,
        name: str,
        args: dict[str, Any] | None = None,
        *,
        dependencies: list[int] | None = None,
        condition: StepCondition | None = None,
        on_result: StepCallback | None = None,
    ) -> "ToolChain":
        self.steps.append(
            ChainStep(
                name=name,
                args=dict(args or {}),
                dependencies=list(dependencies or []),
                condition=condition,
                on_result=on_result,
            )
        )
        return self

    async def execute(self) -> ChainResults:
        """Run the chain and return results keyed by step index.

        Skipped steps have no entry. Raises :class:`ChainFailureError` when a
        step's result carries an error or its tool raises.
        """

        results: ChainResults = {}
        for index, step in enumerate(self.steps):
            if step.condition is not None and not step.condition(results):
                logger.debug("Skipping chain step", extra={"step": index + 1, "tool": step.name})
                continue

            logger.info("Running chain step", extra={"step": index + 1, "tool": step.name})
            try:
                result = await self.executor.execute(step.name, dict(step.args))
            except Exception as exc:
                raise ChainFailureError(index, str(exc)) from exc
            results[index] = result

            if step.on_result is not None:
                outcome = step.on_result(result, results)
                if inspect.isawaitable(outcome):
                    await outcome

            verdict = classify(step.name, result)
            if verdict.outcome == "failure":
                logger.warning(
                    "Chain step failed",
                    extra={"step": index + 1, "tool": step.name, "error": verdict.error},
                )
                raise ChainFailureError(index, verdict.error or "unknown error")

        return results

    def clear(self) -> "ToolChain":
        self.steps = []
        return self


__all__ = ["ChainStep", "ToolChain"]
