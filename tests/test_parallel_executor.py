from __future__ import annotations

import asyncio

import pytest

from conductor_mcp.errors import CircularOrMissingDependencyError
from conductor_mcp.execution import ExecutionResult, ParallelToolExecutor, ToolCall, classify
from conductor_mcp.execution.parallel import summarize


class FakeExecutor:
    """Tool capability that sleeps per call and records start/finish order."""

    def __init__(self, delays: dict[str, float] | None = None) -> None:
        self.delays = delays or {}
        self.started: list[str] = []
        self.finished: list[str] = []
        self.active = 0
        self.peak = 0

    async def execute(self, name: str, args: dict) -> dict:
        self.started.append(name)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delays.get(name, 0.01))
            if name.startswith("fail"):
                return {"error": f"{name} failed"}
            if name.startswith("deny"):
                return {"cancelled": True}
            if name.startswith("raise"):
                raise RuntimeError(f"{name} exploded")
            return {"tool": name, "args": args}
        finally:
            self.active -= 1
            self.finished.append(name)


def test_classify_maps_result_shapes() -> None:
    assert classify("t", {"error": "bad"}).outcome == "failure"
    assert classify("t", {"cancelled": True}).outcome == "cancelled"
    assert classify("t", {"error": None, "value": 1}).outcome == "success"
    assert classify("t", "plain text").result == "plain text"


def test_parallel_results_align_with_input_order() -> None:
    fake = FakeExecutor({"slow": 0.05, "fast": 0.0})
    executor = ParallelToolExecutor(fake)

    results = asyncio.run(
        executor.execute_parallel(
            [{"name": "slow", "args": {"n": 1}}, {"name": "fast"}, ToolCall("mid", {"n": 3})]
        )
    )

    assert [result.tool for result in results] == ["slow", "fast", "mid"]
    assert results[0].result == {"tool": "slow", "args": {"n": 1}}
    assert fake.finished[0] != "slow"


def test_parallel_respects_concurrency_cap() -> None:
    fake = FakeExecutor()
    executor = ParallelToolExecutor(fake, max_concurrent=2)

    results = asyncio.run(executor.execute_parallel([{"name": f"tool{n}"} for n in range(6)]))

    assert len(results) == 6
    assert fake.peak == 2


def test_parallel_captures_failures_per_call() -> None:
    executor = ParallelToolExecutor(FakeExecutor())

    results = asyncio.run(
        executor.execute_parallel([{"name": "ok"}, {"name": "fail_one"}, {"name": "raise_one"}, {"name": "deny"}])
    )

    assert [result.outcome for result in results] == ["success", "failure", "failure", "cancelled"]
    assert results[1].error == "fail_one failed"
    assert results[2].error == "raise_one exploded"


def test_empty_batch_returns_empty_list() -> None:
    executor = ParallelToolExecutor(FakeExecutor())

    assert asyncio.run(executor.execute_parallel([])) == []
    assert asyncio.run(executor.execute_with_dependencies([])) == []


def test_invalid_concurrency_cap() -> None:
    with pytest.raises(ValueError):
        ParallelToolExecutor(FakeExecutor(), max_concurrent=0)


def test_dependencies_run_after_prerequisites() -> None:
    fake = FakeExecutor({"first": 0.03})
    executor = ParallelToolExecutor(fake)

    results = asyncio.run(
        executor.execute_with_dependencies(
            [
                {"name": "first"},
                {"name": "second", "dependencies": [0]},
                {"name": "other"},
                {"name": "last", "dependencies": [1, 2]},
            ]
        )
    )

    assert [result.tool for result in results] == ["first", "second", "other", "last"]
    assert fake.started.index("second") > fake.finished.index("first")
    assert fake.started[-1] == "last"


def test_failed_prerequisite_still_unblocks_dependents() -> None:
    fake = FakeExecutor()
    executor = ParallelToolExecutor(fake)

    results = asyncio.run(
        executor.execute_with_dependencies([{"name": "fail_setup"}, {"name": "after", "dependencies": [0]}])
    )

    assert results[0].outcome == "failure"
    assert results[1].outcome == "success"


def test_mutual_dependencies_fail_without_executing() -> None:
    fake = FakeExecutor()
    executor = ParallelToolExecutor(fake)

    with pytest.raises(CircularOrMissingDependencyError) as excinfo:
        asyncio.run(
            executor.execute_with_dependencies(
                [{"name": "a", "dependencies": [1]}, {"name": "b", "dependencies": [0]}]
            )
        )

    assert fake.started == []
    assert excinfo.value.pending == [0, 1]


def test_missing_dependency_reports_partial_results() -> None:
    executor = ParallelToolExecutor(FakeExecutor())

    with pytest.raises(CircularOrMissingDependencyError) as excinfo:
        asyncio.run(
            executor.execute_with_dependencies([{"name": "ready"}, {"name": "waiting", "dependencies": [7]}])
        )

    assert excinfo.value.pending == [1]
    assert excinfo.value.results[0].outcome == "success"
    assert excinfo.value.results[1] is None


def test_sequential_stops_after_first_failure() -> None:
    fake = FakeExecutor()
    executor = ParallelToolExecutor(fake)

    results = asyncio.run(
        executor.execute_sequential([{"name": "one"}, {"name": "deny"}, {"name": "fail_two"}, {"name": "three"}])
    )

    assert [result.outcome for result in results] == ["success", "cancelled", "failure"]
    assert fake.started == ["one", "deny", "fail_two"]


def test_summarize_serializes_outcomes() -> None:
    summary = summarize(
        [ExecutionResult.success("a", 1), ExecutionResult.failure("b", "no"), ExecutionResult.cancelled("c"), None]
    )

    assert summary == [
        {"tool": "a", "outcome": "success", "success": True, "result": 1},
        {"tool": "b", "outcome": "failure", "success": False, "error": "no"},
        {"tool": "c", "outcome": "cancelled", "success": False, "cancelled": True},
        None,
    ]
