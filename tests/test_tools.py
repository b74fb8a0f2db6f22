from __future__ import annotations

import asyncio
import textwrap
from pathlib import Path
from typing import Any

import pytest

from conductor_mcp.config import ConductorSettings
from conductor_mcp.errors import DuplicateTaskIdError, InvalidOperationError
from conductor_mcp.plans import PlanLoader
from conductor_mcp.shell import SessionManager
from conductor_mcp.tasks import TaskManager
from conductor_mcp.tools import ApprovalWorkflow, ToolExecutor, register_tools


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class StubLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def info(self, message, extra=None):
        self.records.append(("info", message, extra or {}))

    def debug(self, message, extra=None):
        self.records.append(("debug", message, extra or {}))

    def warning(self, message, extra=None):
        self.records.append(("warning", message, extra or {}))


class StubContext:
    def __init__(self) -> None:
        self.logger = StubLogger()


class ScriptedExecutor:
    """Stand-in for ToolExecutor that answers from a script."""

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def execute(self, name: str, args: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((name, args))
        return self.responses.get(name, {"tool": name})


def register(tmp_path: Path, executor=None, **settings_overrides):
    server = StubServer()
    settings = ConductorSettings(plan_paths=(tmp_path,), **settings_overrides)
    handles = register_tools(
        server,
        executor=executor or ToolExecutor(ApprovalWorkflow("full-auto"), SessionManager(cwd=tmp_path)),
        task_manager=TaskManager(),
        plans=PlanLoader([tmp_path]),
        settings=settings,
    )
    return server, handles


def test_registers_full_tool_surface(tmp_path: Path) -> None:
    server, handles = register(tmp_path)

    expected = {
        "run_command",
        "get_shell_cwd",
        "list_sessions",
        "delete_session",
        "list_background_processes",
        "get_background_output",
        "kill_background_process",
        "read_file",
        "write_file",
        "edit_file",
        "list_directory",
        "create_directory",
        "delete_file",
        "get_environment_info",
        "execute_batch",
        "add_task",
        "update_task",
        "list_tasks",
        "next_task",
        "task_progress",
        "clear_tasks",
        "load_plan",
    }
    assert set(server._tools) == expected
    assert set(handles.tools) == expected


def test_file_tools_route_through_executor(tmp_path: Path) -> None:
    server, _ = register(tmp_path)
    context = StubContext()

    written = asyncio.run(
        server._tools["write_file"].fn("hello.txt", "hi there", context=context)
    )
    read = asyncio.run(server._tools["read_file"].fn("hello.txt", context=context))

    assert written["success"] is True
    assert read["content"] == "hi there"
    assert context.logger.records[0][1] == "Tool executed"


def test_run_command_drops_unset_arguments(tmp_path: Path) -> None:
    executor = ScriptedExecutor({"run_command": {"stdout": "ok\n", "exit_code": 0}})
    server, _ = register(tmp_path, executor=executor)
    context = StubContext()

    result = asyncio.run(server._tools["run_command"].fn("echo ok", timeout=500, context=context))

    assert result == {"stdout": "ok\n", "exit_code": 0}
    assert executor.calls == [
        ("run_command", {"command": "echo ok", "timeout": 500, "background": False, "streaming": False})
    ]
    level, message, extra = context.logger.records[-1]
    assert (level, message) == ("info", "Command finished")
    assert extra["session_id"] == "default"


def test_execute_batch_modes(tmp_path: Path) -> None:
    executor = ScriptedExecutor({"broken": {"error": "nope"}})
    server, handles = register(tmp_path, executor=executor, max_concurrent=2)
    batch = server._tools["execute_batch"].fn

    parallel = asyncio.run(batch([{"name": "a"}, {"name": "broken"}, {"name": "b"}]))
    sequential = asyncio.run(batch([{"name": "a"}, {"name": "broken"}, {"name": "b"}], mode="sequential"))
    ordered = asyncio.run(
        batch([{"name": "b", "dependencies": [1]}, {"name": "a"}], mode="dependencies")
    )

    assert handles.batch_executor.max_concurrent == 2
    assert [entry["success"] for entry in parallel["results"]] == [True, False, True]
    assert len(sequential["results"]) == 2
    assert [entry["tool"] for entry in ordered["results"]] == ["b", "a"]
    assert executor.calls[-2:] == [("a", {}), ("b", {})]


def test_execute_batch_reports_stuck_dependencies(tmp_path: Path) -> None:
    executor = ScriptedExecutor()
    server, _ = register(tmp_path, executor=executor)

    result = asyncio.run(
        server._tools["execute_batch"].fn(
            [{"name": "a", "dependencies": [1]}, {"name": "b", "dependencies": [0]}],
            mode="dependencies",
        )
    )

    assert "circular or missing dependencies" in result["error"]
    assert result["results"] == [None, None]
    assert executor.calls == []


def test_execute_batch_rejects_unknown_mode(tmp_path: Path) -> None:
    server, _ = register(tmp_path, executor=ScriptedExecutor())

    with pytest.raises(ValueError):
        asyncio.run(server._tools["execute_batch"].fn([], mode="random"))


def test_task_tools_lifecycle(tmp_path: Path) -> None:
    server, handles = register(tmp_path)
    tools = server._tools

    first = tools["add_task"].fn("Write docs", task_id="docs")
    second = tools["add_task"].fn("Publish", dependencies=["docs"])

    assert first["active_form"] == "Write docs..."
    assert second["id"] == "task_1"
    assert tools["next_task"].fn()["task"]["id"] == "docs"

    tools["update_task"].fn("docs", "in_progress")
    done = tools["update_task"].fn("docs", "completed", result="published")

    assert done["status"] == "completed"
    assert done["result"] == "published"
    assert tools["next_task"].fn()["task"]["id"] == "task_1"

    listing = tools["list_tasks"].fn(status="completed")
    assert [task["id"] for task in listing["tasks"]] == ["docs"]
    assert listing["progress"]["percentage"] == 50

    progress = tools["task_progress"].fn()
    assert progress["completed"] == 1
    assert progress["unresolvable"] == {}

    assert tools["clear_tasks"].fn() == {"removed": 2}
    assert handles.task_manager.get_all_tasks() == []


def test_task_tools_raise_on_invalid_requests(tmp_path: Path) -> None:
    server, _ = register(tmp_path)
    tools = server._tools
    tools["add_task"].fn("Only", task_id="only")

    with pytest.raises(DuplicateTaskIdError):
        tools["add_task"].fn("Again", task_id="only")
    with pytest.raises(ValueError, match="not found"):
        tools["update_task"].fn("ghost", "completed")
    with pytest.raises(InvalidOperationError):
        tools["update_task"].fn("only", "completed")


def test_load_plan_populates_tasks(tmp_path: Path) -> None:
    (tmp_path / "deploy.yaml").write_text(
        textwrap.dedent(
            """
            id: deploy
            title: Deploy
            tasks:
              - id: build
                description: Build image
              - id: push
                description: Push image
                dependencies: [build]
            """
        ),
        encoding="utf-8",
    )
    server, handles = register(tmp_path)

    loaded = server._tools["load_plan"].fn("deploy")

    assert loaded["plan_id"] == "deploy"
    assert loaded["source"] == str(tmp_path / "deploy.yaml")
    assert loaded["shadowed"] == []
    assert [task["id"] for task in loaded["tasks"]] == ["build", "push"]
    assert handles.task_manager.get_next_executable_task().id == "build"
    assert handles.planner.task_manager is handles.task_manager
