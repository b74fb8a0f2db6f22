"""Tool registration for Conductor MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from fastmcp import Context, FastMCP

from ..config import ConductorSettings
from ..errors import CircularOrMissingDependencyError
from ..execution import ParallelToolExecutor
from ..execution.parallel import summarize
from ..plans import PlanLoader
from ..shell import SessionManager
from ..tasks import TaskManager, TaskPlanner
from .approval import ApprovalWorkflow
from .executor import ToolExecutor

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    executor: ToolExecutor
    batch_executor: ParallelToolExecutor
    task_manager: TaskManager
    planner: TaskPlanner
    tools: dict[str, Any] = field(default_factory=dict)


def register_tools(
    server: FastMCP,
    *,
    executor: ToolExecutor,
    task_manager: TaskManager,
    plans: PlanLoader,
    settings: ConductorSettings,
) -> ToolHandles:
    """Register Conductor's MCP tools on the server."""

    batch_executor = ParallelToolExecutor(executor, max_concurrent=settings.max_concurrent)
    planner = TaskPlanner(task_manager)
    registered: dict[str, Any] = {}

    def _register(name: str, description: str, fn):
        registered[name] = server.tool(name=name, description=description)(fn)

    async def _call(name: str, args: dict[str, Any], context: Context | None) -> dict[str, Any]:
        result = await executor.execute(name, {key: value for key, value in args.items() if value is not None})
        _emit_log(
            context,
            "debug",
            "Tool executed",
            extra={"tool": name, "error": result.get("error"), "cancelled": result.get("cancelled", False)},
        )
        return result

    async def _run_command(
        command: str,
        session_id: str | None = None,
        cwd: str | None = None,
        timeout: int | None = None,
        background: bool = False,
        streaming: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Run a shell command in a persistent session."""

        result = await _call(
            "run_command",
            {
                "command": command,
                "session_id": session_id,
                "cwd": cwd,
                "timeout": timeout,
                "background": background,
                "streaming": streaming,
            },
            context,
        )
        _emit_log(
            context,
            "info",
            "Command finished" if not background else "Command started in background",
            extra={
                "session_id": session_id or "default",
                "exit_code": result.get("exit_code"),
                "process_id": result.get("process_id"),
            },
        )
        return result

    async def _get_shell_cwd(session_id: str | None = None, context: Context | None = None) -> dict[str, Any]:
        return await _call("get_shell_cwd", {"session_id": session_id}, context)

    async def _list_sessions(context: Context | None = None) -> dict[str, Any]:
        return await _call("list_sessions", {}, context)

    async def _delete_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        return await _call("delete_session", {"session_id": session_id}, context)

    async def _list_background_processes(
        session_id: str | None = None, context: Context | None = None
    ) -> dict[str, Any]:
        return await _call("list_background_processes", {"session_id": session_id}, context)

    async def _get_background_output(
        process_id: str, session_id: str | None = None, context: Context | None = None
    ) -> dict[str, Any]:
        return await _call(
            "get_background_output", {"process_id": process_id, "session_id": session_id}, context
        )

    async def _kill_background_process(
        process_id: str, session_id: str | None = None, context: Context | None = None
    ) -> dict[str, Any]:
        return await _call(
            "kill_background_process", {"process_id": process_id, "session_id": session_id}, context
        )

    async def _read_file(path: str, session_id: str | None = None, context: Context | None = None) -> dict[str, Any]:
        return await _call("read_file", {"path": path, "session_id": session_id}, context)

    async def _write_file(
        path: str, content: str, session_id: str | None = None, context: Context | None = None
    ) -> dict[str, Any]:
        return await _call("write_file", {"path": path, "content": content, "session_id": session_id}, context)

    async def _edit_file(
        path: str,
        search: str,
        replace: str,
        session_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        return await _call(
            "edit_file",
            {"path": path, "search": search, "replace": replace, "session_id": session_id},
            context,
        )

    async def _list_directory(
        path: str, recursive: bool = False, session_id: str | None = None, context: Context | None = None
    ) -> dict[str, Any]:
        return await _call(
            "list_directory", {"path": path, "recursive": recursive, "session_id": session_id}, context
        )

    async def _create_directory(
        path: str, session_id: str | None = None, context: Context | None = None
    ) -> dict[str, Any]:
        return await _call("create_directory", {"path": path, "session_id": session_id}, context)

    async def _delete_file(path: str, session_id: str | None = None, context: Context | None = None) -> dict[str, Any]:
        return await _call("delete_file", {"path": path, "session_id": session_id}, context)

    async def _get_environment_info(
        session_id: str | None = None, context: Context | None = None
    ) -> dict[str, Any]:
        return await _call("get_environment_info", {"session_id": session_id}, context)

    _register(
        "run_command",
        "Execute a shell command in a persistent session. Supports cd and keeps the working "
        "directory between calls. Use timeout (ms) for long commands, background=true to "
        "return immediately, or streaming=true to collect output incrementally. A timeout or "
        "output overflow is reported through error_type (Timeout, BufferOverflow) with a "
        "non-zero exit_code; batches and chains treat it as a completed call.",
        _run_command,
    )
    _register("get_shell_cwd", "Get the current working directory of a shell session.", _get_shell_cwd)
    _register("list_sessions", "List shell sessions with their working directories.", _list_sessions)
    _register("delete_session", "Delete a shell session and kill its background processes.", _delete_session)
    _register(
        "list_background_processes",
        "List background processes of a shell session.",
        _list_background_processes,
    )
    _register(
        "get_background_output",
        "Get accumulated output and status of a background process.",
        _get_background_output,
    )
    _register("kill_background_process", "Kill a background process.", _kill_background_process)
    _register("read_file", "Read the contents of a file.", _read_file)
    _register("write_file", "Write content to a file, creating parent directories.", _write_file)
    _register("edit_file", "Replace every occurrence of a text snippet in a file.", _edit_file)
    _register("list_directory", "List the contents of a directory.", _list_directory)
    _register("create_directory", "Create a directory and any missing parents.", _create_directory)
    _register("delete_file", "Delete a file or directory.", _delete_file)
    _register("get_environment_info", "Get platform and environment information.", _get_environment_info)

    async def _execute_batch(
        calls: list[dict[str, Any]],
        mode: Literal["parallel", "dependencies", "sequential"] = "parallel",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Execute several tool calls as one batch."""

        if mode == "parallel":
            results = await batch_executor.execute_parallel(calls)
        elif mode == "dependencies":
            try:
                results = await batch_executor.execute_with_dependencies(calls)
            except CircularOrMissingDependencyError as exc:
                _emit_log(context, "warning", "Dependency batch stuck", extra={"pending": exc.pending})
                return {"mode": mode, "error": str(exc), "results": summarize(exc.results)}
        elif mode == "sequential":
            results = await batch_executor.execute_sequential(calls)
        else:
            raise ValueError("Unsupported batch mode. Use 'parallel', 'dependencies' or 'sequential'.")

        _emit_log(context, "info", "Batch executed", extra={"mode": mode, "calls": len(calls)})
        return {"mode": mode, "results": summarize(results)}

    _register(
        "execute_batch",
        "Execute a batch of {name, args} tool calls in parallel (bounded), by dependency "
        "indices (calls carry a 'dependencies' list of batch indices), or sequentially "
        "with fail-fast.",
        _execute_batch,
    )

    def _require_task(task_id: str):
        task = task_manager.get_task(task_id)
        if task is None:
            raise ValueError(f"Task '{task_id}' not found")
        return task

    def _add_task(
        description: str,
        task_id: str | None = None,
        active_form: str | None = None,
        dependencies: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        task = task_manager.add_task(
            description,
            id=task_id,
            active_form=active_form,
            dependencies=dependencies or (),
            metadata=metadata,
        )
        _emit_log(context, "info", "Created task", extra={"task_id": task.id})
        return task.to_dict()

    def _update_task(
        task_id: str,
        status: Literal["in_progress", "completed", "failed", "blocked", "pending"],
        result: Any = None,
        error: str | None = None,
        reason: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        task = _require_task(task_id)
        task_manager.update_task_status(task_id, status, result=result, error=error, reason=reason)
        _emit_log(context, "info", "Task updated", extra={"task_id": task_id, "status": task.status.value})
        return task.to_dict()

    def _list_tasks(status: str | None = None, context: Context | None = None) -> dict[str, Any]:
        tasks = task_manager.get_tasks_by_status(status) if status else task_manager.get_all_tasks()
        _emit_log(context, "debug", "Listing tasks", extra={"count": len(tasks)})
        return {"tasks": [task.to_dict() for task in tasks], "progress": task_manager.get_progress().to_dict()}

    def _next_task(context: Context | None = None) -> dict[str, Any]:
        task = task_manager.get_next_executable_task()
        return {"task": task.to_dict() if task is not None else None}

    def _task_progress(context: Context | None = None) -> dict[str, Any]:
        return {
            **task_manager.get_progress().to_dict(),
            "unresolvable": task_manager.find_unresolvable_dependencies(),
        }

    def _clear_tasks(context: Context | None = None) -> dict[str, Any]:
        removed = len(task_manager)
        task_manager.clear()
        _emit_log(context, "info", "Cleared tasks", extra={"removed": removed})
        return {"removed": removed}

    def _load_plan(plan_id: str, context: Context | None = None) -> dict[str, Any]:
        source = plans.locate(plan_id)
        plan = source.plan
        tasks = planner.create_plan(plan)
        _emit_log(
            context,
            "info",
            "Loaded plan",
            extra={"plan_id": plan_id, "tasks": len(tasks), "plan_file": str(source.path)},
        )
        return {
            "plan_id": plan.id,
            "title": plan.title,
            "source": str(source.path),
            "shadowed": [str(path) for path in source.shadowed],
            "tasks": [task.to_dict() for task in tasks],
        }

    _register("add_task", "Add a task to the plan, optionally depending on other task ids.", _add_task)
    _register(
        "update_task",
        "Move a task through its lifecycle: in_progress, completed, failed, blocked, or back to pending.",
        _update_task,
    )
    _register("list_tasks", "List tasks in insertion order, optionally filtered by status.", _list_tasks)
    _register("next_task", "Return the first pending task whose dependencies are completed.", _next_task)
    _register("task_progress", "Report task counts per status and percentage completed.", _task_progress)
    _register("clear_tasks", "Remove every task.", _clear_tasks)
    _register("load_plan", "Load a YAML plan from the configured plan paths into the task list.", _load_plan)

    return ToolHandles(
        executor=executor,
        batch_executor=batch_executor,
        task_manager=task_manager,
        planner=planner,
        tools=registered,
    )


def build_executor(settings: ConductorSettings) -> ToolExecutor:
    """Create a tool executor wired to fresh sessions from ``settings``."""

    return ToolExecutor(
        ApprovalWorkflow(settings.approval_mode),
        SessionManager.from_settings(settings),
    )


__all__ = ["ApprovalWorkflow", "ToolExecutor", "ToolHandles", "build_executor", "register_tools"]


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
