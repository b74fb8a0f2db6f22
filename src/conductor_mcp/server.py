"""FastMCP server bootstrap for Conductor."""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import ConductorSettings, get_settings
from .plans import PlanLoadError, PlanLoader
from .tasks import TaskManager
from .tools import ToolExecutor, build_executor, register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the Conductor server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[ConductorSettings] = None,
    executor: ToolExecutor | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with tools and the status resource."""

    settings = settings or get_settings()

    plan_loader = PlanLoader(settings.plan_paths)
    executor = executor or build_executor(settings)
    task_manager = TaskManager()

    server = FastMCP(
        name="Conductor MCP",
        version=__version__,
        instructions=(
            "Conductor runs shell commands in persistent sessions, executes batches of "
            "tool calls in parallel or by dependency order, and tracks planned tasks. "
            "Use run_command for single commands, execute_batch for groups of calls, "
            "and the task tools to keep a plan up to date."
        ),
    )

    handles = register_tools(
        server,
        executor=executor,
        task_manager=task_manager,
        plans=plan_loader,
        settings=settings,
    )

    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        try:
            plan_ids = sorted(plan_loader.load_all().keys())
            plan_error: str | None = None
        except PlanLoadError as exc:
            plan_ids = []
            plan_error = str(exc)

        sessions = executor.sessions.list_sessions()
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "approval_mode": settings.approval_mode,
            "limits": {
                "command_timeout_ms": settings.command_timeout_ms,
                "max_buffer_bytes": settings.max_buffer_bytes,
                "max_concurrent": settings.max_concurrent,
            },
            "plans": {
                "count": len(plan_ids),
                "ids": plan_ids,
                "search_paths": [str(path) for path in plan_loader.search_paths],
                "error": plan_error,
            },
            "sessions": {
                "count": len(sessions),
                "items": sessions,
                "background_running": sum(
                    1
                    for session in sessions
                    for process in executor.sessions.get_session(session["id"]).list_background_processes()
                    if not process["completed"]
                ),
            },
            "tasks": task_manager.get_progress().to_dict(),
            "tools": sorted(handles.tools),
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    server.resource(
        "resource://conductor/status",
        name="conductor_status",
        title="Conductor MCP Status",
        description="Provides the current runtime status for the Conductor MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )(status_resource)

    setattr(server, "plan_loader", plan_loader)
    setattr(server, "status_resource", status_resource)
    setattr(server, "tool_executor", executor)
    setattr(server, "task_manager", task_manager)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Conductor MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Conductor MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "approval_mode": settings.approval_mode,
            "max_concurrent": settings.max_concurrent,
        },
    )
    try:
        server.run()
    finally:
        getattr(server, "tool_executor").sessions.close()


if __name__ == "__main__":
    main()
