"""Tool executor: routes tool names to shell sessions and file operations."""

from __future__ import annotations

import inspect
import logging
import os
import platform
import shutil
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

from ..errors import (
    DuplicateTaskIdError,
    InvalidOperationError,
    UnknownToolError,
)
from ..shell import SessionManager, StreamChunk
from .approval import Approver

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]
OutputCallback = Callable[[StreamChunk], "Awaitable[None] | None"]

# Raised to the caller instead of being folded into an ``{"error": ...}`` result.
_FATAL_ERRORS = (UnknownToolError, InvalidOperationError, DuplicateTaskIdError)

CANCELLED: dict[str, Any] = {"cancelled": True}


class ToolExecutor:
    """Executes named tools with approval gating.

    Every tool returns a mapping. Ordinary failures are reported as
    ``{"error": message}`` and declined approvals as ``{"cancelled": True}``.
    """

    def __init__(
        self,
        approval: Approver,
        sessions: SessionManager | None = None,
        *,
        on_output: OutputCallback | None = None,
    ) -> None:
        self.approval = approval
        self.sessions = sessions if sessions is not None else SessionManager()
        self._on_output = on_output
        # Adding a tool means editing this mapping.
        self._handlers: dict[str, ToolHandler] = {
            "read_file": self.read_file,
            "write_file": self.write_file,
            "edit_file": self.edit_file,
            "list_directory": self.list_directory,
            "create_directory": self.create_directory,
            "delete_file": self.delete_file,
            "run_command": self.run_command,
            "get_shell_cwd": self.get_shell_cwd,
            "list_sessions": self.list_sessions,
            "delete_session": self.delete_session,
            "list_background_processes": self.list_background_processes,
            "get_background_output": self.get_background_output,
            "kill_background_process": self.kill_background_process,
            "get_environment_info": self.get_environment_info,
        }

    @property
    def tool_names(self) -> list[str]:
        return sorted(self._handlers)

    async def execute(self, name: str, args: dict[str, Any] | None = None) -> dict[str, Any]:
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownToolError(name)

        try:
            return await handler(dict(args or {}))
        except _FATAL_ERRORS:
            raise
        except KeyError as exc:
            return {"error": f"Missing argument: {exc.args[0]}"}
        except Exception as exc:
            logger.warning("Tool failed", extra={"tool": name, "error": str(exc)})
            return {"error": str(exc)}

    def _resolve_path(self, args: dict[str, Any]) -> Path:
        base = self.sessions.get_cwd(args.get("session_id"))
        return Path(os.path.normpath(os.path.join(base, os.path.expanduser(args["path"]))))

    async def _approve(self, action: str, details: str) -> bool:
        return await self.approval.request_approval(action, details)

    async def read_file(self, args: dict[str, Any]) -> dict[str, Any]:
        path = self._resolve_path(args)
        if not await self._approve("Read file", f"Path: {path}"):
            return dict(CANCELLED)

        content = path.read_text(encoding="utf-8")
        return {"content": content, "lines": content.count("\n") + 1}

    async def write_file(self, args: dict[str, Any]) -> dict[str, Any]:
        path = self._resolve_path(args)
        content = args["content"]
        if not await self._approve("Write file", f"Path: {path}\nSize: {len(content)} chars"):
            return dict(CANCELLED)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return {"success": True, "path": str(path)}

    async def edit_file(self, args: dict[str, Any]) -> dict[str, Any]:
        path = self._resolve_path(args)
        search = args["search"]
        replace = args["replace"]
        if not search:
            return {"error": "Search text must not be empty"}
        if not await self._approve("Edit file", f'Path: {path}\nReplace: "{search[:50]}..."'):
            return dict(CANCELLED)

        content = path.read_text(encoding="utf-8")
        occurrences = content.count(search)
        path.write_text(content.replace(search, replace), encoding="utf-8")
        return {"success": True, "replacements": occurrences}

    async def list_directory(self, args: dict[str, Any]) -> dict[str, Any]:
        path = self._resolve_path(args)
        if not await self._approve("List directory", f"Path: {path}"):
            return dict(CANCELLED)

        entries = sorted(path.rglob("*") if args.get("recursive") else path.iterdir())
        items = [
            {
                "name": str(entry.relative_to(path)),
                "type": "directory" if entry.is_dir() else "file",
                "size": entry.stat().st_size,
            }
            for entry in entries
        ]
        return {"items": items}

    async def create_directory(self, args: dict[str, Any]) -> dict[str, Any]:
        path = self._resolve_path(args)
        if not await self._approve("Create directory", f"Path: {path}"):
            return dict(CANCELLED)

        path.mkdir(parents=True, exist_ok=True)
        return {"success": True, "path": str(path)}

    async def delete_file(self, args: dict[str, Any]) -> dict[str, Any]:
        path = self._resolve_path(args)
        if not await self._approve("Delete file/directory", f"Path: {path}\nThis action cannot be undone!"):
            return dict(CANCELLED)

        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
        return {"success": True, "deleted": str(path)}

    async def run_command(self, args: dict[str, Any]) -> dict[str, Any]:
        command = args["command"]
        session_id = args.get("session_id")
        cwd = args.get("cwd") or self.sessions.get_cwd(session_id)
        modes = [label for flag, label in (("background", "Background"), ("streaming", "Streaming")) if args.get(flag)]
        details = f"Command: {command}\nDirectory: {cwd}"
        if modes:
            details += f"\nMode: {', '.join(modes)}"
        if not await self._approve("Run shell command", details):
            return dict(CANCELLED)

        timeout_ms = args.get("timeout")
        if args.get("streaming"):
            output = {"stdout": [], "stderr": []}

            async def on_chunk(chunk: StreamChunk) -> None:
                if chunk.type in output:
                    output[chunk.type].append(chunk.data)
                if self._on_output is not None:
                    outcome = self._on_output(chunk)
                    if inspect.isawaitable(outcome):
                        await outcome

            streamed = await self.sessions.execute_streaming(
                command,
                on_chunk,
                session_id=session_id,
                timeout_ms=timeout_ms,
                cwd=args.get("cwd"),
            )
            payload: dict[str, Any] = {
                "stdout": "".join(output["stdout"]),
                "stderr": "".join(output["stderr"]),
                "exit_code": streamed.exit_code,
                "duration_ms": streamed.duration_ms,
            }
            if streamed.error is not None:
                payload["error_type"] = streamed.error
            return payload

        result = await self.sessions.execute(
            command,
            session_id=session_id,
            timeout_ms=timeout_ms,
            background=bool(args.get("background")),
            cwd=args.get("cwd"),
        )
        return result.to_dict()

    async def get_shell_cwd(self, args: dict[str, Any]) -> dict[str, Any]:
        session = self.sessions.get_session(args.get("session_id"))
        return {"session_id": session.id, "cwd": session.get_cwd()}

    async def list_sessions(self, args: dict[str, Any]) -> dict[str, Any]:
        return {"sessions": self.sessions.list_sessions()}

    async def delete_session(self, args: dict[str, Any]) -> dict[str, Any]:
        session_id = args["session_id"]
        if not await self._approve("Delete shell session", f"Session: {session_id}"):
            return dict(CANCELLED)
        return {"success": self.sessions.delete_session(session_id)}

    async def list_background_processes(self, args: dict[str, Any]) -> dict[str, Any]:
        session = self.sessions.get_session(args.get("session_id"))
        return {"processes": session.list_background_processes()}

    async def get_background_output(self, args: dict[str, Any]) -> dict[str, Any]:
        session = self.sessions.get_session(args.get("session_id"))
        return session.get_background_output(args["process_id"])

    async def kill_background_process(self, args: dict[str, Any]) -> dict[str, Any]:
        process_id = args["process_id"]
        if not await self._approve("Kill background process", f"Process ID: {process_id}"):
            return dict(CANCELLED)
        session = self.sessions.get_session(args.get("session_id"))
        return {"success": session.kill_background_process(process_id)}

    async def get_environment_info(self, args: dict[str, Any]) -> dict[str, Any]:
        return {
            "platform": sys.platform,
            "python_version": platform.python_version(),
            "cwd": self.sessions.get_cwd(args.get("session_id")),
            "env": {
                "USER": os.environ.get("USER") or os.environ.get("USERNAME"),
                "HOME": os.environ.get("HOME") or os.environ.get("USERPROFILE"),
            },
        }


__all__ = ["CANCELLED", "ToolExecutor"]
