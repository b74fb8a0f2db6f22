"""Keyed collection of shell sessions with a protected default session."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping

from ..config import ConductorSettings
from ..errors import InvalidOperationError
from .session import (
    DEFAULT_KILL_GRACE_SECONDS,
    DEFAULT_MAX_BUFFER_BYTES,
    DEFAULT_TIMEOUT_MS,
    CommandResult,
    ShellSession,
    StreamChunk,
    StreamResult,
)

logger = logging.getLogger(__name__)


class DefaultSession(ShellSession):
    """The session that backs calls without a session id. It cannot be deleted."""


class SessionManager:
    """Owns shell sessions and routes commands to them."""

    DEFAULT_SESSION_ID = "default"

    def __init__(
        self,
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_buffer_bytes: int = DEFAULT_MAX_BUFFER_BYTES,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
    ) -> None:
        self._base_cwd = os.path.abspath(cwd) if cwd is not None else os.getcwd()
        self._session_options: dict[str, Any] = {
            "env": dict(env) if env else None,
            "default_timeout_ms": default_timeout_ms,
            "max_buffer_bytes": max_buffer_bytes,
            "kill_grace_seconds": kill_grace_seconds,
        }
        self._default = DefaultSession(
            self.DEFAULT_SESSION_ID, cwd=self._base_cwd, **self._session_options
        )
        self._sessions: dict[str, ShellSession] = {self._default.id: self._default}

    @classmethod
    def from_settings(cls, settings: ConductorSettings) -> "SessionManager":
        return cls(
            cwd=settings.workdir,
            default_timeout_ms=settings.command_timeout_ms,
            max_buffer_bytes=settings.max_buffer_bytes,
            kill_grace_seconds=settings.kill_grace_seconds,
        )

    @property
    def default(self) -> DefaultSession:
        return self._default

    def get_session(self, session_id: str | None = None) -> ShellSession:
        """Return the named session, creating it on first use."""

        if not session_id:
            return self._default

        session = self._sessions.get(session_id)
        if session is None:
            session = ShellSession(session_id, cwd=self._base_cwd, **self._session_options)
            self._sessions[session_id] = session
            logger.debug("Created shell session", extra={"session_id": session_id})
        return session

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def execute(
        self,
        command: str,
        *,
        session_id: str | None = None,
        timeout_ms: int | None = None,
        background: bool = False,
        cwd: str | None = None,
    ) -> CommandResult:
        session = self.get_session(session_id)
        return await session.execute(command, timeout_ms=timeout_ms, background=background, cwd=cwd)

    async def execute_streaming(
        self,
        command: str,
        on_chunk: Callable[[StreamChunk], Awaitable[None] | None],
        *,
        session_id: str | None = None,
        timeout_ms: int | None = None,
        cwd: str | None = None,
    ) -> StreamResult:
        session = self.get_session(session_id)
        return await session.execute_streaming(command, on_chunk, timeout_ms=timeout_ms, cwd=cwd)

    def get_cwd(self, session_id: str | None = None) -> str:
        return self.get_session(session_id).get_cwd()

    def list_sessions(self) -> list[dict[str, Any]]:
        return [
            {**session.snapshot(), "default": isinstance(session, DefaultSession)}
            for session in self._sessions.values()
        ]

    def delete_session(self, session_id: str | None) -> bool:
        """Kill a session's background processes, then forget the session.

        Returns ``False`` when the id is unknown. The default session is refused,
        including when addressed by an empty id.
        """

        session = self._sessions.get(session_id) if session_id else self.default
        if session is None:
            return False
        if isinstance(session, DefaultSession):
            raise InvalidOperationError("Cannot delete default session")

        killed = session.close()
        del self._sessions[session_id]
        logger.info(
            "Deleted shell session",
            extra={"session_id": session_id, "killed_processes": killed},
        )
        return True

    def close(self) -> None:
        """Kill background processes in every session."""

        for session in self._sessions.values():
            session.close()


__all__ = ["DefaultSession", "SessionManager"]
