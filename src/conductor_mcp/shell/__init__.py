"""Persistent shell sessions and background process supervision."""

from .manager import DefaultSession, SessionManager
from .session import (
    BackgroundProcess,
    CommandRecord,
    CommandResult,
    ShellSession,
    StreamChunk,
    StreamResult,
)

__all__ = [
    "BackgroundProcess",
    "CommandRecord",
    "CommandResult",
    "DefaultSession",
    "SessionManager",
    "ShellSession",
    "StreamChunk",
    "StreamResult",
]
