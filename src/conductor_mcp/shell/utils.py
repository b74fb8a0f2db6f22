"""Utility helpers for shell sessions."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import signal
import time
from pathlib import Path
from typing import Mapping

from ..errors import InvalidDirectoryError

logger = logging.getLogger(__name__)

_CD_PATTERN = re.compile(r"^cd\s+(.+)$", re.DOTALL)
_SURROUNDING_QUOTES = re.compile(r"^[\"']|[\"']$")

_KILL_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)


def build_environment(overrides: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a copy of the process environment with session overrides applied."""

    env = dict(os.environ)
    if overrides:
        env.update(overrides)
    return env


def is_cd_command(command: str) -> bool:
    return command.strip().startswith("cd ")


def parse_cd_target(command: str, cwd: str) -> tuple[str, str]:
    """Return the raw ``cd`` target and its absolute path relative to ``cwd``."""

    match = _CD_PATTERN.match(command.strip())
    if match is None:
        raise InvalidDirectoryError("Invalid cd command")

    target = _SURROUNDING_QUOTES.sub("", match.group(1).strip())
    expanded = target
    if expanded.startswith("~"):
        expanded = str(Path.home()) + expanded[1:]
    return target, os.path.normpath(os.path.join(cwd, expanded))


def send_signal(process: asyncio.subprocess.Process, sig: int) -> None:
    """Signal the process group of ``process``; a vanished process is ignored."""

    try:
        if os.name == "posix":
            os.killpg(process.pid, sig)
        else:  # pragma: no cover - platform specific
            process.send_signal(sig)
    except (ProcessLookupError, PermissionError):
        pass


async def terminate_process(process: asyncio.subprocess.Process, *, grace_seconds: float) -> None:
    """Send SIGTERM, then SIGKILL if the process is still alive after ``grace_seconds``."""

    already_exited = process.returncode is not None
    send_signal(process, signal.SIGTERM)
    if already_exited:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except asyncio.TimeoutError:
        logger.warning(
            "Process ignored SIGTERM; escalating",
            extra={"pid": process.pid, "grace_seconds": grace_seconds},
        )
        send_signal(process, _KILL_SIGNAL)
        await process.wait()


def terminate_process_blocking(
    process: asyncio.subprocess.Process,
    *,
    grace_seconds: float,
    poll_interval: float = 0.05,
) -> None:
    """Blocking counterpart of :func:`terminate_process` for callers outside an event loop."""

    already_exited = process.returncode is not None
    send_signal(process, signal.SIGTERM)
    if already_exited:
        return
    deadline = time.monotonic() + grace_seconds
    while not _has_exited(process):
        if time.monotonic() >= deadline:
            logger.warning(
                "Process ignored SIGTERM; escalating",
                extra={"pid": process.pid, "grace_seconds": grace_seconds},
            )
            send_signal(process, _KILL_SIGNAL)
            return
        time.sleep(poll_interval)


def _has_exited(process: asyncio.subprocess.Process) -> bool:
    if process.returncode is not None:
        return True
    if os.name != "posix":  # pragma: no cover - platform specific
        return False
    try:
        pid, _ = os.waitpid(process.pid, os.WNOHANG)
    except ChildProcessError:
        # Already reaped by the event loop's child watcher.
        return True
    return pid != 0


__all__ = [
    "build_environment",
    "is_cd_command",
    "parse_cd_target",
    "send_signal",
    "terminate_process",
    "terminate_process_blocking",
]
