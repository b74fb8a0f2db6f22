"""Persistent shell sessions with background process supervision."""

from __future__ import annotations

import asyncio
import codecs
import functools
import inspect
import itertools
import logging
import os
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Literal, Mapping

from ..errors import (
    BufferOverflowError,
    CommandTimeoutError,
    InvalidDirectoryError,
    ProcessNotFoundError,
)
from .utils import (
    build_environment,
    is_cd_command,
    parse_cd_target,
    send_signal,
    terminate_process,
    terminate_process_blocking,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 120_000
DEFAULT_MAX_BUFFER_BYTES = 10 * 1024 * 1024
DEFAULT_KILL_GRACE_SECONDS = 5.0

_READ_CHUNK_BYTES = 4096

ChunkType = Literal["stdout", "stderr", "error"]
OutputSink = Callable[[str, str], Awaitable[None] | None]


@dataclass(slots=True)
class CommandResult:
    """Holds the outcome of a command issued to a session."""

    stdout: str
    stderr: str
    exit_code: int | None
    duration_ms: int
    background: bool = False
    process_id: str | None = None
    pid: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
        }
        if self.background:
            payload.update({"background": True, "process_id": self.process_id, "pid": self.pid})
        if self.error is not None:
            payload["error_type"] = self.error
        return payload


@dataclass(slots=True)
class CommandRecord:
    """History entry for a command that ran to completion."""

    command: str
    timestamp: str
    cwd: str
    stdout: str
    stderr: str
    exit_code: int | None
    duration_ms: int
    streaming: bool = False
    background: bool = False


@dataclass(slots=True)
class StreamChunk:
    type: ChunkType
    data: str


@dataclass(slots=True)
class StreamResult:
    exit_code: int | None
    duration_ms: int
    error: str | None = None


@dataclass(slots=True)
class BackgroundProcess:
    """Registry entry for a command launched with ``background=True``."""

    id: str
    command: str
    process: asyncio.subprocess.Process
    started_at: datetime
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    completed: bool = False
    exit_code: int | None = None
    error: str | None = None
    watcher: asyncio.Task | None = None

    @property
    def pid(self) -> int | None:
        return self.process.pid

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "command": self.command,
            "pid": self.pid,
            "start_time": self.started_at.isoformat(),
            "completed": self.completed,
            "exit_code": self.exit_code,
        }


class _OutputBudget:
    """Tracks combined stdout/stderr bytes against a cap."""

    __slots__ = ("limit", "used", "tripped")

    def __init__(self, limit: int | None) -> None:
        self.limit = limit
        self.used = 0
        self.tripped = asyncio.Event()

    def consume(self, size: int) -> bool:
        if self.limit is None:
            return True
        self.used += size
        if self.used > self.limit:
            self.tripped.set()
            return False
        return True


async def _drain(
    stream: asyncio.StreamReader,
    kind: str,
    sink: OutputSink,
    budget: _OutputBudget,
) -> None:
    # Keep reading after the cap trips so the pipe reaches EOF once the process dies.
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        data = await stream.read(_READ_CHUNK_BYTES)
        if not data:
            text = decoder.decode(b"", final=True)
        elif budget.tripped.is_set() or not budget.consume(len(data)):
            continue
        else:
            text = decoder.decode(data)
        if text:
            outcome = sink(kind, text)
            if inspect.isawaitable(outcome):
                await outcome
        if not data:
            return


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ShellSession:
    """Execution context binding a working directory and environment to commands."""

    def __init__(
        self,
        session_id: str,
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_buffer_bytes: int = DEFAULT_MAX_BUFFER_BYTES,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
    ) -> None:
        self.id = session_id
        self.cwd = os.path.abspath(cwd) if cwd is not None else os.getcwd()
        self.env = build_environment(env)
        self.history: list[CommandRecord] = []
        self.background_processes: dict[str, BackgroundProcess] = {}
        self.created_at = datetime.now(timezone.utc)
        self.default_timeout_ms = default_timeout_ms
        self.max_buffer_bytes = max_buffer_bytes
        self.kill_grace_seconds = kill_grace_seconds
        self._process_ids = itertools.count(1)
        self._reapers: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, cwd={self.cwd!r})"

    async def execute(
        self,
        command: str,
        *,
        timeout_ms: int | None = None,
        background: bool = False,
        cwd: str | None = None,
    ) -> CommandResult:
        """Run ``command`` in this session.

        ``cd`` is handled in-process and updates the session cwd. Everything else
        runs through the shell; spawn failures, timeouts and output overflow come
        back as results with ``error`` set rather than as exceptions.
        """

        if is_cd_command(command):
            return self._change_directory(command)

        timeout_ms = timeout_ms or self.default_timeout_ms
        workdir = self._resolve_workdir(cwd)
        timestamp = _utc_now()
        started = time.monotonic()

        try:
            process = await self._spawn(command, workdir)
        except OSError as exc:
            logger.warning(
                "Failed to spawn command",
                extra={"session_id": self.id, "command": command, "error": str(exc)},
            )
            return CommandResult(
                stdout="",
                stderr=str(exc),
                exit_code=1,
                duration_ms=_elapsed_ms(started),
                error="SpawnError",
            )

        if background:
            return self._register_background(command, process, workdir, timestamp, started)

        stdout: list[str] = []
        stderr: list[str] = []
        error: str | None = None
        message = ""

        def collect(kind: str, data: str) -> None:
            (stdout if kind == "stdout" else stderr).append(data)

        try:
            await self._supervise(process, collect, timeout_ms=timeout_ms)
        except CommandTimeoutError as exc:
            error, message = "Timeout", str(exc)
        except BufferOverflowError as exc:
            error, message = "BufferOverflow", str(exc)

        exit_code = process.returncode
        stderr_text = "".join(stderr)
        if error is not None:
            logger.warning(
                "Command terminated",
                extra={"session_id": self.id, "command": command, "reason": error},
            )
            stderr_text = stderr_text or message
            if not exit_code:
                exit_code = 1

        result = CommandResult(
            stdout="".join(stdout),
            stderr=stderr_text,
            exit_code=exit_code,
            duration_ms=_elapsed_ms(started),
            error=error,
        )
        self._append_history(command, workdir, timestamp, result.stdout, result.stderr, exit_code, result.duration_ms)
        return result

    async def execute_streaming(
        self,
        command: str,
        on_chunk: Callable[[StreamChunk], Awaitable[None] | None],
        *,
        timeout_ms: int | None = None,
        cwd: str | None = None,
    ) -> StreamResult:
        """Run ``command`` and hand output to ``on_chunk`` as it arrives."""

        async def deliver(kind: str, data: str) -> None:
            outcome = on_chunk(StreamChunk(type=kind, data=data))  # type: ignore[arg-type]
            if inspect.isawaitable(outcome):
                await outcome

        if is_cd_command(command):
            result = self._change_directory(command)
            if result.ok:
                await deliver("stdout", result.stdout)
            else:
                await deliver("stderr", result.stderr)
            return StreamResult(exit_code=result.exit_code, duration_ms=0, error=result.error)

        timeout_ms = timeout_ms or self.default_timeout_ms
        workdir = self._resolve_workdir(cwd)
        timestamp = _utc_now()
        started = time.monotonic()

        try:
            process = await self._spawn(command, workdir)
        except OSError as exc:
            await deliver("error", str(exc))
            return StreamResult(exit_code=1, duration_ms=_elapsed_ms(started), error="SpawnError")

        stdout: list[str] = []
        stderr: list[str] = []

        async def forward(kind: str, data: str) -> None:
            (stdout if kind == "stdout" else stderr).append(data)
            await deliver(kind, data)

        error: str | None = None
        try:
            await self._supervise(process, forward, timeout_ms=timeout_ms, capped=False)
        except CommandTimeoutError as exc:
            error = "Timeout"
            await deliver("error", str(exc))

        duration = _elapsed_ms(started)
        self._append_history(
            command,
            workdir,
            timestamp,
            "".join(stdout),
            "".join(stderr),
            process.returncode,
            duration,
            streaming=True,
        )
        return StreamResult(exit_code=process.returncode, duration_ms=duration, error=error)

    def get_cwd(self) -> str:
        return self.cwd

    def get_history(self) -> list[CommandRecord]:
        return list(self.history)

    def clear_history(self) -> None:
        self.history.clear()

    def get_background_process(self, process_id: str) -> BackgroundProcess | None:
        return self.background_processes.get(process_id)

    def list_background_processes(self) -> list[dict[str, Any]]:
        return [record.snapshot() for record in self.background_processes.values()]

    def get_background_output(self, process_id: str) -> dict[str, Any]:
        """Return accumulated output for a background process."""

        record = self.background_processes.get(process_id)
        if record is None:
            raise ProcessNotFoundError(process_id)
        return {
            "process_id": record.id,
            "command": record.command,
            "stdout": "".join(record.stdout),
            "stderr": "".join(record.stderr),
            "completed": record.completed,
            "exit_code": record.exit_code,
            "error_type": record.error,
        }

    def kill_background_process(self, process_id: str) -> bool:
        """Terminate a background process and drop its record.

        Returns ``False`` for unknown ids. SIGTERM is followed by SIGKILL after
        the grace period; without a running event loop this call blocks for it.
        """

        record = self.background_processes.pop(process_id, None)
        if record is None:
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            terminate_process_blocking(record.process, grace_seconds=self.kill_grace_seconds)
        else:
            reaper = loop.create_task(
                terminate_process(record.process, grace_seconds=self.kill_grace_seconds)
            )
            self._reapers.add(reaper)
            reaper.add_done_callback(self._reapers.discard)

        logger.info(
            "Killed background process",
            extra={"session_id": self.id, "process_id": process_id, "pid": record.pid},
        )
        return True

    def close(self) -> int:
        """Kill every background process owned by this session."""

        killed = 0
        for process_id in list(self.background_processes):
            if self.kill_background_process(process_id):
                killed += 1
        return killed

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "cwd": self.cwd,
            "command_count": len(self.history),
            "background_processes": len(self.background_processes),
            "created_at": self.created_at.isoformat(),
        }

    def _change_directory(self, command: str) -> CommandResult:
        try:
            target, resolved = parse_cd_target(command, self.cwd)
            path = Path(resolved)
            if not path.exists():
                raise InvalidDirectoryError(f"cd: no such file or directory: {target}")
            if not path.is_dir():
                raise InvalidDirectoryError(f"cd: not a directory: {target}")
        except InvalidDirectoryError as exc:
            logger.debug("cd rejected", extra={"session_id": self.id, "reason": str(exc)})
            return CommandResult(
                stdout="", stderr=str(exc), exit_code=1, duration_ms=0, error="InvalidDirectory"
            )

        self.cwd = resolved
        return CommandResult(stdout=resolved, stderr="", exit_code=0, duration_ms=0)

    def _resolve_workdir(self, override: str | None) -> str:
        if not override:
            return self.cwd
        return os.path.normpath(os.path.join(self.cwd, os.path.expanduser(override)))

    async def _spawn(self, command: str, workdir: str) -> asyncio.subprocess.Process:
        env = dict(self.env)
        env["PWD"] = workdir
        return await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=workdir,
            env=env,
            start_new_session=os.name == "posix",
        )

    async def _supervise(
        self,
        process: asyncio.subprocess.Process,
        sink: OutputSink,
        *,
        timeout_ms: int | None,
        capped: bool = True,
    ) -> int | None:
        """Pump output into ``sink`` until exit, enforcing timeout and output cap."""

        budget = _OutputBudget(self.max_buffer_bytes if capped else None)
        assert process.stdout is not None and process.stderr is not None
        finished = asyncio.ensure_future(
            asyncio.gather(
                _drain(process.stdout, "stdout", sink, budget),
                _drain(process.stderr, "stderr", sink, budget),
                process.wait(),
            )
        )
        overflow = asyncio.ensure_future(budget.tripped.wait())
        timeout = timeout_ms / 1000 if timeout_ms else None

        try:
            done, _ = await asyncio.wait(
                {finished, overflow}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
            if finished not in done:
                await terminate_process(process, grace_seconds=self.kill_grace_seconds)
                try:
                    await asyncio.wait_for(finished, timeout=max(self.kill_grace_seconds, 1.0))
                except asyncio.TimeoutError:
                    logger.warning(
                        "Output pipes still open after termination",
                        extra={"session_id": self.id, "pid": process.pid},
                    )
            else:
                finished.result()
        finally:
            overflow.cancel()
            if not finished.done():
                finished.cancel()
                send_signal(process, signal.SIGTERM)

        if budget.tripped.is_set():
            raise BufferOverflowError(budget.limit or 0)
        if finished not in done:
            raise CommandTimeoutError(timeout_ms or 0)
        return process.returncode

    def _register_background(
        self,
        command: str,
        process: asyncio.subprocess.Process,
        workdir: str,
        timestamp: str,
        started: float,
    ) -> CommandResult:
        process_id = f"bg_{next(self._process_ids)}"
        record = BackgroundProcess(
            id=process_id,
            command=command,
            process=process,
            started_at=datetime.now(timezone.utc),
        )
        self.background_processes[process_id] = record
        record.watcher = asyncio.ensure_future(
            self._watch_background(record, workdir, timestamp, started)
        )
        record.watcher.add_done_callback(functools.partial(self._watcher_done, record))
        logger.info(
            "Background process started",
            extra={"session_id": self.id, "process_id": process_id, "pid": process.pid, "command": command},
        )
        return CommandResult(
            stdout="",
            stderr="",
            exit_code=None,
            duration_ms=0,
            background=True,
            process_id=process_id,
            pid=process.pid,
        )

    async def _watch_background(
        self,
        record: BackgroundProcess,
        workdir: str,
        timestamp: str,
        started: float,
    ) -> None:
        def collect(kind: str, data: str) -> None:
            (record.stdout if kind == "stdout" else record.stderr).append(data)

        try:
            await self._supervise(record.process, collect, timeout_ms=None)
        except BufferOverflowError as exc:
            record.error = "BufferOverflow"
            record.stderr.append(str(exc))

        record.exit_code = record.process.returncode
        record.completed = True
        self._append_history(
            record.command,
            workdir,
            timestamp,
            "".join(record.stdout),
            "".join(record.stderr),
            record.exit_code,
            _elapsed_ms(started),
            background=True,
        )
        logger.info(
            "Background process finished",
            extra={"session_id": self.id, "process_id": record.id, "exit_code": record.exit_code},
        )

    def _watcher_done(self, record: BackgroundProcess, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        record.error = "WatcherError"
        record.stderr.append(str(exc))
        logger.error(
            "Background watcher failed",
            extra={"session_id": self.id, "process_id": record.id, "error": str(exc)},
            exc_info=exc,
        )

    def _append_history(
        self,
        command: str,
        cwd: str,
        timestamp: str,
        stdout: str,
        stderr: str,
        exit_code: int | None,
        duration_ms: int,
        *,
        streaming: bool = False,
        background: bool = False,
    ) -> None:
        self.history.append(
            CommandRecord(
                command=command,
                timestamp=timestamp,
                cwd=cwd,
                stdout=stdout,
                stderr=stderr,
                exit_code=exit_code,
                duration_ms=duration_ms,
                streaming=streaming,
                background=background,
            )
        )


__all__ = [
    "BackgroundProcess",
    "CommandRecord",
    "CommandResult",
    "ShellSession",
    "StreamChunk",
    "StreamResult",
]
