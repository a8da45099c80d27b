"""Local process runner with subprocess isolation and reliable termination.

remote-process-mcp runtime module

This module provides:
- Cross-platform subprocess isolation (new session/process group)
- Concurrent line pumping of stdout and stderr with nanosecond timestamps
- Interactive stdin writes while the process runs
- Reliable termination (SIGTERM -> timeout -> SIGKILL), shielded from cancel

Key design points:
- POSIX: start_new_session=True so signals reach the whole process group
- Windows: CREATE_NEW_PROCESS_GROUP for CTRL_BREAK_EVENT delivery
- Each line is stamped when it is read, not when it is consumed
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

__all__ = [
    "IS_WINDOWS",
    "LineCallback",
    "ProcessRunner",
    "ProcessSpec",
    "RunningProcess",
    "shell_argv",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL
STREAM_LIMIT = 1024 * 1024  # longest line the pumps accept

# (line without newline, unix epoch nanoseconds)
LineCallback = Callable[[str, int], None]


def shell_argv(cmd: str) -> list[str]:
    """Wrap a command line so the platform shell interprets it."""
    if IS_WINDOWS:
        return ["cmd", "/c", cmd]
    return ["sh", "-c", cmd]


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory (None = inherit)
        env: Extra environment variables layered over the parent's
    """

    argv: list[str]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None


class RunningProcess:
    """A spawned child whose output is being pumped into callbacks."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        runner: ProcessRunner,
        on_stdout: LineCallback | None,
        on_stderr: LineCallback | None,
        on_exit: Callable[[int], None] | None,
    ) -> None:
        self._process = process
        self._runner = runner
        self._on_exit = on_exit
        self._pumps = [
            asyncio.create_task(_pump(process.stdout, on_stdout), name=f"pid-{process.pid}-stdout"),
            asyncio.create_task(_pump(process.stderr, on_stderr), name=f"pid-{process.pid}-stderr"),
        ]
        self._supervisor = asyncio.create_task(self._supervise(), name=f"pid-{process.pid}-supervisor")

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def is_running(self) -> bool:
        return not self._supervisor.done()

    async def write_stdin(self, data: str) -> None:
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            raise BrokenPipeError(f"stdin of pid={self.pid} is closed")
        stdin.write(data.encode("utf-8"))
        await stdin.drain()

    async def wait(self) -> int:
        """Wait until the child exited and both streams are drained."""
        await asyncio.shield(self._supervisor)
        return self._process.returncode if self._process.returncode is not None else -1

    async def terminate(self) -> None:
        """Stop the child and its process group; safe after exit."""
        try:
            await asyncio.shield(self._runner.terminate(self._process))
        except asyncio.CancelledError:
            await self._runner.terminate(self._process)
            raise
        await self.wait()

    async def _supervise(self) -> None:
        try:
            await asyncio.gather(*self._pumps)
            returncode = await self._process.wait()
        except asyncio.CancelledError:
            for pump in self._pumps:
                pump.cancel()
            raise
        finally:
            if self._process.stdin is not None and not self._process.stdin.is_closing():
                self._process.stdin.close()

        logger.debug(f"Subprocess completed pid={self.pid} returncode={returncode}")
        if self._on_exit is not None:
            try:
                self._on_exit(returncode)
            except Exception as e:
                logger.warning(f"Exit callback failed for pid={self.pid}: {e}")


async def _pump(stream: asyncio.StreamReader | None, callback: LineCallback | None) -> None:
    if stream is None:
        return
    while True:
        raw = await stream.readline()
        if not raw:
            break
        timestamp = time.time_ns()
        if callback is None:
            continue
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        try:
            callback(line, timestamp)
        except Exception as e:
            logger.warning(f"Line callback failed: {e}")


@dataclass
class ProcessRunner:
    """Spawns isolated child processes and terminates them reliably.

    Example:
        runner = ProcessRunner()
        child = await runner.spawn(
            ProcessSpec(argv=shell_argv("cat")),
            on_stdout=lambda line, ts: print(ts, line),
        )
        await child.write_stdin("hello\\n")
        await child.terminate()
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT

    async def spawn(
        self,
        spec: ProcessSpec,
        *,
        on_stdout: LineCallback | None = None,
        on_stderr: LineCallback | None = None,
        on_exit: Callable[[int], None] | None = None,
    ) -> RunningProcess:
        """Start the child and begin pumping its output.

        Raises:
            OSError: The executable or working directory is unusable
        """
        process = await asyncio.create_subprocess_exec(
            *spec.argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=spec.cwd,
            limit=STREAM_LIMIT,
            **self._build_subprocess_kwargs(spec),
        )
        logger.debug(f"Started subprocess pid={process.pid} argv={spec.argv[0]} cwd={spec.cwd}")
        return RunningProcess(process, self, on_stdout, on_stderr, on_exit)

    def _build_subprocess_kwargs(self, spec: ProcessSpec) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}

        if spec.env:
            kwargs["env"] = {**os.environ, **spec.env}

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        return kwargs

    async def terminate(self, process: asyncio.subprocess.Process) -> None:
        """Terminate gracefully, then forcefully if the child lingers."""
        if process.returncode is not None:
            return

        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")
        try:
            self._send_graceful(process)
            try:
                await asyncio.wait_for(process.wait(), timeout=self.term_timeout)
                logger.debug(f"Subprocess terminated gracefully pid={pid} returncode={process.returncode}")
                return
            except asyncio.TimeoutError:
                pass

            logger.debug(f"Force killing subprocess pid={pid}")
            self._send_kill(process)
            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")
        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")

    def _send_graceful(self, process: asyncio.subprocess.Process) -> None:
        if IS_WINDOWS:
            try:
                os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            except OSError as e:
                logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
                process.terminate()
            return
        self._signal_group(process, signal.SIGTERM)

    def _send_kill(self, process: asyncio.subprocess.Process) -> None:
        if IS_WINDOWS:
            process.kill()
            return
        self._signal_group(process, signal.SIGKILL)

    def _signal_group(self, process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        try:
            os.killpg(os.getpgid(process.pid), sig)
            logger.debug(f"Sent {sig.name} to process group of pid={process.pid}")
        except ProcessLookupError:
            raise
        except OSError as e:
            logger.debug(f"killpg failed, signalling pid={process.pid} only: {e}")
            process.send_signal(sig)
