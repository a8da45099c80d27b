"""Client-side model of a process running behind a session.

remote-process-mcp core module

This module provides:
- ProcessMessage: one decoded line of remote output
- ProcessOutput: stdout/stderr merged into a single timestamp-ordered log
- Process: handle for a remote process (kill, stdin, completion)
- ProcessManager: protocol for anything that can start a Process

Key design points:
- Output arrives on two streams, each roughly in timestamp order, so the log
  is kept sorted by incremental insertion from the tail instead of sorting on
  read. Equal timestamps keep call order.
- kill() always fires the local exit trigger and waits for completion, even
  when the remote kill call fails.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .session.base import SessionConnection

__all__ = [
    "PROCESS_SERVICE",
    "EnvVars",
    "OutputCallback",
    "ProcessMessage",
    "ProcessOutput",
    "ProcessState",
    "Process",
    "ProcessManager",
]

logger = logging.getLogger(__name__)

PROCESS_SERVICE = "process"

EnvVars = Mapping[str, str]


@dataclass(frozen=True)
class ProcessMessage:
    """A single line of output from a process.

    Attributes:
        line: Text of the line, without the trailing newline
        timestamp: Unix epoch in nanoseconds
        error: True when the line came from stderr
    """

    line: str
    timestamp: int
    error: bool = False


OutputCallback = Callable[[ProcessMessage], None]


class ProcessOutput:
    """Output from a process, stdout and stderr merged by timestamp."""

    delimiter = "\n"

    def __init__(self) -> None:
        self._messages: list[ProcessMessage] = []
        self._error = False
        self._lock = threading.Lock()

    @property
    def error(self) -> bool:
        """Whether anything was written to stderr."""
        return self._error

    @property
    def stdout(self) -> str:
        """The stdout lines joined with newlines."""
        return self.delimiter.join(m.line for m in self.messages if not m.error)

    @property
    def stderr(self) -> str:
        """The stderr lines joined with newlines."""
        return self.delimiter.join(m.line for m in self.messages if m.error)

    @property
    def messages(self) -> tuple[ProcessMessage, ...]:
        """Snapshot of the merged log."""
        with self._lock:
            return tuple(self._messages)

    def add_stdout(self, message: ProcessMessage) -> None:
        self._insert_by_timestamp(message)

    def add_stderr(self, message: ProcessMessage) -> None:
        with self._lock:
            self._error = True
            self._insert_locked(message)

    def _insert_by_timestamp(self, message: ProcessMessage) -> None:
        with self._lock:
            self._insert_locked(message)

    def _insert_locked(self, message: ProcessMessage) -> None:
        # Walk back from the tail past every strictly newer entry. Ties stay
        # behind the earlier insertion.
        i = len(self._messages) - 1
        while i >= 0 and self._messages[i].timestamp > message.timestamp:
            i -= 1
        self._messages.insert(i + 1, message)

    def __len__(self) -> int:
        return len(self._messages)

    def __repr__(self) -> str:
        return f"ProcessOutput(messages={len(self)}, error={self._error})"


class ProcessState(str, enum.Enum):
    """Lifecycle of a Process handle."""

    RUNNING = "running"
    EXITING = "exiting"
    EXITED = "exited"


class Process:
    """A process running in the remote environment.

    Instances are built by a ProcessManager once the remote side has
    confirmed the start. ``finished`` resolves exactly once with the final
    ProcessOutput, either on the remote exit notification or when
    ``trigger_exit`` is fired locally. Waiters get a shielded view of the
    completion, so a timed-out or cancelled wait leaves it intact.

    Example:
        process = await manager.start("ls -la")
        await process.send_stdin("y\\n")
        output = await process.finished
        print(output.stdout)
    """

    def __init__(
        self,
        process_id: str,
        session: SessionConnection,
        trigger_exit: Callable[[], None],
        finished: Awaitable[ProcessOutput],
        output: ProcessOutput,
    ) -> None:
        self._process_id = process_id
        self._session = session
        self._trigger_exit = trigger_exit
        self._completion = asyncio.ensure_future(finished)
        self._output = output
        self._exiting = False

    @property
    def process_id(self) -> str:
        return self._process_id

    @property
    def output(self) -> ProcessOutput:
        """Output collected so far. Readable at any time."""
        return self._output

    @property
    def finished(self) -> asyncio.Future[ProcessOutput]:
        """Resolves with the final output once the process has exited.

        Cancelling the returned future (e.g. via ``asyncio.wait_for``) only
        abandons that wait.
        """
        return asyncio.shield(self._completion)

    @property
    def state(self) -> ProcessState:
        if self._completion.done():
            return ProcessState.EXITED
        if self._exiting:
            return ProcessState.EXITING
        return ProcessState.RUNNING

    def trigger_exit(self) -> None:
        """Fire the local exit trigger. Safe to call more than once."""
        self._exiting = True
        self._trigger_exit()

    async def kill(self) -> None:
        """Kill the process.

        The remote kill is always followed by the local exit trigger and a
        wait on ``finished``, so the caller never depends on an exit
        notification that may not arrive. A remote failure is re-raised after
        that cleanup, unless the process had already exited beforehand or its
        exit notification arrived while the kill was in flight.
        """
        already_exited = self._completion.done()
        logger.debug(f"Killing process {self._process_id} (exited={already_exited})")
        try:
            await self._session.call(PROCESS_SERVICE, "kill", [self._process_id])
        except Exception as e:
            if not already_exited and self.state is ProcessState.RUNNING:
                raise
            logger.debug(f"Kill of exited process {self._process_id} failed: {e}")
        finally:
            self.trigger_exit()
            await asyncio.shield(self._completion)

    async def send_stdin(self, data: str) -> Any:
        """Send data to the process stdin.

        Args:
            data: Text to write, sent as is (add a newline yourself)
        """
        return await self._session.call(PROCESS_SERVICE, "stdin", [self._process_id, data])

    def __repr__(self) -> str:
        return f"Process(id={self._process_id}, state={self.state.value}, output={self._output!r})"


class ProcessManager(Protocol):
    """Starts processes and hands back their Process handles."""

    async def start(
        self,
        cmd: str,
        *,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
        on_exit: Callable[[], None] | None = None,
        env_vars: EnvVars | None = None,
        rootdir: str | None = None,
        process_id: str | None = None,
    ) -> Process:
        ...
