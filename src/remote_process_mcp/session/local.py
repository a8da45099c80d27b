"""Loopback session that runs the ``process`` service on this machine.

Lets the same ProcessManager / Process code drive local child processes:
handy for development, tests, and running without a remote environment.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import (
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    PROCESS_NOT_FOUND,
    RpcError,
    SessionClosedError,
)
from ..process import PROCESS_SERVICE
from ..runtime.process_runner import ProcessRunner, ProcessSpec, RunningProcess, shell_argv
from .base import NotificationHandler

__all__ = ["LocalSession"]

logger = logging.getLogger(__name__)

EVENTS = ("onStdout", "onStderr", "onExit")


@dataclass
class _Subscription:
    event: str
    process_id: str
    handler: NotificationHandler


class LocalSession:
    """SessionConnection serving the process service with local children.

    Example:
        async with LocalSession() as session:
            manager = SessionProcessManager(session)
            process = await manager.start("echo hi; echo oops >&2")
            output = await process.finished
            assert output.error
    """

    def __init__(self, runner: ProcessRunner | None = None) -> None:
        self._runner = runner or ProcessRunner()
        self._processes: dict[str, RunningProcess] = {}
        self._subscriptions: dict[str, _Subscription] = {}
        self._ids = itertools.count(1)
        self._closed = False

    async def __aenter__(self) -> LocalSession:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Terminate every child still running and drop subscriptions."""
        self._closed = True
        live = [child for child in self._processes.values() if child.is_running]
        if live:
            logger.info(f"Terminating {len(live)} local process(es)")
            await asyncio.gather(*(child.terminate() for child in live), return_exceptions=True)
        self._subscriptions.clear()

    async def call(self, service: str, method: str, params: Sequence[Any] | None = None) -> Any:
        self._ensure_open()
        if service != PROCESS_SERVICE:
            raise RpcError(METHOD_NOT_FOUND, f"Unknown service: {service}")
        params = list(params or [])
        if method == "start":
            return await self._start(*_pad(params, 4))
        if method == "kill":
            return await self._kill(*_pad(params, 1))
        if method == "stdin":
            return await self._stdin(*_pad(params, 2))
        raise RpcError(METHOD_NOT_FOUND, f"Unknown method: {service}.{method}")

    async def subscribe(
        self,
        service: str,
        handler: NotificationHandler,
        method: str,
        *params: Any,
    ) -> str:
        self._ensure_open()
        if service != PROCESS_SERVICE or method not in EVENTS:
            raise RpcError(METHOD_NOT_FOUND, f"Unknown subscription: {service}.{method}")
        if not params:
            raise RpcError(INVALID_PARAMS, f"{method} requires a process id")
        subscription_id = f"sub-{next(self._ids)}"
        self._subscriptions[subscription_id] = _Subscription(method, str(params[0]), handler)
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("Local session is closed")

    def _emit(self, event: str, process_id: str, payload: Any = None) -> None:
        for subscription in list(self._subscriptions.values()):
            if subscription.event != event or subscription.process_id != process_id:
                continue
            try:
                subscription.handler(payload)
            except Exception as e:
                logger.warning(f"{event} handler for {process_id} failed: {e}")

    async def _start(
        self,
        process_id: Any,
        cmd: Any,
        env_vars: Mapping[str, str] | None,
        rootdir: str | None,
    ) -> str:
        if not process_id or not cmd:
            raise RpcError(INVALID_PARAMS, "start requires a process id and a command")
        process_id = str(process_id)
        existing = self._processes.get(process_id)
        if existing is not None and existing.is_running:
            raise RpcError(INVALID_PARAMS, f"Process {process_id} is already running")

        spec = ProcessSpec(
            argv=shell_argv(str(cmd)),
            cwd=Path(rootdir) if rootdir else None,
            env={str(k): str(v) for k, v in (env_vars or {}).items()},
        )

        def on_stdout(line: str, timestamp: int) -> None:
            self._emit("onStdout", process_id, {"line": line, "timestamp": timestamp})

        def on_stderr(line: str, timestamp: int) -> None:
            self._emit("onStderr", process_id, {"line": line, "timestamp": timestamp})

        def on_exit(returncode: int) -> None:
            self._emit("onExit", process_id, {"exitCode": returncode})
            # Exited children are forgotten; later calls for the id fail.
            if self._processes.get(process_id) is child:
                del self._processes[process_id]

        try:
            child = await self._runner.spawn(
                spec, on_stdout=on_stdout, on_stderr=on_stderr, on_exit=on_exit
            )
        except OSError as e:
            raise RpcError(INVALID_PARAMS, f"Cannot start {process_id}: {e}") from e

        self._processes[process_id] = child
        logger.debug(f"Local process {process_id} started pid={child.pid}")
        return process_id

    async def _kill(self, process_id: Any) -> None:
        await self._get(process_id).terminate()

    async def _stdin(self, process_id: Any, data: Any) -> None:
        child = self._get(process_id)
        try:
            await child.write_stdin(str(data or ""))
        except (BrokenPipeError, ConnectionResetError) as e:
            raise RpcError(PROCESS_NOT_FOUND, f"Process {process_id} is not accepting input: {e}") from e

    def _get(self, process_id: Any) -> RunningProcess:
        child = self._processes.get(str(process_id))
        if child is None:
            raise RpcError(PROCESS_NOT_FOUND, f"Process {process_id} not found")
        return child


def _pad(params: list[Any], size: int) -> list[Any]:
    return (params + [None] * size)[:size]
