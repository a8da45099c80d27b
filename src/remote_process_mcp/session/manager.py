"""ProcessManager implementation backed by a SessionConnection."""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
from collections.abc import Callable
from typing import Any

from ..process import (
    PROCESS_SERVICE,
    EnvVars,
    OutputCallback,
    Process,
    ProcessMessage,
    ProcessOutput,
)
from .base import SessionConnection

__all__ = ["SessionProcessManager", "generate_process_id"]

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_letters + string.digits


def generate_process_id(length: int = 12) -> str:
    """Random alphanumeric process id."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def _to_message(payload: Any, error: bool) -> ProcessMessage:
    return ProcessMessage(
        line=str(payload.get("line", "")),
        timestamp=int(payload.get("timestamp", 0)),
        error=error,
    )


class SessionProcessManager:
    """Starts processes through the ``process`` service of a session.

    Subscriptions for exit, stdout and stderr are opened before the start
    call so no early output is lost.

    Example:
        manager = SessionProcessManager(session)
        process = await manager.start("echo hello", on_stdout=print)
        output = await process.finished
    """

    def __init__(self, session: SessionConnection, default_rootdir: str | None = None) -> None:
        self._session = session
        self._default_rootdir = default_rootdir

    @property
    def session(self) -> SessionConnection:
        return self._session

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
        """Start ``cmd`` remotely and return its handle.

        Args:
            cmd: Command line, interpreted by the remote shell
            on_stdout: Called for every stdout message after it is logged
            on_stderr: Called for every stderr message after it is logged
            on_exit: Called once when the process has exited
            env_vars: Extra environment variables
            rootdir: Working directory (defaults to the manager's rootdir)
            process_id: Id to use instead of a generated one

        Raises:
            Whatever the session raises for the subscribe or start calls.
        """
        process_id = process_id or generate_process_id()
        rootdir = rootdir if rootdir is not None else self._default_rootdir
        output = ProcessOutput()
        exited = asyncio.Event()
        process: Process | None = None

        def handle_exit(_payload: Any = None) -> None:
            if process is not None:
                process.trigger_exit()
            else:
                exited.set()

        def handle_stdout(payload: Any) -> None:
            message = _to_message(payload, error=False)
            output.add_stdout(message)
            _notify(on_stdout, message)

        def handle_stderr(payload: Any) -> None:
            message = _to_message(payload, error=True)
            output.add_stderr(message)
            _notify(on_stderr, message)

        subscription_ids: list[str] = []
        try:
            for method, handler in (
                ("onExit", handle_exit),
                ("onStdout", handle_stdout),
                ("onStderr", handle_stderr),
            ):
                subscription_ids.append(
                    await self._session.subscribe(PROCESS_SERVICE, handler, method, process_id)
                )
        except BaseException:
            await self._unsubscribe_all(process_id, subscription_ids)
            raise

        async def wait_for_exit() -> ProcessOutput:
            await exited.wait()
            await self._unsubscribe_all(process_id, subscription_ids)
            if on_exit is not None:
                try:
                    on_exit()
                except Exception as e:
                    logger.warning(f"on_exit callback for {process_id} failed: {e}")
            logger.debug(f"Process {process_id} finished: {output!r}")
            return output

        finished = asyncio.create_task(wait_for_exit(), name=f"process-{process_id}-finished")

        try:
            await self._session.call(
                PROCESS_SERVICE,
                "start",
                [process_id, cmd, dict(env_vars or {}), rootdir],
            )
        except BaseException:
            finished.cancel()
            await self._unsubscribe_all(process_id, subscription_ids)
            raise

        process = Process(
            process_id=process_id,
            session=self._session,
            trigger_exit=exited.set,
            finished=finished,
            output=output,
        )
        # The exit notification may have raced the start call.
        if exited.is_set():
            process.trigger_exit()
        logger.info(f"Started process {process_id}: {cmd[:80]}")
        return process

    async def _unsubscribe_all(self, process_id: str, subscription_ids: list[str]) -> None:
        """Drop all subscriptions concurrently; failures are only logged."""
        pending = list(subscription_ids)
        subscription_ids.clear()
        results = await asyncio.gather(
            *(self._session.unsubscribe(subscription_id) for subscription_id in pending),
            return_exceptions=True,
        )
        for subscription_id, result in zip(pending, results):
            if isinstance(result, Exception):
                logger.debug(f"Unsubscribe {subscription_id} for {process_id} failed: {result}")


def _notify(callback: OutputCallback | None, message: ProcessMessage) -> None:
    if callback is None:
        return
    try:
        callback(message)
    except Exception as e:
        logger.warning(f"Output callback failed: {e}")
