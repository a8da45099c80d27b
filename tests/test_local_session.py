"""LocalSession tests: the process service backed by local children."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from remote_process_mcp.errors import PROCESS_NOT_FOUND, RpcError, SessionClosedError
from remote_process_mcp.process import PROCESS_SERVICE
from remote_process_mcp.runtime.process_runner import IS_WINDOWS, ProcessRunner
from remote_process_mcp.session.local import LocalSession
from remote_process_mcp.session.manager import SessionProcessManager

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="POSIX shell commands")


def make_session() -> LocalSession:
    return LocalSession(ProcessRunner(term_timeout=0.5, kill_timeout=0.5))


class TestLocalProcesses:
    """End to end through SessionProcessManager."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_stdout_and_stderr(self):
        async with make_session() as session:
            manager = SessionProcessManager(session)
            process = await manager.start("echo a; echo b >&2; echo c")
            output = await asyncio.wait_for(process.finished, timeout=5)

        assert output.stdout == "a\nc"
        assert output.stderr == "b"
        assert output.error is True
        timestamps = [m.timestamp for m in output.messages]
        assert timestamps == sorted(timestamps)

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_clean_run_has_no_error(self):
        async with make_session() as session:
            manager = SessionProcessManager(session)
            process = await manager.start("echo fine")
            output = await asyncio.wait_for(process.finished, timeout=5)

        assert output.stdout == "fine"
        assert output.error is False

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_send_stdin(self):
        async with make_session() as session:
            manager = SessionProcessManager(session)
            process = await manager.start('read x; echo "got:$x"')
            await process.send_stdin("42\n")
            output = await asyncio.wait_for(process.finished, timeout=5)

        assert output.stdout == "got:42"

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_env_vars_and_rootdir(self, tmp_path: Path):
        async with make_session() as session:
            manager = SessionProcessManager(session)
            process = await manager.start(
                'echo "$GREETING"; pwd', env_vars={"GREETING": "hi"}, rootdir=str(tmp_path)
            )
            output = await asyncio.wait_for(process.finished, timeout=5)

        lines = output.stdout.split("\n")
        assert lines[0] == "hi"
        assert lines[1].endswith(tmp_path.name)

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_kill_long_running(self):
        exits = []
        async with make_session() as session:
            manager = SessionProcessManager(session)
            process = await manager.start("echo started; sleep 30", on_exit=lambda: exits.append(1))
            await asyncio.sleep(0.2)

            await asyncio.wait_for(process.kill(), timeout=5)

            assert process.finished.done()
            assert process.output.stdout == "started"
            assert exits == [1]

            # killing again is safe
            await process.kill()
            assert exits == [1]

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_streaming_callbacks(self):
        lines = []
        async with make_session() as session:
            manager = SessionProcessManager(session)
            process = await manager.start(
                "echo 1; echo 2", on_stdout=lambda m: lines.append(m.line)
            )
            await asyncio.wait_for(process.finished, timeout=5)

        assert lines == ["1", "2"]


class TestServiceErrors:
    """Direct calls into the service."""

    @pytest.mark.asyncio
    async def test_unknown_process(self):
        async with make_session() as session:
            with pytest.raises(RpcError) as excinfo:
                await session.call(PROCESS_SERVICE, "kill", ["missing"])
        assert excinfo.value.code == PROCESS_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_method_and_service(self):
        async with make_session() as session:
            with pytest.raises(RpcError):
                await session.call(PROCESS_SERVICE, "reboot", [])
            with pytest.raises(RpcError):
                await session.call("filesystem", "list", ["/"])
            with pytest.raises(RpcError):
                await session.subscribe(PROCESS_SERVICE, lambda _p: None, "onSomething", "p")

    @pytest.mark.asyncio
    async def test_bad_rootdir(self, tmp_path: Path):
        async with make_session() as session:
            with pytest.raises(RpcError):
                await session.call(
                    PROCESS_SERVICE, "start", ["p", "true", {}, str(tmp_path / "missing")]
                )

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_close_terminates_and_rejects_calls(self):
        session = make_session()
        manager = SessionProcessManager(session)
        process = await manager.start("sleep 30")

        await session.close()
        await asyncio.wait_for(process.finished, timeout=5)

        with pytest.raises(SessionClosedError):
            await session.call(PROCESS_SERVICE, "stdin", [process.process_id, "x"])

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_exited_process_is_forgotten(self):
        async with make_session() as session:
            manager = SessionProcessManager(session)
            process = await manager.start("echo bye", process_id="gone")
            await asyncio.wait_for(process.finished, timeout=5)

            with pytest.raises(RpcError) as excinfo:
                await session.call(PROCESS_SERVICE, "stdin", ["gone", "x"])
            assert excinfo.value.code == PROCESS_NOT_FOUND

            # the id can be reused once the first process is gone
            again = await manager.start("echo again", process_id="gone")
            output = await asyncio.wait_for(again.finished, timeout=5)
            assert output.stdout == "again"
