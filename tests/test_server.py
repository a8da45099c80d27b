"""Server 模块测试。

通过 ProcessTools 直接验证工具逻辑，不经过 MCP 传输层。
"""

from __future__ import annotations

import asyncio
import json

import pytest
from mcp.server import Server

from remote_process_mcp.registry import ProcessRegistry
from remote_process_mcp.server import (
    TOOL_DESCRIPTIONS,
    TOOL_SCHEMAS,
    ProcessTools,
    ToolError,
    create_server,
    format_error,
)
from remote_process_mcp.session.manager import SessionProcessManager


@pytest.fixture
def tools(fake_session) -> ProcessTools:
    return ProcessTools(SessionProcessManager(fake_session), ProcessRegistry())


class TestToolDefinitions:
    """工具定义。"""

    def test_every_tool_has_description_and_schema(self):
        assert set(TOOL_DESCRIPTIONS) == set(TOOL_SCHEMAS)
        for schema in TOOL_SCHEMAS.values():
            assert schema["type"] == "object"

    def test_create_server(self, fake_session):
        server = create_server(SessionProcessManager(fake_session), ProcessRegistry())
        assert isinstance(server, Server)
        assert server.name == "remote-process-mcp"

    def test_format_error(self):
        [content] = format_error("bad")
        assert content.text == "Error: bad"


class TestProcessTools:
    """工具调用逻辑。"""

    @pytest.mark.asyncio
    async def test_start_and_output(self, tools, fake_session):
        result = await tools.dispatch("process_start", {"cmd": "ls", "process_id": "p1"})
        assert result == {"process_id": "p1"}
        assert "p1" in tools.registry

        fake_session.emit("onStdout", "p1", {"line": "file.txt", "timestamp": 1})
        fake_session.emit("onStderr", "p1", {"line": "denied", "timestamp": 2})

        output = await tools.dispatch("process_output", {"process_id": "p1"})
        assert output["stdout"] == "file.txt"
        assert output["stderr"] == "denied"
        assert output["error"] is True
        assert output["finished"] is False
        assert output["state"] == "running"
        json.dumps(output)

    @pytest.mark.asyncio
    async def test_start_requires_cmd(self, tools):
        with pytest.raises(ToolError, match="cmd"):
            await tools.dispatch("process_start", {})

    @pytest.mark.asyncio
    async def test_start_duplicate_id(self, tools):
        await tools.dispatch("process_start", {"cmd": "a", "process_id": "p1"})
        with pytest.raises(ToolError, match="already exists"):
            await tools.dispatch("process_start", {"cmd": "b", "process_id": "p1"})

    @pytest.mark.asyncio
    async def test_stdin(self, tools, fake_session):
        await tools.dispatch("process_start", {"cmd": "cat", "process_id": "p1"})
        result = await tools.dispatch("process_stdin", {"process_id": "p1", "data": "hi\n"})
        assert result["sent"] is True
        assert fake_session.calls[-1] == ("process", "stdin", ["p1", "hi\n"])

    @pytest.mark.asyncio
    async def test_kill_returns_final_output(self, tools, fake_session):
        await tools.dispatch("process_start", {"cmd": "sleep 9", "process_id": "p1"})
        fake_session.emit("onStdout", "p1", {"line": "tick", "timestamp": 1})

        result = await tools.dispatch("process_kill", {"process_id": "p1"})

        assert result["finished"] is True
        assert result["state"] == "exited"
        assert result["stdout"] == "tick"
        assert "p1" not in tools.registry
        assert (await tools.dispatch("process_list", {}))["processes"] == []
        with pytest.raises(ToolError, match="Unknown process"):
            await tools.dispatch("process_output", {"process_id": "p1"})

    @pytest.mark.asyncio
    async def test_wait_times_out_without_cancelling(self, tools):
        await tools.dispatch("process_start", {"cmd": "sleep 9", "process_id": "p1"})

        result = await tools.dispatch("process_wait", {"process_id": "p1", "timeout": 0.05})

        assert result["timed_out"] is True
        process = tools.registry.get("p1").process
        assert "p1" in tools.registry
        assert not process.finished.done()
        assert not process.finished.cancelled()

    @pytest.mark.asyncio
    async def test_wait_until_exit(self, tools, fake_session):
        await tools.dispatch("process_start", {"cmd": "echo", "process_id": "p1"})

        async def finish_soon():
            await asyncio.sleep(0.05)
            fake_session.emit("onStdout", "p1", {"line": "bye", "timestamp": 1})
            fake_session.emit("onExit", "p1")

        asyncio.create_task(finish_soon())
        result = await tools.dispatch("process_wait", {"process_id": "p1", "timeout": 5})

        assert result["timed_out"] is False
        assert result["finished"] is True
        assert result["stdout"] == "bye"
        assert "p1" not in tools.registry

    @pytest.mark.asyncio
    async def test_wait_bad_timeout(self, tools):
        await tools.dispatch("process_start", {"cmd": "x", "process_id": "p1"})
        with pytest.raises(ToolError, match="timeout"):
            await tools.dispatch("process_wait", {"process_id": "p1", "timeout": "soon"})

    @pytest.mark.asyncio
    async def test_list_active(self, tools, fake_session):
        await tools.dispatch("process_start", {"cmd": "a", "process_id": "p1"})
        await tools.dispatch("process_start", {"cmd": "b", "process_id": "p2"})
        result = await tools.dispatch("process_list", {})
        assert result == {"processes": ["p1", "p2"], "active_count": 2}

        fake_session.emit("onExit", "p1")
        await asyncio.sleep(0.01)
        result = await tools.dispatch("process_list", {})
        assert result == {"processes": ["p2"], "active_count": 1}

    @pytest.mark.asyncio
    async def test_unknown_process_and_tool(self, tools):
        with pytest.raises(ToolError, match="Unknown process"):
            await tools.dispatch("process_output", {"process_id": "nope"})
        with pytest.raises(ToolError, match="process_id"):
            await tools.dispatch("process_kill", {})
        with pytest.raises(ToolError, match="Unknown tool"):
            await tools.dispatch("reboot", {})
