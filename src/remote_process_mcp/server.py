"""Remote Process MCP Server。

把 ProcessManager 暴露为 MCP 工具：启动进程、写入 stdin、终止、
读取合并后的输出以及等待进程结束。

用法:
    uvx remote-process-mcp
"""

from __future__ import annotations

import json
import logging
from typing import Any

import anyio
from mcp.server import Server
from mcp.types import TextContent, Tool

from .process import Process, ProcessManager, ProcessState
from .registry import ProcessRegistry

__all__ = ["ProcessTools", "ToolError", "TOOL_DESCRIPTIONS", "create_server"]

logger = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT = 30.0

_PROCESS_ID = {"type": "string", "description": "ID returned by process_start."}

TOOL_DESCRIPTIONS: dict[str, str] = {
    "process_start": "Start a command in the session. Returns its process_id; output is collected in the background.",
    "process_stdin": "Write text to the stdin of a running process (include the trailing newline).",
    "process_kill": "Kill a process and return its final stdout/stderr. The process_id is released afterwards.",
    "process_output": "Read the stdout/stderr collected so far, merged in timestamp order.",
    "process_wait": "Wait (up to timeout seconds) for a process to exit and return its output. An exited process_id is released afterwards.",
    "process_list": "List the ids and count of processes that are still running.",
}

TOOL_SCHEMAS: dict[str, dict[str, Any]] = {
    "process_start": {
        "type": "object",
        "properties": {
            "cmd": {"type": "string", "description": "Command line, run by the session shell."},
            "env_vars": {
                "type": "object",
                "additionalProperties": {"type": "string"},
                "description": "Extra environment variables.",
            },
            "rootdir": {"type": "string", "description": "Working directory."},
            "process_id": {"type": "string", "description": "Optional id to use instead of a generated one."},
        },
        "required": ["cmd"],
    },
    "process_stdin": {
        "type": "object",
        "properties": {"process_id": _PROCESS_ID, "data": {"type": "string"}},
        "required": ["process_id", "data"],
    },
    "process_kill": {
        "type": "object",
        "properties": {"process_id": _PROCESS_ID},
        "required": ["process_id"],
    },
    "process_output": {
        "type": "object",
        "properties": {"process_id": _PROCESS_ID},
        "required": ["process_id"],
    },
    "process_wait": {
        "type": "object",
        "properties": {
            "process_id": _PROCESS_ID,
            "timeout": {"type": "number", "description": f"Seconds to wait (default {DEFAULT_WAIT_TIMEOUT:g})."},
        },
        "required": ["process_id"],
    },
    "process_list": {"type": "object", "properties": {}, "required": []},
}


class ToolError(Exception):
    """工具参数错误或引用了未知进程。"""
    pass


def snapshot(process: Process) -> dict[str, Any]:
    """进程输出的当前快照。"""
    output = process.output
    return {
        "process_id": process.process_id,
        "state": process.state.value,
        "finished": process.state is ProcessState.EXITED,
        "error": output.error,
        "stdout": output.stdout,
        "stderr": output.stderr,
    }


class ProcessTools:
    """MCP 工具的实现，与 MCP 运行时解耦以便测试。"""

    def __init__(self, manager: ProcessManager, registry: ProcessRegistry) -> None:
        self.manager = manager
        self.registry = registry
        self._handlers = {
            "process_start": self.start,
            "process_stdin": self.stdin,
            "process_kill": self.kill,
            "process_output": self.output,
            "process_wait": self.wait,
            "process_list": self.list,
        }

    async def dispatch(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        handler = self._handlers.get(name)
        if handler is None:
            raise ToolError(f"Unknown tool '{name}'")
        return await handler(arguments)

    def _process(self, arguments: dict[str, Any]) -> Process:
        process_id = arguments.get("process_id")
        if not process_id:
            raise ToolError("process_id is required")
        info = self.registry.get(str(process_id))
        if info is None:
            raise ToolError(f"Unknown process '{process_id}'")
        return info.process

    async def start(self, arguments: dict[str, Any]) -> dict[str, Any]:
        cmd = arguments.get("cmd")
        if not cmd or not isinstance(cmd, str):
            raise ToolError("cmd is required")
        process_id = arguments.get("process_id") or None
        if process_id and process_id in self.registry:
            raise ToolError(f"Process '{process_id}' already exists")

        process = await self.manager.start(
            cmd,
            env_vars=arguments.get("env_vars") or None,
            rootdir=arguments.get("rootdir") or None,
            process_id=process_id,
        )
        self.registry.register(process, cmd)
        return {"process_id": process.process_id}

    async def stdin(self, arguments: dict[str, Any]) -> dict[str, Any]:
        process = self._process(arguments)
        await process.send_stdin(str(arguments.get("data", "")))
        return {"process_id": process.process_id, "sent": True}

    async def kill(self, arguments: dict[str, Any]) -> dict[str, Any]:
        process = self._process(arguments)
        await process.kill()
        # 最终输出已经返回给调用方，释放 process_id
        self.registry.unregister(process.process_id)
        return snapshot(process)

    async def output(self, arguments: dict[str, Any]) -> dict[str, Any]:
        return snapshot(self._process(arguments))

    async def wait(self, arguments: dict[str, Any]) -> dict[str, Any]:
        process = self._process(arguments)
        try:
            timeout = float(arguments.get("timeout", DEFAULT_WAIT_TIMEOUT))
        except (TypeError, ValueError):
            raise ToolError("timeout must be a number") from None

        # 超时只放弃本次等待，finished 本身不受影响
        with anyio.move_on_after(max(timeout, 0.0)) as scope:
            await process.finished

        result = snapshot(process)
        result["timed_out"] = scope.cancelled_caught
        if not scope.cancelled_caught:
            self.registry.unregister(process.process_id)
        return result

    async def list(self, arguments: dict[str, Any]) -> dict[str, Any]:
        return {
            "processes": [info.process_id for info in self.registry.list_active()],
            "active_count": self.registry.active_count,
        }


def format_error(message: str) -> list[TextContent]:
    return [TextContent(type="text", text=f"Error: {message}")]


def create_server(manager: ProcessManager, registry: ProcessRegistry) -> Server:
    """创建 MCP Server 实例。

    Args:
        manager: 进程管理器（本地或远程会话）
        registry: 进程注册表
    """
    server = Server("remote-process-mcp")
    tools = ProcessTools(manager, registry)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """列出可用工具。"""
        return [
            Tool(name=name, description=TOOL_DESCRIPTIONS[name], inputSchema=schema)
            for name, schema in TOOL_SCHEMAS.items()
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """调用工具。"""
        logger.debug(f"[MCP] call_tool: name={name}, arguments={arguments}")
        try:
            result = await tools.dispatch(name, arguments or {})
        except anyio.get_cancelled_exc_class():
            logger.info(f"Tool '{name}' cancelled")
            raise
        except ToolError as e:
            return format_error(str(e))
        except Exception as e:
            logger.error(f"Tool '{name}' failed: type={type(e).__name__}, msg={e}")
            return format_error(f"{type(e).__name__}: {e}")
        return [TextContent(type="text", text=json.dumps(result, ensure_ascii=False))]

    return server
