"""Remote Process MCP - 远程进程的客户端表示与 MCP 工具服务器。

环境变量:
    RP_SESSION_URL: 远程会话地址（空=本地执行）
    RP_RPC_TIMEOUT: 远程调用超时 (默认 30s)
    RP_LOG_DEBUG: 日志输出到临时文件 (默认 false)

用法:
    uvx remote-process-mcp
"""

__version__ = "0.1.0"

from .process import (
    PROCESS_SERVICE,
    Process,
    ProcessManager,
    ProcessMessage,
    ProcessOutput,
    ProcessState,
)
from .app import main

__all__ = [
    "__version__",
    "PROCESS_SERVICE",
    "Process",
    "ProcessManager",
    "ProcessMessage",
    "ProcessOutput",
    "ProcessState",
    "main",
]
