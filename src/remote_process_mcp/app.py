"""Remote Process MCP 应用入口。

包含会话创建、服务器生命周期管理和主入口点。
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys

from mcp.server.stdio import stdio_server

from .config import Config, get_config
from .registry import ProcessRegistry
from .runtime import ProcessRunner
from .server import create_server
from .session import LocalSession, SessionProcessManager, WebSocketSession

__all__ = ["create_session", "run_server", "configure_logging", "main"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def create_session(config: Config) -> LocalSession | WebSocketSession:
    """根据配置创建会话（远程 WebSocket 或本地 loopback）。"""
    if config.is_local:
        return LocalSession(
            ProcessRunner(term_timeout=config.term_timeout, kill_timeout=config.kill_timeout)
        )
    if not config.session_url:
        raise ValueError("session_url is required for a remote session")
    return WebSocketSession(config.session_url, rpc_timeout=config.rpc_timeout)


async def run_server() -> None:
    """运行 MCP Server。

    退出时（正常结束、取消或异常）终止所有仍在运行的进程并关闭会话。
    """
    config = get_config()
    logger.info(f"Starting Remote Process MCP Server: {config}")

    session = create_session(config)
    registry = ProcessRegistry()

    if isinstance(session, WebSocketSession):
        await session.connect()

    manager = SessionProcessManager(session, default_rootdir=config.rootdir)
    server = create_server(manager, registry)

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())

    except asyncio.CancelledError:
        logger.info("run_server: cancelled")
        raise

    finally:
        logger.info("run_server: cleaning up")
        with contextlib.suppress(Exception):
            await asyncio.shield(registry.kill_all())
        await session.close()
        logger.info("run_server: cleanup completed")


def configure_logging(config: Config) -> None:
    """配置日志输出（stdout 留给 MCP stdio 传输）。"""
    handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(stderr_handler)
        log_level = logging.INFO

    # 第三方库保持 WARNING，只对本包启用详细日志
    logging.basicConfig(level=logging.WARNING, handlers=handlers, force=True)
    logging.getLogger("remote_process_mcp").setLevel(log_level)


def main() -> None:
    """主入口点。"""
    configure_logging(get_config())
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run_server())


if __name__ == "__main__":
    main()
