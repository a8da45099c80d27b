"""RP 环境变量配置管理。

环境变量:
    RP_SESSION_URL: 远程会话的 WebSocket 地址
        - 空/未设置 = 使用本地 loopback 会话（在本机执行进程）
        - 例: "ws://sandbox.local:49982/ws"

    RP_RPC_TIMEOUT: 单次远程调用超时（秒）
        - 默认 30 秒，限制在 1-600 秒范围

    RP_TERM_TIMEOUT: 本地进程收到 SIGTERM 后的等待时间（秒）
        - 默认 2.0 秒

    RP_KILL_TIMEOUT: 本地进程收到 SIGKILL 后的等待时间（秒）
        - 默认 1.0 秒

    RP_ROOTDIR: 启动进程的默认工作目录
        - 空/未设置 = 由会话决定

    RP_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_RPC_TIMEOUT = 30.0
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_seconds(value: str | None, default: float, low: float, high: float) -> float:
    """解析秒数环境变量，无效值返回默认值。"""
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    return max(low, min(seconds, high))


def _parse_optional(value: str | None) -> str | None:
    """空字符串视为未设置。"""
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclass
class Config:
    """RP 配置。

    Attributes:
        session_url: 远程会话地址，None 表示本地会话
        rpc_timeout: 远程调用超时（秒）
        term_timeout: 本地进程优雅终止等待时间（秒）
        kill_timeout: 本地进程强制终止等待时间（秒）
        rootdir: 默认工作目录
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    session_url: str | None = None
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    rootdir: str | None = None
    log_debug: bool = False
    log_file: str | None = None

    @property
    def is_local(self) -> bool:
        """是否使用本地 loopback 会话。"""
        return self.session_url is None

    def __repr__(self) -> str:
        return (
            f"Config(session={self.session_url or 'local'}, "
            f"rpc_timeout={self.rpc_timeout}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"rootdir={self.rootdir}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "remote-process-mcp"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"rp_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("RP_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        session_url=_parse_optional(os.environ.get("RP_SESSION_URL")),
        rpc_timeout=_parse_seconds(
            os.environ.get("RP_RPC_TIMEOUT"), DEFAULT_RPC_TIMEOUT, 1.0, 600.0
        ),
        term_timeout=_parse_seconds(
            os.environ.get("RP_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT, 0.1, 60.0
        ),
        kill_timeout=_parse_seconds(
            os.environ.get("RP_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT, 0.1, 60.0
        ),
        rootdir=_parse_optional(os.environ.get("RP_ROOTDIR")),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
