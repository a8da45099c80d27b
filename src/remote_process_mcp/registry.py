"""进程注册表模块。

登记 MCP 会话中启动的 Process 句柄，供后续工具调用按 ID 查找，
并在服务器退出时统一终止。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from .process import Process, ProcessState

__all__ = ["ProcessRegistry", "ProcessInfo"]

logger = logging.getLogger(__name__)


@dataclass
class ProcessInfo:
    """已登记进程的信息。

    Attributes:
        process: 进程句柄
        cmd: 启动命令
        created_at: 登记时间
    """

    process: Process
    cmd: str
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def process_id(self) -> str:
        return self.process.process_id

    @property
    def is_running(self) -> bool:
        return self.process.state is not ProcessState.EXITED

    def __repr__(self) -> str:
        elapsed = (datetime.now() - self.created_at).total_seconds()
        return (
            f"ProcessInfo(id={self.process_id}, "
            f"state={self.process.state.value}, "
            f"elapsed={elapsed:.1f}s)"
        )


class ProcessRegistry:
    """进程句柄注册表。

    线程安全：所有操作由调用方保证在同一个事件循环中调用。

    Example:
        ```python
        registry = ProcessRegistry()
        process = await manager.start("sleep 10")
        registry.register(process, "sleep 10")

        # 退出前终止所有仍在运行的进程
        killed = await registry.kill_all()
        ```
    """

    def __init__(self) -> None:
        """初始化进程注册表。"""
        self._processes: dict[str, ProcessInfo] = {}

    def register(self, process: Process, cmd: str = "") -> ProcessInfo:
        """登记进程。

        Raises:
            ValueError: 如果 process_id 已存在
        """
        if process.process_id in self._processes:
            raise ValueError(f"Process {process.process_id} already registered")

        info = ProcessInfo(process=process, cmd=cmd)
        self._processes[process.process_id] = info
        logger.debug(f"Registered process: {info}")
        return info

    def unregister(self, process_id: str) -> bool:
        """注销进程，进程存在则返回 True。"""
        info = self._processes.pop(process_id, None)
        if info is None:
            return False
        logger.debug(f"Unregistered process: {info}")
        return True

    def get(self, process_id: str) -> ProcessInfo | None:
        """获取进程信息，不存在时返回 None。"""
        return self._processes.get(process_id)

    def list_active(self) -> list[ProcessInfo]:
        """列出仍在运行的进程（按登记时间排序）。"""
        active = [info for info in self._processes.values() if info.is_running]
        return sorted(active, key=lambda x: x.created_at)

    @property
    def active_count(self) -> int:
        """仍在运行的进程数量。"""
        return sum(1 for info in self._processes.values() if info.is_running)

    async def kill_all(self) -> int:
        """并发终止所有仍在运行的进程。

        Returns:
            发起终止的进程数量（失败只记录日志）
        """
        active = self.list_active()
        if not active:
            return 0

        results = await asyncio.gather(
            *(info.process.kill() for info in active),
            return_exceptions=True,
        )
        for info, result in zip(active, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to kill {info.process_id}: {result!r}")

        logger.info(f"Killed {len(active)} process(es)")
        return len(active)

    def __len__(self) -> int:
        return len(self._processes)

    def __contains__(self, process_id: str) -> bool:
        return process_id in self._processes
