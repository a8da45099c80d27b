"""Session layer: the channel between process handles and their environment.

- SessionConnection: protocol the process core calls into
- SessionProcessManager: starts processes through any session
- WebSocketSession: JSON-RPC over WebSocket (aiohttp)
- LocalSession: loopback that runs processes on this machine
"""

from __future__ import annotations

from .base import NotificationHandler, SessionConnection
from .local import LocalSession
from .manager import SessionProcessManager, generate_process_id
from .websocket import WebSocketSession

__all__ = [
    "NotificationHandler",
    "SessionConnection",
    "LocalSession",
    "SessionProcessManager",
    "WebSocketSession",
    "generate_process_id",
]
