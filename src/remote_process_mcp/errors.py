"""Session and RPC exceptions.

remote-process-mcp session errors
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "SessionError",
    "RpcError",
    "RpcTimeoutError",
    "SessionClosedError",
]

# JSON-RPC error codes used by the local session
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
PROCESS_NOT_FOUND = -32000


class SessionError(Exception):
    """Base class for session failures."""
    pass


class RpcError(SessionError):
    """The remote side answered a call with an error.

    Attributes:
        code: JSON-RPC error code
        message: Error message from the remote side
        data: Optional extra error payload
    """

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"[{code}] {message}")


class RpcTimeoutError(SessionError):
    """A call got no response within the configured timeout."""

    def __init__(self, method: str, timeout: float) -> None:
        self.method = method
        self.timeout = timeout
        super().__init__(f"{method} timed out after {timeout}s")


class SessionClosedError(SessionError):
    """The session connection is closed or was never opened."""
    pass
