"""Session connection protocol.

The process core only needs three things from a session: a way to make remote
calls, and a way to subscribe to (and drop) notification streams.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, Protocol, runtime_checkable

__all__ = ["NotificationHandler", "SessionConnection"]

NotificationHandler = Callable[[Any], None]


@runtime_checkable
class SessionConnection(Protocol):
    """Bidirectional channel to the environment running the processes."""

    async def call(self, service: str, method: str, params: Sequence[Any] | None = None) -> Any:
        """Call ``method`` on ``service`` and return its result.

        Raises:
            RpcError: The remote side returned an error
            SessionClosedError: The connection is not open
        """
        ...

    async def subscribe(
        self,
        service: str,
        handler: NotificationHandler,
        method: str,
        *params: Any,
    ) -> str:
        """Subscribe ``handler`` to notifications; returns the subscription id."""
        ...

    async def unsubscribe(self, subscription_id: str) -> None:
        ...
