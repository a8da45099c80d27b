"""WebSocket JSON-RPC session built on aiohttp."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from collections.abc import Sequence
from typing import Any

import aiohttp

from ..errors import RpcError, RpcTimeoutError, SessionClosedError
from .base import NotificationHandler
from .rpc import RpcNotification, RpcRequest, RpcResponse, parse_message, rpc_method

__all__ = ["WebSocketSession"]

logger = logging.getLogger(__name__)

DEFAULT_RPC_TIMEOUT = 30.0


class WebSocketSession:
    """SessionConnection over a JSON-RPC WebSocket.

    Example:
        async with WebSocketSession("ws://sandbox:49982/ws") as session:
            manager = SessionProcessManager(session)
            process = await manager.start("uname -a")
            print((await process.finished).stdout)
    """

    def __init__(
        self,
        url: str,
        *,
        rpc_timeout: float = DEFAULT_RPC_TIMEOUT,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.url = url
        self.rpc_timeout = rpc_timeout
        self._headers = headers or {}
        self._http: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task[None] | None = None
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._handlers: dict[str, NotificationHandler] = {}
        self._services: dict[str, str] = {}

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        if self.is_open:
            return
        self._http = aiohttp.ClientSession()
        try:
            self._ws = await self._http.ws_connect(self.url, headers=self._headers)
        except aiohttp.ClientError:
            await self._http.close()
            self._http = None
            raise
        self._reader = asyncio.create_task(self._read_loop(), name="ws-session-reader")
        logger.info(f"Session connected: {self.url}")

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None
        self._fail_pending(SessionClosedError("Session closed"))
        self._handlers.clear()
        self._services.clear()
        logger.debug(f"Session closed: {self.url}")

    async def __aenter__(self) -> WebSocketSession:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def call(self, service: str, method: str, params: Sequence[Any] | None = None) -> Any:
        return await self._request(rpc_method(service, method), list(params or []))

    async def subscribe(
        self,
        service: str,
        handler: NotificationHandler,
        method: str,
        *params: Any,
    ) -> str:
        subscription_id = await self._request(rpc_method(service, "subscribe"), [method, *params])
        subscription_id = str(subscription_id)
        self._handlers[subscription_id] = handler
        self._services[subscription_id] = service
        logger.debug(f"Subscribed {service}.{method}{list(params)} as {subscription_id}")
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> None:
        self._handlers.pop(subscription_id, None)
        service = self._services.pop(subscription_id, None)
        if service is None:
            return
        await self._request(rpc_method(service, "unsubscribe"), [subscription_id])

    async def _request(self, method: str, params: list[Any]) -> Any:
        ws = self._ws
        if ws is None or ws.closed:
            raise SessionClosedError(f"Cannot call {method}: session is not open")

        request = RpcRequest(id=next(self._ids), method=method, params=params)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request.id] = future
        try:
            await ws.send_str(request.model_dump_json())
            return await asyncio.wait_for(future, timeout=self.rpc_timeout)
        except asyncio.TimeoutError:
            raise RpcTimeoutError(method, self.rpc_timeout) from None
        finally:
            self._pending.pop(request.id, None)

    async def _read_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(f"Session socket error: {ws.exception()}")
                    break
        finally:
            self._fail_pending(SessionClosedError("Session connection lost"))
            logger.debug("Session reader stopped")

    def _dispatch(self, text: str) -> None:
        message = parse_message(text)
        if isinstance(message, RpcResponse):
            future = self._pending.get(message.id)
            if future is None or future.done():
                logger.debug(f"Dropping response for unknown request {message.id}")
                return
            if message.error is not None:
                future.set_exception(
                    RpcError(message.error.code, message.error.message, message.error.data)
                )
            else:
                future.set_result(message.result)
        elif isinstance(message, RpcNotification):
            handler = self._handlers.get(message.params.subscription)
            if handler is None:
                logger.debug(f"No handler for subscription {message.params.subscription}")
                return
            try:
                handler(message.params.result)
            except Exception as e:
                logger.warning(f"Notification handler failed: {e}")
        else:
            logger.debug(f"Ignoring frame: {text[:200]}")

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
