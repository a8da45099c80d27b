"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

PROJECT_ROOT = Path(__file__).parent.parent

SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


class FakeSession:
    """In-memory SessionConnection recording calls and subscriptions.

    Attributes:
        calls: (service, method, params) per call, in order
        failures: method name -> exception raised by call()
        on_call: optional hook run after each call is recorded
        unsubscribe_delay: seconds each unsubscribe() takes
        unsubscribe_failures: subscription id -> exception raised by unsubscribe()
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, list[Any]]] = []
        self.failures: dict[str, BaseException] = {}
        self.on_call: Callable[[str, str, list[Any]], None] | None = None
        self.subscriptions: dict[str, tuple[str, str, tuple[Any, ...], Callable[[Any], None]]] = {}
        self.unsubscribed: list[str] = []
        self.unsubscribe_delay = 0.0
        self.unsubscribe_failures: dict[str, BaseException] = {}

    async def call(self, service: str, method: str, params: Any = None) -> Any:
        params = list(params or [])
        self.calls.append((service, method, params))
        await asyncio.sleep(0)
        if self.on_call is not None:
            self.on_call(service, method, params)
        if method in self.failures:
            raise self.failures[method]
        return None

    async def subscribe(self, service: str, handler: Callable[[Any], None], method: str, *params: Any) -> str:
        subscription_id = f"sub-{len(self.subscriptions) + 1}"
        self.subscriptions[subscription_id] = (service, method, params, handler)
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> None:
        if self.unsubscribe_delay:
            await asyncio.sleep(self.unsubscribe_delay)
        self.unsubscribed.append(subscription_id)
        self.subscriptions.pop(subscription_id, None)
        if subscription_id in self.unsubscribe_failures:
            raise self.unsubscribe_failures[subscription_id]

    def emit(self, method: str, process_id: str, payload: Any = None) -> int:
        """Deliver a notification to matching subscriptions; returns deliveries."""
        delivered = 0
        for _service, sub_method, params, handler in list(self.subscriptions.values()):
            if sub_method == method and params and params[0] == process_id:
                handler(payload)
                delivered += 1
        return delivered

    def methods(self) -> list[str]:
        return [method for _service, method, _params in self.calls]


@pytest.fixture
def fake_session() -> FakeSession:
    """A fresh in-memory session."""
    return FakeSession()
