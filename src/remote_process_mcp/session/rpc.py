"""JSON-RPC 2.0 envelope used by remote sessions.

Method naming follows the session's pub/sub convention:
- calls:         "{service}_{method}"
- subscribe:     "{service}_subscribe"   params [method, *params] -> id
- unsubscribe:   "{service}_unsubscribe" params [id]
- notifications: "{service}_subscription" params {subscription, result}
"""

from __future__ import annotations

import json
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

__all__ = [
    "RpcRequest",
    "RpcResponse",
    "RpcErrorBody",
    "RpcNotification",
    "SubscriptionParams",
    "rpc_method",
    "parse_message",
]

SUBSCRIPTION_SUFFIX = "_subscription"


def rpc_method(service: str, method: str) -> str:
    return f"{service}_{method}"


class _Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    jsonrpc: Literal["2.0"] = "2.0"


class RpcRequest(_Envelope):
    id: int
    method: str
    params: list[Any] = Field(default_factory=list)


class RpcErrorBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: int
    message: str
    data: Any = None


class RpcResponse(_Envelope):
    id: int
    result: Any = None
    error: RpcErrorBody | None = None


class SubscriptionParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subscription: str
    result: Any = None


class RpcNotification(_Envelope):
    method: str
    params: SubscriptionParams


def parse_message(text: str | bytes) -> Union[RpcResponse, RpcNotification, None]:
    """Classify an inbound frame.

    Returns:
        RpcResponse for replies, RpcNotification for subscription pushes,
        None for anything else (unparseable or unknown frames).
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    try:
        if "id" in data and data["id"] is not None and "method" not in data:
            return RpcResponse.model_validate(data)
        if str(data.get("method", "")).endswith(SUBSCRIPTION_SUFFIX):
            return RpcNotification.model_validate(data)
    except ValidationError:
        return None
    return None
