"""
watchparty.services.connection
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

单个 WebSocket 连接的句柄 —— 分配连接 ID，并把事件编码为 JSON 帧发送。
"""
from __future__ import annotations

import uuid
from typing import Any

from fastapi import WebSocket
from pydantic import BaseModel


def encode_payload(data: BaseModel | dict[str, Any] | None) -> dict[str, Any]:
    """把出站负载统一转换为 camelCase 字典。"""
    if data is None:
        return {}
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True, mode="json")
    return data


class Connection:
    """一条已接受的 WebSocket 连接。

    Attributes:
        websocket: 底层 FastAPI WebSocket 对象。
        id: 连接唯一标识，信令中继用它作为点对点投递地址。
    """

    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self.websocket = websocket
        self.id = connection_id or uuid.uuid4().hex

    async def emit(self, event: str, data: BaseModel | dict[str, Any] | None = None) -> None:
        """向本连接发送一个事件帧。"""
        await self.websocket.send_json({"event": event, "data": encode_payload(data)})

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r})"
