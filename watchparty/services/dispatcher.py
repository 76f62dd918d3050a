"""
watchparty.services.dispatcher
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

事件分发器 —— 把每一帧入站事件交给唯一的处理器，并作为统一的错误边界。

所有 ``RoomError`` 都以 ``room-error`` 事件只回复给发起请求的连接，
不会广播到房间；未预期的异常记录完整堆栈后以通用错误回复，
每个失败只影响触发它的那一个事件。
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from watchparty.core.config import settings
from watchparty.core.errors import AuthorizationError, RoomError, ValidationError
from watchparty.core.logging import get_logger
from watchparty.schemas.events import EventPayload, RoomErrorEvent, parse_frame, parse_payload
from watchparty.services.connection import Connection

logger = get_logger(__name__)

Handler = Callable[[Connection, Any], Awaitable[None]]


class EventDispatcher:
    """事件名 → (负载模型, 处理器) 的路由表。"""

    def __init__(self) -> None:
        self._routes: dict[str, tuple[type[EventPayload], Handler]] = {}

    def register(self, event: str, model: type[EventPayload], handler: Handler) -> None:
        if event in self._routes:
            raise ValueError(f"事件重复注册: {event}")
        self._routes[event] = (model, handler)

    @property
    def events(self) -> list[str]:
        """已注册的全部事件名。"""
        return sorted(self._routes)

    async def dispatch(self, conn: Connection, raw: str) -> None:
        """解析、校验并处理一帧入站文本。"""
        event: str | None = None
        try:
            frame = parse_frame(raw)
            event = frame.event
            route = self._routes.get(event)
            if route is None:
                raise ValidationError(f"Unknown event: {event}")
            model, handler = route
            payload = parse_payload(model, frame.data)
            await handler(conn, payload)
        except AuthorizationError as e:
            logger.warning("❌ 越权操作被拒绝 | event=%s | %s", event, e.message)
            await self._report(conn, event, e.message, e.code)
        except RoomError as e:
            logger.info("事件处理失败 | event=%s | code=%s | %s", event, e.code, e.message)
            await self._report(conn, event, e.message, e.code)
        except Exception as e:
            logger.error("事件处理异常 | event=%s | %s", event, e, exc_info=True)
            # prod 环境隐藏内部细节
            detail = str(e) if not settings.is_prod else "Internal server error."
            await self._report(conn, event, detail, "internal_error")

    async def _report(self, conn: Connection, event: str | None, message: str, code: str) -> None:
        await conn.emit("room-error", RoomErrorEvent(message=message, code=code, event=event))
