"""
watchparty.services.broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

频道广播器 —— 维护"频道 → 连接集合"的映射，提供组播与点对点投递。

每个房间有两个频道：主频道（成员、播放、聊天）和语音子频道（语音在场与麦克风状态），
二者独立加入与离开。广播只送达发送时刻已加入频道的连接，没有确认与重放。
"""
from __future__ import annotations

import asyncio
from typing import Any

from pydantic import BaseModel

from watchparty.core.logging import get_logger
from watchparty.services.connection import Connection, encode_payload

logger = get_logger(__name__)

_VOICE_SUFFIX = ":voice"


def room_channel(room_id: str) -> str:
    """房间主频道名。"""
    return room_id


def voice_channel(room_id: str) -> str:
    """房间语音子频道名。"""
    return f"{room_id}{_VOICE_SUFFIX}"


def is_voice_channel(channel: str) -> bool:
    return channel.endswith(_VOICE_SUFFIX)


def room_of_voice_channel(channel: str) -> str:
    return channel[: -len(_VOICE_SUFFIX)]


class ChannelBroadcaster:
    """WebSocket 频道广播器。

    Attributes:
        connections: 当前进程内所有在线连接，按连接 ID 索引。
        channels: 频道名到已加入连接集合的映射。
    """

    def __init__(self) -> None:
        self.connections: dict[str, Connection] = {}
        self.channels: dict[str, set[Connection]] = {}

    # ── 连接 ──────────────────────────────────────────────────────────

    def register(self, conn: Connection) -> None:
        """登记新连接，使其可以被点对点寻址。"""
        self.connections[conn.id] = conn

    def unregister(self, conn: Connection) -> list[str]:
        """注销连接并退出其所在的全部频道，返回退出的频道列表。"""
        self.connections.pop(conn.id, None)
        return self.leave_all(conn)

    def get(self, connection_id: str) -> Connection | None:
        return self.connections.get(connection_id)

    # ── 频道 ──────────────────────────────────────────────────────────

    def join(self, channel: str, conn: Connection) -> None:
        self.channels.setdefault(channel, set()).add(conn)

    def leave(self, channel: str, conn: Connection) -> bool:
        """退出频道，返回连接此前是否在频道内。空频道会被回收。"""
        members = self.channels.get(channel)
        if members is None or conn not in members:
            return False
        members.discard(conn)
        if not members:
            self.channels.pop(channel, None)
        return True

    def leave_all(self, conn: Connection) -> list[str]:
        left = [name for name, members in self.channels.items() if conn in members]
        for name in left:
            self.leave(name, conn)
        return left

    def close_channel(self, channel: str) -> None:
        """解散频道（房间被删除后调用）。"""
        self.channels.pop(channel, None)

    def is_member(self, channel: str, conn: Connection) -> bool:
        return conn in self.channels.get(channel, ())

    def members(self, channel: str) -> list[Connection]:
        return list(self.channels.get(channel, ()))

    def online_count(self, channel: str) -> int:
        """频道内当前在线连接数。"""
        return len(self.channels.get(channel, ()))

    # ── 投递 ──────────────────────────────────────────────────────────

    async def broadcast(
        self,
        channel: str,
        event: str,
        data: BaseModel | dict[str, Any] | None = None,
        *,
        exclude: Connection | None = None,
    ) -> int:
        """向频道内所有连接广播事件，返回投递目标数。

        发送失败的连接会被移出该频道。
        """
        targets = [conn for conn in self.channels.get(channel, ()) if conn is not exclude]
        if not targets:
            return 0
        payload = encode_payload(data)
        results = await asyncio.gather(
            *(conn.emit(event, payload) for conn in targets),
            return_exceptions=True,
        )
        for conn, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(
                    "广播失败，移除断开的连接 | channel=%s | conn=%s | %s",
                    channel, conn.id, result,
                )
                self.leave(channel, conn)
        return len(targets)

    async def send_to(
        self,
        connection_id: str,
        event: str,
        data: BaseModel | dict[str, Any] | None = None,
    ) -> bool:
        """向指定连接发送事件，目标不在线或发送失败时返回 ``False``。

        发送失败的连接会被注销并退出全部频道。
        """
        conn = self.connections.get(connection_id)
        if conn is None:
            return False
        try:
            await conn.emit(event, data)
        except Exception as exc:
            logger.warning("点对点发送失败，注销断开的连接 | conn=%s | %s", conn.id, exc)
            self.unregister(conn)
            return False
        return True
