"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用内存仓库替换 MongoDB，用 ``AsyncMock`` 替换 WebSocket，
使单元测试无需数据库即可快速运行。

内存仓库与真实仓库接口一致，并保持相同的原子语义：每个方法先让出一次事件循环
（模拟 I/O 等待），再在同一步内完成"检查 + 修改"，因此并发测试能暴露交错问题。
"""
from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest
from bson import ObjectId
from fastapi import WebSocket

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")  # 以 test 环境加载 settings

from watchparty.core.errors import PersistenceError  # noqa: E402
from watchparty.schemas.room import ChatMessage, Participant, Room  # noqa: E402
from watchparty.services.connection import Connection  # noqa: E402
from watchparty.services.party_system import PartySystem  # noqa: E402


def new_id() -> str:
    """生成一个合法的 24 位十六进制 ID。"""
    return str(ObjectId())


# ── 内存仓库 ──────────────────────────────────────────────────────────

class FakeUserRepository:
    """内存版 ``UserRepository``。"""

    def __init__(self) -> None:
        self.users: dict[str, Participant] = {}

    def add(self, username: str) -> Participant:
        user = Participant(id=new_id(), username=username, profile_pic=f"https://img/{username}.png")
        self.users[user.id] = user
        return user

    async def get_user(self, user_id: str) -> Participant | None:
        await asyncio.sleep(0)
        return self.users.get(user_id)


class FakeRoomRepository:
    """内存版 ``RoomRepository``，返回值均为副本。"""

    def __init__(self) -> None:
        self.rooms: dict[str, Room] = {}

    @staticmethod
    def _copy(room: Room | None) -> Room | None:
        return room.model_copy(deep=True) if room is not None else None

    async def get_room(self, room_id: str) -> Room | None:
        await asyncio.sleep(0)
        return self._copy(self.rooms.get(room_id))

    async def get_room_by_admin(self, admin_id: str) -> Room | None:
        await asyncio.sleep(0)
        return self._copy(next((r for r in self.rooms.values() if r.admin == admin_id), None))

    async def find_rooms_by_member(self, user_id: str) -> list[Room]:
        await asyncio.sleep(0)
        return [r.model_copy(deep=True) for r in self.rooms.values() if r.has_member(user_id)]

    async def insert_room(self, admin: Participant, admin_name: str, service_id: str) -> Room:
        await asyncio.sleep(0)
        if any(r.admin == admin.id for r in self.rooms.values()):
            # 对应 admin 唯一索引冲突
            raise PersistenceError("Storage operation failed: insert_room")
        now = datetime.now(timezone.utc)
        room = Room(
            id=new_id(),
            name=f"Room-{int(now.timestamp() * 1000)}",
            admin=admin.id,
            admin_name=admin_name,
            users=[admin],
            service_id=service_id,
            created_at=now,
            updated_at=now,
        )
        self.rooms[room.id] = room
        return self._copy(room)

    async def add_member(self, room_id: str, participant: Participant) -> Room | None:
        await asyncio.sleep(0)
        room = self.rooms.get(room_id)
        if room is None:
            return None
        if not room.has_member(participant.id):
            room.users.append(participant)
        return self._copy(room)

    async def remove_member(self, room_id: str, user_id: str) -> Room | None:
        await asyncio.sleep(0)
        room = self.rooms.get(room_id)
        if room is None:
            return None
        room.users = [u for u in room.users if u.id != user_id]
        return self._copy(room)

    async def update_playback(self, room_id: str, admin_id: str, fields: dict[str, Any]) -> Room | None:
        await asyncio.sleep(0)
        room = self.rooms.get(room_id)
        if room is None or room.admin != admin_id:
            return None
        data = room.model_dump(by_alias=True)
        data.update(fields)
        self.rooms[room_id] = Room.model_validate(data)
        return self._copy(self.rooms[room_id])

    async def delete_room(self, room_id: str) -> bool:
        await asyncio.sleep(0)
        return self.rooms.pop(room_id, None) is not None


class FakeMessageRepository:
    """内存版 ``MessageRepository``。``failures`` 大于 0 时删除操作失败并递减。"""

    def __init__(self) -> None:
        self.messages: list[ChatMessage] = []
        self.failures = 0

    async def insert_message(self, room_id: str, sender: Participant, text: str) -> ChatMessage:
        await asyncio.sleep(0)
        message = ChatMessage(
            id=new_id(),
            room=room_id,
            sender_id=sender.id,
            text=text,
            timestamp=datetime.now(timezone.utc),
            sender=sender,
        )
        self.messages.append(message)
        return message

    async def delete_for_room(self, room_id: str) -> int:
        await asyncio.sleep(0)
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceError("Storage operation failed: delete_for_room")
        before = len(self.messages)
        self.messages = [m for m in self.messages if m.room != room_id]
        return before - len(self.messages)

    def for_room(self, room_id: str) -> list[ChatMessage]:
        return [m for m in self.messages if m.room == room_id]


# ── 连接辅助 ──────────────────────────────────────────────────────────

def make_connection(connection_id: str | None = None) -> Connection:
    """创建一个底层为 ``AsyncMock(spec=WebSocket)`` 的连接。"""
    return Connection(AsyncMock(spec=WebSocket), connection_id)


def sent(conn: Connection) -> list[tuple[str, dict[str, Any]]]:
    """按顺序返回该连接收到的全部 ``(event, data)``。"""
    return [
        (c.args[0]["event"], c.args[0]["data"])
        for c in conn.websocket.send_json.call_args_list
    ]


def sent_events(conn: Connection) -> list[str]:
    return [event for event, _ in sent(conn)]


def last_data(conn: Connection, event: str) -> dict[str, Any]:
    """该连接最近一次收到的指定事件的负载。"""
    matches = [data for name, data in sent(conn) if name == event]
    assert matches, f"{conn!r} 未收到 {event}，实际: {sent_events(conn)}"
    return matches[-1]


def frame(event: str, **data: Any) -> str:
    """构造一帧入站 JSON 文本。"""
    return json.dumps({"event": event, "data": data})


def reset(*conns: Connection) -> None:
    """清空连接的发送记录。"""
    for conn in conns:
        conn.websocket.send_json.reset_mock()


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest.fixture()
def users() -> FakeUserRepository:
    return FakeUserRepository()


@pytest.fixture()
def rooms() -> FakeRoomRepository:
    return FakeRoomRepository()


@pytest.fixture()
def messages() -> FakeMessageRepository:
    return FakeMessageRepository()


@pytest.fixture()
def alice(users: FakeUserRepository) -> Participant:
    return users.add("alice")


@pytest.fixture()
def bob(users: FakeUserRepository) -> Participant:
    return users.add("bob")


@pytest.fixture()
def carol(users: FakeUserRepository) -> Participant:
    return users.add("carol")


@pytest.fixture()
def system(
    rooms: FakeRoomRepository,
    users: FakeUserRepository,
    messages: FakeMessageRepository,
) -> PartySystem:
    """基于内存仓库的观影系统，关闭聊天限流。"""
    return PartySystem(rooms, users, messages, rate_limit_interval=0)


async def connect(system: PartySystem) -> Connection:
    """模拟一个客户端接入系统。"""
    return await system.connect(AsyncMock(spec=WebSocket))


async def open_room(system: PartySystem, admin: Participant) -> tuple[Connection, str]:
    """管理员连接并创建房间，返回 ``(连接, 房间 ID)``。"""
    conn = await connect(system)
    await system.dispatch(conn, frame("create-room", userId=admin.id, userName=admin.username))
    room_id = last_data(conn, "room-created")["roomId"]
    return conn, room_id


async def join(system: PartySystem, user: Participant, room_id: str) -> Connection:
    conn = await connect(system)
    await system.dispatch(conn, frame("join-room", roomId=room_id, userId=user.id))
    return conn
