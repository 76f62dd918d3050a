"""
watchparty.db.room_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间持久化仓库 —— 封装 MongoDB ``rooms`` 集合。

成员变更全部表达为单文档原子操作（条件 ``$push`` / ``$pull`` / 条件 ``$set``），
处理器中不允许出现"读取 → 本地修改 → 整体写回"的模式，避免并发事件之间的丢失更新。
集合索引在首次操作时惰性创建。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from watchparty.core.logging import get_logger
from watchparty.db import persistence_guard, to_object_id
from watchparty.schemas.room import Participant, Room

logger = get_logger(__name__)

# 集合名称
_COLLECTION_NAME = "rooms"


class RoomRepository:
    """房间文档仓库。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[_COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        # 一个用户同时最多管理一个房间
        await self._collection.create_index(
            [("admin", ASCENDING)], name="uniq_admin", unique=True,
        )
        # 断线清理按用户反查所在房间，避免全表扫描
        await self._collection.create_index(
            [("users.id", ASCENDING)], name="idx_member",
        )
        self._indexes_created = True
        logger.debug("rooms 索引已就绪")

    @staticmethod
    def _to_room(doc: dict[str, Any] | None) -> Room | None:
        return Room.from_document(doc) if doc is not None else None

    @persistence_guard
    async def get_room(self, room_id: str) -> Room | None:
        """按 ID 读取房间，不存在时返回 ``None``。"""
        await self._ensure_indexes()
        doc = await self._collection.find_one({"_id": to_object_id(room_id, "roomId")})
        return self._to_room(doc)

    @persistence_guard
    async def get_room_by_admin(self, admin_id: str) -> Room | None:
        """读取某用户当前管理的房间。"""
        await self._ensure_indexes()
        doc = await self._collection.find_one({"admin": admin_id})
        return self._to_room(doc)

    @persistence_guard
    async def find_rooms_by_member(self, user_id: str) -> list[Room]:
        """列出包含该用户的所有房间（走 ``users.id`` 索引）。"""
        await self._ensure_indexes()
        cursor = self._collection.find({"users.id": user_id})
        docs = await cursor.to_list(length=None)
        return [Room.from_document(doc) for doc in docs]

    @persistence_guard
    async def insert_room(self, admin: Participant, admin_name: str, service_id: str) -> Room:
        """创建新房间，初始成员只有管理员本人，播放状态为空。"""
        await self._ensure_indexes()
        now = datetime.now(timezone.utc)
        doc: dict[str, Any] = {
            "name": f"Room-{int(now.timestamp() * 1000)}",
            "admin": admin.id,
            "adminName": admin_name,
            "users": [admin.to_payload()],
            "videoUrl": "",
            "serviceId": service_id,
            "isPlaying": False,
            "playbackTime": 0.0,
            "createdAt": now,
            "updatedAt": now,
        }
        result = await self._collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return Room.from_document(doc)

    @persistence_guard
    async def add_member(self, room_id: str, participant: Participant) -> Room | None:
        """若用户不在房间内则追加其快照（条件原子追加）。

        Returns:
            更新后的房间；用户已是成员时返回当前房间；房间不存在时返回 ``None``。
        """
        await self._ensure_indexes()
        oid = to_object_id(room_id, "roomId")
        doc = await self._collection.find_one_and_update(
            {"_id": oid, "users.id": {"$ne": participant.id}},
            {
                "$push": {"users": participant.to_payload()},
                "$currentDate": {"updatedAt": True},
            },
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            return Room.from_document(doc)
        # 条件未命中：要么已是成员，要么房间已被删除
        return self._to_room(await self._collection.find_one({"_id": oid}))

    @persistence_guard
    async def remove_member(self, room_id: str, user_id: str) -> Room | None:
        """按 ID 移除成员，返回更新后的房间；房间不存在时返回 ``None``。"""
        await self._ensure_indexes()
        doc = await self._collection.find_one_and_update(
            {"_id": to_object_id(room_id, "roomId")},
            {
                "$pull": {"users": {"id": user_id}},
                "$currentDate": {"updatedAt": True},
            },
            return_document=ReturnDocument.AFTER,
        )
        return self._to_room(doc)

    @persistence_guard
    async def update_playback(
        self,
        room_id: str,
        admin_id: str,
        fields: dict[str, Any],
    ) -> Room | None:
        """仅当 ``admin`` 仍为请求者时写入播放字段。

        Args:
            room_id: 房间 ID。
            admin_id: 请求者 ID，作为写入条件的一部分。
            fields: 以 camelCase 命名的待写入字段。

        Returns:
            更新后的房间；条件不满足（房间不存在或管理员不符）时返回 ``None``。
        """
        await self._ensure_indexes()
        doc = await self._collection.find_one_and_update(
            {"_id": to_object_id(room_id, "roomId"), "admin": admin_id},
            {"$set": fields, "$currentDate": {"updatedAt": True}},
            return_document=ReturnDocument.AFTER,
        )
        return self._to_room(doc)

    @persistence_guard
    async def delete_room(self, room_id: str) -> bool:
        """删除房间文档，返回是否确有文档被删除。"""
        await self._ensure_indexes()
        result = await self._collection.delete_one({"_id": to_object_id(room_id, "roomId")})
        return result.deleted_count > 0
