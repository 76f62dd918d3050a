"""
watchparty.db.message_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

聊天消息持久化仓库 —— 封装 MongoDB ``messages`` 集合的增删操作。

每条消息一个文档（扁平设计），发送者资料以快照形式内嵌，
之后用户修改资料不会回写历史消息。集合在首次写入时自动建立索引。
"""
from __future__ import annotations

from datetime import datetime, timezone

from motor.motor_asyncio import AsyncIOMotorDatabase

from watchparty.core.logging import get_logger
from watchparty.db import persistence_guard, to_object_id
from watchparty.schemas.room import ChatMessage, Participant

logger = get_logger(__name__)

# 集合名称
_COLLECTION_NAME = "messages"


class MessageRepository:
    """聊天消息仓库。

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
        # 复合索引：按房间分区 + 按时间排序
        await self._collection.create_index(
            [("room", 1), ("timestamp", 1)],
            name="idx_room_time",
        )
        self._indexes_created = True
        logger.debug("messages 索引已就绪")

    @persistence_guard
    async def insert_message(
        self,
        room_id: str,
        sender: Participant,
        text: str,
    ) -> ChatMessage:
        """保存一条聊天消息并返回完整记录（含生成的 ID 与时间戳）。

        Args:
            room_id: 房间 ID。
            sender: 发送时刻的发送者资料快照。
            text: 消息文本。
        """
        await self._ensure_indexes()
        doc = {
            "room": to_object_id(room_id, "roomId"),
            "senderId": sender.id,
            "text": text,
            "timestamp": datetime.now(timezone.utc),
            "sender": sender.to_payload(),
        }
        result = await self._collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return ChatMessage.from_document(doc)

    @persistence_guard
    async def delete_for_room(self, room_id: str) -> int:
        """删除某房间的全部消息，返回删除条数。"""
        await self._ensure_indexes()
        result = await self._collection.delete_many({"room": to_object_id(room_id, "roomId")})
        return result.deleted_count
