"""
watchparty.db.user_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

用户资料只读仓库 —— 注册与登录由外部认证服务负责，这里只读取资料快照。
"""
from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorDatabase

from watchparty.db import persistence_guard, to_object_id
from watchparty.schemas.room import Participant

# 集合名称
_COLLECTION_NAME = "users"

_PROFILE_PROJECTION = {"username": 1, "profilePic": 1, "email": 1}


class UserRepository:
    """读取 ``users`` 集合中的用户资料。"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[_COLLECTION_NAME]

    @persistence_guard
    async def get_user(self, user_id: str) -> Participant | None:
        """按 ID 读取用户并转换为参与者快照，不存在时返回 ``None``。"""
        doc = await self._collection.find_one(
            {"_id": to_object_id(user_id, "userId")}, _PROFILE_PROJECTION,
        )
        if doc is None:
            return None
        return Participant(
            id=str(doc["_id"]),
            username=doc.get("username") or "Unknown User",
            profile_pic=doc.get("profilePic"),
            email=doc.get("email"),
        )
