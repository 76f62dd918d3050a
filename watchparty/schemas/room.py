"""
watchparty.schemas.room
~~~~~~~~~~~~~~~~~~~~~~~

持久化实体的 Pydantic 模型：房间、参与者快照、聊天消息。

字段在 Python 侧使用 snake_case，序列化到 MongoDB 文档和线上事件时
统一使用 camelCase 别名（``videoUrl``、``profilePic`` ...）。
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """以 camelCase 别名读写的基础模型。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """序列化为可直接 JSON 发送的 camelCase 字典。"""
        return self.model_dump(by_alias=True, mode="json")


class Participant(CamelModel):
    """参与者快照，加入房间或发送消息时从用户资料拷贝。"""

    id: str = Field(..., description="用户 ID")
    username: str = Field(..., description="用户名")
    profile_pic: str | None = Field(default=None, description="头像 URL")
    email: str | None = Field(default=None, description="邮箱")


class Room(CamelModel):
    """一个观影房间，对应 ``rooms`` 集合中的单个文档。"""

    id: str = Field(..., description="房间 ID")
    name: str = Field(..., description="房间名称")
    admin: str = Field(..., description="管理员用户 ID，唯一可控制播放的人")
    admin_name: str = Field(..., description="管理员显示名称")
    users: list[Participant] = Field(default_factory=list, description="按加入顺序排列的参与者")
    video_url: str = Field(default="", description="当前视频地址")
    service_id: str = Field(default="1", description="视频源服务 ID")
    is_playing: bool = Field(default=False, description="是否正在播放")
    playback_time: float = Field(default=0.0, ge=0, description="权威播放进度（秒）")
    created_at: datetime | None = Field(default=None, description="创建时间")
    updated_at: datetime | None = Field(default=None, description="最近修改时间")

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Room:
        """从 MongoDB 文档构造 ``Room``。"""
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)

    @property
    def member_ids(self) -> list[str]:
        """参与者 ID 列表（保持加入顺序）。"""
        return [user.id for user in self.users]

    def has_member(self, user_id: str) -> bool:
        return any(user.id == user_id for user in self.users)


class ChatMessage(CamelModel):
    """一条已持久化的聊天消息，``sender`` 为发送时刻的资料快照。"""

    id: str = Field(..., description="消息 ID")
    room: str = Field(..., description="所属房间 ID")
    sender_id: str = Field(..., description="发送者用户 ID")
    text: str = Field(..., description="消息文本")
    timestamp: datetime = Field(..., description="发送时间")
    sender: Participant = Field(..., description="发送者资料快照")

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> ChatMessage:
        """从 MongoDB 文档构造 ``ChatMessage``。"""
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        data["room"] = str(data["room"])
        return cls.model_validate(data)
