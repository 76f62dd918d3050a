"""
watchparty.schemas.events
~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 事件的 Pydantic 模型。

线上每一帧都是 ``{"event": "<名称>", "data": {...}}`` 形式的 JSON 文本。
入站负载在进入业务逻辑之前按事件名选择对应模型校验，格式不合法的负载直接被拒绝；
出站负载同样使用显式模型，序列化为 camelCase。
"""
from __future__ import annotations

from typing import Annotated, Any

from bson import ObjectId
from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from watchparty.core.config import settings
from watchparty.core.errors import ValidationError
from watchparty.schemas.room import CamelModel, Participant, Room


def _check_object_id(value: str) -> str:
    if not ObjectId.is_valid(value):
        raise ValueError("must be a 24-character hex ObjectId")
    return value


ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]


# ── 帧 ────────────────────────────────────────────────────────────────

class InboundFrame(BaseModel):
    """入站帧信封。"""

    event: str = Field(..., min_length=1, description="事件名称")
    data: dict[str, Any] = Field(default_factory=dict, description="事件负载")


def parse_frame(raw: str) -> InboundFrame:
    """解析一帧原始文本。

    Raises:
        ValidationError: 不是 JSON 对象或缺少 ``event`` 字段。
    """
    try:
        return InboundFrame.model_validate_json(raw)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


# ── 入站负载 ──────────────────────────────────────────────────────────

class EventPayload(BaseModel):
    """入站负载基类：接受 camelCase 键，忽略未知字段，去除首尾空白。"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


class CreateRoomPayload(EventPayload):
    user_id: ObjectIdStr
    user_name: str = Field(..., min_length=1, max_length=100)


class RoomRefPayload(EventPayload):
    room_id: ObjectIdStr


class MemberPayload(EventPayload):
    """``join-room`` / ``leave-room`` / 语音与共享屏幕事件共用的负载。"""

    room_id: ObjectIdStr
    user_id: ObjectIdStr


class PlayVideoPayload(EventPayload):
    room_id: ObjectIdStr
    url: str = Field(..., min_length=1, max_length=2048)
    service_id: str | None = None
    admin_id: ObjectIdStr


class PlaybackTimePayload(EventPayload):
    """``pause-video`` / ``resume-video`` / ``seek-video`` 负载。"""

    room_id: ObjectIdStr
    time: float = Field(..., ge=0, allow_inf_nan=False)
    admin_id: ObjectIdStr


class SyncVideoPayload(PlaybackTimePayload):
    playing: bool


class ChatMessageBody(EventPayload):
    user_id: ObjectIdStr
    text: str = Field(..., min_length=1, max_length=settings.MESSAGE_MAX_LENGTH)


class SendMessagePayload(EventPayload):
    room_id: ObjectIdStr
    # 兼容旧客户端使用的 ``msg`` 键
    message: ChatMessageBody = Field(..., validation_alias=AliasChoices("message", "msg"))


class VoiceOfferPayload(EventPayload):
    to: str = Field(..., min_length=1)
    offer: dict[str, Any]


class VoiceAnswerPayload(EventPayload):
    to: str = Field(..., min_length=1)
    answer: dict[str, Any]


class VoiceCandidatePayload(EventPayload):
    to: str = Field(..., min_length=1)
    # ICE 收集结束时浏览器会发送空候选
    candidate: dict[str, Any] | None = None


def parse_payload(model: type[EventPayload], data: dict[str, Any]) -> EventPayload:
    """按事件对应的模型校验负载。

    Raises:
        ValidationError: 缺少必填字段或字段格式错误。
    """
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


# ── 出站负载 ──────────────────────────────────────────────────────────

class ConnectedEvent(CamelModel):
    socket_id: str


class RoomCreatedEvent(CamelModel):
    room_id: str
    admin_id: str
    admin_name: str
    users: list[str]

    @classmethod
    def from_room(cls, room: Room) -> RoomCreatedEvent:
        return cls(
            room_id=room.id,
            admin_id=room.admin,
            admin_name=room.admin_name,
            users=room.member_ids,
        )


class RoomJoinedEvent(CamelModel):
    room_id: str
    admin_id: str
    admin_name: str
    users: list[str]
    video_url: str
    service_id: str
    is_playing: bool
    playback_time: float

    @classmethod
    def from_room(cls, room: Room) -> RoomJoinedEvent:
        return cls(
            room_id=room.id,
            admin_id=room.admin,
            admin_name=room.admin_name,
            users=room.member_ids,
            video_url=room.video_url,
            service_id=room.service_id,
            is_playing=room.is_playing,
            playback_time=room.playback_time,
        )


class RoomDetailsEvent(CamelModel):
    """房间完整快照，客户端错过广播后可通过 ``get-room-details`` 拉取重新同步。"""

    room_id: str
    admin_id: str
    admin_name: str
    participants: list[Participant]
    active_users_count: int
    video_url: str
    service_id: str
    is_playing: bool
    playback_time: float

    @classmethod
    def from_room(cls, room: Room) -> RoomDetailsEvent:
        return cls(
            room_id=room.id,
            admin_id=room.admin,
            admin_name=room.admin_name,
            participants=room.users,
            active_users_count=len(room.users),
            video_url=room.video_url,
            service_id=room.service_id,
            is_playing=room.is_playing,
            playback_time=room.playback_time,
        )


class ParticipantsEvent(CamelModel):
    participants: list[str]


class RoomDismissedEvent(CamelModel):
    room_id: str
    message: str = "The room was closed by its admin."


class LoadVideoEvent(CamelModel):
    url: str
    service_id: str


class PlaybackTimeEvent(CamelModel):
    time: float


class SyncVideoEvent(CamelModel):
    time: float
    playing: bool


class VoicePresenceEvent(CamelModel):
    user_id: str | None
    socket_id: str


class VoicePeersEvent(CamelModel):
    peers: list[VoicePresenceEvent]


class StreamEvent(CamelModel):
    user_id: str


class RoomErrorEvent(CamelModel):
    message: str
    code: str
    event: str | None = None
