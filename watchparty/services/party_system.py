"""
watchparty.services.party_system
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

观影系统 —— 组装仓库、注册表、广播器与各个处理组件，并注册事件路由。

在 FastAPI lifespan 中创建并挂载到 ``app.state.party_system``；
测试可直接注入内存仓库构造。
"""
from __future__ import annotations

from fastapi import WebSocket
from motor.motor_asyncio import AsyncIOMotorDatabase

from watchparty.core.config import settings
from watchparty.core.logging import get_logger
from watchparty.core.rate_limit import WebSocketRateLimiter
from watchparty.db.message_repository import MessageRepository
from watchparty.db.room_repository import RoomRepository
from watchparty.db.user_repository import UserRepository
from watchparty.schemas.events import (
    ConnectedEvent,
    CreateRoomPayload,
    MemberPayload,
    PlaybackTimePayload,
    PlayVideoPayload,
    RoomRefPayload,
    SendMessagePayload,
    SyncVideoPayload,
    VoiceAnswerPayload,
    VoiceCandidatePayload,
    VoiceOfferPayload,
)
from watchparty.services.broadcaster import ChannelBroadcaster
from watchparty.services.chat import ChatRelay
from watchparty.services.connection import Connection
from watchparty.services.connection_registry import ConnectionRegistry
from watchparty.services.dispatcher import EventDispatcher
from watchparty.services.membership import MembershipCoordinator
from watchparty.services.playback import PlaybackAuthority
from watchparty.services.room_reaper import RoomReaper
from watchparty.services.signaling import SignalingRelay

logger = get_logger(__name__)


class PartySystem:
    """单进程观影系统。

    - ``connect(websocket)``   → 接受连接并分配连接 ID
    - ``dispatch(conn, raw)``  → 处理一帧入站事件
    - ``disconnect(conn)``     → 断线清理（语音、成员、注册表、限流记录）

    Attributes:
        registry: 连接 → 用户映射（本实例私有）。
        broadcaster: 频道广播器。
        reaper: 房间删除与补偿清理。
        dispatcher: 事件路由表。
    """

    def __init__(
        self,
        rooms: RoomRepository,
        users: UserRepository,
        messages: MessageRepository,
        rate_limit_interval: float | None = None,
    ) -> None:
        self.rooms = rooms
        self.users = users
        self.messages = messages

        self.registry = ConnectionRegistry()
        self.broadcaster = ChannelBroadcaster()
        self.reaper = RoomReaper(rooms, messages)

        interval = settings.WS_RATE_LIMIT_INTERVAL if rate_limit_interval is None else rate_limit_interval
        self.membership = MembershipCoordinator(rooms, users, self.registry, self.broadcaster, self.reaper)
        self.playback = PlaybackAuthority(rooms, self.broadcaster)
        self.chat = ChatRelay(rooms, users, messages, self.broadcaster, WebSocketRateLimiter(interval))
        self.signaling = SignalingRelay(self.registry, self.broadcaster)

        self.dispatcher = EventDispatcher()
        self._register_routes()

    @classmethod
    def from_database(cls, db: AsyncIOMotorDatabase) -> PartySystem:
        """基于 MongoDB 数据库创建系统。"""
        return cls(
            rooms=RoomRepository(db),
            users=UserRepository(db),
            messages=MessageRepository(db),
        )

    def _register_routes(self) -> None:
        routes = [
            ("create-room", CreateRoomPayload, self.membership.create_room),
            ("join-room", MemberPayload, self.membership.join_room),
            ("get-room-details", RoomRefPayload, self.membership.get_room_details),
            ("leave-room", MemberPayload, self.membership.leave_room),
            ("play-video", PlayVideoPayload, self.playback.play_video),
            ("pause-video", PlaybackTimePayload, self.playback.pause_video),
            ("resume-video", PlaybackTimePayload, self.playback.resume_video),
            ("seek-video", PlaybackTimePayload, self.playback.seek_video),
            ("sync-video", SyncVideoPayload, self.playback.sync_video),
            ("send-message", SendMessagePayload, self.chat.send_message),
            ("join-voice", MemberPayload, self.signaling.join_voice),
            ("leave-voice", MemberPayload, self.signaling.leave_voice),
            ("mic-enabled", MemberPayload, self.signaling.mic_enabled),
            ("mic-disabled", MemberPayload, self.signaling.mic_disabled),
            ("voice-offer", VoiceOfferPayload, self.signaling.voice_offer),
            ("voice-answer", VoiceAnswerPayload, self.signaling.voice_answer),
            ("voice-candidate", VoiceCandidatePayload, self.signaling.voice_candidate),
            ("start-stream", MemberPayload, self.signaling.start_stream),
            ("stop-stream", MemberPayload, self.signaling.stop_stream),
        ]
        for event, model, handler in routes:
            self.dispatcher.register(event, model, handler)

    async def connect(self, websocket: WebSocket) -> Connection:
        """接受新连接，登记后发送 ``connected`` 问候（携带连接 ID）。"""
        await websocket.accept()
        conn = Connection(websocket)
        self.broadcaster.register(conn)
        await conn.emit("connected", ConnectedEvent(socket_id=conn.id))
        logger.info("✅ 连接建立 | 在线: %d", len(self.broadcaster.connections))
        return conn

    async def dispatch(self, conn: Connection, raw: str) -> None:
        await self.dispatcher.dispatch(conn, raw)

    async def disconnect(self, conn: Connection) -> None:
        """断线清理。语音频道需在注册表释放前处理，以便通知中带上用户 ID。"""
        try:
            await self.signaling.disconnect(conn)
            await self.membership.disconnect(conn)
        finally:
            self.broadcaster.unregister(conn)
            self.chat.forget(conn)
            logger.info("连接关闭 | 在线: %d", len(self.broadcaster.connections))
