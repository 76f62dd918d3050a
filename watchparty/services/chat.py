"""
watchparty.services.chat
~~~~~~~~~~~~~~~~~~~~~~~~

聊天中继 —— 先持久化消息，再广播到房间主频道。
"""
from __future__ import annotations

from watchparty.core.errors import NotFoundError, RateLimitError
from watchparty.core.logging import get_logger
from watchparty.core.rate_limit import WebSocketRateLimiter
from watchparty.db.message_repository import MessageRepository
from watchparty.db.room_repository import RoomRepository
from watchparty.db.user_repository import UserRepository
from watchparty.schemas.events import SendMessagePayload
from watchparty.services.broadcaster import ChannelBroadcaster, room_channel
from watchparty.services.connection import Connection

logger = get_logger(__name__)


class ChatRelay:
    """聊天消息的持久化与广播。

    任何人都可以向存在的房间发言，不做成员资格限制；
    每个连接的发送频率受 ``limiter`` 约束。
    """

    def __init__(
        self,
        rooms: RoomRepository,
        users: UserRepository,
        messages: MessageRepository,
        broadcaster: ChannelBroadcaster,
        limiter: WebSocketRateLimiter,
    ) -> None:
        self.rooms = rooms
        self.users = users
        self.messages = messages
        self.broadcaster = broadcaster
        self.limiter = limiter

    async def send_message(self, conn: Connection, payload: SendMessagePayload) -> None:
        """保存消息（内嵌发送者资料快照），然后广播完整记录。"""
        if not self.limiter.is_allowed(conn.id):
            raise RateLimitError("You are sending messages too fast.")

        sender = await self.users.get_user(payload.message.user_id)
        if sender is None:
            raise NotFoundError("User does not exist.")
        room = await self.rooms.get_room(payload.room_id)
        if room is None:
            raise NotFoundError("Room does not exist.")

        message = await self.messages.insert_message(room.id, sender, payload.message.text)
        await self.broadcaster.broadcast(room_channel(room.id), "receive-message", message)
        logger.info("💬 新消息 | room=%s | sender=%s", room.id, sender.id)

    def forget(self, conn: Connection) -> None:
        """连接断开后清理其限流记录。"""
        self.limiter.remove_client(conn.id)
