"""
watchparty.services.membership
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

成员协调器 —— 房间创建、加入、离开以及断线引发的成员变更。

它是 ``users`` 列表的唯一写入方。房间状态机为 ``不存在 → 活跃 → 已解散``：
管理员离开或断线时房间立即解散（广播 ``room-dismissed`` 后删除房间与消息）；
普通成员离开后若成员列表为空，同样删除房间。

加入房间从不 upsert，因此房间一旦被删除，后续所有 ``join-room`` 都只会得到
``NotFoundError``，管理员离开总是优先于并发中的加入请求。
"""
from __future__ import annotations

from watchparty.core.config import settings
from watchparty.core.errors import NotFoundError, RoomError
from watchparty.core.logging import get_logger
from watchparty.db.room_repository import RoomRepository
from watchparty.db.user_repository import UserRepository
from watchparty.schemas.events import (
    CreateRoomPayload,
    MemberPayload,
    ParticipantsEvent,
    RoomCreatedEvent,
    RoomDetailsEvent,
    RoomDismissedEvent,
    RoomJoinedEvent,
    RoomRefPayload,
)
from watchparty.schemas.room import Participant, Room
from watchparty.services.broadcaster import ChannelBroadcaster, room_channel, voice_channel
from watchparty.services.connection import Connection
from watchparty.services.connection_registry import ConnectionRegistry
from watchparty.services.room_reaper import RoomReaper

logger = get_logger(__name__)


class MembershipCoordinator:
    """房间生命周期与成员管理。

    Attributes:
        rooms: 房间仓库（成员变更全部走其原子操作）。
        users: 用户资料仓库。
        registry: 连接 → 用户映射。
        broadcaster: 频道广播器。
        reaper: 房间删除器。
    """

    def __init__(
        self,
        rooms: RoomRepository,
        users: UserRepository,
        registry: ConnectionRegistry,
        broadcaster: ChannelBroadcaster,
        reaper: RoomReaper,
    ) -> None:
        self.rooms = rooms
        self.users = users
        self.registry = registry
        self.broadcaster = broadcaster
        self.reaper = reaper
        # 正在解散（已广播 room-dismissed、尚未关闭频道）的房间
        self._dismissing: set[str] = set()

    async def _require_user(self, user_id: str) -> Participant:
        user = await self.users.get_user(user_id)
        if user is None:
            raise NotFoundError("User does not exist.")
        return user

    async def _require_room(self, room_id: str) -> Room:
        room = await self.rooms.get_room(room_id)
        if room is None:
            raise NotFoundError("Room does not exist.")
        return room

    # ── 事件处理 ──────────────────────────────────────────────────────

    async def create_room(self, conn: Connection, payload: CreateRoomPayload) -> None:
        """创建房间；若该用户已管理一个房间，先解散旧房间。"""
        admin = await self._require_user(payload.user_id)

        previous = await self.rooms.get_room_by_admin(admin.id)
        if previous is not None:
            logger.info("管理员创建新房间，解散旧房间 | admin=%s | room=%s", admin.id, previous.id)
            await self._dismiss(previous)

        room = await self.rooms.insert_room(
            admin=admin,
            admin_name=payload.user_name,
            service_id=settings.DEFAULT_SERVICE_ID,
        )
        channel = room_channel(room.id)
        self.broadcaster.join(channel, conn)
        self.registry.bind(conn.id, admin.id)

        await self.broadcaster.broadcast(channel, "room-created", RoomCreatedEvent.from_room(room))
        await self.broadcaster.broadcast(channel, "room-details", RoomDetailsEvent.from_room(room))
        logger.info("🚀 房间已创建 | room=%s | admin=%s", room.id, admin.id)

    async def join_room(self, conn: Connection, payload: MemberPayload) -> None:
        """加入房间（幂等：重复加入不会产生重复成员）。"""
        user = await self._require_user(payload.user_id)
        room = await self.rooms.add_member(payload.room_id, user)
        if room is None:
            raise NotFoundError("Room does not exist.")

        channel = room_channel(room.id)
        self.broadcaster.join(channel, conn)
        # 先入频道再确认房间仍然有效：此后开始的解散一定会把 room-dismissed 送达本连接，
        # 在此之前或期间发生的解散则让本次加入失败
        current = await self.rooms.get_room(room.id)
        if (
            current is None
            or room.id in self._dismissing
            or not self.broadcaster.is_member(channel, conn)
        ):
            self.broadcaster.leave(channel, conn)
            logger.info("加入时房间已被解散 | room=%s | user=%s", room.id, user.id)
            raise NotFoundError("Room does not exist.")
        self.registry.bind(conn.id, user.id)

        await conn.emit("room-joined", RoomJoinedEvent.from_room(current))
        await self.broadcaster.broadcast(
            channel, "update-participants", ParticipantsEvent(participants=current.member_ids),
        )
        await self.broadcaster.broadcast(channel, "room-details", RoomDetailsEvent.from_room(current))
        logger.info("用户加入房间 | room=%s | user=%s | 成员: %d", room.id, user.id, len(current.users))

    async def get_room_details(self, conn: Connection, payload: RoomRefPayload) -> None:
        """把房间完整快照只发给请求者。"""
        room = await self._require_room(payload.room_id)
        await conn.emit("room-details", RoomDetailsEvent.from_room(room))

    async def leave_room(self, conn: Connection, payload: MemberPayload) -> None:
        """主动离开房间。频道退出先于持久化，不受其结果影响。"""
        self.broadcaster.leave(room_channel(payload.room_id), conn)

        room = await self.rooms.get_room(payload.room_id)
        if room is None:
            logger.debug("离开的房间已不存在 | room=%s | user=%s", payload.room_id, payload.user_id)
            return
        await self._depart(room, payload.user_id)
        logger.info("🚪 用户离开房间 | room=%s | user=%s", payload.room_id, payload.user_id)

    async def disconnect(self, conn: Connection) -> None:
        """连接断开：对该用户所在的每个房间执行离开逻辑。"""
        self.broadcaster.leave_all(conn)
        user_id = self.registry.release(conn.id)
        if user_id is None:
            logger.debug("断开的连接未绑定用户，无需清理")
            return

        others = self.registry.connections_of(user_id)
        if others:
            logger.info("用户仍有其他在线连接 | user=%s | 连接数: %d", user_id, len(others))

        rooms = await self.rooms.find_rooms_by_member(user_id)
        for room in rooms:
            try:
                await self._depart(room, user_id)
            except RoomError as e:
                # 没有请求方可回复，只记录，继续清理其余房间
                logger.warning("断线清理失败 | room=%s | user=%s | %s", room.id, user_id, e.message)
        logger.info("❌ 断线清理完成 | user=%s | 房间数: %d", user_id, len(rooms))

    # ── 内部 ──────────────────────────────────────────────────────────

    async def _depart(self, room: Room, user_id: str) -> None:
        """管理员离开则解散房间，否则原子移除该成员。"""
        if room.admin == user_id:
            await self._dismiss(room)
            return

        updated = await self.rooms.remove_member(room.id, user_id)
        if updated is None:
            logger.debug("移除成员时房间已被删除 | room=%s", room.id)
            return
        if not updated.users:
            logger.info("房间已无成员，删除 | room=%s", room.id)
            await self._close(room.id)
            return

        channel = room_channel(room.id)
        await self.broadcaster.broadcast(
            channel, "update-participants", ParticipantsEvent(participants=updated.member_ids),
        )
        await self.broadcaster.broadcast(channel, "room-details", RoomDetailsEvent.from_room(updated))

    async def _dismiss(self, room: Room) -> None:
        """解散房间：先广播 ``room-dismissed``，再删除房间与消息。"""
        self._dismissing.add(room.id)
        try:
            await self.broadcaster.broadcast(
                room_channel(room.id), "room-dismissed", RoomDismissedEvent(room_id=room.id),
            )
            await self._close(room.id)
        finally:
            self._dismissing.discard(room.id)
        logger.info("房间已解散 | room=%s | admin=%s", room.id, room.admin)

    async def _close(self, room_id: str) -> None:
        await self.reaper.dismantle(room_id)
        self.broadcaster.close_channel(room_channel(room_id))
        self.broadcaster.close_channel(voice_channel(room_id))
