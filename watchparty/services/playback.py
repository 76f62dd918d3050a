"""
watchparty.services.playback
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

播放权限控制 —— 只有房间管理员可以修改共享播放状态。

每个控制事件都重新读取房间文档，用持久化的 ``admin`` 字段与请求者 ID 做字符串比较，
不信任客户端自报的角色。通过校验的修改先写库（写入条件同样包含 ``admin``），
写入成功后才广播对应事件，因此播放时钟以数据库为准。
"""
from __future__ import annotations

from typing import Any

from watchparty.core.config import settings
from watchparty.core.errors import AuthorizationError, NotFoundError
from watchparty.core.logging import get_logger
from watchparty.db.room_repository import RoomRepository
from watchparty.schemas.events import (
    LoadVideoEvent,
    PlaybackTimeEvent,
    PlaybackTimePayload,
    PlayVideoPayload,
    SyncVideoEvent,
    SyncVideoPayload,
)
from watchparty.schemas.room import Room
from watchparty.services.broadcaster import ChannelBroadcaster, room_channel
from watchparty.services.connection import Connection

logger = get_logger(__name__)


class PlaybackAuthority:
    """管理员播放控制的校验、持久化与广播。"""

    def __init__(self, rooms: RoomRepository, broadcaster: ChannelBroadcaster) -> None:
        self.rooms = rooms
        self.broadcaster = broadcaster

    async def authorize(self, room_id: str, admin_id: str) -> Room:
        """校验请求者是否为房间管理员。

        Raises:
            NotFoundError: 房间不存在。
            AuthorizationError: 请求者不是管理员。
        """
        room = await self.rooms.get_room(room_id)
        if room is None:
            raise NotFoundError("Room does not exist.")
        if room.admin != admin_id:
            raise AuthorizationError("Only the room admin can control playback.")
        return room

    async def _commit(self, room_id: str, admin_id: str, fields: dict[str, Any]) -> Room:
        await self.authorize(room_id, admin_id)
        room = await self.rooms.update_playback(room_id, admin_id, fields)
        if room is None:
            # 校验之后、写入之前房间被解散
            raise NotFoundError("Room does not exist.")
        return room

    async def play_video(self, conn: Connection, payload: PlayVideoPayload) -> None:
        """加载新视频源，权威时钟归零并处于暂停状态。"""
        service_id = payload.service_id or settings.DEFAULT_SERVICE_ID
        await self._commit(payload.room_id, payload.admin_id, {
            "videoUrl": payload.url,
            "serviceId": service_id,
            "isPlaying": False,
            "playbackTime": 0.0,
        })
        await self.broadcaster.broadcast(
            room_channel(payload.room_id), "load-video",
            LoadVideoEvent(url=payload.url, service_id=service_id),
        )
        logger.info("🎥 加载视频 | room=%s | service=%s", payload.room_id, service_id)

    async def pause_video(self, conn: Connection, payload: PlaybackTimePayload) -> None:
        await self._commit(payload.room_id, payload.admin_id, {
            "isPlaying": False,
            "playbackTime": payload.time,
        })
        await self.broadcaster.broadcast(
            room_channel(payload.room_id), "pause-video", PlaybackTimeEvent(time=payload.time),
        )
        logger.info("⏸️ 暂停 | room=%s | time=%.2f", payload.room_id, payload.time)

    async def resume_video(self, conn: Connection, payload: PlaybackTimePayload) -> None:
        await self._commit(payload.room_id, payload.admin_id, {
            "isPlaying": True,
            "playbackTime": payload.time,
        })
        await self.broadcaster.broadcast(
            room_channel(payload.room_id), "resume-video", PlaybackTimeEvent(time=payload.time),
        )
        logger.info("▶️ 继续播放 | room=%s | time=%.2f", payload.room_id, payload.time)

    async def seek_video(self, conn: Connection, payload: PlaybackTimePayload) -> None:
        """跳转进度，不改变播放 / 暂停状态。"""
        await self._commit(payload.room_id, payload.admin_id, {"playbackTime": payload.time})
        await self.broadcaster.broadcast(
            room_channel(payload.room_id), "seek-video", PlaybackTimeEvent(time=payload.time),
        )
        logger.info("⏩ 跳转 | room=%s | time=%.2f", payload.room_id, payload.time)

    async def sync_video(self, conn: Connection, payload: SyncVideoPayload) -> None:
        """管理员周期性上报的完整播放时钟。"""
        await self._commit(payload.room_id, payload.admin_id, {
            "isPlaying": payload.playing,
            "playbackTime": payload.time,
        })
        await self.broadcaster.broadcast(
            room_channel(payload.room_id), "sync-video",
            SyncVideoEvent(time=payload.time, playing=payload.playing),
        )
        logger.debug("🔄 同步 | room=%s | time=%.2f | playing=%s", payload.room_id, payload.time, payload.playing)
