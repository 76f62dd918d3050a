"""
watchparty.services.room_reaper
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间销毁与孤儿消息补偿清理。

销毁顺序：先删房间文档（此后加入与发消息都会得到 NotFound），再删其消息。
若第二步失败，房间 ID 进入待清理队列，由后台任务按固定间隔重试，直至消息删净。
"""
from __future__ import annotations

import asyncio

from watchparty.core.errors import PersistenceError
from watchparty.core.logging import get_logger
from watchparty.db.message_repository import MessageRepository
from watchparty.db.room_repository import RoomRepository

logger = get_logger(__name__)


class RoomReaper:
    """负责房间及其消息的删除。

    Attributes:
        rooms: 房间仓库。
        messages: 消息仓库。
        pending: 房间已删除但消息尚未删净的房间 ID。
    """

    def __init__(self, rooms: RoomRepository, messages: MessageRepository) -> None:
        self.rooms = rooms
        self.messages = messages
        self.pending: set[str] = set()

    async def dismantle(self, room_id: str) -> None:
        """删除房间与其全部消息。

        Raises:
            PersistenceError: 删除房间文档失败（此时消息保持不动）。
        """
        deleted = await self.rooms.delete_room(room_id)
        try:
            count = await self.messages.delete_for_room(room_id)
        except PersistenceError:
            logger.warning("消息删除失败，已加入补偿清理队列 | room=%s", room_id)
            self.pending.add(room_id)
            return
        logger.info("🗑️ 房间已删除 | room=%s | existed=%s | messages=%d", room_id, deleted, count)

    async def sweep(self) -> int:
        """重试待清理队列，返回本轮清理成功的房间数。"""
        cleaned = 0
        for room_id in list(self.pending):
            try:
                count = await self.messages.delete_for_room(room_id)
            except PersistenceError:
                logger.warning("补偿清理仍然失败，下轮重试 | room=%s", room_id)
                continue
            self.pending.discard(room_id)
            cleaned += 1
            logger.info("补偿清理完成 | room=%s | messages=%d", room_id, count)
        return cleaned

    async def run(self, interval_seconds: float) -> None:
        """后台循环，在 lifespan 中作为任务启动，关闭时取消。"""
        while True:
            await asyncio.sleep(interval_seconds)
            if self.pending:
                await self.sweep()
