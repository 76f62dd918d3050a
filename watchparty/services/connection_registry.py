"""
watchparty.services.connection_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接注册表 —— 记录"连接 ID → 用户 ID"的临时映射。

条目在连接第一次发出身份事件（``create-room`` / ``join-room``）时写入，
连接断开时删除，不做持久化。断线清理依赖它找出掉线用户。
每个 ``PartySystem`` 持有自己的实例，而不是模块级全局变量。
"""
from __future__ import annotations

from watchparty.core.logging import get_logger

logger = get_logger(__name__)


class ConnectionRegistry:
    """进程内的连接 → 用户映射。"""

    def __init__(self) -> None:
        self._users: dict[str, str] = {}

    def bind(self, connection_id: str, user_id: str) -> None:
        """记录连接所属用户；同一连接再次绑定时以最新用户为准。"""
        previous = self._users.get(connection_id)
        if previous is not None and previous != user_id:
            logger.info("连接切换用户 | %s -> %s", previous, user_id)
        self._users[connection_id] = user_id

    def resolve(self, connection_id: str) -> str | None:
        return self._users.get(connection_id)

    def release(self, connection_id: str) -> str | None:
        """删除连接条目，返回其绑定的用户 ID（未绑定时为 ``None``）。"""
        return self._users.pop(connection_id, None)

    def connections_of(self, user_id: str) -> list[str]:
        """某用户当前在线的全部连接 ID。"""
        return [conn_id for conn_id, uid in self._users.items() if uid == user_id]

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._users

    def __len__(self) -> int:
        return len(self._users)
