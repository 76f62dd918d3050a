"""
watchparty.db.__init__
~~~~~~~~~~~~~~~~~~~~~~

MongoDB 异步连接管理。

使用 ``motor`` 提供的 ``AsyncIOMotorClient``，在应用生命周期内维护一个
全局连接池。启动时调用 ``connect_mongo()``，关闭时调用 ``close_mongo()``。
"""
from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar
from urllib.parse import urlparse, urlunparse

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from watchparty.core.config import settings
from watchparty.core.errors import PersistenceError, ValidationError
from watchparty.core.logging import get_logger

logger = get_logger(__name__)

_client: AsyncIOMotorClient | None = None

P = ParamSpec("P")
R = TypeVar("R")


def _mask_uri(uri: str) -> str:
    """将 MongoDB URI 中的密码替换为 ``***``，防止日志泄漏凭证。"""
    parsed = urlparse(uri)
    if parsed.password:
        masked = parsed._replace(
            netloc=f"{parsed.username}:***@{parsed.hostname}"
            + (f":{parsed.port}" if parsed.port else ""),
        )
        return urlunparse(masked)
    return uri


def to_object_id(value: str, what: str = "id") -> ObjectId:
    """把十六进制字符串转换为 ``ObjectId``。

    Raises:
        ValidationError: 字符串不是合法的 24 位十六进制 ObjectId。
    """
    if not ObjectId.is_valid(value):
        raise ValidationError(f"Malformed {what}: {value!r}")
    return ObjectId(value)


def persistence_guard(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
    """仓库方法装饰器：把 ``PyMongoError`` 转换为 ``PersistenceError``。"""

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return await func(*args, **kwargs)
        except PyMongoError as e:
            logger.error("存储操作失败 | op=%s | %s", func.__qualname__, e, exc_info=True)
            raise PersistenceError(f"Storage operation failed: {func.__name__}") from e

    return wrapper


async def connect_mongo() -> None:
    """初始化 MongoDB 连接池。应在 lifespan startup 中调用。"""
    global _client
    _client = AsyncIOMotorClient(settings.MONGO_URI)

    try:
        db = _client[settings.MONGO_DB_NAME]
        await db.command("ping")
        logger.info(
            "MongoDB 已连接 | uri=%s | db=%s",
            _mask_uri(settings.MONGO_URI),
            settings.MONGO_DB_NAME,
        )
    except Exception as e:
        logger.error("MongoDB 连接失败: %s", e, exc_info=True)
        raise


async def close_mongo() -> None:
    """关闭 MongoDB 连接池。应在 lifespan shutdown 中调用。"""
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("MongoDB 连接已关闭")


def get_database() -> AsyncIOMotorDatabase:
    """获取默认数据库实例。

    Returns:
        ``AsyncIOMotorDatabase`` 实例。

    Raises:
        RuntimeError: 如果在 ``connect_mongo()`` 之前调用。
    """
    if _client is None:
        raise RuntimeError(
            "MongoDB 尚未初始化，请先调用 connect_mongo()",
        )
    return _client[settings.MONGO_DB_NAME]
