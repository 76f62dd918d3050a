"""
watchparty.core.errors
~~~~~~~~~~~~~~~~~~~~~~

房间事件处理的异常体系。

所有业务异常都继承 ``RoomError``，在事件分发边界被统一捕获，
并以 ``room-error`` 事件只回复给发起请求的连接，不会广播到房间。
"""
from __future__ import annotations

from pydantic import ValidationError as PydanticValidationError


class RoomError(Exception):
    """房间事件异常基类。

    Attributes:
        message: 返回给客户端的可读错误信息。
        code: 稳定的错误码，客户端可据此分支处理。
    """

    code: str = "room_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(RoomError):
    """标识符格式错误或缺少必填字段。"""

    code = "validation_error"

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> ValidationError:
        """把 pydantic 的校验错误压缩成一行可读信息。"""
        parts: list[str] = []
        for error in exc.errors():
            location = ".".join(str(item) for item in error["loc"]) or "payload"
            parts.append(f"{location}: {error['msg']}")
        return cls("; ".join(parts) or "Invalid payload.")


class NotFoundError(RoomError):
    """引用的房间、用户或连接不存在。"""

    code = "not_found"


class AuthorizationError(RoomError):
    """非管理员尝试修改播放状态。"""

    code = "unauthorized"


class PersistenceError(RoomError):
    """存储层操作失败。"""

    code = "persistence_error"


class RateLimitError(RoomError):
    """连接发送事件过快。"""

    code = "rate_limited"
