"""
watchparty.api.ws
~~~~~~~~~~~~~~~~~

WebSocket 实时交互接口 —— 观影房间事件通道。

提供 ``/ws`` 端点。每一帧都是 ``{"event": ..., "data": {...}}`` 形式的 JSON 文本，
同一连接的事件按到达顺序逐个处理；不同连接之间的事件在等待数据库时交错执行。
"""
from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from watchparty.core.logging import connection_id_ctx_var, get_logger
from watchparty.services.party_system import PartySystem

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket("/ws")
async def websocket_party_endpoint(websocket: WebSocket) -> None:
    """观影房间 WebSocket 端点。

    连接建立后服务端先发送 ``connected {socketId}``，之后客户端发送
    ``create-room`` / ``join-room`` 等事件，失败时只有本连接会收到 ``room-error``。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    system: PartySystem = websocket.app.state.party_system
    conn = await system.connect(websocket)
    token = connection_id_ctx_var.set(conn.id)

    try:
        while True:
            raw: str = await websocket.receive_text()
            await system.dispatch(conn, raw)
    except WebSocketDisconnect:
        logger.debug("客户端断开")
    except Exception as e:
        logger.error("WebSocket 异常: %s", e, exc_info=True)
    finally:
        try:
            await system.disconnect(conn)
        except Exception as e:
            logger.error("断线清理异常: %s", e, exc_info=True)
        connection_id_ctx_var.reset(token)
