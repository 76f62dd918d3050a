"""
watchparty.main
~~~~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from watchparty.api import ws
from watchparty.core.config import settings
from watchparty.core.logging import get_logger, setup_logging
from watchparty.db import close_mongo, connect_mongo, get_database
from watchparty.services.party_system import PartySystem

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    await connect_mongo()
    system = PartySystem.from_database(get_database())
    app.state.party_system = system
    reaper_task = asyncio.create_task(system.reaper.run(settings.CLEANUP_INTERVAL_SECONDS))
    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    reaper_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await reaper_task
    if system.reaper.pending:
        logger.warning("仍有 %d 个房间的消息未清理", len(system.reaper.pending))
    await close_mongo()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="Watch Party 实时同步后端",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(ws.router, tags=["WebSocket Party"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理的 HTTP 异常，返回统一 JSON，避免默认 HTML 错误页。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    return JSONResponse(status_code=500, content={"code": 500, "msg": detail, "data": None})


@app.get("/health", tags=["System"])
async def health_check() -> JSONResponse:
    """验证服务是否正常运行。"""
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "debug": settings.debug,
            "log_level": settings.effective_log_level,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "watchparty.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
