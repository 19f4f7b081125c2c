"""FastAPI 应用入口"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from concierge.api.answers import router as answers_router
from concierge.api.categories import router as categories_router
from concierge.api.history import router as history_router
from concierge.api.recommendations import router as recommendations_router
from concierge.api.sessions import router as sessions_router
from concierge.core.config import get_settings
from concierge.core.database import close_db
from concierge.core.errors import ConciergeError, ErrorCode
from concierge.core.redis import close_redis
from concierge.core.responses import error_to_response, localized_error_response
from concierge.middleware.rate_limit import cleanup_task

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理"""
    # 启动时 - 启动限流数据清理任务
    cleanup_task_handle = asyncio.create_task(cleanup_task())

    yield

    # 关闭时
    cleanup_task_handle.cancel()
    await close_db()
    await close_redis()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="アンケート回答に基づく商品レコメンド API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============ 异常处理 ============

@app.exception_handler(ConciergeError)
async def concierge_error_handler(request: Request, exc: ConciergeError):
    """业务错误 -> 本地化错误响应"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return error_to_response(request, exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """请求格式错误"""
    return localized_error_response(
        request,
        "errors.validation_error",
        status_code=400,
        code=ErrorCode.VALIDATION_ERROR.value,
        extra={
            "errors": jsonable_encoder(
                [{"loc": e.get("loc"), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]
            )
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """未预期的错误，不向客户端暴露细节"""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return localized_error_response(
        request,
        "errors.internal_error",
        status_code=500,
        code=ErrorCode.INTERNAL_ERROR.value,
    )


# 注册路由
app.include_router(categories_router)  # 分类与问题
app.include_router(sessions_router)  # 问卷会话
app.include_router(answers_router)  # 答案
app.include_router(recommendations_router)  # 推荐
app.include_router(history_router)  # 历史记录


@app.get("/health")
async def health_check() -> dict:
    """健康检查端点"""
    return {"status": "healthy", "version": settings.app_version}
