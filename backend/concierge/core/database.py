"""数据库连接与会话管理"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from concierge.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """ORM 基类"""


engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def utcnow() -> datetime:
    """当前 UTC 时间（naive，与 DateTime 列保持一致）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI 依赖：获取数据库会话"""
    async with async_session_maker() as session:
        yield session


@asynccontextmanager
async def worker_session(database_url: Optional[str] = None) -> AsyncIterator[AsyncSession]:
    """
    独立引擎上的数据库会话，供 Celery 任务使用

    每个任务通过 asyncio.run 运行在新的事件循环上，全局连接池中的连接
    绑定在旧循环上不能复用，所以这里不使用连接池，并在结束时释放引擎。
    """
    worker_engine = create_async_engine(
        database_url or settings.database_url,
        echo=settings.database_echo,
        poolclass=NullPool,
    )
    try:
        async with async_sessionmaker(worker_engine, class_=AsyncSession, expire_on_commit=False)() as session:
            yield session
    finally:
        await worker_engine.dispose()


async def init_db() -> None:
    """创建所有表（开发环境使用，生产环境请用 alembic）"""
    # 导入模型以注册元数据
    import concierge.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def close_db() -> None:
    """关闭数据库连接池"""
    await engine.dispose()
