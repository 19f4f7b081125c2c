import os
import sys
from pathlib import Path

# 让测试无需安装即可导入 concierge，并且不连接真实数据库
root_dir = Path(__file__).resolve().parents[1]
backend_dir = root_dir / "backend"
if backend_dir.exists() and str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("GROK_API_KEY", "")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from concierge.core.database import Base
import concierge.models  # noqa: F401  注册所有表
from concierge.middleware.rate_limit import InMemoryRateLimiter, set_rate_limiter


@pytest.fixture
async def engine(tmp_path):
    """每个测试一个独立的 SQLite 文件库"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture(autouse=True)
def fresh_rate_limiter():
    limiter = InMemoryRateLimiter()
    set_rate_limiter(limiter)
    yield limiter
    set_rate_limiter(None)
