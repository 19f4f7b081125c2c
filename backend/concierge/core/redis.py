"""共享 Redis 客户端

目前只有 RedisRateLimiter 使用（RATE_LIMIT_BACKEND=redis 时），
在第一次限流计数时创建，应用关闭时在 lifespan 中释放。
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis

from concierge.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

_client: Optional[Redis] = None


async def get_redis() -> Redis:
    """获取共享客户端（内部自带连接池）"""
    global _client
    if _client is None:
        _client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_socket_timeout,
        )
        logger.info("Redis client created for rate limiting")
    return _client


async def close_redis() -> None:
    """释放客户端；未创建过时什么也不做"""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
