"""API 限流

固定窗口计数器，按 (操作, 客户端 IP) 计数。限流器是可注入的抽象：
- InMemoryRateLimiter：进程内字典，只适用于单节点部署
- RedisRateLimiter：基于 Redis INCR/EXPIRE，多实例共享计数
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from functools import wraps
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request

from concierge.core.config import get_settings
from concierge.core.errors import RateLimitedError
from concierge.core.redis import get_redis

logger = logging.getLogger(__name__)


class RateLimiter(ABC):
    """限流器接口"""

    @abstractmethod
    async def consume(self, key: str, max_requests: int, window: int) -> Tuple[bool, int]:
        """
        为 key 消耗一次请求配额

        Args:
            key: 限流键
            max_requests: 时间窗口内最大请求数
            window: 时间窗口（秒）

        Returns:
            (是否允许, 剩余请求数)
        """

    async def cleanup(self) -> None:
        """清理过期数据"""


class InMemoryRateLimiter(RateLimiter):
    """基于内存的速率限制器（单节点）"""

    def __init__(self):
        # key -> (请求次数, 窗口开始时间, 窗口长度)
        self.requests: Dict[str, Tuple[int, float, int]] = {}
        self.lock = asyncio.Lock()

    async def consume(self, key: str, max_requests: int, window: int) -> Tuple[bool, int]:
        async with self.lock:
            current_time = time.time()
            count, start_time, _ = self.requests.get(key, (0, current_time, window))

            # 重置窗口
            if count == 0 or current_time - start_time >= window:
                self.requests[key] = (1, current_time, window)
                return True, max_requests - 1

            if count >= max_requests:
                return False, 0

            self.requests[key] = (count + 1, start_time, window)
            return True, max_requests - count - 1

    async def cleanup(self) -> None:
        async with self.lock:
            current_time = time.time()
            expired = [
                key for key, (_, start_time, window) in self.requests.items()
                if current_time - start_time >= window
            ]
            for key in expired:
                del self.requests[key]


class RedisRateLimiter(RateLimiter):
    """基于 Redis 的速率限制器（多实例共享）"""

    def __init__(self, redis=None, prefix: str = "ratelimit"):
        self._redis = redis
        self.prefix = prefix

    async def _client(self):
        if self._redis is None:
            self._redis = await get_redis()
        return self._redis

    async def consume(self, key: str, max_requests: int, window: int) -> Tuple[bool, int]:
        client = await self._client()
        redis_key = f"{self.prefix}:{key}"
        async with client.pipeline(transaction=True) as pipe:
            pipe.incr(redis_key)
            # 只在窗口内第一次请求时设置过期时间
            pipe.expire(redis_key, window, nx=True)
            count, _ = await pipe.execute()

        if count > max_requests:
            return False, 0
        return True, max_requests - count


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """按配置获取全局限流器"""
    global _rate_limiter
    if _rate_limiter is None:
        backend = get_settings().rate_limit_backend
        _rate_limiter = RedisRateLimiter() if backend == "redis" else InMemoryRateLimiter()
        logger.info(f"Rate limiter backend: {backend}")
    return _rate_limiter


def set_rate_limiter(limiter: Optional[RateLimiter]) -> None:
    """注入限流器（传 None 时下次按配置重建）"""
    global _rate_limiter
    _rate_limiter = limiter


def get_client_ip(request: Request) -> str:
    client_ip = request.client.host if request.client else "unknown"
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    return client_ip


def rate_limit(max_requests: int = 10, window: int = 60, scope: Optional[str] = None):
    """
    端点限流装饰器

    Args:
        max_requests: 时间窗口内最大请求数
        window: 时间窗口（秒）
        scope: 计数作用域，默认使用端点函数名

    Example:
        @router.post("/recommendations/generate")
        @rate_limit(max_requests=10, window=60)
        async def generate(request: Request, ...):
            ...
    """
    def decorator(func: Callable):
        name = scope or func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs):
            request = kwargs.get("request")
            if request is None:
                request = next((arg for arg in args if isinstance(arg, Request)), None)

            if request is not None:
                client_ip = get_client_ip(request)
                allowed, _ = await get_rate_limiter().consume(
                    f"{name}:{window}:{client_ip}", max_requests, window
                )
                if not allowed:
                    logger.warning(f"Rate limit exceeded: {name} ip={client_ip}")
                    raise RateLimitedError(window)

            return await func(*args, **kwargs)
        return wrapper
    return decorator


async def cleanup_task():
    """定期清理过期数据"""
    while True:
        await asyncio.sleep(300)
        await get_rate_limiter().cleanup()
