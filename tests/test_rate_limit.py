import pytest
from fastapi import Request

from concierge.core.errors import RateLimitedError
from concierge.middleware import rate_limit as rate_limit_module
from concierge.middleware.rate_limit import InMemoryRateLimiter, RedisRateLimiter, get_client_ip, rate_limit


def _request(ip: str = "10.0.0.1", headers=None) -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "POST", "path": "/", "headers": raw_headers, "client": (ip, 1234)})


async def test_memory_limiter_blocks_after_limit():
    limiter = InMemoryRateLimiter()

    results = [await limiter.consume("generate:60:1.1.1.1", 3, 60) for _ in range(4)]

    assert results == [(True, 2), (True, 1), (True, 0), (False, 0)]
    # 其他 IP 不受影响
    assert await limiter.consume("generate:60:2.2.2.2", 3, 60) == (True, 2)


async def test_memory_limiter_resets_after_window(monkeypatch):
    limiter = InMemoryRateLimiter()
    now = [1000.0]
    monkeypatch.setattr(rate_limit_module.time, "time", lambda: now[0])

    for _ in range(2):
        await limiter.consume("k", 2, 60)
    assert await limiter.consume("k", 2, 60) == (False, 0)

    now[0] += 60
    assert await limiter.consume("k", 2, 60) == (True, 1)


async def test_memory_limiter_cleanup(monkeypatch):
    limiter = InMemoryRateLimiter()
    now = [1000.0]
    monkeypatch.setattr(rate_limit_module.time, "time", lambda: now[0])
    await limiter.consume("short", 5, 10)
    await limiter.consume("long", 5, 300)

    now[0] += 60
    await limiter.cleanup()

    assert set(limiter.requests) == {"long"}


class FakePipeline:
    def __init__(self, store):
        self.store = store
        self.ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def incr(self, key):
        self.ops.append(("incr", key))

    def expire(self, key, seconds, nx=False):
        self.ops.append(("expire", key, seconds, nx))

    async def execute(self):
        results = []
        for op in self.ops:
            if op[0] == "incr":
                self.store[op[1]] = self.store.get(op[1], 0) + 1
                results.append(self.store[op[1]])
            else:
                results.append(True)
        return results


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.pipelines = []

    def pipeline(self, transaction=True):
        pipe = FakePipeline(self.store)
        self.pipelines.append(pipe)
        return pipe


async def test_redis_limiter_counts_with_incr_and_expire():
    redis = FakeRedis()
    limiter = RedisRateLimiter(redis)

    results = [await limiter.consume("answers:60:1.1.1.1", 2, 60) for _ in range(3)]

    assert results == [(True, 1), (True, 0), (False, 0)]
    assert redis.store == {"ratelimit:answers:60:1.1.1.1": 3}
    assert redis.pipelines[0].ops[1] == ("expire", "ratelimit:answers:60:1.1.1.1", 60, True)


def test_client_ip_prefers_forwarded_header():
    assert get_client_ip(_request()) == "10.0.0.1"
    assert get_client_ip(_request(headers={"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})) == "203.0.113.5"


async def test_decorator_raises_when_exceeded(fresh_rate_limiter):
    calls = []

    @rate_limit(max_requests=2, window=60)
    async def endpoint(request: Request):
        calls.append(request)
        return "ok"

    request = _request()
    assert await endpoint(request=request) == "ok"
    assert await endpoint(request) == "ok"
    with pytest.raises(RateLimitedError) as exc_info:
        await endpoint(request=request)

    assert len(calls) == 2
    assert exc_info.value.status_code == 429
    assert "endpoint:60:10.0.0.1" in fresh_rate_limiter.requests


async def test_shared_redis_client_is_created_once(monkeypatch):
    from concierge.core import redis as redis_module

    created = []

    class FakeClient:
        closed = False

        async def aclose(self):
            self.closed = True

    def fake_from_url(url, **kwargs):
        created.append((url, kwargs))
        return FakeClient()

    monkeypatch.setattr(redis_module, "_client", None)
    monkeypatch.setattr(redis_module.redis, "from_url", fake_from_url)

    client = await redis_module.get_redis()
    assert await redis_module.get_redis() is client
    assert len(created) == 1
    assert created[0][1]["decode_responses"] is True

    await redis_module.close_redis()
    assert client.closed is True
    assert redis_module._client is None
