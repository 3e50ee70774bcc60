import pytest
from starlette.requests import Request
from fusionmarkt.rate_limiting.limiter import RateLimiter
from fusionmarkt.rate_limiting.models import RateLimitPolicy
from fusionmarkt.rate_limiting.utils import client_ip
from tests.helpers import FakeClock, order_payload, url_prefix

POLICY = RateLimitPolicy(limit=2, window_seconds=60)


class FakeRedis:
    """Enough of redis.asyncio for the fixed window script."""

    def __init__(self, clock):
        self.clock = clock
        self.counters = {}

    async def script_load(self, script):
        return "sha-1"

    async def evalsha(self, sha, numkeys, key, pexpire_ms):
        now_ms = self.clock() * 1000
        count, expires = self.counters.get(key, (0, 0))
        if expires <= now_ms:
            count, expires = 0, now_ms + pexpire_ms
        count += 1
        self.counters[key] = (count, expires)
        return [count, int(expires - now_ms)]


class BrokenRedis:
    async def script_load(self, script):
        raise ConnectionError("redis down")

    async def eval(self, *args):
        raise ConnectionError("redis down")


def make_request(headers=None, client=("10.0.0.9", 5000)):
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/orders",
        "headers": [(k.encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


async def test_memory_fixed_window():
    clock = FakeClock()
    limiter = RateLimiter(redis=None, clock=clock)

    first = await limiter.check("order:1.1.1.1", POLICY)
    second = await limiter.check("order:1.1.1.1", POLICY)
    third = await limiter.check("order:1.1.1.1", POLICY)
    assert (first.allowed, second.allowed, third.allowed) == (True, True, False)
    assert first.remaining == 1
    assert third.retry_after == 60

    # other clients have their own window
    assert (await limiter.check("order:2.2.2.2", POLICY)).allowed

    clock.advance(61)
    assert (await limiter.check("order:1.1.1.1", POLICY)).allowed


async def test_redis_backend():
    clock = FakeClock()
    limiter = RateLimiter(redis=FakeRedis(clock), clock=clock)

    results = [await limiter.check("order:1.1.1.1", POLICY) for _ in range(3)]
    assert [r.allowed for r in results] == [True, True, False]
    assert results[2].reset_in == 60


async def test_redis_failure_falls_back_to_local_counters():
    limiter = RateLimiter(redis=BrokenRedis(), clock=FakeClock())

    results = [await limiter.check("order:1.1.1.1", POLICY) for _ in range(3)]
    assert [r.allowed for r in results] == [True, True, False]


@pytest.mark.parametrize("fail_open,allowed", [(True, True), (False, False)])
async def test_total_failure_follows_policy(fail_open, allowed, monkeypatch):
    limiter = RateLimiter(redis=BrokenRedis(), fail_open=fail_open, clock=FakeClock())

    async def boom(*args, **kwargs):
        raise RuntimeError("no counters")

    monkeypatch.setattr(limiter.memory, "allow", boom)
    result = await limiter.check("order:1.1.1.1", POLICY)
    assert result.allowed is allowed


def test_client_ip_precedence():
    assert client_ip(make_request({"cf-connecting-ip": "1.1.1.1", "x-forwarded-for": "2.2.2.2"})) == "1.1.1.1"
    assert client_ip(make_request({"x-forwarded-for": "2.2.2.2, 3.3.3.3"})) == "2.2.2.2"
    assert client_ip(make_request({"x-real-ip": "4.4.4.4"})) == "4.4.4.4"
    assert client_ip(make_request()) == "10.0.0.9"
    assert client_ip(make_request(client=None)) == "unknown"


@pytest.mark.asyncio
async def test_order_endpoint_rate_limited(ac_client, clock):
    body = order_payload(items=[])
    limit = 10

    for _ in range(limit):
        resp = await ac_client.post(f"{url_prefix}/orders", json=body)
        assert resp.status_code == 400

    resp = await ac_client.post(f"{url_prefix}/orders", json=body)
    assert resp.status_code == 429
    data = resp.json()
    assert data["retryAfter"] > 0
    assert int(resp.headers["Retry-After"]) == data["retryAfter"]
    assert resp.headers["X-RateLimit-Limit"] == str(limit)
    assert resp.headers["X-RateLimit-Remaining"] == "0"

    # a different client is unaffected
    resp = await ac_client.post(f"{url_prefix}/orders", json=body, headers={"X-Forwarded-For": "5.5.5.5"})
    assert resp.status_code == 400

    clock.advance(61)
    resp = await ac_client.post(f"{url_prefix}/orders", json=body)
    assert resp.status_code == 400
    assert resp.headers["X-RateLimit-Remaining"] == str(limit - 1)
