"""Tests for the fixed-window rate limiter and its middleware."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from leadnotify.config import LeadNotifySettings
from leadnotify.security.rate_limit import (
    RateLimiter,
    RateLimitMiddleware,
    RateLimitPolicy,
    build_policies,
    client_ip_key,
    default_rules,
)


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


POLICY = RateLimitPolicy("test", window_seconds=60, max_requests=3)


def test_allows_up_to_max_then_blocks():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)

    results = [limiter.check("ip:1", POLICY) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert all(r.reset_at == 1_060.0 for r in results)


def test_retry_after_never_exceeds_window():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    for _ in range(3):
        limiter.check("ip:1", POLICY)

    clock.advance(15.5)
    blocked = limiter.check("ip:1", POLICY)

    assert blocked.allowed is False
    assert limiter.retry_after(blocked) == 45
    assert 0 < limiter.retry_after(blocked) <= POLICY.window_seconds


def test_window_resets_after_expiry():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    for _ in range(4):
        limiter.check("ip:1", POLICY)

    clock.advance(61)
    result = limiter.check("ip:1", POLICY)

    assert result.allowed is True
    assert result.remaining == 2
    assert result.reset_at == clock.now + 60


def test_keys_are_independent():
    limiter = RateLimiter(clock=FakeClock())
    for _ in range(3):
        limiter.check("ip:1", POLICY)

    assert limiter.check("ip:1", POLICY).allowed is False
    assert limiter.check("ip:2", POLICY).allowed is True


def test_sweep_removes_only_expired_entries():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    limiter.check("ip:old", POLICY)
    clock.advance(30)
    limiter.check("ip:new", POLICY)

    clock.advance(31)
    removed = limiter.sweep()

    assert removed == 1
    assert len(limiter) == 1
    assert limiter.check("ip:new", POLICY).remaining == 1


def test_default_rules_route_prefixes():
    policies = build_policies(LeadNotifySettings(_env_file=None))
    rules = dict(default_rules(policies))
    assert rules["/api/chatbot/leads"].max_requests == 10
    assert rules["/api/contact"].max_requests == 5
    assert rules["/api/admin/events/export"].name == "export"
    assert rules["/api"].name == "general"


def test_client_ip_key_prefers_forwarded_for():
    from starlette.requests import Request

    scope = {
        "type": "http",
        "headers": [(b"x-forwarded-for", b"203.0.113.7, 10.0.0.1")],
        "client": ("10.0.0.1", 1234),
    }
    assert client_ip_key(Request(scope)) == "ip:203.0.113.7"

    scope = {"type": "http", "headers": [], "client": ("10.0.0.1", 1234)}
    assert client_ip_key(Request(scope)) == "ip:10.0.0.1"


def _limited_app(clock: FakeClock, enabled: bool = True) -> FastAPI:
    app = FastAPI()
    cfg = LeadNotifySettings(_env_file=None, rate_limit_enabled=enabled)

    @app.post("/api/things")
    async def create_thing():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    app.add_middleware(
        RateLimitMiddleware,
        limiter=RateLimiter(clock=clock),
        rules=[("/api", RateLimitPolicy("things", 60, 2, "Slow down."))],
        settings_obj=cfg,
    )
    return app


@pytest.mark.asyncio
async def test_middleware_sets_headers_and_blocks():
    clock = FakeClock()
    transport = ASGITransport(app=_limited_app(clock))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        first = await client.post("/api/things")
        assert first.status_code == 200
        assert first.headers["X-RateLimit-Limit"] == "2"
        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert first.headers["X-RateLimit-Reset"] == "1060"

        await client.post("/api/things")
        clock.advance(10)
        blocked = await client.post("/api/things")

    assert blocked.status_code == 429
    body = blocked.json()
    assert body["error"] == "Slow down."
    assert body["retryAfter"] == 50
    assert blocked.headers["Retry-After"] == "50"
    assert blocked.headers["X-RateLimit-Remaining"] == "0"


@pytest.mark.asyncio
async def test_middleware_exempts_health():
    clock = FakeClock()
    transport = ASGITransport(app=_limited_app(clock))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        for _ in range(5):
            resp = await client.get("/health")
            assert resp.status_code == 200
            assert "X-RateLimit-Limit" not in resp.headers


@pytest.mark.asyncio
async def test_middleware_disabled_by_settings():
    clock = FakeClock()
    transport = ASGITransport(app=_limited_app(clock, enabled=False))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        for _ in range(5):
            resp = await client.post("/api/things")
            assert resp.status_code == 200


@pytest.mark.asyncio
async def test_limiter_start_stop_clears_store():
    limiter = RateLimiter(clock=FakeClock(), sweep_interval_seconds=3600)
    limiter.start()
    limiter.check("ip:1", POLICY)
    await limiter.stop()
    assert len(limiter) == 0
