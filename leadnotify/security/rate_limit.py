"""In-memory request rate limiting for the public and admin endpoints.

Counts are process local and lost on restart; horizontally scaled
deployments get one independent budget per instance.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..config import LeadNotifySettings, settings

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Too many requests, please try again later."


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    window_seconds: float
    max_requests: int
    message: str = DEFAULT_MESSAGE


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float


class RateLimiter:
    """Fixed-window counter per key with a periodic sweep of expired windows."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float = 60.0,
    ) -> None:
        self._clock = clock
        self._store: dict[str, RateLimitEntry] = {}
        self._sweep_interval = sweep_interval_seconds
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._store)

    def check(self, key: str, policy: RateLimitPolicy) -> RateLimitResult:
        now = self._clock()
        entry = self._store.get(key)

        if entry is None or entry.reset_at < now:
            entry = RateLimitEntry(count=1, reset_at=now + policy.window_seconds)
            self._store[key] = entry
            return RateLimitResult(
                allowed=True,
                remaining=max(0, policy.max_requests - 1),
                reset_at=entry.reset_at,
            )

        entry.count += 1
        return RateLimitResult(
            allowed=entry.count <= policy.max_requests,
            remaining=max(0, policy.max_requests - entry.count),
            reset_at=entry.reset_at,
        )

    def retry_after(self, result: RateLimitResult) -> int:
        """Whole seconds until the window for ``result`` resets."""
        return max(0, math.ceil(result.reset_at - self._clock()))

    def sweep(self) -> int:
        """Drop entries whose window has already expired; return how many."""
        now = self._clock()
        expired = [key for key, entry in self._store.items() if entry.reset_at < now]
        for key in expired:
            del self._store[key]
        return len(expired)

    def reset(self) -> None:
        self._store.clear()

    def start(self) -> None:
        if self._sweep_task is not None:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="rate-limit-sweeper")

    async def stop(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        finally:
            self._sweep_task = None
        self._store.clear()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug("Purged %d expired rate limit entries", removed)


def build_policies(cfg: LeadNotifySettings | None = None) -> dict[str, RateLimitPolicy]:
    """Named policies for the service's endpoint groups."""
    cfg = cfg or settings
    window = cfg.rate_limit_window_seconds
    return {
        "general": RateLimitPolicy("general", window, cfg.rate_limit_general_max),
        "lead_submission": RateLimitPolicy(
            "lead_submission",
            window,
            cfg.rate_limit_lead_submission_max,
            "Too many lead submissions. Please wait before submitting again.",
        ),
        "contact_form": RateLimitPolicy(
            "contact_form",
            window,
            cfg.rate_limit_contact_form_max,
            "Too many contact form submissions. Please wait a moment.",
        ),
        "admin": RateLimitPolicy("admin", window, cfg.rate_limit_admin_max),
        "export": RateLimitPolicy(
            "export",
            window,
            cfg.rate_limit_export_max,
            "Export rate limit reached. Please wait before exporting again.",
        ),
    }


def default_rules(policies: dict[str, RateLimitPolicy]) -> list[tuple[str, RateLimitPolicy]]:
    """Path prefix to policy table; the first matching prefix wins."""
    return [
        ("/api/chatbot/leads", policies["lead_submission"]),
        ("/api/property-inquiries", policies["lead_submission"]),
        ("/api/contact", policies["contact_form"]),
        ("/api/admin/events/export", policies["export"]),
        ("/api/admin", policies["admin"]),
        ("/api", policies["general"]),
    ]


def client_ip_key(request: Request) -> str:
    """Client identity: first X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        ip = forwarded.split(",")[0].strip()
    elif request.client and request.client.host:
        ip = request.client.host
    else:
        ip = "unknown"
    return f"ip:{ip}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply a rate limit policy per path prefix and report it in headers."""

    def __init__(
        self,
        app,
        *,
        limiter: RateLimiter,
        rules: Sequence[tuple[str, RateLimitPolicy]],
        key_func: Callable[[Request], str] = client_ip_key,
        exempt_prefixes: Iterable[str] = ("/health", "/ready"),
        settings_obj: LeadNotifySettings | None = None,
    ):
        super().__init__(app)
        self._limiter = limiter
        self._rules = tuple(rules)
        self._key_func = key_func
        self._exempt_prefixes = tuple(exempt_prefixes)
        self._settings_obj = settings_obj or settings

    def _policy_for(self, path: str) -> RateLimitPolicy | None:
        if any(path.startswith(prefix) for prefix in self._exempt_prefixes):
            return None
        for prefix, policy in self._rules:
            if path.startswith(prefix):
                return policy
        return None

    async def dispatch(self, request: Request, call_next):
        if not self._settings_obj.rate_limit_enabled:
            return await call_next(request)

        policy = self._policy_for(request.url.path)
        if policy is None:
            return await call_next(request)

        key = self._key_func(request)
        result = self._limiter.check(f"{policy.name}:{key}", policy)
        headers = {
            "X-RateLimit-Limit": str(policy.max_requests),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(math.ceil(result.reset_at)),
        }

        if not result.allowed:
            retry_after = self._limiter.retry_after(result)
            logger.warning(
                "Rate limit exceeded (%s: %d per %ss)",
                policy.name,
                policy.max_requests,
                policy.window_seconds,
                extra={"rate_limit_key": key},
            )
            headers["Retry-After"] = str(retry_after)
            return JSONResponse(
                {"error": policy.message, "retryAfter": retry_after},
                status_code=429,
                headers=headers,
            )

        response = await call_next(request)
        for name, value in headers.items():
            response.headers[name] = value
        return response
