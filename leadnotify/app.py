"""FastAPI application factory for the lead notification service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .config import LeadNotifySettings, settings
from .logging_config import configure_logging
from .middleware import RequestIdMiddleware
from .outbox import EventOutbox
from .security.rate_limit import RateLimiter, RateLimitMiddleware, build_policies, default_rules
from .services.event_svc import EventEmitter
from .services.notification_svc import NotificationService
from .worker import NotificationWorker, WorkerConfig

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg: LeadNotifySettings = app.state.settings
    configure_logging(cfg.log_level, cfg.use_json_logs)

    # Auto-create tables for SQLite (local dev); PostgreSQL uses Alembic migrations
    if "sqlite" in cfg.database_url:
        from .models import Base
        async with app.state.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    app.state.limiter.start()
    app.state.outbox.start()
    if cfg.worker_enabled:
        app.state.worker.start()
    logger.info("Lead notification service started (channels: %s)", app.state.notifier.configured_channels())
    yield
    await app.state.worker.stop()
    await app.state.outbox.stop()
    await app.state.limiter.stop()


def create_app(
    engine: AsyncEngine | None = None,
    notifier: NotificationService | None = None,
    cfg: LeadNotifySettings | None = None,
) -> FastAPI:
    """Build the app with explicitly constructed services on ``app.state``."""
    cfg = cfg or settings
    if engine is None:
        from .database import engine as default_engine
        engine = default_engine
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    notifier = notifier or NotificationService.from_settings(cfg)
    worker_config = WorkerConfig.from_settings(cfg)
    emitter = EventEmitter(session_factory, default_max_retries=worker_config.max_retries)
    limiter = RateLimiter(sweep_interval_seconds=cfg.rate_limit_sweep_interval_seconds)

    app = FastAPI(title=cfg.app_title, lifespan=lifespan)
    app.state.settings = cfg
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.notifier = notifier
    app.state.emitter = emitter
    app.state.outbox = EventOutbox(emitter)
    app.state.limiter = limiter
    app.state.worker = NotificationWorker(session_factory, notifier, emitter, worker_config)

    app.add_middleware(
        RateLimitMiddleware,
        limiter=limiter,
        rules=default_rules(build_policies(cfg)),
        settings_obj=cfg,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[cfg.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Admin-API-Key", "X-Request-ID"],
    )
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        message = "Internal server error" if cfg.is_production else str(exc)
        return JSONResponse({"error": message}, status_code=500)

    from .routers import admin, health, leads

    app.include_router(leads.router)
    app.include_router(admin.router)
    app.include_router(health.router)
    return app


app = create_app()
