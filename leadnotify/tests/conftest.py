"""Async test fixtures for the lead notification service using SQLite."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from leadnotify.app import create_app
from leadnotify.config import LeadNotifySettings
from leadnotify.models import Base
from leadnotify.schemas.notification import NotificationPayload
from leadnotify.services.channels import ChannelError
from leadnotify.services.event_svc import EventEmitter
from leadnotify.services.notification_svc import NotificationService
from leadnotify.worker import NotificationWorker, WorkerConfig


class FakeChannel:
    """Channel double that records payloads and fails on demand."""

    def __init__(self, name: str, configured: bool = True) -> None:
        self.name = name
        self._configured = configured
        self.sent: list[NotificationPayload] = []
        self.error: Exception | None = None
        self.delay: float = 0.0

    @property
    def configured(self) -> bool:
        return self._configured

    def fail_with(self, error: Exception | str = "boom") -> None:
        self.error = ChannelError(error) if isinstance(error, str) else error

    def recover(self) -> None:
        self.error = None

    async def send(self, payload: NotificationPayload) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.sent.append(payload)


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def test_settings(tmp_path: Path) -> LeadNotifySettings:
    return LeadNotifySettings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'leadnotify_test.db'}",
        worker_enabled=False,
        worker_retry_backoff_seconds=0,
        admin_api_key="",
        security_fail_closed=False,
        rate_limit_enabled=True,
    )


@pytest_asyncio.fixture
async def engine(test_settings: LeadNotifySettings):
    # File-backed so concurrent sessions in a worker batch get their own connections.
    eng = create_async_engine(test_settings.database_url, echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_channel() -> type[FakeChannel]:
    return FakeChannel


@pytest.fixture
def channels() -> dict[str, FakeChannel]:
    return {name: FakeChannel(name) for name in ("slack", "email", "telegram")}


@pytest.fixture
def notifier(channels: dict[str, FakeChannel]) -> NotificationService:
    return NotificationService(list(channels.values()), timeout_seconds=1.0)


@pytest.fixture
def emitter(session_factory) -> EventEmitter:
    return EventEmitter(session_factory, default_max_retries=3)


@pytest.fixture
def worker(session_factory, notifier, emitter) -> NotificationWorker:
    return NotificationWorker(
        session_factory,
        notifier,
        emitter,
        WorkerConfig(poll_interval_seconds=0.05, batch_size=10, retry_backoff_seconds=0),
        worker_id="test-worker",
    )


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner."""
    from typer.testing import CliRunner
    return CliRunner()


@pytest.fixture
def app(engine, notifier, test_settings):
    return create_app(engine=engine, notifier=notifier, cfg=test_settings)


@pytest_asyncio.fixture
async def client(app):
    """HTTPX async test client against the lead notification app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
