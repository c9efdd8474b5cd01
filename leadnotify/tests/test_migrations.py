"""Smoke tests for the lead notification Alembic migrations."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from leadnotify.config import settings


def _alembic_config() -> Config:
    repo_root = Path(__file__).resolve().parents[2]
    return Config(str(repo_root / "leadnotify" / "alembic.ini"))


def test_alembic_upgrade_creates_tables(tmp_path: Path, monkeypatch):
    db_path = tmp_path / "ln_migrations.db"
    monkeypatch.setattr(settings, "database_url", f"sqlite+aiosqlite:///{db_path}")

    command.upgrade(_alembic_config(), "head")

    engine = create_engine(f"sqlite:///{db_path}")
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        event_indexes = {idx["name"] for idx in inspector.get_indexes("lead_events")}
        event_uniques = inspector.get_unique_constraints("lead_events")
    finally:
        engine.dispose()

    assert {
        "conversations",
        "chat_messages",
        "lead_events",
        "conversation_timeline",
        "notification_logs",
    } <= tables
    assert "ix_lead_events_available_at" in event_indexes
    assert any(uc["column_names"] == ["idempotency_key"] for uc in event_uniques)


def test_alembic_upgrade_is_rerunnable_after_downgrade(tmp_path: Path, monkeypatch):
    db_path = tmp_path / "ln_roundtrip.db"
    monkeypatch.setattr(settings, "database_url", f"sqlite+aiosqlite:///{db_path}")
    cfg = _alembic_config()

    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")
    command.upgrade(cfg, "head")

    engine = create_engine(f"sqlite:///{db_path}")
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()

    assert "lead_events" in tables
    assert "notification_logs" in tables
