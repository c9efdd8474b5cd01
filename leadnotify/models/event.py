"""Durable lead lifecycle events consumed by the notification worker."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, CreatedAtMixin, UUIDMixin, utcnow

LEAD_EVENT_TYPES = (
    "lead.created",
    "lead.updated",
    "lead.qualified",
    "lead.assigned",
    "lead.contacted",
    "lead.follow_up_scheduled",
    "lead.follow_up_completed",
    "lead.converted",
    "lead.lost",
    "notification.sent",
    "notification.failed",
    "notification.delivered",
    "sla.warning",
    "sla.breached",
)


class LeadEvent(Base, UUIDMixin, CreatedAtMixin):
    """Append-only fact about a lead; only the processing columns ever change."""

    __tablename__ = "lead_events"

    event_type: Mapped[str] = mapped_column(String(50), index=True)
    conversation_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    idempotency_key: Mapped[str | None] = mapped_column(
        String(255), unique=True, default=None, nullable=True
    )
    processed: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    last_error: Mapped[str | None] = mapped_column(Text, default=None)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None, nullable=True
    )
    available_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True
    )
    claimed_by: Mapped[str | None] = mapped_column(String(100), default=None, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None, nullable=True
    )

    @property
    def dead_lettered(self) -> bool:
        return not self.processed and self.retry_count >= self.max_retries

    def __repr__(self) -> str:
        return f"<LeadEvent {self.event_type} processed={self.processed} retries={self.retry_count}>"
