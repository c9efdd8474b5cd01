"""Per-channel delivery attempt records."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, CreatedAtMixin, UUIDMixin

NOTIFICATION_CHANNELS = ("slack", "email", "telegram", "whatsapp", "sms", "push", "webhook")
NOTIFICATION_STATUSES = ("pending", "sent", "delivered", "failed")


class NotificationLog(Base, UUIDMixin, CreatedAtMixin):
    __tablename__ = "notification_logs"

    lead_event_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, default=None, index=True)
    conversation_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    channel: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(20), default="pending")
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    def __repr__(self) -> str:
        return f"<NotificationLog {self.channel} {self.status}>"
