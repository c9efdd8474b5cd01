"""Human-readable narrative of what happened to a lead."""

from __future__ import annotations

import uuid

from sqlalchemy import JSON, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, CreatedAtMixin, UUIDMixin

TIMELINE_EVENT_TYPES = (
    "created",
    "status_changed",
    "assigned",
    "note_added",
    "follow_up_scheduled",
    "follow_up_completed",
    "notification_sent",
    "customer_contacted",
    "property_viewed",
    "document_shared",
    "meeting_scheduled",
    "call_logged",
    "email_sent",
    "sla_warning",
    "sla_breached",
)

ACTOR_TYPES = ("system", "agent", "customer", "bot")


class TimelineEntry(Base, UUIDMixin, CreatedAtMixin):
    __tablename__ = "conversation_timeline"

    conversation_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    event_type: Mapped[str] = mapped_column(String(50))
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, default=None)
    actor_type: Mapped[str] = mapped_column(String(20), default="system")
    actor_id: Mapped[str | None] = mapped_column(String(100), default=None)
    actor_name: Mapped[str | None] = mapped_column(String(200), default=None)
    metadata_json: Mapped[dict] = mapped_column("metadata", JSON, default=dict)

    def __repr__(self) -> str:
        return f"<TimelineEntry {self.event_type} {self.title!r}>"
