"""Lead record (conversation) and chat transcript models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin


class Conversation(Base, UUIDMixin, TimestampMixin):
    """A captured lead: one chatbot session, contact form or property inquiry."""

    __tablename__ = "conversations"

    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, default=uuid.uuid4, index=True)
    customer_name: Mapped[str] = mapped_column(String(200))
    customer_phone: Mapped[str] = mapped_column(String(50))
    customer_email: Mapped[str | None] = mapped_column(String(320), default=None)
    source: Mapped[str] = mapped_column(String(30), default="chatbot")  # chatbot/contact_form/property_inquiry
    status: Mapped[str] = mapped_column(String(30), default="new")
    intent: Mapped[str | None] = mapped_column(String(20), default=None)  # buy/rent/sell/invest/browse
    budget: Mapped[str | None] = mapped_column(String(100), default=None)
    property_type: Mapped[str | None] = mapped_column(String(100), default=None)
    preferred_area: Mapped[str | None] = mapped_column(String(200), default=None)
    lead_score: Mapped[int] = mapped_column(Integer, default=0)
    lead_quality: Mapped[str] = mapped_column(String(10), default="cold")  # hot/warm/cold
    tags: Mapped[list] = mapped_column(JSON, default=list)
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    lead_score_breakdown: Mapped[dict | None] = mapped_column(JSON, default=None)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON, default=None)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=1)

    messages: Mapped[list[ChatMessage]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ChatMessage.timestamp",
    )

    def __repr__(self) -> str:
        return f"<Conversation {self.customer_name} [{self.lead_quality}]>"


class ChatMessage(Base, TimestampMixin):
    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), index=True
    )
    sender: Mapped[str] = mapped_column(String(20))  # bot/customer/agent
    message_text: Mapped[str] = mapped_column(Text)
    message_type: Mapped[str] = mapped_column(String(30), default="text")
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_read: Mapped[bool] = mapped_column(default=False)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON, default=None)

    conversation: Mapped[Conversation] = relationship(back_populates="messages")

    def __repr__(self) -> str:
        return f"<ChatMessage {self.sender}>"
