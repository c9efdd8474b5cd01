"""Lead persistence for the chatbot, contact form and property inquiry endpoints."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models.base import utcnow
from ..models.conversation import ChatMessage, Conversation
from ..schemas.events import LeadCreatedPayload
from ..schemas.lead import ChatMessageIn, ContactSubmission, LeadCreate, PropertyInquiry
from ..schemas.notification import NotificationSource

log = logging.getLogger(__name__)


def fallback_lead_quality(score: float | None) -> str:
    if score is None:
        return "cold"
    if score >= 80:
        return "hot"
    if score >= 50:
        return "warm"
    return "cold"


def coerce_timestamp(value: str | None) -> datetime:
    """Parse an ISO timestamp from the client; anything unparseable becomes now."""
    if not value:
        return utcnow()
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return utcnow()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def conversation_duration(messages: list[ChatMessageIn]) -> tuple[datetime, int]:
    """Start time and whole-minute duration (at least 1) of a transcript."""
    if not messages:
        return utcnow(), 1
    first = coerce_timestamp(messages[0].timestamp) if messages[0].timestamp else utcnow()
    last = coerce_timestamp(messages[-1].timestamp) if messages[-1].timestamp else first
    minutes = round((last - first).total_seconds() / 60)
    return first, max(1, minutes)


def _message_row(conversation_id: uuid.UUID, message: ChatMessageIn) -> ChatMessage:
    sender = "customer" if message.sender == "user" else message.sender
    return ChatMessage(
        id=message.id,
        conversation_id=conversation_id,
        sender=sender,
        message_text=message.message_text,
        message_type=message.message_type or "text",
        timestamp=coerce_timestamp(message.timestamp),
        is_read=sender != "customer",
        metadata_json=message.metadata,
    )


async def get_conversation(db: AsyncSession, conversation_id: uuid.UUID) -> Conversation | None:
    stmt = (
        select(Conversation)
        .where(Conversation.id == conversation_id)
        .options(selectinload(Conversation.messages))
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _persist(db: AsyncSession, conv: Conversation) -> tuple[Conversation, bool]:
    conversation_id = conv.id
    db.add(conv)
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent submission of the same conversation id.
        await db.rollback()
        existing = await get_conversation(db, conversation_id)
        if existing is None:
            raise
        log.info("Lead already stored", extra={"conversation_id": str(conversation_id)})
        return existing, False
    return conv, True


async def create_lead(db: AsyncSession, data: LeadCreate) -> tuple[Conversation, bool]:
    """Store a chatbot lead. Returns ``(conversation, created)``.

    Resubmitting a payload whose ``conversationId`` is already stored returns
    the stored lead unchanged.
    """
    conversation_id = data.conversation_id or uuid.uuid4()
    if data.conversation_id is not None:
        existing = await get_conversation(db, conversation_id)
        if existing is not None:
            log.info("Lead resubmitted", extra={"conversation_id": str(conversation_id)})
            return existing, False

    messages = data.messages or []
    start_time, duration = conversation_duration(messages)
    score = round(data.lead_score) if data.lead_score is not None else 0
    quality = data.lead_quality or fallback_lead_quality(data.lead_score)

    conv = Conversation(
        id=conversation_id,
        customer_id=data.customer_id or uuid.uuid4(),
        customer_name=data.customer_name,
        customer_phone=data.customer_phone,
        customer_email=data.customer_email,
        source="chatbot",
        status="new",
        intent=data.intent,
        budget=data.budget,
        property_type=data.property_type,
        preferred_area=data.preferred_area,
        lead_score=score,
        lead_quality=quality,
        tags=data.tags or [],
        notes=data.notes,
        lead_score_breakdown=data.lead_score_breakdown
        or {"source": "chatbot", "score": score, "quality": quality},
        metadata_json=data.metadata,
        start_time=start_time,
        duration_minutes=duration,
    )
    conv.messages = [_message_row(conversation_id, m) for m in messages]
    return await _persist(db, conv)


async def create_contact_lead(db: AsyncSession, data: ContactSubmission) -> Conversation:
    conversation_id = uuid.uuid4()
    now = utcnow()
    phone = f"{data.country_code or '+971'} {data.phone}"
    conv = Conversation(
        id=conversation_id,
        customer_name=data.full_name,
        customer_phone=phone,
        customer_email=data.email,
        source="contact_form",
        status="new",
        intent="buy" if data.department == "sales" else "general",
        lead_score=60,
        lead_quality="warm",
        tags=[data.department, "contact-form", "general-inquiry"],
        notes=f"Department: {data.department}\nSubject: {data.subject}",
        lead_score_breakdown={
            "source": "contact-form",
            "department": data.department,
            "has_email": True,
            "has_phone": True,
        },
        metadata_json={"department": data.department, "subject": data.subject},
        start_time=now,
        duration_minutes=1,
    )
    conv.messages = [
        ChatMessage(
            id=str(uuid.uuid4()),
            sender="customer",
            message_text=(
                f"Subject: {data.subject}\n\n{data.message}\n\n"
                f"Name: {data.full_name}\nEmail: {data.email}\n"
                f"Phone: {phone}\nDepartment: {data.department}"
            ),
            message_type="text",
            timestamp=now,
            is_read=False,
            metadata_json={
                "source": "contact-form",
                "department": data.department,
                "subject": data.subject,
            },
        )
    ]
    conv, _ = await _persist(db, conv)
    return conv


async def create_property_inquiry_lead(db: AsyncSession, data: PropertyInquiry) -> Conversation:
    conversation_id = uuid.uuid4()
    now = utcnow()
    conv = Conversation(
        id=conversation_id,
        customer_name=data.customer_name,
        customer_phone=data.customer_phone,
        customer_email=data.customer_email,
        source="property_inquiry",
        status="new",
        intent="buy",
        lead_score=70,
        lead_quality="warm",
        tags=["property-inquiry"],
        notes=f"Property: {data.property_title}",
        lead_score_breakdown={"source": "property-inquiry", "has_phone": True},
        metadata_json={"property_title": data.property_title, "property_url": data.property_url},
        start_time=now,
        duration_minutes=1,
    )
    if data.message:
        conv.messages = [
            ChatMessage(
                id=str(uuid.uuid4()),
                sender="customer",
                message_text=data.message,
                message_type="text",
                timestamp=now,
                is_read=False,
                metadata_json={"source": "property-inquiry", "property_title": data.property_title},
            )
        ]
    conv, _ = await _persist(db, conv)
    return conv


def lead_created_payload(
    conv: Conversation,
    source: NotificationSource | None = None,
    **details,
) -> LeadCreatedPayload:
    """Event payload for ``lead.created`` built from the stored lead."""
    return LeadCreatedPayload(
        conversation_id=conv.id,
        customer_id=conv.customer_id,
        customer_name=conv.customer_name,
        customer_email=conv.customer_email,
        customer_phone=conv.customer_phone,
        intent=conv.intent,
        budget=conv.budget,
        property_type=conv.property_type,
        preferred_area=conv.preferred_area,
        lead_score=conv.lead_score,
        lead_quality=conv.lead_quality,
        duration_minutes=conv.duration_minutes,
        source=source or conv.source,
        metadata=conv.metadata_json or {},
        **details,
    )
