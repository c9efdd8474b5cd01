"""Typed payloads for lead lifecycle events.

Each event type has its own payload model. Anything that does not have a
dedicated field travels in ``metadata``; unknown top-level keys from older
rows are ignored on read.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .notification import NotificationSource


class EventPayload(BaseModel):
    conversation_id: uuid.UUID
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "ignore"}


class LeadCreatedPayload(EventPayload):
    customer_id: uuid.UUID | None = None
    customer_name: str
    customer_email: str | None = None
    customer_phone: str | None = None
    intent: str | None = None
    budget: str | None = None
    property_type: str | None = None
    preferred_area: str | None = None
    lead_score: float | None = None
    lead_quality: str | None = None
    duration_minutes: int | None = None
    source: NotificationSource = "chatbot"
    # contact form / property inquiry details
    subject: str | None = None
    message: str | None = None
    department: str | None = None
    property_title: str | None = None
    property_url: str | None = None


class LeadUpdatePayload(EventPayload):
    changes: dict[str, Any] = Field(default_factory=dict)
    actor_id: str | None = None
    actor_name: str | None = None


class SlaAlertPayload(EventPayload):
    customer_name: str = "Unknown"
    customer_phone: str | None = None
    lead_score: float | None = None
    sla_deadline: datetime | None = None
    minutes_remaining: int | None = None


class ChannelFailure(BaseModel):
    channel: str
    error: str | None = None


class NotificationOutcomePayload(EventPayload):
    source_event_id: uuid.UUID | None = None
    channels: list[str] = Field(default_factory=list)
    errors: list[ChannelFailure] = Field(default_factory=list)


PAYLOAD_TYPES: dict[str, type[EventPayload]] = {
    "lead.created": LeadCreatedPayload,
    "lead.updated": LeadUpdatePayload,
    "lead.qualified": LeadUpdatePayload,
    "lead.assigned": LeadUpdatePayload,
    "lead.contacted": LeadUpdatePayload,
    "lead.follow_up_scheduled": LeadUpdatePayload,
    "lead.follow_up_completed": LeadUpdatePayload,
    "lead.converted": LeadUpdatePayload,
    "lead.lost": LeadUpdatePayload,
    "notification.sent": NotificationOutcomePayload,
    "notification.failed": NotificationOutcomePayload,
    "notification.delivered": NotificationOutcomePayload,
    "sla.warning": SlaAlertPayload,
    "sla.breached": SlaAlertPayload,
}


def parse_payload(event_type: str, data: dict[str, Any]) -> EventPayload:
    """Validate a stored JSON payload against its event type's model."""
    model = PAYLOAD_TYPES.get(event_type, EventPayload)
    return model.model_validate(data)
