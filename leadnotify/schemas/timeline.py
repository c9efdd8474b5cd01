"""Timeline, event and notification log schemas for the operator API."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ActorType = Literal["system", "agent", "customer", "bot"]


class TimelineEntryCreate(BaseModel):
    conversation_id: uuid.UUID
    event_type: str
    title: str
    description: str | None = None
    actor_type: ActorType = "system"
    actor_id: str | None = None
    actor_name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class TimelineEntryResponse(BaseModel):
    id: uuid.UUID
    conversation_id: uuid.UUID
    event_type: str
    title: str
    description: str | None = None
    actor_type: str
    actor_id: str | None = None
    actor_name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_json")
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationLogResponse(BaseModel):
    id: uuid.UUID
    lead_event_id: uuid.UUID | None = None
    conversation_id: uuid.UUID
    channel: str
    status: str
    payload: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class LeadEventResponse(BaseModel):
    id: uuid.UUID
    event_type: str
    conversation_id: uuid.UUID
    payload: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = None
    processed: bool
    retry_count: int
    max_retries: int
    last_error: str | None = None
    created_at: datetime
    processed_at: datetime | None = None
    available_at: datetime | None = None
    claimed_by: str | None = None
    claimed_at: datetime | None = None
    dead_lettered: bool = False

    model_config = {"from_attributes": True}


class LeadEventDetail(LeadEventResponse):
    notifications: list[NotificationLogResponse] = []


class SlaAlertRequest(BaseModel):
    level: Literal["warning", "breached"] = "warning"
    minutes_remaining: int | None = None
    sla_deadline: datetime | None = None
