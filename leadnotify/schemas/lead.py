"""Inbound lead capture schemas.

The website posts camelCase JSON; fields are snake_case here with camelCase
aliases.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

Intent = Literal["buy", "rent", "sell", "invest", "browse"]
LeadQuality = Literal["hot", "warm", "cold"]


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# The widget sends "" for a skipped email field.
OptionalEmail = Annotated[EmailStr | None, BeforeValidator(_blank_to_none)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatMessageIn(CamelModel):
    id: str = Field(min_length=1)
    sender: Literal["bot", "user", "customer", "agent"] = "user"
    message_text: str = Field(min_length=1)
    message_type: str = Field(default="text", min_length=1)
    timestamp: str | None = None
    metadata: dict[str, Any] | None = None


class LeadCreate(CamelModel):
    conversation_id: uuid.UUID | None = None
    customer_id: uuid.UUID | None = None
    customer_name: str = Field(min_length=2)
    customer_phone: str = Field(min_length=5)
    customer_email: OptionalEmail = None
    intent: Intent | None = None
    budget: str | None = None
    property_type: str | None = None
    preferred_area: str | None = None
    lead_score: float | None = Field(default=None, ge=0, le=100)
    lead_quality: LeadQuality | None = None
    tags: list[str] | None = None
    notes: str | None = None
    lead_score_breakdown: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    messages: list[ChatMessageIn] | None = None


class ContactSubmission(CamelModel):
    full_name: str = Field(min_length=2)
    email: EmailStr
    country_code: str = "+971"
    phone: str = Field(min_length=5)
    department: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    message: str = Field(min_length=1)


class PropertyInquiry(CamelModel):
    customer_name: str = Field(min_length=2)
    customer_phone: str = Field(min_length=5)
    customer_email: OptionalEmail = None
    property_title: str = Field(min_length=1)
    property_url: str | None = None
    message: str | None = None


class ConversationResponse(BaseModel):
    id: uuid.UUID
    customer_id: uuid.UUID
    customer_name: str
    customer_phone: str
    customer_email: str | None = None
    source: str
    status: str
    intent: str | None = None
    budget: str | None = None
    property_type: str | None = None
    preferred_area: str | None = None
    lead_score: int
    lead_quality: str
    tags: list[str] = []
    notes: str | None = None
    duration_minutes: int

    model_config = {"from_attributes": True}


class LeadAccepted(BaseModel):
    id: uuid.UUID
    conversation: ConversationResponse
