"""Notification payload handed to the notification service."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

NotificationSource = Literal[
    "chatbot",
    "property_inquiry",
    "contact_form",
    "sla_warning",
    "sla_breach",
    "system",
]


class NotificationPayload(BaseModel):
    customer_name: str
    customer_email: str | None = None
    customer_phone: str | None = None
    intent: str | None = None
    budget: str | None = None
    property_type: str | None = None
    area: str | None = None
    lead_score: float | None = None
    duration: int | None = None
    source: NotificationSource = "system"
    subject: str | None = None
    message: str | None = None
    department: str | None = None
    property_title: str | None = None
    property_url: str | None = None
