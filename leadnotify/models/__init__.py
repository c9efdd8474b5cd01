"""Lead notification database models."""

from .base import Base
from .conversation import ChatMessage, Conversation
from .event import LEAD_EVENT_TYPES, LeadEvent
from .notification_log import NotificationLog
from .timeline import TimelineEntry

__all__ = [
    "Base",
    "Conversation",
    "ChatMessage",
    "LeadEvent",
    "LEAD_EVENT_TYPES",
    "TimelineEntry",
    "NotificationLog",
]
