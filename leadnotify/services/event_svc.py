"""Durable, idempotent recording of lead events, timeline entries and delivery logs.

Write failures are logged with their context and swallowed. Callers (the
HTTP handlers, the outbox and the worker) must never fail because an audit
trail write failed, so every public method returns ``None`` instead of
raising.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.base import utcnow
from ..models.event import LeadEvent
from ..models.notification_log import NotificationLog
from ..models.timeline import TimelineEntry
from ..schemas.events import LeadCreatedPayload, parse_payload
from ..schemas.timeline import TimelineEntryCreate

log = logging.getLogger(__name__)

DELIVERED_STATUSES = ("sent", "delivered")


@dataclass(frozen=True)
class EmittedEvent:
    id: uuid.UUID
    event_type: str
    conversation_id: uuid.UUID
    payload: dict[str, Any]
    idempotency_key: str | None
    created_at: datetime | None
    duplicate: bool = False

    @classmethod
    def from_row(cls, row: LeadEvent, duplicate: bool = False) -> EmittedEvent:
        return cls(
            id=row.id,
            event_type=row.event_type,
            conversation_id=row.conversation_id,
            payload=row.payload,
            idempotency_key=row.idempotency_key,
            created_at=row.created_at,
            duplicate=duplicate,
        )


def _payload_dict(event_type: str, payload: BaseModel | dict[str, Any]) -> dict[str, Any]:
    if not isinstance(payload, BaseModel):
        payload = parse_payload(event_type, payload)
    return payload.model_dump(mode="json")


async def _find_by_key(db: AsyncSession, idempotency_key: str) -> LeadEvent | None:
    stmt = select(LeadEvent).where(LeadEvent.idempotency_key == idempotency_key)
    return (await db.execute(stmt)).scalar_one_or_none()


class EventEmitter:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        default_max_retries: int = 3,
    ) -> None:
        self._session_factory = session_factory
        self.default_max_retries = default_max_retries

    async def emit(
        self,
        event_type: str,
        payload: BaseModel | dict[str, Any],
        idempotency_key: str | None = None,
    ) -> EmittedEvent | None:
        """Store a lead event; a repeated idempotency key returns the original."""
        ctx = {"event_type": event_type, "idempotency_key": idempotency_key}
        try:
            data = _payload_dict(event_type, payload)
            ctx["conversation_id"] = data.get("conversation_id")
            async with self._session_factory() as db:
                if idempotency_key:
                    existing = await _find_by_key(db, idempotency_key)
                    if existing is not None:
                        log.info(
                            "Duplicate event detected, returning existing",
                            extra={**ctx, "event_id": str(existing.id)},
                        )
                        return EmittedEvent.from_row(existing, duplicate=True)

                event = LeadEvent(
                    event_type=event_type,
                    conversation_id=uuid.UUID(str(data["conversation_id"])),
                    payload=data,
                    idempotency_key=idempotency_key,
                    max_retries=self.default_max_retries,
                )
                db.add(event)
                try:
                    await db.commit()
                except IntegrityError:
                    # Lost an insert race on the idempotency key.
                    await db.rollback()
                    existing = await _find_by_key(db, idempotency_key) if idempotency_key else None
                    if existing is None:
                        raise
                    log.info(
                        "Concurrent duplicate event resolved to existing",
                        extra={**ctx, "event_id": str(existing.id)},
                    )
                    return EmittedEvent.from_row(existing, duplicate=True)

                log.info("Event emitted: %s", event_type, extra={**ctx, "event_id": str(event.id)})
                return EmittedEvent.from_row(event)
        except Exception:
            log.exception("Failed to emit event %s", event_type, extra=ctx)
            return None

    async def add_timeline_entry(self, entry: TimelineEntryCreate) -> uuid.UUID | None:
        ctx = {"conversation_id": str(entry.conversation_id), "event_type": entry.event_type}
        try:
            async with self._session_factory() as db:
                row = TimelineEntry(
                    conversation_id=entry.conversation_id,
                    event_type=entry.event_type,
                    title=entry.title,
                    description=entry.description,
                    actor_type=entry.actor_type,
                    actor_id=entry.actor_id,
                    actor_name=entry.actor_name,
                    metadata_json=entry.metadata,
                )
                db.add(row)
                await db.commit()
                log.debug("Timeline entry added", extra=ctx)
                return row.id
        except Exception:
            log.exception("Failed to add timeline entry", extra=ctx)
            return None

    async def emit_lead_created(
        self,
        payload: LeadCreatedPayload,
        idempotency_key: str | None = None,
    ) -> EmittedEvent | None:
        """Emit ``lead.created`` and narrate it, once per stored event."""
        event = await self.emit("lead.created", payload, idempotency_key)
        if event is None or event.duplicate:
            return event

        await self.add_timeline_entry(
            TimelineEntryCreate(
                conversation_id=payload.conversation_id,
                event_type="created",
                title="Lead Created",
                description=f"New lead from {payload.source or 'website'}",
                actor_type="system",
                metadata={
                    "customer_name": payload.customer_name,
                    "lead_score": payload.lead_score,
                    "lead_quality": payload.lead_quality,
                    "intent": payload.intent,
                },
            )
        )
        return event

    async def log_notification(
        self,
        conversation_id: uuid.UUID,
        channel: str,
        status: str,
        payload: dict[str, Any],
        error_message: str | None = None,
        lead_event_id: uuid.UUID | None = None,
    ) -> uuid.UUID | None:
        """Record one channel attempt; deliveries also get a timeline entry."""
        ctx = {"conversation_id": str(conversation_id), "channel": channel}
        now = utcnow()
        try:
            async with self._session_factory() as db:
                row = NotificationLog(
                    lead_event_id=lead_event_id,
                    conversation_id=conversation_id,
                    channel=channel,
                    status=status,
                    payload=payload,
                    error_message=error_message,
                    sent_at=now if status in DELIVERED_STATUSES else None,
                    delivered_at=now if status == "delivered" else None,
                )
                db.add(row)
                await db.commit()
                log_id = row.id
        except Exception:
            log.exception("Failed to log notification", extra=ctx)
            return None

        if status in DELIVERED_STATUSES:
            await self.add_timeline_entry(
                TimelineEntryCreate(
                    conversation_id=conversation_id,
                    event_type="notification_sent",
                    title=f"{channel.capitalize()} Notification Sent",
                    description="Delivered successfully" if status == "delivered" else "Sent",
                    actor_type="system",
                    metadata={"channel": channel, "status": status},
                )
            )
        return log_id
