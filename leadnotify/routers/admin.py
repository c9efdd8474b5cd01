"""Operator API: event inspection, dead-letter requeue, timelines and SLA alerts."""

from __future__ import annotations

import csv
import io
import logging
import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.timeline import TimelineEntry
from ..schemas.events import SlaAlertPayload
from ..schemas.timeline import (
    LeadEventDetail,
    LeadEventResponse,
    NotificationLogResponse,
    SlaAlertRequest,
    TimelineEntryResponse,
)
from ..security.api_keys import require_admin_api_key
from ..services import lead_svc, queue_svc
from ..services.event_svc import EventEmitter
from ..worker import NotificationWorker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin_api_key)])

EXPORT_FIELDS = (
    "id",
    "event_type",
    "conversation_id",
    "idempotency_key",
    "processed",
    "retry_count",
    "max_retries",
    "last_error",
    "created_at",
    "processed_at",
)

StateParam = Optional[Literal["pending", "processed", "dead"]]


def get_emitter(request: Request) -> EventEmitter:
    return request.app.state.emitter


def get_worker(request: Request) -> NotificationWorker:
    return request.app.state.worker


@router.get("/events", response_model=list[LeadEventResponse])
async def list_events(
    state: StateParam = None,
    event_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    return await queue_svc.list_events(
        db, state=state, event_type=event_type, limit=limit, offset=offset
    )


@router.get("/events/export")
async def export_events(
    state: StateParam = None,
    limit: int = Query(1000, ge=1, le=10000),
    db: AsyncSession = Depends(get_db),
):
    events = await queue_svc.list_events(db, state=state, limit=limit)

    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_MINIMAL)
    writer.writerow(EXPORT_FIELDS)
    for event in events:
        row = []
        for field in EXPORT_FIELDS:
            value = getattr(event, field)
            row.append(value.isoformat() if isinstance(value, datetime) else value)
        writer.writerow(row)
    output.seek(0)

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return StreamingResponse(
        output,
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename=lead_events_{timestamp}.csv",
            "X-Total-Events": str(len(events)),
        },
    )


@router.get("/events/{event_id}", response_model=LeadEventDetail)
async def get_event(event_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    event = await queue_svc.get_event(db, event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    logs = await queue_svc.get_event_notifications(db, event_id)
    detail = LeadEventDetail.model_validate(event)
    detail.notifications = [NotificationLogResponse.model_validate(row) for row in logs]
    return detail


@router.post("/events/{event_id}/requeue", response_model=LeadEventResponse)
async def requeue_event(event_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        event = await queue_svc.requeue_event(db, event_id)
    except queue_svc.EventNotRequeueable as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@router.get(
    "/conversations/{conversation_id}/timeline",
    response_model=list[TimelineEntryResponse],
)
async def get_timeline(conversation_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    stmt = (
        select(TimelineEntry)
        .where(TimelineEntry.conversation_id == conversation_id)
        .order_by(TimelineEntry.created_at.asc())
    )
    return list((await db.execute(stmt)).scalars().all())


@router.post("/conversations/{conversation_id}/sla", status_code=202)
async def raise_sla_alert(
    conversation_id: uuid.UUID,
    data: SlaAlertRequest,
    db: AsyncSession = Depends(get_db),
    emitter: EventEmitter = Depends(get_emitter),
):
    conv = await lead_svc.get_conversation(db, conversation_id)
    if conv is None:
        raise HTTPException(status_code=404, detail="Conversation not found")

    event_type = "sla.breached" if data.level == "breached" else "sla.warning"
    event = await emitter.emit(
        event_type,
        SlaAlertPayload(
            conversation_id=conv.id,
            customer_name=conv.customer_name,
            customer_phone=conv.customer_phone,
            lead_score=conv.lead_score,
            sla_deadline=data.sla_deadline,
            minutes_remaining=data.minutes_remaining,
        ),
    )
    if event is None:
        raise HTTPException(status_code=503, detail="Could not record SLA alert")
    return {"id": str(event.id), "event_type": event.event_type}


@router.post("/worker/process-batch")
async def process_batch(worker: NotificationWorker = Depends(get_worker)):
    result = await worker.process_batch()
    logger.info(
        "Manual batch: %d processed, %d failed", result.processed, result.failed,
        extra={"worker_id": worker.worker_id},
    )
    return result.to_dict()
