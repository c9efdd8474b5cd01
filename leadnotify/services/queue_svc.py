"""Event queue operations over the ``lead_events`` table.

The table behaves as an at-least-once queue. A row is due when it is
unprocessed, has retries left, its ``available_at`` has passed and no live
lease is held on it. Workers claim a row with a conditional UPDATE before
processing it, so two replicas never work the same event at the same time.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Literal

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import utcnow
from ..models.event import LeadEvent
from ..models.notification_log import NotificationLog

log = logging.getLogger(__name__)

EventState = Literal["pending", "processed", "dead"]

MAX_ERROR_LENGTH = 2000


class EventNotRequeueable(Exception):
    """Raised when requeueing an event that was already processed."""


def _lease_free(now: datetime, lease_seconds: float):
    cutoff = now - timedelta(seconds=lease_seconds)
    return or_(LeadEvent.claimed_at.is_(None), LeadEvent.claimed_at < cutoff)


def _state_filter(state: EventState):
    if state == "processed":
        return LeadEvent.processed.is_(True)
    if state == "dead":
        return (LeadEvent.processed.is_(False)) & (LeadEvent.retry_count >= LeadEvent.max_retries)
    return (LeadEvent.processed.is_(False)) & (LeadEvent.retry_count < LeadEvent.max_retries)


async def fetch_pending_events(
    db: AsyncSession,
    limit: int = 10,
    lease_seconds: float = 60.0,
    now: datetime | None = None,
) -> list[LeadEvent]:
    """Oldest-first batch of events that are due and not leased."""
    now = now or utcnow()
    stmt = (
        select(LeadEvent)
        .where(
            LeadEvent.processed.is_(False),
            LeadEvent.retry_count < LeadEvent.max_retries,
            LeadEvent.available_at <= now,
            _lease_free(now, lease_seconds),
        )
        .order_by(LeadEvent.created_at.asc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())


async def claim_event(
    db: AsyncSession,
    event_id: uuid.UUID,
    worker_id: str,
    lease_seconds: float = 60.0,
    now: datetime | None = None,
) -> bool:
    """Take the lease on one event. False if another worker got there first."""
    now = now or utcnow()
    stmt = (
        update(LeadEvent)
        .where(
            LeadEvent.id == event_id,
            LeadEvent.processed.is_(False),
            LeadEvent.retry_count < LeadEvent.max_retries,
            _lease_free(now, lease_seconds),
        )
        .values(claimed_by=worker_id, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount == 1


async def mark_event_processed(db: AsyncSession, event_id: uuid.UUID) -> None:
    stmt = (
        update(LeadEvent)
        .where(LeadEvent.id == event_id)
        .values(processed=True, processed_at=utcnow(), claimed_by=None, claimed_at=None)
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)
    await db.commit()


async def release_event(db: AsyncSession, event_id: uuid.UUID, worker_id: str) -> bool:
    """Drop this worker's lease without counting an attempt."""
    stmt = (
        update(LeadEvent)
        .where(
            LeadEvent.id == event_id,
            LeadEvent.claimed_by == worker_id,
            LeadEvent.processed.is_(False),
        )
        .values(claimed_by=None, claimed_at=None)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount == 1


async def mark_event_failed(
    db: AsyncSession,
    event_id: uuid.UUID,
    error: str,
    backoff_seconds: float = 1.0,
) -> LeadEvent | None:
    """Count a failed attempt, release the lease and push the event back."""
    event = await db.get(LeadEvent, event_id)
    if event is None:
        return None
    event.retry_count += 1
    event.last_error = error[:MAX_ERROR_LENGTH]
    event.claimed_by = None
    event.claimed_at = None
    delay = backoff_seconds * 2 ** (event.retry_count - 1)
    event.available_at = utcnow() + timedelta(seconds=delay)
    await db.commit()
    return event


async def get_event(db: AsyncSession, event_id: uuid.UUID) -> LeadEvent | None:
    return await db.get(LeadEvent, event_id)


async def list_events(
    db: AsyncSession,
    state: EventState | None = None,
    event_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[LeadEvent]:
    stmt = select(LeadEvent)
    if state:
        stmt = stmt.where(_state_filter(state))
    if event_type:
        stmt = stmt.where(LeadEvent.event_type == event_type)
    stmt = stmt.order_by(LeadEvent.created_at.desc()).offset(offset).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def count_events_by_state(db: AsyncSession) -> dict[str, int]:
    counts = {}
    for state in ("pending", "processed", "dead"):
        stmt = select(func.count()).select_from(LeadEvent).where(_state_filter(state))
        counts[state] = (await db.execute(stmt)).scalar_one()
    return counts


async def requeue_event(db: AsyncSession, event_id: uuid.UUID) -> LeadEvent | None:
    """Give a dead-lettered (or backed-off) event a fresh set of retries."""
    event = await db.get(LeadEvent, event_id)
    if event is None:
        return None
    if event.processed:
        raise EventNotRequeueable(f"Event {event_id} is already processed")
    event.retry_count = 0
    event.last_error = None
    event.claimed_by = None
    event.claimed_at = None
    event.available_at = utcnow()
    await db.commit()
    log.info("Event requeued", extra={"event_id": str(event_id), "event_type": event.event_type})
    return event


async def get_event_notifications(db: AsyncSession, event_id: uuid.UUID) -> list[NotificationLog]:
    stmt = (
        select(NotificationLog)
        .where(NotificationLog.lead_event_id == event_id)
        .order_by(NotificationLog.created_at.asc())
    )
    return list((await db.execute(stmt)).scalars().all())
