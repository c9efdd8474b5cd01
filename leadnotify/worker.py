"""Background worker that turns stored lead events into operator notifications."""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import LeadNotifySettings, settings
from .logging_config import new_request_id, request_id_var
from .models.event import LeadEvent
from .schemas.events import (
    ChannelFailure,
    LeadCreatedPayload,
    NotificationOutcomePayload,
    SlaAlertPayload,
)
from .schemas.notification import NotificationPayload
from .schemas.timeline import TimelineEntryCreate
from .services.event_svc import EventEmitter
from .services.notification_svc import NotificationService
from .services.queue_svc import (
    claim_event,
    fetch_pending_events,
    mark_event_failed,
    mark_event_processed,
    release_event,
)

logger = logging.getLogger(__name__)

SLA_MESSAGES = {
    "sla.breached": "Lead has not been contacted within SLA. Immediate action required.",
    "sla.warning": "Lead approaching SLA deadline. Please respond soon.",
}


class NotificationDeliveryError(Exception):
    """Raised when no channel delivered a notification, so the event is retried."""


@dataclass(frozen=True)
class WorkerConfig:
    poll_interval_seconds: float = 5.0
    batch_size: int = 10
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0
    lease_seconds: float = 60.0
    shutdown_grace_seconds: float = 30.0

    @classmethod
    def from_settings(cls, cfg: LeadNotifySettings | None = None) -> WorkerConfig:
        cfg = cfg or settings
        return cls(
            poll_interval_seconds=cfg.worker_poll_interval_seconds,
            batch_size=cfg.worker_batch_size,
            max_retries=cfg.worker_max_retries,
            retry_backoff_seconds=cfg.worker_retry_backoff_seconds,
            lease_seconds=cfg.worker_lease_seconds,
            shutdown_grace_seconds=cfg.worker_shutdown_grace_seconds,
        )


@dataclass(frozen=True)
class BatchResult:
    processed: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return {"processed": self.processed, "failed": self.failed, "skipped": self.skipped}


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"


class NotificationWorker:
    """Polls ``lead_events`` and dispatches each due event to its handler.

    Events in a batch run concurrently and fail independently. A failed event
    keeps its row, gains one retry and becomes due again after an exponential
    backoff; once its retries are spent it is no longer polled.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationService,
        emitter: EventEmitter,
        config: WorkerConfig | None = None,
        worker_id: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.notifier = notifier
        self.emitter = emitter
        self.config = config or WorkerConfig()
        self.worker_id = worker_id or _default_worker_id()
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._handlers: dict[str, Callable[[LeadEvent], Awaitable[None]]] = {
            "lead.created": self._handle_lead_created,
            "lead.qualified": self._handle_lead_update,
            "lead.assigned": self._handle_lead_update,
            "sla.warning": self._handle_sla_alert,
            "sla.breached": self._handle_sla_alert,
        }

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            logger.warning("Worker already running", extra={"worker_id": self.worker_id})
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="notification-worker")
        logger.info(
            "Starting notification worker (interval=%ss, batch=%d)",
            self.config.poll_interval_seconds,
            self.config.batch_size,
            extra={"worker_id": self.worker_id},
        )

    async def stop(self, grace_seconds: float | None = None) -> None:
        """Stop polling and let the batch in flight finish.

        The batch is cancelled only if it outlives ``grace_seconds``; events it
        had claimed are released so another poll picks them up.
        """
        if self._task is None:
            return
        grace = self.config.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning(
                "Batch still running after %ss, cancelling", grace, extra={"worker_id": self.worker_id}
            )
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
        logger.info("Notification worker stopped", extra={"worker_id": self.worker_id})

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.process_batch()
            except asyncio.CancelledError:
                raise
            except Exception:  # pragma: no cover - process_batch logs its own failures
                logger.exception("Poll cycle failed", extra={"worker_id": self.worker_id})
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.config.poll_interval_seconds
                )
            except asyncio.TimeoutError:
                pass

    async def process_batch(self) -> BatchResult:
        """Fetch, claim and process one batch of due events."""
        token = request_id_var.set(new_request_id())
        try:
            try:
                async with self._session_factory() as db:
                    events = await fetch_pending_events(
                        db, limit=self.config.batch_size, lease_seconds=self.config.lease_seconds
                    )
            except Exception:
                logger.exception("Failed to fetch events", extra={"worker_id": self.worker_id})
                return BatchResult()

            if not events:
                return BatchResult()

            logger.debug(
                "Processing %d events", len(events), extra={"worker_id": self.worker_id}
            )
            outcomes = await asyncio.gather(*(self._claim_and_process(e) for e in events))
            return BatchResult(
                processed=sum(1 for o in outcomes if o is True),
                failed=sum(1 for o in outcomes if o is False),
                skipped=sum(1 for o in outcomes if o is None),
            )
        finally:
            request_id_var.reset(token)

    async def _claim_and_process(self, event: LeadEvent) -> bool | None:
        try:
            async with self._session_factory() as db:
                claimed = await claim_event(
                    db, event.id, self.worker_id, lease_seconds=self.config.lease_seconds
                )
        except Exception:
            logger.exception("Failed to claim event", extra={"event_id": str(event.id)})
            return False
        if not claimed:
            logger.debug("Event claimed elsewhere", extra={"event_id": str(event.id)})
            return None
        try:
            return await self.process_event(event)
        except asyncio.CancelledError:
            await self._release(event)
            raise

    async def _release(self, event: LeadEvent) -> None:
        try:
            async with self._session_factory() as db:
                await release_event(db, event.id, self.worker_id)
        except Exception:
            logger.exception("Failed to release event lease", extra={"event_id": str(event.id)})
            return
        logger.info("Released unfinished event", extra={"event_id": str(event.id)})

    async def process_event(self, event: LeadEvent) -> bool:
        """Run the handler for ``event`` and record the outcome. True on success."""
        ctx = {
            "event_id": str(event.id),
            "event_type": event.event_type,
            "conversation_id": str(event.conversation_id),
            "worker_id": self.worker_id,
        }
        logger.info("Processing event: %s", event.event_type, extra=ctx)

        handler = self._handlers.get(event.event_type)
        try:
            if handler is None:
                logger.debug("No handler for event type: %s", event.event_type, extra=ctx)
            else:
                await handler(event)
        except Exception as exc:
            logger.exception("Failed to process event", extra=ctx)
            await self._record_failure(event, str(exc) or type(exc).__name__)
            return False

        try:
            async with self._session_factory() as db:
                await mark_event_processed(db, event.id)
        except Exception:
            # The lease expires and the event is picked up again.
            logger.exception("Failed to mark event as processed", extra=ctx)
            return False

        logger.info("Event processed successfully", extra=ctx)
        return True

    async def _record_failure(self, event: LeadEvent, error: str) -> None:
        try:
            async with self._session_factory() as db:
                updated = await mark_event_failed(
                    db, event.id, error, backoff_seconds=self.config.retry_backoff_seconds
                )
        except Exception:
            logger.exception("Failed to record event failure", extra={"event_id": str(event.id)})
            return
        if updated is not None and updated.dead_lettered:
            logger.error(
                "Event exhausted %d retries: %s",
                updated.max_retries,
                error,
                extra={"event_id": str(event.id), "event_type": event.event_type},
            )

    async def _handle_lead_created(self, event: LeadEvent) -> None:
        payload = LeadCreatedPayload.model_validate(event.payload)

        notification = NotificationPayload(
            customer_name=payload.customer_name or "Unknown",
            customer_email=payload.customer_email,
            customer_phone=payload.customer_phone,
            intent=payload.intent,
            budget=payload.budget,
            property_type=payload.property_type,
            area=payload.preferred_area,
            lead_score=payload.lead_score,
            duration=payload.duration_minutes,
            source=payload.source,
            subject=payload.subject,
            message=payload.message,
            department=payload.department,
            property_title=payload.property_title,
            property_url=payload.property_url,
        )
        result = await self.notifier.send_notification(notification)

        log_payload = {"payload": notification.model_dump(mode="json")}
        for channel, outcome in result.channels.items():
            await self.emitter.log_notification(
                event.conversation_id,
                channel,
                "sent" if outcome.success else "failed",
                log_payload,
                outcome.error,
                event.id,
            )

        if result.success:
            await self.emitter.emit(
                "notification.sent",
                NotificationOutcomePayload(
                    conversation_id=event.conversation_id,
                    source_event_id=event.id,
                    channels=result.succeeded,
                ),
                idempotency_key=f"notification.sent:{event.id}",
            )
            return

        failed = result.failed
        await self.emitter.emit(
            "notification.failed",
            NotificationOutcomePayload(
                conversation_id=event.conversation_id,
                source_event_id=event.id,
                channels=list(failed),
                errors=[ChannelFailure(channel=name, error=error) for name, error in failed.items() if error],
            ),
            idempotency_key=f"notification.failed:{event.id}:{event.retry_count}",
        )
        raise NotificationDeliveryError(
            "All notification channels failed: "
            + "; ".join(f"{name}: {error}" for name, error in failed.items())
        )

    async def _handle_lead_update(self, event: LeadEvent) -> None:
        logger.info(
            "Lead updated: %s",
            event.event_type,
            extra={"conversation_id": str(event.conversation_id), "event_type": event.event_type},
        )

    async def _handle_sla_alert(self, event: LeadEvent) -> None:
        payload = SlaAlertPayload.model_validate(event.payload)
        breached = event.event_type == "sla.breached"
        name = payload.customer_name

        notification = NotificationPayload(
            customer_name=name,
            customer_phone=payload.customer_phone,
            lead_score=payload.lead_score,
            source="sla_breach" if breached else "sla_warning",
            subject=f"🚨 SLA BREACHED: {name}" if breached else f"⚠️ SLA Warning: {name}",
            message=SLA_MESSAGES[event.event_type],
        )
        result = await self.notifier.send_notification(notification)
        if not result.success:
            raise NotificationDeliveryError(
                "SLA alert not delivered: "
                + "; ".join(f"{channel}: {error}" for channel, error in result.failed.items())
            )

        await self.emitter.add_timeline_entry(
            TimelineEntryCreate(
                conversation_id=event.conversation_id,
                event_type="sla_breached" if breached else "sla_warning",
                title="SLA Breached" if breached else "SLA Warning",
                description=(
                    "Lead was not contacted within the required timeframe"
                    if breached
                    else "Lead is approaching SLA deadline"
                ),
                actor_type="system",
                metadata={
                    "sla_deadline": payload.sla_deadline.isoformat() if payload.sla_deadline else None,
                    "minutes_remaining": payload.minutes_remaining,
                    "channels": result.succeeded,
                },
            )
        )
