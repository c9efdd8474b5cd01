"""In-process outbox between HTTP handlers and the event store.

Handlers ``publish()`` an emission and return right away; a consumer task
owns the awaited write. ``stop()`` flushes whatever is still queued, so a
clean shutdown never drops an accepted lead's event.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel

from .schemas.events import LeadCreatedPayload
from .services.event_svc import EventEmitter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboxItem:
    event_type: str
    payload: BaseModel
    idempotency_key: str | None = None


class EventOutbox:
    def __init__(self, emitter: EventEmitter, maxsize: int = 0) -> None:
        self.emitter = emitter
        self._queue: asyncio.Queue[OutboxItem] = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def publish(
        self,
        event_type: str,
        payload: BaseModel,
        idempotency_key: str | None = None,
    ) -> None:
        self._queue.put_nowait(OutboxItem(event_type, payload, idempotency_key))
        logger.debug(
            "Queued %s emission",
            event_type,
            extra={"event_type": event_type, "idempotency_key": idempotency_key},
        )

    async def _deliver(self, item: OutboxItem) -> None:
        if item.event_type == "lead.created" and isinstance(item.payload, LeadCreatedPayload):
            event = await self.emitter.emit_lead_created(item.payload, item.idempotency_key)
        else:
            event = await self.emitter.emit(item.event_type, item.payload, item.idempotency_key)
        if event is None:
            logger.warning(
                "Event emission failed; lead is stored but will not be notified",
                extra={
                    "event_type": item.event_type,
                    "idempotency_key": item.idempotency_key,
                },
            )

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._deliver(item)
            except Exception:  # pragma: no cover - emitter already logs and swallows
                logger.exception("Outbox delivery failed")
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="event-outbox")

    async def drain(self) -> None:
        """Write every queued emission before returning."""
        if self.is_running:
            await self._queue.join()
            return
        while not self._queue.empty():
            item = self._queue.get_nowait()
            try:
                await self._deliver(item)
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        if self._task is None:
            await self.drain()
            return
        await self._queue.join()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
