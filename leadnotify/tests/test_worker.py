"""Tests for the notification worker: dispatch, retries, dead letters and leases."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from leadnotify.models import LeadEvent, NotificationLog, TimelineEntry
from leadnotify.models.base import utcnow
from leadnotify.schemas.events import LeadCreatedPayload, SlaAlertPayload
from leadnotify.services import queue_svc
from leadnotify.worker import NotificationWorker, WorkerConfig


def _jane(conversation_id: uuid.UUID | None = None) -> LeadCreatedPayload:
    return LeadCreatedPayload(
        conversation_id=conversation_id or uuid.uuid4(),
        customer_name="Jane Doe",
        customer_email="jane@example.com",
        customer_phone="+971501234567",
        intent="buy",
        budget="2M AED",
        property_type="Apartment",
        preferred_area="Dubai Marina",
        lead_score=85,
        lead_quality="hot",
        duration_minutes=12,
        source="chatbot",
    )


async def _reload(session_factory, event_id: uuid.UUID) -> LeadEvent:
    async with session_factory() as db:
        return await db.get(LeadEvent, event_id)


async def _events_of_type(session_factory, event_type: str) -> list[LeadEvent]:
    async with session_factory() as db:
        stmt = select(LeadEvent).where(LeadEvent.event_type == event_type)
        return list((await db.execute(stmt)).scalars().all())


async def _rows(session_factory, model, conversation_id: uuid.UUID) -> list:
    async with session_factory() as db:
        stmt = select(model).where(model.conversation_id == conversation_id)
        return list((await db.execute(stmt)).scalars().all())


@pytest.mark.asyncio
async def test_lead_created_notifies_every_channel(worker, emitter, channels, session_factory):
    payload = _jane()
    event = await emitter.emit_lead_created(payload, idempotency_key=f"lead-{payload.conversation_id}")

    result = await worker.process_batch()

    assert result.processed == 1
    assert result.failed == 0
    stored = await _reload(session_factory, event.id)
    assert stored.processed is True
    assert stored.processed_at is not None
    assert stored.claimed_by is None

    for channel in channels.values():
        assert len(channel.sent) == 1
        sent = channel.sent[0]
        assert sent.customer_name == "Jane Doe"
        assert sent.area == "Dubai Marina"
        assert sent.lead_score == 85
        assert sent.duration == 12
        assert sent.source == "chatbot"

    logs = await _rows(session_factory, NotificationLog, payload.conversation_id)
    assert sorted((row.channel, row.status) for row in logs) == [
        ("email", "sent"),
        ("slack", "sent"),
        ("telegram", "sent"),
    ]
    assert all(row.lead_event_id == event.id for row in logs)

    sent_events = await _events_of_type(session_factory, "notification.sent")
    assert len(sent_events) == 1
    assert sent_events[0].idempotency_key == f"notification.sent:{event.id}"
    assert sent_events[0].payload["channels"] == ["slack", "email", "telegram"]

    titles = sorted(e.title for e in await _rows(session_factory, TimelineEntry, payload.conversation_id))
    assert titles == [
        "Email Notification Sent",
        "Lead Created",
        "Slack Notification Sent",
        "Telegram Notification Sent",
    ]


@pytest.mark.asyncio
async def test_partial_failure_still_processes(worker, emitter, channels, session_factory):
    channels["slack"].fail_with("Slack API error: 500")
    payload = _jane()
    event = await emitter.emit_lead_created(payload, idempotency_key="lead-partial")

    result = await worker.process_batch()

    assert result.processed == 1
    stored = await _reload(session_factory, event.id)
    assert stored.processed is True
    assert stored.retry_count == 0

    logs = {row.channel: row for row in await _rows(session_factory, NotificationLog, payload.conversation_id)}
    assert logs["slack"].status == "failed"
    assert logs["slack"].error_message == "Slack API error: 500"
    assert logs["email"].status == "sent"
    assert await _events_of_type(session_factory, "notification.failed") == []


@pytest.mark.asyncio
async def test_total_failure_retries_then_dead_letters(worker, emitter, channels, session_factory):
    for channel in channels.values():
        channel.fail_with("down")
    event = await emitter.emit_lead_created(_jane(), idempotency_key="lead-dead")

    for expected_retries in (1, 2, 3):
        await worker.process_batch()
        stored = await _reload(session_factory, event.id)
        assert stored.processed is False
        assert stored.retry_count == expected_retries
        assert "All notification channels failed" in stored.last_error

    assert stored.dead_lettered is True
    attempts = sum(len(ch.sent) for ch in channels.values())
    assert attempts == 0

    # Exhausted events are no longer polled.
    for channel in channels.values():
        channel.recover()
    await worker.process_batch()
    assert all(ch.sent == [] for ch in channels.values())
    stored = await _reload(session_factory, event.id)
    assert stored.retry_count == 3

    failed_events = await _events_of_type(session_factory, "notification.failed")
    assert sorted(e.idempotency_key for e in failed_events) == [
        f"notification.failed:{event.id}:{n}" for n in range(3)
    ]
    assert {err["channel"] for err in failed_events[0].payload["errors"]} == {
        "slack",
        "email",
        "telegram",
    }


@pytest.mark.asyncio
async def test_requeued_dead_letter_is_processed(worker, emitter, channels, session_factory):
    for channel in channels.values():
        channel.fail_with()
    event = await emitter.emit_lead_created(_jane(), idempotency_key="lead-requeue")
    for _ in range(3):
        await worker.process_batch()
    assert (await _reload(session_factory, event.id)).dead_lettered is True

    async with session_factory() as db:
        requeued = await queue_svc.requeue_event(db, event.id)
    assert requeued.retry_count == 0
    assert requeued.last_error is None

    for channel in channels.values():
        channel.recover()
    await worker.process_batch()

    stored = await _reload(session_factory, event.id)
    assert stored.processed is True
    assert len(channels["slack"].sent) == 1


@pytest.mark.asyncio
async def test_backoff_delays_next_attempt(session_factory, notifier, emitter, channels):
    worker = NotificationWorker(
        session_factory,
        notifier,
        emitter,
        WorkerConfig(retry_backoff_seconds=30),
        worker_id="slow-retry",
    )
    for channel in channels.values():
        channel.fail_with()
    event = await emitter.emit_lead_created(_jane(), idempotency_key="lead-backoff")

    await worker.process_batch()
    second = await worker.process_batch()

    stored = await _reload(session_factory, event.id)
    assert stored.retry_count == 1
    assert second.failed == 0

    async with session_factory() as db:
        later = await queue_svc.fetch_pending_events(db, now=utcnow() + timedelta(seconds=31))
    assert event.id in {e.id for e in later}


@pytest.mark.asyncio
async def test_bad_event_does_not_block_batch(worker, emitter, channels, session_factory):
    conversation_id = uuid.uuid4()
    async with session_factory() as db:
        broken = LeadEvent(
            event_type="lead.created",
            conversation_id=conversation_id,
            payload={"conversation_id": str(conversation_id)},
        )
        db.add(broken)
        await db.commit()
    good = await emitter.emit_lead_created(_jane(), idempotency_key="lead-good")

    result = await worker.process_batch()

    assert result.processed == 1
    assert result.failed == 1
    assert (await _reload(session_factory, good.id)).processed is True
    stored_broken = await _reload(session_factory, broken.id)
    assert stored_broken.processed is False
    assert stored_broken.retry_count == 1
    assert "customer_name" in stored_broken.last_error
    assert len(channels["slack"].sent) == 1


@pytest.mark.asyncio
async def test_unhandled_event_type_is_marked_processed(worker, emitter, channels, session_factory):
    event = await emitter.emit(
        "lead.contacted", {"conversation_id": str(uuid.uuid4()), "changes": {"status": "contacted"}}
    )
    result = await worker.process_batch()

    assert result.processed == 1
    assert (await _reload(session_factory, event.id)).processed is True
    assert all(ch.sent == [] for ch in channels.values())


@pytest.mark.asyncio
async def test_leased_event_is_skipped(worker, emitter, session_factory):
    event = await emitter.emit_lead_created(_jane(), idempotency_key="lead-leased")
    async with session_factory() as db:
        assert await queue_svc.claim_event(db, event.id, "other-worker") is True

    result = await worker.process_batch()

    assert result.processed == 0
    stored = await _reload(session_factory, event.id)
    assert stored.processed is False
    assert stored.claimed_by == "other-worker"


@pytest.mark.asyncio
async def test_claim_is_exclusive_until_lease_expires(emitter, session_factory):
    event = await emitter.emit_lead_created(_jane(), idempotency_key="lead-claim")
    now = utcnow()

    async with session_factory() as db:
        assert await queue_svc.claim_event(db, event.id, "a", lease_seconds=60, now=now) is True
    async with session_factory() as db:
        assert await queue_svc.claim_event(db, event.id, "b", lease_seconds=60, now=now) is False
    async with session_factory() as db:
        later = now + timedelta(seconds=61)
        assert await queue_svc.claim_event(db, event.id, "b", lease_seconds=60, now=later) is True

    assert (await _reload(session_factory, event.id)).claimed_by == "b"


@pytest.mark.asyncio
async def test_two_workers_process_event_once(session_factory, notifier, emitter, channels):
    config = WorkerConfig(retry_backoff_seconds=0)
    first = NotificationWorker(session_factory, notifier, emitter, config, worker_id="w1")
    second = NotificationWorker(session_factory, notifier, emitter, config, worker_id="w2")
    event = await emitter.emit_lead_created(_jane(), idempotency_key="lead-once")

    await asyncio.gather(first.process_batch(), second.process_batch())

    assert (await _reload(session_factory, event.id)).processed is True
    assert len(channels["slack"].sent) == 1
    assert len(channels["telegram"].sent) == 1


@pytest.mark.asyncio
async def test_sla_breach_notifies_and_records_timeline(worker, emitter, channels, session_factory):
    conversation_id = uuid.uuid4()
    event = await emitter.emit(
        "sla.breached",
        SlaAlertPayload(
            conversation_id=conversation_id,
            customer_name="Jane Doe",
            customer_phone="+971501234567",
            lead_score=85,
        ),
    )

    result = await worker.process_batch()

    assert result.processed == 1
    assert (await _reload(session_factory, event.id)).processed is True
    sent = channels["email"].sent[0]
    assert sent.source == "sla_breach"
    assert sent.subject == "🚨 SLA BREACHED: Jane Doe"
    assert "Immediate action required" in sent.message

    entries = await _rows(session_factory, TimelineEntry, conversation_id)
    assert [e.title for e in entries] == ["SLA Breached"]
    assert entries[0].event_type == "sla_breached"


@pytest.mark.asyncio
async def test_sla_warning_undelivered_is_retried(worker, emitter, channels, session_factory):
    for channel in channels.values():
        channel.fail_with()
    conversation_id = uuid.uuid4()
    event = await emitter.emit(
        "sla.warning", SlaAlertPayload(conversation_id=conversation_id, customer_name="Jane")
    )

    await worker.process_batch()

    stored = await _reload(session_factory, event.id)
    assert stored.processed is False
    assert stored.retry_count == 1
    assert "SLA alert not delivered" in stored.last_error
    assert await _rows(session_factory, TimelineEntry, conversation_id) == []


@pytest.mark.asyncio
async def test_empty_batch(worker):
    result = await worker.process_batch()
    assert result.to_dict() == {"processed": 0, "failed": 0, "skipped": 0}


@pytest.mark.asyncio
async def test_run_loop_processes_until_stopped(worker, emitter, session_factory, caplog):
    event = await emitter.emit_lead_created(_jane(), idempotency_key="lead-loop")

    worker.start()
    with caplog.at_level(logging.WARNING, logger="leadnotify.worker"):
        worker.start()
    assert "Worker already running" in caplog.text
    assert worker.is_running is True

    for _ in range(100):
        if (await _reload(session_factory, event.id)).processed:
            break
        await asyncio.sleep(0.02)
    await worker.stop()

    assert worker.is_running is False
    assert (await _reload(session_factory, event.id)).processed is True


async def _wait_for_send(channel) -> None:
    for _ in range(200):
        if channel.sent:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"{channel.name} never sent")


@pytest.mark.asyncio
async def test_stop_lets_in_flight_batch_finish(worker, emitter, channels, session_factory):
    channels["telegram"].delay = 0.3
    event = await emitter.emit_lead_created(_jane(), idempotency_key="lead-graceful")

    worker.start()
    await _wait_for_send(channels["slack"])
    await worker.stop()

    stored = await _reload(session_factory, event.id)
    assert stored.processed is True
    assert stored.claimed_by is None
    assert [len(channels[name].sent) for name in ("slack", "email", "telegram")] == [1, 1, 1]

    # The lead is not notified a second time.
    await worker.process_batch()
    assert len(channels["slack"].sent) == 1


@pytest.mark.asyncio
async def test_stop_after_grace_releases_lease(worker, emitter, channels, session_factory):
    channels["telegram"].delay = 5.0
    event = await emitter.emit_lead_created(_jane(), idempotency_key="lead-cancelled")

    worker.start()
    await _wait_for_send(channels["slack"])
    await worker.stop(grace_seconds=0.05)

    assert worker.is_running is False
    stored = await _reload(session_factory, event.id)
    assert stored.processed is False
    assert stored.claimed_by is None
    assert stored.claimed_at is None
    assert stored.retry_count == 0

    # Released immediately, not after the lease expires.
    channels["telegram"].delay = 0.0
    assert (await worker.process_batch()).processed == 1


@pytest.mark.asyncio
async def test_release_only_drops_own_lease(emitter, session_factory):
    event = await emitter.emit_lead_created(_jane(), idempotency_key="lead-release")
    async with session_factory() as db:
        assert await queue_svc.claim_event(db, event.id, "worker-a") is True

    async with session_factory() as db:
        assert await queue_svc.release_event(db, event.id, "worker-b") is False
    assert (await _reload(session_factory, event.id)).claimed_by == "worker-a"

    async with session_factory() as db:
        assert await queue_svc.release_event(db, event.id, "worker-a") is True
    assert (await _reload(session_factory, event.id)).claimed_by is None
