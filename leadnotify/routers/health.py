"""Health and readiness checks for the lead notification service."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..services.queue_svc import count_events_by_state

router = APIRouter()


def _worker_state(request: Request) -> str:
    worker = getattr(request.app.state, "worker", None)
    if worker is None:
        return "absent"
    return "running" if worker.is_running else "stopped"


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    await db.execute(text("SELECT 1"))
    return {"status": "healthy", "service": "leadnotify", "worker": _worker_state(request)}


@router.get("/ready")
async def readiness_check(request: Request, db: AsyncSession = Depends(get_db)):
    await db.execute(text("SELECT 1"))
    return {
        "status": "ready",
        "service": "leadnotify",
        "worker": _worker_state(request),
        "events": await count_events_by_state(db),
    }
