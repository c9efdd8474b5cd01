"""Public lead capture endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.conversation import Conversation
from ..outbox import EventOutbox
from ..schemas.events import LeadCreatedPayload
from ..schemas.lead import (
    ContactSubmission,
    ConversationResponse,
    LeadAccepted,
    LeadCreate,
    PropertyInquiry,
)
from ..services import lead_svc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_outbox(request: Request) -> EventOutbox:
    return request.app.state.outbox


def lead_idempotency_key(conv: Conversation) -> str:
    return f"lead-{conv.id}"


def _accept(conv: Conversation, payload: LeadCreatedPayload, outbox: EventOutbox) -> LeadAccepted:
    outbox.publish("lead.created", payload, idempotency_key=lead_idempotency_key(conv))
    return LeadAccepted(id=conv.id, conversation=ConversationResponse.model_validate(conv))


@router.post("/chatbot/leads", status_code=201, response_model=LeadAccepted)
async def create_chatbot_lead(
    data: LeadCreate,
    db: AsyncSession = Depends(get_db),
    outbox: EventOutbox = Depends(get_outbox),
):
    conv, created = await lead_svc.create_lead(db, data)
    logger.info(
        "Chatbot lead %s",
        "captured" if created else "resubmitted",
        extra={"conversation_id": str(conv.id), "customer_id": str(conv.customer_id)},
    )
    # Resubmissions publish again; the idempotency key collapses them to one event.
    return _accept(conv, lead_svc.lead_created_payload(conv, source="chatbot"), outbox)


@router.post("/contact", status_code=201, response_model=LeadAccepted)
async def submit_contact(
    data: ContactSubmission,
    db: AsyncSession = Depends(get_db),
    outbox: EventOutbox = Depends(get_outbox),
):
    conv = await lead_svc.create_contact_lead(db, data)
    logger.info("Contact form captured", extra={"conversation_id": str(conv.id)})
    payload = lead_svc.lead_created_payload(
        conv,
        source="contact_form",
        subject=data.subject,
        message=data.message,
        department=data.department,
    )
    return _accept(conv, payload, outbox)


@router.post("/property-inquiries", status_code=201, response_model=LeadAccepted)
async def submit_property_inquiry(
    data: PropertyInquiry,
    db: AsyncSession = Depends(get_db),
    outbox: EventOutbox = Depends(get_outbox),
):
    conv = await lead_svc.create_property_inquiry_lead(db, data)
    logger.info("Property inquiry captured", extra={"conversation_id": str(conv.id)})
    payload = lead_svc.lead_created_payload(
        conv,
        source="property_inquiry",
        message=data.message,
        property_title=data.property_title,
        property_url=data.property_url,
    )
    return _accept(conv, payload, outbox)
