"""
Webhook Service

Producer-facing entrypoints. The send pipelines and the inbound-mail
processor call these whenever a reportable occurrence happens. They are
fire-and-forget: failures are logged and reported, never raised, so the
producer's own work never depends on webhook delivery.
"""
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import AsyncSessionLocal
from app.models.event_types import WebhookEventType
from app.sentry_config import capture_exception
from app.services.dispatcher import DeliveryDispatcher
from app.services.event_recorder import EventRecorder
from app.services.fanout_service import FanOutService

logger = structlog.get_logger()


async def report_event(
    tenant_id: str,
    event_type: WebhookEventType | str,
    subject_reference: str | None = None,
    recipient: str | None = None,
    occurred_at: datetime | None = None,
    payload: Any = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> list[int]:
    """
    Record a domain event and queue deliveries for it.

    Returns:
        IDs of the deliveries created (empty on no match or on error)
    """
    factory = session_factory or AsyncSessionLocal
    try:
        async with factory() as db:
            event = await EventRecorder(db).record(
                tenant_id=tenant_id,
                event_type=event_type,
                subject_reference=subject_reference,
                recipient=recipient,
                occurred_at=occurred_at,
                payload=payload,
            )
            if event is None:
                return []
            deliveries = await FanOutService(db).enqueue(event)
            return [delivery.id for delivery in deliveries]
    except Exception:
        logger.exception(
            "webhook_event_report_failed",
            tenant_id=tenant_id,
            event_type=str(event_type),
            subject_reference=subject_reference,
        )
        capture_exception(tenant_id=tenant_id)
        return []


async def report_payload_event(
    tenant_id: str,
    event_type: WebhookEventType | str,
    payload_json: str,
    subject_reference: str | None = None,
    recipient: str | None = None,
    dispatcher: DeliveryDispatcher | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> list[int]:
    """
    Queue a pre-serialised, transport-specific event (e.g. email.inbound).

    When a dispatcher is given the new deliveries are attempted right
    away; failures then follow the normal retry schedule.
    """
    factory = session_factory or AsyncSessionLocal
    try:
        async with factory() as db:
            _, deliveries = await FanOutService(db).enqueue_payload(
                tenant_id=tenant_id,
                event_type=event_type,
                payload_json=payload_json,
                subject_reference=subject_reference,
                recipient=recipient,
            )
            delivery_ids = [delivery.id for delivery in deliveries]
    except Exception:
        logger.exception(
            "webhook_payload_event_report_failed",
            tenant_id=tenant_id,
            event_type=str(event_type),
        )
        capture_exception(tenant_id=tenant_id)
        return []

    if dispatcher is not None and delivery_ids:
        await dispatcher.deliver_now(delivery_ids)
    return delivery_ids
