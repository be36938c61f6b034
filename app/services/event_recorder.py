"""
Event Recorder

Durable log of domain events reported by the send pipelines and the
inbound-mail processor. Events are immutable once recorded.
"""
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.event_types import WebhookEventType, resolve_event_type
from app.models.webhook import DomainEvent

logger = structlog.get_logger()


class EventRecorder:
    """Service for recording domain events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        tenant_id: str,
        event_type: WebhookEventType | str,
        subject_reference: str | None = None,
        recipient: str | None = None,
        occurred_at: datetime | None = None,
        payload: Any = None,
    ) -> DomainEvent | None:
        """
        Record a domain event.

        Args:
            tenant_id: Organisation the event belongs to
            event_type: Catalog name ("email.bounced") or provider name ("Bounce")
            subject_reference: e.g. the message id
            recipient: Recipient address
            occurred_at: When it happened (defaults to now)
            payload: Provider details, stored as JSON

        Returns:
            The stored event, or None if the type has no webhook mapping
        """
        resolved = resolve_event_type(event_type)
        if resolved is WebhookEventType.UNMAPPED:
            logger.warning("webhook_event_type_unmapped", event_type=str(event_type), tenant_id=tenant_id)
            return None

        event = DomainEvent(
            tenant_id=tenant_id,
            event_type=resolved.value,
            subject_reference=subject_reference,
            recipient=recipient,
            occurred_at=occurred_at or utcnow(),
            payload=payload,
        )
        self.db.add(event)
        await self.db.commit()

        logger.info(
            "domain_event_recorded",
            event_id=event.id,
            event_type=event.event_type,
            tenant_id=tenant_id,
        )
        return event

    async def get(self, event_id: int) -> DomainEvent | None:
        stmt = select(DomainEvent).where(DomainEvent.id == event_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()
