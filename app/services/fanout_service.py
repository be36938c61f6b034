"""
Delivery Fan-out

Expands one domain event into one pending delivery per enabled,
subscribed endpoint of the event's tenant.

SECURITY: All queries MUST include tenant_id filter.
Failure to do so will result in data leakage between tenants.
"""
import json
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.event_types import WebhookEventType
from app.models.webhook import DeliveryStatus, DomainEvent, WebhookDelivery, WebhookEndpoint
from app.routes.metrics import track_deliveries_created
from app.services.event_recorder import EventRecorder

logger = structlog.get_logger()


class FanOutService:
    """Creates deliveries for recorded events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def matching_endpoints(self, tenant_id: str, event_type: str) -> list[WebhookEndpoint]:
        """Enabled endpoints of the tenant subscribed to event_type."""
        stmt = select(WebhookEndpoint).where(
            WebhookEndpoint.tenant_id == tenant_id,
            WebhookEndpoint.enabled.is_(True)
        )
        result = await self.db.execute(stmt)
        return [e for e in result.scalars().all() if e.subscribes_to(event_type)]

    async def enqueue(self, event: DomainEvent) -> list[WebhookDelivery]:
        """
        Create pending deliveries for an event.

        Idempotent per (endpoint, event): endpoints that already have a
        delivery for this event are skipped. No matching endpoint is a
        no-op.

        Returns:
            The newly created deliveries
        """
        endpoints = await self.matching_endpoints(event.tenant_id, event.event_type)
        if not endpoints:
            logger.debug(
                "webhook_fanout_no_endpoints",
                event_id=event.id,
                event_type=event.event_type,
                tenant_id=event.tenant_id,
            )
            return []

        existing_stmt = select(WebhookDelivery.endpoint_id).where(
            WebhookDelivery.event_id == event.id
        )
        existing = set((await self.db.execute(existing_stmt)).scalars().all())

        deliveries = [
            WebhookDelivery(
                endpoint_id=endpoint.id,
                event_id=event.id,
                status=DeliveryStatus.PENDING,
                attempt_count=0,
            )
            for endpoint in endpoints
            if endpoint.id not in existing
        ]
        if not deliveries:
            return []

        self.db.add_all(deliveries)
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent enqueue of the same event won the race
            await self.db.rollback()
            logger.warning("webhook_fanout_duplicate", event_id=event.id)
            return []

        track_deliveries_created(event.event_type, len(deliveries))
        logger.info(
            "webhook_deliveries_queued",
            event_id=event.id,
            event_type=event.event_type,
            tenant_id=event.tenant_id,
            count=len(deliveries),
        )
        return deliveries

    async def enqueue_payload(
        self,
        tenant_id: str,
        event_type: WebhookEventType | str,
        payload_json: str,
        subject_reference: str | None = None,
        recipient: str | None = None,
    ) -> tuple[DomainEvent | None, list[WebhookDelivery]]:
        """
        Fan out a pre-serialised, transport-specific payload.

        The payload is recorded as a domain event first so it follows the
        same queued, retried path as every other event.
        """
        payload: Any = json.loads(payload_json) if payload_json else None
        event = await EventRecorder(self.db).record(
            tenant_id=tenant_id,
            event_type=event_type,
            subject_reference=subject_reference,
            recipient=recipient,
            payload=payload,
        )
        if event is None:
            return None, []
        return event, await self.enqueue(event)
