"""
Webhook endpoint registry.

SECURITY: All queries MUST include tenant_id filter.
Failure to do so will result in data leakage between tenants.
"""
import secrets
from typing import Iterable
from urllib.parse import urlsplit

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.exceptions import EndpointNotFound, InsecureUrl, InvalidEventType, TenantNotFound
from app.models.event_types import CATALOG, EVENT_TYPE_DESCRIPTIONS, invalid_event_types
from app.models.webhook import WebhookDelivery, WebhookEndpoint
from app.services.organisation_service import OrganisationService

logger = structlog.get_logger()

SECRET_BYTES = 32


def validate_url(url: str) -> None:
    """Raise InsecureUrl unless the URL is an absolute https:// URL."""
    try:
        parts = urlsplit(url or "")
    except ValueError:
        # Malformed authority, e.g. an unclosed IPv6 bracket
        raise InsecureUrl(url)
    if parts.scheme.lower() != "https" or not parts.netloc:
        raise InsecureUrl(url)


def validate_event_types(event_types: Iterable[str]) -> list[str]:
    """Raise InvalidEventType for names outside the catalog; returns a de-duplicated list."""
    names = [str(getattr(t, "value", t)) for t in event_types]
    invalid = invalid_event_types(names)
    if invalid:
        raise InvalidEventType(invalid)
    return list(dict.fromkeys(names))


def list_event_types() -> list[dict]:
    """Static catalog of subscribable event types."""
    return [
        {"name": event_type.value, "description": EVENT_TYPE_DESCRIPTIONS[event_type]}
        for event_type in CATALOG
    ]


class EndpointService:
    """Service for managing tenant webhook endpoints."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def register(
        self,
        tenant_id: str,
        name: str,
        url: str,
        event_types: Iterable[str]
    ) -> tuple[WebhookEndpoint, str]:
        """
        Register a new endpoint.

        Args:
            tenant_id: Owning organisation ID
            name: Display name
            url: HTTPS callback URL
            event_types: Catalog event type names to subscribe to

        Returns:
            (endpoint, secret) where secret is the hex-encoded signing key.
            The raw secret is only ever returned here.
        """
        subscribed = validate_event_types(event_types)
        validate_url(url)

        if await OrganisationService(self.db).get_by_id(tenant_id) is None:
            raise TenantNotFound(tenant_id)

        secret = secrets.token_bytes(SECRET_BYTES)
        endpoint = WebhookEndpoint(
            tenant_id=tenant_id,
            name=name,
            url=url,
            event_types=subscribed,
            secret=secret,
            enabled=True,
        )
        self.db.add(endpoint)
        await self.db.commit()

        logger.info("webhook_endpoint_created", endpoint_id=endpoint.id, tenant_id=tenant_id)
        return endpoint, secret.hex()

    async def update(
        self,
        tenant_id: str,
        endpoint_id: str,
        name: str | None = None,
        url: str | None = None,
        event_types: Iterable[str] | None = None,
        enabled: bool | None = None
    ) -> WebhookEndpoint:
        """Apply a partial update. Fields left as None are unchanged."""
        endpoint = await self.get_or_raise(tenant_id, endpoint_id)

        if url is not None:
            validate_url(url)
        if event_types is not None:
            subscribed = validate_event_types(event_types)
            endpoint.event_types = subscribed

        if name is not None:
            endpoint.name = name
        if url is not None:
            endpoint.url = url
        if enabled is not None:
            endpoint.enabled = enabled

        await self.db.commit()

        logger.info("webhook_endpoint_updated", endpoint_id=endpoint_id, tenant_id=tenant_id)
        return endpoint

    async def delete(self, tenant_id: str, endpoint_id: str) -> None:
        """Delete an endpoint together with all of its deliveries."""
        endpoint = await self.get_or_raise(tenant_id, endpoint_id)

        await self.db.execute(
            delete(WebhookDelivery).where(WebhookDelivery.endpoint_id == endpoint.id)
        )
        await self.db.delete(endpoint)
        await self.db.commit()

        logger.info("webhook_endpoint_deleted", endpoint_id=endpoint_id, tenant_id=tenant_id)

    async def get_for_tenant(self, tenant_id: str, endpoint_id: str) -> WebhookEndpoint | None:
        """Get endpoint by ID within tenant."""
        stmt = select(WebhookEndpoint).where(
            WebhookEndpoint.id == endpoint_id,
            WebhookEndpoint.tenant_id == tenant_id
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_raise(self, tenant_id: str, endpoint_id: str) -> WebhookEndpoint:
        endpoint = await self.get_for_tenant(tenant_id, endpoint_id)
        if endpoint is None:
            raise EndpointNotFound(endpoint_id)
        return endpoint

    async def list_for_tenant(self, tenant_id: str) -> list[WebhookEndpoint]:
        """Get all endpoints for a tenant (newest first)."""
        stmt = (
            select(WebhookEndpoint)
            .where(WebhookEndpoint.tenant_id == tenant_id)
            .order_by(WebhookEndpoint.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_deliveries(
        self,
        tenant_id: str,
        endpoint_id: str,
        limit: int = 50
    ) -> list[WebhookDelivery]:
        """
        Get delivery history for an endpoint.

        Args:
            tenant_id: Organisation ID the endpoint must belong to
            endpoint_id: Endpoint UUID
            limit: Maximum number of deliveries to return

        Returns:
            Deliveries, most recent first, with their events loaded
        """
        await self.get_or_raise(tenant_id, endpoint_id)

        stmt = (
            select(WebhookDelivery)
            .options(selectinload(WebhookDelivery.event))
            .where(WebhookDelivery.endpoint_id == endpoint_id)
            .order_by(WebhookDelivery.id.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
