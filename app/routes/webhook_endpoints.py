"""
Webhook endpoint management API routes.

Tenant-scoped CRUD for callback endpoints, delivery history, on-demand
test deliveries and the event-type catalog.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import DeliveryConfig, settings
from app.database import AsyncSessionLocal, get_db
from app.dependencies.auth import TokenPayload, get_current_user, require_admin
from app.dependencies.rate_limit import check_rate_limit
from app.exceptions import EndpointNotFound, InsecureUrl, InvalidEventType, TenantNotFound
from app.models.webhook import WebhookDelivery, WebhookEndpoint
from app.services.dispatcher import DeliveryDispatcher
from app.services.endpoint_service import EndpointService, list_event_types


router = APIRouter(
    prefix="/api/v1/webhook-endpoints",
    tags=["webhooks"],
    dependencies=[Depends(check_rate_limit)],
)

MAX_DELIVERY_PAGE = 100

_dispatcher: DeliveryDispatcher | None = None


def get_dispatcher() -> DeliveryDispatcher:
    """Process-wide dispatcher used for test deliveries."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = DeliveryDispatcher(AsyncSessionLocal, DeliveryConfig.from_settings(settings))
    return _dispatcher


# Pydantic models for request/response
class CreateEndpointRequest(BaseModel):
    """Request model for registering an endpoint."""
    name: str = Field(min_length=1, max_length=100)
    url: str = Field(min_length=1, max_length=2048)
    event_types: list[str] = Field(min_length=1)


class UpdateEndpointRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    name: str | None = Field(default=None, max_length=100)
    url: str | None = Field(default=None, max_length=2048)
    event_types: list[str] | None = None
    enabled: bool | None = None


class EndpointResponse(BaseModel):
    """Endpoint as exposed after creation. Only a secret preview is returned."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    url: str
    event_types: list[str]
    enabled: bool
    secret_preview: str
    created_at: datetime


class EndpointCreatedResponse(BaseModel):
    """Creation response; the only time the secret is returned."""
    endpoint: EndpointResponse
    secret: str


class DeliveryResponse(BaseModel):
    """One row of delivery history."""
    id: int
    event_id: int
    event_type: str
    status: str
    attempt_count: int
    last_attempt_at: datetime | None = None
    next_retry_at: datetime | None = None
    response_status_code: int | None = None
    response_body_excerpt: str | None = None


class TestDeliveryResponse(BaseModel):
    success: bool
    status_code: int | None = None
    message: str


class EventTypeResponse(BaseModel):
    name: str
    description: str


def endpoint_to_response(endpoint: WebhookEndpoint) -> EndpointResponse:
    return EndpointResponse.model_validate(endpoint)


def delivery_to_response(delivery: WebhookDelivery) -> DeliveryResponse:
    return DeliveryResponse(
        id=delivery.id,
        event_id=delivery.event_id,
        event_type=delivery.event.event_type if delivery.event else "",
        status=delivery.status.value,
        attempt_count=delivery.attempt_count,
        last_attempt_at=delivery.last_attempt_at,
        next_retry_at=delivery.next_retry_at,
        response_status_code=delivery.response_status_code,
        response_body_excerpt=delivery.response_body_excerpt,
    )


def _not_found(endpoint_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Webhook endpoint {endpoint_id} not found"
    )


@router.get("/event-types", response_model=list[EventTypeResponse])
async def get_event_types():
    """List the event types endpoints can subscribe to."""
    return list_event_types()


@router.get("", response_model=list[EndpointResponse])
async def list_endpoints(
    token: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List the tenant's webhook endpoints, newest first."""
    endpoints = await EndpointService(db).list_for_tenant(token.org_id)
    return [endpoint_to_response(e) for e in endpoints]


@router.post("", response_model=EndpointCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_endpoint(
    request: CreateEndpointRequest,
    token: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Register a webhook endpoint.

    The signing secret is returned only in this response.
    """
    try:
        endpoint, secret = await EndpointService(db).register(
            tenant_id=token.org_id,
            name=request.name,
            url=request.url,
            event_types=request.event_types,
        )
    except (InvalidEventType, InsecureUrl) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TenantNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return EndpointCreatedResponse(endpoint=endpoint_to_response(endpoint), secret=secret)


@router.get("/{endpoint_id}", response_model=EndpointResponse)
async def get_endpoint(
    endpoint_id: str,
    token: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    endpoint = await EndpointService(db).get_for_tenant(token.org_id, endpoint_id)
    if endpoint is None:
        raise _not_found(endpoint_id)
    return endpoint_to_response(endpoint)


@router.put("/{endpoint_id}", response_model=EndpointResponse)
async def update_endpoint(
    endpoint_id: str,
    request: UpdateEndpointRequest,
    token: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Update name, URL, subscriptions or enabled flag."""
    try:
        endpoint = await EndpointService(db).update(
            tenant_id=token.org_id,
            endpoint_id=endpoint_id,
            name=request.name,
            url=request.url,
            event_types=request.event_types,
            enabled=request.enabled,
        )
    except EndpointNotFound:
        raise _not_found(endpoint_id)
    except (InvalidEventType, InsecureUrl) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return endpoint_to_response(endpoint)


@router.delete("/{endpoint_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_endpoint(
    endpoint_id: str,
    token: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Delete an endpoint and its delivery history."""
    try:
        await EndpointService(db).delete(token.org_id, endpoint_id)
    except EndpointNotFound:
        raise _not_found(endpoint_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{endpoint_id}/test", response_model=TestDeliveryResponse)
async def test_endpoint(
    endpoint_id: str,
    token: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    dispatcher: DeliveryDispatcher = Depends(get_dispatcher)
):
    """Send a synthetic signed payload to the endpoint and report the result."""
    endpoint = await EndpointService(db).get_for_tenant(token.org_id, endpoint_id)
    if endpoint is None:
        raise _not_found(endpoint_id)
    return await dispatcher.send_test(endpoint)


@router.get("/{endpoint_id}/deliveries", response_model=list[DeliveryResponse])
async def list_deliveries(
    endpoint_id: str,
    limit: int = Query(default=50, ge=1),
    token: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delivery history for an endpoint, most recent first."""
    try:
        deliveries = await EndpointService(db).list_deliveries(
            token.org_id, endpoint_id, limit=min(limit, MAX_DELIVERY_PAGE)
        )
    except EndpointNotFound:
        raise _not_found(endpoint_id)
    return [delivery_to_response(d) for d in deliveries]
