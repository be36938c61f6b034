"""
Delivery Executor

Performs a single signed HTTP delivery attempt and classifies the
outcome. Never raises for delivery problems: transport errors, non-2xx
answers and signing failures all come back as a failed AttemptOutcome.
"""
import enum
import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import httpx
import structlog

from app.config import DeliveryConfig
from app.exceptions import ReceiverRejected, SignatureComputationError, TransportFailure
from app.models.base import utcnow
from app.models.webhook import DomainEvent, WebhookDelivery, WebhookEndpoint
from app.services.signer import signature_header

logger = structlog.get_logger()

TEST_EVENT_MESSAGE = "This is a test webhook from your Email API"


class FailureReason(str, enum.Enum):
    """Why an attempt failed."""
    TRANSPORT_FAILURE = "transport_failure"
    RECEIVER_REJECTED = "receiver_rejected"
    SIGNATURE_ERROR = "signature_error"


@dataclass
class AttemptOutcome:
    """Result of one delivery attempt."""
    success: bool
    http_status: int | None = None
    body_excerpt: str | None = None
    failure_reason: FailureReason | None = None
    duration_seconds: float = 0.0


def isoformat_utc(value: datetime) -> str:
    """ISO-8601 with a Z suffix."""
    return value.isoformat().replace("+00:00", "Z")


def serialize_payload(payload: Any) -> str:
    """Compact JSON body; the exact bytes that get signed and sent."""
    return json.dumps(payload, separators=(",", ":"))


def build_event_payload(event: DomainEvent, now: datetime) -> dict:
    """Envelope {id, type, timestamp, data} for a recorded domain event."""
    return {
        "id": event.public_id,
        "type": event.event_type,
        "timestamp": isoformat_utc(now),
        "data": {
            "message_id": event.subject_reference,
            "recipient": event.recipient,
            "event_type": event.event_type,
            "occurred_at_utc": isoformat_utc(event.occurred_at) if event.occurred_at else None,
            "details": event.payload,
        },
    }


def build_test_payload(endpoint_id: str, now: datetime) -> dict:
    """Synthetic payload used by the on-demand test delivery."""
    return {
        "id": f"test_{uuid.uuid4().hex}",
        "type": "test",
        "timestamp": isoformat_utc(now),
        "data": {
            "message": TEST_EVENT_MESSAGE,
            "endpoint_id": str(endpoint_id),
        },
    }


class DeliveryExecutor:
    """
    Sends signed webhook requests.

    A shared httpx.AsyncClient may be injected (tests pass one built on
    httpx.MockTransport); otherwise a client is created per attempt.
    """

    def __init__(
        self,
        config: DeliveryConfig,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self._client = client
        self._clock = clock

    def _truncate(self, text: str | None) -> str | None:
        if not text:
            return None
        return text[: self.config.response_body_limit]

    def _headers(self, secret: bytes, timestamp: int, body: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Webhook-Timestamp": str(timestamp),
            "X-Webhook-Signature": signature_header(secret, timestamp, body),
            "User-Agent": self.config.user_agent,
        }

    async def _send(self, url: str, body: str, headers: dict[str, str]) -> httpx.Response:
        try:
            if self._client is not None:
                response = await self._client.post(
                    url, content=body, headers=headers, timeout=self.config.timeout_seconds
                )
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                    response = await client.post(url, content=body, headers=headers)
        except httpx.TimeoutException as e:
            raise TransportFailure("Request timed out") from e
        except httpx.HTTPError as e:
            raise TransportFailure(f"HTTP error: {e}") from e

        if not response.is_success:
            raise ReceiverRejected(response.status_code, response.text)
        return response

    async def post(
        self,
        url: str,
        secret: bytes,
        payload: Any,
        timestamp: int | None = None,
    ) -> AttemptOutcome:
        """
        Sign and POST a payload.

        Args:
            url: Endpoint URL
            secret: Endpoint signing secret
            payload: JSON-serialisable body
            timestamp: Unix seconds for X-Webhook-Timestamp (defaults to now)

        Returns:
            AttemptOutcome; 2xx is success, everything else is a failure
        """
        if timestamp is None:
            timestamp = int(self._clock().timestamp())
        body = serialize_payload(payload)
        started = time.monotonic()

        try:
            headers = self._headers(secret, timestamp, body)
            response = await self._send(url, body, headers)
        except SignatureComputationError as e:
            logger.error("webhook_signature_failed", url=url, error=str(e))
            return AttemptOutcome(
                success=False,
                body_excerpt=self._truncate(str(e)),
                failure_reason=FailureReason.SIGNATURE_ERROR,
                duration_seconds=time.monotonic() - started,
            )
        except TransportFailure as e:
            return AttemptOutcome(
                success=False,
                body_excerpt=self._truncate(str(e)),
                failure_reason=FailureReason.TRANSPORT_FAILURE,
                duration_seconds=time.monotonic() - started,
            )
        except ReceiverRejected as e:
            return AttemptOutcome(
                success=False,
                http_status=e.status_code,
                body_excerpt=self._truncate(e.body),
                failure_reason=FailureReason.RECEIVER_REJECTED,
                duration_seconds=time.monotonic() - started,
            )

        return AttemptOutcome(
            success=True,
            http_status=response.status_code,
            duration_seconds=time.monotonic() - started,
        )

    async def attempt(
        self,
        delivery: WebhookDelivery,
        endpoint: WebhookEndpoint,
        event: DomainEvent,
    ) -> AttemptOutcome:
        """Perform one delivery attempt for a queued delivery."""
        now = self._clock()
        payload = build_event_payload(event, now)
        outcome = await self.post(endpoint.url, endpoint.secret, payload, int(now.timestamp()))

        logger.info(
            "webhook_attempt_finished",
            delivery_id=delivery.id,
            endpoint_id=endpoint.id,
            event_type=event.event_type,
            success=outcome.success,
            status_code=outcome.http_status,
            failure_reason=outcome.failure_reason.value if outcome.failure_reason else None,
        )
        return outcome

    async def send_test(self, endpoint: WebhookEndpoint) -> AttemptOutcome:
        """Synchronous test delivery with a synthetic payload."""
        now = self._clock()
        payload = build_test_payload(endpoint.id, now)
        return await self.post(endpoint.url, endpoint.secret, payload, int(now.timestamp()))
