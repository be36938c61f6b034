"""Tests for single delivery attempts."""
import json

import httpx
import pytest

from app.services.delivery_executor import (
    DeliveryExecutor,
    FailureReason,
    build_test_payload,
    isoformat_utc,
    serialize_payload,
)
from app.services.signer import sign, signature_base, verify_signature
from conftest import Receiver

URL = "https://hooks.example.com/email"
SECRET = bytes.fromhex("ab" * 32)


@pytest.fixture
async def run_post(config, clock):
    """POST a payload through an executor talking to the given receiver."""
    clients = []

    async def _post(receiver, payload, **overrides):
        cfg = config.model_copy(update=overrides) if overrides else config
        client = receiver.client()
        clients.append(client)
        executor = DeliveryExecutor(cfg, client=client, clock=clock)
        return await executor.post(URL, SECRET, payload)

    yield _post

    for client in clients:
        await client.aclose()


async def test_success_sends_signed_request(run_post, clock):
    receiver = Receiver(200)
    outcome = await run_post(receiver, {"message": "ping"})

    assert outcome.success is True
    assert outcome.http_status == 200
    assert outcome.failure_reason is None

    request = receiver.requests[0]
    body = request.content.decode()
    timestamp = request.headers["X-Webhook-Timestamp"]

    assert request.method == "POST"
    assert str(request.url) == URL
    assert body == '{"message":"ping"}'
    assert timestamp == str(int(clock.now.timestamp()))
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["User-Agent"] == "EmailAPI-Webhook/1.0"
    assert verify_signature(SECRET, timestamp, body, request.headers["X-Webhook-Signature"])


async def test_user_agent_uses_configured_product(run_post):
    receiver = Receiver(204)
    await run_post(receiver, {}, user_agent_product="Mailer")
    assert receiver.requests[0].headers["User-Agent"] == "Mailer-Webhook/1.0"


async def test_any_2xx_is_success(run_post):
    outcome = await run_post(Receiver(202), {})
    assert outcome.success is True
    assert outcome.http_status == 202


async def test_server_error_is_receiver_rejected(run_post):
    outcome = await run_post(Receiver(500, body="Internal Server Error"), {})

    assert outcome.success is False
    assert outcome.http_status == 500
    assert outcome.body_excerpt == "Internal Server Error"
    assert outcome.failure_reason == FailureReason.RECEIVER_REJECTED


async def test_redirect_is_not_followed_and_counts_as_failure(run_post):
    outcome = await run_post(Receiver(301), {})
    assert outcome.success is False
    assert outcome.http_status == 301


async def test_body_excerpt_is_truncated(run_post):
    outcome = await run_post(Receiver(400, body="x" * 5000), {})
    assert outcome.body_excerpt == "x" * 1000


async def test_body_limit_is_configurable(run_post):
    outcome = await run_post(Receiver(400, body="abcdef"), {}, response_body_limit=3)
    assert outcome.body_excerpt == "abc"


async def test_timeout_is_transport_failure(run_post):
    receiver = Receiver(error=httpx.ReadTimeout("read timed out"))
    outcome = await run_post(receiver, {})

    assert outcome.success is False
    assert outcome.http_status is None
    assert outcome.body_excerpt == "Request timed out"
    assert outcome.failure_reason == FailureReason.TRANSPORT_FAILURE


async def test_connection_error_is_transport_failure(run_post):
    receiver = Receiver(error=httpx.ConnectError("connection refused"))
    outcome = await run_post(receiver, {})

    assert outcome.success is False
    assert outcome.http_status is None
    assert outcome.body_excerpt == "HTTP error: connection refused"
    assert outcome.failure_reason == FailureReason.TRANSPORT_FAILURE


async def test_unsignable_secret_is_signature_error(config, clock):
    receiver = Receiver(200)
    async with receiver.client() as client:
        executor = DeliveryExecutor(config, client=client, clock=clock)
        outcome = await executor.post(URL, object(), {"a": 1})

    assert outcome.success is False
    assert outcome.failure_reason == FailureReason.SIGNATURE_ERROR
    assert receiver.requests == []


async def test_explicit_timestamp_is_signed(config, clock):
    """Receiver can recompute the signature from header timestamp and raw body."""
    receiver = Receiver(200)
    async with receiver.client() as client:
        executor = DeliveryExecutor(config, client=client, clock=clock)
        await executor.post(URL, b"s", {"message": "ping"}, timestamp=1700000000)

    request = receiver.requests[0]
    expected = sign(b"s", signature_base(1700000000, '{"message":"ping"}'))
    assert request.headers["X-Webhook-Timestamp"] == "1700000000"
    assert request.headers["X-Webhook-Signature"] == f"sha256={expected}"


def test_serialize_payload_is_compact():
    assert serialize_payload({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'


def test_isoformat_utc_uses_z_suffix(clock):
    assert isoformat_utc(clock.now) == "2026-03-01T12:00:00Z"


def test_test_payload_shape(clock):
    payload = build_test_payload("ep-1", clock.now)

    assert payload["id"].startswith("test_")
    assert payload["type"] == "test"
    assert payload["timestamp"] == "2026-03-01T12:00:00Z"
    assert payload["data"] == {
        "message": "This is a test webhook from your Email API",
        "endpoint_id": "ep-1",
    }
    json.dumps(payload)
