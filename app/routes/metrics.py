"""
Prometheus metrics endpoint.

Exposes HTTP and webhook delivery metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Webhook Delivery Metrics
# ============================================

webhook_deliveries_created = Counter(
    'webhook_deliveries_created_total',
    'Deliveries created by fan-out',
    ['event_type']
)

webhook_attempts = Counter(
    'webhook_attempts_total',
    'Delivery attempts by outcome',
    ['outcome']
)

webhook_attempt_duration = Histogram(
    'webhook_attempt_duration_seconds',
    'Delivery attempt duration in seconds',
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

webhook_deliveries_sent = Counter(
    'webhook_deliveries_sent_total',
    'Deliveries that reached the sent state'
)

webhook_retries_scheduled = Counter(
    'webhook_retries_scheduled_total',
    'Failed attempts that scheduled a retry'
)

webhook_deliveries_failed = Counter(
    'webhook_deliveries_failed_total',
    'Deliveries abandoned after exhausting attempts'
)

# ============================================
# Rate Limiting Metrics
# ============================================

rate_limit_exceeded = Counter(
    'rate_limit_exceeded_total',
    'Total requests blocked by rate limiting',
    ['org_id']
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_deliveries_created(event_type: str, count: int):
    """Record deliveries queued for an event."""
    if count:
        webhook_deliveries_created.labels(event_type=event_type).inc(count)


def track_attempt(outcome: str, duration_seconds: float):
    """Record one delivery attempt ("success" or a failure reason)."""
    webhook_attempts.labels(outcome=outcome).inc()
    webhook_attempt_duration.observe(duration_seconds)


def track_transition(status: str):
    """Record the state a delivery moved into after an attempt."""
    if status == "sent":
        webhook_deliveries_sent.inc()
    elif status == "retry_scheduled":
        webhook_retries_scheduled.inc()
    elif status == "failed":
        webhook_deliveries_failed.inc()


def track_rate_limit_exceeded(org_id: str):
    """Record a rate limit block."""
    rate_limit_exceeded.labels(org_id=org_id).inc()


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
