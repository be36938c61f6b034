"""
Retry Scheduler

Delivery state machine:

    pending ──┬──> sent              (attempt succeeded)
              ├──> retry_scheduled   (failed, attempts < max)
              └──> failed            (failed, attempts >= max)
    retry_scheduled ──> same three targets on the next attempt

sent and failed are terminal.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.config import DeliveryConfig
from app.models.webhook import DeliveryStatus, WebhookDelivery
from app.services.delivery_executor import AttemptOutcome


@dataclass(frozen=True)
class Transition:
    """Next state computed for a delivery after an attempt."""
    status: DeliveryStatus
    next_retry_at: datetime | None


def backoff_delay(attempt_count: int, backoff_minutes) -> timedelta:
    """
    Wait before the next attempt, indexed by the attempt just completed.

    attempt_count is 1-based; the index is clamped to the last entry.
    """
    index = min(max(attempt_count - 1, 0), len(backoff_minutes) - 1)
    return timedelta(minutes=backoff_minutes[index])


def next_transition(
    attempt_count: int,
    success: bool,
    now: datetime,
    config: DeliveryConfig,
) -> Transition:
    """Pure transition rule for an attempt that has just completed."""
    if success:
        return Transition(DeliveryStatus.SENT, None)
    if attempt_count >= config.max_attempts:
        return Transition(DeliveryStatus.FAILED, None)
    return Transition(
        DeliveryStatus.RETRY_SCHEDULED,
        now + backoff_delay(attempt_count, config.backoff_minutes),
    )


def apply_outcome(
    delivery: WebhookDelivery,
    outcome: AttemptOutcome,
    now: datetime,
    config: DeliveryConfig,
) -> Transition:
    """
    Record an attempt on the delivery and move it to its next state.

    All fields of the transition are assigned together so they are
    persisted in a single commit by the caller.
    """
    if delivery.status in (DeliveryStatus.SENT, DeliveryStatus.FAILED):
        raise ValueError(f"Delivery {delivery.id} is terminal ({delivery.status.value})")

    attempt_count = (delivery.attempt_count or 0) + 1
    transition = next_transition(attempt_count, outcome.success, now, config)

    delivery.attempt_count = attempt_count
    delivery.last_attempt_at = now
    delivery.response_status_code = outcome.http_status
    delivery.response_body_excerpt = None if outcome.success else outcome.body_excerpt
    delivery.status = transition.status
    delivery.next_retry_at = transition.next_retry_at
    return transition
