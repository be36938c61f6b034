"""
Dispatch Loop

Periodically pulls due deliveries (pending, or retry_scheduled with
next_retry_at <= now, on enabled endpoints) and drives each one through
the executor and the retry scheduler, committing every transition
before moving on.

A delivery is claimed with a conditional UPDATE before it is sent. The
claim is a lease (claimed_until); whoever loses the UPDATE skips the
delivery, and a lease left behind by a crashed worker expires.

Shutdown: stop() makes the loop stop starting new attempts; an attempt
already in flight finishes and is persisted first.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Callable, Iterable

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.config import DeliveryConfig
from app.models.base import utcnow
from app.models.webhook import DeliveryStatus, WebhookDelivery, WebhookEndpoint
from app.routes.metrics import track_attempt, track_transition
from app.sentry_config import capture_exception, capture_message
from app.services.delivery_executor import DeliveryExecutor
from app.services.retry_scheduler import apply_outcome

logger = structlog.get_logger()


def due_condition(now: datetime):
    """SQL filter for deliveries that may be attempted at `now`."""
    enabled_endpoints = select(WebhookEndpoint.id).where(WebhookEndpoint.enabled.is_(True))
    return and_(
        WebhookDelivery.endpoint_id.in_(enabled_endpoints),
        or_(
            WebhookDelivery.status == DeliveryStatus.PENDING,
            and_(
                WebhookDelivery.status == DeliveryStatus.RETRY_SCHEDULED,
                WebhookDelivery.next_retry_at.is_not(None),
                WebhookDelivery.next_retry_at <= now,
            ),
        ),
        or_(
            WebhookDelivery.claimed_until.is_(None),
            WebhookDelivery.claimed_until <= now,
        ),
    )


class DeliveryDispatcher:
    """Drives queued deliveries to a terminal state."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: DeliveryConfig,
        executor: DeliveryExecutor | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.config = config
        self.executor = executor or DeliveryExecutor(config, clock=clock)
        self._clock = clock
        self._stop = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask the loop to finish the in-flight attempt and exit."""
        if not self._stop.is_set():
            logger.info("webhook_dispatcher_stop_requested")
        self._stop.set()

    def due_deliveries_query(self, now: datetime):
        return (
            select(WebhookDelivery.id)
            .where(due_condition(now))
            .order_by(WebhookDelivery.id)
            .limit(self.config.batch_size)
        )

    async def fetch_due_ids(self) -> list[int]:
        async with self._session_factory() as db:
            result = await db.execute(self.due_deliveries_query(self._clock()))
            return list(result.scalars().all())

    async def claim(self, db: AsyncSession, delivery_id: int) -> bool:
        """
        Lease a due delivery for one attempt.

        Returns:
            False if the delivery is not due or another worker holds it
        """
        now = self._clock()
        stmt = (
            update(WebhookDelivery)
            .where(WebhookDelivery.id == delivery_id, due_condition(now))
            .values(claimed_until=now + timedelta(seconds=self.config.claim_lease_seconds))
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount == 1

    async def release(self, delivery_id: int) -> None:
        """Drop the lease without recording an attempt."""
        async with self._session_factory() as db:
            await db.execute(
                update(WebhookDelivery)
                .where(WebhookDelivery.id == delivery_id)
                .values(claimed_until=None)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

    async def process_delivery(self, delivery_id: int) -> WebhookDelivery | None:
        """
        Claim one delivery, attempt it and persist its transition.

        Returns:
            The updated delivery, or None if it was not due or already claimed
        """
        async with self._session_factory() as db:
            if not await self.claim(db, delivery_id):
                return None

            try:
                stmt = (
                    select(WebhookDelivery)
                    .options(
                        selectinload(WebhookDelivery.endpoint),
                        selectinload(WebhookDelivery.event),
                    )
                    .where(WebhookDelivery.id == delivery_id)
                )
                delivery = (await db.execute(stmt)).scalar_one()

                outcome = await self.executor.attempt(delivery, delivery.endpoint, delivery.event)
                transition = apply_outcome(delivery, outcome, self._clock(), self.config)
                delivery.claimed_until = None
                await db.commit()
            except Exception:
                await db.rollback()
                await self.release(delivery_id)
                raise

        track_attempt(
            "success" if outcome.success else outcome.failure_reason.value,
            outcome.duration_seconds,
        )
        track_transition(transition.status.value)

        log = logger.bind(delivery_id=delivery_id, endpoint_id=delivery.endpoint_id)
        if transition.status == DeliveryStatus.SENT:
            log.info("webhook_delivery_succeeded", status_code=outcome.http_status)
        elif transition.status == DeliveryStatus.FAILED:
            log.warning("webhook_delivery_failed", attempts=delivery.attempt_count)
            capture_message(
                "Webhook delivery failed after all attempts",
                level="warning",
                delivery_id=delivery_id,
                endpoint_id=delivery.endpoint_id,
            )
        else:
            log.warning(
                "webhook_delivery_retry_scheduled",
                attempts=delivery.attempt_count,
                next_retry_at=transition.next_retry_at.isoformat(),
            )
        return delivery

    async def _process_safely(self, delivery_id: int) -> WebhookDelivery | None:
        try:
            return await self.process_delivery(delivery_id)
        except Exception:
            logger.exception("webhook_delivery_processing_error", delivery_id=delivery_id)
            capture_exception(delivery_id=delivery_id)
            return None

    async def run_once(self) -> int:
        """
        Process one batch of due deliveries.

        Returns:
            Number of deliveries attempted
        """
        delivery_ids = await self.fetch_due_ids()
        if not delivery_ids:
            return 0

        logger.info("webhook_batch_started", count=len(delivery_ids))

        if self.config.concurrency <= 1:
            processed = 0
            for delivery_id in delivery_ids:
                if self.stopping:
                    break
                if await self._process_safely(delivery_id) is not None:
                    processed += 1
            return processed

        semaphore = asyncio.Semaphore(self.config.concurrency)

        async def bounded(delivery_id: int) -> WebhookDelivery | None:
            async with semaphore:
                if self.stopping:
                    return None
                return await self._process_safely(delivery_id)

        results = await asyncio.gather(*(bounded(i) for i in delivery_ids))
        return sum(1 for result in results if result is not None)

    async def deliver_now(self, delivery_ids: Iterable[int]) -> list[WebhookDelivery]:
        """Attempt freshly queued deliveries immediately, in order."""
        delivered = []
        for delivery_id in delivery_ids:
            result = await self._process_safely(delivery_id)
            if result is not None:
                delivered.append(result)
        return delivered

    async def send_test(self, endpoint: WebhookEndpoint) -> dict:
        """
        Synchronous test delivery to an endpoint.

        Bypasses fan-out and scheduling; nothing is persisted.
        """
        outcome = await self.executor.send_test(endpoint)
        if outcome.success:
            message = "Test webhook delivered successfully"
        else:
            detail = outcome.body_excerpt or (
                f"HTTP {outcome.http_status}" if outcome.http_status else "Unknown error"
            )
            message = f"Test webhook failed: {detail}"

        logger.info(
            "webhook_test_delivery",
            endpoint_id=endpoint.id,
            success=outcome.success,
            status_code=outcome.http_status,
        )
        return {
            "success": outcome.success,
            "status_code": outcome.http_status,
            "message": message,
        }

    async def run_forever(self) -> None:
        """Poll on a fixed interval until stop() is called."""
        logger.info(
            "webhook_dispatcher_started",
            interval_seconds=self.config.dispatch_interval_seconds,
            batch_size=self.config.batch_size,
        )
        while not self.stopping:
            try:
                await self.run_once()
            except Exception:
                logger.exception("webhook_batch_failed")
                capture_exception()

            try:
                await asyncio.wait_for(
                    self._stop.wait(),
                    timeout=self.config.dispatch_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass

        logger.info("webhook_dispatcher_stopped")
