"""
Webhook dispatch worker.

Runs the dispatch loop as its own process:

    python -m app.worker

SIGINT/SIGTERM stop the loop after the in-flight delivery has been
attempted and persisted.
"""
import asyncio
import signal

import httpx
import structlog

from app.config import DeliveryConfig, settings
from app.database import AsyncSessionLocal, engine
from app.logging_config import configure_logging
from app.sentry_config import configure_sentry
from app.services.delivery_executor import DeliveryExecutor
from app.services.dispatcher import DeliveryDispatcher

logger = structlog.get_logger()


def install_signal_handlers(dispatcher: DeliveryDispatcher) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, dispatcher.stop)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(dispatcher.stop))


async def main():
    """Run the dispatch loop until a shutdown signal arrives."""
    configure_logging()
    configure_sentry()

    config = DeliveryConfig.from_settings(settings)

    async with httpx.AsyncClient(timeout=config.timeout_seconds) as client:
        dispatcher = DeliveryDispatcher(
            AsyncSessionLocal,
            config,
            executor=DeliveryExecutor(config, client=client),
        )
        install_signal_handlers(dispatcher)
        try:
            await dispatcher.run_forever()
        finally:
            await engine.dispose()

    logger.info("webhook_worker_exited")


if __name__ == "__main__":
    asyncio.run(main())
