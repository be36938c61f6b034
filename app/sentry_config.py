"""
Sentry configuration for error tracking.

Errors contained by the dispatch loop and by producer-side event
reporting are forwarded here with the delivery or tenant they concern.
Reporting is a no-op when SENTRY_DSN is not set.
"""
import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from app.config import settings

logger = structlog.get_logger()

COMPONENT_TAG = "webhooks"


def configure_sentry():
    """Initialise the SDK with FastAPI and SQLAlchemy integrations."""
    if not settings.SENTRY_DSN:
        logger.warning("sentry_disabled", reason="SENTRY_DSN not set")
        return

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        before_send=add_context,
        # 10% of transactions for performance monitoring
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
    )

    logger.info("sentry_initialized", environment=settings.ENVIRONMENT)


def add_context(event, hint):
    """Tag every event with the service component."""
    event.setdefault("tags", {})["component"] = COMPONENT_TAG
    return event


def _enabled() -> bool:
    return sentry_sdk.get_client().is_active()


def capture_exception(exc_info=None, **context):
    """
    Report the current (or given) exception.

    Keyword arguments become tags on the event, e.g.
    capture_exception(delivery_id=42).
    """
    if not _enabled():
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            if value is not None:
                scope.set_tag(key, str(value))
        sentry_sdk.capture_exception(exc_info)


def capture_message(message, level="info", **context):
    """Report a message, tagged like capture_exception()."""
    if not _enabled():
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            if value is not None:
                scope.set_tag(key, str(value))
        sentry_sdk.capture_message(message, level=level)
