"""
EmailAPI Webhooks - outbound webhook delivery service

FastAPI application entry point.
"""
import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Import observability modules
from app.config import settings
from app.logging_config import configure_logging
from app.sentry_config import configure_sentry
from app.middleware.logging import LoggingMiddleware
from app.routes.metrics import router as metrics_router

# Import route modules
from app.routes.webhook_endpoints import router as webhook_endpoints_router, get_dispatcher

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Optionally run the dispatch loop inside the API process."""
    task = None
    dispatcher = None
    if settings.WEBHOOK_DISPATCH_IN_PROCESS:
        dispatcher = get_dispatcher()
        task = asyncio.create_task(dispatcher.run_forever())
        logger.info("webhook_dispatcher_in_process")
    try:
        yield
    finally:
        if task is not None:
            dispatcher.stop()
            await task


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Signed, retried webhook callbacks for email events",
    lifespan=lifespan,
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)

# Add CORS middleware for the admin UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

# Include webhook management routes
app.include_router(webhook_endpoints_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "dispatcher_in_process": settings.WEBHOOK_DISPATCH_IN_PROCESS
    }
