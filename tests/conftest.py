"""Pytest configuration and shared fixtures."""
import os
import sys
from pathlib import Path

# Test modules import the receiver and clock helpers from here
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

# Configure before any app module builds the engine or settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SENTRY_DSN", "")

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.config import DeliveryConfig
from app.models.base import Base
from app.models.organisation import Organisation
from app.models.webhook import DomainEvent, WebhookDelivery, WebhookEndpoint  # noqa: F401
from app.services.delivery_executor import DeliveryExecutor
from app.services.dispatcher import DeliveryDispatcher
from app.services.organisation_service import OrganisationService


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


class Receiver:
    """
    Simulated webhook receiver for httpx.MockTransport.

    Responds with queued status codes (default 200) and records every
    request it sees.
    """

    def __init__(self, *statuses: int, body: str = "", error: Exception | None = None):
        self.statuses = list(statuses)
        self.body = body
        self.error = error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status, text=self.body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'webhooks.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def tenant(db) -> Organisation:
    return await OrganisationService(db).create(name="Acme Corp", domain="acme.com")


@pytest.fixture
async def other_tenant(db) -> Organisation:
    return await OrganisationService(db).create(name="Beta Inc", domain="beta.com")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def config() -> DeliveryConfig:
    return DeliveryConfig(dispatch_interval_seconds=0.01)


@pytest.fixture
async def make_dispatcher(session_factory, config, clock):
    """Build a dispatcher whose HTTP traffic goes to the given receiver."""
    clients: list[httpx.AsyncClient] = []

    def _make(receiver: Receiver, **overrides) -> DeliveryDispatcher:
        cfg = config.model_copy(update=overrides) if overrides else config
        client = receiver.client()
        clients.append(client)
        executor = DeliveryExecutor(cfg, client=client, clock=clock)
        return DeliveryDispatcher(session_factory, cfg, executor=executor, clock=clock)

    yield _make

    for client in clients:
        await client.aclose()


@pytest.fixture
def load_delivery(session_factory):
    """Read a delivery through a fresh session."""

    async def _load(delivery_id: int) -> WebhookDelivery:
        async with session_factory() as session:
            return await session.get(WebhookDelivery, delivery_id)

    return _load
