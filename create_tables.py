"""
Script to create all database tables.

Creates the tenant, endpoint, event and delivery tables from the models.
Run this after starting PostgreSQL with Docker (or use alembic upgrade).
"""
import asyncio
import sys

from app.database import engine
from app.models.base import Base

# Import all models to register them with Base
from app.models.organisation import Organisation  # noqa: F401
from app.models.webhook import DomainEvent, WebhookDelivery, WebhookEndpoint  # noqa: F401


async def create_all_tables():
    """Create all tables in the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("All tables created successfully!")


async def drop_all_tables():
    """Drop all tables in the database (for testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    print("All tables dropped!")


async def main(drop: bool = False):
    """Main entry point. Pass --drop to drop tables instead."""
    if drop:
        await drop_all_tables()
    else:
        await create_all_tables()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main(drop="--drop" in sys.argv))
