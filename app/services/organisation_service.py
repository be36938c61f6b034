"""
Tenant (organisation) lookups.

SECURITY: All queries MUST include organisation_id filter.
Failure to do so will result in data leakage between tenants.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.organisation import Organisation


class OrganisationService:
    """Service for managing tenant organisations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, org_id: str) -> Organisation | None:
        """
        Get organisation by ID.

        Args:
            org_id: Organisation UUID

        Returns:
            Organisation or None if not found
        """
        stmt = select(Organisation).where(Organisation.id == org_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, name: str, domain: str) -> Organisation:
        """
        Create a new tenant organisation.

        Args:
            name: Organisation name
            domain: Organisation sending domain

        Returns:
            Newly created Organisation
        """
        org = Organisation(name=name, domain=domain)
        self.db.add(org)
        await self.db.commit()
        return org

    async def delete(self, org_id: str) -> bool:
        """Delete a tenant together with its endpoints, events and deliveries."""
        org = await self.get_by_id(org_id)
        if org is None:
            return False
        await self.db.delete(org)
        await self.db.commit()
        return True
