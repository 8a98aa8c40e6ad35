"""Repository for organization records."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.organization import Organization


class OrganizationRepo:
    """Data-access helpers for :class:`Organization`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, org_id: UUID) -> Organization | None:
        result = await self.session.execute(
            select(Organization).where(Organization.id == org_id)
        )
        return result.scalar_one_or_none()

    async def create(
        self, name: str, admin_member_id: str, contact_email: Optional[str] = None
    ) -> Organization:
        organization = Organization(
            name=name,
            admin_member_id=admin_member_id,
            contact_email=contact_email,
        )
        self.session.add(organization)
        await self.session.flush()
        return organization
