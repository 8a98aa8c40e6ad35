"""Repository helpers for organization members."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.member import MemberUsage


class MemberRepo:
    """Data-access helpers for :class:`MemberUsage`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, member_id: str) -> MemberUsage | None:
        result = await self.session.execute(
            select(MemberUsage)
            .where(MemberUsage.member_id == member_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_in_org(self, org_id: UUID, member_id: str) -> MemberUsage | None:
        result = await self.session.execute(
            select(MemberUsage)
            .where(MemberUsage.org_id == org_id, MemberUsage.member_id == member_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_org(self, org_id: UUID) -> list[MemberUsage]:
        result = await self.session.execute(
            select(MemberUsage)
            .where(MemberUsage.org_id == org_id)
            .order_by(MemberUsage.joined_at)
        )
        return list(result.scalars().all())

    async def add(self, member: MemberUsage) -> MemberUsage:
        self.session.add(member)
        await self.session.flush()
        return member

    async def delete(self, member: MemberUsage) -> None:
        await self.session.delete(member)
        await self.session.flush()

    async def totals_for_org(self, org_id: UUID) -> tuple[int, int, int]:
        """Return ``(subjects, students, members)`` summed over member rows."""

        result = await self.session.execute(
            select(
                func.coalesce(func.sum(MemberUsage.current_subjects), 0),
                func.coalesce(func.sum(MemberUsage.current_students), 0),
                func.count(),
            ).where(MemberUsage.org_id == org_id)
        )
        subjects, students, members = result.one()
        return int(subjects), int(students), int(members)
