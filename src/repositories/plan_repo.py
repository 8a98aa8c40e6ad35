"""Repository utilities for the plan catalog."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.plan import PlanConfig


class PlanRepo:
    """Data-access helpers for :class:`PlanConfig`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, tier: str) -> PlanConfig | None:
        result = await self.session.execute(
            select(PlanConfig).where(PlanConfig.tier == tier)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[PlanConfig]:
        result = await self.session.execute(
            select(PlanConfig).order_by(PlanConfig.position, PlanConfig.tier)
        )
        return list(result.scalars().all())
