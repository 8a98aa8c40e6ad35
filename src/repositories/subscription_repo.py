"""Repository utilities for organization subscriptions."""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.enums import PAID_TIERS, SubscriptionStatus
from src.db.models.subscription import Subscription


class SubscriptionRepo:
    """Data-access helpers for :class:`Subscription`.

    The ``*_ids`` selectors back the lifecycle jobs: they return only keys so
    each record can be reloaded and processed in its own transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, org_id: UUID, *, for_update: bool = False) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(Subscription.org_id == org_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update(of=Subscription)
        result = await self.session.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def add(self, subscription: Subscription) -> Subscription:
        self.session.add(subscription)
        await self.session.flush()
        return subscription

    async def expiring_ids(self, after: datetime, until: datetime) -> list[UUID]:
        """Active paid subscriptions expiring in ``(after, until]``."""

        result = await self.session.execute(
            select(Subscription.org_id).where(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.plan_tier.in_(PAID_TIERS),
                Subscription.expiry_date > after,
                Subscription.expiry_date <= until,
            )
        )
        return list(result.scalars().all())

    async def due_for_renewal_ids(self, now: datetime) -> list[UUID]:
        result = await self.session.execute(
            select(Subscription.org_id).where(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.plan_tier.in_(PAID_TIERS),
                Subscription.expiry_date <= now,
            )
        )
        return list(result.scalars().all())

    async def grace_expired_ids(self, now: datetime) -> list[UUID]:
        result = await self.session.execute(
            select(Subscription.org_id).where(
                Subscription.status == SubscriptionStatus.GRACE_PERIOD.value,
                Subscription.grace_period_end <= now,
            )
        )
        return list(result.scalars().all())

    async def all_ids(self) -> list[UUID]:
        result = await self.session.execute(select(Subscription.org_id))
        return list(result.scalars().all())

    async def count_by_tier(self) -> dict[str, int]:
        result = await self.session.execute(
            select(Subscription.plan_tier, func.count()).group_by(Subscription.plan_tier)
        )
        return {tier: int(count) for tier, count in result.all()}
