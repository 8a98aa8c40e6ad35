"""Repository helpers for the subscription event log."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.subscription_event import SubscriptionEvent


class SubscriptionEventRepo:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, event: SubscriptionEvent) -> SubscriptionEvent:
        self.session.add(event)
        await self.session.flush()
        return event

    async def counts_by_type(self, since: datetime | None = None) -> dict[str, int]:
        stmt = select(SubscriptionEvent.event_type, func.count()).group_by(
            SubscriptionEvent.event_type
        )
        if since is not None:
            stmt = stmt.where(SubscriptionEvent.created_at >= since)
        result = await self.session.execute(stmt)
        return {event_type: int(count) for event_type, count in result.all()}

    async def since(self, since: datetime) -> list[SubscriptionEvent]:
        result = await self.session.execute(
            select(SubscriptionEvent)
            .where(SubscriptionEvent.created_at >= since)
            .order_by(SubscriptionEvent.created_at)
        )
        return list(result.scalars().all())
