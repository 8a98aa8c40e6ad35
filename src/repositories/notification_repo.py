"""Repository helpers for the outbound notification queue."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.notification import OutboundNotification


class NotificationRepo:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def exists(self, dedupe_key: str) -> bool:
        result = await self.session.execute(
            select(OutboundNotification.id).where(
                OutboundNotification.dedupe_key == dedupe_key
            )
        )
        return result.first() is not None

    async def add(self, notification: OutboundNotification) -> OutboundNotification:
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def for_org(self, org_id: UUID) -> list[OutboundNotification]:
        result = await self.session.execute(
            select(OutboundNotification)
            .where(OutboundNotification.org_id == org_id)
            .order_by(OutboundNotification.created_at)
        )
        return list(result.scalars().all())
