"""Repository helpers for promo codes."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.promo_code import PromoCode


class PromoCodeRepo:
    """Data-access helpers for :class:`PromoCode`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, code: str) -> PromoCode | None:
        result = await self.session.execute(
            select(PromoCode)
            .where(PromoCode.code == code)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[PromoCode]:
        result = await self.session.execute(
            select(PromoCode).order_by(PromoCode.created_at.desc())
        )
        return list(result.scalars().all())

    async def add(self, promo: PromoCode) -> PromoCode:
        self.session.add(promo)
        await self.session.flush()
        return promo

    async def redeem(self, code: str, now: datetime) -> bool:
        """Consume one use if the code is still redeemable at ``now``."""

        result = await self.session.execute(
            update(PromoCode)
            .where(
                PromoCode.code == code,
                PromoCode.status == "active",
                or_(PromoCode.max_uses.is_(None), PromoCode.current_uses < PromoCode.max_uses),
                or_(PromoCode.expiry_date.is_(None), PromoCode.expiry_date > now),
            )
            .values(current_uses=PromoCode.current_uses + 1),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount == 1
