"""Promo code validation, pricing and redemption."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import PromoCodeInvalid
from src.core.timeutil import utcnow
from src.db.models.enums import DiscountType
from src.db.models.promo_code import PromoCode
from src.repositories.promo_repo import PromoCodeRepo


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def normalise_code(code: str) -> str:
    return code.strip().upper()


def discount_for(promo: PromoCode, price: Decimal) -> Decimal:
    """Discount ``promo`` grants on ``price``; never more than the price."""

    value = Decimal(promo.value)
    if promo.discount_type == DiscountType.PERCENTAGE.value:
        discount = (price * value / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
    else:
        discount = value
    return min(discount, price)


@dataclass(frozen=True)
class PriceQuote:
    original_amount: Decimal
    discount: Decimal
    amount: Decimal
    promo_code: Optional[str] = None


class PromoService:
    def __init__(self, session: AsyncSession) -> None:
        self.repo = PromoCodeRepo(session)

    async def create(
        self,
        *,
        code: str,
        discount_type: DiscountType,
        value: Decimal,
        max_uses: Optional[int] = None,
        expiry_date: Optional[datetime] = None,
        currency: Optional[str] = None,
    ) -> PromoCode:
        code = normalise_code(code)
        discount_type = DiscountType(discount_type)
        value = Decimal(value)
        if value <= 0:
            raise PromoCodeInvalid("Discount value must be positive")
        if discount_type == DiscountType.PERCENTAGE and value > 100:
            raise PromoCodeInvalid("Percentage discount cannot exceed 100")
        if max_uses is not None and max_uses < 1:
            raise PromoCodeInvalid("Maximum uses must be at least 1")
        if await self.repo.get(code) is not None:
            raise PromoCodeInvalid("Promo code already exists", code=code)

        promo = PromoCode(
            code=code,
            discount_type=discount_type.value,
            value=value,
            max_uses=max_uses,
            current_uses=0,
            expiry_date=expiry_date,
            currency=currency.upper() if currency else None,
            status="active",
        )
        await self.repo.add(promo)
        logger.info(f"Created promo code {code} ({discount_type.value} {value})")
        return promo

    async def list_all(self) -> List[PromoCode]:
        return await self.repo.list_all()

    async def validate(
        self, code: str, currency: str, now: Optional[datetime] = None
    ) -> PromoCode:
        now = now or utcnow()
        promo = await self.repo.get(normalise_code(code))
        if promo is None or promo.status != "active":
            raise PromoCodeInvalid("Invalid promo code", code=code)
        if promo.expiry_date is not None and promo.expiry_date <= now:
            raise PromoCodeInvalid("Promo code has expired", code=promo.code)
        if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
            raise PromoCodeInvalid("Promo code usage limit reached", code=promo.code)
        if (
            promo.discount_type == DiscountType.FIXED.value
            and promo.currency
            and promo.currency != currency.upper()
        ):
            raise PromoCodeInvalid(
                f"Promo code is not valid for {currency.upper()}", code=promo.code
            )
        return promo

    async def quote(
        self,
        price: Decimal,
        currency: str,
        code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PriceQuote:
        if not code:
            return PriceQuote(original_amount=price, discount=Decimal("0"), amount=price)
        promo = await self.validate(code, currency, now)
        discount = discount_for(promo, price)
        return PriceQuote(
            original_amount=price,
            discount=discount,
            amount=price - discount,
            promo_code=promo.code,
        )

    async def redeem(self, code: str, now: Optional[datetime] = None) -> None:
        code = normalise_code(code)
        if not await self.repo.redeem(code, now or utcnow()):
            raise PromoCodeInvalid("Promo code can no longer be redeemed", code=code)
        logger.info(f"Redeemed promo code {code}")
