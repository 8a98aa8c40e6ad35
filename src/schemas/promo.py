"""Pydantic schemas for promo codes."""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.db.models.enums import DiscountType


class PromoCodeCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=32)
    discount_type: DiscountType
    value: Decimal = Field(..., gt=0)
    max_uses: Optional[int] = Field(default=None, ge=1)
    expiry_date: Optional[datetime] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class PromoCodeRead(BaseModel):
    code: str
    discount_type: str
    value: Decimal
    max_uses: Optional[int] = None
    current_uses: int
    expiry_date: Optional[datetime] = None
    currency: Optional[str] = None
    status: str

    model_config = ConfigDict(from_attributes=True)


class PromoCodeValidate(BaseModel):
    code: str
    target_tier: str
    currency: str = Field(..., min_length=3, max_length=3)
