"""Pydantic schemas for plan changes, payments and transactions."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PlanChangeRequest(BaseModel):
    org_id: UUID = Field(..., description="Organization changing plan")
    target_tier: str = Field(..., description="Tier to move to")
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    promo_code: Optional[str] = None


class PlanChangeQuoteRead(BaseModel):
    """Price and limits handed to the payment widget."""

    tier: str
    name: str
    amount: Decimal
    currency: str
    features: List[str]
    subject_limit: int
    student_limit: int
    original_amount: Decimal
    discount: Decimal = Decimal("0")
    promo_code: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentCompletion(BaseModel):
    transaction_ref: str = Field(..., min_length=1, description="Gateway transaction reference")
    org_id: UUID
    target_tier: str
    amount_claimed: Decimal = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)
    promo_code: Optional[str] = None


class PaymentResult(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    plan_tier: Optional[str] = None
    already_applied: bool = False


class TransactionRead(BaseModel):
    id: str
    org_id: Optional[UUID] = None
    initiated_by: Optional[str] = None
    plan_tier: str
    amount: Decimal
    currency: str
    status: str
    promo_code: Optional[str] = None
    discount_amount: Decimal = Decimal("0")
    gateway_response: Optional[Dict[str, Any]] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
