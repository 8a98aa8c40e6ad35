"""Subscription record: one per organization, owns the lifecycle state."""
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.timeutil import utcnow
from src.db.base import Base
from src.db.models.enums import PlanTier, ResourceKind, SubscriptionStatus
from src.db.types import UTCDateTime


class Subscription(Base):
    """Current plan, status, shared-pool limits and usage of an organization."""

    __tablename__ = "subscriptions"

    org_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        primary_key=True,
    )
    plan_tier: Mapped[str] = mapped_column(
        String, nullable=False, default=PlanTier.FREE.value, index=True
    )
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=SubscriptionStatus.ACTIVE.value, index=True
    )

    subject_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    student_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    current_subjects: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_students: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    member_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")

    start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    expiry_date: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True, index=True
    )
    grace_period_end: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True, index=True
    )
    last_payment_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    external_customer_ref: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    external_subscription_ref: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_transaction_ref: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    organization = relationship("Organization", lazy="joined")

    __table_args__ = (
        CheckConstraint("current_subjects >= 0", name="ck_subscription_subjects_non_negative"),
        CheckConstraint("current_students >= 0", name="ck_subscription_students_non_negative"),
    )

    @property
    def is_paid(self) -> bool:
        return self.plan_tier != PlanTier.FREE.value

    def current(self, kind: ResourceKind) -> int:
        if kind == ResourceKind.SUBJECT:
            return self.current_subjects
        return self.current_students

    def limit(self, kind: ResourceKind) -> int:
        if kind == ResourceKind.SUBJECT:
            return self.subject_limit
        return self.student_limit

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Subscription org={self.org_id} plan={self.plan_tier} status={self.status}>"
