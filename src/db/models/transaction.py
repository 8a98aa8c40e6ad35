"""Payment attempts keyed by the gateway's transaction reference."""
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Numeric, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from src.core.timeutil import utcnow
from src.db.base import Base
from src.db.models.enums import TransactionStatus
from src.db.types import UTCDateTime


class Transaction(Base):
    """One logical payment attempt.

    ``legacy_member_id`` holds rows filed under a member before billing moved
    to organizations; ``initiated_by`` is the paying member.
    """

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    org_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True), index=True, nullable=True
    )
    legacy_member_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    initiated_by: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    plan_tier: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=TransactionStatus.PENDING.value
    )
    promo_code: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    gateway_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Transaction {self.id} org={self.org_id} status={self.status}>"
