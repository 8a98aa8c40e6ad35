"""Promotional discount codes."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.timeutil import utcnow
from src.db.base import Base
from src.db.types import UTCDateTime


class PromoCode(Base):
    __tablename__ = "promo_codes"

    code: Mapped[str] = mapped_column(String, primary_key=True)
    discount_type: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expiry_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("current_uses >= 0", name="ck_promo_uses_non_negative"),
        CheckConstraint(
            "max_uses IS NULL OR current_uses <= max_uses",
            name="ck_promo_uses_within_max",
        ),
    )

    @property
    def remaining_uses(self) -> Optional[int]:
        if self.max_uses is None:
            return None
        return self.max_uses - self.current_uses

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<PromoCode {self.code} uses={self.current_uses}/{self.max_uses}>"
