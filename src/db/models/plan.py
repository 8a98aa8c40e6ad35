"""Billing plan model definition."""
from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import JSON, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base


class PlanConfig(Base):
    """Persisted row of the plan catalog, one per tier.

    Limits are stored as either a bare integer or a ``{"min", "max"}`` object;
    prices as a currency -> decimal-string mapping.
    """

    __tablename__ = "plans"

    tier: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    price_by_currency: Mapped[Dict[str, str]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    subject_limit: Mapped[Any] = mapped_column(JSON, nullable=False)
    student_limit: Mapped[Any] = mapped_column(JSON, nullable=False)
    features: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    billing_cycle: Mapped[str] = mapped_column(String, nullable=False, default="none")
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<PlanConfig {self.tier}>"
