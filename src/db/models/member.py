"""Per-member usage attribution."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from src.core.timeutil import utcnow
from src.db.base import Base
from src.db.models.enums import MemberRole
from src.db.types import UTCDateTime


class MemberUsage(Base):
    """A teacher's membership in an organization and their share of its usage."""

    __tablename__ = "member_usage"

    member_id: Mapped[str] = mapped_column(String, primary_key=True)
    org_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    role: Mapped[str] = mapped_column(
        String, nullable=False, default=MemberRole.MEMBER.value
    )
    email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    current_subjects: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_students: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("current_subjects >= 0", name="ck_member_subjects_non_negative"),
        CheckConstraint("current_students >= 0", name="ck_member_students_non_negative"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.ADMIN.value

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<MemberUsage {self.member_id} org={self.org_id} role={self.role}>"
