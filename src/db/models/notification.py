"""Outbound notification queue consumed by the external mailer."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from src.core.timeutil import utcnow
from src.db.base import Base
from src.db.types import UTCDateTime


class OutboundNotification(Base):
    __tablename__ = "outbound_notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), index=True, nullable=False)
    recipient: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    template: Mapped[str] = mapped_column(String, nullable=False)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    # Lets a re-run job skip messages it already queued.
    dedupe_key: Mapped[Optional[str]] = mapped_column(String, unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<OutboundNotification {self.template} org={self.org_id}>"
