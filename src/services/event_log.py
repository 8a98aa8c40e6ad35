"""Append helpers for the subscription event log."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.enums import SubscriptionEventType
from src.db.models.subscription_event import SubscriptionEvent
from src.repositories.event_repo import SubscriptionEventRepo


logger = logging.getLogger(__name__)


async def log_event(
    session: AsyncSession,
    org_id: UUID,
    event_type: SubscriptionEventType,
    *,
    plan_tier: Optional[str] = None,
    previous_tier: Optional[str] = None,
    amount: Optional[Decimal] = None,
    currency: Optional[str] = None,
    **details: Any,
) -> SubscriptionEvent:
    event = SubscriptionEvent(
        org_id=org_id,
        event_type=SubscriptionEventType(event_type).value,
        plan_tier=plan_tier,
        previous_tier=previous_tier,
        amount=amount,
        currency=currency,
        details={key: value for key, value in details.items() if value is not None},
    )
    await SubscriptionEventRepo(session).add(event)
    logger.debug(f"Logged {event.event_type} event for org {org_id}")
    return event
