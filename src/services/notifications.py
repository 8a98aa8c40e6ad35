"""Outbound notifications for subscription lifecycle events.

Messages are written to the ``outbound_notifications`` queue and picked up by
an external mailer; nothing here waits for delivery.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.enums import NotificationTemplate
from src.db.models.notification import OutboundNotification
from src.db.models.subscription import Subscription
from src.repositories.notification_repo import NotificationRepo
from src.services.plans import Plan


logger = logging.getLogger(__name__)


class NotificationSink:
    def __init__(self, session: AsyncSession) -> None:
        self.repo = NotificationRepo(session)

    async def send(
        self,
        org_id: UUID,
        to: Optional[str],
        template: NotificationTemplate,
        data: Dict[str, Any],
        dedupe_key: Optional[str] = None,
    ) -> bool:
        """Queue a message; returns ``False`` if ``dedupe_key`` was already used."""

        template = NotificationTemplate(template)
        if dedupe_key and await self.repo.exists(dedupe_key):
            logger.debug(f"Skipping duplicate notification {dedupe_key}")
            return False
        if not to:
            logger.warning(f"Organization {org_id} has no contact email; queuing {template.value} anyway")
        await self.repo.add(
            OutboundNotification(
                org_id=org_id,
                recipient=to,
                template=template.value,
                data=data,
                dedupe_key=dedupe_key,
            )
        )
        logger.info(f"Queued {template.value} notification for org {org_id}")
        return True


def days_until(moment: datetime, now: datetime) -> int:
    return math.ceil((moment - now).total_seconds() / 86400)


def renewal_reminder(subscription: Subscription, now: datetime) -> Dict[str, Any]:
    return {
        "org_id": str(subscription.org_id),
        "plan_tier": subscription.plan_tier,
        "expiry_date": subscription.expiry_date.isoformat(),
        "days_until_expiry": days_until(subscription.expiry_date, now),
    }


def renewal_success(subscription: Subscription) -> Dict[str, Any]:
    return {
        "org_id": str(subscription.org_id),
        "plan_tier": subscription.plan_tier,
        "amount": str(subscription.amount),
        "currency": subscription.currency,
        "next_expiry_date": subscription.expiry_date.isoformat(),
    }


def grace_period_notice(subscription: Subscription, reason: str) -> Dict[str, Any]:
    return {
        "org_id": str(subscription.org_id),
        "plan_tier": subscription.plan_tier,
        "grace_period_end": subscription.grace_period_end.isoformat(),
        "reason": reason,
    }


def downgrade_notice(
    subscription: Subscription, previous_tier: str, free_plan: Plan
) -> Dict[str, Any]:
    subjects = subscription.current_subjects
    students = subscription.current_students
    subject_limit = free_plan.subject_cap
    student_limit = free_plan.student_cap
    exceeds = subjects > subject_limit or students > student_limit
    if exceeds:
        message = (
            "Your account has been downgraded to the Free plan. You currently have "
            f"{subjects} subjects and {students} students, which exceeds the Free plan "
            f"limits ({subject_limit} subjects, {student_limit} students). Your existing "
            "data has been retained, but you will not be able to register new subjects "
            "or students until you remove some or upgrade your plan."
        )
    else:
        message = (
            "Your account has been downgraded to the Free plan. "
            "All your data has been retained."
        )
    return {
        "org_id": str(subscription.org_id),
        "previous_plan": previous_tier,
        "current_subjects": subjects,
        "current_students": students,
        "subject_limit": subject_limit,
        "student_limit": student_limit,
        "exceeds_limits": exceeds,
        "message": message,
    }
