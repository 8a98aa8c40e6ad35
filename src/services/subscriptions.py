"""Subscription lifecycle transitions.

States are ``active`` and ``grace_period``; the free tier is ``active`` with
``plan_tier == "free"``. Each transition checks its pre-state and raises
:class:`InvalidTransition` otherwise. Scheduled jobs test the pre-state with
the ``can_*`` predicates first and skip records that no longer qualify.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import AlreadyOnPlan, InvalidPlanTier, InvalidTransition
from src.db.models.enums import PlanTier, SubscriptionStatus
from src.db.models.subscription import Subscription
from src.services.events import DomainEventType, EventBus
from src.services.plans import Plan


logger = logging.getLogger(__name__)

RENEWAL_PERIOD = relativedelta(months=1)


def grace_period() -> timedelta:
    return timedelta(days=settings.billing.grace_period_days)


def new_subscription(
    org_id: UUID, free_plan: Plan, now: datetime, currency: Optional[str] = None
) -> Subscription:
    """Initial record for a newly created organization."""

    return Subscription(
        org_id=org_id,
        plan_tier=free_plan.tier,
        status=SubscriptionStatus.ACTIVE.value,
        subject_limit=free_plan.subject_cap,
        student_limit=free_plan.student_cap,
        current_subjects=0,
        current_students=0,
        member_count=1,
        amount=Decimal("0"),
        currency=currency or settings.billing.default_currency,
        start_date=now,
        expiry_date=None,
        grace_period_end=None,
    )


def _is_active(subscription: Subscription) -> bool:
    return subscription.status == SubscriptionStatus.ACTIVE.value


def can_renew(subscription: Subscription, now: datetime) -> bool:
    return (
        _is_active(subscription)
        and subscription.is_paid
        and subscription.expiry_date is not None
        and subscription.expiry_date <= now
    )


def can_expire_grace(subscription: Subscription, now: datetime) -> bool:
    return (
        subscription.status == SubscriptionStatus.GRACE_PERIOD.value
        and subscription.grace_period_end is not None
        and subscription.grace_period_end <= now
    )


def _invalid(subscription: Subscription, action: str) -> InvalidTransition:
    return InvalidTransition(
        f"Cannot {action} a {subscription.plan_tier} subscription in status {subscription.status}",
        plan_tier=subscription.plan_tier,
        status=subscription.status,
    )


def apply_upgrade(
    subscription: Subscription,
    plan: Plan,
    *,
    amount: Decimal,
    currency: str,
    transaction_ref: str,
    now: datetime,
    customer_ref: Optional[str] = None,
    subscription_ref: Optional[str] = None,
) -> bool:
    """Move to a paid ``plan`` after a verified payment.

    Returns ``False`` when ``transaction_ref`` was already applied, so a
    retried completion never extends the subscription twice.
    """

    if subscription.last_transaction_ref == transaction_ref:
        return False
    if plan.is_free:
        raise InvalidPlanTier("Cannot purchase the free plan", tier=plan.tier)
    if not _is_active(subscription):
        raise _invalid(subscription, "upgrade")

    period_end = now + RENEWAL_PERIOD
    if subscription.is_paid and subscription.expiry_date and subscription.expiry_date > period_end:
        period_end = subscription.expiry_date

    subscription.plan_tier = plan.tier
    subscription.subject_limit = plan.subject_cap
    subscription.student_limit = plan.student_cap
    subscription.amount = Decimal(amount)
    subscription.currency = currency.upper()
    subscription.start_date = now
    subscription.expiry_date = period_end
    subscription.last_payment_date = now
    subscription.grace_period_end = None
    subscription.cancelled_at = None
    subscription.last_transaction_ref = transaction_ref
    if customer_ref:
        subscription.external_customer_ref = customer_ref
    if subscription_ref:
        subscription.external_subscription_ref = subscription_ref
    logger.info(
        f"Subscription {subscription.org_id} upgraded to {plan.tier} until {period_end.isoformat()}"
    )
    return True


def cancel(subscription: Subscription, now: datetime) -> None:
    if not subscription.is_paid:
        raise InvalidTransition("Cannot cancel free plan", plan_tier=subscription.plan_tier)
    if not _is_active(subscription):
        raise _invalid(subscription, "cancel")
    subscription.status = SubscriptionStatus.GRACE_PERIOD.value
    subscription.grace_period_end = now + grace_period()
    subscription.cancelled_at = now


def renew(subscription: Subscription, now: datetime) -> None:
    if not can_renew(subscription, now):
        raise _invalid(subscription, "renew")
    subscription.expiry_date = subscription.expiry_date + RENEWAL_PERIOD
    subscription.last_payment_date = now


def enter_grace_period(subscription: Subscription, now: datetime) -> None:
    if not (_is_active(subscription) and subscription.is_paid):
        raise _invalid(subscription, "start a grace period for")
    subscription.status = SubscriptionStatus.GRACE_PERIOD.value
    subscription.grace_period_end = now + grace_period()


def downgrade_to_free(
    subscription: Subscription, free_plan: Plan, now: datetime, *, manual: bool = False
) -> str:
    """Drop to the free tier, keeping current usage counts.

    Counts may now exceed the free limits; registrations stay blocked until
    usage falls back under them. ``manual`` skips the grace-period timer.
    Returns the previous tier.
    """

    if manual:
        if not subscription.is_paid and _is_active(subscription):
            raise AlreadyOnPlan("Already on the free plan", tier=PlanTier.FREE.value)
    elif not can_expire_grace(subscription, now):
        raise _invalid(subscription, "downgrade")

    previous_tier = subscription.plan_tier
    subscription.plan_tier = free_plan.tier
    subscription.status = SubscriptionStatus.ACTIVE.value
    subscription.subject_limit = free_plan.subject_cap
    subscription.student_limit = free_plan.student_cap
    subscription.amount = Decimal("0")
    subscription.expiry_date = None
    subscription.grace_period_end = None
    subscription.last_payment_date = None
    subscription.external_customer_ref = None
    subscription.external_subscription_ref = None
    subscription.updated_at = now
    logger.info(
        f"Subscription {subscription.org_id} downgraded from {previous_tier} to free"
        + (" (manual)" if manual else "")
    )
    return previous_tier


def exceeds_free_limits(subscription: Subscription) -> bool:
    return (
        subscription.current_subjects > subscription.subject_limit
        or subscription.current_students > subscription.student_limit
    )


def snapshot(subscription: Subscription) -> Dict[str, Any]:
    """JSON-friendly view of a subscription for events and responses."""

    def _iso(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    return {
        "org_id": str(subscription.org_id),
        "plan_tier": subscription.plan_tier,
        "status": subscription.status,
        "subject_limit": subscription.subject_limit,
        "student_limit": subscription.student_limit,
        "current_subjects": subscription.current_subjects,
        "current_students": subscription.current_students,
        "member_count": subscription.member_count,
        "amount": str(subscription.amount),
        "currency": subscription.currency,
        "start_date": _iso(subscription.start_date),
        "expiry_date": _iso(subscription.expiry_date),
        "grace_period_end": _iso(subscription.grace_period_end),
        "last_payment_date": _iso(subscription.last_payment_date),
        "cancelled_at": _iso(subscription.cancelled_at),
    }


def publish_change(
    session: AsyncSession, events: Optional[EventBus], subscription: Subscription
) -> None:
    """Queue the new state of ``subscription`` for its change stream, if any.

    Subscribers see it only once ``session`` commits.
    """

    if events is None:
        return
    data = snapshot(subscription)
    data.pop("org_id")
    events.emit_on_commit(
        session, DomainEventType.SUBSCRIPTION_CHANGED, subscription.org_id, **data
    )
