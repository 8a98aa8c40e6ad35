import datetime as dt
import uuid
from decimal import Decimal

import pytest

from src.core.exceptions import AlreadyOnPlan, InvalidPlanTier, InvalidTransition
from src.db.models.enums import SubscriptionStatus
from src.services import subscriptions as lifecycle
from src.services.events import DomainEventType, EventBus, publish_committed
from src.services.plans import DEFAULT_PLANS, PlanCatalog


CATALOG = PlanCatalog.of(DEFAULT_PLANS)
NOW = dt.datetime(2024, 1, 31, 10, 0, tzinfo=dt.timezone.utc)


def _free_subscription():
    return lifecycle.new_subscription(uuid.uuid4(), CATALOG.free, NOW - dt.timedelta(days=40))


def _premium_subscription(expiry=NOW + dt.timedelta(days=10)):
    subscription = _free_subscription()
    lifecycle.apply_upgrade(
        subscription,
        CATALOG.resolve("premium"),
        amount=Decimal("1500"),
        currency="NGN",
        transaction_ref="tx-initial",
        now=expiry - dt.timedelta(days=30),
    )
    subscription.expiry_date = expiry
    return subscription


def test_new_subscription_starts_on_free_tier():
    subscription = _free_subscription()

    assert subscription.plan_tier == "free"
    assert subscription.status == SubscriptionStatus.ACTIVE.value
    assert (subscription.subject_limit, subscription.student_limit) == (3, 10)
    assert subscription.expiry_date is None
    assert subscription.grace_period_end is None


def test_upgrade_sets_limits_and_one_month_period():
    subscription = _free_subscription()

    applied = lifecycle.apply_upgrade(
        subscription,
        CATALOG.resolve("vip"),
        amount=Decimal("4500"),
        currency="ngn",
        transaction_ref="tx-1",
        now=NOW,
    )

    assert applied is True
    assert subscription.plan_tier == "vip"
    assert (subscription.subject_limit, subscription.student_limit) == (10, 30)
    assert subscription.expiry_date == dt.datetime(2024, 2, 29, 10, 0, tzinfo=dt.timezone.utc)
    assert subscription.last_payment_date == NOW
    assert subscription.currency == "NGN"
    assert subscription.grace_period_end is None


def test_upgrade_with_same_reference_is_applied_once():
    subscription = _free_subscription()
    plan = CATALOG.resolve("premium")
    kwargs = dict(amount=Decimal("1500"), currency="NGN", transaction_ref="tx-1", now=NOW)

    assert lifecycle.apply_upgrade(subscription, plan, **kwargs) is True
    expiry = subscription.expiry_date
    assert lifecycle.apply_upgrade(subscription, plan, **kwargs) is False
    assert subscription.expiry_date == expiry


def test_upgrade_to_free_or_from_grace_is_invalid():
    subscription = _premium_subscription()
    with pytest.raises(InvalidPlanTier):
        lifecycle.apply_upgrade(
            subscription, CATALOG.free, amount=Decimal("0"), currency="NGN",
            transaction_ref="tx-2", now=NOW,
        )

    lifecycle.cancel(subscription, NOW)
    with pytest.raises(InvalidTransition):
        lifecycle.apply_upgrade(
            subscription, CATALOG.resolve("vip"), amount=Decimal("4500"), currency="NGN",
            transaction_ref="tx-3", now=NOW,
        )


def test_cancel_enters_grace_period_and_keeps_expiry():
    subscription = _premium_subscription()
    expiry = subscription.expiry_date

    lifecycle.cancel(subscription, NOW)

    assert subscription.status == SubscriptionStatus.GRACE_PERIOD.value
    assert subscription.grace_period_end == NOW + dt.timedelta(days=3)
    assert subscription.cancelled_at == NOW
    assert subscription.expiry_date == expiry


def test_free_plan_cannot_be_cancelled():
    with pytest.raises(InvalidTransition) as exc:
        lifecycle.cancel(_free_subscription(), NOW)
    assert exc.value.message == "Cannot cancel free plan"


def test_renewal_adds_one_calendar_month():
    subscription = _premium_subscription(expiry=NOW - dt.timedelta(seconds=1))

    assert lifecycle.can_renew(subscription, NOW)
    lifecycle.renew(subscription, NOW)

    assert subscription.expiry_date == dt.datetime(
        2024, 2, 29, 9, 59, 59, tzinfo=dt.timezone.utc
    )
    assert subscription.last_payment_date == NOW
    assert subscription.status == SubscriptionStatus.ACTIVE.value
    assert subscription.grace_period_end is None


def test_renew_before_expiry_is_invalid():
    subscription = _premium_subscription()

    assert not lifecycle.can_renew(subscription, NOW)
    with pytest.raises(InvalidTransition):
        lifecycle.renew(subscription, NOW)


def test_downgrade_after_grace_keeps_counts():
    subscription = _premium_subscription()
    subscription.current_subjects = 5
    subscription.current_students = 12
    lifecycle.enter_grace_period(subscription, NOW - dt.timedelta(days=3, seconds=1))

    previous = lifecycle.downgrade_to_free(subscription, CATALOG.free, NOW)

    assert previous == "premium"
    assert subscription.plan_tier == "free"
    assert subscription.status == SubscriptionStatus.ACTIVE.value
    assert (subscription.subject_limit, subscription.student_limit) == (3, 10)
    assert (subscription.current_subjects, subscription.current_students) == (5, 12)
    assert subscription.amount == Decimal("0")
    assert subscription.expiry_date is None
    assert subscription.grace_period_end is None
    assert lifecycle.exceeds_free_limits(subscription)


def test_downgrade_before_grace_end_needs_manual_flag():
    subscription = _premium_subscription()

    with pytest.raises(InvalidTransition):
        lifecycle.downgrade_to_free(subscription, CATALOG.free, NOW)

    assert lifecycle.downgrade_to_free(subscription, CATALOG.free, NOW, manual=True) == "premium"
    with pytest.raises(AlreadyOnPlan):
        lifecycle.downgrade_to_free(subscription, CATALOG.free, NOW, manual=True)


@pytest.mark.asyncio
async def test_publish_change_streams_snapshot_after_commit(test_db):
    subscription = _premium_subscription()
    events = EventBus()

    async with events.stream(subscription.org_id) as queue:
        lifecycle.publish_change(test_db, events, subscription)
        assert queue.empty()
        await test_db.commit()
        assert await publish_committed(test_db) == 1
        event = queue.get_nowait()

    assert event.type == DomainEventType.SUBSCRIPTION_CHANGED
    assert event.data["plan_tier"] == "premium"
    assert "org_id" not in event.data
    assert events.listener_count(subscription.org_id) == 0
