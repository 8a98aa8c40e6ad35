import pytest
from sqlalchemy import select

from src.core.exceptions import LimitReached, UsageUnderflow, UserNotInOrganization
from src.db.models import MemberUsage
from src.db.models.enums import ResourceKind, SubscriptionStatus
from src.repositories.subscription_repo import SubscriptionRepo
from src.services.events import DomainEventType, EventBus, publish_committed
from src.services.usage import ResourceUsage, UsageLedger, raw_percentage
from tests.factories import seed_organization


SUBJECT = ResourceKind.SUBJECT
STUDENT = ResourceKind.STUDENT


def test_percentage_rounds_half_up_and_display_is_capped():
    assert raw_percentage(1, 8) == 13
    assert raw_percentage(0, 0) == 0
    assert ResourceUsage(SUBJECT, 5, 3).percentage == 100
    assert ResourceUsage(SUBJECT, 5, 3).exceeds_limit is True
    assert ResourceUsage(SUBJECT, 5, 3).remaining == 0


@pytest.mark.asyncio
async def test_premium_subject_increment_is_not_near_limit(test_db):
    subscription = await seed_organization(test_db, tier="premium", subjects=2)
    ledger = UsageLedger(test_db)

    assert await ledger.check_limit(subscription.org_id, SUBJECT) is True
    await ledger.increment(subscription.org_id, "admin-1", SUBJECT)

    usage = await ledger.usage(subscription.org_id, SUBJECT)
    assert usage.current == 3
    assert usage.limit == 6
    assert usage.percentage == 50
    assert await ledger.is_near_limit(subscription.org_id, SUBJECT) is False


@pytest.mark.asyncio
async def test_sixteen_of_twenty_students_is_near_limit(test_db):
    subscription = await seed_organization(test_db, tier="premium", students=16)

    assert await UsageLedger(test_db).is_near_limit(subscription.org_id, STUDENT) is True


@pytest.mark.asyncio
async def test_unchecked_increments_may_overshoot_then_check_refuses(test_db):
    subscription = await seed_organization(test_db, subjects=2, members=["teacher-1"])
    ledger = UsageLedger(test_db)

    # Both callers observed room before either incremented.
    assert await ledger.check_limit(subscription.org_id, SUBJECT) is True
    assert await ledger.check_limit(subscription.org_id, SUBJECT) is True
    await ledger.increment(subscription.org_id, "admin-1", SUBJECT)
    await ledger.increment(subscription.org_id, "teacher-1", SUBJECT)

    usage = await ledger.usage(subscription.org_id, SUBJECT)
    assert usage.current == 4
    assert await ledger.check_limit(subscription.org_id, SUBJECT) is False


@pytest.mark.asyncio
async def test_increment_updates_member_and_organization(test_db):
    subscription = await seed_organization(test_db, members=["teacher-1"])
    ledger = UsageLedger(test_db)

    await ledger.increment(subscription.org_id, "teacher-1", STUDENT)

    member = (
        await test_db.execute(
            select(MemberUsage)
            .where(MemberUsage.member_id == "teacher-1")
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert member.current_students == 1
    assert (await ledger.usage(subscription.org_id, STUDENT)).current == 1


@pytest.mark.asyncio
async def test_increment_for_outsider_changes_nothing(test_db):
    subscription = await seed_organization(test_db)
    ledger = UsageLedger(test_db)

    with pytest.raises(UserNotInOrganization):
        await ledger.increment(subscription.org_id, "stranger", SUBJECT)

    assert (await ledger.usage(subscription.org_id, SUBJECT)).current == 0


@pytest.mark.asyncio
async def test_decrement_below_zero_is_refused(test_db):
    subscription = await seed_organization(test_db, members=["teacher-1"], subjects=1)
    ledger = UsageLedger(test_db)

    # The seeded subject belongs to the admin, not to teacher-1.
    with pytest.raises(UsageUnderflow):
        await ledger.decrement(subscription.org_id, "teacher-1", SUBJECT)
    assert (await ledger.usage(subscription.org_id, SUBJECT)).current == 1

    await ledger.decrement(subscription.org_id, "admin-1", SUBJECT)
    with pytest.raises(UsageUnderflow):
        await ledger.decrement(subscription.org_id, "admin-1", SUBJECT)
    assert (await ledger.usage(subscription.org_id, SUBJECT)).current == 0


@pytest.mark.asyncio
async def test_grace_period_blocks_registration(test_db):
    subscription = await seed_organization(
        test_db, tier="premium", status=SubscriptionStatus.GRACE_PERIOD.value, subjects=1
    )
    ledger = UsageLedger(test_db)

    assert await ledger.check_limit(subscription.org_id, SUBJECT) is False
    assert await ledger.try_increment(subscription.org_id, "admin-1", SUBJECT) is False
    assert (await ledger.usage(subscription.org_id, SUBJECT)).current == 1


@pytest.mark.asyncio
async def test_try_increment_stops_at_limit(test_db):
    subscription = await seed_organization(test_db, subjects=2)
    ledger = UsageLedger(test_db)

    assert await ledger.try_increment(subscription.org_id, "admin-1", SUBJECT) is True
    assert await ledger.try_increment(subscription.org_id, "admin-1", SUBJECT) is False
    assert (await ledger.usage(subscription.org_id, SUBJECT)).current == 3


@pytest.mark.asyncio
async def test_register_publishes_limit_reached(test_db):
    subscription = await seed_organization(test_db, students=10)
    events = EventBus()
    received = []
    events.subscribe(DomainEventType.LIMIT_REACHED, received.append)

    with pytest.raises(LimitReached) as exc:
        await UsageLedger(test_db, events).register(subscription.org_id, "admin-1", STUDENT)

    assert exc.value.code == "limit_reached"
    assert exc.value.extra["limit"] == 10
    assert len(received) == 1
    assert received[0].org_id == subscription.org_id
    assert received[0].data["kind"] == "student"


@pytest.mark.asyncio
async def test_register_warns_when_near_limit(test_db):
    subscription = await seed_organization(test_db, students=7)
    events = EventBus()
    warnings = []
    events.subscribe(DomainEventType.NEAR_LIMIT, warnings.append)

    usage = await UsageLedger(test_db, events).register(subscription.org_id, "admin-1", STUDENT)
    assert warnings == []
    await test_db.commit()
    await publish_committed(test_db)

    assert usage.current == 8
    assert usage.near_limit is True
    assert warnings and warnings[0].data["percentage"] == 80


@pytest.mark.asyncio
async def test_counters_never_negative_after_mixed_operations(test_db):
    subscription = await seed_organization(test_db, members=["teacher-1"])
    ledger = UsageLedger(test_db)

    await ledger.increment(subscription.org_id, "teacher-1", SUBJECT)
    await ledger.decrement(subscription.org_id, "teacher-1", SUBJECT)
    for _ in range(2):
        with pytest.raises(UsageUnderflow):
            await ledger.decrement(subscription.org_id, "teacher-1", SUBJECT)

    refreshed = await SubscriptionRepo(test_db).get(subscription.org_id)
    assert refreshed.current_subjects == 0
    assert refreshed.current_students == 0
