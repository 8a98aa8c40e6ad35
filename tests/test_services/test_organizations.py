import uuid

import pytest
from sqlalchemy import select

from src.core.exceptions import (
    AlreadyMember,
    AlreadyOnPlan,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    UserNotInOrganization,
)
from src.db.models import OutboundNotification, SubscriptionEvent
from src.db.models.enums import ResourceKind, SubscriptionStatus
from src.services.events import DomainEventType, EventBus, publish_committed
from src.services.organizations import OrganizationService
from src.services.usage import UsageLedger
from tests.factories import seed_organization


@pytest.mark.asyncio
async def test_create_puts_admin_on_free_plan(test_db):
    service = OrganizationService(test_db)

    organization, subscription = await service.create("Hill School", "admin-1", "hill@school.test")

    assert organization.admin_member_id == "admin-1"
    assert subscription.plan_tier == "free"
    assert subscription.member_count == 1
    summary = await service.summary(organization.id, "admin-1")
    assert summary["member"]["role"] == "admin"
    assert summary["usage"]["subject"]["limit"] == 3

    with pytest.raises(AlreadyMember):
        await service.create("Another School", "admin-1")


@pytest.mark.asyncio
async def test_removing_member_releases_their_usage(test_db):
    subscription = await seed_organization(test_db, members=["teacher-1"], subjects=1)
    org_id = subscription.org_id
    ledger = UsageLedger(test_db)
    await ledger.increment(org_id, "teacher-1", ResourceKind.SUBJECT)
    await ledger.increment(org_id, "teacher-1", ResourceKind.STUDENT)

    service = OrganizationService(test_db)
    await service.remove_member(org_id, "teacher-1")

    remaining = await service.get_subscription(org_id)
    assert remaining.current_subjects == 1
    assert remaining.current_students == 0
    assert remaining.member_count == 1
    with pytest.raises(UserNotInOrganization):
        await service.remove_member(org_id, "teacher-1")
    with pytest.raises(InvalidTransition):
        await service.remove_member(org_id, "admin-1")


@pytest.mark.asyncio
async def test_cancel_is_admin_only(test_db):
    subscription = await seed_organization(test_db, tier="premium", members=["teacher-1"])
    service = OrganizationService(test_db)

    with pytest.raises(PermissionDenied):
        await service.cancel(subscription.org_id, "teacher-1")

    cancelled = await service.cancel(subscription.org_id, "admin-1")
    assert cancelled.status == SubscriptionStatus.GRACE_PERIOD.value
    assert cancelled.cancelled_at is not None


@pytest.mark.asyncio
async def test_manual_downgrade_requires_privilege_and_known_org(test_db):
    subscription = await seed_organization(test_db, tier="vip", subjects=8)
    events = EventBus()
    service = OrganizationService(test_db, events)

    with pytest.raises(PermissionDenied):
        await service.manual_downgrade(subscription.org_id, privileged=False)
    with pytest.raises(NotFound):
        await service.manual_downgrade(uuid.uuid4(), privileged=True)

    async with events.stream(subscription.org_id) as queue:
        downgraded = await service.manual_downgrade(subscription.org_id, privileged=True)
        assert queue.empty()
        await test_db.commit()
        await publish_committed(test_db)
        assert queue.get_nowait().type == DomainEventType.SUBSCRIPTION_CHANGED

    assert downgraded.plan_tier == "free"
    assert downgraded.current_subjects == 8

    notice = (await test_db.execute(select(OutboundNotification))).scalar_one()
    assert notice.template == "downgrade"
    assert notice.recipient == "admin@school.test"
    assert notice.data["exceeds_limits"] is True
    event = (await test_db.execute(select(SubscriptionEvent))).scalar_one()
    assert event.details["manual"] is True

    with pytest.raises(AlreadyOnPlan):
        await service.manual_downgrade(subscription.org_id, privileged=True)
