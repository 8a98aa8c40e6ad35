"""Organization aggregate: membership, subscription summary and admin actions."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import (
    AlreadyMember,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    UsageUnderflow,
    UserNotInOrganization,
)
from src.core.timeutil import utcnow
from src.db.models.enums import (
    MemberRole,
    NotificationTemplate,
    ResourceKind,
    SubscriptionEventType,
)
from src.db.models.member import MemberUsage
from src.db.models.organization import Organization
from src.db.models.subscription import Subscription
from src.repositories.member_repo import MemberRepo
from src.repositories.organization_repo import OrganizationRepo
from src.repositories.subscription_repo import SubscriptionRepo
from src.repositories.usage_repo import UsageRepo
from src.services import subscriptions as lifecycle
from src.services.event_log import log_event
from src.services.events import EventBus
from src.services.notifications import NotificationSink, downgrade_notice
from src.services.plans import load_catalog
from src.services.usage import resource_usage


logger = logging.getLogger(__name__)


class OrganizationService:
    def __init__(self, session: AsyncSession, events: Optional[EventBus] = None) -> None:
        self.session = session
        self.events = events
        self.organizations = OrganizationRepo(session)
        self.subscriptions = SubscriptionRepo(session)
        self.members = MemberRepo(session)

    async def get(self, org_id: UUID) -> Organization:
        organization = await self.organizations.get(org_id)
        if organization is None:
            raise NotFound("Organization not found", org_id=str(org_id))
        return organization

    async def get_subscription(self, org_id: UUID) -> Subscription:
        subscription = await self.subscriptions.get(org_id)
        if subscription is None:
            raise NotFound("Subscription not found", org_id=str(org_id))
        return subscription

    async def require_admin(
        self, org_id: UUID, member_id: str, message: str = "Only school admins can change plans"
    ) -> Organization:
        organization = await self.get(org_id)
        if organization.admin_member_id != member_id:
            raise PermissionDenied(message)
        return organization

    async def create(
        self,
        name: str,
        admin_member_id: str,
        contact_email: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> Tuple[Organization, Subscription]:
        """Create an organization on the free tier with its admin as first member."""

        if await self.members.get(admin_member_id) is not None:
            raise AlreadyMember("User already belongs to an organization", member_id=admin_member_id)

        catalog = await load_catalog(self.session)
        now = utcnow()
        organization = await self.organizations.create(name, admin_member_id, contact_email)
        subscription = await self.subscriptions.add(
            lifecycle.new_subscription(organization.id, catalog.free, now, currency)
        )
        await self.members.add(
            MemberUsage(
                member_id=admin_member_id,
                org_id=organization.id,
                role=MemberRole.ADMIN.value,
                email=contact_email,
                joined_at=now,
            )
        )
        logger.info(f"Created organization {organization.id} ({name}) for admin {admin_member_id}")
        return organization, subscription

    async def add_member(
        self, org_id: UUID, member_id: str, email: Optional[str] = None
    ) -> MemberUsage:
        await self.get(org_id)
        if await self.members.get(member_id) is not None:
            raise AlreadyMember("User already belongs to an organization", member_id=member_id)
        member = await self.members.add(
            MemberUsage(
                member_id=member_id,
                org_id=org_id,
                role=MemberRole.MEMBER.value,
                email=email,
            )
        )
        await UsageRepo(self.session).add_member_slot(org_id)
        subscription = await self.get_subscription(org_id)
        lifecycle.publish_change(self.session, self.events, subscription)
        logger.info(f"Member {member_id} joined organization {org_id}")
        return member

    async def remove_member(self, org_id: UUID, member_id: str) -> None:
        """Detach a member, giving their attributed usage back to the pool."""

        member = await self.members.get_in_org(org_id, member_id)
        if member is None:
            raise UserNotInOrganization(
                "User is not a member of this organization", member_id=member_id
            )
        if member.is_admin:
            raise InvalidTransition("The organization admin cannot be removed")

        released = await UsageRepo(self.session).release_member(
            org_id, member.current_subjects, member.current_students
        )
        if not released:
            raise UsageUnderflow(
                "Member usage exceeds organization usage; recompute counters first",
                member_id=member_id,
            )
        await self.members.delete(member)
        subscription = await self.get_subscription(org_id)
        lifecycle.publish_change(self.session, self.events, subscription)
        logger.info(
            f"Member {member_id} left organization {org_id}, releasing "
            f"{member.current_subjects} subjects and {member.current_students} students"
        )

    async def summary(self, org_id: UUID, member_id: Optional[str] = None) -> Dict[str, Any]:
        organization = await self.get(org_id)
        subscription = await self.get_subscription(org_id)
        catalog = await load_catalog(self.session)
        plan = catalog.resolve(subscription.plan_tier)

        data: Dict[str, Any] = {
            "organization": {
                "id": str(organization.id),
                "name": organization.name,
                "admin_member_id": organization.admin_member_id,
            },
            "plan_name": plan.name,
            "features": list(plan.features),
            "subscription": lifecycle.snapshot(subscription),
            "usage": {
                kind.value: resource_usage(subscription, kind).to_dict()
                for kind in ResourceKind
            },
        }
        if member_id:
            member = await self.members.get_in_org(org_id, member_id)
            if member is None:
                raise UserNotInOrganization(
                    "User is not a member of this organization", member_id=member_id
                )
            data["member"] = {
                "member_id": member.member_id,
                "role": member.role,
                "current_subjects": member.current_subjects,
                "current_students": member.current_students,
            }
        return data

    async def cancel(self, org_id: UUID, member_id: str) -> Subscription:
        await self.require_admin(org_id, member_id, "Only school admins can cancel the subscription")
        subscription = await self.get_subscription(org_id)
        now = utcnow()
        lifecycle.cancel(subscription, now)
        await self.session.flush()
        await log_event(
            self.session,
            org_id,
            SubscriptionEventType.CANCELLATION,
            plan_tier=subscription.plan_tier,
            cancelled_by=member_id,
            grace_period_end=subscription.grace_period_end.isoformat(),
        )
        lifecycle.publish_change(self.session, self.events, subscription)
        logger.info(f"Subscription {org_id} cancelled by {member_id}")
        return subscription

    async def manual_downgrade(self, org_id: UUID, *, privileged: bool) -> Subscription:
        """Force the organization onto the free tier without waiting for grace expiry."""

        if not privileged:
            raise PermissionDenied("Only platform administrators can downgrade subscriptions")
        subscription = await self.get_subscription(org_id)
        catalog = await load_catalog(self.session)
        now = utcnow()
        previous_tier = lifecycle.downgrade_to_free(subscription, catalog.free, now, manual=True)
        await self.session.flush()

        notice = downgrade_notice(subscription, previous_tier, catalog.free)
        await NotificationSink(self.session).send(
            org_id,
            subscription.organization.contact_email if subscription.organization else None,
            NotificationTemplate.DOWNGRADE,
            notice,
        )
        await log_event(
            self.session,
            org_id,
            SubscriptionEventType.DOWNGRADE,
            plan_tier=subscription.plan_tier,
            previous_tier=previous_tier,
            manual=True,
            exceeds_limits=notice["exceeds_limits"],
        )
        lifecycle.publish_change(self.session, self.events, subscription)
        return subscription
