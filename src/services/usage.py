"""Shared-pool usage accounting for subjects and students."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import (
    LimitReached,
    NotFound,
    UsageUnderflow,
    UserNotInOrganization,
)
from src.db.models.enums import ResourceKind, SubscriptionStatus
from src.db.models.subscription import Subscription
from src.repositories.member_repo import MemberRepo
from src.repositories.subscription_repo import SubscriptionRepo
from src.repositories.usage_repo import UsageRepo
from src.services.events import DomainEventType, EventBus


logger = logging.getLogger(__name__)


def raw_percentage(current: int, limit: int) -> int:
    """Whole-number usage percentage, rounding halves up, uncapped."""

    if limit <= 0:
        return 0
    return int(current * 100 / limit + 0.5)


def is_near(current: int, limit: int, threshold: Optional[int] = None) -> bool:
    if threshold is None:
        threshold = settings.limits.near_limit_percent
    return raw_percentage(current, limit) >= threshold


@dataclass(frozen=True)
class ResourceUsage:
    kind: ResourceKind
    current: int
    limit: int

    @property
    def percentage(self) -> int:
        return min(raw_percentage(self.current, self.limit), 100)

    @property
    def near_limit(self) -> bool:
        return is_near(self.current, self.limit)

    @property
    def exceeds_limit(self) -> bool:
        return self.current > self.limit

    @property
    def remaining(self) -> int:
        return max(self.limit - self.current, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "current": self.current,
            "limit": self.limit,
            "percentage": self.percentage,
            "remaining": self.remaining,
            "near_limit": self.near_limit,
            "exceeds_limit": self.exceeds_limit,
        }


def resource_usage(subscription: Subscription, kind: ResourceKind) -> ResourceUsage:
    kind = ResourceKind(kind)
    return ResourceUsage(kind, subscription.current(kind), subscription.limit(kind))


def allows_registration(subscription: Subscription, kind: ResourceKind) -> bool:
    if subscription.status == SubscriptionStatus.GRACE_PERIOD.value:
        return False
    return subscription.current(kind) < subscription.limit(kind)


class UsageLedger:
    """Reads and mutates the organization and member usage counters.

    ``check_limit`` followed by ``increment`` may overshoot a limit by one
    under concurrency; ``try_increment`` and ``register`` use a single
    conditional update instead.
    """

    def __init__(self, session: AsyncSession, events: Optional[EventBus] = None) -> None:
        self.session = session
        self.events = events
        self.subscriptions = SubscriptionRepo(session)
        self.members = MemberRepo(session)
        self.counters = UsageRepo(session)

    async def _subscription(self, org_id: UUID) -> Subscription:
        subscription = await self.subscriptions.get(org_id)
        if subscription is None:
            raise NotFound("Subscription not found", org_id=str(org_id))
        return subscription

    async def check_limit(self, org_id: UUID, kind: ResourceKind) -> bool:
        subscription = await self._subscription(org_id)
        return allows_registration(subscription, ResourceKind(kind))

    async def usage(self, org_id: UUID, kind: ResourceKind) -> ResourceUsage:
        subscription = await self._subscription(org_id)
        return resource_usage(subscription, kind)

    async def is_near_limit(self, org_id: UUID, kind: ResourceKind) -> bool:
        return (await self.usage(org_id, kind)).near_limit

    async def increment(self, org_id: UUID, member_id: str, kind: ResourceKind) -> None:
        kind = ResourceKind(kind)
        if not await self.counters.adjust_member(org_id, member_id, kind, 1):
            raise UserNotInOrganization(
                "User is not a member of this organization", member_id=member_id
            )
        if not await self.counters.adjust_org(org_id, kind, 1):
            await self.counters.adjust_member(org_id, member_id, kind, -1)
            raise NotFound("Subscription not found", org_id=str(org_id))
        await self._publish_usage(org_id)

    async def decrement(self, org_id: UUID, member_id: str, kind: ResourceKind) -> None:
        kind = ResourceKind(kind)
        if await self.members.get_in_org(org_id, member_id) is None:
            raise UserNotInOrganization(
                "User is not a member of this organization", member_id=member_id
            )
        if not await self.counters.adjust_org(org_id, kind, -1):
            await self._subscription(org_id)
            raise UsageUnderflow(
                f"Organization has no {kind.value}s to release", kind=kind.value
            )
        if not await self.counters.adjust_member(org_id, member_id, kind, -1):
            await self.counters.adjust_org(org_id, kind, 1)
            raise UsageUnderflow(
                f"Member has no {kind.value}s to release", kind=kind.value
            )
        await self._publish_usage(org_id)

    async def try_increment(self, org_id: UUID, member_id: str, kind: ResourceKind) -> bool:
        """Increment only while the organization is below its limit."""

        kind = ResourceKind(kind)
        if await self.members.get_in_org(org_id, member_id) is None:
            raise UserNotInOrganization(
                "User is not a member of this organization", member_id=member_id
            )
        if not await self.counters.adjust_org(org_id, kind, 1, require_capacity=True):
            await self._subscription(org_id)
            return False
        await self.counters.adjust_member(org_id, member_id, kind, 1)
        await self._publish_usage(org_id)
        return True

    async def register(self, org_id: UUID, member_id: str, kind: ResourceKind) -> ResourceUsage:
        """Claim one unit of ``kind`` or raise :class:`LimitReached`."""

        kind = ResourceKind(kind)
        if not await self.try_increment(org_id, member_id, kind):
            subscription = await self._subscription(org_id)
            snapshot = resource_usage(subscription, kind)
            in_grace = subscription.status == SubscriptionStatus.GRACE_PERIOD.value
            if self.events is not None:
                await self.events.emit(
                    DomainEventType.LIMIT_REACHED,
                    org_id,
                    plan_tier=subscription.plan_tier,
                    grace_period=in_grace,
                    **snapshot.to_dict(),
                )
            logger.info(
                f"Registration of {kind.value} refused for org {org_id}: "
                f"{snapshot.current}/{snapshot.limit} (grace={in_grace})"
            )
            message = (
                "Your subscription is in its grace period. Renew to register new "
                f"{kind.value}s."
                if in_grace
                else f"You have reached the {kind.value} limit of your plan."
            )
            raise LimitReached(
                message,
                kind=kind.value,
                current=snapshot.current,
                limit=snapshot.limit,
                plan_tier=subscription.plan_tier,
            )

        snapshot = await self.usage(org_id, kind)
        if snapshot.near_limit and self.events is not None:
            self.events.emit_on_commit(
                self.session, DomainEventType.NEAR_LIMIT, org_id, **snapshot.to_dict()
            )
        return snapshot

    async def _publish_usage(self, org_id: UUID) -> None:
        if self.events is None:
            return
        subscription = await self._subscription(org_id)
        self.events.emit_on_commit(
            self.session,
            DomainEventType.USAGE_CHANGED,
            org_id,
            current_subjects=subscription.current_subjects,
            current_students=subscription.current_students,
            subject_limit=subscription.subject_limit,
            student_limit=subscription.student_limit,
        )
