"""Repository helpers for shared-pool usage counters."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.timeutil import utcnow
from src.db.models.enums import ResourceKind, SubscriptionStatus
from src.db.models.member import MemberUsage
from src.db.models.subscription import Subscription


_COUNTERS = {
    ResourceKind.SUBJECT: ("current_subjects", "subject_limit"),
    ResourceKind.STUDENT: ("current_students", "student_limit"),
}


def counter_column(kind: ResourceKind) -> str:
    return _COUNTERS[ResourceKind(kind)][0]


class UsageRepo:
    """Single-statement counter updates.

    Each method issues one ``UPDATE ... SET col = col + :delta`` so concurrent
    callers never lose writes. Both rows of a pair are written inside the
    caller's transaction; callers roll back on any raised error.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def adjust_member(
        self, org_id: UUID, member_id: str, kind: ResourceKind, delta: int
    ) -> bool:
        column = counter_column(kind)
        current = getattr(MemberUsage, column)
        stmt = update(MemberUsage).where(
            MemberUsage.org_id == org_id,
            MemberUsage.member_id == member_id,
        )
        if delta < 0:
            stmt = stmt.where(current >= -delta)
        result = await self.session.execute(
            stmt.values({column: current + delta, "updated_at": utcnow()}),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount == 1

    async def adjust_org(
        self,
        org_id: UUID,
        kind: ResourceKind,
        delta: int,
        *,
        require_capacity: bool = False,
    ) -> bool:
        """Shift the organization counter by ``delta``.

        With ``require_capacity`` the row only matches while it is outside its
        grace period and strictly below its limit, turning the check and the
        increment into one conditional statement.
        """

        column, limit_column = _COUNTERS[ResourceKind(kind)]
        current = getattr(Subscription, column)
        stmt = update(Subscription).where(Subscription.org_id == org_id)
        if delta < 0:
            stmt = stmt.where(current >= -delta)
        if require_capacity:
            stmt = stmt.where(
                Subscription.status != SubscriptionStatus.GRACE_PERIOD.value,
                current < getattr(Subscription, limit_column),
            )
        result = await self.session.execute(
            stmt.values({column: current + delta, "updated_at": utcnow()}),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount == 1

    async def release_member(
        self, org_id: UUID, subjects: int, students: int
    ) -> bool:
        """Remove a departing member's attributed usage and membership."""

        stmt = (
            update(Subscription)
            .where(
                Subscription.org_id == org_id,
                Subscription.current_subjects >= subjects,
                Subscription.current_students >= students,
            )
            .values(
                current_subjects=Subscription.current_subjects - subjects,
                current_students=Subscription.current_students - students,
                member_count=Subscription.member_count - 1,
                updated_at=utcnow(),
            )
        )
        result = await self.session.execute(
            stmt, execution_options={"synchronize_session": False}
        )
        return result.rowcount == 1

    async def add_member_slot(self, org_id: UUID) -> bool:
        result = await self.session.execute(
            update(Subscription)
            .where(Subscription.org_id == org_id)
            .values(member_count=Subscription.member_count + 1, updated_at=utcnow()),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount == 1

    async def set_org_totals(
        self, org_id: UUID, subjects: int, students: int, members: int
    ) -> bool:
        result = await self.session.execute(
            update(Subscription)
            .where(Subscription.org_id == org_id)
            .values(
                current_subjects=subjects,
                current_students=students,
                member_count=members,
                updated_at=utcnow(),
            ),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount == 1
