"""Daily subscription lifecycle jobs.

Each job selects candidate organizations in one short session, then handles
every organization in its own transaction. A failing organization is logged
and counted, and the batch moves on. Before acting, each item re-checks the
selection predicate against the freshly loaded record, so a job can be
re-run after a crash and only touches the remainder.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.config import settings
from src.core.timeutil import utcnow
from src.db.models.enums import (
    NotificationTemplate,
    PlanTier,
    SubscriptionEventType,
    SubscriptionStatus,
    TransactionStatus,
)
from src.db.models.subscription import Subscription
from src.db.session import get_session_factory
from src.repositories.subscription_repo import SubscriptionRepo
from src.services import notifications
from src.services import subscriptions as lifecycle
from src.services.event_log import log_event
from src.services.events import EventBus, publish_committed
from src.services.ledger import TransactionLedger
from src.services.notifications import NotificationSink
from src.services.payments import RenewalCharger, has_payment_method
from src.services.plans import PlanCatalog, load_catalog


logger = logging.getLogger(__name__)


@dataclass
class JobReport:
    job: str
    selected: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "selected": self.selected,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
        }


def _contact(subscription: Subscription) -> Optional[str]:
    organization = subscription.organization
    return organization.contact_email if organization is not None else None


class LifecycleJob(ABC):
    name = "lifecycle"

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory or get_session_factory()
        self.events = events
        self.clock = clock

    async def prepare(self, session: AsyncSession) -> PlanCatalog:
        return await load_catalog(session)

    @abstractmethod
    async def select_ids(self, session: AsyncSession, now: datetime) -> List[UUID]:
        """Candidate organizations for this run."""

    @abstractmethod
    async def process(
        self, session: AsyncSession, org_id: UUID, now: datetime, catalog: PlanCatalog
    ) -> bool:
        """Handle one organization; ``False`` means it no longer qualified."""

    async def run(self) -> JobReport:
        now = self.clock()
        report = JobReport(job=self.name)

        async with self.session_factory() as session:
            catalog = await self.prepare(session)
            org_ids = await self.select_ids(session, now)
        report.selected = len(org_ids)
        logger.info(f"{self.name}: {len(org_ids)} organizations selected at {now.isoformat()}")

        for org_id in org_ids:
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        handled = await self.process(session, org_id, now, catalog)
                    await publish_committed(session)
            except Exception as exc:
                report.failed += 1
                report.errors.append(f"{org_id}: {exc}")
                logger.exception(f"{self.name}: processing failed for org {org_id}")
                continue
            if handled:
                report.processed += 1
            else:
                report.skipped += 1

        logger.info(
            f"{self.name}: processed={report.processed} skipped={report.skipped} "
            f"failed={report.failed}"
        )
        return report


class ExpiryScanner(LifecycleJob):
    """Queues renewal reminders for paid subscriptions expiring soon."""

    name = "expiry_scanner"

    def _window_end(self, now: datetime) -> datetime:
        return now + timedelta(days=settings.billing.reminder_window_days)

    async def select_ids(self, session: AsyncSession, now: datetime) -> List[UUID]:
        return await SubscriptionRepo(session).expiring_ids(now, self._window_end(now))

    async def process(
        self, session: AsyncSession, org_id: UUID, now: datetime, catalog: PlanCatalog
    ) -> bool:
        subscription = await SubscriptionRepo(session).get(org_id)
        if (
            subscription is None
            or subscription.status != SubscriptionStatus.ACTIVE.value
            or not subscription.is_paid
            or subscription.expiry_date is None
            or not (now < subscription.expiry_date <= self._window_end(now))
        ):
            return False

        dedupe_key = (
            f"{NotificationTemplate.RENEWAL_REMINDER.value}:{org_id}:"
            f"{subscription.expiry_date.date().isoformat()}:{now.date().isoformat()}"
        )
        return await NotificationSink(session).send(
            org_id,
            _contact(subscription),
            NotificationTemplate.RENEWAL_REMINDER,
            notifications.renewal_reminder(subscription, now),
            dedupe_key=dedupe_key,
        )


class RenewalProcessor(LifecycleJob):
    """Charges due subscriptions, moving failures into the grace period."""

    name = "renewal_processor"

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utcnow,
        charger: Optional[RenewalCharger] = None,
    ) -> None:
        super().__init__(session_factory, events, clock)
        self.charger = charger

    async def select_ids(self, session: AsyncSession, now: datetime) -> List[UUID]:
        return await SubscriptionRepo(session).due_for_renewal_ids(now)

    @staticmethod
    def renewal_reference(subscription: Subscription) -> str:
        return f"renewal-{subscription.org_id.hex}-{subscription.expiry_date:%Y%m%d}"

    async def _charge(self, subscription: Subscription) -> Optional[str]:
        """Attempt the charge; return ``None`` on success or the failure reason."""

        if not has_payment_method(subscription):
            return "no_payment_method"
        if self.charger is None:
            return "charging_unavailable"
        try:
            result = await self.charger.charge(
                subscription,
                subscription.amount,
                self.renewal_reference(subscription),
                _contact(subscription),
            )
        except Exception as exc:
            # Any charge error resolves to the grace period.
            logger.warning(f"Renewal charge for org {subscription.org_id} raised: {exc}")
            return f"charge_error: {exc}"
        if not result.success:
            return f"charge_failed: {result.message or 'declined'}"
        return None

    async def process(
        self, session: AsyncSession, org_id: UUID, now: datetime, catalog: PlanCatalog
    ) -> bool:
        subscription = await SubscriptionRepo(session).get(org_id, for_update=True)
        if subscription is None or not lifecycle.can_renew(subscription, now):
            return False

        reference = self.renewal_reference(subscription)
        failure = await self._charge(subscription)
        sink = NotificationSink(session)

        if failure is None:
            await TransactionLedger(session).record(
                reference=reference,
                org_id=org_id,
                plan_tier=subscription.plan_tier,
                amount=subscription.amount,
                currency=subscription.currency,
                status=TransactionStatus.SUCCESS,
                initiated_by="renewal",
                now=now,
            )
            lifecycle.renew(subscription, now)
            await session.flush()
            await log_event(
                session,
                org_id,
                SubscriptionEventType.RENEWAL,
                plan_tier=subscription.plan_tier,
                amount=subscription.amount,
                currency=subscription.currency,
                reference=reference,
            )
            await sink.send(
                org_id,
                _contact(subscription),
                NotificationTemplate.RENEWAL_SUCCESS,
                notifications.renewal_success(subscription),
            )
            logger.info(f"Renewed org {org_id} until {subscription.expiry_date.isoformat()}")
        else:
            if failure != "no_payment_method":
                await TransactionLedger(session).record(
                    reference=reference,
                    org_id=org_id,
                    plan_tier=subscription.plan_tier,
                    amount=subscription.amount,
                    currency=subscription.currency,
                    status=TransactionStatus.FAILED,
                    initiated_by="renewal",
                    gateway_response={"error": failure},
                    now=now,
                )
            lifecycle.enter_grace_period(subscription, now)
            await session.flush()
            await log_event(
                session,
                org_id,
                SubscriptionEventType.GRACE_PERIOD,
                plan_tier=subscription.plan_tier,
                reason=failure,
            )
            await sink.send(
                org_id,
                _contact(subscription),
                NotificationTemplate.GRACE_PERIOD,
                notifications.grace_period_notice(subscription, failure),
            )
            logger.info(f"Org {org_id} entered grace period ({failure})")

        lifecycle.publish_change(session, self.events, subscription)
        return True


class GracePeriodExpirer(LifecycleJob):
    """Downgrades subscriptions whose grace period has run out."""

    name = "grace_period_expirer"

    async def prepare(self, session: AsyncSession) -> PlanCatalog:
        catalog = await load_catalog(session)
        # Raises InvalidPlanTier, aborting the whole run, when the free tier is missing.
        catalog.resolve(PlanTier.FREE.value)
        return catalog

    async def select_ids(self, session: AsyncSession, now: datetime) -> List[UUID]:
        return await SubscriptionRepo(session).grace_expired_ids(now)

    async def process(
        self, session: AsyncSession, org_id: UUID, now: datetime, catalog: PlanCatalog
    ) -> bool:
        subscription = await SubscriptionRepo(session).get(org_id, for_update=True)
        if subscription is None or not lifecycle.can_expire_grace(subscription, now):
            return False

        free_plan = catalog.free
        previous_tier = lifecycle.downgrade_to_free(subscription, free_plan, now)
        await session.flush()
        notice = notifications.downgrade_notice(subscription, previous_tier, free_plan)
        await log_event(
            session,
            org_id,
            SubscriptionEventType.DOWNGRADE,
            plan_tier=subscription.plan_tier,
            previous_tier=previous_tier,
            exceeds_limits=notice["exceeds_limits"],
        )
        await NotificationSink(session).send(
            org_id,
            _contact(subscription),
            NotificationTemplate.DOWNGRADE,
            notice,
        )
        lifecycle.publish_change(session, self.events, subscription)
        return True


JOBS = {
    ExpiryScanner.name: ExpiryScanner,
    RenewalProcessor.name: RenewalProcessor,
    GracePeriodExpirer.name: GracePeriodExpirer,
}
