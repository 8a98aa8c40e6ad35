"""Cron wiring for the daily subscription lifecycle jobs."""
from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.core.config import settings
from src.services.events import EventBus
from src.services.lifecycle import (
    ExpiryScanner,
    GracePeriodExpirer,
    LifecycleJob,
    RenewalProcessor,
)
from src.services.payments import MonnifyClient, RenewalCharger


logger = logging.getLogger(__name__)


def build_charger() -> Optional[RenewalCharger]:
    """Renewal charger, or ``None`` when gateway credentials are missing."""

    config = settings.payments
    if not (config.api_key and config.secret_key and config.contract_code):
        logger.warning("Payment gateway not configured; renewals will enter the grace period")
        return None
    return RenewalCharger(MonnifyClient())


def build_job(name: str, events: Optional[EventBus] = None) -> LifecycleJob:
    if name == ExpiryScanner.name:
        return ExpiryScanner(events=events)
    if name == RenewalProcessor.name:
        return RenewalProcessor(events=events, charger=build_charger())
    if name == GracePeriodExpirer.name:
        return GracePeriodExpirer(events=events)
    raise ValueError(f"Unknown lifecycle job: {name}")


async def run_job(name: str, events: Optional[EventBus] = None) -> None:
    report = await build_job(name, events).run()
    logger.info(f"Job report: {report.to_dict()}")


def build_scheduler(events: Optional[EventBus] = None) -> AsyncIOScheduler:
    config = settings.scheduler
    scheduler = AsyncIOScheduler(timezone=config.timezone)
    for name, hour in (
        (ExpiryScanner.name, config.expiry_scan_hour),
        (RenewalProcessor.name, config.renewal_hour),
        (GracePeriodExpirer.name, config.grace_expiry_hour),
    ):
        scheduler.add_job(
            run_job,
            CronTrigger(hour=hour, minute=0, timezone=config.timezone),
            args=[name, events],
            id=name,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
    return scheduler
