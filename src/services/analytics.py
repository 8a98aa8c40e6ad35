"""Subscription metrics derived from the ledger and the event log.

Nothing here is authoritative; every figure is recomputed on request.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.timeutil import utcnow
from src.db.models.enums import PlanTier, SubscriptionEventType
from src.repositories.event_repo import SubscriptionEventRepo
from src.repositories.subscription_repo import SubscriptionRepo
from src.repositories.transaction_repo import TransactionRepo


logger = logging.getLogger(__name__)

CURRENCIES = ("NGN", "USD")

_EVENT_KEYS = {
    SubscriptionEventType.UPGRADE.value: "upgrades",
    SubscriptionEventType.DOWNGRADE.value: "downgrades",
    SubscriptionEventType.CANCELLATION.value: "cancellations",
    SubscriptionEventType.RENEWAL.value: "renewals",
    SubscriptionEventType.PAYMENT.value: "payments",
    SubscriptionEventType.PAYMENT_FAILED.value: "payment_failures",
    SubscriptionEventType.GRACE_PERIOD.value: "grace_periods",
}


def _money(value: Any) -> str:
    return str(Decimal(str(value or 0)).quantize(Decimal("0.01")))


class AnalyticsService:
    def __init__(self, session: AsyncSession) -> None:
        self.subscriptions = SubscriptionRepo(session)
        self.transactions = TransactionRepo(session)
        self.events = SubscriptionEventRepo(session)

    async def subscription_counts(self) -> Dict[str, int]:
        by_tier = await self.subscriptions.count_by_tier()
        counts = {tier.value: by_tier.get(tier.value, 0) for tier in PlanTier}
        counts["total"] = sum(by_tier.values())
        return counts

    async def revenue(self) -> Dict[str, Any]:
        totals = {currency: _money(0) for currency in CURRENCIES}
        count = 0
        for currency, amount, tx_count in await self.transactions.revenue_by_currency():
            totals[currency] = _money(amount)
            count += tx_count
        return {**totals, "transaction_count": count}

    async def revenue_by_tier(self) -> Dict[str, Dict[str, Any]]:
        result: Dict[str, Dict[str, Any]] = {
            tier.value: {**{c: _money(0) for c in CURRENCIES}, "count": 0}
            for tier in PlanTier
            if tier != PlanTier.FREE
        }
        for tier, currency, amount, count in await self.transactions.revenue_by_tier():
            bucket = result.setdefault(tier, {**{c: _money(0) for c in CURRENCIES}, "count": 0})
            bucket[currency] = _money(amount)
            bucket["count"] += count
        return result

    async def event_stats(self, since: Optional[datetime] = None) -> Dict[str, int]:
        counts = await self.events.counts_by_type(since)
        return {key: counts.get(event_type, 0) for event_type, key in _EVENT_KEYS.items()}

    async def trends(self, days: int = 30, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Per-day event counts and revenue for the last ``days`` days, oldest first."""

        now = now or utcnow()
        start_day = (now - timedelta(days=days - 1)).date()
        since = datetime.combine(start_day, datetime.min.time(), tzinfo=now.tzinfo)

        buckets: Dict[date, Dict[str, Any]] = {}
        for offset in range(days):
            day = start_day + timedelta(days=offset)
            buckets[day] = {
                "date": day.isoformat(),
                **{key: 0 for key in _EVENT_KEYS.values()},
                "revenue": defaultdict(Decimal),
            }

        for event in await self.events.since(since):
            bucket = buckets.get(event.created_at.date())
            key = _EVENT_KEYS.get(event.event_type)
            if bucket is not None and key is not None:
                bucket[key] += 1

        for transaction in await self.transactions.successful_since(since):
            bucket = buckets.get(transaction.created_at.date())
            if bucket is not None:
                bucket["revenue"][transaction.currency] += Decimal(transaction.amount)

        series = []
        for bucket in buckets.values():
            bucket["revenue"] = {c: _money(v) for c, v in bucket["revenue"].items()}
            series.append(bucket)
        return series

    async def metrics(self, days: int = 30) -> Dict[str, Any]:
        return {
            "subscriptions": await self.subscription_counts(),
            "revenue": await self.revenue(),
            "revenue_by_tier": await self.revenue_by_tier(),
            "events": await self.event_stats(),
            "trends": await self.trends(days),
        }
