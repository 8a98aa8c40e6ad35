import datetime as dt
import uuid
from decimal import Decimal

import pytest

from src.core.timeutil import utcnow
from src.db.models import SubscriptionEvent, Transaction
from src.services.analytics import AnalyticsService
from tests.factories import seed_organization


@pytest.mark.asyncio
async def test_metrics_are_recomputed_from_ledger_and_event_log(test_db):
    await seed_organization(test_db, admin="free-admin")
    premium = await seed_organization(test_db, admin="premium-admin", tier="premium")
    now = utcnow()

    test_db.add_all(
        [
            Transaction(
                id="tx-ngn", org_id=premium.org_id, plan_tier="premium",
                amount=Decimal("1500"), currency="NGN", status="success", created_at=now,
            ),
            Transaction(
                id="tx-usd", org_id=premium.org_id, plan_tier="vip",
                amount=Decimal("3"), currency="USD", status="success", created_at=now,
            ),
            Transaction(
                id="tx-failed", org_id=premium.org_id, plan_tier="vip",
                amount=Decimal("4500"), currency="NGN", status="failed", created_at=now,
            ),
            SubscriptionEvent(org_id=premium.org_id, event_type="upgrade", created_at=now),
            SubscriptionEvent(org_id=premium.org_id, event_type="payment", created_at=now),
            SubscriptionEvent(
                org_id=uuid.uuid4(), event_type="downgrade",
                created_at=now - dt.timedelta(days=2),
            ),
        ]
    )
    await test_db.commit()

    metrics = await AnalyticsService(test_db).metrics(days=7)

    assert metrics["subscriptions"] == {"free": 1, "premium": 1, "vip": 0, "total": 2}
    assert metrics["revenue"] == {"NGN": "1500.00", "USD": "3.00", "transaction_count": 2}
    assert metrics["revenue_by_tier"]["premium"]["NGN"] == "1500.00"
    assert metrics["revenue_by_tier"]["vip"] == {"NGN": "0.00", "USD": "3.00", "count": 1}
    assert metrics["events"]["upgrades"] == 1
    assert metrics["events"]["downgrades"] == 1
    assert metrics["events"]["renewals"] == 0

    trends = metrics["trends"]
    assert len(trends) == 7
    assert trends[-1]["date"] == now.date().isoformat()
    assert trends[-1]["upgrades"] == 1
    assert trends[-1]["revenue"] == {"NGN": "1500.00", "USD": "3.00"}
    assert trends[-3]["downgrades"] == 1
