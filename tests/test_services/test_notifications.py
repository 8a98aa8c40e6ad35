import datetime as dt
import uuid

import pytest

from src.db.models.enums import NotificationTemplate
from src.services import subscriptions as lifecycle
from src.services.notifications import NotificationSink, days_until, downgrade_notice
from src.services.plans import DEFAULT_PLANS, PlanCatalog


FREE = PlanCatalog.of(DEFAULT_PLANS).free


def _downgraded(subjects, students):
    subscription = lifecycle.new_subscription(uuid.uuid4(), FREE, dt.datetime.now(dt.timezone.utc))
    subscription.current_subjects = subjects
    subscription.current_students = students
    return subscription


def test_days_until_rounds_partial_days_up():
    now = dt.datetime(2024, 5, 1, 12, tzinfo=dt.timezone.utc)

    assert days_until(now + dt.timedelta(days=2, hours=1), now) == 3
    assert days_until(now + dt.timedelta(days=7), now) == 7


def test_downgrade_notice_flags_usage_above_free_limits():
    notice = downgrade_notice(_downgraded(5, 4), "premium", FREE)

    assert notice["exceeds_limits"] is True
    assert notice["previous_plan"] == "premium"
    assert (notice["subject_limit"], notice["student_limit"]) == (3, 10)
    assert "You currently have 5 subjects and 4 students" in notice["message"]


def test_downgrade_notice_within_limits():
    notice = downgrade_notice(_downgraded(2, 10), "vip", FREE)

    assert notice["exceeds_limits"] is False
    assert notice["message"].endswith("All your data has been retained.")


@pytest.mark.asyncio
async def test_sink_skips_duplicate_keys(test_db):
    sink = NotificationSink(test_db)
    org_id = uuid.uuid4()

    first = await sink.send(org_id, "a@school.test", NotificationTemplate.RENEWAL_REMINDER, {}, "key-1")
    second = await sink.send(org_id, "a@school.test", NotificationTemplate.RENEWAL_REMINDER, {}, "key-1")
    undeduped = await sink.send(org_id, None, NotificationTemplate.DOWNGRADE, {})

    assert (first, second, undeduped) == (True, False, True)
