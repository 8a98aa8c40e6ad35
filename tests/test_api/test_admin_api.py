import uuid

import pytest
from fastapi import status

from tests.factories import API_PREFIX, build_auth_header, fetch_subscription, seed_organization


ADMIN = f"{API_PREFIX}/admin"


@pytest.mark.asyncio
async def test_downgrade_requires_platform_admin(client, test_db, session_factory):
    subscription = await seed_organization(test_db, tier="vip")

    response = await client.post(
        f"{ADMIN}/organizations/{subscription.org_id}/downgrade",
        headers=build_auth_header("admin-1", subscription.org_id),
    )

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["message"] == "Only platform administrators can downgrade subscriptions"
    assert (await fetch_subscription(session_factory, subscription.org_id)).plan_tier == "vip"


@pytest.mark.asyncio
async def test_downgrade_unknown_organization(client, test_db):
    response = await client.post(
        f"{ADMIN}/organizations/{uuid.uuid4()}/downgrade",
        headers=build_auth_header("ops", is_admin=True),
    )

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_downgrade_keeps_usage_over_free_limits(client, test_db, session_factory):
    subscription = await seed_organization(test_db, tier="vip", subjects=8, students=12)

    response = await client.post(
        f"{ADMIN}/organizations/{subscription.org_id}/downgrade",
        headers=build_auth_header("ops", is_admin=True),
    )

    assert response.status_code == status.HTTP_200_OK, response.text
    body = response.json()
    assert body["success"] is True
    assert body["subscription"]["plan_tier"] == "free"

    downgraded = await fetch_subscription(session_factory, subscription.org_id)
    assert (downgraded.subject_limit, downgraded.student_limit) == (3, 10)
    assert (downgraded.current_subjects, downgraded.current_students) == (8, 12)
    assert downgraded.expiry_date is None


@pytest.mark.asyncio
async def test_downgrade_free_organization_is_conflict(client, test_db):
    subscription = await seed_organization(test_db)

    response = await client.post(
        f"{ADMIN}/organizations/{subscription.org_id}/downgrade",
        headers=build_auth_header("ops", is_admin=True),
    )

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"] == "already_on_plan"


@pytest.mark.asyncio
async def test_metrics_count_subscriptions_by_tier(client, test_db):
    await seed_organization(test_db, admin="a-1")
    await seed_organization(test_db, admin="a-2", tier="premium")
    await seed_organization(test_db, admin="a-3", tier="vip")

    response = await client.get(
        f"{ADMIN}/metrics", params={"days": 7}, headers=build_auth_header("ops", is_admin=True)
    )

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["subscriptions"] == {"free": 1, "premium": 1, "vip": 1, "total": 3}
    assert len(body["trends"]) == 7
    assert body["revenue"]["transaction_count"] == 0


@pytest.mark.asyncio
async def test_metrics_forbidden_for_school_admins(client, test_db):
    subscription = await seed_organization(test_db)

    response = await client.get(
        f"{ADMIN}/metrics", headers=build_auth_header("admin-1", subscription.org_id)
    )

    assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.asyncio
async def test_create_and_list_promo_codes(client, test_db):
    headers = build_auth_header("ops", is_admin=True)

    created = await client.post(
        f"{ADMIN}/promo-codes",
        json={"code": "welcome", "discount_type": "fixed", "value": "500", "max_uses": 10},
        headers=headers,
    )
    assert created.status_code == status.HTTP_201_CREATED, created.text
    assert created.json()["code"] == "WELCOME"
    assert created.json()["current_uses"] == 0

    listed = await client.get(f"{ADMIN}/promo-codes", headers=headers)
    assert [promo["code"] for promo in listed.json()["promo_codes"]] == ["WELCOME"]
