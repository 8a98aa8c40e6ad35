import pytest
from fastapi import status

from src.core.config import settings
from tests.factories import API_PREFIX, build_auth_header, fetch_subscription, seed_organization


def _usage_url(org_id, kind, action=""):
    return f"{API_PREFIX}/organizations/{org_id}/usage/{kind}{action}"


@pytest.mark.asyncio
async def test_register_at_limit_returns_limit_reached(client, test_db, session_factory):
    subscription = await seed_organization(test_db, subjects=3)
    headers = build_auth_header("admin-1", subscription.org_id)

    response = await client.post(_usage_url(subscription.org_id, "subject", "/register"), headers=headers)

    assert response.status_code == status.HTTP_402_PAYMENT_REQUIRED
    body = response.json()
    assert body["error"] == "limit_reached"
    assert body["message"] == "You have reached the subject limit of your plan."
    assert (body["current"], body["limit"]) == (3, 3)
    assert (await fetch_subscription(session_factory, subscription.org_id)).current_subjects == 3


@pytest.mark.asyncio
async def test_register_returns_usage_with_near_limit_warning(client, test_db, session_factory):
    subscription = await seed_organization(test_db, students=7, members=["teacher-1"])
    headers = build_auth_header("teacher-1", subscription.org_id)

    response = await client.post(_usage_url(subscription.org_id, "student", "/register"), headers=headers)

    assert response.status_code == status.HTTP_201_CREATED, response.text
    body = response.json()
    assert (body["current"], body["limit"], body["percentage"]) == (8, 10, 80)
    assert body["near_limit"] is True
    assert (await fetch_subscription(session_factory, subscription.org_id)).current_students == 8


@pytest.mark.asyncio
async def test_usage_status_and_release(client, test_db):
    subscription = await seed_organization(test_db, subjects=1)
    headers = build_auth_header("admin-1", subscription.org_id)

    current = await client.get(_usage_url(subscription.org_id, "subject"), headers=headers)
    assert current.status_code == status.HTTP_200_OK
    assert current.json()["allowed"] is True
    assert current.json()["current"] == 1

    released = await client.post(_usage_url(subscription.org_id, "subject", "/release"), headers=headers)
    assert released.status_code == status.HTTP_200_OK
    assert released.json()["current"] == 0

    underflow = await client.post(_usage_url(subscription.org_id, "subject", "/release"), headers=headers)
    assert underflow.status_code == status.HTTP_409_CONFLICT
    assert underflow.json()["error"] == "usage_underflow"


@pytest.mark.asyncio
async def test_other_organizations_usage_is_forbidden(client, test_db):
    mine = await seed_organization(test_db, admin="admin-a")
    theirs = await seed_organization(test_db, admin="admin-b")

    response = await client.get(
        _usage_url(theirs.org_id, "subject"), headers=build_auth_header("admin-a", mine.org_id)
    )

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["message"] == "Not a member of this organization"


@pytest.mark.asyncio
async def test_unknown_kind_is_rejected(client, test_db):
    subscription = await seed_organization(test_db)

    response = await client.get(
        _usage_url(subscription.org_id, "teacher"),
        headers=build_auth_header("admin-1", subscription.org_id),
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.asyncio
async def test_rate_limit_blocks_second_registration_within_window(
    client, test_db, fake_redis, monkeypatch
):
    subscription = await seed_organization(test_db)
    headers = build_auth_header("admin-1", subscription.org_id)
    monkeypatch.setattr(settings.limits, "rate_limit_rpm", 1)

    first = await client.post(_usage_url(subscription.org_id, "subject", "/register"), headers=headers)
    assert first.status_code == status.HTTP_201_CREATED

    second = await client.post(_usage_url(subscription.org_id, "subject", "/register"), headers=headers)
    assert second.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    assert second.json()["message"] == "Rate limit exceeded"


@pytest.mark.asyncio
async def test_limits_endpoint_reports_plan_and_usage(client, test_db):
    subscription = await seed_organization(test_db, tier="premium", students=16)

    response = await client.get(
        f"{API_PREFIX}/limits/current", headers=build_auth_header("admin-1", subscription.org_id)
    )

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["plan_tier"] == "premium"
    assert body["limits"] == {"subjects": 6, "students": 20}
    assert body["usage"]["student"]["near_limit"] is True
    assert body["usage"]["subject"]["allowed"] is True


@pytest.mark.asyncio
async def test_missing_token_is_rejected(client, test_db):
    subscription = await seed_organization(test_db)

    response = await client.get(_usage_url(subscription.org_id, "subject"))

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
