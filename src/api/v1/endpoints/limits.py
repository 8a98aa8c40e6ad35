"""Endpoints exposing current subscription limits and usage."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_db_session
from src.auth.jwt import require_auth
from src.db.models.enums import ResourceKind
from src.repositories.subscription_repo import SubscriptionRepo
from src.services.limits import check_rate_limit
from src.services.plans import load_catalog
from src.services.usage import allows_registration, resource_usage


router = APIRouter(prefix="/limits", tags=["limits"])


@router.get("/current")
async def current_limits(
    auth=Depends(require_auth), db: AsyncSession = Depends(get_db_session)
):
    org_id = auth["org_id"]
    if org_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Token is not scoped to an organization",
        )
    await check_rate_limit(str(org_id))

    subscription = await SubscriptionRepo(db).get(org_id)
    if not subscription:
        return {"subscribed": False}

    catalog = await load_catalog(db)
    plan = catalog.resolve(subscription.plan_tier)

    return {
        "subscribed": True,
        "plan_tier": subscription.plan_tier,
        "plan_name": plan.name,
        "status": subscription.status,
        "billing_cycle": plan.billing_cycle,
        "expiry_date": subscription.expiry_date.isoformat() if subscription.expiry_date else None,
        "grace_period_end": (
            subscription.grace_period_end.isoformat() if subscription.grace_period_end else None
        ),
        "limits": {
            "subjects": subscription.subject_limit,
            "students": subscription.student_limit,
        },
        "usage": {
            kind.value: {
                **resource_usage(subscription, kind).to_dict(),
                "allowed": allows_registration(subscription, kind),
            }
            for kind in ResourceKind
        },
    }
