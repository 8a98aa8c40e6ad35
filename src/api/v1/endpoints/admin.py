"""Platform administration endpoints."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_db_session, get_event_bus
from src.auth.jwt import require_auth, require_platform_admin
from src.schemas.promo import PromoCodeCreate, PromoCodeRead
from src.services import subscriptions as lifecycle
from src.services.analytics import AnalyticsService
from src.services.events import EventBus
from src.services.organizations import OrganizationService
from src.services.promos import PromoService


router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/organizations/{org_id}/downgrade")
async def manual_downgrade(
    org_id: UUID,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    events: EventBus = Depends(get_event_bus),
):
    subscription = await OrganizationService(db, events).manual_downgrade(
        org_id, privileged=auth["is_admin"]
    )
    return {"success": True, "subscription": lifecycle.snapshot(subscription)}


@router.get("/metrics")
async def subscription_metrics(
    days: int = Query(30, ge=1, le=365),
    auth=Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db_session),
):
    return await AnalyticsService(db).metrics(days)


@router.post("/promo-codes", status_code=status.HTTP_201_CREATED, response_model=PromoCodeRead)
async def create_promo_code(
    payload: PromoCodeCreate,
    auth=Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db_session),
):
    promo = await PromoService(db).create(**payload.model_dump())
    return PromoCodeRead.model_validate(promo)


@router.get("/promo-codes")
async def list_promo_codes(
    auth=Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db_session),
):
    promos = await PromoService(db).list_all()
    return {
        "promo_codes": [PromoCodeRead.model_validate(p).model_dump(mode="json") for p in promos]
    }
