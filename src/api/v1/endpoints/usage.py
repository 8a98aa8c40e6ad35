"""Endpoints registering and releasing shared-pool usage."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_db_session, get_event_bus
from src.auth.jwt import ensure_org_access, require_auth
from src.db.models.enums import ResourceKind
from src.services.events import EventBus
from src.services.limits import check_rate_limit
from src.services.usage import UsageLedger


router = APIRouter(prefix="/organizations/{org_id}/usage", tags=["usage"])


@router.get("/{kind}")
async def usage_status(
    org_id: UUID,
    kind: ResourceKind,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
):
    ensure_org_access(auth, org_id)
    ledger = UsageLedger(db)
    usage = await ledger.usage(org_id, kind)
    return {"allowed": await ledger.check_limit(org_id, kind), **usage.to_dict()}


@router.post("/{kind}/register", status_code=status.HTTP_201_CREATED)
async def register_usage(
    org_id: UUID,
    kind: ResourceKind,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    events: EventBus = Depends(get_event_bus),
):
    """Claim one subject or student slot for the calling member.

    Responds 402 with ``error: limit_reached`` when the pool is exhausted;
    ``near_limit`` in a successful response is a non-blocking warning.
    """

    ensure_org_access(auth, org_id)
    await check_rate_limit(str(org_id))
    usage = await UsageLedger(db, events).register(org_id, auth["member_id"], kind)
    return usage.to_dict()


@router.post("/{kind}/release")
async def release_usage(
    org_id: UUID,
    kind: ResourceKind,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    events: EventBus = Depends(get_event_bus),
):
    ensure_org_access(auth, org_id)
    ledger = UsageLedger(db, events)
    await ledger.decrement(org_id, auth["member_id"], kind)
    return (await ledger.usage(org_id, kind)).to_dict()
