"""Endpoints for organizations, their members and their change stream."""
from __future__ import annotations

import asyncio
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_db_session, get_event_bus
from src.auth.jwt import ensure_org_access, require_auth
from src.schemas.organization import MemberAdd, OrganizationCreate
from src.services import subscriptions as lifecycle
from src.services.events import EventBus
from src.services.organizations import OrganizationService


router = APIRouter(prefix="/organizations", tags=["organizations"])

KEEPALIVE_SECONDS = 15.0


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_organization(
    payload: OrganizationCreate,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
):
    service = OrganizationService(db)
    organization, subscription = await service.create(
        payload.name,
        auth["member_id"],
        contact_email=payload.contact_email,
        currency=payload.currency.upper() if payload.currency else None,
    )
    return {
        "org_id": str(organization.id),
        "name": organization.name,
        "admin_member_id": organization.admin_member_id,
        "subscription": lifecycle.snapshot(subscription),
    }


@router.get("/{org_id}/subscription")
async def subscription_summary(
    org_id: UUID,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
):
    ensure_org_access(auth, org_id)
    member_id = None if auth["is_admin"] and auth["org_id"] != org_id else auth["member_id"]
    return await OrganizationService(db).summary(org_id, member_id)


@router.post("/{org_id}/members", status_code=status.HTTP_201_CREATED)
async def add_member(
    org_id: UUID,
    payload: MemberAdd,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    events: EventBus = Depends(get_event_bus),
):
    service = OrganizationService(db, events)
    await service.require_admin(org_id, auth["member_id"], "Only school admins can add members")
    member = await service.add_member(org_id, payload.member_id, payload.email)
    return {"member_id": member.member_id, "org_id": str(member.org_id), "role": member.role}


@router.delete("/{org_id}/members/{member_id}")
async def remove_member(
    org_id: UUID,
    member_id: str,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    events: EventBus = Depends(get_event_bus),
):
    service = OrganizationService(db, events)
    if auth["member_id"] != member_id:
        await service.require_admin(org_id, auth["member_id"], "Only school admins can remove members")
    else:
        ensure_org_access(auth, org_id)
    await service.remove_member(org_id, member_id)
    subscription = await service.get_subscription(org_id)
    return {"removed": member_id, "subscription": lifecycle.snapshot(subscription)}


@router.get("/{org_id}/events")
async def stream_events(
    org_id: UUID,
    request: Request,
    auth=Depends(require_auth),
    events: EventBus = Depends(get_event_bus),
):
    """Server-sent events for every usage or subscription change of the organization."""

    ensure_org_access(auth, org_id)

    async def event_source():
        async with events.stream(org_id) as queue:
            yield ": connected\n\n"
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield event.to_sse()

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
