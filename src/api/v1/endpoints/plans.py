"""Endpoints exposing the plan catalog."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_db_session
from src.services.plans import load_catalog


router = APIRouter(prefix="/plans", tags=["plans"])


@router.get("")
async def list_plans(db: AsyncSession = Depends(get_db_session)):
    catalog = await load_catalog(db)
    return {"plans": [plan.to_dict() for plan in catalog.all()]}


@router.get("/{tier}")
async def get_plan(tier: str, db: AsyncSession = Depends(get_db_session)):
    catalog = await load_catalog(db)
    return catalog.resolve(tier).to_dict()
