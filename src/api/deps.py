"""Shared FastAPI dependencies."""
from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.session import get_db
from src.services.events import EventBus
from src.services.payments import PaymentVerifier


async def get_db_session(session: AsyncSession = Depends(get_db)) -> AsyncSession:
    return session


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.events


def get_payment_verifier(request: Request) -> PaymentVerifier:
    return request.app.state.payment_verifier
