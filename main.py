"""FastAPI application entrypoint."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.api.v1.api import api_router
from src.core.config import settings
from src.core.exceptions import register_exception_handlers
from src.core.logging_config import setup_logging
from src.scheduler.jobs import build_scheduler
from src.services.events import EventBus
from src.services.limits import close_client
from src.services.payments import MonnifyClient, PaymentVerifier


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    events = EventBus()
    app.state.events = events
    if getattr(app.state, "payment_verifier", None) is None:
        app.state.payment_verifier = PaymentVerifier(MonnifyClient())

    scheduler = None
    if settings.scheduler.enabled:
        scheduler = build_scheduler(events)
        scheduler.start()
        logger.info("Lifecycle scheduler started")

    logger.info(f"{settings.PROJECT_NAME} started (env={settings.ENV})")
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        await close_client()
        logger.info(f"{settings.PROJECT_NAME} stopped")


def create_application() -> FastAPI:
    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=f"{settings.API_PREFIX}/v1")

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok", "env": settings.ENV}

    return app


app = create_application()
