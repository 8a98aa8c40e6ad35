"""Version 1 API router."""
from fastapi import APIRouter

from src.api.v1.endpoints import admin, billing, limits, organizations, plans, usage


api_router = APIRouter()
api_router.include_router(plans.router)
api_router.include_router(organizations.router)
api_router.include_router(usage.router)
api_router.include_router(billing.router)
api_router.include_router(admin.router)
api_router.include_router(limits.router)
