"""
API v1 routes
"""
from fastapi import APIRouter

from metricsync.api.v1 import backfill, health

api_router = APIRouter(prefix="/api/v1")

# Include routers
api_router.include_router(health.router)
api_router.include_router(backfill.router)
