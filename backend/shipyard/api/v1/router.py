"""
API v1 router that includes all endpoint routers.
"""
from fastapi import APIRouter

from shipyard.api.v1.endpoints import (
    apps,
    maintenance,
)

# Create main API router
api_router = APIRouter()

# Include endpoint routers
api_router.include_router(
    apps.router,
    tags=["apps"],
)

api_router.include_router(
    maintenance.router,
    prefix="/maintenance",
    tags=["maintenance"],
)
