"""
API endpoints for maintenance tasks.
"""
from fastapi import APIRouter

from shipyard.schemas.app import PruneResponse
from shipyard.services.deployment.deployment_service import deployment_service

router = APIRouter()


@router.post("/prune-images", response_model=PruneResponse)
async def prune_images() -> PruneResponse:
    """Remove dangling images left behind by builds."""
    ok = await deployment_service.prune_images()
    return PruneResponse(
        success=ok,
        message="Dangling images pruned" if ok else "Image prune failed, see server logs",
    )
