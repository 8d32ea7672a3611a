"""
API endpoints for application deployments.

All state goes through the deployment service; domain exceptions are turned
into HTTP errors by the registered exception handlers.
"""
from typing import List
from fastapi import APIRouter, Query, status
from fastapi.responses import StreamingResponse

from shipyard.schemas.app import (
    AppResponse,
    DeleteResponse,
    DeploymentEventResponse,
    DeployRequest,
    LogStreamMessage,
)
from shipyard.services.deployment.deployment_service import deployment_service

router = APIRouter()


@router.post("/deploy", response_model=AppResponse, status_code=status.HTTP_201_CREATED)
async def create_deployment(request: DeployRequest) -> AppResponse:
    """
    Create an application and start deploying it.

    The response is returned once the record is stored; poll
    ``GET /apps/{id}`` for the outcome of the build.

    Raises:
        InvalidRequestError: Malformed repository URL (400)
        NoFreePortError: Port range exhausted (503)
        PersistenceError: Storage unavailable (503)
    """
    app = await deployment_service.create_deployment(request.repo_url, request.name)
    return AppResponse.from_app(app)


@router.get("/apps", response_model=List[AppResponse])
async def list_deployments() -> List[AppResponse]:
    """List all applications, oldest first."""
    return [AppResponse.from_app(app) for app in deployment_service.list_deployments()]


@router.get("/apps/{app_id}", response_model=AppResponse)
async def get_deployment(app_id: str) -> AppResponse:
    """
    Get a single application.

    Raises:
        AppNotFoundError: If the application does not exist (404)
    """
    return AppResponse.from_app(deployment_service.get_deployment(app_id))


@router.delete("/apps/{app_id}", response_model=DeleteResponse)
async def delete_deployment(app_id: str) -> DeleteResponse:
    """
    Stop and delete an application.

    Raises:
        AppNotFoundError: If the application does not exist (404)
    """
    app = await deployment_service.delete_deployment(app_id)
    return DeleteResponse(message=f"Application {app.name} ({app.id}) deleted")


@router.get("/apps/{app_id}/events", response_model=List[DeploymentEventResponse])
async def list_deployment_events(app_id: str) -> List[DeploymentEventResponse]:
    """
    Get the deployment event log of an application, oldest first.

    Events remain available after the application is deleted.
    """
    events = await deployment_service.list_events(app_id)
    return [DeploymentEventResponse.model_validate(event) for event in events]


@router.get("/apps/{app_id}/logs")
async def stream_container_logs(
    app_id: str,
    tail: int = Query(100, ge=1, le=10000, description="Past lines to send first"),
):
    """
    Stream the container output of an application via Server-Sent Events.

    Each event carries a JSON ``LogStreamMessage``. The stream opens with a
    ``connected`` message and ends when the container stops or the client
    disconnects.

    Raises:
        AppNotFoundError: If the application does not exist (404)
    """
    lines = deployment_service.stream_logs(app_id, tail=tail)

    async def log_stream():
        yield LogStreamMessage(type="connected", message=f"Streaming logs for {app_id}").to_sse()
        if lines is None:
            yield LogStreamMessage(type="error", message="Application has no running container").to_sse()
            return
        try:
            async for line in lines:
                if line:
                    yield LogStreamMessage(type="log", message=line).to_sse()
        except Exception as e:
            yield LogStreamMessage(type="error", message=f"Error streaming logs: {e}").to_sse()

    return StreamingResponse(
        log_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
