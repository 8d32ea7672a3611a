"""
Pydantic schemas for applications and deployment events.
"""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

from shipyard.services.deployment.application import AppStatus


class DeployRequest(BaseModel):
    """Schema for creating and deploying an application."""
    repo_url: str = Field(..., min_length=1, max_length=1000)
    name: Optional[str] = Field(None, max_length=255)


class AppResponse(BaseModel):
    """Schema for Application response."""
    id: str
    name: str
    repo_url: str
    language: Optional[str] = None
    port: int
    container_id: Optional[str] = None
    image_ref: Optional[str] = None
    status: AppStatus
    error_msg: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_app(cls, app) -> "AppResponse":
        """Convert an in-memory Application to response schema."""
        return cls(
            id=app.id,
            name=app.name,
            repo_url=app.repo_url,
            language=app.language,
            port=app.port,
            container_id=app.container_ref,
            image_ref=app.image_ref,
            status=app.status,
            error_msg=app.error_message,
            created_at=app.created_at,
            updated_at=app.updated_at,
        )


class DeleteResponse(BaseModel):
    """Schema for a successful deletion."""
    success: bool = True
    message: str


class DeploymentEventResponse(BaseModel):
    """Schema for one deployment event."""
    id: int
    app_id: str
    action: str
    message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PruneResponse(BaseModel):
    """Schema for the image prune maintenance result."""
    success: bool
    message: str


class LogStreamMessage(BaseModel):
    """One Server-Sent Event on the container log stream."""
    type: Literal["connected", "log", "error"]
    message: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json()}\n\n"
