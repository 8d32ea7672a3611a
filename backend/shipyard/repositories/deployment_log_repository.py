"""
Repository for the append-only deployment event log.
"""
from typing import List, Optional

from sqlalchemy import select

from shipyard.repositories.base import BaseRepository
from shipyard.models.deployment_log import DeploymentLog


class DeploymentLogRepository(BaseRepository[DeploymentLog]):
    """Repository for DeploymentLog database operations."""

    model = DeploymentLog

    async def append(self, app_id: str, action: str, message: Optional[str] = None) -> DeploymentLog:
        """
        Append one event row.

        Args:
            app_id: Application the event belongs to
            action: Event action tag (deploy_start, deploy_error, ...)
            message: Human readable description

        Returns:
            The stored event
        """
        return await self.create(DeploymentLog(app_id=app_id, action=action, message=message))

    async def list_for_app(self, app_id: str, action: Optional[str] = None) -> List[DeploymentLog]:
        """List events for an application in insertion order, optionally filtered by action."""
        stmt = select(DeploymentLog).where(DeploymentLog.app_id == app_id)
        if action:
            stmt = stmt.where(DeploymentLog.action == action)
        result = await self.db.execute(stmt.order_by(DeploymentLog.id))
        return list(result.scalars().all())
