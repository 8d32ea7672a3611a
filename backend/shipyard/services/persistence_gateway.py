"""
Durable storage for application records and the deployment event log.

Translates between the in-memory Application record and the ``apps`` row.
Status is stored as its lowercase literal name. Every database failure,
including connection errors the driver raises as OSError, is reported as
PersistenceError so callers never see driver exceptions.
"""
import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from shipyard.core.database import async_session_maker, engine, init_models
from shipyard.core.exceptions import PersistenceError
from shipyard.models.app import App
from shipyard.models.deployment_log import DeploymentLog
from shipyard.repositories.app_repository import AppRepository
from shipyard.repositories.deployment_log_repository import DeploymentLogRepository
from shipyard.services.deployment.application import Application, AppStatus

logger = logging.getLogger(__name__)


def to_row(app: Application) -> App:
    """Build a detached ORM row carrying the full record state."""
    return App(
        id=app.id,
        name=app.name,
        repo_url=app.repo_url,
        language=app.language,
        port=app.port,
        container_id=app.container_ref,
        image_ref=app.image_ref,
        status=app.status.value,
        error_msg=app.error_message,
        created_at=app.created_at,
        updated_at=app.updated_at,
    )


def from_row(row: App) -> Application:
    """Rebuild an Application from its stored row."""
    return Application(
        id=row.id,
        name=row.name,
        repo_url=row.repo_url,
        language=row.language,
        port=row.port,
        container_ref=row.container_id,
        image_ref=row.image_ref,
        status=AppStatus(row.status),
        error_message=row.error_msg,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class PersistenceGateway:
    """
    Store for Application records and deployment events.

    Each call runs in its own session and commits before returning, so a
    successful return means the change is durable.
    """

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker] = None,
        bind: Optional[AsyncEngine] = None,
    ):
        self.session_maker = session_maker if session_maker is not None else async_session_maker
        self.bind = bind if bind is not None else engine

    async def init(self) -> None:
        """Create the tables if they do not exist."""
        try:
            await init_models(self.bind)
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError("init", str(e))

    async def save(self, app: Application) -> None:
        """
        Insert or overwrite the stored record for ``app``.

        Raises:
            PersistenceError: If the write fails
        """
        try:
            async with self.session_maker() as session:
                await AppRepository(session).upsert(to_row(app))
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to save app {app.id}: {e}")
            raise PersistenceError("save", str(e))

    async def load(self) -> List[Application]:
        """
        Load every stored application, oldest first.

        Raises:
            PersistenceError: If the read fails
        """
        try:
            async with self.session_maker() as session:
                rows = await AppRepository(session).get_all()
                return [from_row(row) for row in rows]
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to load apps: {e}")
            raise PersistenceError("load", str(e))

    async def delete(self, app_id: str) -> bool:
        """
        Delete the stored record.

        Returns:
            True if a row was removed, False if none existed

        Raises:
            PersistenceError: If the delete fails
        """
        try:
            async with self.session_maker() as session:
                return await AppRepository(session).delete_by_id(app_id)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to delete app {app_id}: {e}")
            raise PersistenceError("delete", str(e))

    async def append_event(self, app_id: str, action: str, message: Optional[str] = None) -> DeploymentLog:
        """
        Append a deployment event.

        Raises:
            PersistenceError: If the insert fails
        """
        try:
            async with self.session_maker() as session:
                return await DeploymentLogRepository(session).append(app_id, action, message)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to log {action} for app {app_id}: {e}")
            raise PersistenceError("append_event", str(e))

    async def list_events(self, app_id: str, action: Optional[str] = None) -> List[DeploymentLog]:
        """List the events of one application in insertion order."""
        try:
            async with self.session_maker() as session:
                return await DeploymentLogRepository(session).list_for_app(app_id, action)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to list events for app {app_id}: {e}")
            raise PersistenceError("list_events", str(e))

    async def ping(self) -> bool:
        """Check that the database answers a trivial query."""
        from sqlalchemy import text

        try:
            async with self.bind.begin() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database health check failed: {e}")
            return False
        except OSError as e:
            logger.warning(f"Database unreachable: {e}")
            return False


# Singleton instance
persistence_gateway = PersistenceGateway()
