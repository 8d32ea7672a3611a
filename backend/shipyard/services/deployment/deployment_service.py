"""
Deployment orchestration service.

Coordinates between:
- AppRegistry for application records (written through to storage)
- DockerfileService for language detection and build instructions
- ContainerRuntime for image builds and containers
- TaskDispatcher for running pipelines off the request path
- PersistenceGateway for the deployment event log

Lifecycle per deployment attempt: Idle -> Deploying -> Running | Error.
Error is terminal; a new attempt needs a new application record.
"""
import asyncio
import logging
from typing import AsyncIterator, List, Optional, Set
from urllib.parse import urlparse

from shipyard.core.config import settings
from shipyard.core.exceptions import (
    AppNotFoundError,
    DeploymentInProgressError,
    InvalidRequestError,
    InvalidTransitionError,
    PersistenceError,
)
from shipyard.models.deployment_log import DeploymentLog
from shipyard.services.deployment.app_registry import AppRegistry, app_registry
from shipyard.services.deployment.application import (
    Application,
    AppStatus,
    derive_name,
    generate_app_id,
)
from shipyard.services.deployment.docker_runtime import docker_runtime
from shipyard.services.deployment.runtime_base import ContainerRuntime
from shipyard.services.docker.dockerfile_service import DockerfileService, dockerfile_service
from shipyard.services.persistence_gateway import PersistenceGateway, persistence_gateway
from shipyard.services.task_dispatcher import TaskDispatcherProtocol, task_dispatcher

logger = logging.getLogger(__name__)

# Deployment event actions
EVENT_DEPLOY_START = "deploy_start"
EVENT_DEPLOY_ERROR = "deploy_error"
EVENT_DEPLOY_SUCCESS = "deploy_success"
EVENT_DELETED = "deleted"
EVENT_RECONCILED = "reconciled"

# Pipeline steps, in order
STEP_DETECT_LANGUAGE = "detect_language"
STEP_BUILD_SPEC = "build_spec"
STEP_BUILD_IMAGE = "build_image"
STEP_RUN_CONTAINER = "run_container"
STEP_FINALIZE = "finalize"
STEP_DISPATCH = "dispatch"

SHUTDOWN_MESSAGE = "deployment cancelled by controller shutdown"

ALLOWED_URL_SCHEMES = ("http", "https", "git", "ssh")


def validate_repo_url(repo_url: Optional[str]) -> str:
    """
    Normalize and check a repository URL.

    Accepts http(s)/git/ssh URLs with a host and a path, and scp-style
    ``user@host:path`` addresses.

    Raises:
        InvalidRequestError: If the URL is empty or malformed
    """
    repo_url = (repo_url or "").strip()
    if not repo_url:
        raise InvalidRequestError("repo_url", "must not be empty")
    if len(repo_url) > 1000:
        raise InvalidRequestError("repo_url", "must be at most 1000 characters")
    if any(ch.isspace() for ch in repo_url):
        raise InvalidRequestError("repo_url", "must not contain whitespace")

    parsed = urlparse(repo_url)
    if parsed.scheme in ALLOWED_URL_SCHEMES:
        if not parsed.netloc or parsed.path.strip("/") == "":
            raise InvalidRequestError("repo_url", "must include a host and a repository path")
        return repo_url

    # scp-style: git@github.com:org/repo.git
    if "://" not in repo_url and "@" in repo_url and ":" in repo_url.split("@", 1)[1]:
        return repo_url

    raise InvalidRequestError(
        "repo_url", f"unsupported URL; expected one of {', '.join(ALLOWED_URL_SCHEMES)} or user@host:path"
    )


class DeploymentService:
    """
    Orchestration service for application deployments.

    Provides high-level methods for the application lifecycle. At most one
    pipeline runs per application id; pipelines for distinct ids run in
    parallel.
    """

    def __init__(
        self,
        registry: Optional[AppRegistry] = None,
        runtime: Optional[ContainerRuntime] = None,
        dockerfiles: Optional[DockerfileService] = None,
        gateway: Optional[PersistenceGateway] = None,
        dispatcher: Optional[TaskDispatcherProtocol] = None,
    ):
        """Initialize with collaborator instances (singletons by default)."""
        self.registry = registry if registry is not None else app_registry
        self.runtime = runtime if runtime is not None else docker_runtime
        self.dockerfiles = dockerfiles if dockerfiles is not None else dockerfile_service
        self.gateway = gateway if gateway is not None else persistence_gateway
        self.dispatcher = dispatcher if dispatcher is not None else task_dispatcher
        self._active: Set[str] = set()

    @staticmethod
    def image_name_for(app_id: str) -> str:
        """Deterministic image name for an application."""
        return f"{settings.IMAGE_PREFIX}_{app_id}".lower()

    @staticmethod
    def container_name_for(app_id: str) -> str:
        """Deterministic container name for an application."""
        return f"{settings.CONTAINER_PREFIX}-{app_id}".lower()

    async def _log_event(self, app_id: str, action: str, message: str) -> Optional[DeploymentLog]:
        """Append a deployment event. The record state stays authoritative if this fails."""
        try:
            return await self.gateway.append_event(app_id, action, message)
        except PersistenceError as e:
            logger.error(f"Could not record {action} event for app {app_id}: {e.message}")
            return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self) -> List[str]:
        """
        Prepare storage, load the registry and reconcile abandoned deployments.

        Must complete before requests are served.

        Returns:
            Ids of applications moved to Error
        """
        await self.gateway.init()
        await self.registry.load()
        reconciled = await self.registry.reconcile_abandoned()
        for app_id in reconciled:
            await self._log_event(app_id, EVENT_RECONCILED, "Marked as error after controller restart")
        if reconciled:
            logger.warning(f"Reconciled {len(reconciled)} abandoned deployment(s)")
        return reconciled

    async def shutdown(self) -> List[str]:
        """
        Wait for in-flight pipelines, then mark the ones cancelled at timeout as Error.

        Returns:
            Ids of applications whose pipeline was cancelled
        """
        cancelled = await self.dispatcher.drain(settings.SHUTDOWN_GRACE_SECONDS)
        for app_id in cancelled:
            try:
                app = self.registry.find(app_id)
                if app.status == AppStatus.DEPLOYING:
                    await self.registry.update_status(app_id, AppStatus.ERROR, error_message=SHUTDOWN_MESSAGE)
                    await self._log_event(app_id, EVENT_DEPLOY_ERROR, SHUTDOWN_MESSAGE)
            except (AppNotFoundError, PersistenceError) as e:
                # Left in Deploying; reconciled on the next startup
                logger.error(f"Could not mark cancelled deployment {app_id} as error: {e}")
        return cancelled

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_deployment(self, app_id: str) -> Application:
        """Get one application. Raises AppNotFoundError."""
        return self.registry.find(app_id)

    def list_deployments(self) -> List[Application]:
        """All applications, oldest first."""
        return self.registry.list_all()

    async def list_events(self, app_id: str) -> List[DeploymentLog]:
        """
        Deployment events of one application, including deleted ones.

        Raises:
            AppNotFoundError: If the id is unknown and has no events
        """
        events = await self.gateway.list_events(app_id)
        if not events and app_id not in self.registry:
            raise AppNotFoundError(app_id)
        return events

    # ------------------------------------------------------------------
    # Creation and pipeline
    # ------------------------------------------------------------------

    async def create_deployment(self, repo_url: str, name: Optional[str] = None) -> Application:
        """
        Create an application and start deploying it.

        Returns once the record is durably stored and in Deploying; the
        pipeline continues on the task dispatcher.

        Args:
            repo_url: Repository to deploy
            name: Display name (derived from the URL when omitted)

        Returns:
            The application in Deploying state

        Raises:
            InvalidRequestError: If the input is malformed
            NoFreePortError: If no port could be allocated
            DuplicateAppIdError, PortInUseError: On registry conflicts
            PersistenceError: If the record could not be stored
        """
        repo_url = validate_repo_url(repo_url)
        name = (name or "").strip() or derive_name(repo_url)
        if len(name) > 255:
            raise InvalidRequestError("name", "must be at most 255 characters")

        port = await self.registry.allocate_port()
        try:
            app = await self.registry.insert(
                Application(id=generate_app_id(), name=name, repo_url=repo_url, port=port)
            )
        except Exception:
            await self.registry.release_port(port)
            raise

        try:
            app = await self.registry.update_status(app.id, AppStatus.DEPLOYING)
        except PersistenceError:
            # Never leave an Idle record without a pipeline behind it
            try:
                await self.registry.remove(app.id)
            except PersistenceError as e:
                logger.error(f"Could not roll back app {app.id}; it will be reconciled on restart: {e.message}")
            raise

        await self._log_event(app.id, EVENT_DEPLOY_START, f"Deploying {repo_url} on port {port}")

        task_id = self.dispatcher.dispatch_deployment(app.id, self.run_pipeline)
        if task_id is None:
            return await self._fail(app, STEP_DISPATCH, "could not schedule deployment task")

        logger.info(f"Accepted deployment {app.id} ({name}) on port {port}, task {task_id}")
        return app

    async def run_pipeline(self, app_id: str) -> Optional[Application]:
        """
        Run the deployment steps for an application in Deploying state.

        Step failures are recorded on the application (status Error, a
        message naming the step, a deploy_error event) and not raised.

        Returns:
            The final application, or None if it was deleted meanwhile

        Raises:
            AppNotFoundError: If the id is unknown
            DeploymentInProgressError: If a pipeline is already active for the id
            InvalidTransitionError: If the application is not in Deploying state
        """
        if app_id in self._active:
            raise DeploymentInProgressError(app_id, AppStatus.DEPLOYING.value)
        app = self.registry.find(app_id)
        if app.status != AppStatus.DEPLOYING:
            raise InvalidTransitionError(app_id, app.status.value, AppStatus.RUNNING.value)

        self._active.add(app_id)
        try:
            return await self._execute_steps(app)
        finally:
            self._active.discard(app_id)

    def is_deploying(self, app_id: str) -> bool:
        """Check whether a pipeline is active for ``app_id``."""
        return app_id in self._active

    async def _execute_steps(self, app: Application) -> Optional[Application]:
        language = None
        image_ref = None
        step = STEP_DETECT_LANGUAGE
        try:
            language = self.dockerfiles.detect_language(app.repo_url)

            step = STEP_BUILD_SPEC
            spec = self.dockerfiles.build_spec_for(language, app.repo_url)

            step = STEP_BUILD_IMAGE
            logger.info(f"Deployment {app.id}: building {language} image")
            image_ref = await self.runtime.build_image(
                spec, self.image_name_for(app.id), timeout=settings.BUILD_TIMEOUT_SECONDS
            )

            step = STEP_RUN_CONTAINER
            logger.info(f"Deployment {app.id}: starting container on port {app.port}")
            container_ref = await self.runtime.run_container(
                image_ref,
                app.port,
                spec.container_port,
                self.container_name_for(app.id),
                timeout=settings.RUN_TIMEOUT_SECONDS,
            )
        except asyncio.CancelledError:
            await self._discard_partial(app, step)
            raise
        except Exception as e:
            reason = getattr(e, "message", None) or str(e) or e.__class__.__name__
            return await self._fail(app, step, reason, language=language, image_ref=image_ref)

        return await self._finalize(app, language, image_ref, container_ref)

    async def _finalize(
        self,
        app: Application,
        language: str,
        image_ref: str,
        container_ref: str,
    ) -> Optional[Application]:
        try:
            updated = await self.registry.update_status(
                app.id,
                AppStatus.RUNNING,
                container_ref=container_ref,
                language=language,
                image_ref=image_ref,
                error_message=None,
            )
        except asyncio.CancelledError:
            await self._cleanup_runtime(container_ref, image_ref)
            raise
        except AppNotFoundError:
            logger.warning(f"App {app.id} was deleted during deployment, removing its container")
            await self._cleanup_runtime(container_ref, image_ref)
            return None
        except PersistenceError as e:
            # A container must not outlive a record that never became Running
            await self._cleanup_runtime(container_ref, None)
            return await self._fail(app, STEP_FINALIZE, e.message, language=language, image_ref=image_ref)

        await self._log_event(
            app.id,
            EVENT_DEPLOY_SUCCESS,
            f"Running on port {updated.port}, container {container_ref}",
        )
        logger.info(f"Deployment {app.id} running on port {updated.port}")
        return updated

    async def _fail(
        self,
        app: Application,
        step: str,
        reason: str,
        language: Optional[str] = None,
        image_ref: Optional[str] = None,
    ) -> Optional[Application]:
        """Move the application to Error with a message naming the failed step."""
        error_message = f"{step} failed: {reason}"
        logger.error(f"Deployment {app.id} failed at {step}: {reason}")

        changes = {"error_message": error_message}
        if language:
            changes["language"] = language
        if image_ref:
            changes["image_ref"] = image_ref

        try:
            updated = await self.registry.update_status(app.id, AppStatus.ERROR, **changes)
        except AppNotFoundError:
            logger.warning(f"App {app.id} was deleted during deployment")
            if image_ref:
                await self._cleanup_runtime(None, image_ref)
            return None
        except PersistenceError as e:
            logger.error(f"Could not record failure of {app.id}; it will be reconciled on restart: {e.message}")
            try:
                return self.registry.find(app.id)
            except AppNotFoundError:
                if image_ref:
                    await self._cleanup_runtime(None, image_ref)
                return None

        await self._log_event(app.id, EVENT_DEPLOY_ERROR, error_message)
        return updated

    async def _discard_partial(self, app: Application, step: str) -> None:
        """Remove what a cancelled build or run may have left behind."""
        if step not in (STEP_BUILD_IMAGE, STEP_RUN_CONTAINER):
            return
        logger.warning(f"Deployment {app.id} cancelled during {step}, removing partial output")
        container_ref = self.container_name_for(app.id) if step == STEP_RUN_CONTAINER else None
        await self._cleanup_runtime(container_ref, self.image_name_for(app.id))

    async def _cleanup_runtime(self, container_ref: Optional[str], image_ref: Optional[str]) -> None:
        """Best-effort removal of a container and image; failures are only logged."""
        if container_ref:
            try:
                if not await self.runtime.stop_and_remove(container_ref):
                    logger.warning(f"Container {container_ref} could not be stopped/removed")
            except Exception as e:
                logger.warning(f"Error stopping container {container_ref}: {e}")
        if image_ref and settings.REMOVE_IMAGE_ON_DELETE:
            try:
                if not await self.runtime.remove_image(image_ref):
                    logger.warning(f"Image {image_ref} could not be removed")
            except Exception as e:
                logger.warning(f"Error removing image {image_ref}: {e}")

    # ------------------------------------------------------------------
    # Deletion and maintenance
    # ------------------------------------------------------------------

    async def delete_deployment(self, app_id: str) -> Application:
        """
        Tear down and delete an application, whatever its status.

        Container and image removal are best-effort; the record is deleted
        even when they fail.

        Returns:
            The deleted application

        Raises:
            AppNotFoundError: If the id is unknown (including a second delete)
            PersistenceError: If the record could not be deleted
        """
        app = self.registry.find(app_id)

        await self._cleanup_runtime(app.container_ref, app.image_ref)

        removed = await self.registry.remove(app_id)
        # Finalize may have stored a container while remove waited for the record lock
        await self._cleanup_runtime(
            removed.container_ref if removed.container_ref != app.container_ref else None,
            removed.image_ref if removed.image_ref != app.image_ref else None,
        )
        await self._log_event(app_id, EVENT_DELETED, f"Deleted {removed.name} (port {removed.port} released)")
        logger.info(f"Deleted app {app_id}")
        return removed

    def stream_logs(self, app_id: str, tail: int = 100) -> Optional[AsyncIterator[str]]:
        """
        Follow the container output of an application.

        Args:
            app_id: Application id
            tail: Number of past lines to start with

        Returns:
            Async iterator of log lines, or None if the application has no container

        Raises:
            AppNotFoundError: If the id is unknown
        """
        app = self.registry.find(app_id)
        if not app.container_ref:
            return None
        return self.runtime.stream_logs(app.container_ref, tail=tail)

    async def prune_images(self) -> bool:
        """Remove dangling images left behind by builds. Never raises."""
        try:
            return await self.runtime.prune_dangling_images()
        except Exception as e:
            logger.warning(f"Image prune failed: {e}")
            return False


# Singleton instance
deployment_service = DeploymentService()
