"""
Task dispatcher for running deployment pipelines off the request path.

Endpoints return as soon as the record is created; the pipeline runs as an
asyncio task tracked here so shutdown can wait for it.

Usage:
    from shipyard.services.task_dispatcher import task_dispatcher

    task_dispatcher.dispatch_deployment(app_id, deployment_service.run_pipeline)

    # In tests, replace with mock:
    with patch('shipyard.services.task_dispatcher.task_dispatcher') as mock:
        mock.dispatch_deployment.return_value = "task-id"
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

PipelineFn = Callable[[str], Awaitable[object]]


class TaskDispatcherProtocol(Protocol):
    """Protocol defining the task dispatcher interface."""

    def dispatch_deployment(self, app_id: str, pipeline: PipelineFn) -> Optional[str]:
        """Dispatch a deployment pipeline."""
        ...

    def in_flight(self) -> List[str]:
        """Ids of applications with a running pipeline."""
        ...

    async def drain(self, timeout: float) -> List[str]:
        """Wait for running pipelines; cancel and return the ones still running at timeout."""
        ...


class AsyncioTaskDispatcher:
    """
    Task dispatcher running pipelines as tasks on the current event loop.

    Keeps a strong reference to each task until it finishes.
    """

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def dispatch_deployment(self, app_id: str, pipeline: PipelineFn) -> Optional[str]:
        """
        Schedule ``pipeline(app_id)`` on the running loop.

        Args:
            app_id: Application to deploy
            pipeline: Coroutine function running the deployment steps

        Returns:
            Task name if dispatched successfully, None otherwise
        """
        try:
            task = asyncio.get_running_loop().create_task(
                pipeline(app_id), name=f"deploy-{app_id}"
            )
        except RuntimeError as e:
            logger.error(f"Failed to dispatch deployment task for {app_id}: {e}")
            return None

        self._tasks[app_id] = task
        task.add_done_callback(lambda t, app_id=app_id: self._on_done(app_id, t))
        logger.info(f"Dispatched deployment task for {app_id}: {task.get_name()}")
        return task.get_name()

    def _on_done(self, app_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(app_id) is task:
            del self._tasks[app_id]
        if task.cancelled():
            logger.warning(f"Deployment task for {app_id} was cancelled")
        elif task.exception() is not None:
            logger.error(f"Deployment task for {app_id} crashed: {task.exception()!r}")

    def in_flight(self) -> List[str]:
        return list(self._tasks)

    async def drain(self, timeout: float) -> List[str]:
        """
        Wait up to ``timeout`` seconds for in-flight pipelines.

        Returns:
            Ids of applications whose pipeline was cancelled
        """
        if not self._tasks:
            return []

        pending_by_task = {task: app_id for app_id, task in self._tasks.items()}
        logger.info(f"Waiting up to {timeout}s for {len(pending_by_task)} deployment(s)")
        _, pending = await asyncio.wait(list(pending_by_task), timeout=timeout)

        cancelled = []
        for task in pending:
            task.cancel()
            cancelled.append(pending_by_task[task])
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(cancelled)} unfinished deployment(s): {cancelled}")
        return cancelled


class NoOpTaskDispatcher:
    """
    No-op task dispatcher for testing.

    Records dispatched ids without running anything.
    """

    def __init__(self):
        self.dispatched: List[str] = []

    def dispatch_deployment(self, app_id: str, pipeline: PipelineFn) -> Optional[str]:
        logger.debug(f"NoOp: dispatch_deployment({app_id})")
        self.dispatched.append(app_id)
        return f"noop-deployment-{app_id}"

    def in_flight(self) -> List[str]:
        return []

    async def drain(self, timeout: float) -> List[str]:
        return []


def _create_dispatcher() -> TaskDispatcherProtocol:
    """
    Create the appropriate task dispatcher based on environment.

    Returns AsyncioTaskDispatcher normally, NoOpTaskDispatcher for tests.
    """
    import os

    environment = os.getenv("ENVIRONMENT", "production")

    if environment == "test":
        logger.info("Using NoOpTaskDispatcher for test environment")
        return NoOpTaskDispatcher()

    return AsyncioTaskDispatcher()


# Singleton instance for shared use
task_dispatcher: TaskDispatcherProtocol = _create_dispatcher()
