"""
Abstract base class for container runtimes.

Defines the interface the deployment orchestrator drives. Implementations
return typed references; the orchestrator never parses runtime output.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator


@dataclass(frozen=True)
class BuildSpec:
    """Runtime-specific build instructions for one language family."""

    language: str
    base_image: str
    dockerfile: str
    container_port: int


class ContainerRuntime(ABC):
    """
    Abstract base class for container runtimes.

    Implementations must provide methods for:
    - Building an image from a BuildSpec
    - Running a container on a fixed host port
    - Stopping and removing containers (best-effort)
    - Removing and pruning images (best-effort)
    - Following container output
    """

    @abstractmethod
    async def build_image(self, spec: BuildSpec, image_name: str, timeout: int = None) -> str:
        """
        Build an image.

        Args:
            spec: Build instructions
            image_name: Deterministic image name derived from the app id
            timeout: Seconds before the build is abandoned

        Returns:
            Image reference

        Raises:
            BuildFailedError: On failure or timeout
        """
        pass

    @abstractmethod
    async def run_container(
        self,
        image_ref: str,
        host_port: int,
        container_port: int,
        name: str,
        timeout: int = None,
    ) -> str:
        """
        Start a detached container publishing ``host_port``.

        The host port is a hard input; implementations must not pick another.

        Returns:
            Container reference

        Raises:
            RunFailedError: On failure or timeout
        """
        pass

    @abstractmethod
    async def stop_and_remove(self, container_ref: str) -> bool:
        """
        Stop then remove a container. Never raises.

        Returns:
            True if the container is gone afterwards
        """
        pass

    @abstractmethod
    async def remove_image(self, image_ref: str) -> bool:
        """Remove an image. Never raises."""
        pass

    @abstractmethod
    async def prune_dangling_images(self) -> bool:
        """Remove dangling images. Never raises."""
        pass

    @abstractmethod
    def stream_logs(self, container_ref: str, tail: int = 100) -> AsyncIterator[str]:
        """
        Follow the combined stdout and stderr of a container.

        Args:
            container_ref: Container reference returned by run_container
            tail: Number of past lines to start with

        Yields:
            Log lines as they arrive, until the container stops or the
            consumer closes the iterator
        """
        pass
