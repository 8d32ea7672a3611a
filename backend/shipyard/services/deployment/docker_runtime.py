"""
Container runtime backed by the Docker CLI.

Every bounded docker invocation goes through ``_run_docker_command`` which
applies a timeout and reports ``(return_code, stdout, stderr)``. Following
logs is the one open-ended call and is killed when its consumer stops.
"""
import asyncio
import logging
import os
import shutil
from typing import AsyncIterator, List, Optional

from shipyard.core.config import settings
from shipyard.core.exceptions import BuildFailedError, RunFailedError
from shipyard.services.deployment.runtime_base import BuildSpec, ContainerRuntime

logger = logging.getLogger(__name__)

TIMEOUT_RETURN_CODE = -1


class DockerRuntime(ContainerRuntime):
    """
    Runtime for local Docker deployments.

    Responsibilities:
    - Write the rendered Dockerfile to a per-image workspace and build it
    - Run detached containers on the pre-assigned host port
    - Stop/remove containers and remove/prune images
    - Follow container logs
    - Clean up partially created containers and images after failures
    """

    def __init__(
        self,
        docker_bin: str = None,
        build_workdir: str = None,
        build_timeout: int = None,
        run_timeout: int = None,
        stop_timeout: int = None,
    ):
        """
        Initialize the Docker runtime.

        Args:
            docker_bin: Docker CLI executable
            build_workdir: Parent directory for build workspaces
            build_timeout: Default image build timeout in seconds
            run_timeout: Default container start timeout in seconds
            stop_timeout: Timeout for stop/rm/rmi calls in seconds
        """
        self.docker_bin = docker_bin or settings.DOCKER_BIN
        self.build_workdir = build_workdir or settings.BUILD_WORKDIR
        self.build_timeout = build_timeout or settings.BUILD_TIMEOUT_SECONDS
        self.run_timeout = run_timeout or settings.RUN_TIMEOUT_SECONDS
        self.stop_timeout = stop_timeout or settings.STOP_TIMEOUT_SECONDS

    async def _run_docker_command(
        self,
        args: List[str],
        timeout: int = 30,
    ) -> tuple[int, str, str]:
        """
        Run a docker command via subprocess.

        Args:
            args: Arguments after the docker executable
            timeout: Timeout in seconds; the process is killed when it expires

        Returns:
            Tuple of (return_code, stdout, stderr)
        """
        cmd = [self.docker_bin, *args]
        logger.debug(f"Running Docker command: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Docker command failed to start: {e}")
            return TIMEOUT_RETURN_CODE, "", str(e)

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Docker command timed out after {timeout}s: {' '.join(cmd)}")
            if process.returncode is None:
                process.kill()
            await process.wait()
            return TIMEOUT_RETURN_CODE, "", f"Command timed out after {timeout} seconds"
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            raise

        return (
            process.returncode,
            stdout.decode(errors="replace").strip() if stdout else "",
            stderr.decode(errors="replace").strip() if stderr else "",
        )

    def _prepare_workspace(self, spec: BuildSpec, image_name: str) -> str:
        """Write the Dockerfile into a fresh workspace and return its directory."""
        workspace = os.path.join(self.build_workdir, image_name)
        shutil.rmtree(workspace, ignore_errors=True)
        os.makedirs(workspace, exist_ok=True)
        with open(os.path.join(workspace, "Dockerfile"), "w") as f:
            f.write(spec.dockerfile)
        return workspace

    async def build_image(self, spec: BuildSpec, image_name: str, timeout: int = None) -> str:
        """
        Build ``image_name`` from the rendered Dockerfile.

        On failure any partially tagged image is removed.

        Raises:
            BuildFailedError: On non-zero exit or timeout
        """
        timeout = timeout or self.build_timeout
        try:
            workspace = self._prepare_workspace(spec, image_name)
        except OSError as e:
            raise BuildFailedError(image_name, f"cannot prepare build workspace: {e}")

        logger.info(f"Building image {image_name} ({spec.language}, base {spec.base_image})")
        try:
            return_code, _, stderr = await self._run_docker_command(
                ["build", "-t", image_name, "-f", os.path.join(workspace, "Dockerfile"), workspace],
                timeout=timeout,
            )
        finally:
            shutil.rmtree(workspace, ignore_errors=True)

        if return_code != 0:
            error_msg = stderr or f"docker build exited with code {return_code}"
            logger.error(f"Failed to build image {image_name}: {error_msg}")
            await self.remove_image(image_name)
            raise BuildFailedError(image_name, error_msg)

        logger.info(f"Built image {image_name}")
        return image_name

    async def run_container(
        self,
        image_ref: str,
        host_port: int,
        container_port: int,
        name: str,
        timeout: int = None,
    ) -> str:
        """
        Start a detached container publishing ``host_port:container_port``.

        Raises:
            RunFailedError: On non-zero exit or timeout
        """
        timeout = timeout or self.run_timeout
        return_code, stdout, stderr = await self._run_docker_command(
            [
                "run",
                "-d",  # Detached mode
                "--name", name,
                "-p", f"{host_port}:{container_port}",
                "-e", f"PORT={container_port}",
                image_ref,
            ],
            timeout=timeout,
        )

        if return_code != 0 or not stdout:
            error_msg = stderr or "docker run returned no container id"
            logger.error(f"Failed to start container {name}: {error_msg}")
            # docker run may leave the container in 'Created' state
            await self._cleanup_failed_container(name)
            raise RunFailedError(name, error_msg)

        container_id = stdout.splitlines()[-1][:64]
        logger.info(f"Started container {name} ({container_id[:12]}) on port {host_port}")
        return container_id

    async def stop_and_remove(self, container_ref: str) -> bool:
        """
        Stop and remove a container.

        A container that no longer exists counts as removed.
        """
        return_code, _, stderr = await self._run_docker_command(
            ["stop", container_ref], timeout=self.stop_timeout
        )
        if return_code != 0:
            if "No such container" in stderr:
                logger.warning(f"Container {container_ref} not found, considering it removed")
                return True
            logger.error(f"Failed to stop container {container_ref}: {stderr}")
            return False

        return_code, _, stderr = await self._run_docker_command(
            ["rm", container_ref], timeout=self.stop_timeout
        )
        if return_code != 0 and "No such container" not in stderr:
            logger.warning(f"Failed to remove container {container_ref}: {stderr}")
            return False

        logger.info(f"Stopped and removed container {container_ref}")
        return True

    async def remove_image(self, image_ref: str) -> bool:
        """Remove an image; a missing image counts as removed."""
        return_code, _, stderr = await self._run_docker_command(
            ["rmi", "-f", image_ref], timeout=self.stop_timeout
        )
        if return_code != 0 and "No such image" not in stderr:
            logger.warning(f"Failed to remove image {image_ref}: {stderr}")
            return False
        return True

    async def prune_dangling_images(self) -> bool:
        """Remove dangling images left behind by rebuilds and failed builds."""
        return_code, stdout, stderr = await self._run_docker_command(
            ["image", "prune", "-f"], timeout=self.stop_timeout * 4
        )
        if return_code != 0:
            logger.warning(f"Image prune failed: {stderr}")
            return False
        summary = stdout.splitlines()[-1] if stdout else "nothing to prune"
        logger.info(f"Pruned dangling images: {summary}")
        return True

    async def stream_logs(self, container_ref: str, tail: int = 100) -> AsyncIterator[str]:
        """
        Follow a container's logs with ``docker logs -f``.

        The docker process is killed when the consumer stops iterating.

        Yields:
            Log lines as they arrive
        """
        cmd = [self.docker_bin, "logs", "-f", "--tail", str(tail), container_ref]
        logger.debug(f"Streaming logs: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            logger.error(f"Error streaming logs for {container_ref}: {e}")
            yield f"Error streaming logs: {e}"
            return

        try:
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                yield line.decode(errors="replace").rstrip("\r\n")
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()

    async def _cleanup_failed_container(self, container_name: str) -> Optional[str]:
        """
        Force-remove a container that failed to start properly.

        Args:
            container_name: Name of the container to clean up

        Returns:
            Id of the removed container, if one existed
        """
        return_code, stdout, _ = await self._run_docker_command(
            ["ps", "-a", "--filter", f"name=^{container_name}$", "--format", "{{.ID}}"],
            timeout=10,
        )
        if return_code != 0 or not stdout:
            return None

        container_id = stdout.strip()
        logger.info(f"Cleaning up failed container {container_name} ({container_id})")
        return_code, _, stderr = await self._run_docker_command(
            ["rm", "-f", container_id], timeout=self.stop_timeout
        )
        if return_code != 0:
            logger.warning(f"Error cleaning up failed container {container_name}: {stderr}")
            return None
        return container_id


# Singleton instance
docker_runtime = DockerRuntime()
