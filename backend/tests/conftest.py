"""
Pytest configuration and fixtures for backend tests.

This file is automatically loaded by pytest before running tests.
It sets up necessary environment variables and common fixtures.
"""
import os
import random

import pytest
import pytest_asyncio

# Set environment variables BEFORE any shipyard imports
# These are read by the Settings class at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "debug")


class SequenceRandom(random.Random):
    """Random source returning a fixed sequence of candidates, then cycling."""

    def __init__(self, values):
        super().__init__(0)
        self.values = list(values)
        self.calls = 0

    def randint(self, a, b):
        value = self.values[self.calls % len(self.values)]
        self.calls += 1
        return value


class FakeRuntime:
    """
    In-memory container runtime.

    Set ``build_error`` / ``run_error`` / ``stop_error`` to make a step fail,
    or ``build_gate`` to an asyncio.Event to hold builds until it is set.
    """

    def __init__(self):
        self.calls = []
        self.build_error = None
        self.run_error = None
        self.stop_error = None
        self.stop_result = True
        self.build_gate = None
        self.log_lines = []

    async def build_image(self, spec, image_name, timeout=None):
        self.calls.append(("build_image", image_name, spec.language))
        if self.build_gate is not None:
            await self.build_gate.wait()
        if self.build_error is not None:
            raise self.build_error
        return image_name

    async def run_container(self, image_ref, host_port, container_port, name, timeout=None):
        self.calls.append(("run_container", image_ref, host_port, container_port, name))
        if self.run_error is not None:
            raise self.run_error
        return f"cid-{name}"

    async def stop_and_remove(self, container_ref):
        self.calls.append(("stop_and_remove", container_ref))
        if self.stop_error is not None:
            raise self.stop_error
        return self.stop_result

    async def remove_image(self, image_ref):
        self.calls.append(("remove_image", image_ref))
        return True

    async def prune_dangling_images(self):
        self.calls.append(("prune_dangling_images",))
        return True

    async def stream_logs(self, container_ref, tail=100):
        self.calls.append(("stream_logs", container_ref, tail))
        for line in self.log_lines:
            yield line

    def called(self, name):
        return [call for call in self.calls if call[0] == name]


@pytest_asyncio.fixture
async def gateway(tmp_path):
    """PersistenceGateway over a throwaway SQLite file."""
    from shipyard.core.database import create_engine, create_session_maker
    from shipyard.services.persistence_gateway import PersistenceGateway

    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'shipyard.db'}")
    gw = PersistenceGateway(session_maker=create_session_maker(engine), bind=engine)
    await gw.init()
    yield gw
    await engine.dispose()


@pytest.fixture
def allocator():
    """Allocator over the default range whose host probe always succeeds."""
    from shipyard.services.deployment.port_allocator import PortAllocator

    alloc = PortAllocator(3000, 9999, max_attempts=50, rng=random.Random(1234))
    alloc.is_port_free = lambda port: True
    return alloc


@pytest.fixture
def registry(gateway, allocator):
    from shipyard.services.deployment.app_registry import AppRegistry

    return AppRegistry(gateway=gateway, allocator=allocator)


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def dispatcher():
    from shipyard.services.task_dispatcher import NoOpTaskDispatcher

    return NoOpTaskDispatcher()


@pytest.fixture
def service(registry, runtime, gateway, dispatcher):
    """DeploymentService wired to fakes; pipelines are run explicitly by tests."""
    from shipyard.services.deployment.deployment_service import DeploymentService
    from shipyard.services.docker.dockerfile_service import DockerfileService

    return DeploymentService(
        registry=registry,
        runtime=runtime,
        dockerfiles=DockerfileService(default_language="go"),
        gateway=gateway,
        dispatcher=dispatcher,
    )


@pytest.fixture
def make_app():
    """Factory for Application records with unique ids."""
    from shipyard.services.deployment.application import Application

    counter = {"n": 0}

    def _make(port=None, **kwargs):
        counter["n"] += 1
        n = counter["n"]
        return Application(
            id=kwargs.pop("id", f"app_test_{n}"),
            name=kwargs.pop("name", f"svc-{n}"),
            repo_url=kwargs.pop("repo_url", f"https://example.com/svc-{n}.git"),
            port=port if port is not None else 4000 + n,
            **kwargs,
        )

    return _make
