"""
Deployment orchestration services.

This package holds the application record and lifecycle states, the port
allocator, the app registry, the container runtime interface with its Docker
implementation, and the deployment service that ties them together.
"""
from shipyard.services.deployment.application import Application, AppStatus
from shipyard.services.deployment.runtime_base import BuildSpec, ContainerRuntime
from shipyard.services.deployment.port_allocator import PortAllocator, port_allocator

__all__ = [
    "Application",
    "AppStatus",
    "BuildSpec",
    "ContainerRuntime",
    "PortAllocator",
    "port_allocator",
]
