"""
Docker build services.

- DockerfileService: language detection and Dockerfile generation
"""
from shipyard.services.docker.dockerfile_service import DockerfileService, detect_language, dockerfile_service

__all__ = [
    "DockerfileService",
    "detect_language",
    # Singleton instances
    "dockerfile_service",
]
